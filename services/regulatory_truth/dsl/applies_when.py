"""
AppliesWhen DSL
===============

Typed predicate tree describing when a rule applies.

Grammar (discriminated on ``op``):
- ``and`` / ``or`` with ``args``
- ``not`` with ``arg``
- ``cmp`` with ``field``, ``cmp`` (eq/neq/gt/gte/lt/lte) and ``value``
- ``in`` with ``field`` and ``values``
- ``exists`` with ``field``
- ``between`` with ``field`` and optional ``gte`` / ``lte``
- ``matches`` with ``field`` and ``pattern``
- ``date_in_effect`` with ``dateField`` and optional ``on``
- ``true`` / ``false``

Parsing is fail-closed: anything malformed raises AppliesWhenError and is
never replaced by an always-true predicate.

Version: 0.1.0
"""

import json
import re
from collections.abc import Mapping
from dataclasses import dataclass
from datetime import UTC, date, datetime
from typing import Annotated, Any, Literal, Union

from pydantic import BaseModel, ConfigDict, Field, TypeAdapter, ValidationError

from services.regulatory_truth.errors import AppliesWhenError
from services.regulatory_truth.hashing import canonical_json
from shared.logging import get_logger


logger = get_logger(__name__)

MAX_REGEX_LENGTH = 100

CmpOp = Literal["eq", "neq", "gt", "gte", "lt", "lte"]


class _Predicate(BaseModel):
    model_config = ConfigDict(frozen=True, extra="forbid", populate_by_name=True)


class AndPredicate(_Predicate):
    op: Literal["and"] = "and"
    args: list["AppliesWhen"]


class OrPredicate(_Predicate):
    op: Literal["or"] = "or"
    args: list["AppliesWhen"]


class NotPredicate(_Predicate):
    op: Literal["not"] = "not"
    arg: "AppliesWhen"


class CmpPredicate(_Predicate):
    op: Literal["cmp"] = "cmp"
    field: str = Field(min_length=1)
    cmp: CmpOp
    value: Any = None


class InPredicate(_Predicate):
    op: Literal["in"] = "in"
    field: str = Field(min_length=1)
    values: list[Any]


class ExistsPredicate(_Predicate):
    op: Literal["exists"] = "exists"
    field: str = Field(min_length=1)


class BetweenPredicate(_Predicate):
    op: Literal["between"] = "between"
    field: str = Field(min_length=1)
    gte: Any = None
    lte: Any = None


class MatchesPredicate(_Predicate):
    op: Literal["matches"] = "matches"
    field: str = Field(min_length=1)
    pattern: str


class DateInEffectPredicate(_Predicate):
    op: Literal["date_in_effect"] = "date_in_effect"
    date_field: str = Field(alias="dateField", min_length=1)
    on: str | None = None


class TruePredicate(_Predicate):
    op: Literal["true"] = "true"


class FalsePredicate(_Predicate):
    op: Literal["false"] = "false"


AppliesWhen = Annotated[
    Union[
        AndPredicate,
        OrPredicate,
        NotPredicate,
        CmpPredicate,
        InPredicate,
        ExistsPredicate,
        BetweenPredicate,
        MatchesPredicate,
        DateInEffectPredicate,
        TruePredicate,
        FalsePredicate,
    ],
    Field(discriminator="op"),
]

for _model in (AndPredicate, OrPredicate, NotPredicate):
    _model.model_rebuild()

_adapter: TypeAdapter[AppliesWhen] = TypeAdapter(AppliesWhen)


@dataclass
class DslValidation:
    """Result of validating an applicability condition."""

    valid: bool
    error: str | None = None


# =============================================================================
# Parsing
# =============================================================================


def parse_applies_when(source: str | Mapping[str, Any] | _Predicate) -> AppliesWhen:
    """
    Parse JSON text or a decoded tree into a typed predicate.

    Raises:
        AppliesWhenError: if the input is not valid JSON or not a valid tree
    """
    if isinstance(source, _Predicate):
        return source  # type: ignore[return-value]

    tree: Any = source
    if isinstance(source, str):
        try:
            tree = json.loads(source)
        except json.JSONDecodeError as e:
            raise AppliesWhenError(f"appliesWhen is not valid JSON: {e.msg}") from e

    try:
        return _adapter.validate_python(tree)
    except ValidationError as e:
        raise AppliesWhenError(f"appliesWhen is not a valid predicate: {_summarize(e)}") from e


def validate_applies_when(source: Any) -> DslValidation:
    """Validate without raising."""
    try:
        parse_applies_when(source)
    except AppliesWhenError as e:
        return DslValidation(valid=False, error=e.reason)
    return DslValidation(valid=True)


def to_tree(predicate: AppliesWhen) -> dict[str, Any]:
    """Dump a predicate to its JSON-compatible tree."""
    return predicate.model_dump(by_alias=True, exclude_none=True, mode="json")


def serialize_applies_when(predicate: AppliesWhen) -> str:
    """Canonical JSON text used at the storage boundary."""
    return canonical_json(to_tree(predicate))


def _summarize(error: ValidationError) -> str:
    first = error.errors()[0]
    location = ".".join(str(part) for part in first["loc"]) or "<root>"
    return f"{location}: {first['msg']} ({error.error_count()} error(s))"


# =============================================================================
# Evaluation
# =============================================================================


def _field_value(context: Mapping[str, Any], path: str) -> Any:
    current: Any = context
    for part in path.split("."):
        if not isinstance(current, Mapping):
            return None
        current = current.get(part)
        if current is None:
            return None
    return current


def _is_number(value: Any) -> bool:
    return isinstance(value, int | float) and not isinstance(value, bool)


def _strict_equal(left: Any, right: Any) -> bool:
    if isinstance(left, bool) or isinstance(right, bool):
        return isinstance(left, bool) and isinstance(right, bool) and left is right
    return bool(left == right)


def _compare(left: Any, op: str, right: Any) -> bool:
    if left is None:
        return False
    if op == "eq":
        return _strict_equal(left, right)
    if op == "neq":
        return not _strict_equal(left, right)

    same_kind = (_is_number(left) and _is_number(right)) or (
        isinstance(left, str) and isinstance(right, str)
    )
    if not same_kind:
        return False
    if op == "gt":
        return bool(left > right)
    if op == "gte":
        return bool(left >= right)
    if op == "lt":
        return bool(left < right)
    return bool(left <= right)


def _safe_match(pattern: str, value: str) -> bool:
    if len(pattern) > MAX_REGEX_LENGTH:
        logger.warning("applies_when_regex_too_long", length=len(pattern))
        return False
    try:
        return re.search(pattern, value) is not None
    except re.error:
        return False


def _parse_moment(value: Any) -> datetime | None:
    if isinstance(value, datetime):
        moment = value
    elif isinstance(value, date):
        moment = datetime(value.year, value.month, value.day)
    elif isinstance(value, str):
        try:
            moment = datetime.fromisoformat(value)
        except ValueError:
            return None
    else:
        return None
    return moment if moment.tzinfo else moment.replace(tzinfo=UTC)


def evaluate_applies_when(predicate: AppliesWhen, context: Mapping[str, Any]) -> bool:
    """
    Evaluate a predicate against a context.

    Fields are dot paths into the context (``entity.vat.status``). Missing
    fields evaluate to False. ``date_in_effect`` compares against ``on`` or
    the context's ``as_of``.
    """
    if isinstance(predicate, TruePredicate):
        return True
    if isinstance(predicate, FalsePredicate):
        return False
    if isinstance(predicate, AndPredicate):
        return all(evaluate_applies_when(arg, context) for arg in predicate.args)
    if isinstance(predicate, OrPredicate):
        return any(evaluate_applies_when(arg, context) for arg in predicate.args)
    if isinstance(predicate, NotPredicate):
        return not evaluate_applies_when(predicate.arg, context)
    if isinstance(predicate, CmpPredicate):
        return _compare(_field_value(context, predicate.field), predicate.cmp, predicate.value)
    if isinstance(predicate, InPredicate):
        value = _field_value(context, predicate.field)
        return value is not None and any(_strict_equal(value, v) for v in predicate.values)
    if isinstance(predicate, ExistsPredicate):
        return _field_value(context, predicate.field) is not None
    if isinstance(predicate, BetweenPredicate):
        value = _field_value(context, predicate.field)
        if not _is_number(value):
            return False
        gte_ok = predicate.gte is None or (_is_number(predicate.gte) and value >= predicate.gte)
        lte_ok = predicate.lte is None or (_is_number(predicate.lte) and value <= predicate.lte)
        return gte_ok and lte_ok
    if isinstance(predicate, MatchesPredicate):
        value = _field_value(context, predicate.field)
        return isinstance(value, str) and _safe_match(predicate.pattern, value)
    if isinstance(predicate, DateInEffectPredicate):
        field_moment = _parse_moment(_field_value(context, predicate.date_field))
        check_moment = _parse_moment(predicate.on or context.get("as_of"))
        if field_moment is None or check_moment is None:
            return False
        return field_moment <= check_moment
    return False
