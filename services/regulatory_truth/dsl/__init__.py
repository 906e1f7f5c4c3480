"""AppliesWhen predicate language."""

from services.regulatory_truth.dsl.applies_when import (
    AppliesWhen,
    DslValidation,
    evaluate_applies_when,
    parse_applies_when,
    serialize_applies_when,
    to_tree,
    validate_applies_when,
)


__all__ = [
    "AppliesWhen",
    "DslValidation",
    "parse_applies_when",
    "validate_applies_when",
    "evaluate_applies_when",
    "serialize_applies_when",
    "to_tree",
]
