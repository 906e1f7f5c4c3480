"""
Explanation Validator
=====================

Checks generated explanations against the verbatim source quotes.

An explanation fails when it introduces numbers, dates or obligation
language that no quote supports, or never mentions the stated value.
Failure is soft: the composer replaces the text with a quote-only
explanation built by ``create_quote_only_explanation``.

Version: 0.1.0
"""

import re
from dataclasses import dataclass, field

from services.regulatory_truth.text.quotes import normalize_quotes


# Obligation and prohibition language (Croatian and English)
MODAL_PATTERNS: list[str] = [
    # Croatian
    r"mora(?:ju|te|mo|š)?",
    r"obvez(?:an|na|no|ni|ne)",
    r"duž(?:an|na|no|ni|ne)",
    r"zabranjen(?:o|a|i|e)?",
    r"ne\s+smij(?:e|u)",
    r"smij(?:e|u)",
    r"potrebno",
    r"treba(?:ju)?",
    # English
    r"must(?:\s+not)?",
    r"shall(?:\s+not)?",
    r"may\s+not",
    r"required",
    r"mandatory",
    r"obliged",
    r"obligated",
    r"prohibited",
    r"forbidden",
]

_MODAL_RE = re.compile(r"\b(?:" + "|".join(MODAL_PATTERNS) + r")\b", re.IGNORECASE)

# 1.7.2025. / 01. 07. 2025 and ISO 2025-07-01
_HR_DATE_RE = re.compile(r"\b(\d{1,2})\.\s?(\d{1,2})\.\s?(\d{4})\.?")
_ISO_DATE_RE = re.compile(r"\b(\d{4})-(\d{2})-(\d{2})\b")
_NUMBER_RE = re.compile(r"\d+(?:[.,]\d+)*")


@dataclass
class ExplanationValidation:
    """Result of validating an explanation."""

    valid: bool
    errors: list[str] = field(default_factory=list)
    warnings: list[str] = field(default_factory=list)


def _extract_dates(text: str) -> tuple[set[tuple[int, int, int]], str]:
    """Return the (year, month, day) set and the text with dates removed."""
    dates: set[tuple[int, int, int]] = set()

    def _hr(match: re.Match[str]) -> str:
        dates.add((int(match.group(3)), int(match.group(2)), int(match.group(1))))
        return " "

    def _iso(match: re.Match[str]) -> str:
        dates.add((int(match.group(1)), int(match.group(2)), int(match.group(3))))
        return " "

    stripped = _HR_DATE_RE.sub(_hr, text)
    stripped = _ISO_DATE_RE.sub(_iso, stripped)
    return dates, stripped


def _normalize_number(raw: str) -> str:
    """Treat 1.000,50 / 1,000.50 / 1000.5 alike by keeping digits and a decimal point."""
    if "," in raw and "." in raw:
        decimal = "," if raw.rfind(",") > raw.rfind(".") else "."
        thousands = "." if decimal == "," else ","
        raw = raw.replace(thousands, "").replace(decimal, ".")
    else:
        raw = raw.replace(",", ".")
    integer, _, fraction = raw.partition(".")
    integer = integer.lstrip("0") or "0"
    fraction = fraction.rstrip("0")
    return f"{integer}.{fraction}" if fraction else integer


def _extract_numbers(text: str) -> set[str]:
    return {_normalize_number(m) for m in _NUMBER_RE.findall(text)}


def _normalize_text(text: str) -> str:
    return re.sub(r"\s+", " ", normalize_quotes(text)).strip().lower()


def _value_variants(value: str) -> set[str]:
    base = _normalize_text(value)
    variants = {base, base.replace(".", ",")}
    try:
        number = float(value.replace(",", "."))
    except ValueError:
        return variants
    if 0 < number <= 1:
        variants.add(f"{number * 100:g}")
    return variants


def _mentions_value(text: str, value: str) -> bool:
    normalized = _normalize_text(text)
    numbers = _extract_numbers(normalized)
    for variant in _value_variants(value):
        if variant and variant in normalized:
            return True
        if _NUMBER_RE.fullmatch(variant) and _normalize_number(variant) in numbers:
            return True
    return False


def validate_explanation(
    explanation_hr: str | None,
    explanation_en: str | None,
    source_quotes: list[str],
    value: str,
) -> ExplanationValidation:
    """
    Validate explanations against source quotes.

    Args:
        explanation_hr: Croatian explanation
        explanation_en: English explanation
        source_quotes: Verbatim quotes from the rule's source pointers
        value: The rule's stated value

    Returns:
        ExplanationValidation with errors (invalid) and warnings (valid)
    """
    errors: list[str] = []
    warnings: list[str] = []

    explanations = [e for e in (explanation_hr, explanation_en) if e and e.strip()]
    if not explanations:
        return ExplanationValidation(valid=False, errors=["Explanation is empty"])

    quote_text = "\n".join(source_quotes)
    quote_dates, quote_rest = _extract_dates(quote_text)
    quote_numbers = _extract_numbers(quote_rest) | _extract_numbers(quote_text)
    value_numbers = _extract_numbers(value)
    quotes_have_modal = _MODAL_RE.search(quote_text) is not None

    for text in explanations:
        dates, rest = _extract_dates(text)
        for year, month, day in sorted(dates - quote_dates):
            errors.append(f"Date {year:04d}-{month:02d}-{day:02d} not found in source quotes")

        for number in sorted(_extract_numbers(rest) - quote_numbers - value_numbers):
            errors.append(f"Number {number} not found in source quotes")

        modal = _MODAL_RE.search(text)
        if modal and not quotes_have_modal:
            errors.append(f'Modal "{modal.group(0)}" not supported by source quotes')

    in_explanation = any(_mentions_value(text, value) for text in explanations)
    if not in_explanation:
        if _mentions_value(quote_text, value):
            warnings.append(f'Value "{value}" appears only in source quotes')
        else:
            errors.append(f'Value "{value}" not found in explanation or source quotes')

    return ExplanationValidation(valid=not errors, errors=errors, warnings=warnings)


_TEMPLATE_LABELS = {
    "hr": ("Vrijednost", "Iz izvora"),
    "en": ("Value", "From source"),
}


def create_quote_only_explanation(
    source_quotes: list[str],
    value: str,
    language: str = "hr",
) -> str:
    """Templated explanation built only from verbatim quotes."""
    value_label, source_label = _TEMPLATE_LABELS.get(language, _TEMPLATE_LABELS["hr"])
    unique_quotes = [q.strip() for q in dict.fromkeys(source_quotes) if q and q.strip()]
    lines = [f"{value_label}: {value}", "", f"{source_label}:"]
    lines.extend(f'> "{quote}"' for quote in unique_quotes)
    return "\n".join(lines)
