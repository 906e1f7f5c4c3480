"""
Quote Normalizer
================

Collapses Unicode quotation marks, apostrophes, primes and guillemets to
their ASCII counterparts so extracted quotes can be compared with source
text that may use a different typographic convention.

Version: 0.1.0
"""

import re
import unicodedata


DOUBLE_QUOTE_VARIANTS = (
    "\u201c"  # left double quotation mark
    "\u201d"  # right double quotation mark
    "\u201e"  # double low-9 quotation mark
    "\u201f"  # double high-reversed-9 quotation mark
    "\u2033"  # double prime
    "\u2036"  # reversed double prime
    "\u00ab"  # left-pointing double angle quotation mark
    "\u00bb"  # right-pointing double angle quotation mark
    "\u275d"  # heavy double turned comma ornament
    "\u275e"  # heavy double comma ornament
    "\u276e"  # heavy left-pointing angle ornament
    "\u276f"  # heavy right-pointing angle ornament
    "\u301d"  # reversed double prime quotation mark
    "\u301e"  # double prime quotation mark
    "\u301f"  # low double prime quotation mark
    "\uff02"  # fullwidth quotation mark
)

SINGLE_QUOTE_VARIANTS = (
    "\u2018"  # left single quotation mark
    "\u2019"  # right single quotation mark
    "\u201a"  # single low-9 quotation mark
    "\u201b"  # single high-reversed-9 quotation mark
    "\u2032"  # prime
    "\u2035"  # reversed prime
    "\u2039"  # single left-pointing angle quotation mark
    "\u203a"  # single right-pointing angle quotation mark
    "\u0060"  # grave accent
    "\u00b4"  # acute accent
    "\u02bb"  # modifier letter turned comma
    "\u02bc"  # modifier letter apostrophe
    "\u275b"  # heavy single turned comma ornament
    "\u275c"  # heavy single comma ornament
    "\uff07"  # fullwidth apostrophe
)

_QUOTE_TABLE = str.maketrans(
    {
        **{ch: '"' for ch in DOUBLE_QUOTE_VARIANTS},
        **{ch: "'" for ch in SINGLE_QUOTE_VARIANTS},
    }
)

_WHITESPACE_RE = re.compile(r"\s+")


def normalize_quotes(text: str) -> str:
    """
    Replace every Unicode quote variant with ASCII `"` or `'`.

    One character in, one character out: the result always has the same
    length as the input, so offsets computed on either string agree.
    """
    return text.translate(_QUOTE_TABLE)


def has_unicode_quotes(text: str) -> bool:
    """Check whether the text contains any non-ASCII quote variant."""
    return any(ch in _QUOTE_TABLE for ch in map(ord, text))


def find_unicode_quotes(text: str) -> list[tuple[int, str]]:
    """Return (index, character) for every non-ASCII quote variant."""
    return [(i, ch) for i, ch in enumerate(text) if ord(ch) in _QUOTE_TABLE]


def normalize_for_match(text: str) -> str:
    """
    Aggressive normalization used when an exact quote match fails.

    Applies NFKC, turns non-breaking spaces into spaces, drops soft hyphens,
    normalizes quotes and collapses whitespace. Not length-preserving.
    """
    result = unicodedata.normalize("NFKC", text)
    result = result.replace("\u00a0", " ").replace("\u00ad", "")
    result = normalize_quotes(result)
    return _WHITESPACE_RE.sub(" ", result).strip()
