"""
Provenance Checker
==================

Verifies that every source pointer quote exists in the unmodified content
of its evidence.

Match ladder:
1. EXACT: quote is a verbatim substring of the decoded content
2. NORMALIZED: found after quote normalization (offsets still valid since
   quote normalization is length-preserving) or after full text
   normalization (no offsets)
3. NOT_FOUND

Version: 0.1.0
"""

from dataclasses import dataclass

from services.regulatory_truth.models import Evidence, MatchType, RiskTier, SourcePointer
from services.regulatory_truth.store.base import RuleStore
from services.regulatory_truth.text.quotes import normalize_for_match, normalize_quotes
from shared.config import LifecycleSettings
from shared.logging import get_logger


logger = get_logger(__name__)


@dataclass
class QuoteMatch:
    """Where a quote was found in evidence content."""

    match_type: MatchType
    start_offset: int | None = None
    end_offset: int | None = None

    @property
    def found(self) -> bool:
        return self.match_type != MatchType.NOT_FOUND


@dataclass
class ProvenanceResult:
    """Provenance verdict for one pointer."""

    pointer_id: str
    match: QuoteMatch
    ok: bool
    reason: str | None = None


def find_quote_in_content(quote: str, content: str) -> QuoteMatch:
    """Locate a quote in decoded evidence content."""
    index = content.find(quote)
    if index >= 0:
        return QuoteMatch(MatchType.EXACT, index, index + len(quote))

    index = normalize_quotes(content).find(normalize_quotes(quote))
    if index >= 0:
        return QuoteMatch(MatchType.NORMALIZED, index, index + len(quote))

    normalized_quote = normalize_for_match(quote)
    if normalized_quote and normalized_quote in normalize_for_match(content):
        return QuoteMatch(MatchType.NORMALIZED)

    return QuoteMatch(MatchType.NOT_FOUND)


def verify_offset_invariant(content: str, quote: str, start: int, end: int) -> bool:
    """Offsets must span exactly the quote."""
    return end == start + len(quote) and content[start:end] == quote


class ProvenanceChecker:
    """
    Checks pointer quotes against their evidence.

    Risk tiers listed in ``exact_match_tiers`` accept only an exact match
    with consistent offsets; other tiers also accept a normalized match.
    """

    def __init__(self, store: RuleStore, config: LifecycleSettings | None = None) -> None:
        self.store = store
        self.config = config or LifecycleSettings()

    def requires_exact(self, risk_tier: RiskTier) -> bool:
        return risk_tier.value in self.config.exact_match_tiers

    def check(
        self,
        pointer: SourcePointer,
        evidence: Evidence | None,
        risk_tier: RiskTier,
    ) -> ProvenanceResult:
        """Check one pointer against already-loaded evidence."""
        if evidence is None or evidence.deleted_at is not None:
            return ProvenanceResult(
                pointer_id=pointer.id,
                match=QuoteMatch(MatchType.NOT_FOUND),
                ok=False,
                reason=f"evidence {pointer.evidence_id} missing",
            )

        content = evidence.text
        match = find_quote_in_content(pointer.exact_quote, content)

        if not match.found:
            return ProvenanceResult(pointer.id, match, ok=False, reason="quote not found in evidence")

        if self.requires_exact(risk_tier):
            if match.match_type != MatchType.EXACT:
                return ProvenanceResult(
                    pointer.id,
                    match,
                    ok=False,
                    reason=f"{risk_tier.value} requires an exact quote match",
                )
            if (
                pointer.start_offset is not None
                and pointer.end_offset is not None
                and not verify_offset_invariant(
                    content, pointer.exact_quote, pointer.start_offset, pointer.end_offset
                )
            ):
                return ProvenanceResult(
                    pointer.id, match, ok=False, reason="stored offsets do not span the quote"
                )

        return ProvenanceResult(pointer.id, match, ok=True)

    async def check_pointers(
        self, pointers: list[SourcePointer], risk_tier: RiskTier
    ) -> list[ProvenanceResult]:
        """Load evidence and check every pointer."""
        results = []
        for pointer in pointers:
            evidence = await self.store.get_evidence(pointer.evidence_id)
            result = self.check(pointer, evidence, risk_tier)
            if not result.ok:
                logger.warning(
                    "provenance_check_failed",
                    pointer_id=pointer.id,
                    evidence_id=pointer.evidence_id,
                    match_type=result.match.match_type.value,
                    reason=result.reason,
                )
            results.append(result)
        return results
