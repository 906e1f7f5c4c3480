"""
Evidence Staleness Service
==========================

Re-verifies evidence URLs and tracks how overdue verification is.

Staleness bands relative to a per-hierarchy threshold:
- FRESH: days since verification <= 0.5 x threshold
- AGING: <= threshold
- STALE: <= 2 x threshold, or whenever a content change was detected
- EXPIRED: beyond 2 x threshold

Failed availability checks use a grace period: the record is UNAVAILABLE
until ``max_consecutive_failures`` failures in a row flip it to EXPIRED.
``last_verified_at`` only advances on success, so UNAVAILABLE records are
retried on the shorter schedule.

Version: 0.1.0
"""

import asyncio
import math
from dataclasses import dataclass
from datetime import UTC, date, datetime, timedelta

from services.regulatory_truth.audit import AuditAction, log_audit_event
from services.regulatory_truth.collaborators import (
    AuditSink,
    AvailabilityChecker,
    AvailabilityResult,
    RecrawlQueue,
)
from services.regulatory_truth.errors import (
    AvailabilityCheckError,
    RegulatoryTruthError,
    RuleNotFoundError,
)
from services.regulatory_truth.lifecycle import RuleLifecycleManager
from services.regulatory_truth.models import (
    Evidence,
    RegulatoryRule,
    RuleStatus,
    StalenessStatus,
)
from services.regulatory_truth.store.base import RuleStore
from shared.config import StalenessSettings
from shared.logging import get_logger, log_context


logger = get_logger(__name__)


# (maximum age in days, decay) pairs, checked in order
CONFIDENCE_DECAY_STEPS: list[tuple[int, float]] = [
    (90, 0.0),
    (180, 0.05),
    (365, 0.10),
    (730, 0.20),
]
MAX_CONFIDENCE_DECAY = 0.30


def threshold_for_hierarchy(
    hierarchy: int | None, config: StalenessSettings | None = None
) -> int:
    """Staleness threshold in days for a source hierarchy."""
    config = config or StalenessSettings()
    if hierarchy is None:
        return config.default_threshold_days
    return config.thresholds_by_hierarchy.get(hierarchy, config.default_threshold_days)


def calculate_staleness_status(
    days_since_verification: float,
    threshold_days: int,
    has_changed: bool = False,
) -> StalenessStatus:
    """Map verification age to a staleness band."""
    if has_changed:
        return StalenessStatus.STALE
    if days_since_verification <= threshold_days * 0.5:
        return StalenessStatus.FRESH
    if days_since_verification <= threshold_days:
        return StalenessStatus.AGING
    if days_since_verification <= threshold_days * 2:
        return StalenessStatus.STALE
    return StalenessStatus.EXPIRED


def days_between(earlier: datetime, later: datetime) -> int:
    """Whole days elapsed, rounded down."""
    return math.floor((later - earlier).total_seconds() / 86400)


def confidence_decay(effective_from: date, now: date | datetime | None = None) -> float:
    """
    Confidence penalty for a rule by age since it took effect.

    0 under three months, then 0.05, 0.10 and 0.20 up to two years,
    capped at 0.30 beyond that.
    """
    today = now or datetime.now(UTC)
    if isinstance(today, datetime):
        today = today.date()
    age_days = (today - effective_from).days
    for max_age, decay in CONFIDENCE_DECAY_STEPS:
        if age_days < max_age:
            return decay
    return MAX_CONFIDENCE_DECAY


def effective_confidence(rule: RegulatoryRule, now: date | datetime | None = None) -> float:
    return max(0.0, round(rule.confidence - confidence_decay(rule.effective_from, now), 4))


@dataclass
class StalenessCheck:
    """Result of checking one evidence record."""

    evidence_id: str
    url: str
    previous_status: StalenessStatus
    status: StalenessStatus
    is_available: bool
    content_changed: bool
    stale_days: int
    threshold_days: int
    consecutive_failures: int
    error: str | None = None


@dataclass
class StalenessBatchResult:
    """Summary of a batch verification run."""

    checked: int = 0
    fresh: int = 0
    aging: int = 0
    stale: int = 0
    unavailable: int = 0
    expired: int = 0
    changed: int = 0
    errors: int = 0


@dataclass
class DeprecationResult:
    deprecated_ids: list[str]
    failed_ids: list[str]


def _content_changed(evidence: Evidence, result: AvailabilityResult) -> bool:
    if result.etag and evidence.source_etag and result.etag != evidence.source_etag:
        return True
    if result.last_modified and evidence.source_last_mod:
        return result.last_modified > evidence.source_last_mod
    return False


class EvidenceStalenessService:
    """Schedules and applies evidence re-verification."""

    def __init__(
        self,
        store: RuleStore,
        checker: AvailabilityChecker,
        audit: AuditSink,
        lifecycle: RuleLifecycleManager,
        config: StalenessSettings | None = None,
        recrawl_queue: RecrawlQueue | None = None,
    ) -> None:
        self.store = store
        self.checker = checker
        self.audit = audit
        self.lifecycle = lifecycle
        self.config = config or StalenessSettings()
        self.recrawl_queue = recrawl_queue

    # =========================================================================
    # Verification
    # =========================================================================

    async def check_evidence(
        self, evidence_id: str, now: datetime | None = None
    ) -> StalenessCheck:
        """
        Verify one evidence record and persist the outcome.

        Raises:
            RuleNotFoundError: unknown evidence id
        """
        now = now or datetime.now(UTC)
        evidence = await self.store.get_evidence(evidence_id)
        if evidence is None:
            raise RuleNotFoundError(f"Evidence {evidence_id} not found")

        source = await self.store.get_source(evidence.source_id)
        threshold = threshold_for_hierarchy(source.hierarchy if source else None, self.config)
        last_verified = evidence.last_verified_at or evidence.fetched_at
        stale_days = days_between(last_verified, now)

        error: str | None = None
        result: AvailabilityResult | None = None
        try:
            result = await self.checker.head(evidence.url)
            if not result.ok:
                error = f"HTTP {result.status_code}"
        except AvailabilityCheckError as e:
            error = e.reason

        if error is not None:
            failures = evidence.consecutive_failures + 1
            status = (
                StalenessStatus.EXPIRED
                if failures >= self.config.max_consecutive_failures
                else StalenessStatus.UNAVAILABLE
            )
            await self.store.update_evidence(
                evidence.model_copy(
                    update={"staleness_status": status, "consecutive_failures": failures}
                )
            )
            logger.warning(
                "evidence_check_failed",
                evidence_id=evidence.id,
                url=evidence.url,
                consecutive_failures=failures,
                status=status.value,
                error=error,
            )
            return StalenessCheck(
                evidence_id=evidence.id,
                url=evidence.url,
                previous_status=evidence.staleness_status,
                status=status,
                is_available=False,
                content_changed=False,
                stale_days=stale_days,
                threshold_days=threshold,
                consecutive_failures=failures,
                error=error,
            )

        changed = _content_changed(evidence, result)
        status = calculate_staleness_status(stale_days, threshold, changed)
        await self.store.update_evidence(
            evidence.model_copy(
                update={
                    "staleness_status": status,
                    "consecutive_failures": 0,
                    "has_changed": evidence.has_changed or changed,
                    "last_verified_at": now,
                    "source_etag": result.etag or evidence.source_etag,
                    "source_last_mod": result.last_modified or evidence.source_last_mod,
                    "verify_count": evidence.verify_count + 1,
                }
            )
        )

        if changed:
            await log_audit_event(
                self.audit,
                AuditAction.EVIDENCE_CONTENT_CHANGED,
                "EVIDENCE",
                evidence.id,
                {
                    "url": evidence.url,
                    "previous_etag": evidence.source_etag,
                    "new_etag": result.etag,
                },
            )

        return StalenessCheck(
            evidence_id=evidence.id,
            url=evidence.url,
            previous_status=evidence.staleness_status,
            status=status,
            is_available=True,
            content_changed=changed,
            stale_days=stale_days,
            threshold_days=threshold,
            consecutive_failures=0,
        )

    def _is_due(self, evidence: Evidence, now: datetime) -> bool:
        if evidence.last_verified_at is None:
            return True
        hours = (
            self.config.unavailable_retry_hours
            if evidence.staleness_status == StalenessStatus.UNAVAILABLE
            else self.config.normal_retry_hours
        )
        return evidence.last_verified_at < now - timedelta(hours=hours)

    async def due_evidence(
        self, limit: int | None = None, now: datetime | None = None
    ) -> list[Evidence]:
        """Evidence due for verification, never-verified and oldest first."""
        now = now or datetime.now(UTC)
        due = [e for e in await self.store.list_evidence() if self._is_due(e, now)]
        due.sort(
            key=lambda e: (
                e.last_verified_at is not None,
                e.last_verified_at or datetime.min.replace(tzinfo=UTC),
            )
        )
        return due[: limit or self.config.batch_limit]

    async def check_all_evidence(
        self, limit: int | None = None, now: datetime | None = None
    ) -> StalenessBatchResult:
        """Verify due evidence one record at a time."""
        summary = StalenessBatchResult()
        batch = await self.due_evidence(limit, now)
        logger.info("staleness_check_started", due=len(batch))

        for index, evidence in enumerate(batch):
            if index > 0 and self.config.check_delay_seconds > 0:
                await asyncio.sleep(self.config.check_delay_seconds)
            with log_context(batch="staleness", evidence_id=evidence.id):
                try:
                    check = await self.check_evidence(evidence.id, now)
                except RegulatoryTruthError as e:
                    summary.errors += 1
                    logger.error("staleness_check_error", error=e.reason)
                    continue

            summary.checked += 1
            if check.content_changed:
                summary.changed += 1
            if check.status == StalenessStatus.FRESH:
                summary.fresh += 1
            elif check.status == StalenessStatus.AGING:
                summary.aging += 1
            elif check.status == StalenessStatus.STALE:
                summary.stale += 1
            elif check.status == StalenessStatus.UNAVAILABLE:
                summary.unavailable += 1
            elif check.status == StalenessStatus.EXPIRED:
                summary.expired += 1

        logger.info(
            "staleness_check_completed",
            checked=summary.checked,
            stale=summary.stale,
            unavailable=summary.unavailable,
            expired=summary.expired,
            errors=summary.errors,
        )
        return summary

    # =========================================================================
    # Rules and recrawl
    # =========================================================================

    async def deprecate_expired_rules(self, today: date | None = None) -> DeprecationResult:
        """Deprecate PUBLISHED rules whose effective window has ended."""
        today = today or datetime.now(UTC).date()
        result = DeprecationResult(deprecated_ids=[], failed_ids=[])

        for rule in await self.store.list_rules(statuses=[RuleStatus.PUBLISHED]):
            if rule.effective_until is None or rule.effective_until > today:
                continue
            try:
                await self.lifecycle.deprecate(
                    rule.id,
                    reason="Past effectiveUntil date",
                    source="staleness-service",
                    audit_action=AuditAction.RULE_AUTO_DEPRECATED,
                    extra_metadata={
                        "concept_slug": rule.concept_slug,
                        "effective_until": rule.effective_until.isoformat(),
                    },
                )
            except RegulatoryTruthError as e:
                logger.error("rule_auto_deprecation_failed", rule_id=rule.id, error=e.reason)
                result.failed_ids.append(rule.id)
                continue
            result.deprecated_ids.append(rule.id)

        if result.deprecated_ids:
            logger.info("expired_rules_deprecated", count=len(result.deprecated_ids))
        return result

    async def stale_evidence_for_recrawl(self, limit: int | None = None) -> list[str]:
        """Queue STALE, EXPIRED or changed evidence for a fresh fetch."""
        if self.recrawl_queue is None:
            raise RuntimeError("No recrawl queue configured")

        candidates = [
            e
            for e in await self.store.list_evidence()
            if e.staleness_status != StalenessStatus.UNAVAILABLE
            and (
                e.has_changed
                or e.staleness_status in (StalenessStatus.STALE, StalenessStatus.EXPIRED)
            )
        ]
        queued = []
        for evidence in candidates[: limit or self.config.recrawl_limit]:
            await self.recrawl_queue.enqueue(evidence)
            await self.store.update_evidence(evidence.model_copy(update={"has_changed": False}))
            await log_audit_event(
                self.audit,
                AuditAction.EVIDENCE_RECRAWL_REQUESTED,
                "EVIDENCE",
                evidence.id,
                {"url": evidence.url, "status": evidence.staleness_status.value},
            )
            queued.append(evidence.id)
        return queued

    async def staleness_stats(self) -> dict[str, int]:
        evidence = await self.store.list_evidence()
        stats = {
            "total": len(evidence),
            "never_verified": sum(1 for e in evidence if e.last_verified_at is None),
            "changed": sum(1 for e in evidence if e.has_changed),
        }
        for status in StalenessStatus:
            stats[status.value.lower()] = sum(1 for e in evidence if e.staleness_status == status)
        return stats
