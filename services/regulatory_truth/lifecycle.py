"""
Rule Lifecycle Manager
======================

The single writer of rule status and approval fields.

States: DRAFT -> APPROVED -> PUBLISHED -> DEPRECATED (terminal).
Composers and fetchers only ever create DRAFT rules. Publishing runs a
provenance gate over every pointer of every rule in the batch and is
all-or-nothing.

Version: 0.1.0
"""

from dataclasses import dataclass, field
from datetime import UTC, datetime
from enum import Enum

from services.regulatory_truth.audit import AuditAction, log_audit_event
from services.regulatory_truth.collaborators import AuditSink
from services.regulatory_truth.errors import (
    IllegalTransitionError,
    ProvenanceError,
    RuleNotFoundError,
)
from services.regulatory_truth.models import RegulatoryRule, RuleStatus
from services.regulatory_truth.provenance import ProvenanceChecker
from services.regulatory_truth.store.base import RuleStore
from shared.config import LifecycleSettings
from shared.logging import get_logger


logger = get_logger(__name__)


ALLOWED_TRANSITIONS: dict[RuleStatus, frozenset[RuleStatus]] = {
    RuleStatus.DRAFT: frozenset({RuleStatus.APPROVED, RuleStatus.DEPRECATED}),
    RuleStatus.APPROVED: frozenset({RuleStatus.PUBLISHED, RuleStatus.DEPRECATED}),
    RuleStatus.PUBLISHED: frozenset({RuleStatus.DEPRECATED}),
    RuleStatus.DEPRECATED: frozenset(),
}


class SystemAction(str, Enum):
    """Privileged operations allowed to bypass the forward-only graph."""

    ROLLBACK = "ROLLBACK"


# Transitions reachable only through a system action
SYSTEM_TRANSITIONS: dict[SystemAction, frozenset[tuple[RuleStatus, RuleStatus]]] = {
    SystemAction.ROLLBACK: frozenset({(RuleStatus.PUBLISHED, RuleStatus.APPROVED)}),
}


def is_transition_allowed(
    current: RuleStatus,
    target: RuleStatus,
    system_action: SystemAction | None = None,
) -> bool:
    """
    Check a status change against the lifecycle graph.

    A system action permits only its own listed transitions, never the
    forward graph.
    """
    if system_action is not None:
        return (current, target) in SYSTEM_TRANSITIONS[system_action]
    return target in ALLOWED_TRANSITIONS[current]


@dataclass
class PublishResult:
    """Outcome of a publish batch."""

    published_ids: list[str] = field(default_factory=list)
    pointers_checked: int = 0


class RuleLifecycleManager:
    """Applies lifecycle transitions with audit and provenance checks."""

    def __init__(
        self,
        store: RuleStore,
        audit: AuditSink,
        config: LifecycleSettings | None = None,
        provenance: ProvenanceChecker | None = None,
    ) -> None:
        self.store = store
        self.audit = audit
        self.config = config or LifecycleSettings()
        self.provenance = provenance or ProvenanceChecker(store, self.config)

    async def _load(self, rule_id: str) -> RegulatoryRule:
        rule = await self.store.get_rule(rule_id)
        if rule is None:
            raise RuleNotFoundError(f"Rule {rule_id} not found")
        return rule

    async def _apply(
        self,
        rule: RegulatoryRule,
        target: RuleStatus,
        source: str,
        actor: str | None,
        reason: str | None,
        system_action: SystemAction | None,
        audit_action: str = AuditAction.RULE_STATUS_CHANGED,
        extra_metadata: dict | None = None,
    ) -> RegulatoryRule:
        if not source or not source.strip():
            raise IllegalTransitionError(
                f"Transition of rule {rule.id} to {target.value} requires a source"
            )
        if not is_transition_allowed(rule.status, target, system_action):
            raise IllegalTransitionError(
                f"Rule {rule.id}: {rule.status.value} -> {target.value} is not allowed"
            )

        now = datetime.now(UTC)
        update: dict = {"status": target, "updated_at": now}
        if target == RuleStatus.APPROVED and system_action is None:
            update["approved_by"] = actor
            update["approved_at"] = now

        updated = await self.store.update_rule(rule.model_copy(update=update))

        metadata = {
            "previous_status": rule.status.value,
            "new_status": target.value,
            "source": source,
        }
        if reason:
            metadata["reason"] = reason
        if system_action is not None:
            metadata["system_action"] = system_action.value
        if extra_metadata:
            metadata.update(extra_metadata)
        await log_audit_event(
            self.audit,
            audit_action,
            "RULE",
            rule.id,
            metadata,
            performed_by=actor,
        )

        logger.info(
            "rule_status_changed",
            rule_id=rule.id,
            concept_slug=rule.concept_slug,
            previous_status=rule.status.value,
            new_status=target.value,
            source=source,
        )
        return updated

    async def transition(
        self,
        rule_id: str,
        target: RuleStatus,
        source: str,
        actor: str | None = None,
        reason: str | None = None,
        system_action: SystemAction | None = None,
        audit_action: str = AuditAction.RULE_STATUS_CHANGED,
        extra_metadata: dict | None = None,
    ) -> RegulatoryRule:
        """
        Move one rule to a new status.

        Args:
            rule_id: Rule to transition
            target: Requested status
            source: Caller identifier recorded in the audit trail
            actor: Human or service performing the change
            reason: Free-text justification
            system_action: Privileged action enabling non-forward transitions
            audit_action: Action recorded for the status change
            extra_metadata: Additional audit metadata

        Returns:
            The updated rule

        Raises:
            RuleNotFoundError: unknown rule
            IllegalTransitionError: transition not in the lifecycle graph
            ProvenanceError: publishing a rule whose quotes cannot be traced
        """
        if target == RuleStatus.PUBLISHED:
            if system_action is not None:
                raise IllegalTransitionError(
                    f"Rule {rule_id}: {system_action.value} cannot publish; use publish_rules"
                )
            result = await self.publish_rules([rule_id], source=source, actor=actor)
            return await self._load(result.published_ids[0])

        async with self.store.transaction():
            rule = await self._load(rule_id)
            return await self._apply(
                rule,
                target,
                source,
                actor,
                reason,
                system_action,
                audit_action=audit_action,
                extra_metadata=extra_metadata,
            )

    async def approve(
        self, rule_id: str, approved_by: str, source: str = "api"
    ) -> RegulatoryRule:
        return await self.transition(
            rule_id, RuleStatus.APPROVED, source=source, actor=approved_by
        )

    async def publish_rules(
        self,
        rule_ids: list[str],
        source: str,
        actor: str | None = None,
    ) -> PublishResult:
        """
        Publish APPROVED rules after the provenance gate.

        Every pointer of every rule must be found in its evidence; risk
        tiers configured as exact-match require a verbatim match. Match
        types and offsets found by the gate are stored on the pointers.
        Any failure rolls back the whole batch.
        """
        result = PublishResult()
        async with self.store.transaction():
            for rule_id in dict.fromkeys(rule_ids):
                rule = await self._load(rule_id)
                if not is_transition_allowed(rule.status, RuleStatus.PUBLISHED):
                    raise IllegalTransitionError(
                        f"Rule {rule.id}: {rule.status.value} -> PUBLISHED is not allowed"
                    )

                pointers = await self.store.get_pointers(rule.source_pointer_ids)
                missing = set(rule.source_pointer_ids) - {p.id for p in pointers}
                if not pointers or missing:
                    raise ProvenanceError(
                        f"Rule {rule.id} references missing source pointers",
                        sorted(missing),
                    )

                checks = await self.provenance.check_pointers(pointers, rule.risk_tier)
                failed = [c for c in checks if not c.ok]
                if failed:
                    raise ProvenanceError(
                        f"Rule {rule.id} failed provenance: "
                        + "; ".join(f"{c.pointer_id}: {c.reason}" for c in failed),
                        [c.pointer_id for c in failed],
                    )

                for pointer, check in zip(pointers, checks, strict=True):
                    update: dict = {"match_type": check.match.match_type}
                    if check.match.start_offset is not None:
                        update["start_offset"] = check.match.start_offset
                        update["end_offset"] = check.match.end_offset
                    await self.store.update_pointer(pointer.model_copy(update=update))
                result.pointers_checked += len(checks)

                await self._apply(rule, RuleStatus.PUBLISHED, source, actor, None, None)
                result.published_ids.append(rule.id)

        logger.info(
            "rules_published",
            count=len(result.published_ids),
            pointers_checked=result.pointers_checked,
        )
        return result

    async def deprecate(
        self,
        rule_id: str,
        reason: str,
        source: str = "api",
        actor: str | None = None,
        audit_action: str = AuditAction.RULE_STATUS_CHANGED,
        extra_metadata: dict | None = None,
    ) -> RegulatoryRule:
        return await self.transition(
            rule_id,
            RuleStatus.DEPRECATED,
            source=source,
            actor=actor,
            reason=reason,
            audit_action=audit_action,
            extra_metadata=extra_metadata,
        )

    async def revert_to_approved(
        self,
        rule_id: str,
        reason: str,
        source: str = "rollback",
        actor: str | None = None,
    ) -> RegulatoryRule:
        """Roll a PUBLISHED rule back to APPROVED."""
        return await self.transition(
            rule_id,
            RuleStatus.APPROVED,
            source=source,
            actor=actor,
            reason=reason,
            system_action=SystemAction.ROLLBACK,
        )
