"""
Audit Logging
=============

Append-only audit trail of every state-changing action.

Version: 0.1.0
"""

from typing import Any

from services.regulatory_truth.collaborators import AuditSink
from services.regulatory_truth.models import AuditEvent
from services.regulatory_truth.store.base import RuleStore
from shared.logging import get_logger


logger = get_logger(__name__)


class AuditAction:
    """Audit action names."""

    RULE_CREATED = "RULE_CREATED"
    RULE_MERGED = "RULE_MERGED"
    RULE_STATUS_CHANGED = "RULE_STATUS_CHANGED"
    RULE_AUTO_DEPRECATED = "RULE_AUTO_DEPRECATED"
    CONFLICT_CREATED = "CONFLICT_CREATED"
    AMENDMENT_SKIPPED = "AMENDMENT_SKIPPED"
    EVIDENCE_CONTENT_CHANGED = "EVIDENCE_CONTENT_CHANGED"
    EVIDENCE_RECRAWL_REQUESTED = "EVIDENCE_RECRAWL_REQUESTED"


class StoreAuditSink:
    """AuditSink writing to the rule store and the structured log."""

    def __init__(self, store: RuleStore) -> None:
        self.store = store

    async def log(self, event: AuditEvent) -> None:
        await self.store.add_audit_event(event)
        logger.info(
            "audit_event",
            action=event.action,
            entity_type=event.entity_type,
            entity_id=event.entity_id,
        )


async def log_audit_event(
    sink: AuditSink,
    action: str,
    entity_type: str,
    entity_id: str,
    metadata: dict[str, Any] | None = None,
    performed_by: str | None = None,
) -> AuditEvent:
    """Build and record one audit event."""
    event = AuditEvent(
        action=action,
        entity_type=entity_type,
        entity_id=entity_id,
        performed_by=performed_by,
        metadata=metadata or {},
    )
    await sink.log(event)
    return event
