"""
Regulatory Truth Errors
=======================

Error classification for the pipeline. Errors carry a kind and a reason
only; logging happens where they are handled.

Version: 0.1.0
"""

from enum import Enum


class ErrorKind(str, Enum):
    """How a caller should treat a failure."""

    HARD_REJECT = "hard_reject"  # fail closed, nothing persisted
    SOFT_FALLBACK = "soft_fallback"  # degrade and continue
    DEFERRED = "deferred"  # recorded for human triage
    SKIP = "skip"  # drop the single item, keep the operation
    TRANSIENT = "transient"  # retry later
    PERMANENT = "permanent"  # retrying will not help


class RegulatoryTruthError(Exception):
    """Base error for the regulatory truth pipeline."""

    kind: ErrorKind = ErrorKind.PERMANENT

    def __init__(self, reason: str) -> None:
        super().__init__(reason)
        self.reason = reason


class CompositionRejectedError(RegulatoryTruthError):
    """Composer input refused before anything was written."""

    kind = ErrorKind.HARD_REJECT


class AppliesWhenError(RegulatoryTruthError):
    """Malformed or unparseable applicability condition."""

    kind = ErrorKind.HARD_REJECT


class EvidenceIntegrityError(RegulatoryTruthError):
    """Stored content hash does not match the raw content."""

    kind = ErrorKind.HARD_REJECT


class ProvenanceError(RegulatoryTruthError):
    """A quote could not be traced to its evidence."""

    kind = ErrorKind.HARD_REJECT

    def __init__(self, reason: str, pointer_ids: list[str] | None = None) -> None:
        super().__init__(reason)
        self.pointer_ids = pointer_ids or []


class ExplanationError(RegulatoryTruthError):
    """Generated explanation is not traceable to its quotes."""

    kind = ErrorKind.SOFT_FALLBACK


class CycleDetectedError(RegulatoryTruthError):
    """Adding an edge would close a cycle in the amendment graph."""

    kind = ErrorKind.SKIP

    def __init__(
        self,
        from_id: str,
        to_id: str,
        relation: str,
        path: list[str],
    ) -> None:
        super().__init__(
            f"Edge {from_id} -[{relation}]-> {to_id} would create a cycle: "
            + " -> ".join(path)
        )
        self.from_id = from_id
        self.to_id = to_id
        self.relation = relation
        self.path = path


class AvailabilityCheckError(RegulatoryTruthError):
    """Network failure while re-verifying evidence."""

    kind = ErrorKind.TRANSIENT


class IllegalTransitionError(RegulatoryTruthError):
    """Requested lifecycle transition is not allowed."""

    kind = ErrorKind.PERMANENT


class RuleNotFoundError(RegulatoryTruthError):
    """Referenced record does not exist."""

    kind = ErrorKind.PERMANENT


class DuplicateRuleError(RegulatoryTruthError):
    """Store uniqueness constraint rejected a write."""

    kind = ErrorKind.PERMANENT


def is_retryable(error: BaseException) -> bool:
    """Check whether an error is worth retrying."""
    return isinstance(error, RegulatoryTruthError) and error.kind == ErrorKind.TRANSIENT
