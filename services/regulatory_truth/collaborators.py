"""
External Collaborators
======================

Interfaces to the systems the pipeline consumes but does not own:
- AgentRunner: LLM call proposing a draft rule (untrusted output)
- AvailabilityChecker: HEAD request against an evidence URL
- AuditSink: append-only audit log
- RecrawlQueue: hand-off of stale evidence to the fetchers

Version: 0.1.0
"""

from dataclasses import dataclass
from datetime import date, datetime
from email.utils import parsedate_to_datetime
from typing import Any, Protocol

import httpx
from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator
from tenacity import (
    AsyncRetrying,
    retry_if_exception_type,
    stop_after_attempt,
    wait_exponential,
)

from services.regulatory_truth.errors import AvailabilityCheckError
from services.regulatory_truth.models import AuditEvent, Evidence, RiskTier, SourcePointer
from shared.config import HttpSettings
from shared.logging import get_logger


logger = get_logger(__name__)


# =============================================================================
# Agent Runner
# =============================================================================


class DraftRuleProposal(BaseModel):
    """Draft rule as proposed by the composer agent."""

    model_config = ConfigDict(extra="ignore")

    concept_slug: str = Field(..., min_length=1)
    value: str
    value_type: str = Field(..., min_length=1)
    # Left raw here; parsed fail-closed by the DSL validator
    applies_when: Any = None
    title_hr: str = Field(..., min_length=1)
    title_en: str | None = None
    explanation_hr: str | None = None
    explanation_en: str | None = None
    risk_tier: RiskTier = RiskTier.T2
    confidence: float = Field(default=0.5, ge=0.0, le=1.0)
    effective_from: date
    effective_until: date | None = None
    supersedes: str | None = None
    composer_notes: str | None = None
    # Echoed by some agents; never trusted for linking
    source_pointer_ids: list[str] = Field(default_factory=list)

    @field_validator("value", mode="before")
    @classmethod
    def _stringify_value(cls, v: Any) -> Any:
        if isinstance(v, bool):
            return "true" if v else "false"
        if isinstance(v, int | float):
            return str(v)
        return v


class ConflictReport(BaseModel):
    """Conflict the agent detected between the supplied pointers."""

    model_config = ConfigDict(extra="allow")

    description: str = "Conflicting values between sources"
    conflicting_pointer_ids: list[str] = Field(default_factory=list)


class ComposerProposal(BaseModel):
    """Agent output: exactly one of a draft rule or a conflict report."""

    draft_rule: DraftRuleProposal | None = None
    conflicts_detected: ConflictReport | None = None

    @model_validator(mode="after")
    def _require_outcome(self) -> "ComposerProposal":
        if self.draft_rule is None and self.conflicts_detected is None:
            raise ValueError("proposal has neither draft_rule nor conflicts_detected")
        return self


class AgentRunner(Protocol):
    """LLM collaborator proposing a draft rule for a set of pointers."""

    async def run_composer(
        self, pointers: list[SourcePointer]
    ) -> ComposerProposal | dict[str, Any]: ...


# =============================================================================
# Availability Checker
# =============================================================================


@dataclass
class AvailabilityResult:
    """Outcome of one HEAD request."""

    ok: bool
    status_code: int | None = None
    etag: str | None = None
    last_modified: datetime | None = None


class AvailabilityChecker(Protocol):
    """Network collaborator: raises AvailabilityCheckError on network failure."""

    async def head(self, url: str) -> AvailabilityResult: ...


def _parse_http_date(value: str | None) -> datetime | None:
    if not value:
        return None
    try:
        return parsedate_to_datetime(value)
    except (TypeError, ValueError):
        return None


class HttpAvailabilityChecker:
    """AvailabilityChecker over httpx with transport-level retries."""

    def __init__(
        self,
        config: HttpSettings | None = None,
        client: httpx.AsyncClient | None = None,
    ) -> None:
        self.config = config or HttpSettings()
        self._client = client

    async def _get_client(self) -> httpx.AsyncClient:
        """Get or create HTTP client."""
        if self._client is None:
            self._client = httpx.AsyncClient(
                timeout=httpx.Timeout(
                    connect=self.config.connect_timeout,
                    read=self.config.read_timeout,
                    write=30.0,
                    pool=30.0,
                ),
                headers={"User-Agent": self.config.user_agent},
                follow_redirects=True,
            )
        return self._client

    async def close(self) -> None:
        """Close the HTTP client."""
        if self._client:
            await self._client.aclose()
            self._client = None

    async def head(self, url: str) -> AvailabilityResult:
        client = await self._get_client()
        try:
            async for attempt in AsyncRetrying(
                retry=retry_if_exception_type(httpx.TransportError),
                stop=stop_after_attempt(self.config.max_retries + 1),
                wait=wait_exponential(multiplier=0.5, min=0.5, max=5),
                before_sleep=lambda retry_state: logger.warning(
                    "availability_check_retry",
                    url=url,
                    attempt=retry_state.attempt_number,
                ),
                reraise=True,
            ):
                with attempt:
                    response = await client.head(url)
        except httpx.HTTPError as e:
            raise AvailabilityCheckError(f"HEAD {url} failed: {type(e).__name__}: {e}") from e

        return AvailabilityResult(
            ok=response.is_success,
            status_code=response.status_code,
            etag=response.headers.get("etag"),
            last_modified=_parse_http_date(response.headers.get("last-modified")),
        )


# =============================================================================
# Audit Sink and Recrawl Queue
# =============================================================================


class AuditSink(Protocol):
    """Append-only audit log."""

    async def log(self, event: AuditEvent) -> None: ...


class RecrawlQueue(Protocol):
    """Hands stale evidence back to the fetchers."""

    async def enqueue(self, evidence: Evidence) -> None: ...


class InMemoryRecrawlQueue:
    """RecrawlQueue collecting evidence ids for a caller to drain."""

    def __init__(self) -> None:
        self.evidence_ids: list[str] = []

    async def enqueue(self, evidence: Evidence) -> None:
        if evidence.id not in self.evidence_ids:
            self.evidence_ids.append(evidence.id)
            logger.info("evidence_recrawl_queued", evidence_id=evidence.id, url=evidence.url)

    def drain(self) -> list[str]:
        drained, self.evidence_ids = self.evidence_ids, []
        return drained
