"""
Pipeline Wiring
===============

Builds the pipeline services around one rule store. Collaborators are
passed in explicitly; the caller owns their lifecycle.

Version: 0.1.0
"""

from dataclasses import dataclass

from services.regulatory_truth.audit import StoreAuditSink
from services.regulatory_truth.collaborators import (
    AgentRunner,
    AuditSink,
    AvailabilityChecker,
    HttpAvailabilityChecker,
    InMemoryRecrawlQueue,
    RecrawlQueue,
)
from services.regulatory_truth.composer import RuleComposer
from services.regulatory_truth.lifecycle import RuleLifecycleManager
from services.regulatory_truth.staleness import EvidenceStalenessService
from services.regulatory_truth.store.base import RuleStore
from shared.config import Settings, get_settings


@dataclass
class RegulatoryTruthPipeline:
    """Services sharing one store and audit sink."""

    store: RuleStore
    audit: AuditSink
    composer: RuleComposer
    lifecycle: RuleLifecycleManager
    staleness: EvidenceStalenessService
    checker: AvailabilityChecker
    recrawl_queue: RecrawlQueue

    async def close(self) -> None:
        if isinstance(self.checker, HttpAvailabilityChecker):
            await self.checker.close()


def build_pipeline(
    store: RuleStore,
    settings: Settings | None = None,
    agent: AgentRunner | None = None,
    checker: AvailabilityChecker | None = None,
    recrawl_queue: RecrawlQueue | None = None,
    audit: AuditSink | None = None,
) -> RegulatoryTruthPipeline:
    """
    Wire the pipeline services.

    Args:
        store: Rule store shared by every service
        settings: Configuration, defaults to the cached settings
        agent: LLM collaborator; compose then needs an explicit proposal when None
        checker: Availability checker, defaults to the httpx implementation
        recrawl_queue: Hand-off for stale evidence
        audit: Audit sink, defaults to writing into the store
    """
    settings = settings or get_settings()
    audit = audit or StoreAuditSink(store)
    checker = checker or HttpAvailabilityChecker(settings.http)
    recrawl_queue = recrawl_queue or InMemoryRecrawlQueue()

    lifecycle = RuleLifecycleManager(store, audit, settings.lifecycle)
    return RegulatoryTruthPipeline(
        store=store,
        audit=audit,
        composer=RuleComposer(store, audit, agent, settings.composer),
        lifecycle=lifecycle,
        staleness=EvidenceStalenessService(
            store,
            checker,
            audit,
            lifecycle,
            settings.staleness,
            recrawl_queue,
        ),
        checker=checker,
        recrawl_queue=recrawl_queue,
    )
