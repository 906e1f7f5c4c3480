"""
Test Configuration
==================

Pytest fixtures for Regulatory Truth tests.
"""

import os
from collections.abc import AsyncGenerator, Callable
from datetime import date
from typing import Any

import pytest
import pytest_asyncio
from httpx import ASGITransport, AsyncClient

# Set test environment
os.environ["ENVIRONMENT"] = "testing"
os.environ["STORE_BACKEND"] = "memory"
os.environ["DEBUG"] = "false"

from services.regulatory_truth.audit import StoreAuditSink
from services.regulatory_truth.collaborators import (
    AvailabilityResult,
    ComposerProposal,
    InMemoryRecrawlQueue,
)
from services.regulatory_truth.errors import AvailabilityCheckError
from services.regulatory_truth.models import (
    Evidence,
    RegulatoryRule,
    RegulatorySource,
    RiskTier,
    RuleStatus,
    SourcePointer,
)
from services.regulatory_truth.pipeline import RegulatoryTruthPipeline, build_pipeline
from services.regulatory_truth.store import InMemoryRuleStore
from shared.config import (
    ComposerSettings,
    Settings,
    StalenessSettings,
    StoreBackend,
)


VAT_LAW_HTML = """<html><body>
<h1>Zakon o porezu na dodanu vrijednost</h1>
<p>Članak 38. (1) PDV se obračunava i plaća po stopi od 25% na poreznu osnovicu.</p>
<p>(2) Porezni obveznik mora izdati račun za svaku isporuku dobara.</p>
<p>Članak 38.a Stopa od 13% primjenjuje se od 1.1.2024. na usluge smještaja.</p>
</body></html>"""

VAT_RATE_QUOTE = "PDV se obračunava i plaća po stopi od 25% na poreznu osnovicu."
REDUCED_RATE_QUOTE = "Stopa od 13% primjenjuje se od 1.1.2024. na usluge smještaja."


# ============================================================================
# Fake Collaborators
# ============================================================================


class StaticAgentRunner:
    """AgentRunner returning a fixed proposal and recording its calls."""

    def __init__(self, proposal: ComposerProposal | dict[str, Any] | None = None) -> None:
        self.proposal = proposal
        self.calls: list[list[str]] = []

    async def run_composer(self, pointers: list[SourcePointer]) -> Any:
        self.calls.append([p.id for p in pointers])
        if self.proposal is None:
            raise RuntimeError("agent unavailable")
        return self.proposal


class ScriptedAvailabilityChecker:
    """AvailabilityChecker replaying scripted results, then a default."""

    def __init__(self, *outcomes: AvailabilityResult | Exception) -> None:
        self.outcomes = list(outcomes)
        self.default = AvailabilityResult(ok=True, status_code=200)
        self.urls: list[str] = []

    async def head(self, url: str) -> AvailabilityResult:
        self.urls.append(url)
        outcome = self.outcomes.pop(0) if self.outcomes else self.default
        if isinstance(outcome, Exception):
            raise outcome
        return outcome


def network_down() -> AvailabilityCheckError:
    return AvailabilityCheckError("HEAD failed: ConnectError")


def draft_proposal(**overrides: Any) -> dict[str, Any]:
    """Agent draft for the standard VAT rate."""
    draft = {
        "concept_slug": "pdv-standardna-stopa",
        "value": "25",
        "value_type": "percentage",
        "applies_when": {"op": "true"},
        "title_hr": "Standardna stopa PDV-a",
        "title_en": "Standard VAT rate",
        "explanation_hr": "PDV se plaća po stopi od 25% na poreznu osnovicu.",
        "explanation_en": "VAT is charged at 25% of the tax base.",
        "risk_tier": "T1",
        "confidence": 0.95,
        "effective_from": "2013-01-01",
    }
    draft.update(overrides)
    return {"draft_rule": draft}


# ============================================================================
# Settings and Store
# ============================================================================


@pytest.fixture
def test_settings() -> Settings:
    """Settings without cooldowns or delays."""
    return Settings(
        store_backend=StoreBackend.MEMORY,
        composer=ComposerSettings(batch_cooldown_seconds=0),
        staleness=StalenessSettings(check_delay_seconds=0),
    )


@pytest.fixture
def store() -> InMemoryRuleStore:
    return InMemoryRuleStore()


@pytest.fixture
def audit(store: InMemoryRuleStore) -> StoreAuditSink:
    return StoreAuditSink(store)


@pytest.fixture
def agent() -> StaticAgentRunner:
    return StaticAgentRunner(draft_proposal())


@pytest.fixture
def checker() -> ScriptedAvailabilityChecker:
    return ScriptedAvailabilityChecker()


@pytest.fixture
def recrawl_queue() -> InMemoryRecrawlQueue:
    return InMemoryRecrawlQueue()


@pytest.fixture
def pipeline(
    store: InMemoryRuleStore,
    test_settings: Settings,
    agent: StaticAgentRunner,
    checker: ScriptedAvailabilityChecker,
    recrawl_queue: InMemoryRecrawlQueue,
) -> RegulatoryTruthPipeline:
    return build_pipeline(
        store,
        test_settings,
        agent=agent,
        checker=checker,
        recrawl_queue=recrawl_queue,
    )


# ============================================================================
# Sample Records
# ============================================================================


@pytest_asyncio.fixture
async def law_source(store: InMemoryRuleStore) -> RegulatorySource:
    return await store.add_source(
        RegulatorySource(
            slug="narodne-novine",
            name="Narodne novine",
            url="https://narodne-novine.nn.hr",
            hierarchy=1,
        )
    )


@pytest_asyncio.fixture
async def guidance_source(store: InMemoryRuleStore) -> RegulatorySource:
    return await store.add_source(
        RegulatorySource(
            slug="porezna-uprava",
            name="Porezna uprava",
            url="https://www.porezna-uprava.hr",
            hierarchy=3,
        )
    )


@pytest_asyncio.fixture
async def vat_evidence(store: InMemoryRuleStore, law_source: RegulatorySource) -> Evidence:
    return await store.add_evidence(
        Evidence.create(
            law_source.id,
            "https://narodne-novine.nn.hr/clanci/sluzbeni/2013_06_73_1451.html",
            VAT_LAW_HTML,
        )
    )


@pytest.fixture
def make_pointer(
    store: InMemoryRuleStore,
) -> Callable[..., Any]:
    """Factory adding a source pointer to the store."""

    async def _make(
        evidence: Evidence,
        quote: str = VAT_RATE_QUOTE,
        domain: str = "pdv",
        value: str = "25",
        **kwargs: Any,
    ) -> SourcePointer:
        return await store.add_pointer(
            SourcePointer(
                evidence_id=evidence.id,
                domain=domain,
                value_type=kwargs.pop("value_type", "percentage"),
                extracted_value=value,
                exact_quote=quote,
                confidence=kwargs.pop("confidence", 0.9),
                **kwargs,
            )
        )

    return _make


@pytest_asyncio.fixture
async def vat_pointer(make_pointer: Callable[..., Any], vat_evidence: Evidence) -> SourcePointer:
    return await make_pointer(vat_evidence)


@pytest.fixture
def make_rule(store: InMemoryRuleStore) -> Callable[..., Any]:
    """Factory adding a rule directly to the store."""

    async def _make(pointer: SourcePointer, **overrides: Any) -> RegulatoryRule:
        data: dict[str, Any] = {
            "concept_slug": "pdv-standardna-stopa",
            "title_hr": "Standardna stopa PDV-a",
            "value": "25",
            "value_type": "percentage",
            "effective_from": date(2013, 1, 1),
            "risk_tier": RiskTier.T2,
            "status": RuleStatus.DRAFT,
            "confidence": 0.9,
            "source_pointer_ids": (pointer.id,),
        }
        data.update(overrides)
        return await store.add_rule(RegulatoryRule(**data))

    return _make


# ============================================================================
# SQL Store
# ============================================================================


@pytest_asyncio.fixture
async def sql_session_factory() -> AsyncGenerator[Any, None]:
    """In-memory SQLite database with every rule store table."""
    import services.regulatory_truth.store.tables  # noqa: F401
    from shared.database.postgres import PostgresClient

    PostgresClient.configure("sqlite+aiosqlite://")
    await PostgresClient.create_all()

    yield PostgresClient.get_session_factory()

    await PostgresClient.close()


# ============================================================================
# API Client
# ============================================================================


@pytest_asyncio.fixture
async def regulatory_truth_client(
    pipeline: RegulatoryTruthPipeline,
) -> AsyncGenerator[AsyncClient, None]:
    """Create test client for the Regulatory Truth Service."""
    from services.regulatory_truth.main import app

    app.state.pipeline = pipeline
    async with AsyncClient(
        transport=ASGITransport(app=app),
        base_url="http://test",
    ) as client:
        yield client
    del app.state.pipeline
