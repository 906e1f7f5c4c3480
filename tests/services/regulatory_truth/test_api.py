"""
Tests for the Regulatory Truth Service API
==========================================

Tests for health, rule lifecycle, conflicts, staleness and release
endpoints.

Version: 0.1.0
"""

from datetime import date
from typing import Any

import pytest
from httpx import AsyncClient

from services.regulatory_truth.models import (
    ConflictType,
    RegulatoryConflict,
    RuleStatus,
    SourcePointer,
)
from services.regulatory_truth.release import compute_release_hash
from services.regulatory_truth.store import InMemoryRuleStore
from tests.conftest import draft_proposal


# ============================================================================
# Health Check Tests
# ============================================================================


class TestHealthEndpoints:
    """Tests for health check endpoints."""

    @pytest.mark.asyncio
    async def test_health_check(self, regulatory_truth_client: AsyncClient) -> None:
        response = await regulatory_truth_client.get("/health")

        assert response.status_code == 200
        data = response.json()
        assert data["status"] == "healthy"
        assert data["service"] == "regulatory-truth"
        assert data["components"]["store"]["backend"] == "memory"

    @pytest.mark.asyncio
    async def test_root_endpoint(self, regulatory_truth_client: AsyncClient) -> None:
        response = await regulatory_truth_client.get("/")

        assert response.status_code == 200
        assert response.json()["service"] == "Regulatory Truth Service"


# ============================================================================
# Rule Endpoint Tests
# ============================================================================


class TestRuleEndpoints:
    """Tests for compose and lifecycle endpoints."""

    @pytest.mark.asyncio
    async def test_compose_approve_publish_flow(
        self,
        regulatory_truth_client: AsyncClient,
        vat_pointer: SourcePointer,
    ) -> None:
        compose = await regulatory_truth_client.post(
            "/api/v1/rules/compose",
            json={"source_pointer_ids": [vat_pointer.id]},
        )
        assert compose.status_code == 200
        rule_id = compose.json()["rule_id"]

        approve = await regulatory_truth_client.post(
            f"/api/v1/rules/{rule_id}/approve",
            json={"approved_by": "reviewer@example.hr"},
        )
        assert approve.status_code == 200
        assert approve.json()["status"] == "APPROVED"

        publish = await regulatory_truth_client.post(
            "/api/v1/rules/publish",
            json={"rule_ids": [rule_id], "source": "release-2025-01"},
        )
        assert publish.status_code == 200
        assert publish.json() == {"published_ids": [rule_id], "pointers_checked": 1}

        listed = await regulatory_truth_client.get(
            "/api/v1/rules", params={"status": "PUBLISHED"}
        )
        [rule] = listed.json()
        assert rule["id"] == rule_id
        assert rule["applies_when"] == {"op": "true"}
        assert rule["effective_confidence"] <= rule["confidence"]

    @pytest.mark.asyncio
    async def test_compose_invalid_applies_when_is_422(
        self,
        regulatory_truth_client: AsyncClient,
        store: InMemoryRuleStore,
        vat_pointer: SourcePointer,
    ) -> None:
        response = await regulatory_truth_client.post(
            "/api/v1/rules/compose",
            json={
                "source_pointer_ids": [vat_pointer.id],
                "proposal": draft_proposal(applies_when={"op": "maybe"}),
            },
        )

        assert response.status_code == 422
        assert response.json()["success"] is False
        assert await store.list_rules() == []

    @pytest.mark.asyncio
    async def test_compose_without_pointers_is_422(
        self, regulatory_truth_client: AsyncClient
    ) -> None:
        response = await regulatory_truth_client.post(
            "/api/v1/rules/compose", json={"source_pointer_ids": []}
        )
        assert response.status_code == 422

    @pytest.mark.asyncio
    async def test_compose_conflict_returns_conflict_id(
        self,
        regulatory_truth_client: AsyncClient,
        vat_pointer: SourcePointer,
    ) -> None:
        response = await regulatory_truth_client.post(
            "/api/v1/rules/compose",
            json={
                "source_pointer_ids": [vat_pointer.id],
                "proposal": {"conflicts_detected": {"description": "Rates disagree"}},
            },
        )

        assert response.status_code == 200
        data = response.json()
        assert data["success"] is False
        assert data["conflict_id"]

        conflicts = await regulatory_truth_client.get("/api/v1/conflicts")
        [conflict] = conflicts.json()
        assert conflict["id"] == data["conflict_id"]
        assert conflict["conflict_type"] == "SOURCE_CONFLICT"

    @pytest.mark.asyncio
    async def test_get_missing_rule_is_404(self, regulatory_truth_client: AsyncClient) -> None:
        response = await regulatory_truth_client.get("/api/v1/rules/rule-missing")

        assert response.status_code == 404
        assert response.json()["success"] is False

    @pytest.mark.asyncio
    async def test_approve_missing_rule_is_404(
        self, regulatory_truth_client: AsyncClient
    ) -> None:
        response = await regulatory_truth_client.post(
            "/api/v1/rules/rule-missing/approve", json={"approved_by": "reviewer"}
        )
        assert response.status_code == 404

    @pytest.mark.asyncio
    async def test_illegal_transition_is_409(
        self,
        regulatory_truth_client: AsyncClient,
        vat_pointer: SourcePointer,
        make_rule: Any,
    ) -> None:
        rule = await make_rule(vat_pointer)

        response = await regulatory_truth_client.post(
            "/api/v1/rules/publish", json={"rule_ids": [rule.id], "source": "api"}
        )

        assert response.status_code == 409
        assert response.json()["error_kind"] == "permanent"

    @pytest.mark.asyncio
    async def test_failed_provenance_is_422(
        self,
        regulatory_truth_client: AsyncClient,
        vat_evidence: Any,
        make_pointer: Any,
        make_rule: Any,
    ) -> None:
        invented = await make_pointer(vat_evidence, quote="PDV iznosi 25% za sve.")
        rule = await make_rule(invented, status=RuleStatus.APPROVED)

        response = await regulatory_truth_client.post(
            "/api/v1/rules/publish", json={"rule_ids": [rule.id], "source": "api"}
        )

        assert response.status_code == 422
        assert response.json()["error_kind"] == "hard_reject"

    @pytest.mark.asyncio
    async def test_deprecate(
        self,
        regulatory_truth_client: AsyncClient,
        vat_pointer: SourcePointer,
        make_rule: Any,
    ) -> None:
        rule = await make_rule(vat_pointer, status=RuleStatus.PUBLISHED)

        response = await regulatory_truth_client.post(
            f"/api/v1/rules/{rule.id}/deprecate", json={"reason": "Superseded"}
        )

        assert response.status_code == 200
        assert response.json()["status"] == "DEPRECATED"


# ============================================================================
# Conflict, Staleness and Release Endpoint Tests
# ============================================================================


class TestConflictEndpoints:
    """Tests for conflict listing."""

    @pytest.mark.asyncio
    async def test_status_filter(
        self, regulatory_truth_client: AsyncClient, store: InMemoryRuleStore
    ) -> None:
        await store.add_conflict(
            RegulatoryConflict(
                conflict_type=ConflictType.SCOPE_CONFLICT,
                item_a_id="rule-a",
                item_b_id="rule-b",
                description="alias duplicate",
            )
        )

        open_conflicts = await regulatory_truth_client.get("/api/v1/conflicts")
        resolved = await regulatory_truth_client.get(
            "/api/v1/conflicts", params={"status": "RESOLVED"}
        )

        assert len(open_conflicts.json()) == 1
        assert resolved.json() == []


class TestStalenessEndpoints:
    """Tests for staleness endpoints."""

    @pytest.mark.asyncio
    async def test_check_and_stats(
        self, regulatory_truth_client: AsyncClient, vat_evidence: Any
    ) -> None:
        check = await regulatory_truth_client.post("/api/v1/staleness/check")

        assert check.status_code == 200
        assert check.json()["checked"] == 1
        assert check.json()["fresh"] == 1

        stats = await regulatory_truth_client.get("/api/v1/staleness/stats")
        assert stats.json()["total"] == 1
        assert stats.json()["never_verified"] == 0

    @pytest.mark.asyncio
    async def test_deprecate_expired(
        self,
        regulatory_truth_client: AsyncClient,
        vat_pointer: SourcePointer,
        make_rule: Any,
    ) -> None:
        rule = await make_rule(
            vat_pointer,
            value="23",
            effective_from=date(2009, 1, 1),
            effective_until=date(2012, 2, 29),
            status=RuleStatus.PUBLISHED,
        )

        response = await regulatory_truth_client.post("/api/v1/staleness/deprecate-expired")

        assert response.json() == {"deprecated_ids": [rule.id], "failed_ids": []}

    @pytest.mark.asyncio
    async def test_recrawl_empty(
        self, regulatory_truth_client: AsyncClient, vat_evidence: Any
    ) -> None:
        response = await regulatory_truth_client.post("/api/v1/staleness/recrawl")

        assert response.status_code == 200
        assert response.json() == {"queued_evidence_ids": []}


class TestReleaseEndpoints:
    """Tests for release endpoints."""

    @pytest.mark.asyncio
    async def test_current_release_and_verify(
        self,
        regulatory_truth_client: AsyncClient,
        store: InMemoryRuleStore,
        vat_pointer: SourcePointer,
        make_rule: Any,
    ) -> None:
        await make_rule(vat_pointer, status=RuleStatus.PUBLISHED)
        await make_rule(vat_pointer, value="13", concept_slug="pdv-snizena-stopa")
        published = await store.list_rules(statuses=[RuleStatus.PUBLISHED])

        current = await regulatory_truth_client.get("/api/v1/releases/current")

        manifest = current.json()
        assert manifest["rule_count"] == 1
        assert manifest["release_hash"] == compute_release_hash(published)

        verify = await regulatory_truth_client.post(
            "/api/v1/releases/verify", json={"expected_hash": manifest["release_hash"]}
        )
        assert verify.json() == {"matches": True, "release_hash": manifest["release_hash"]}

        mismatch = await regulatory_truth_client.post(
            "/api/v1/releases/verify", json={"expected_hash": "0" * 64}
        )
        assert mismatch.json()["matches"] is False

    @pytest.mark.asyncio
    async def test_verify_rejects_short_hash(self, regulatory_truth_client: AsyncClient) -> None:
        response = await regulatory_truth_client.post(
            "/api/v1/releases/verify", json={"expected_hash": "abc"}
        )
        assert response.status_code == 422
