"""
Tests for the Amendment Graph
=============================

Tests for cycle prevention, path queries and current-version lookup.

Version: 0.1.0
"""

from datetime import date
from typing import Any

import pytest

from services.regulatory_truth.errors import CycleDetectedError, RuleNotFoundError
from services.regulatory_truth.graph import AmendmentGraph
from services.regulatory_truth.models import AmendmentEdge, RuleStatus, SourcePointer
from services.regulatory_truth.store import InMemoryRuleStore


@pytest.fixture
def graph(store: InMemoryRuleStore) -> AmendmentGraph:
    return AmendmentGraph(store)


@pytest.fixture
def rule_chain(vat_pointer: SourcePointer, make_rule: Any) -> Any:
    """Factory creating ``count`` distinct rules for the same concept."""

    async def _make(count: int) -> list[str]:
        ids = []
        for year in range(count):
            rule = await make_rule(vat_pointer, effective_from=date(2013 + year, 1, 1))
            ids.append(rule.id)
        return ids

    return _make


# ============================================================================
# Edge Creation Tests
# ============================================================================


class TestCreateEdge:
    """Tests for AmendmentGraph.create_edge."""

    @pytest.mark.asyncio
    async def test_reverse_edge_rejected(
        self, graph: AmendmentGraph, store: InMemoryRuleStore, rule_chain: Any
    ) -> None:
        """Test that A->B followed by B->A fails and leaves one edge."""
        a, b = await rule_chain(2)
        await graph.create_edge(a, b)

        with pytest.raises(CycleDetectedError) as exc_info:
            await graph.create_edge(b, a)

        assert exc_info.value.path == [b, a, b]
        assert len(await store.list_edges()) == 1
        assert await store.get_rule(a) is not None
        assert await store.get_rule(b) is not None

    @pytest.mark.asyncio
    async def test_self_loop_rejected(self, graph: AmendmentGraph, rule_chain: Any) -> None:
        [a] = await rule_chain(1)

        with pytest.raises(CycleDetectedError):
            await graph.create_edge(a, a)

    @pytest.mark.asyncio
    async def test_transitive_cycle_rejected(
        self, graph: AmendmentGraph, rule_chain: Any
    ) -> None:
        a, b, c = await rule_chain(3)
        await graph.create_edge(a, b)
        await graph.create_edge(b, c)

        with pytest.raises(CycleDetectedError) as exc_info:
            await graph.create_edge(c, a)
        assert exc_info.value.path == [c, a, b, c]

    @pytest.mark.asyncio
    async def test_unknown_rule(self, graph: AmendmentGraph, rule_chain: Any) -> None:
        [a] = await rule_chain(1)

        with pytest.raises(RuleNotFoundError):
            await graph.create_edge(a, "missing")

    @pytest.mark.asyncio
    async def test_diamond_allowed(self, graph: AmendmentGraph, rule_chain: Any) -> None:
        """Test that two paths to one node are not a cycle."""
        a, b, c, d = await rule_chain(4)
        await graph.create_edge(a, b)
        await graph.create_edge(a, c)
        await graph.create_edge(b, d)
        await graph.create_edge(c, d)

        assert await graph.find_path(a, d) in ([a, b, d], [a, c, d])
        assert await graph.find_path(d, a) is None


# ============================================================================
# Validation Tests
# ============================================================================


class TestValidateAcyclicity:
    """Tests for AmendmentGraph.validate_acyclicity."""

    @pytest.mark.asyncio
    async def test_valid_graph(self, graph: AmendmentGraph, rule_chain: Any) -> None:
        a, b, c = await rule_chain(3)
        await graph.create_edge(a, b)
        await graph.create_edge(b, c)

        result = await graph.validate_acyclicity()

        assert result.is_valid is True
        assert result.node_count == 3
        assert result.edge_count == 2

    @pytest.mark.asyncio
    async def test_reports_cycle_written_directly(
        self, graph: AmendmentGraph, store: InMemoryRuleStore
    ) -> None:
        """Test that edges inserted around the graph are still caught."""
        await store.add_edge(AmendmentEdge(from_rule_id="x", to_rule_id="y"))
        await store.add_edge(AmendmentEdge(from_rule_id="y", to_rule_id="x"))

        result = await graph.validate_acyclicity()

        assert result.is_valid is False
        assert result.cycles == [["x", "y", "x"]]


# ============================================================================
# Current Version Tests
# ============================================================================


class TestCurrentVersion:
    """Tests for AmendmentGraph.current_version."""

    @pytest.mark.asyncio
    async def test_follows_supersession(
        self, graph: AmendmentGraph, rule_chain: Any
    ) -> None:
        """Test that the newest amending rule is returned."""
        original, amended, latest = await rule_chain(3)
        await graph.create_edge(amended, original)
        await graph.create_edge(latest, amended)

        assert await graph.current_version(original) == latest
        assert await graph.current_version(latest) == latest

    @pytest.mark.asyncio
    async def test_skips_deprecated_amendments(
        self, graph: AmendmentGraph, store: InMemoryRuleStore, rule_chain: Any
    ) -> None:
        original, amended = await rule_chain(2)
        await graph.create_edge(amended, original)
        rule = await store.get_rule(amended)
        await store.update_rule(rule.model_copy(update={"status": RuleStatus.DEPRECATED}))

        assert await graph.current_version(original) == original
