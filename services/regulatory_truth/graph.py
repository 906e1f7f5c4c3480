"""
Amendment Graph
===============

AMENDS edges between rules ("from supersedes to"). Every insertion runs a
reachability check first, so the edge set is always a DAG and the current
version of a rule chain is well defined.

Version: 0.1.0
"""

from collections import defaultdict, deque
from dataclasses import dataclass, field
from datetime import date

from services.regulatory_truth.errors import CycleDetectedError, RuleNotFoundError
from services.regulatory_truth.models import AmendmentEdge, EdgeRelation, RuleStatus
from services.regulatory_truth.store.base import RuleStore
from shared.logging import get_logger


logger = get_logger(__name__)


@dataclass
class GraphValidation:
    """Acyclicity report over the stored edge set."""

    is_valid: bool
    node_count: int
    edge_count: int
    cycles: list[list[str]] = field(default_factory=list)


def _bfs_path(adjacency: dict[str, list[str]], start: str, goal: str) -> list[str] | None:
    if start == goal:
        return [start]
    parents: dict[str, str] = {}
    queue = deque([start])
    seen = {start}
    while queue:
        node = queue.popleft()
        for neighbor in adjacency.get(node, []):
            if neighbor in seen:
                continue
            parents[neighbor] = node
            if neighbor == goal:
                path = [goal]
                while path[-1] != start:
                    path.append(parents[path[-1]])
                return list(reversed(path))
            seen.add(neighbor)
            queue.append(neighbor)
    return None


class AmendmentGraph:
    """Cycle-checked supersession edges."""

    def __init__(self, store: RuleStore) -> None:
        self.store = store

    async def _adjacency(
        self, relation: EdgeRelation = EdgeRelation.AMENDS
    ) -> dict[str, list[str]]:
        adjacency: dict[str, list[str]] = defaultdict(list)
        for edge in await self.store.list_edges(relation):
            adjacency[edge.from_rule_id].append(edge.to_rule_id)
        return adjacency

    async def find_path(
        self,
        from_rule_id: str,
        to_rule_id: str,
        relation: EdgeRelation = EdgeRelation.AMENDS,
    ) -> list[str] | None:
        """Shortest edge path between two rules, or None."""
        return _bfs_path(await self._adjacency(relation), from_rule_id, to_rule_id)

    async def would_create_cycle(
        self,
        from_rule_id: str,
        to_rule_id: str,
        relation: EdgeRelation = EdgeRelation.AMENDS,
    ) -> list[str] | None:
        """Return the closing path when the edge would create a cycle."""
        path = await self.find_path(to_rule_id, from_rule_id, relation)
        if path is None:
            return None
        return [from_rule_id, *path] if from_rule_id != to_rule_id else [from_rule_id, to_rule_id]

    async def create_edge(
        self,
        from_rule_id: str,
        to_rule_id: str,
        relation: EdgeRelation = EdgeRelation.AMENDS,
        valid_from: date | None = None,
    ) -> AmendmentEdge:
        """
        Insert an edge after checking acyclicity.

        Raises:
            RuleNotFoundError: if either rule does not exist
            CycleDetectedError: if ``from_rule_id`` is reachable from ``to_rule_id``
        """
        for rule_id in (from_rule_id, to_rule_id):
            if await self.store.get_rule(rule_id) is None:
                raise RuleNotFoundError(f"Rule {rule_id} not found")

        cycle = await self.would_create_cycle(from_rule_id, to_rule_id, relation)
        if cycle is not None:
            raise CycleDetectedError(from_rule_id, to_rule_id, relation.value, cycle)

        edge = await self.store.add_edge(
            AmendmentEdge(
                from_rule_id=from_rule_id,
                to_rule_id=to_rule_id,
                relation=relation,
                valid_from=valid_from,
            )
        )
        logger.info(
            "amendment_edge_created",
            from_rule_id=from_rule_id,
            to_rule_id=to_rule_id,
            relation=relation.value,
        )
        return edge

    async def validate_acyclicity(
        self, relation: EdgeRelation = EdgeRelation.AMENDS
    ) -> GraphValidation:
        """Check the stored edge set with an iterative three-color DFS."""
        edges = await self.store.list_edges(relation)
        adjacency: dict[str, list[str]] = defaultdict(list)
        nodes: set[str] = set()
        for edge in edges:
            adjacency[edge.from_rule_id].append(edge.to_rule_id)
            nodes.update((edge.from_rule_id, edge.to_rule_id))

        white, gray, black = 0, 1, 2
        color = dict.fromkeys(nodes, white)
        cycles: list[list[str]] = []

        for root in sorted(nodes):
            if color[root] != white:
                continue
            stack: list[tuple[str, int]] = [(root, 0)]
            path: list[str] = []
            while stack:
                node, index = stack.pop()
                if index == 0:
                    color[node] = gray
                    path.append(node)
                neighbors = adjacency.get(node, [])
                if index < len(neighbors):
                    stack.append((node, index + 1))
                    neighbor = neighbors[index]
                    if color[neighbor] == gray:
                        cycles.append([*path[path.index(neighbor):], neighbor])
                    elif color[neighbor] == white:
                        stack.append((neighbor, 0))
                else:
                    color[node] = black
                    path.pop()

        if cycles:
            logger.error("amendment_graph_cycles_found", cycles=len(cycles))
        return GraphValidation(
            is_valid=not cycles,
            node_count=len(nodes),
            edge_count=len(edges),
            cycles=cycles,
        )

    async def current_version(self, rule_id: str) -> str:
        """
        Follow supersession to the newest non-deprecated rule.

        An edge ``new -> old`` means ``new`` amends ``old``; walking edges
        backwards from ``rule_id`` reaches the newest version. Ties pick the
        latest created rule.
        """
        superseded_by: dict[str, list[str]] = defaultdict(list)
        for edge in await self.store.list_edges(EdgeRelation.AMENDS):
            superseded_by[edge.to_rule_id].append(edge.from_rule_id)

        current = rule_id
        visited = {current}
        while superseded_by.get(current):
            candidates = []
            for candidate_id in superseded_by[current]:
                rule = await self.store.get_rule(candidate_id)
                if rule is not None and rule.status != RuleStatus.DEPRECATED:
                    candidates.append(rule)
            if not candidates:
                break
            newest = max(candidates, key=lambda r: r.created_at)
            if newest.id in visited:
                break
            visited.add(newest.id)
            current = newest.id
        return current
