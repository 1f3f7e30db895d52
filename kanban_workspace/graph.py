"""
Generic labelled graph over stable entity identifiers.

Edges are stored as a flat list, which keeps serialisation trivial; the
algorithms work on an adjacency-list view built from the active edges.
Archived edges stay in the list but are invisible to every ``*_active``
query and to reachability / cycle checks.
"""

from __future__ import annotations

import uuid
from collections import deque
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Callable, Generic, Iterable, TypeVar

from .timestamps import optional_from_rfc3339, optional_rfc3339, from_rfc3339, to_rfc3339, utc_now

L = TypeVar("L")

Adjacency = dict[uuid.UUID, list[uuid.UUID]]


class EdgeDirection(str, Enum):
    DIRECTED = "Directed"
    BIDIRECTIONAL = "Bidirectional"


@dataclass
class Edge(Generic[L]):
    source: uuid.UUID
    target: uuid.UUID
    label: L
    direction: EdgeDirection = EdgeDirection.DIRECTED
    weight: float | None = None
    created_at: datetime = field(default_factory=utc_now)
    archived_at: datetime | None = None

    @property
    def is_active(self) -> bool:
        return self.archived_at is None

    def archive(self) -> None:
        if self.archived_at is None:
            self.archived_at = utc_now()

    def unarchive(self) -> None:
        self.archived_at = None

    def involves(self, node_id: uuid.UUID) -> bool:
        return self.source == node_id or self.target == node_id

    def connects(self, a: uuid.UUID, b: uuid.UUID) -> bool:
        if self.direction is EdgeDirection.DIRECTED:
            return self.source == a and self.target == b
        return (self.source == a and self.target == b) or (
            self.source == b and self.target == a
        )

    def to_dict(self) -> dict:
        label = self.label.value if isinstance(self.label, Enum) else self.label
        return {
            "source": str(self.source),
            "target": str(self.target),
            "edge_type": label,
            "direction": self.direction.value,
            "weight": self.weight,
            "created_at": to_rfc3339(self.created_at),
            "archived_at": optional_rfc3339(self.archived_at),
        }

    @classmethod
    def from_dict(cls, raw: dict, parse_label: Callable[[str], L]) -> "Edge[L]":
        return cls(
            source=uuid.UUID(raw["source"]),
            target=uuid.UUID(raw["target"]),
            label=parse_label(raw["edge_type"]),
            direction=EdgeDirection(raw.get("direction", "Directed")),
            weight=raw.get("weight"),
            created_at=from_rfc3339(raw["created_at"]) if raw.get("created_at") else utc_now(),
            archived_at=optional_from_rfc3339(raw.get("archived_at")),
        )


# ---------------------------------------------------------------------------
# Algorithms (pure functions over an adjacency list)
# ---------------------------------------------------------------------------


def has_path(adjacency: Adjacency, start: uuid.UUID, end: uuid.UUID) -> bool:
    """Iterative DFS from ``start``; True if ``end`` is reachable."""
    if start == end:
        return True
    visited: set[uuid.UUID] = set()
    stack = [start]
    while stack:
        node = stack.pop()
        if node == end:
            return True
        if node in visited:
            continue
        visited.add(node)
        for neighbor in adjacency.get(node, ()):
            if neighbor not in visited:
                stack.append(neighbor)
    return False


def would_create_cycle(adjacency: Adjacency, source: uuid.UUID, target: uuid.UUID) -> bool:
    """Adding ``source -> target`` closes a cycle iff ``target`` already reaches ``source``."""
    return has_path(adjacency, target, source)


def has_cycle(adjacency: Adjacency) -> bool:
    WHITE, GREY, BLACK = 0, 1, 2
    colour: dict[uuid.UUID, int] = {}

    for root in list(adjacency):
        if colour.get(root, WHITE) != WHITE:
            continue
        colour[root] = GREY
        stack = [(root, iter(adjacency.get(root, ())))]
        while stack:
            node, children = stack[-1]
            advanced = False
            for child in children:
                state = colour.get(child, WHITE)
                if state == GREY:
                    return True
                if state == WHITE:
                    colour[child] = GREY
                    stack.append((child, iter(adjacency.get(child, ()))))
                    advanced = True
                    break
            if not advanced:
                colour[node] = BLACK
                stack.pop()
    return False


def reachable_from(adjacency: Adjacency, start: uuid.UUID) -> set[uuid.UUID]:
    """BFS transitive closure; includes ``start`` itself."""
    reachable = {start}
    queue = deque([start])
    while queue:
        node = queue.popleft()
        for neighbor in adjacency.get(node, ()):
            if neighbor not in reachable:
                reachable.add(neighbor)
                queue.append(neighbor)
    return reachable


def build_adjacency(edges: Iterable[Edge]) -> Adjacency:
    adjacency: Adjacency = {}
    for edge in edges:
        adjacency.setdefault(edge.source, []).append(edge.target)
        if edge.direction is EdgeDirection.BIDIRECTIONAL:
            adjacency.setdefault(edge.target, []).append(edge.source)
    return adjacency


# ---------------------------------------------------------------------------
# Graph
# ---------------------------------------------------------------------------


class Graph(Generic[L]):
    """Edge-list graph. Cycle and self-reference checks are the caller's job."""

    def __init__(self, edges: Iterable[Edge[L]] | None = None) -> None:
        self._edges: list[Edge[L]] = list(edges or [])

    def add_edge(self, edge: Edge[L]) -> None:
        self._edges.append(edge)

    def remove_edge(self, source: uuid.UUID, target: uuid.UUID) -> bool:
        """Drop every edge connecting the pair. Returns True if any was removed."""
        before = len(self._edges)
        self._edges = [e for e in self._edges if not e.connects(source, target)]
        return len(self._edges) < before

    def remove_node(self, node_id: uuid.UUID) -> None:
        self._edges = [e for e in self._edges if not e.involves(node_id)]

    def archive_node(self, node_id: uuid.UUID) -> None:
        for edge in self._edges:
            if edge.involves(node_id):
                edge.archive()

    def unarchive_node(self, node_id: uuid.UUID) -> None:
        for edge in self._edges:
            if edge.involves(node_id):
                edge.unarchive()

    def outgoing(self, node_id: uuid.UUID) -> list[Edge[L]]:
        return [e for e in self._edges if e.source == node_id]

    def incoming(self, node_id: uuid.UUID) -> list[Edge[L]]:
        return [e for e in self._edges if e.target == node_id]

    def outgoing_active(self, node_id: uuid.UUID) -> list[Edge[L]]:
        return [e for e in self._edges if e.source == node_id and e.is_active]

    def incoming_active(self, node_id: uuid.UUID) -> list[Edge[L]]:
        return [e for e in self._edges if e.target == node_id and e.is_active]

    def neighbors(self, node_id: uuid.UUID) -> list[uuid.UUID]:
        return self._neighbors(node_id, self._edges)

    def neighbors_active(self, node_id: uuid.UUID) -> list[uuid.UUID]:
        return self._neighbors(node_id, self.active_edges())

    @staticmethod
    def _neighbors(node_id: uuid.UUID, edges: Iterable[Edge[L]]) -> list[uuid.UUID]:
        result = []
        for edge in edges:
            if edge.source == node_id:
                result.append(edge.target)
            elif edge.target == node_id and edge.direction is EdgeDirection.BIDIRECTIONAL:
                result.append(edge.source)
        return result

    @property
    def edges(self) -> list[Edge[L]]:
        return list(self._edges)

    def active_edges(self, label: L | None = None) -> list[Edge[L]]:
        return [
            e for e in self._edges if e.is_active and (label is None or e.label == label)
        ]

    def adjacency_list(self, label: L | None = None) -> Adjacency:
        """Adjacency over active edges, optionally restricted to one label."""
        return build_adjacency(self.active_edges(label))

    def has_edge(self, source: uuid.UUID, target: uuid.UUID) -> bool:
        return any(e.connects(source, target) for e in self._edges)

    def would_create_cycle(
        self, source: uuid.UUID, target: uuid.UUID, label: L | None = None
    ) -> bool:
        return would_create_cycle(self.adjacency_list(label), source, target)

    def has_cycle(self, label: L | None = None) -> bool:
        return has_cycle(self.adjacency_list(label))

    def reachable_from(self, start: uuid.UUID, label: L | None = None) -> set[uuid.UUID]:
        return reachable_from(self.adjacency_list(label), start)

    def edge_count(self) -> int:
        return len(self._edges)

    def active_edge_count(self) -> int:
        return sum(1 for e in self._edges if e.is_active)

    def __len__(self) -> int:
        return len(self._edges)
