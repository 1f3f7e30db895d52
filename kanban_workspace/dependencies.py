"""
Card-level dependency edges riding on the generic graph.

Three relationships: ``Blocks`` and ``ParentChild`` are directed and must
stay acyclic, ``RelatesTo`` is bidirectional and unconstrained. Every
query here only looks at active (non-archived) edges.
"""

from __future__ import annotations

import uuid
from collections import deque
from dataclasses import dataclass, field
from enum import Enum
from typing import Callable

from .errors import CycleDetectedError, NotFoundError, SelfReferenceError
from .graph import Edge, EdgeDirection, Graph


class CardEdgeType(str, Enum):
    BLOCKS = "Blocks"
    RELATES_TO = "RelatesTo"
    PARENT_CHILD = "ParentChild"

    @property
    def requires_dag(self) -> bool:
        return self is not CardEdgeType.RELATES_TO

    @classmethod
    def parse(cls, raw: str) -> "CardEdgeType":
        if raw == "ParentOf":
            return cls.PARENT_CHILD
        return cls(raw)


CardEdge = Edge[CardEdgeType]


class CardGraph(Graph[CardEdgeType]):
    """Graph of card ids with dependency-specific helpers."""

    # -- mutations ---------------------------------------------------------

    def add_blocks(self, blocker: uuid.UUID, blocked: uuid.UUID) -> None:
        """``blocker`` must finish before ``blocked`` can start."""
        self._add_acyclic(blocker, blocked, CardEdgeType.BLOCKS)

    def add_relates_to(self, card_a: uuid.UUID, card_b: uuid.UUID) -> None:
        if card_a == card_b:
            raise SelfReferenceError(card_a)
        self.add_edge(
            Edge(
                source=card_a,
                target=card_b,
                label=CardEdgeType.RELATES_TO,
                direction=EdgeDirection.BIDIRECTIONAL,
            )
        )

    def set_parent(self, child: uuid.UUID, parent: uuid.UUID) -> None:
        """Record ``parent`` as a parent of ``child`` (edge runs parent -> child)."""
        self._add_acyclic(parent, child, CardEdgeType.PARENT_CHILD)

    def remove_parent(self, child: uuid.UUID, parent: uuid.UUID) -> None:
        before = len(self._edges)
        self._edges = [
            e
            for e in self._edges
            if not (
                e.label is CardEdgeType.PARENT_CHILD
                and e.source == parent
                and e.target == child
            )
        ]
        if len(self._edges) == before:
            raise NotFoundError(f"Parent edge {parent} -> {child}")

    def remove_dependency(self, source: uuid.UUID, target: uuid.UUID) -> None:
        if not self.remove_edge(source, target):
            raise NotFoundError(f"Dependency {source} -> {target}")

    def archive_card_edges(self, card_id: uuid.UUID) -> None:
        self.archive_node(card_id)

    def unarchive_card_edges(self, card_id: uuid.UUID) -> None:
        self.unarchive_node(card_id)

    def remove_card_edges(self, card_id: uuid.UUID) -> None:
        self.remove_node(card_id)

    def _add_acyclic(self, source: uuid.UUID, target: uuid.UUID, label: CardEdgeType) -> None:
        if source == target:
            raise SelfReferenceError(source)
        if self.would_create_cycle(source, target, label):
            raise CycleDetectedError(source, target)
        self.add_edge(Edge(source=source, target=target, label=label))

    # -- queries -----------------------------------------------------------

    def blockers(self, card_id: uuid.UUID) -> list[uuid.UUID]:
        """Cards that block ``card_id``."""
        return [
            e.source
            for e in self.incoming_active(card_id)
            if e.label is CardEdgeType.BLOCKS
        ]

    def blocked_by(self, card_id: uuid.UUID) -> list[uuid.UUID]:
        """Cards that ``card_id`` blocks."""
        return [
            e.target
            for e in self.outgoing_active(card_id)
            if e.label is CardEdgeType.BLOCKS
        ]

    def related(self, card_id: uuid.UUID) -> list[uuid.UUID]:
        result = []
        for edge in self.active_edges(CardEdgeType.RELATES_TO):
            if edge.source == card_id:
                result.append(edge.target)
            elif edge.target == card_id:
                result.append(edge.source)
        return result

    def can_start(self, card_id: uuid.UUID, is_complete: Callable[[uuid.UUID], bool]) -> bool:
        return all(is_complete(blocker) for blocker in self.blockers(card_id))

    def children(self, parent: uuid.UUID) -> list[uuid.UUID]:
        return [
            e.target
            for e in self.outgoing_active(parent)
            if e.label is CardEdgeType.PARENT_CHILD
        ]

    def parents(self, child: uuid.UUID) -> list[uuid.UUID]:
        return [
            e.source
            for e in self.incoming_active(child)
            if e.label is CardEdgeType.PARENT_CHILD
        ]

    def ancestors(self, child: uuid.UUID) -> list[uuid.UUID]:
        """Every transitive parent, nearest first."""
        found: list[uuid.UUID] = []
        seen: set[uuid.UUID] = set()
        queue = deque([child])
        while queue:
            node = queue.popleft()
            for parent in self.parents(node):
                if parent not in seen:
                    seen.add(parent)
                    found.append(parent)
                    queue.append(parent)
        return found

    def descendants(self, parent: uuid.UUID) -> list[uuid.UUID]:
        reachable = self.reachable_from(parent, CardEdgeType.PARENT_CHILD)
        reachable.discard(parent)
        return list(reachable)

    def child_count(self, parent: uuid.UUID) -> int:
        return len(self.children(parent))

    def incident_active_edges(self, card_id: uuid.UUID) -> list[CardEdge]:
        return [e for e in self.active_edges() if e.involves(card_id)]

    # -- serialisation -----------------------------------------------------

    def to_dict(self) -> dict:
        return {"edges": [e.to_dict() for e in self._edges]}

    @classmethod
    def from_dict(cls, raw: dict | None) -> "CardGraph":
        raw = raw or {}
        return cls(Edge.from_dict(e, CardEdgeType.parse) for e in raw.get("edges") or [])


@dataclass
class DependencyGraph:
    """Container for every dependency graph in the workspace (only cards today)."""

    cards: CardGraph = field(default_factory=CardGraph)

    def to_dict(self) -> dict:
        return {"cards": self.cards.to_dict()}

    @classmethod
    def from_dict(cls, raw: dict | None) -> "DependencyGraph":
        raw = raw or {}
        return cls(cards=CardGraph.from_dict(raw.get("cards")))
