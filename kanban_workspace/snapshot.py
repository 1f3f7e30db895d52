"""DataSnapshot: the six top-level collections as one aggregate."""

from __future__ import annotations

import copy
import json
from dataclasses import dataclass, field

from .dependencies import DependencyGraph
from .domain import ArchivedCard, Board, Card, Column, Sprint
from .errors import SerializationError


@dataclass
class DataSnapshot:
    boards: list[Board] = field(default_factory=list)
    columns: list[Column] = field(default_factory=list)
    cards: list[Card] = field(default_factory=list)
    archived_cards: list[ArchivedCard] = field(default_factory=list)
    sprints: list[Sprint] = field(default_factory=list)
    graph: DependencyGraph = field(default_factory=DependencyGraph)

    def clone(self) -> "DataSnapshot":
        return copy.deepcopy(self)

    def restore_from(self, other: "DataSnapshot") -> None:
        """Replace contents in place so outstanding references stay valid."""
        self.boards[:] = other.boards
        self.columns[:] = other.columns
        self.cards[:] = other.cards
        self.archived_cards[:] = other.archived_cards
        self.sprints[:] = other.sprints
        self.graph.cards = other.graph.cards

    def is_empty(self) -> bool:
        return not (
            self.boards or self.columns or self.cards or self.archived_cards or self.sprints
        )

    # -- serialisation -----------------------------------------------------

    def to_dict(self) -> dict:
        return {
            "boards": [b.to_dict() for b in self.boards],
            "columns": [c.to_dict() for c in self.columns],
            "cards": [c.to_dict() for c in self.cards],
            "archived_cards": [a.to_dict() for a in self.archived_cards],
            "sprints": [s.to_dict() for s in self.sprints],
            "graph": self.graph.to_dict(),
        }

    @classmethod
    def from_dict(cls, raw: dict) -> "DataSnapshot":
        """Missing keys default to empty; unknown keys are ignored."""
        if not isinstance(raw, dict):
            raise SerializationError("snapshot data must be a JSON object")
        try:
            return cls(
                boards=[Board.from_dict(b) for b in raw.get("boards") or []],
                columns=[Column.from_dict(c) for c in raw.get("columns") or []],
                cards=[Card.from_dict(c) for c in raw.get("cards") or []],
                archived_cards=[
                    ArchivedCard.from_dict(a) for a in raw.get("archived_cards") or []
                ],
                sprints=[Sprint.from_dict(s) for s in raw.get("sprints") or []],
                graph=DependencyGraph.from_dict(raw.get("graph")),
            )
        except (KeyError, TypeError, ValueError) as exc:
            raise SerializationError(f"malformed snapshot: {exc}") from exc

    def to_json_bytes(self) -> bytes:
        return json.dumps(self.to_dict(), indent=2).encode("utf-8")

    @classmethod
    def from_json_bytes(cls, data: bytes) -> "DataSnapshot":
        try:
            raw = json.loads(data.decode("utf-8"))
        except (UnicodeDecodeError, json.JSONDecodeError) as exc:
            raise SerializationError(str(exc)) from exc
        return cls.from_dict(raw)
