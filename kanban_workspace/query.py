"""
Card queries: filters, searchers, sorters, and the builder that chains them.

Both front-ends go through ``CardQueryBuilder`` so the TUI list and the
tool surface agree on which cards a board shows and in what order.
"""

from __future__ import annotations

import uuid
from functools import cmp_to_key
from typing import Callable, Iterable, Protocol

from .domain import Board, Card, Column, SortField, SortOrder, Sprint

Comparator = Callable[[Card, Card], int]


# ---------------------------------------------------------------------------
# Filters
# ---------------------------------------------------------------------------


class CardFilter(Protocol):
    def matches(self, card: Card) -> bool: ...


class BoardFilter:
    def __init__(self, board_id: uuid.UUID, columns: list[Column]) -> None:
        self.board_id = board_id
        self._column_ids = {c.id for c in columns if c.board_id == board_id}

    def matches(self, card: Card) -> bool:
        return card.column_id in self._column_ids


class ColumnFilter:
    def __init__(self, column_id: uuid.UUID) -> None:
        self.column_id = column_id

    def matches(self, card: Card) -> bool:
        return card.column_id == self.column_id


class SprintFilter:
    def __init__(self, sprint_ids: Iterable[uuid.UUID]) -> None:
        self.sprint_ids = set(sprint_ids)

    @classmethod
    def in_sprint(cls, sprint_id: uuid.UUID) -> "SprintFilter":
        return cls([sprint_id])

    def matches(self, card: Card) -> bool:
        return card.sprint_id is not None and card.sprint_id in self.sprint_ids


class UnassignedOnlyFilter:
    def matches(self, card: Card) -> bool:
        return card.sprint_id is None


class CompositeFilter:
    """Logical AND; an empty composite matches everything."""

    def __init__(self, filters: Iterable[CardFilter] = ()) -> None:
        self.filters: list[CardFilter] = list(filters)

    def add(self, card_filter: CardFilter) -> "CompositeFilter":
        self.filters.append(card_filter)
        return self

    def matches(self, card: Card) -> bool:
        return all(f.matches(card) for f in self.filters)


# ---------------------------------------------------------------------------
# Searchers
# ---------------------------------------------------------------------------


class TitleSearcher:
    def __init__(self, query: str) -> None:
        self.query = query.lower()

    def matches(self, card: Card, board: Board, sprints: list[Sprint]) -> bool:
        return not self.query or self.query in card.title.lower()


class BranchNameSearcher:
    def __init__(self, query: str) -> None:
        self.query = query.lower()

    def matches(self, card: Card, board: Board, sprints: list[Sprint]) -> bool:
        return not self.query or self.query in card.branch_name(board, sprints).lower()


class IdentifierSearcher:
    """Matches ``{prefix}-{n}`` identifiers such as ``task-12``."""

    def __init__(self, query: str) -> None:
        self.query = query.lower()

    def matches(self, card: Card, board: Board, sprints: list[Sprint]) -> bool:
        return not self.query or self.query in card.identifier(board, sprints).lower()


class CompositeSearcher:
    """Logical OR over its searchers; no searchers or an empty query matches all."""

    def __init__(self, searchers: Iterable = ()) -> None:
        self.searchers = list(searchers)

    @classmethod
    def all(cls, query: str) -> "CompositeSearcher":
        return cls(
            [TitleSearcher(query), BranchNameSearcher(query), IdentifierSearcher(query)]
        )

    def matches(self, card: Card, board: Board, sprints: list[Sprint]) -> bool:
        if not self.searchers:
            return True
        return any(s.matches(card, board, sprints) for s in self.searchers)


# ---------------------------------------------------------------------------
# Sorters
# ---------------------------------------------------------------------------


def _cmp(a, b) -> int:
    return (a > b) - (a < b)


def _compare_points(a: Card, b: Card) -> int:
    # Cards with points sort before cards without
    if a.points is not None and b.points is not None:
        return _cmp(a.points, b.points)
    if a.points is not None:
        return -1
    if b.points is not None:
        return 1
    return 0


_COMPARATORS: dict[SortField, Comparator] = {
    SortField.POINTS: _compare_points,
    SortField.PRIORITY: lambda a, b: _cmp(a.priority.rank, b.priority.rank),
    SortField.CREATED_AT: lambda a, b: _cmp(a.created_at, b.created_at),
    SortField.UPDATED_AT: lambda a, b: _cmp(a.updated_at, b.updated_at),
    SortField.STATUS: lambda a, b: _cmp(a.status.rank, b.status.rank),
    SortField.POSITION: lambda a, b: _cmp(a.position, b.position),
    SortField.DEFAULT: lambda a, b: _cmp(a.card_number, b.card_number),
}


def get_sorter_for_field(sort_field: SortField) -> Comparator:
    return _COMPARATORS[sort_field]


class OrderedSorter:
    def __init__(self, comparator: Comparator, order: SortOrder) -> None:
        self.comparator = comparator
        self.order = order

    def compare(self, a: Card, b: Card) -> int:
        result = self.comparator(a, b)
        return -result if self.order is SortOrder.DESCENDING else result

    def sort(self, cards: Iterable[Card]) -> list[Card]:
        return sorted(cards, key=cmp_to_key(self.compare))


def sort_cards(cards: Iterable[Card], sort_field: SortField, order: SortOrder) -> list[Card]:
    return OrderedSorter(get_sorter_for_field(sort_field), order).sort(cards)


# ---------------------------------------------------------------------------
# Query builder
# ---------------------------------------------------------------------------


class CardQueryBuilder:
    """
    Filter a board's cards and sort them by the board's sort settings.

    Usage:
        ids = (
            CardQueryBuilder(cards, columns, sprints, board)
            .in_column(column_id)
            .search("login")
            .execute()
        )
    """

    def __init__(
        self,
        cards: list[Card],
        columns: list[Column],
        sprints: list[Sprint],
        board: Board,
    ) -> None:
        self._cards = cards
        self._columns = columns
        self._sprints = sprints
        self._board = board
        self._column_id: uuid.UUID | None = None
        self._sprint_ids: set[uuid.UUID] | None = None
        self._hide_assigned = False
        self._search_query: str | None = None

    def in_column(self, column_id: uuid.UUID) -> "CardQueryBuilder":
        self._column_id = column_id
        return self

    def in_sprints(self, sprint_ids: Iterable[uuid.UUID]) -> "CardQueryBuilder":
        self._sprint_ids = set(sprint_ids)
        return self

    def hide_assigned(self, enabled: bool = True) -> "CardQueryBuilder":
        self._hide_assigned = enabled
        return self

    def search(self, query: str | None) -> "CardQueryBuilder":
        if query:
            self._search_query = query
        return self

    def build_filter(self) -> CompositeFilter:
        composite = CompositeFilter([BoardFilter(self._board.id, self._columns)])
        if self._column_id is not None:
            composite.add(ColumnFilter(self._column_id))
        if self._sprint_ids:
            composite.add(SprintFilter(self._sprint_ids))
        if self._hide_assigned:
            composite.add(UnassignedOnlyFilter())
        return composite

    def execute_cards(self) -> list[Card]:
        card_filter = self.build_filter()
        searcher = CompositeSearcher.all(self._search_query) if self._search_query else None
        matched = [
            c
            for c in self._cards
            if card_filter.matches(c)
            and (searcher is None or searcher.matches(c, self._board, self._sprints))
        ]
        return sort_cards(matched, self._board.task_sort_field, self._board.task_sort_order)

    def execute(self) -> list[uuid.UUID]:
        return [c.id for c in self.execute_cards()]


# ---------------------------------------------------------------------------
# Sprint queries
# ---------------------------------------------------------------------------


def get_sprint_cards(sprint_id: uuid.UUID, cards: list[Card]) -> list[Card]:
    return [c for c in cards if c.sprint_id == sprint_id]


def get_sprint_completed_cards(sprint_id: uuid.UUID, cards: list[Card]) -> list[Card]:
    return [c for c in cards if c.sprint_id == sprint_id and c.is_completed]


def get_sprint_uncompleted_cards(sprint_id: uuid.UUID, cards: list[Card]) -> list[Card]:
    return [c for c in cards if c.sprint_id == sprint_id and not c.is_completed]


def partition_sprint_cards(
    sprint_id: uuid.UUID, cards: list[Card]
) -> tuple[list[uuid.UUID], list[uuid.UUID]]:
    """Returns ``(uncompleted_ids, completed_ids)``."""
    uncompleted = [c.id for c in get_sprint_uncompleted_cards(sprint_id, cards)]
    completed = [c.id for c in get_sprint_completed_cards(sprint_id, cards)]
    return uncompleted, completed


def sort_card_ids(
    card_ids: list[uuid.UUID],
    cards: list[Card],
    sort_field: SortField,
    order: SortOrder,
) -> list[uuid.UUID]:
    by_id = {c.id: c for c in cards}
    present = [by_id[i] for i in card_ids if i in by_id]
    return [c.id for c in sort_cards(present, sort_field, order)]


def calculate_points(cards: Iterable[Card]) -> int:
    return sum(c.points for c in cards if c.points is not None)


def calculate_points_by_ids(card_ids: list[uuid.UUID], cards: list[Card]) -> int:
    wanted = set(card_ids)
    return calculate_points(c for c in cards if c.id in wanted)
