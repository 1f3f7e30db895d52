"""
Layout strategies: map a board's cards onto one or more virtual lists.

  SingleListLayout      one filtered, sorted list          (Flat)
  VirtualUnifiedLayout  one list grouped by column         (GroupedByColumn)
  ColumnListsLayout     one list per column                (ColumnView)

Each list keeps its own selection and scroll state across refreshes.
"""

from __future__ import annotations

import uuid
from abc import ABC, abstractmethod
from dataclasses import dataclass, field

from .domain import Board, Card, Column, Sprint, TaskListView
from .lifecycle import sorted_board_columns
from .pagination import Page, PageInfo, SelectionState
from .query import CardQueryBuilder

ALL_CARDS = "all"


@dataclass
class ViewRefreshContext:
    board: Board
    cards: list[Card]
    columns: list[Column]
    sprints: list[Sprint]
    active_sprint_filters: set[uuid.UUID] = field(default_factory=set)
    hide_assigned: bool = False
    search_query: str | None = None

    def query(self) -> CardQueryBuilder:
        return (
            CardQueryBuilder(self.cards, self.columns, self.sprints, self.board)
            .in_sprints(self.active_sprint_filters)
            .hide_assigned(self.hide_assigned)
            .search(self.search_query)
        )


class CardList:
    """A scrollable list of card ids. ``id`` is ``"all"`` or a column id."""

    def __init__(self, list_id: str | uuid.UUID = ALL_CARDS, cards: list[uuid.UUID] | None = None) -> None:
        self.id = list_id
        self.cards: list[uuid.UUID] = []
        self.selection = SelectionState()
        self.page = Page()
        if cards:
            self.update_cards(cards)

    def __len__(self) -> int:
        return len(self.cards)

    def is_empty(self) -> bool:
        return not self.cards

    def update_cards(self, cards: list[uuid.UUID]) -> None:
        """Replace the contents, keeping the selected card selected if it survived."""
        selected = self.selected_card_id()
        self.cards = list(cards)
        self.page.set_total_items(len(self.cards))
        if selected is not None:
            if not self.select_card(selected):
                self.selection.set(0 if self.cards else None)
        else:
            self.selection.clamp(len(self.cards))

    def selected_card_id(self) -> uuid.UUID | None:
        index = self.selection.get()
        if index is None or index >= len(self.cards):
            return None
        return self.cards[index]

    def select_card(self, card_id: uuid.UUID) -> bool:
        if card_id in self.cards:
            self.selection.set(self.cards.index(card_id))
            return True
        return False

    def navigate_up(self) -> bool:
        index = self.selection.get()
        if index is None:
            if self.cards:
                self.selection.set(0)
                return True
            return False
        new_index = self.page.navigate_up(index)
        self.selection.set(new_index)
        return new_index != index

    def navigate_down(self) -> bool:
        index = self.selection.get()
        if index is None:
            if self.cards:
                self.selection.set(0)
                return True
            return False
        new_index = self.page.navigate_down(index)
        self.selection.set(new_index)
        return new_index != index

    def ensure_selected_visible(self, viewport_height: int) -> None:
        index = self.selection.get()
        if index is not None:
            self.page.scroll_to_visible(index, viewport_height)

    def page_info(self, viewport_height: int) -> PageInfo:
        return self.page.get_page_info(viewport_height)

    def jump_to_top(self) -> None:
        if self.cards:
            self.selection.jump_to_first()
            self.page.scroll_offset = 0

    def jump_to_bottom(self, viewport_height: int) -> None:
        if self.cards:
            self.selection.jump_to_last(len(self.cards))
            self.ensure_selected_visible(viewport_height)


# ---------------------------------------------------------------------------
# Strategies
# ---------------------------------------------------------------------------


class LayoutStrategy(ABC):
    """Base for layouts. Single-list layouts ignore left/right navigation."""

    @abstractmethod
    def active_list(self) -> CardList | None: ...

    @abstractmethod
    def all_lists(self) -> list[CardList]: ...

    @abstractmethod
    def refresh(self, ctx: ViewRefreshContext) -> None: ...

    def navigate_left(self, select_last: bool = False) -> bool:
        return False

    def navigate_right(self, select_last: bool = False) -> bool:
        return False


class SingleListLayout(LayoutStrategy):
    def __init__(self) -> None:
        self.card_list = CardList(ALL_CARDS)

    def active_list(self) -> CardList:
        return self.card_list

    def all_lists(self) -> list[CardList]:
        return [self.card_list]

    def refresh(self, ctx: ViewRefreshContext) -> None:
        self.card_list.update_cards(ctx.query().execute())


class ColumnListsLayout(LayoutStrategy):
    def __init__(self) -> None:
        self.column_lists: list[CardList] = []
        self.active_column_index = 0

    def active_list(self) -> CardList | None:
        if 0 <= self.active_column_index < len(self.column_lists):
            return self.column_lists[self.active_column_index]
        return None

    def all_lists(self) -> list[CardList]:
        return list(self.column_lists)

    def set_active_column_index(self, index: int) -> None:
        if 0 <= index < len(self.column_lists):
            self.active_column_index = index

    def navigate_left(self, select_last: bool = False) -> bool:
        if self.active_column_index == 0:
            return False
        self.active_column_index -= 1
        self._settle_selection(select_last)
        return True

    def navigate_right(self, select_last: bool = False) -> bool:
        if self.active_column_index >= len(self.column_lists) - 1:
            return False
        self.active_column_index += 1
        self._settle_selection(select_last)
        return True

    def _settle_selection(self, select_last: bool) -> None:
        current = self.active_list()
        if current is None:
            return
        if current.is_empty():
            current.selection.clear()
        elif select_last:
            current.selection.jump_to_last(len(current))
        else:
            current.selection.auto_select_first_if_empty(True)

    def refresh(self, ctx: ViewRefreshContext) -> None:
        previous = {lst.id: lst for lst in self.column_lists}
        lists = []
        for column in sorted_board_columns(ctx.board, ctx.columns):
            card_list = previous.get(column.id) or CardList(column.id)
            card_list.update_cards(ctx.query().in_column(column.id).execute())
            lists.append(card_list)
        self.column_lists = lists
        if self.active_column_index >= len(lists):
            self.active_column_index = max(len(lists) - 1, 0)


@dataclass(frozen=True)
class ColumnBoundary:
    column_id: uuid.UUID
    column_name: str
    start_index: int
    card_count: int


class VirtualUnifiedLayout(LayoutStrategy):
    """One list holding every column's cards back to back, plus header positions."""

    def __init__(self) -> None:
        self.card_list = CardList(ALL_CARDS)
        self.column_boundaries: list[ColumnBoundary] = []

    def active_list(self) -> CardList:
        return self.card_list

    def all_lists(self) -> list[CardList]:
        return [self.card_list]

    def refresh(self, ctx: ViewRefreshContext) -> None:
        combined: list[uuid.UUID] = []
        boundaries = []
        for column in sorted_board_columns(ctx.board, ctx.columns):
            ids = ctx.query().in_column(column.id).execute()
            boundaries.append(ColumnBoundary(column.id, column.name, len(combined), len(ids)))
            combined.extend(ids)
        self.column_boundaries = boundaries
        self.card_list.update_cards(combined)

    def column_at(self, index: int) -> ColumnBoundary | None:
        for boundary in self.column_boundaries:
            if boundary.start_index <= index < boundary.start_index + boundary.card_count:
                return boundary
        return None


def layout_for_view(view: TaskListView) -> LayoutStrategy:
    if view is TaskListView.COLUMN_VIEW:
        return ColumnListsLayout()
    if view is TaskListView.GROUPED_BY_COLUMN:
        return VirtualUnifiedLayout()
    return SingleListLayout()
