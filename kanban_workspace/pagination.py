"""Virtual-list pagination and single-selection state, shared by every layout."""

from __future__ import annotations

from dataclasses import dataclass, field


@dataclass
class PageInfo:
    visible_indices: list[int] = field(default_factory=list)
    first_visible: int = 0
    last_visible: int = 0
    items_per_page: int = 0
    show_above_indicator: bool = False
    items_above: int = 0
    show_below_indicator: bool = False
    items_below: int = 0
    current_page: int = 0
    total_pages: int = 0


@dataclass
class Page:
    total_items: int = 0
    scroll_offset: int = 0

    def set_total_items(self, total_items: int) -> None:
        self.total_items = total_items
        if total_items > 0 and self.scroll_offset >= total_items:
            self.scroll_offset = total_items - 1

    def set_scroll_offset(self, offset: int) -> None:
        self.scroll_offset = max(0, min(offset, self.total_items - 1))

    def get_page_info(self, viewport_height: int) -> PageInfo:
        if self.total_items <= 0 or viewport_height <= 0:
            return PageInfo()

        start = self.scroll_offset
        visible = list(range(start, min(start + viewport_height, self.total_items)))
        first = visible[0] if visible else 0
        last = visible[-1] if visible else 0
        items_below = self.total_items - (last + 1) if visible else self.total_items - start
        return PageInfo(
            visible_indices=visible,
            first_visible=first,
            last_visible=last,
            items_per_page=viewport_height,
            show_above_indicator=start > 0,
            items_above=start,
            show_below_indicator=start + viewport_height < self.total_items,
            items_below=max(items_below, 0),
            current_page=self.scroll_offset // viewport_height,
            total_pages=-(-self.total_items // viewport_height),
        )

    def scroll_to_visible(self, item_idx: int, viewport_height: int) -> None:
        """Move the viewport the minimum distance needed to show ``item_idx``."""
        if viewport_height <= 0:
            return
        if item_idx < self.scroll_offset:
            self.scroll_offset = item_idx
        elif item_idx >= self.scroll_offset + viewport_height:
            self.scroll_offset = max(0, item_idx - (viewport_height - 1))

    def navigate_up(self, current_idx: int) -> int:
        return max(0, current_idx - 1)

    def navigate_down(self, current_idx: int) -> int:
        if current_idx >= self.total_items - 1:
            return current_idx
        return current_idx + 1

    def is_empty(self) -> bool:
        return self.total_items == 0


@dataclass
class SelectionState:
    selected_index: int | None = None

    def get(self) -> int | None:
        return self.selected_index

    def set(self, index: int | None) -> None:
        self.selected_index = index

    def clear(self) -> None:
        self.selected_index = None

    def next(self, max_count: int) -> None:
        if max_count <= 0:
            return
        if self.selected_index is None:
            self.selected_index = 0
        else:
            self.selected_index = min(self.selected_index + 1, max_count - 1)

    def prev(self) -> None:
        if self.selected_index is None:
            self.selected_index = 0
        else:
            self.selected_index = max(self.selected_index - 1, 0)

    def auto_select_first_if_empty(self, has_items: bool) -> None:
        if self.selected_index is None and has_items:
            self.selected_index = 0

    def jump_to_first(self) -> None:
        self.selected_index = 0

    def jump_to_last(self, length: int) -> None:
        if length > 0:
            self.selected_index = length - 1

    def is_selected(self, index: int) -> bool:
        return self.selected_index == index

    def has_selection(self) -> bool:
        return self.selected_index is not None

    def clamp(self, max_count: int) -> None:
        if self.selected_index is None:
            return
        if max_count <= 0:
            self.selected_index = None
        elif self.selected_index >= max_count:
            self.selected_index = max_count - 1
