"""Snapshot-based undo/redo."""

from __future__ import annotations

from loguru import logger

from .snapshot import DataSnapshot


class HistoryManager:
    """
    Two LIFO stacks of full snapshots.

    When ``limit`` is set the undo stack drops its oldest entry once full.
    Restores run between ``suppress()`` and ``unsuppress()`` so they do not
    record themselves.
    """

    def __init__(self, limit: int | None = None) -> None:
        self._undo: list[DataSnapshot] = []
        self._redo: list[DataSnapshot] = []
        self._limit = limit
        self.suppress_capture = False

    def capture_before_command(self, snapshot: DataSnapshot) -> None:
        if self.suppress_capture:
            return
        self.push_undo(snapshot)
        self._redo.clear()

    def push_undo(self, snapshot: DataSnapshot) -> None:
        self._undo.append(snapshot)
        if self._limit is not None and len(self._undo) > self._limit:
            del self._undo[0]
        logger.debug("History: undo depth {}", len(self._undo))

    def push_redo(self, snapshot: DataSnapshot) -> None:
        self._redo.append(snapshot)

    def pop_undo(self) -> DataSnapshot | None:
        return self._undo.pop() if self._undo else None

    def pop_redo(self) -> DataSnapshot | None:
        return self._redo.pop() if self._redo else None

    def can_undo(self) -> bool:
        return bool(self._undo)

    def can_redo(self) -> bool:
        return bool(self._redo)

    def clear(self) -> None:
        self._undo.clear()
        self._redo.clear()

    def suppress(self) -> None:
        self.suppress_capture = True

    def unsuppress(self) -> None:
        self.suppress_capture = False

    def undo_depth(self) -> int:
        return len(self._undo)

    def redo_depth(self) -> int:
        return len(self._redo)
