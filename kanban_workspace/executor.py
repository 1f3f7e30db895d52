"""
CommandExecutor: owns the workspace state and applies command batches.

A batch is atomic. The executor clones the state before the first
command, applies the commands in order, and on the first error puts the
clone back and re-raises. Observers only ever see post-batch state.
"""

from __future__ import annotations

from typing import Callable, Iterable

from loguru import logger

from .commands import Command, CommandContext, describe, execute
from .domain import (
    DEFAULT_CARD_PREFIX,
    DEFAULT_SPRINT_DURATION_DAYS,
    DEFAULT_SPRINT_PREFIX,
)
from .history import HistoryManager
from .snapshot import DataSnapshot

Observer = Callable[[DataSnapshot, list[str]], None]


class CommandExecutor:
    def __init__(
        self,
        state: DataSnapshot | None = None,
        history: HistoryManager | None = None,
        default_card_prefix: str = DEFAULT_CARD_PREFIX,
        default_sprint_prefix: str = DEFAULT_SPRINT_PREFIX,
        default_sprint_duration_days: int = DEFAULT_SPRINT_DURATION_DAYS,
    ) -> None:
        self._state = state if state is not None else DataSnapshot()
        self.history = history
        self._defaults = {
            "default_card_prefix": default_card_prefix,
            "default_sprint_prefix": default_sprint_prefix,
            "default_sprint_duration_days": default_sprint_duration_days,
        }
        self._observers: list[Observer] = []

    @property
    def state(self) -> DataSnapshot:
        """Live state. Treat as read-only outside a batch."""
        return self._state

    def add_observer(self, observer: Observer) -> None:
        self._observers.append(observer)

    def context(self) -> CommandContext:
        return CommandContext.over(self._state, **self._defaults)

    def execute(self, command: Command) -> list[str]:
        return self.execute_batch([command])

    def execute_batch(self, commands: Iterable[Command]) -> list[str]:
        """
        Apply ``commands`` as one unit.

        Returns:
            The description of each applied command, in order.

        Raises:
            KanbanError: The first failing command's error; state is unchanged.
        """
        batch = list(commands)
        if not batch:
            return []

        before = self._state.clone()
        ctx = self.context()
        descriptions: list[str] = []
        try:
            for command in batch:
                description = describe(command)
                logger.debug("Applying: {}", description)
                execute(command, ctx)
                descriptions.append(description)
        except Exception as exc:
            self._state.restore_from(before)
            logger.debug(
                "Batch rolled back after {} of {} commands: {}",
                len(descriptions),
                len(batch),
                exc,
            )
            raise

        if self.history is not None:
            self.history.capture_before_command(before)
        logger.info("Applied batch of {} command(s)", len(batch))
        self._notify(descriptions)
        return descriptions

    # ------------------------------------------------------------------
    # Undo / redo
    # ------------------------------------------------------------------

    def undo(self) -> bool:
        if self.history is None:
            return False
        previous = self.history.pop_undo()
        if previous is None:
            return False
        self.history.push_redo(self._state.clone())
        self._restore(previous)
        self._notify(["Undo"])
        return True

    def redo(self) -> bool:
        if self.history is None:
            return False
        following = self.history.pop_redo()
        if following is None:
            return False
        self.history.push_undo(self._state.clone())
        self._restore(following)
        self._notify(["Redo"])
        return True

    def replace_state(self, snapshot: DataSnapshot) -> None:
        """Swap in freshly loaded state; history no longer applies to it."""
        self._restore(snapshot)
        if self.history is not None:
            self.history.clear()

    def _restore(self, snapshot: DataSnapshot) -> None:
        if self.history is None:
            self._state.restore_from(snapshot)
            return
        self.history.suppress()
        try:
            self._state.restore_from(snapshot)
        finally:
            self.history.unsuppress()

    def _notify(self, descriptions: list[str]) -> None:
        for observer in self._observers:
            try:
                observer(self._state, descriptions)
            except Exception as e:
                logger.error("Observer {} failed: {}", getattr(observer, "__name__", observer), e)
