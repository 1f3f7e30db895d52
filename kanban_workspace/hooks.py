"""
Hooks system: decouple side effects from workspace logic.

The workspace fires events after a batch lands, after a save, and when a
save hits a conflict; listeners react. Nothing in workspace.py knows what
happens downstream.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Awaitable, Callable

from loguru import logger


@dataclass
class WorkspaceEvent:
    """Payload handed to every hook."""

    name: str
    descriptions: list[str] = field(default_factory=list)  # describe() of each command
    detail: str | None = None  # e.g. the store path for save / conflict events


AsyncHookFn = Callable[[WorkspaceEvent], Awaitable[None]]

HOOK_EVENTS = ("on_batch", "on_saved", "on_conflict")


class HookRegistry:
    """Maps event names to lists of async callables."""

    def __init__(self) -> None:
        self._hooks: dict[str, list[AsyncHookFn]] = {name: [] for name in HOOK_EVENTS}

    def register(self, event: str, hook: AsyncHookFn) -> None:
        if event not in self._hooks:
            raise ValueError(f"Unknown hook event: {event}")
        self._hooks[event].append(hook)

    async def fire(self, event: WorkspaceEvent) -> None:
        for hook in self._hooks.get(event.name, []):
            try:
                await hook(event)
            except Exception as e:
                logger.error("Hook {} failed: {}", event.name, e)


async def log_batch(event: WorkspaceEvent) -> None:
    """Built-in hook: logs every applied batch."""
    logger.info("Batch applied: {}", "; ".join(event.descriptions))
