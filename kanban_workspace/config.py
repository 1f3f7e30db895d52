"""
Workspace settings: built-in defaults, then an optional TOML file, then
environment variables. Later sources win.

    # ~/.config/kanban/config.toml
    default_branch_prefix = "feat"
    sprint_duration_days = 10
    store = "sqlite"
"""

from __future__ import annotations

import os
import tomllib
from dataclasses import dataclass, replace
from pathlib import Path
from typing import Mapping

from loguru import logger

from .domain import (
    DEFAULT_CARD_PREFIX,
    DEFAULT_SPRINT_DURATION_DAYS,
    DEFAULT_SPRINT_PREFIX,
    validate_prefix,
)
from .errors import ValidationError

STORE_BACKENDS = ("json", "sqlite")
DEFAULT_HISTORY_LIMIT = 100


def default_config_path(env: Mapping[str, str] | None = None) -> Path:
    env = os.environ if env is None else env
    base = env.get("XDG_CONFIG_HOME")
    root = Path(base) if base else Path.home() / ".config"
    return root / "kanban" / "config.toml"


def _positive_int(raw: object, name: str) -> int:
    try:
        value = int(raw)
    except (TypeError, ValueError) as exc:
        raise ValidationError(f"{name} must be an integer, got {raw!r}") from exc
    if value <= 0:
        raise ValidationError(f"{name} must be positive, got {value}")
    return value


def _store_backend(raw: str, name: str) -> str:
    backend = raw.strip().lower()
    if backend not in STORE_BACKENDS:
        raise ValidationError(f"{name} must be one of {', '.join(STORE_BACKENDS)}, got {raw!r}")
    return backend


@dataclass(frozen=True)
class WorkspaceConfig:
    file: Path | None = None  # None keeps the workspace in memory
    store: str = "json"
    default_card_prefix: str = DEFAULT_CARD_PREFIX
    default_sprint_prefix: str = DEFAULT_SPRINT_PREFIX
    sprint_duration_days: int = DEFAULT_SPRINT_DURATION_DAYS
    history_limit: int = DEFAULT_HISTORY_LIMIT

    @classmethod
    def load(
        cls,
        config_path: Path | None = None,
        env: Mapping[str, str] | None = None,
    ) -> "WorkspaceConfig":
        """
        Build the effective settings.

        Args:
            config_path: TOML file to read. Defaults to ``$XDG_CONFIG_HOME/kanban/config.toml``;
                         a missing file is skipped.
            env:         Environment to read overrides from. Defaults to ``os.environ``.

        Raises:
            ValidationError: A value is malformed (bad prefix, non-numeric duration, unknown store).
        """
        env = os.environ if env is None else env
        path = config_path or default_config_path(env)
        config = cls()
        if path.exists():
            config = config.merge_file(path)
        return config.merge_env(env)

    def merge_file(self, path: Path) -> "WorkspaceConfig":
        try:
            with path.open("rb") as fh:
                raw = tomllib.load(fh)
        except (OSError, tomllib.TOMLDecodeError) as exc:
            raise ValidationError(f"cannot read config {path}: {exc}") from exc
        logger.debug("Read config from {}", path)

        config = self
        prefix = raw.get("default_branch_prefix")
        if prefix is not None:
            prefix = validate_prefix(str(prefix))
            config = replace(config, default_card_prefix=prefix, default_sprint_prefix=prefix)
        if "sprint_duration_days" in raw:
            config = replace(
                config,
                sprint_duration_days=_positive_int(raw["sprint_duration_days"], "sprint_duration_days"),
            )
        if "store" in raw:
            config = replace(config, store=_store_backend(str(raw["store"]), "store"))
        return config

    def merge_env(self, env: Mapping[str, str]) -> "WorkspaceConfig":
        config = self
        if env.get("KANBAN_FILE"):
            config = replace(config, file=Path(env["KANBAN_FILE"]).expanduser())
        if env.get("KANBAN_STORE"):
            config = replace(config, store=_store_backend(env["KANBAN_STORE"], "KANBAN_STORE"))
        if env.get("KANBAN_DEFAULT_CARD_PREFIX"):
            config = replace(
                config, default_card_prefix=validate_prefix(env["KANBAN_DEFAULT_CARD_PREFIX"])
            )
        if env.get("KANBAN_DEFAULT_SPRINT_PREFIX"):
            config = replace(
                config, default_sprint_prefix=validate_prefix(env["KANBAN_DEFAULT_SPRINT_PREFIX"])
            )
        if env.get("KANBAN_SPRINT_DURATION_DAYS"):
            config = replace(
                config,
                sprint_duration_days=_positive_int(
                    env["KANBAN_SPRINT_DURATION_DAYS"], "KANBAN_SPRINT_DURATION_DAYS"
                ),
            )
        if env.get("KANBAN_HISTORY_LIMIT"):
            config = replace(
                config,
                history_limit=_positive_int(env["KANBAN_HISTORY_LIMIT"], "KANBAN_HISTORY_LIMIT"),
            )
        return config
