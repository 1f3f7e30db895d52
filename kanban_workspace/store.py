"""
Persistence contract shared by the JSON and SQLite stores.

Stores deal in opaque bytes (a serialised DataSnapshot) plus a small
metadata pair used for conflict detection between processes that share
one file. Stores are synchronous; the workspace calls them under its
lock, which is fine at this scale.
"""

from __future__ import annotations

import os
import tempfile
import uuid
from dataclasses import dataclass, field
from datetime import datetime
from pathlib import Path
from typing import Protocol

from loguru import logger

from .errors import SerializationError, StorageIOError
from .timestamps import from_rfc3339, to_rfc3339, utc_now

FORMAT_VERSION = 2


@dataclass(frozen=True)
class PersistenceMetadata:
    instance_id: uuid.UUID
    saved_at: datetime = field(default_factory=utc_now)

    def to_dict(self) -> dict:
        return {"instance_id": str(self.instance_id), "saved_at": to_rfc3339(self.saved_at)}

    @classmethod
    def from_dict(cls, raw: object) -> "PersistenceMetadata":
        if not isinstance(raw, dict):
            raise SerializationError("metadata must be a JSON object")
        try:
            return cls(
                instance_id=uuid.UUID(str(raw["instance_id"])),
                saved_at=from_rfc3339(str(raw["saved_at"])),
            )
        except (KeyError, ValueError) as exc:
            raise SerializationError(f"malformed metadata: {exc}") from exc


@dataclass
class StoreSnapshot:
    data: bytes
    metadata: PersistenceMetadata


class PersistenceStore(Protocol):
    @property
    def path(self) -> Path: ...

    @property
    def instance_id(self) -> uuid.UUID: ...

    @property
    def last_known_metadata(self) -> PersistenceMetadata | None: ...

    def save(self, snapshot: StoreSnapshot) -> PersistenceMetadata: ...

    def load(self) -> tuple[StoreSnapshot, PersistenceMetadata]: ...

    def exists(self) -> bool: ...

    def clear_last_known_metadata(self) -> None: ...


# ---------------------------------------------------------------------------
# Atomic file writes
# ---------------------------------------------------------------------------


def atomic_write(path: Path, data: bytes) -> None:
    """
    Write ``data`` to a sibling temp file, fsync it, then rename over ``path``.

    A failure at any step leaves ``path`` untouched.

    Raises:
        StorageIOError: The directory is missing or not writable, or the rename failed.
    """
    path = Path(path)
    parent = path.parent if str(path.parent) else Path(".")
    tmp_name: str | None = None
    try:
        with tempfile.NamedTemporaryFile(
            dir=parent, prefix=f".{path.name}.", suffix=".tmp", delete=False
        ) as tmp:
            tmp_name = tmp.name
            tmp.write(data)
            tmp.flush()
            os.fsync(tmp.fileno())
        os.replace(tmp_name, path)
    except OSError as exc:
        if tmp_name is not None and os.path.exists(tmp_name):
            os.unlink(tmp_name)
        raise StorageIOError(f"failed to write {path}: {exc}") from exc
    logger.debug("Atomically wrote {} bytes to {}", len(data), path)


def read_all(path: Path) -> bytes:
    try:
        return Path(path).read_bytes()
    except OSError as exc:
        raise StorageIOError(f"failed to read {path}: {exc}") from exc
