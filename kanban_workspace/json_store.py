"""
JsonFileStore: a single JSON file holding a versioned envelope.

    {
      "version": 2,
      "metadata": {"instance_id": "<uuid>", "saved_at": "<rfc3339>"},
      "data": { "boards": [...], "columns": [...], ... }
    }

Every save is an atomic replace. Before overwriting, the store compares
the metadata on disk with what it last read or wrote; a mismatch means
another process got there first and the save is refused.
"""

from __future__ import annotations

import json
import threading
import uuid
from pathlib import Path

from loguru import logger

from .errors import ConflictDetectedError, SerializationError, StorageIOError
from .migration import Migrator
from .store import (
    FORMAT_VERSION,
    PersistenceMetadata,
    StoreSnapshot,
    atomic_write,
    read_all,
)
from .timestamps import utc_now


def _parse_envelope(raw_bytes: bytes, path: Path) -> dict:
    try:
        envelope = json.loads(raw_bytes.decode("utf-8"))
    except (UnicodeDecodeError, json.JSONDecodeError) as exc:
        raise SerializationError(f"{path}: {exc}") from exc
    if not isinstance(envelope, dict):
        raise SerializationError(f"{path}: expected a JSON object")
    version = envelope.get("version")
    if version != FORMAT_VERSION:
        raise SerializationError(f"Unsupported format version: {version}")
    return envelope


class JsonFileStore:
    """
    Args:
        path:        File to read and write. The parent directory must exist.
        instance_id: Identifies this process in saved metadata. Random by default.
    """

    def __init__(self, path: str | Path, instance_id: uuid.UUID | None = None) -> None:
        self._path = Path(path)
        self._instance_id = instance_id or uuid.uuid4()
        self._last_known: PersistenceMetadata | None = None
        self._meta_lock = threading.Lock()

    @property
    def path(self) -> Path:
        return self._path

    @property
    def instance_id(self) -> uuid.UUID:
        return self._instance_id

    @property
    def last_known_metadata(self) -> PersistenceMetadata | None:
        with self._meta_lock:
            return self._last_known

    def clear_last_known_metadata(self) -> None:
        """Forget the on-disk view so the next save overwrites unconditionally."""
        with self._meta_lock:
            self._last_known = None

    def exists(self) -> bool:
        return self._path.exists()

    # ------------------------------------------------------------------
    # Save / load
    # ------------------------------------------------------------------

    def save(self, snapshot: StoreSnapshot) -> PersistenceMetadata:
        """
        Write ``snapshot`` atomically.

        Raises:
            ConflictDetectedError: The file changed since our last load or save.
            SerializationError:    ``snapshot.data`` is not valid JSON.
            StorageIOError:        The write or rename failed.
        """
        self._check_conflict()

        try:
            data = json.loads(snapshot.data.decode("utf-8"))
        except (UnicodeDecodeError, json.JSONDecodeError) as exc:
            raise SerializationError(f"snapshot data is not JSON: {exc}") from exc

        metadata = PersistenceMetadata(instance_id=self._instance_id, saved_at=utc_now())
        envelope = {
            "version": FORMAT_VERSION,
            "metadata": metadata.to_dict(),
            "data": data,
        }
        payload = json.dumps(envelope, indent=2).encode("utf-8")
        atomic_write(self._path, payload)

        with self._meta_lock:
            self._last_known = metadata
        logger.info("Saved {} bytes to {}", len(payload), self._path)
        return metadata

    def load(self) -> tuple[StoreSnapshot, PersistenceMetadata]:
        """
        Read the file, upgrading a V1 file in place first.

        Raises:
            StorageIOError:     The file is missing or unreadable.
            SerializationError: The file is not a V2 envelope.
        """
        if not self._path.exists():
            raise StorageIOError(f"{self._path} does not exist")
        if Migrator.ensure_current(self._path):
            logger.info("Upgraded {} to format version {}", self._path, FORMAT_VERSION)

        envelope = _parse_envelope(read_all(self._path), self._path)
        metadata = PersistenceMetadata.from_dict(envelope.get("metadata"))
        data = json.dumps(envelope.get("data", {}), indent=2).encode("utf-8")

        with self._meta_lock:
            self._last_known = metadata
        logger.info("Loaded {} (saved {} by {})", self._path, metadata.saved_at, metadata.instance_id)
        return StoreSnapshot(data=data, metadata=metadata), metadata

    def _check_conflict(self) -> None:
        with self._meta_lock:
            last_known = self._last_known
        if last_known is None or not self._path.exists():
            return
        try:
            envelope = _parse_envelope(read_all(self._path), self._path)
            on_disk = PersistenceMetadata.from_dict(envelope.get("metadata"))
        except SerializationError as exc:
            # Not something we wrote, so someone else did
            raise ConflictDetectedError(str(self._path), source=exc) from exc
        if on_disk != last_known:
            logger.warning(
                "Conflict on {}: expected {} at {}, found {} at {}",
                self._path,
                last_known.instance_id,
                last_known.saved_at,
                on_disk.instance_id,
                on_disk.saved_at,
            )
            raise ConflictDetectedError(str(self._path))
