"""
On-disk format migrations.

  V1  the raw DataSnapshot object at the root of the file
  V2  {"version": 2, "metadata": {...}, "data": <DataSnapshot>}

``Migrator.ensure_current`` is called by the JSON store before every load,
so a V1 file is upgraded in place the first time it is opened. A copy of
the V1 file is kept at ``<path>.v1.backup`` until the rewrite verifies.
"""

from __future__ import annotations

import json
import shutil
import uuid
from enum import IntEnum
from pathlib import Path

from loguru import logger

from .errors import NotFoundError, SerializationError, StorageIOError, ValidationError
from .store import FORMAT_VERSION, PersistenceMetadata, atomic_write, read_all


class FormatVersion(IntEnum):
    V1 = 1
    V2 = 2


def _read_json(path: Path) -> object:
    try:
        return json.loads(read_all(path).decode("utf-8"))
    except (UnicodeDecodeError, json.JSONDecodeError) as exc:
        raise SerializationError(f"{path}: {exc}") from exc


def detect_version(path: Path) -> int:
    """
    Classify a file by its root object.

    A numeric ``version`` key wins; otherwise a ``boards`` key means V1.
    Anything else, including a missing file, is treated as V2.
    """
    path = Path(path)
    if not path.exists():
        return FormatVersion.V2
    raw = _read_json(path)
    if isinstance(raw, dict):
        version = raw.get("version")
        if isinstance(version, int) and not isinstance(version, bool):
            return version
        if "boards" in raw:
            return FormatVersion.V1
    return FormatVersion.V2


def backup_path_for(path: Path) -> Path:
    path = Path(path)
    return path.with_name(f"{path.name}.v1.backup")


class Migrator:
    @classmethod
    def ensure_current(cls, path: Path) -> bool:
        """Upgrade ``path`` to the current format. Returns True if it was rewritten."""
        version = detect_version(path)
        if version == FORMAT_VERSION:
            return False
        cls.migrate(version, FORMAT_VERSION, path)
        return True

    @classmethod
    def migrate(cls, from_version: int, to_version: int, path: Path) -> None:
        if from_version == to_version:
            return
        if (from_version, to_version) == (FormatVersion.V1, FormatVersion.V2):
            cls.migrate_v1_to_v2(path)
            return
        raise SerializationError(
            f"Unsupported migration: V{from_version} -> V{to_version}"
        )

    @classmethod
    def migrate_v1_to_v2(cls, path: Path) -> None:
        path = Path(path)
        original = _read_json(path)

        backup = backup_path_for(path)
        try:
            shutil.copy2(path, backup)
        except OSError as exc:
            raise StorageIOError(f"failed to back up {path}: {exc}") from exc
        logger.info("Created backup at {}", backup)

        envelope = {
            "version": int(FormatVersion.V2),
            # A fresh instance id: nobody has a last-known view of this file yet
            "metadata": PersistenceMetadata(instance_id=uuid.uuid4()).to_dict(),
            "data": original,
        }
        atomic_write(path, json.dumps(envelope, indent=2).encode("utf-8"))
        logger.info("Migrated {} from V1 to V2 format", path)

        try:
            cls._verify(path, original)
        except SerializationError as exc:
            logger.error("Migration verification failed: {}. Backup preserved at {}", exc, backup)
            raise

        try:
            backup.unlink()
        except OSError as exc:
            logger.warning(
                "Migration successful but failed to remove backup at {}: {}", backup, exc
            )
        else:
            logger.success("Migration of {} verified, backup removed", path)

    @staticmethod
    def _verify(path: Path, original: object) -> None:
        migrated = _read_json(path)
        if not isinstance(migrated, dict):
            raise SerializationError("Migrated file is not a JSON object")
        if migrated.get("version") != FormatVersion.V2:
            raise SerializationError("Migrated file missing or invalid version field")
        if not isinstance(migrated.get("metadata"), dict):
            raise SerializationError("Migrated file missing or invalid metadata field")
        if "data" not in migrated:
            raise SerializationError("Migrated file missing data field")
        if migrated["data"] != original:
            raise SerializationError("Migrated data does not match original data")
        logger.debug("Migration verification passed for {}", path)


# ---------------------------------------------------------------------------
# JSON -> SQLite
# ---------------------------------------------------------------------------


def migrate_json_to_sqlite(json_path: Path, sqlite_path: Path) -> None:
    """
    Copy the contents of a JSON store into a new SQLite database.

    Raises:
        NotFoundError:   ``json_path`` does not exist.
        ValidationError: ``sqlite_path`` already exists.
    """
    # Both stores depend on this module; import them late.
    from .json_store import JsonFileStore
    from .sqlite_store import SqliteStore

    json_path, sqlite_path = Path(json_path), Path(sqlite_path)
    if not json_path.exists():
        raise NotFoundError(f"JSON file {json_path}")
    if sqlite_path.exists():
        raise ValidationError(
            f"SQLite database already exists: {sqlite_path}. "
            "Remove it first or use a different path."
        )

    logger.info("Migrating from JSON ({}) to SQLite ({})", json_path, sqlite_path)
    snapshot, _ = JsonFileStore(json_path).load()
    SqliteStore(sqlite_path).save(snapshot)
    logger.success("Migration to {} completed", sqlite_path)


def auto_migrate_if_needed(json_path: Path, sqlite_path: Path) -> bool:
    """Migrate only when the JSON file exists and the database does not."""
    if Path(sqlite_path).exists():
        return False
    if Path(json_path).exists():
        migrate_json_to_sqlite(json_path, sqlite_path)
        return True
    return False
