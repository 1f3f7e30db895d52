"""
SqliteStore: the DataSnapshot spread over one table per entity.

The store still speaks the byte-level contract: ``save`` takes the JSON
snapshot bytes, ``load`` rebuilds them. Fields that are lists or maps
(``sprint_names``, ``prefix_counters``, ``sprint_counters``,
``sprint_logs``) are kept as JSON text, and an archived card keeps its
embedded card as a JSON blob.

A save is one transaction: conflict check, delete rows that disappeared,
upsert the rest parent-first, stamp the metadata row, commit.
"""

from __future__ import annotations

import json
import sqlite3
import threading
import uuid
from contextlib import closing
from pathlib import Path

from loguru import logger

from .errors import ConflictDetectedError, DatabaseError, SerializationError, StorageIOError
from .store import PersistenceMetadata, StoreSnapshot
from .timestamps import to_rfc3339, utc_now

SCHEMA_VERSION = 2

_SCHEMA = """
CREATE TABLE IF NOT EXISTS metadata (
    id INTEGER PRIMARY KEY CHECK (id = 1),
    instance_id TEXT NOT NULL,
    saved_at TEXT NOT NULL,
    schema_version INTEGER NOT NULL DEFAULT 1
);

CREATE TABLE IF NOT EXISTS boards (
    id TEXT PRIMARY KEY,
    name TEXT NOT NULL,
    description TEXT,
    sprint_prefix TEXT,
    card_prefix TEXT,
    task_sort_field TEXT NOT NULL DEFAULT 'Default',
    task_sort_order TEXT NOT NULL DEFAULT 'Ascending',
    sprint_duration_days INTEGER,
    sprint_names TEXT NOT NULL DEFAULT '[]',       -- JSON list
    sprint_name_used_count INTEGER NOT NULL DEFAULT 0,
    next_sprint_number INTEGER NOT NULL DEFAULT 1,
    next_card_number INTEGER NOT NULL DEFAULT 1,
    active_sprint_id TEXT,
    task_list_view TEXT NOT NULL DEFAULT 'Flat',
    prefix_counters TEXT NOT NULL DEFAULT '{}',    -- JSON object
    sprint_counters TEXT NOT NULL DEFAULT '{}',    -- JSON object
    completion_column_id TEXT,
    created_at TEXT NOT NULL,
    updated_at TEXT NOT NULL
);

CREATE TABLE IF NOT EXISTS columns (
    id TEXT PRIMARY KEY,
    board_id TEXT NOT NULL,
    name TEXT NOT NULL,
    position INTEGER NOT NULL,
    wip_limit INTEGER,
    created_at TEXT NOT NULL,
    updated_at TEXT NOT NULL,
    FOREIGN KEY (board_id) REFERENCES boards(id) ON DELETE CASCADE
);

CREATE TABLE IF NOT EXISTS sprints (
    id TEXT PRIMARY KEY,
    board_id TEXT NOT NULL,
    sprint_number INTEGER NOT NULL,
    name_index INTEGER,
    prefix TEXT,
    card_prefix TEXT,
    status TEXT NOT NULL DEFAULT 'Planning',
    start_date TEXT,
    end_date TEXT,
    created_at TEXT NOT NULL,
    updated_at TEXT NOT NULL,
    FOREIGN KEY (board_id) REFERENCES boards(id) ON DELETE CASCADE
);

CREATE TABLE IF NOT EXISTS cards (
    id TEXT PRIMARY KEY,
    column_id TEXT NOT NULL,
    title TEXT NOT NULL,
    description TEXT,
    priority TEXT NOT NULL DEFAULT 'Medium',
    status TEXT NOT NULL DEFAULT 'Todo',
    position INTEGER NOT NULL,
    due_date TEXT,
    points INTEGER,
    card_number INTEGER NOT NULL DEFAULT 0,
    sprint_id TEXT,
    assigned_prefix TEXT,
    card_prefix TEXT,
    created_at TEXT NOT NULL,
    updated_at TEXT NOT NULL,
    completed_at TEXT,
    sprint_logs TEXT NOT NULL DEFAULT '[]',        -- JSON list
    FOREIGN KEY (column_id) REFERENCES columns(id) ON DELETE CASCADE,
    FOREIGN KEY (sprint_id) REFERENCES sprints(id) ON DELETE SET NULL
);

CREATE TABLE IF NOT EXISTS archived_cards (
    id TEXT PRIMARY KEY,
    card_data TEXT NOT NULL,                       -- JSON blob of the card
    archived_at TEXT NOT NULL,
    original_column_id TEXT NOT NULL,
    original_position INTEGER NOT NULL
);

CREATE TABLE IF NOT EXISTS card_edges (
    id INTEGER PRIMARY KEY AUTOINCREMENT,
    source TEXT NOT NULL,
    target TEXT NOT NULL,
    edge_type TEXT NOT NULL,
    direction TEXT NOT NULL,
    weight REAL,
    created_at TEXT NOT NULL,
    archived_at TEXT
);

CREATE INDEX IF NOT EXISTS idx_columns_board_id ON columns(board_id);
CREATE INDEX IF NOT EXISTS idx_sprints_board_id ON sprints(board_id);
CREATE INDEX IF NOT EXISTS idx_cards_column_id ON cards(column_id);
CREATE INDEX IF NOT EXISTS idx_cards_sprint_id ON cards(sprint_id);
CREATE INDEX IF NOT EXISTS idx_card_edges_source ON card_edges(source);
CREATE INDEX IF NOT EXISTS idx_card_edges_target ON card_edges(target);
"""

# (snapshot key, table, columns, JSON-encoded columns), parent tables first
_ENTITY_TABLES: tuple[tuple[str, str, tuple[str, ...], frozenset[str]], ...] = (
    (
        "boards",
        "boards",
        (
            "id", "name", "description", "sprint_prefix", "card_prefix",
            "task_sort_field", "task_sort_order", "sprint_duration_days",
            "sprint_names", "sprint_name_used_count", "next_sprint_number",
            "next_card_number", "active_sprint_id", "task_list_view",
            "prefix_counters", "sprint_counters", "completion_column_id",
            "created_at", "updated_at",
        ),
        frozenset({"sprint_names", "prefix_counters", "sprint_counters"}),
    ),
    (
        "columns",
        "columns",
        ("id", "board_id", "name", "position", "wip_limit", "created_at", "updated_at"),
        frozenset(),
    ),
    (
        "sprints",
        "sprints",
        (
            "id", "board_id", "sprint_number", "name_index", "prefix", "card_prefix",
            "status", "start_date", "end_date", "created_at", "updated_at",
        ),
        frozenset(),
    ),
    (
        "cards",
        "cards",
        (
            "id", "column_id", "title", "description", "priority", "status",
            "position", "due_date", "points", "card_number", "sprint_id",
            "assigned_prefix", "card_prefix", "created_at", "updated_at",
            "completed_at", "sprint_logs",
        ),
        frozenset({"sprint_logs"}),
    ),
)

_ARCHIVED_COLUMNS = ("id", "card_data", "archived_at", "original_column_id", "original_position")
_EDGE_COLUMNS = ("source", "target", "edge_type", "direction", "weight", "created_at", "archived_at")

# Defaults for keys an older snapshot may not carry
_JSON_DEFAULTS = {
    "sprint_names": [],
    "prefix_counters": {},
    "sprint_counters": {},
    "sprint_logs": [],
}
_NOT_NULL_DEFAULTS = {
    "task_sort_field": "Default",
    "task_sort_order": "Ascending",
    "sprint_name_used_count": 0,
    "next_sprint_number": 1,
    "next_card_number": 1,
    "task_list_view": "Flat",
    "priority": "Medium",
    "status": "Todo",
    "card_number": 0,
    "position": 0,
}


def _connect(db_path: Path) -> sqlite3.Connection:
    """Open a connection with FK enforcement and WAL mode; transactions are explicit."""
    conn = sqlite3.connect(str(db_path), isolation_level=None)
    conn.row_factory = sqlite3.Row
    conn.execute("PRAGMA foreign_keys = ON")
    conn.execute("PRAGMA journal_mode = WAL")
    return conn


def _upsert_sql(table: str, columns: tuple[str, ...]) -> str:
    placeholders = ", ".join("?" for _ in columns)
    updates = ", ".join(f"{c} = excluded.{c}" for c in columns if c != "id")
    return (
        f"INSERT INTO {table} ({', '.join(columns)}) VALUES ({placeholders}) "
        f"ON CONFLICT(id) DO UPDATE SET {updates}"
    )


def _row_values(item: dict, columns: tuple[str, ...], json_columns: frozenset[str]) -> tuple:
    values = []
    for column in columns:
        if column in json_columns:
            values.append(json.dumps(item.get(column, _JSON_DEFAULTS[column])))
        else:
            value = item.get(column)
            if value is None:
                value = _NOT_NULL_DEFAULTS.get(column)
            values.append(value)
    return tuple(values)


def _row_dict(row: sqlite3.Row, json_columns: frozenset[str]) -> dict:
    item = dict(row)
    for column in json_columns:
        item[column] = json.loads(item[column]) if item[column] else _JSON_DEFAULTS[column]
    return item


class SqliteStore:
    """
    Args:
        path:        Database file. Created with its schema on first save.
        instance_id: Identifies this process in the metadata row. Random by default.
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
        with self._meta_lock:
            self._last_known = None

    def exists(self) -> bool:
        return self._path.exists()

    # ------------------------------------------------------------------
    # Save
    # ------------------------------------------------------------------

    def save(self, snapshot: StoreSnapshot) -> PersistenceMetadata:
        """
        Persist ``snapshot`` in one transaction.

        Raises:
            ConflictDetectedError: The metadata row changed since our last load or save.
            SerializationError:    ``snapshot.data`` is not a JSON object.
            DatabaseError:         SQLite rejected the write; nothing was committed.
        """
        try:
            data = json.loads(snapshot.data.decode("utf-8"))
        except (UnicodeDecodeError, json.JSONDecodeError) as exc:
            raise SerializationError(f"snapshot data is not JSON: {exc}") from exc
        if not isinstance(data, dict):
            raise SerializationError("snapshot data must be a JSON object")

        metadata = PersistenceMetadata(instance_id=self._instance_id, saved_at=utc_now())
        try:
            with closing(_connect(self._path)) as conn:
                conn.executescript(_SCHEMA)
                conn.execute("BEGIN IMMEDIATE")
                try:
                    self._check_conflict(conn)
                    self._delete_missing(conn, data)
                    self._upsert_all(conn, data)
                    conn.execute(
                        "INSERT INTO metadata (id, instance_id, saved_at, schema_version) "
                        "VALUES (1, ?, ?, ?) "
                        "ON CONFLICT(id) DO UPDATE SET instance_id = excluded.instance_id, "
                        "saved_at = excluded.saved_at, schema_version = excluded.schema_version",
                        (str(metadata.instance_id), to_rfc3339(metadata.saved_at), SCHEMA_VERSION),
                    )
                except BaseException:
                    conn.execute("ROLLBACK")
                    raise
                conn.execute("COMMIT")
        except sqlite3.Error as exc:
            raise DatabaseError(str(exc)) from exc

        with self._meta_lock:
            self._last_known = metadata
        logger.info("Saved snapshot to {}", self._path)
        return metadata

    def _check_conflict(self, conn: sqlite3.Connection) -> None:
        with self._meta_lock:
            last_known = self._last_known
        if last_known is None:
            return
        on_disk = self._read_metadata(conn)
        if on_disk is not None and on_disk != last_known:
            logger.warning("Conflict on {}: metadata row changed since last sync", self._path)
            raise ConflictDetectedError(str(self._path))

    def _delete_missing(self, conn: sqlite3.Connection, data: dict) -> None:
        # Children first so a cascade never hits a row we are about to upsert
        for key, table, _, _ in reversed(_ENTITY_TABLES):
            keep = {str(item["id"]) for item in data.get(key) or []}
            self._delete_absent(conn, table, keep)
        keep = {str(item["card"]["id"]) for item in data.get("archived_cards") or []}
        self._delete_absent(conn, "archived_cards", keep)

    @staticmethod
    def _delete_absent(conn: sqlite3.Connection, table: str, keep: set[str]) -> None:
        existing = {row["id"] for row in conn.execute(f"SELECT id FROM {table}")}
        stale = existing - keep
        if stale:
            conn.executemany(f"DELETE FROM {table} WHERE id = ?", [(i,) for i in stale])
            logger.debug("Deleted {} row(s) from {}", len(stale), table)

    def _upsert_all(self, conn: sqlite3.Connection, data: dict) -> None:
        for key, table, columns, json_columns in _ENTITY_TABLES:
            rows = [_row_values(item, columns, json_columns) for item in data.get(key) or []]
            if rows:
                conn.executemany(_upsert_sql(table, columns), rows)

        archived_rows = [
            (
                str(item["card"]["id"]),
                json.dumps(item["card"]),
                item["archived_at"],
                item["original_column_id"],
                item.get("original_position", 0),
            )
            for item in data.get("archived_cards") or []
        ]
        if archived_rows:
            conn.executemany(_upsert_sql("archived_cards", _ARCHIVED_COLUMNS), archived_rows)

        # Edges have no identity of their own; replace them wholesale
        conn.execute("DELETE FROM card_edges")
        edges = ((data.get("graph") or {}).get("cards") or {}).get("edges") or []
        if edges:
            conn.executemany(
                f"INSERT INTO card_edges ({', '.join(_EDGE_COLUMNS)}) "
                f"VALUES ({', '.join('?' for _ in _EDGE_COLUMNS)})",
                [tuple(edge.get(c) for c in _EDGE_COLUMNS) for edge in edges],
            )

    # ------------------------------------------------------------------
    # Load
    # ------------------------------------------------------------------

    def load(self) -> tuple[StoreSnapshot, PersistenceMetadata]:
        """
        Rebuild the snapshot bytes from every table.

        Raises:
            StorageIOError: The database file does not exist.
            DatabaseError:  SQLite failed to read it.
        """
        if not self._path.exists():
            raise StorageIOError(f"{self._path} does not exist")
        try:
            with closing(_connect(self._path)) as conn:
                conn.executescript(_SCHEMA)
                data = self._read_all(conn)
                metadata = self._read_metadata(conn)
        except sqlite3.Error as exc:
            raise DatabaseError(str(exc)) from exc
        except json.JSONDecodeError as exc:
            raise SerializationError(f"corrupt JSON column in {self._path}: {exc}") from exc

        with self._meta_lock:
            self._last_known = metadata
        if metadata is None:
            # Empty database: nothing has been saved yet
            metadata = PersistenceMetadata(instance_id=self._instance_id)
        logger.info("Loaded {} ({} boards, {} cards)", self._path, len(data["boards"]), len(data["cards"]))
        return StoreSnapshot(data=json.dumps(data).encode("utf-8"), metadata=metadata), metadata

    @staticmethod
    def _read_all(conn: sqlite3.Connection) -> dict:
        data: dict = {}
        for key, table, columns, json_columns in _ENTITY_TABLES:
            rows = conn.execute(f"SELECT {', '.join(columns)} FROM {table} ORDER BY rowid")
            data[key] = [_row_dict(row, json_columns) for row in rows]

        data["archived_cards"] = [
            {
                "card": json.loads(row["card_data"]),
                "archived_at": row["archived_at"],
                "original_column_id": row["original_column_id"],
                "original_position": row["original_position"],
            }
            for row in conn.execute(
                f"SELECT {', '.join(_ARCHIVED_COLUMNS)} FROM archived_cards ORDER BY rowid"
            )
        ]
        edges = [
            dict(row)
            for row in conn.execute(f"SELECT {', '.join(_EDGE_COLUMNS)} FROM card_edges ORDER BY id")
        ]
        data["graph"] = {"cards": {"edges": edges}}
        return data

    @staticmethod
    def _read_metadata(conn: sqlite3.Connection) -> PersistenceMetadata | None:
        row = conn.execute("SELECT instance_id, saved_at FROM metadata WHERE id = 1").fetchone()
        if row is None:
            return None
        return PersistenceMetadata.from_dict(dict(row))
