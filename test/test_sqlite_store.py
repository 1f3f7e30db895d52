"""Tests for kanban_workspace.sqlite_store - table-per-entity persistence."""

import sqlite3
import uuid
from pathlib import Path
import tempfile

import pytest

from kanban_workspace.commands import (
    AddBlocks,
    ArchiveCard,
    AssignCardToSprint,
    CreateBoard,
    CreateCard,
    CreateColumn,
    CreateSprint,
    DeleteBoard,
)
from kanban_workspace.errors import ConflictDetectedError, SerializationError, StorageIOError
from kanban_workspace.executor import CommandExecutor
from kanban_workspace.snapshot import DataSnapshot
from kanban_workspace.sqlite_store import SCHEMA_VERSION, SqliteStore
from kanban_workspace.store import PersistenceMetadata, StoreSnapshot


@pytest.fixture
def temp_db_path():
    """Create a temporary database path."""
    with tempfile.NamedTemporaryFile(delete=False, suffix=".db") as f:
        path = Path(f.name)
    path.unlink()
    yield path
    for leftover in path.parent.glob(f"{path.name}*"):
        leftover.unlink()


@pytest.fixture
def executor():
    executor = CommandExecutor()
    board = CreateBoard(name="Relational", card_prefix="rel")
    todo = CreateColumn(board_id=board.board_id, name="Todo")
    done = CreateColumn(board_id=board.board_id, name="Done")
    sprint = CreateSprint(board_id=board.board_id)
    a = CreateCard(board_id=board.board_id, column_id=todo.column_id, title="a", points=3)
    b = CreateCard(board_id=board.board_id, column_id=todo.column_id, title="b")
    executor.execute_batch(
        [
            board,
            todo,
            done,
            sprint,
            a,
            b,
            AssignCardToSprint(a.card_id, sprint.sprint_id),
            AddBlocks(a.card_id, b.card_id),
            ArchiveCard(b.card_id),
        ]
    )
    return executor


def snapshot_of(state: DataSnapshot, store: SqliteStore) -> StoreSnapshot:
    return StoreSnapshot(
        data=state.to_json_bytes(),
        metadata=PersistenceMetadata(instance_id=store.instance_id),
    )


def test_roundtrip_preserves_every_collection(temp_db_path, executor):
    state = executor.state
    store = SqliteStore(temp_db_path)
    store.save(snapshot_of(state, store))

    snapshot, _ = SqliteStore(temp_db_path).load()
    loaded = DataSnapshot.from_json_bytes(snapshot.data)

    assert loaded.boards[0].card_prefix == "rel"
    assert loaded.boards[0].prefix_counters == state.boards[0].prefix_counters
    assert [c.name for c in loaded.columns] == ["Todo", "Done"]
    assert loaded.cards[0].points == 3
    assert loaded.cards[0].sprint_id == state.sprints[0].id
    assert len(loaded.cards[0].sprint_logs) == 1
    assert loaded.archived_cards[0].card.title == "b"
    assert len(loaded.graph.cards) == 1
    assert not loaded.graph.cards.edges[0].is_active


def test_metadata_row_is_stamped(temp_db_path, executor):
    store = SqliteStore(temp_db_path)
    metadata = store.save(snapshot_of(executor.state, store))

    with sqlite3.connect(temp_db_path) as conn:
        row = conn.execute("SELECT instance_id, schema_version FROM metadata").fetchone()
    assert row == (str(metadata.instance_id), SCHEMA_VERSION)


def test_deleted_entities_are_removed(temp_db_path, executor):
    store = SqliteStore(temp_db_path)
    store.save(snapshot_of(executor.state, store))

    executor.execute(DeleteBoard(executor.state.boards[0].id))
    store.save(snapshot_of(executor.state, store))

    snapshot, _ = store.load()
    loaded = DataSnapshot.from_json_bytes(snapshot.data)
    assert loaded.is_empty()
    assert len(loaded.graph.cards) == 0


def test_updates_are_upserted(temp_db_path, executor):
    store = SqliteStore(temp_db_path)
    store.save(snapshot_of(executor.state, store))

    executor.state.cards[0].title = "renamed"
    store.save(snapshot_of(executor.state, store))

    snapshot, _ = store.load()
    assert DataSnapshot.from_json_bytes(snapshot.data).cards[0].title == "renamed"


def test_conflict_when_other_instance_saved(temp_db_path, executor):
    mine = SqliteStore(temp_db_path)
    theirs = SqliteStore(temp_db_path)
    mine.save(snapshot_of(executor.state, mine))
    theirs.load()
    theirs.save(snapshot_of(executor.state, theirs))

    with pytest.raises(ConflictDetectedError):
        mine.save(snapshot_of(executor.state, mine))

    mine.clear_last_known_metadata()
    metadata = mine.save(snapshot_of(executor.state, mine))
    assert metadata.instance_id == mine.instance_id


def test_conflict_rolls_back(temp_db_path, executor):
    mine = SqliteStore(temp_db_path)
    theirs = SqliteStore(temp_db_path)
    mine.save(snapshot_of(executor.state, mine))
    theirs.load()
    theirs.save(snapshot_of(executor.state, theirs))

    with pytest.raises(ConflictDetectedError):
        mine.save(snapshot_of(DataSnapshot(), mine))

    snapshot, _ = theirs.load()
    assert len(DataSnapshot.from_json_bytes(snapshot.data).boards) == 1


def test_load_missing_database(temp_db_path):
    with pytest.raises(StorageIOError):
        SqliteStore(temp_db_path).load()


def test_load_empty_database_has_no_known_metadata(temp_db_path):
    conn = sqlite3.connect(temp_db_path)
    conn.execute("PRAGMA user_version = 1")
    conn.close()
    store = SqliteStore(temp_db_path)
    snapshot, metadata = store.load()

    assert DataSnapshot.from_json_bytes(snapshot.data).is_empty()
    assert metadata.instance_id == store.instance_id
    assert store.last_known_metadata is None


def test_save_rejects_non_object_payload(temp_db_path):
    store = SqliteStore(temp_db_path)
    with pytest.raises(SerializationError):
        store.save(StoreSnapshot(data=b"[]", metadata=PersistenceMetadata(instance_id=uuid.uuid4())))
