"""Tests for KanbanWorkspace - the async operations facade."""

import json
import uuid
from pathlib import Path
import tempfile

import pytest
import pytest_asyncio

from kanban_workspace.config import WorkspaceConfig
from kanban_workspace.domain import (
    CardPriority,
    CardStatus,
    CardUpdate,
    FieldUpdate,
    SortField,
    SortOrder,
    SprintStatus,
    TaskListView,
)
from kanban_workspace.errors import (
    ConflictDetectedError,
    CycleDetectedError,
    InternalError,
    NotFoundError,
    SelfReferenceError,
    ValidationError,
)
from kanban_workspace.json_store import JsonFileStore
from kanban_workspace.layout import ColumnListsLayout
from kanban_workspace.lifecycle import MoveDirection
from kanban_workspace.migration import backup_path_for
from kanban_workspace.sqlite_store import SqliteStore
from kanban_workspace.workspace import KanbanWorkspace, store_for


@pytest.fixture
def temp_persist_path():
    """Create a temporary file path for workspace persistence."""
    with tempfile.NamedTemporaryFile(delete=False, suffix=".json") as f:
        path = Path(f.name)
    path.unlink()
    yield path
    for leftover in path.parent.glob(f"{path.name}*"):
        leftover.unlink()


@pytest_asyncio.fixture
async def workspace():
    """A fresh in-memory workspace for each test."""
    return KanbanWorkspace()


@pytest_asyncio.fixture
async def board(workspace):
    board = await workspace.create_board("Main")
    for name in ("Todo", "In Progress", "Done"):
        await workspace.create_column(board.id, name)
    return board


def column_named(workspace, board, name):
    return next(c for c in workspace.list_columns(board.id) if c.name == name)


# ---------------------------------------------------------------------------
# Boards, columns, cards
# ---------------------------------------------------------------------------


@pytest.mark.asyncio
async def test_create_board_and_columns(workspace, board):
    assert workspace.list_boards() == [board]
    assert [c.name for c in workspace.list_columns(board.id)] == ["Todo", "In Progress", "Done"]
    assert [c.position for c in workspace.list_columns(board.id)] == [0, 1, 2]


@pytest.mark.asyncio
async def test_board_settings(workspace, board):
    await workspace.set_board_task_sort(board.id, SortField.POINTS, SortOrder.DESCENDING)
    updated = await workspace.set_board_task_list_view(board.id, TaskListView.COLUMN_VIEW)
    assert updated.task_sort_field is SortField.POINTS
    assert updated.task_sort_order is SortOrder.DESCENDING
    assert isinstance(workspace.view(board.id), ColumnListsLayout)


@pytest.mark.asyncio
async def test_swap_columns_is_one_undo_step(workspace, board):
    todo, _, done = workspace.list_columns(board.id)
    await workspace.swap_columns(todo.id, done.id)
    assert [c.name for c in workspace.list_columns(board.id)] == ["Done", "In Progress", "Todo"]

    assert await workspace.undo()
    assert [c.name for c in workspace.list_columns(board.id)] == ["Todo", "In Progress", "Done"]


@pytest.mark.asyncio
async def test_create_and_update_card(workspace, board):
    todo = column_named(workspace, board, "Todo")
    card = await workspace.create_card(
        board.id, todo.id, "Write docs", description="draft", priority=CardPriority.HIGH, points=3
    )
    assert card.card_number == 1
    assert workspace.card_identifier(card) == "task-1"

    updated = await workspace.update_card(
        card.id,
        CardUpdate(description=FieldUpdate.clear(), points=FieldUpdate.of(5)),
    )
    assert updated.description is None
    assert updated.points == 5
    assert updated.priority is CardPriority.HIGH


@pytest.mark.asyncio
async def test_get_unknown_card(workspace):
    with pytest.raises(NotFoundError):
        workspace.get_card(uuid.uuid4())


@pytest.mark.asyncio
async def test_move_card_appends_to_target(workspace, board):
    todo = column_named(workspace, board, "Todo")
    doing = column_named(workspace, board, "In Progress")
    await workspace.create_card(board.id, doing.id, "existing")
    card = await workspace.create_card(board.id, todo.id, "mover")

    moved = await workspace.move_card(card.id, doing.id)
    assert moved.column_id == doing.id
    assert moved.position == 1


@pytest.mark.asyncio
async def test_move_card_direction(workspace, board):
    todo = column_named(workspace, board, "Todo")
    done = column_named(workspace, board, "Done")
    card = await workspace.create_card(board.id, todo.id, "walker")

    assert await workspace.move_card_direction(card.id, MoveDirection.LEFT) is None
    await workspace.move_card_direction(card.id, MoveDirection.RIGHT)
    moved = await workspace.move_card_direction(card.id, MoveDirection.RIGHT)
    assert moved.column_id == done.id
    assert moved.status is CardStatus.DONE
    assert moved.completed_at is not None

    back = await workspace.move_card_direction(card.id, MoveDirection.LEFT)
    assert back.status is CardStatus.TODO


@pytest.mark.asyncio
async def test_toggle_needs_two_columns(workspace):
    board = await workspace.create_board("Tiny")
    column = await workspace.create_column(board.id, "Only")
    card = await workspace.create_card(board.id, column.id, "stuck")
    with pytest.raises(ValidationError):
        await workspace.toggle_completion(card.id)


@pytest.mark.asyncio
async def test_list_and_search_cards(workspace, board):
    todo = column_named(workspace, board, "Todo")
    await workspace.create_card(board.id, todo.id, "Fix login", points=2)
    await workspace.create_card(board.id, todo.id, "Write docs", points=8)

    assert [c.title for c in workspace.search_cards(board.id, "LOGIN")] == ["Fix login"]
    assert len(workspace.list_cards(board.id, column_id=todo.id)) == 2

    await workspace.set_board_task_sort(board.id, SortField.POINTS, SortOrder.DESCENDING)
    assert [c.points for c in workspace.list_cards(board.id)] == [8, 2]


# ---------------------------------------------------------------------------
# Archive, restore, delete
# ---------------------------------------------------------------------------


@pytest.mark.asyncio
async def test_archive_restore_roundtrip(workspace, board):
    todo = column_named(workspace, board, "Todo")
    a = await workspace.create_card(board.id, todo.id, "a")
    b = await workspace.create_card(board.id, todo.id, "b")
    await workspace.add_blocks(a.id, b.id)

    archived = await workspace.archive_card(a.id)
    assert archived.original_column_id == todo.id
    assert workspace.list_archived_cards(board.id) == [archived]
    assert workspace.card_graph.blockers(b.id) == []

    restored = await workspace.restore_card(a.id)
    assert restored.column_id == todo.id
    assert workspace.card_graph.blockers(b.id) == [a.id]


@pytest.mark.asyncio
async def test_restore_without_known_column_fails(workspace, board):
    doing = column_named(workspace, board, "In Progress")
    card = await workspace.create_card(board.id, doing.id, "orphan")
    await workspace.archive_card(card.id)
    workspace.get_archived_card(card.id).original_column_id = uuid.uuid4()

    with pytest.raises(ValidationError):
        await workspace.restore_card(card.id)


@pytest.mark.asyncio
async def test_delete_live_card_archives_first(workspace, board):
    todo = column_named(workspace, board, "Todo")
    card = await workspace.create_card(board.id, todo.id, "gone")
    await workspace.delete_card(card.id)

    assert workspace.list_cards(board.id) == []
    assert workspace.list_archived_cards() == []
    assert await workspace.undo()
    assert workspace.get_card(card.id).title == "gone"


@pytest.mark.asyncio
async def test_subcard_links_parent(workspace, board):
    todo = column_named(workspace, board, "Todo")
    parent = await workspace.create_card(board.id, todo.id, "epic")
    child = await workspace.create_subcard(board.id, parent.id, "story")

    assert child.column_id == todo.id
    assert workspace.card_graph.children(parent.id) == [child.id]
    assert workspace.board_of_card(child.id).id == board.id


# ---------------------------------------------------------------------------
# Bulk operations
# ---------------------------------------------------------------------------


@pytest.mark.asyncio
async def test_bulk_archive_collects_failures(workspace, board):
    todo = column_named(workspace, board, "Todo")
    cards = [await workspace.create_card(board.id, todo.id, t) for t in ("x", "y")]
    ghost = uuid.uuid4()

    result = await workspace.bulk_archive_cards([cards[0].id, ghost, cards[1].id])
    assert result.succeeded == [cards[0].id, cards[1].id]
    assert result.failed_count == 1
    assert result.failed[0].id == ghost
    assert workspace.list_cards(board.id) == []


@pytest.mark.asyncio
async def test_bulk_move_keeps_positions_distinct(workspace, board):
    todo = column_named(workspace, board, "Todo")
    doing = column_named(workspace, board, "In Progress")
    cards = [await workspace.create_card(board.id, todo.id, t) for t in ("x", "y", "z")]

    result = await workspace.bulk_move_cards([c.id for c in cards], doing.id)
    assert result.succeeded_count == 3
    assert sorted(workspace.get_card(c.id).position for c in cards) == [0, 1, 2]


@pytest.mark.asyncio
async def test_bulk_assign_sprint(workspace, board):
    todo = column_named(workspace, board, "Todo")
    card = await workspace.create_card(board.id, todo.id, "x")
    sprint = await workspace.create_sprint(board.id)

    result = await workspace.bulk_assign_sprint([card.id, uuid.uuid4()], sprint.id)
    assert result.succeeded == [card.id]
    assert workspace.get_card(card.id).sprint_id == sprint.id


# ---------------------------------------------------------------------------
# Sprints
# ---------------------------------------------------------------------------


@pytest.mark.asyncio
async def test_sprint_lifecycle_and_summary(workspace, board):
    todo = column_named(workspace, board, "Todo")
    open_card = await workspace.create_card(board.id, todo.id, "open", points=3)
    done_card = await workspace.create_card(board.id, todo.id, "done", points=5)
    sprint = await workspace.create_sprint(board.id)
    assert workspace.sprint_name(sprint) == "sprint-1"

    await workspace.assign_card_to_sprint(open_card.id, sprint.id)
    await workspace.assign_card_to_sprint(done_card.id, sprint.id)
    await workspace.toggle_completion(done_card.id)

    active = await workspace.activate_sprint(sprint.id, duration_days=7)
    assert active.status is SprintStatus.ACTIVE
    assert (active.end_date - active.start_date).days == 7
    assert workspace.get_board(board.id).active_sprint_id == sprint.id

    summary = workspace.sprint_summary(sprint.id)
    assert summary.uncompleted == [open_card.id]
    assert summary.completed == [done_card.id]
    assert (summary.total_points, summary.completed_points) == (8, 5)

    completed = await workspace.complete_sprint(sprint.id)
    assert completed.status is SprintStatus.COMPLETED
    assert workspace.get_board(board.id).active_sprint_id is None


@pytest.mark.asyncio
async def test_sprint_filter_and_unassign(workspace, board):
    todo = column_named(workspace, board, "Todo")
    card = await workspace.create_card(board.id, todo.id, "planned")
    await workspace.create_card(board.id, todo.id, "backlog")
    sprint = await workspace.create_sprint(board.id)
    await workspace.assign_card_to_sprint(card.id, sprint.id)

    assert [c.title for c in workspace.list_cards(board.id, sprint_ids=[sprint.id])] == ["planned"]
    assert [c.title for c in workspace.list_cards(board.id, hide_assigned=True)] == ["backlog"]

    unassigned = await workspace.unassign_card_from_sprint(card.id)
    assert unassigned.sprint_id is None
    assert unassigned.sprint_logs[-1].ended_at is not None


@pytest.mark.asyncio
async def test_configured_prefixes_apply():
    workspace = KanbanWorkspace(default_card_prefix="feat", default_sprint_prefix="iter")
    board = await workspace.create_board("Prefixed")
    column = await workspace.create_column(board.id, "Todo")
    card = await workspace.create_card(board.id, column.id, "Hello World")
    sprint = await workspace.create_sprint(board.id)

    assert workspace.card_identifier(card) == "feat-1"
    assert workspace.branch_name(card.id) == "feat-1/hello-world"
    assert workspace.sprint_name(sprint) == "iter-1"


# ---------------------------------------------------------------------------
# Dependencies
# ---------------------------------------------------------------------------


@pytest.mark.asyncio
async def test_dependency_errors(workspace, board):
    todo = column_named(workspace, board, "Todo")
    a = await workspace.create_card(board.id, todo.id, "a")
    b = await workspace.create_card(board.id, todo.id, "b")

    with pytest.raises(SelfReferenceError):
        await workspace.add_blocks(a.id, a.id)
    with pytest.raises(NotFoundError):
        await workspace.add_blocks(a.id, uuid.uuid4())
    with pytest.raises(NotFoundError):
        await workspace.remove_dependency(a.id, b.id)


@pytest.mark.asyncio
async def test_can_start_follows_blockers(workspace, board):
    todo = column_named(workspace, board, "Todo")
    blocker = await workspace.create_card(board.id, todo.id, "blocker")
    blocked = await workspace.create_card(board.id, todo.id, "blocked")
    await workspace.add_blocks(blocker.id, blocked.id)

    assert not workspace.can_start(blocked.id)
    await workspace.toggle_completion(blocker.id)
    assert workspace.can_start(blocked.id)

    await workspace.remove_dependency(blocker.id, blocked.id)
    assert workspace.card_graph.blockers(blocked.id) == []


@pytest.mark.asyncio
async def test_parent_and_related(workspace, board):
    todo = column_named(workspace, board, "Todo")
    a = await workspace.create_card(board.id, todo.id, "a")
    b = await workspace.create_card(board.id, todo.id, "b")

    await workspace.set_parent(b.id, a.id)
    with pytest.raises(CycleDetectedError):
        await workspace.set_parent(a.id, b.id)
    await workspace.add_relates_to(a.id, b.id)

    assert workspace.card_graph.parents(b.id) == [a.id]
    assert workspace.card_graph.related(b.id) == [a.id]

    await workspace.remove_parent(b.id, a.id)
    assert workspace.card_graph.parents(b.id) == []


# ---------------------------------------------------------------------------
# Export / import, history
# ---------------------------------------------------------------------------


@pytest.mark.asyncio
async def test_export_import_board(workspace, board):
    todo = column_named(workspace, board, "Todo")
    a = await workspace.create_card(board.id, todo.id, "a")
    b = await workspace.create_card(board.id, todo.id, "b")
    await workspace.add_blocks(a.id, b.id)
    other = await workspace.create_board("Other")

    exported = workspace.export_json(board.id)
    assert [raw["name"] for raw in json.loads(exported)["boards"]] == ["Main"]

    fresh = KanbanWorkspace()
    imported = await fresh.import_json(exported)
    assert [b.id for b in imported] == [board.id]
    assert fresh.card_graph.blockers(b.id) == [a.id]
    assert all(bd.id != other.id for bd in fresh.list_boards())

    with pytest.raises(ValidationError):
        await workspace.import_json(exported)


@pytest.mark.asyncio
async def test_undo_redo(workspace):
    assert not await workspace.undo()
    board = await workspace.create_board("History")

    assert await workspace.undo()
    assert workspace.list_boards() == []
    assert await workspace.redo()
    assert workspace.get_board(board.id).name == "History"
    assert not await workspace.redo()


# ---------------------------------------------------------------------------
# Persistence
# ---------------------------------------------------------------------------


@pytest.mark.asyncio
async def test_json_workspace_persists_every_batch(temp_persist_path):
    workspace = KanbanWorkspace(store=JsonFileStore(temp_persist_path))
    board = await workspace.create_board("Saved")
    column = await workspace.create_column(board.id, "Todo")
    await workspace.create_card(board.id, column.id, "kept")

    reopened = KanbanWorkspace(store=JsonFileStore(temp_persist_path))
    assert [c.title for c in reopened.list_cards(board.id)] == ["kept"]


@pytest.mark.asyncio
async def test_sqlite_workspace_persists_every_batch(temp_persist_path):
    db_path = temp_persist_path.with_name(f"{temp_persist_path.name}.db")
    workspace = KanbanWorkspace(store=SqliteStore(db_path))
    board = await workspace.create_board("Relational")
    column = await workspace.create_column(board.id, "Todo")
    a = await workspace.create_card(board.id, column.id, "a")
    b = await workspace.create_card(board.id, column.id, "b")
    await workspace.add_blocks(a.id, b.id)

    reopened = KanbanWorkspace(store=SqliteStore(db_path))
    assert len(reopened.list_cards(board.id)) == 2
    assert reopened.card_graph.blockers(b.id) == [a.id]


@pytest.mark.asyncio
async def test_reload_discards_local_state(temp_persist_path):
    workspace = KanbanWorkspace(store=JsonFileStore(temp_persist_path))
    await workspace.create_board("First")

    other = KanbanWorkspace(store=JsonFileStore(temp_persist_path))
    await other.create_board("Second")

    await workspace.reload()
    assert [b.name for b in workspace.list_boards()] == ["First", "Second"]
    assert not await workspace.undo()


@pytest.mark.asyncio
async def test_reload_without_store(workspace):
    with pytest.raises(ValidationError):
        await workspace.reload()


@pytest.mark.asyncio
async def test_from_config_picks_store(temp_persist_path):
    assert isinstance(store_for(WorkspaceConfig(file=temp_persist_path, store="sqlite")), SqliteStore)
    assert store_for(WorkspaceConfig()) is None

    workspace = KanbanWorkspace.from_config(
        WorkspaceConfig(file=temp_persist_path, history_limit=2)
    )
    assert isinstance(workspace.store, JsonFileStore)
    for name in ("one", "two", "three"):
        await workspace.create_board(name)
    assert workspace.history.undo_depth() == 2


@pytest.mark.asyncio
async def test_history_missing_is_internal_error(workspace):
    workspace._executor.history = None
    with pytest.raises(InternalError):
        workspace.history


@pytest.mark.asyncio
async def test_load_without_store_is_validation_error(workspace):
    with pytest.raises(ValidationError):
        workspace._load()


# ---------------------------------------------------------------------------
# End-to-end scenarios
# ---------------------------------------------------------------------------


@pytest.mark.asyncio
async def test_branch_name_with_defaults(workspace):
    board = await workspace.create_board("Plain")
    column = await workspace.create_column(board.id, "Todo")
    card = await workspace.create_card(board.id, column.id, "Test Card")

    assert workspace.branch_name(card.id) == "task-1/test-card"
    assert workspace.git_checkout(card.id) == "git checkout -b task-1/test-card"


@pytest.mark.asyncio
async def test_branch_name_edge_cases(workspace):
    board = await workspace.create_board("Plain")
    column = await workspace.create_column(board.id, "Todo")
    bracketed = await workspace.create_card(board.id, column.id, "Fix (Bug) [Issue]")
    long = await workspace.create_card(board.id, column.id, "a" * 300)

    assert workspace.branch_name(bracketed.id) == "task-1/fix-bug-issue"
    branch = workspace.branch_name(long.id)
    assert len(branch) == 250
    assert branch.startswith("task-2/")


@pytest.mark.asyncio
async def test_blocks_cycle_leaves_graph_unchanged(workspace, board):
    todo = column_named(workspace, board, "Todo")
    a, b, c = [await workspace.create_card(board.id, todo.id, t) for t in "abc"]
    await workspace.add_blocks(a.id, b.id)
    await workspace.add_blocks(b.id, c.id)
    edges_before = list(workspace.card_graph.edges)

    with pytest.raises(CycleDetectedError):
        await workspace.add_blocks(c.id, a.id)
    assert workspace.card_graph.edges == edges_before


@pytest.mark.asyncio
async def test_completion_toggle_round_trip(workspace, board):
    todo = column_named(workspace, board, "Todo")
    doing = column_named(workspace, board, "In Progress")
    done = column_named(workspace, board, "Done")
    card = await workspace.create_card(board.id, todo.id, "ship it")

    toggled = await workspace.toggle_completion(card.id)
    assert (toggled.column_id, toggled.status) == (done.id, CardStatus.DONE)

    toggled = await workspace.toggle_completion(card.id)
    assert (toggled.column_id, toggled.status) == (doing.id, CardStatus.TODO)


@pytest.mark.asyncio
async def test_conflict_then_force_save(temp_persist_path):
    workspace = KanbanWorkspace(store=JsonFileStore(temp_persist_path))
    await workspace.create_board("S1")

    envelope = json.loads(temp_persist_path.read_text())
    envelope["metadata"]["instance_id"] = str(uuid.uuid4())
    temp_persist_path.write_text(json.dumps(envelope))

    with pytest.raises(ConflictDetectedError) as exc_info:
        await workspace.save()
    assert str(temp_persist_path) in str(exc_info.value)

    metadata = await workspace.force_save()
    assert metadata.instance_id == workspace.store.instance_id
    await workspace.save()


@pytest.mark.asyncio
async def test_v1_file_is_upgraded_on_open(temp_persist_path):
    v1 = {"boards": [{"id": str(uuid.uuid4()), "name": "X"}], "columns": [], "cards": []}
    temp_persist_path.write_text(json.dumps(v1))

    workspace = KanbanWorkspace(store=JsonFileStore(temp_persist_path))
    assert [b.name for b in workspace.list_boards()] == ["X"]

    envelope = json.loads(temp_persist_path.read_text())
    assert envelope["version"] == 2
    assert envelope["data"] == v1
    assert "metadata" in envelope
    assert not backup_path_for(temp_persist_path).exists()
