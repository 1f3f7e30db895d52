"""Tests for kanban_workspace.commands - one command applied to a context."""

import random
import uuid

import pytest

from kanban_workspace.commands import (
    ActivateSprint,
    AddBlocks,
    ArchiveCard,
    AssignCardToSprint,
    CancelSprint,
    CommandContext,
    CompleteSprint,
    CreateBoard,
    CreateCard,
    CreateColumn,
    CreateSprint,
    CreateSubcard,
    DeleteBoard,
    DeleteCard,
    DeleteColumn,
    DeleteSprint,
    ImportSnapshot,
    MoveCard,
    RemoveDependency,
    RestoreCard,
    SetParent,
    UpdateBoard,
    UpdateSprint,
    describe,
    execute,
)
from kanban_workspace.dependencies import CardEdgeType
from kanban_workspace.domain import (
    Board,
    BoardUpdate,
    CardPriority,
    CardStatus,
    Column,
    FieldUpdate,
    SprintStatus,
)
from kanban_workspace.errors import (
    CycleDetectedError,
    InternalError,
    NotFoundError,
    SelfReferenceError,
    ValidationError,
)
from kanban_workspace.graph import Edge
from kanban_workspace.snapshot import DataSnapshot


@pytest.fixture
def state():
    return DataSnapshot()


@pytest.fixture
def ctx(state):
    return CommandContext.over(state, default_sprint_duration_days=10)


@pytest.fixture
def board_id(ctx):
    cmd = CreateBoard(name="Core")
    execute(cmd, ctx)
    return cmd.board_id


@pytest.fixture
def column_ids(ctx, board_id):
    ids = []
    for name in ("Todo", "Doing", "Done"):
        cmd = CreateColumn(board_id=board_id, name=name)
        execute(cmd, ctx)
        ids.append(cmd.column_id)
    return ids


def add_card(ctx, board_id, column_id, title="Card", **kwargs):
    cmd = CreateCard(board_id=board_id, column_id=column_id, title=title, **kwargs)
    execute(cmd, ctx)
    return ctx.card(cmd.card_id)


def add_sprint(ctx, board_id, **kwargs):
    cmd = CreateSprint(board_id=board_id, **kwargs)
    execute(cmd, ctx)
    return ctx.sprint(cmd.sprint_id)


def add_board(ctx, name):
    board = CreateBoard(name=name)
    execute(board, ctx)
    column = CreateColumn(board_id=board.board_id, name="Todo")
    execute(column, ctx)
    return board.board_id, column.column_id


# ---------------------------------------------------------------------------
# Boards and columns
# ---------------------------------------------------------------------------


def test_create_board_rejects_blank_name(ctx):
    with pytest.raises(ValidationError):
        execute(CreateBoard(name="   "), ctx)


def test_create_board_rejects_bad_prefix(ctx):
    with pytest.raises(ValidationError):
        execute(CreateBoard(name="B", card_prefix="-bad"), ctx)


def test_columns_append_in_order(ctx, column_ids):
    assert [ctx.column(c).position for c in column_ids] == [0, 1, 2]


def test_update_board_rejects_unknown_completion_column(ctx, board_id):
    updates = BoardUpdate(completion_column_id=FieldUpdate.of(uuid.uuid4()))
    with pytest.raises(NotFoundError):
        execute(UpdateBoard(board_id, updates), ctx)


def test_delete_column_refuses_when_cards_remain(ctx, board_id, column_ids):
    card = add_card(ctx, board_id, column_ids[0])
    with pytest.raises(ValidationError):
        execute(DeleteColumn(column_ids[0]), ctx)

    execute(ArchiveCard(card.id), ctx)
    with pytest.raises(ValidationError):
        execute(DeleteColumn(column_ids[0]), ctx)


def test_delete_column_clears_completion_override(ctx, board_id, column_ids):
    execute(UpdateBoard(board_id, BoardUpdate(completion_column_id=FieldUpdate.of(column_ids[1]))), ctx)
    execute(DeleteColumn(column_ids[1]), ctx)
    assert ctx.board(board_id).completion_column_id is None


def test_delete_board_cascades(ctx, state, board_id, column_ids):
    a = add_card(ctx, board_id, column_ids[0])
    b = add_card(ctx, board_id, column_ids[0])
    execute(AddBlocks(a.id, b.id), ctx)
    execute(ArchiveCard(b.id), ctx)
    add_sprint(ctx, board_id)

    execute(DeleteBoard(board_id), ctx)

    assert state.is_empty()
    assert len(state.graph.cards) == 0


def test_update_board_rejects_other_boards_column(ctx, board_id, column_ids):
    _, foreign_column = add_board(ctx, "Other")
    updates = BoardUpdate(completion_column_id=FieldUpdate.of(foreign_column))
    with pytest.raises(ValidationError):
        execute(UpdateBoard(board_id, updates), ctx)
    assert ctx.board(board_id).completion_column_id is None


def test_update_board_rejects_other_boards_sprint(ctx, board_id):
    other_board, _ = add_board(ctx, "Other")
    foreign = add_sprint(ctx, other_board)
    with pytest.raises(ValidationError):
        execute(UpdateBoard(board_id, BoardUpdate(active_sprint_id=FieldUpdate.of(foreign.id))), ctx)
    assert ctx.board(board_id).active_sprint_id is None


def test_delete_board_unassigns_cards_from_its_sprints(ctx, state, board_id, column_ids):
    other_board, other_column = add_board(ctx, "Other")
    doomed_sprint = add_sprint(ctx, other_board)
    live = add_card(ctx, other_board, other_column)
    archived = add_card(ctx, other_board, other_column)
    for card in (live, archived):
        execute(AssignCardToSprint(card.id, doomed_sprint.id), ctx)
        execute(MoveCard(card.id, column_ids[0], 0), ctx)
    execute(ArchiveCard(archived.id), ctx)

    execute(DeleteBoard(other_board), ctx)

    assert state.sprints == []
    assert live.sprint_id is None
    assert state.archived_cards[0].card.sprint_id is None
    assert live.sprint_logs[0].ended_at is not None


# ---------------------------------------------------------------------------
# Cards
# ---------------------------------------------------------------------------


def test_card_numbers_increase_per_board(ctx, board_id, column_ids):
    first = add_card(ctx, board_id, column_ids[0])
    second = add_card(ctx, board_id, column_ids[1])
    assert (first.card_number, second.card_number) == (1, 2)
    assert first.position == 0


def test_card_in_completion_column_starts_done(ctx, board_id, column_ids):
    card = add_card(ctx, board_id, column_ids[2])
    assert card.status is CardStatus.DONE
    assert card.completed_at is not None


def test_create_card_copies_optional_fields(ctx, board_id, column_ids):
    card = add_card(ctx, board_id, column_ids[0], priority=CardPriority.HIGH, points=5)
    assert card.priority is CardPriority.HIGH
    assert card.points == 5


def test_create_card_rejects_foreign_column(ctx, board_id, column_ids):
    other = CreateBoard(name="Other")
    execute(other, ctx)
    with pytest.raises(ValidationError):
        add_card(ctx, other.board_id, column_ids[0])


def test_create_card_rejects_blank_title(ctx, board_id, column_ids):
    with pytest.raises(ValidationError):
        add_card(ctx, board_id, column_ids[0], title="  ")


def test_subcard_gets_parent_edge(ctx, state, board_id, column_ids):
    parent = add_card(ctx, board_id, column_ids[1])
    cmd = CreateSubcard(board_id=board_id, parent_id=parent.id, title="Child")
    execute(cmd, ctx)
    child = ctx.card(cmd.card_id)
    assert child.column_id == column_ids[1]
    assert state.graph.cards.parents(child.id) == [parent.id]


def test_move_card_requires_column(ctx, board_id, column_ids):
    card = add_card(ctx, board_id, column_ids[0])
    with pytest.raises(NotFoundError):
        execute(MoveCard(card.id, uuid.uuid4(), 0), ctx)
    execute(MoveCard(card.id, column_ids[1], 4), ctx)
    assert (card.column_id, card.position) == (column_ids[1], 4)


def test_archive_restore_keeps_identity_and_edges(ctx, state, board_id, column_ids):
    a = add_card(ctx, board_id, column_ids[0])
    b = add_card(ctx, board_id, column_ids[0])
    execute(AddBlocks(a.id, b.id), ctx)

    execute(ArchiveCard(a.id), ctx)
    assert state.archived_cards[0].card.card_number == a.card_number
    assert state.graph.cards.blockers(b.id) == []

    execute(RestoreCard(a.id, column_ids[1]), ctx)
    restored = ctx.card(a.id)
    assert restored.column_id == column_ids[1]
    assert restored.card_number == a.card_number
    assert state.graph.cards.blockers(b.id) == [a.id]


def test_delete_card_only_from_archive(ctx, state, board_id, column_ids):
    card = add_card(ctx, board_id, column_ids[0])
    with pytest.raises(NotFoundError):
        execute(DeleteCard(card.id), ctx)
    execute(ArchiveCard(card.id), ctx)
    execute(DeleteCard(card.id), ctx)
    assert state.archived_cards == []


def test_numbers_not_reused_after_delete(ctx, board_id, column_ids):
    card = add_card(ctx, board_id, column_ids[0])
    execute(ArchiveCard(card.id), ctx)
    execute(DeleteCard(card.id), ctx)
    assert add_card(ctx, board_id, column_ids[0]).card_number == 2


# ---------------------------------------------------------------------------
# Sprints
# ---------------------------------------------------------------------------


def test_sprint_numbers_and_reserved_names(ctx, board_id):
    ctx.board(board_id).sprint_names = ["Apollo"]
    first = add_sprint(ctx, board_id)
    second = add_sprint(ctx, board_id)
    assert (first.sprint_number, second.sprint_number) == (1, 2)
    assert first.get_name(ctx.board(board_id)) == "Apollo"
    assert second.name_index is None


def test_explicit_sprint_name_is_recorded(ctx, board_id):
    sprint = add_sprint(ctx, board_id, name="Gemini")
    assert sprint.get_name(ctx.board(board_id)) == "Gemini"


def test_update_sprint_name(ctx, board_id):
    sprint = add_sprint(ctx, board_id)
    execute(UpdateSprint(sprint.id, name="Mercury"), ctx)
    assert sprint.get_name(ctx.board(board_id)) == "Mercury"


def test_activate_uses_context_duration(ctx, board_id):
    sprint = add_sprint(ctx, board_id)
    execute(ActivateSprint(sprint.id), ctx)
    assert sprint.status is SprintStatus.ACTIVE
    assert (sprint.end_date - sprint.start_date).days == 10
    assert ctx.board(board_id).active_sprint_id == sprint.id


def test_complete_releases_active_sprint_and_updates_logs(ctx, board_id, column_ids):
    sprint = add_sprint(ctx, board_id)
    card = add_card(ctx, board_id, column_ids[0])
    execute(AssignCardToSprint(card.id, sprint.id), ctx)
    execute(ActivateSprint(sprint.id), ctx)
    execute(CompleteSprint(sprint.id), ctx)

    assert ctx.board(board_id).active_sprint_id is None
    assert card.current_sprint_log().status == "Completed"


def test_cancel_completed_sprint_fails(ctx, board_id):
    sprint = add_sprint(ctx, board_id)
    execute(ActivateSprint(sprint.id), ctx)
    execute(CompleteSprint(sprint.id), ctx)
    with pytest.raises(ValidationError):
        execute(CancelSprint(sprint.id), ctx)


def test_assign_same_sprint_twice_keeps_one_log(ctx, board_id, column_ids):
    sprint = add_sprint(ctx, board_id)
    card = add_card(ctx, board_id, column_ids[0])
    execute(AssignCardToSprint(card.id, sprint.id), ctx)
    execute(AssignCardToSprint(card.id, sprint.id), ctx)
    assert len(card.sprint_logs) == 1


def test_delete_sprint_unassigns_cards(ctx, board_id, column_ids):
    sprint = add_sprint(ctx, board_id)
    card = add_card(ctx, board_id, column_ids[0])
    execute(AssignCardToSprint(card.id, sprint.id), ctx)
    execute(DeleteSprint(sprint.id), ctx)
    assert card.sprint_id is None
    assert card.sprint_logs[0].ended_at is not None


def test_assign_rejects_sprint_of_another_board(ctx, board_id, column_ids):
    other_board, _ = add_board(ctx, "Other")
    foreign = add_sprint(ctx, other_board)
    card = add_card(ctx, board_id, column_ids[0])
    with pytest.raises(ValidationError):
        execute(AssignCardToSprint(card.id, foreign.id), ctx)
    assert card.sprint_id is None
    assert card.sprint_logs == []


@pytest.mark.parametrize("duration", [0, -3])
def test_activate_rejects_non_positive_duration(ctx, board_id, duration):
    sprint = add_sprint(ctx, board_id)
    with pytest.raises(ValidationError):
        execute(ActivateSprint(sprint.id, duration_days=duration), ctx)
    assert sprint.status is SprintStatus.PLANNING


def test_activate_rejects_zero_board_duration(ctx, board_id):
    ctx.board(board_id).sprint_duration_days = 0
    sprint = add_sprint(ctx, board_id)
    with pytest.raises(ValidationError):
        execute(ActivateSprint(sprint.id), ctx)


# ---------------------------------------------------------------------------
# Dependencies
# ---------------------------------------------------------------------------


def test_dependency_on_unknown_card(ctx, board_id, column_ids):
    card = add_card(ctx, board_id, column_ids[0])
    with pytest.raises(NotFoundError):
        execute(AddBlocks(card.id, uuid.uuid4()), ctx)


def test_self_reference_reported_before_lookup(ctx):
    ghost = uuid.uuid4()
    with pytest.raises(SelfReferenceError):
        execute(AddBlocks(ghost, ghost), ctx)


def test_parent_cycle_rejected(ctx, board_id, column_ids):
    a = add_card(ctx, board_id, column_ids[0])
    b = add_card(ctx, board_id, column_ids[0])
    execute(SetParent(a.id, b.id), ctx)
    with pytest.raises(CycleDetectedError):
        execute(SetParent(b.id, a.id), ctx)


def test_dependency_with_archived_card_allowed(ctx, board_id, column_ids):
    a = add_card(ctx, board_id, column_ids[0])
    b = add_card(ctx, board_id, column_ids[0])
    execute(ArchiveCard(a.id), ctx)
    execute(AddBlocks(a.id, b.id), ctx)


@pytest.mark.parametrize("seed", range(5))
def test_directed_edges_stay_acyclic_under_any_command_sequence(ctx, board_id, column_ids, seed):
    rng = random.Random(seed)
    cards = [add_card(ctx, board_id, column_ids[0]).id for _ in range(6)]
    makers = [
        lambda a, b: AddBlocks(a, b),
        lambda a, b: SetParent(child_id=b, parent_id=a),
        lambda a, b: RemoveDependency(a, b),
    ]

    for _ in range(200):
        cmd = rng.choice(makers)(rng.choice(cards), rng.choice(cards))
        try:
            execute(cmd, ctx)
        except (CycleDetectedError, SelfReferenceError, NotFoundError):
            pass
        assert not ctx.graph.cards.has_cycle(CardEdgeType.BLOCKS)
        assert not ctx.graph.cards.has_cycle(CardEdgeType.PARENT_CHILD)


# ---------------------------------------------------------------------------
# Import
# ---------------------------------------------------------------------------


def test_import_adds_entities(ctx, state, board_id, column_ids):
    add_card(ctx, board_id, column_ids[0])
    exported = state.clone()

    target = DataSnapshot()
    execute(ImportSnapshot(exported), CommandContext.over(target))
    assert [b.id for b in target.boards] == [board_id]
    assert len(target.cards) == 1


def test_import_rejects_existing_ids(ctx, state, board_id):
    with pytest.raises(ValidationError):
        execute(ImportSnapshot(state.clone()), ctx)


def test_import_requires_a_board(ctx):
    with pytest.raises(NotFoundError):
        execute(ImportSnapshot(DataSnapshot()), ctx)


@pytest.fixture
def exported(ctx, state, board_id, column_ids):
    a = add_card(ctx, board_id, column_ids[0])
    add_card(ctx, board_id, column_ids[1])
    execute(ArchiveCard(a.id), ctx)
    add_sprint(ctx, board_id)
    return state.clone()


def test_import_rejects_card_in_unknown_column(exported):
    exported.cards[0].column_id = uuid.uuid4()
    target = DataSnapshot()
    with pytest.raises(ValidationError):
        execute(ImportSnapshot(exported), CommandContext.over(target))
    assert target.is_empty()


def test_import_rejects_archived_card_from_unknown_column(exported):
    exported.archived_cards[0].original_column_id = uuid.uuid4()
    with pytest.raises(ValidationError):
        execute(ImportSnapshot(exported), CommandContext.over(DataSnapshot()))


@pytest.mark.parametrize("collection", ["columns", "sprints"])
def test_import_rejects_entities_of_unknown_board(exported, collection):
    getattr(exported, collection)[0].board_id = uuid.uuid4()
    with pytest.raises(ValidationError):
        execute(ImportSnapshot(exported), CommandContext.over(DataSnapshot()))


def test_import_rejects_card_in_unknown_sprint(exported):
    exported.cards[0].sprint_id = uuid.uuid4()
    with pytest.raises(ValidationError):
        execute(ImportSnapshot(exported), CommandContext.over(DataSnapshot()))


def test_import_may_reference_existing_board(ctx, board_id):
    column = Column(board_id=board_id, name="Imported", position=5)
    incoming = DataSnapshot(boards=[Board(name="Carrier")], columns=[column])
    execute(ImportSnapshot(incoming), ctx)
    assert ctx.column(column.id).board_id == board_id


def test_import_rejects_edge_to_unknown_card(exported):
    exported.graph.cards.add_edge(
        Edge(source=exported.cards[0].id, target=uuid.uuid4(), label=CardEdgeType.BLOCKS)
    )
    with pytest.raises(ValidationError):
        execute(ImportSnapshot(exported), CommandContext.over(DataSnapshot()))


@pytest.mark.parametrize("label", [CardEdgeType.BLOCKS, CardEdgeType.PARENT_CHILD])
def test_import_rejects_cyclic_edges(exported, label):
    a, b = exported.cards[0].id, exported.archived_cards[0].card.id
    exported.graph.cards.add_edge(Edge(source=a, target=b, label=label))
    exported.graph.cards.add_edge(Edge(source=b, target=a, label=label))
    target = DataSnapshot()
    with pytest.raises(ValidationError):
        execute(ImportSnapshot(exported), CommandContext.over(target))
    assert len(target.graph.cards) == 0


def test_import_allows_two_way_relates_to(exported):
    a, b = exported.cards[0].id, exported.archived_cards[0].card.id
    exported.graph.cards.add_relates_to(a, b)
    exported.graph.cards.add_relates_to(b, a)
    target = DataSnapshot()
    execute(ImportSnapshot(exported), CommandContext.over(target))
    assert len(target.graph.cards) == 2


# ---------------------------------------------------------------------------
# Dispatch
# ---------------------------------------------------------------------------


def test_unknown_command_is_internal_error(ctx):
    with pytest.raises(InternalError):
        execute(object(), ctx)


def test_describe_names_the_entity():
    assert describe(CreateBoard(name="Core")) == "Create board: 'Core'"
    assert describe(object()) == "object"
