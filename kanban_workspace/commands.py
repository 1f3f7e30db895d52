"""
Commands: plain records plus an ``execute`` / ``describe`` dispatch.

Each command is a dataclass naming the entities it touches by id. The
``execute`` single-dispatch function applies one command to a
``CommandContext`` and raises a ``KanbanError`` on failure; it makes no
attempt to undo partial work, which is the executor's job at batch level.
"""

from __future__ import annotations

import uuid
from dataclasses import dataclass, field, replace
from datetime import datetime
from functools import singledispatch
from typing import Union

from loguru import logger

from .dependencies import CardGraph, DependencyGraph
from .domain import (
    DEFAULT_CARD_PREFIX,
    DEFAULT_SPRINT_DURATION_DAYS,
    DEFAULT_SPRINT_PREFIX,
    ArchivedCard,
    Board,
    BoardUpdate,
    Card,
    CardPriority,
    CardStatus,
    CardUpdate,
    Column,
    ColumnUpdate,
    FieldUpdate,
    SortField,
    SortOrder,
    Sprint,
    SprintUpdate,
    TaskListView,
    validate_prefix,
)
from .errors import InternalError, NotFoundError, ValidationError
from .lifecycle import (
    compact_column_positions,
    next_position_in_column,
    should_auto_complete_new_card,
)
from .snapshot import DataSnapshot


# ---------------------------------------------------------------------------
# Context
# ---------------------------------------------------------------------------


@dataclass
class CommandContext:
    """Mutable view over the six collections plus the defaults commands need."""

    boards: list[Board]
    columns: list[Column]
    cards: list[Card]
    archived_cards: list[ArchivedCard]
    sprints: list[Sprint]
    graph: DependencyGraph
    default_card_prefix: str = DEFAULT_CARD_PREFIX
    default_sprint_prefix: str = DEFAULT_SPRINT_PREFIX
    default_sprint_duration_days: int = DEFAULT_SPRINT_DURATION_DAYS

    @classmethod
    def over(cls, snapshot: DataSnapshot, **defaults) -> "CommandContext":
        return cls(
            boards=snapshot.boards,
            columns=snapshot.columns,
            cards=snapshot.cards,
            archived_cards=snapshot.archived_cards,
            sprints=snapshot.sprints,
            graph=snapshot.graph,
            **defaults,
        )

    def board(self, board_id: uuid.UUID) -> Board:
        for board in self.boards:
            if board.id == board_id:
                return board
        raise NotFoundError(f"Board {board_id}")

    def column(self, column_id: uuid.UUID) -> Column:
        for column in self.columns:
            if column.id == column_id:
                return column
        raise NotFoundError(f"Column {column_id}")

    def card(self, card_id: uuid.UUID) -> Card:
        for card in self.cards:
            if card.id == card_id:
                return card
        raise NotFoundError(f"Card {card_id}")

    def archived_index(self, card_id: uuid.UUID) -> int:
        for i, archived in enumerate(self.archived_cards):
            if archived.card.id == card_id:
                return i
        raise NotFoundError(f"Archived card {card_id}")

    def sprint(self, sprint_id: uuid.UUID) -> Sprint:
        for sprint in self.sprints:
            if sprint.id == sprint_id:
                return sprint
        raise NotFoundError(f"Sprint {sprint_id}")

    def board_of_column(self, column_id: uuid.UUID) -> Board:
        return self.board(self.column(column_id).board_id)

    def board_cards(self, board_id: uuid.UUID) -> list[Card]:
        column_ids = {c.id for c in self.columns if c.board_id == board_id}
        live = [c for c in self.cards if c.column_id in column_ids]
        archived = [a.card for a in self.archived_cards if a.original_column_id in column_ids]
        return live + archived

    def card_known(self, card_id: uuid.UUID) -> bool:
        return any(c.id == card_id for c in self.cards) or any(
            a.card.id == card_id for a in self.archived_cards
        )

    def require_card_known(self, card_id: uuid.UUID) -> None:
        if not self.card_known(card_id):
            raise NotFoundError(f"Card {card_id}")


# ---------------------------------------------------------------------------
# Board commands
# ---------------------------------------------------------------------------


@dataclass
class CreateBoard:
    name: str
    description: str | None = None
    card_prefix: str | None = None
    sprint_prefix: str | None = None
    board_id: uuid.UUID = field(default_factory=uuid.uuid4)


@dataclass
class UpdateBoard:
    board_id: uuid.UUID
    updates: BoardUpdate


@dataclass
class DeleteBoard:
    board_id: uuid.UUID


@dataclass
class SetBoardTaskSort:
    board_id: uuid.UUID
    sort_field: SortField
    order: SortOrder


@dataclass
class SetBoardTaskListView:
    board_id: uuid.UUID
    view: TaskListView


# ---------------------------------------------------------------------------
# Column commands
# ---------------------------------------------------------------------------


@dataclass
class CreateColumn:
    board_id: uuid.UUID
    name: str
    position: int | None = None  # None appends after the last column
    wip_limit: int | None = None
    column_id: uuid.UUID = field(default_factory=uuid.uuid4)


@dataclass
class UpdateColumn:
    column_id: uuid.UUID
    updates: ColumnUpdate


@dataclass
class DeleteColumn:
    column_id: uuid.UUID


@dataclass
class CompactColumnPositions:
    column_id: uuid.UUID


# ---------------------------------------------------------------------------
# Card commands
# ---------------------------------------------------------------------------


@dataclass
class CreateCard:
    board_id: uuid.UUID
    column_id: uuid.UUID
    title: str
    position: int | None = None  # None appends
    description: str | None = None
    priority: CardPriority | None = None
    points: int | None = None
    due_date: datetime | None = None
    card_id: uuid.UUID = field(default_factory=uuid.uuid4)


@dataclass
class CreateSubcard:
    board_id: uuid.UUID
    parent_id: uuid.UUID
    title: str
    column_id: uuid.UUID | None = None  # defaults to the parent's column
    card_id: uuid.UUID = field(default_factory=uuid.uuid4)


@dataclass
class UpdateCard:
    card_id: uuid.UUID
    updates: CardUpdate


@dataclass
class MoveCard:
    card_id: uuid.UUID
    new_column_id: uuid.UUID
    new_position: int


@dataclass
class ArchiveCard:
    card_id: uuid.UUID


@dataclass
class RestoreCard:
    card_id: uuid.UUID
    column_id: uuid.UUID
    position: int | None = None  # None appends


@dataclass
class DeleteCard:
    """Permanently delete an archived card."""

    card_id: uuid.UUID


@dataclass
class AssignCardToSprint:
    card_id: uuid.UUID
    sprint_id: uuid.UUID


@dataclass
class UnassignCardFromSprint:
    card_id: uuid.UUID


# ---------------------------------------------------------------------------
# Sprint commands
# ---------------------------------------------------------------------------


@dataclass
class CreateSprint:
    board_id: uuid.UUID
    prefix: str | None = None
    name: str | None = None  # None takes the next reserved name, if any
    card_prefix: str | None = None
    sprint_id: uuid.UUID = field(default_factory=uuid.uuid4)


@dataclass
class UpdateSprint:
    sprint_id: uuid.UUID
    updates: SprintUpdate = field(default_factory=SprintUpdate)
    name: str | None = None


@dataclass
class ActivateSprint:
    sprint_id: uuid.UUID
    duration_days: int | None = None


@dataclass
class CompleteSprint:
    sprint_id: uuid.UUID


@dataclass
class CancelSprint:
    sprint_id: uuid.UUID


@dataclass
class DeleteSprint:
    sprint_id: uuid.UUID


# ---------------------------------------------------------------------------
# Dependency commands
# ---------------------------------------------------------------------------


@dataclass
class AddBlocks:
    blocker_id: uuid.UUID
    blocked_id: uuid.UUID


@dataclass
class AddRelatesTo:
    card_a_id: uuid.UUID
    card_b_id: uuid.UUID


@dataclass
class SetParent:
    child_id: uuid.UUID
    parent_id: uuid.UUID


@dataclass
class RemoveDependency:
    source_id: uuid.UUID
    target_id: uuid.UUID


@dataclass
class RemoveParent:
    child_id: uuid.UUID
    parent_id: uuid.UUID


# ---------------------------------------------------------------------------
# Import
# ---------------------------------------------------------------------------


@dataclass
class ImportSnapshot:
    """Add every entity of an exported snapshot; ids must not already exist."""

    snapshot: DataSnapshot


Command = Union[
    CreateBoard,
    UpdateBoard,
    DeleteBoard,
    SetBoardTaskSort,
    SetBoardTaskListView,
    CreateColumn,
    UpdateColumn,
    DeleteColumn,
    CompactColumnPositions,
    CreateCard,
    CreateSubcard,
    UpdateCard,
    MoveCard,
    ArchiveCard,
    RestoreCard,
    DeleteCard,
    AssignCardToSprint,
    UnassignCardFromSprint,
    CreateSprint,
    UpdateSprint,
    ActivateSprint,
    CompleteSprint,
    CancelSprint,
    DeleteSprint,
    AddBlocks,
    AddRelatesTo,
    SetParent,
    RemoveDependency,
    RemoveParent,
    ImportSnapshot,
]


# ---------------------------------------------------------------------------
# execute
# ---------------------------------------------------------------------------


@singledispatch
def execute(cmd: object, ctx: CommandContext) -> None:
    """Apply one command to ``ctx``."""
    raise InternalError(f"No handler for command {type(cmd).__name__}")


@execute.register(CreateBoard)
def _(cmd: CreateBoard, ctx: CommandContext) -> None:
    if not cmd.name.strip():
        raise ValidationError("Board name cannot be empty")
    board = Board(
        id=cmd.board_id,
        name=cmd.name,
        description=cmd.description,
        card_prefix=validate_prefix(cmd.card_prefix) if cmd.card_prefix is not None else None,
        sprint_prefix=(
            validate_prefix(cmd.sprint_prefix) if cmd.sprint_prefix is not None else None
        ),
    )
    ctx.boards.append(board)


@execute.register(UpdateBoard)
def _(cmd: UpdateBoard, ctx: CommandContext) -> None:
    board = ctx.board(cmd.board_id)
    if cmd.updates.active_sprint_id.value is not None:
        sprint = ctx.sprint(cmd.updates.active_sprint_id.value)
        if sprint.board_id != board.id:
            raise ValidationError(f"Sprint {sprint.id} belongs to another board")
    if cmd.updates.completion_column_id.value is not None:
        column = ctx.column(cmd.updates.completion_column_id.value)
        if column.board_id != board.id:
            raise ValidationError(f"Column {column.id} belongs to another board")
    board.update(cmd.updates)


@execute.register(DeleteBoard)
def _(cmd: DeleteBoard, ctx: CommandContext) -> None:
    ctx.board(cmd.board_id)
    column_ids = {c.id for c in ctx.columns if c.board_id == cmd.board_id}
    doomed = {c.id for c in ctx.cards if c.column_id in column_ids}
    doomed |= {
        a.card.id for a in ctx.archived_cards if a.original_column_id in column_ids
    }
    for card_id in doomed:
        ctx.graph.cards.remove_card_edges(card_id)
    sprint_ids = {s.id for s in ctx.sprints if s.board_id == cmd.board_id}
    for card in ctx.cards:
        if card.sprint_id in sprint_ids:
            card.unassign_sprint()
    for archived in ctx.archived_cards:
        if archived.card.sprint_id in sprint_ids:
            archived.card.unassign_sprint()
    ctx.cards[:] = [c for c in ctx.cards if c.id not in doomed]
    ctx.archived_cards[:] = [a for a in ctx.archived_cards if a.card.id not in doomed]
    ctx.sprints[:] = [s for s in ctx.sprints if s.board_id != cmd.board_id]
    ctx.columns[:] = [c for c in ctx.columns if c.board_id != cmd.board_id]
    ctx.boards[:] = [b for b in ctx.boards if b.id != cmd.board_id]
    logger.debug(
        "Board {} deleted with {} columns and {} cards",
        cmd.board_id,
        len(column_ids),
        len(doomed),
    )


@execute.register(SetBoardTaskSort)
def _(cmd: SetBoardTaskSort, ctx: CommandContext) -> None:
    ctx.board(cmd.board_id).update_task_sort(cmd.sort_field, cmd.order)


@execute.register(SetBoardTaskListView)
def _(cmd: SetBoardTaskListView, ctx: CommandContext) -> None:
    ctx.board(cmd.board_id).update_task_list_view(cmd.view)


@execute.register(CreateColumn)
def _(cmd: CreateColumn, ctx: CommandContext) -> None:
    ctx.board(cmd.board_id)
    position = cmd.position
    if position is None:
        existing = [c.position for c in ctx.columns if c.board_id == cmd.board_id]
        position = max(existing) + 1 if existing else 0
    ctx.columns.append(
        Column(
            id=cmd.column_id,
            board_id=cmd.board_id,
            name=cmd.name,
            position=position,
            wip_limit=cmd.wip_limit,
        )
    )


@execute.register(UpdateColumn)
def _(cmd: UpdateColumn, ctx: CommandContext) -> None:
    ctx.column(cmd.column_id).update(cmd.updates)


@execute.register(DeleteColumn)
def _(cmd: DeleteColumn, ctx: CommandContext) -> None:
    column = ctx.column(cmd.column_id)
    live = sum(1 for c in ctx.cards if c.column_id == column.id)
    archived = sum(1 for a in ctx.archived_cards if a.original_column_id == column.id)
    if live or archived:
        raise ValidationError(
            f"Column '{column.name}' still holds {live} cards and {archived} archived cards"
        )
    ctx.columns[:] = [c for c in ctx.columns if c.id != column.id]
    for board in ctx.boards:
        if board.completion_column_id == column.id:
            board.completion_column_id = None
            board.touch()


@execute.register(CompactColumnPositions)
def _(cmd: CompactColumnPositions, ctx: CommandContext) -> None:
    ctx.column(cmd.column_id)
    compact_column_positions(ctx.cards, cmd.column_id)


def _create_card(
    ctx: CommandContext,
    board: Board,
    column_id: uuid.UUID,
    title: str,
    position: int | None,
    card_id: uuid.UUID,
) -> Card:
    column = ctx.column(column_id)
    if column.board_id != board.id:
        raise ValidationError(f"Column {column_id} does not belong to board {board.id}")
    if not title.strip():
        raise ValidationError("Card title cannot be empty")
    prefix = board.effective_card_prefix(ctx.default_card_prefix)
    board.ensure_card_counter_initialized(prefix, ctx.board_cards(board.id))
    if position is None:
        position = next_position_in_column(ctx.cards, column_id)
    card = Card.new(board, column_id, title, position, prefix)
    card.id = card_id
    if should_auto_complete_new_card(column_id, board, ctx.columns):
        card.update_status(CardStatus.DONE)
    ctx.cards.append(card)
    return card


@execute.register(CreateCard)
def _(cmd: CreateCard, ctx: CommandContext) -> None:
    board = ctx.board(cmd.board_id)
    card = _create_card(ctx, board, cmd.column_id, cmd.title, cmd.position, cmd.card_id)
    card.description = cmd.description
    if cmd.priority is not None:
        card.priority = cmd.priority
    card.points = cmd.points
    card.due_date = cmd.due_date


@execute.register(CreateSubcard)
def _(cmd: CreateSubcard, ctx: CommandContext) -> None:
    board = ctx.board(cmd.board_id)
    parent = ctx.card(cmd.parent_id)
    column_id = cmd.column_id or parent.column_id
    _create_card(ctx, board, column_id, cmd.title, None, cmd.card_id)
    ctx.graph.cards.set_parent(cmd.card_id, parent.id)


@execute.register(UpdateCard)
def _(cmd: UpdateCard, ctx: CommandContext) -> None:
    card = ctx.card(cmd.card_id)
    if cmd.updates.column_id.value is not None:
        ctx.column(cmd.updates.column_id.value)
    card.update(cmd.updates)


@execute.register(MoveCard)
def _(cmd: MoveCard, ctx: CommandContext) -> None:
    card = ctx.card(cmd.card_id)
    ctx.column(cmd.new_column_id)
    card.move_to_column(cmd.new_column_id, cmd.new_position)


@execute.register(ArchiveCard)
def _(cmd: ArchiveCard, ctx: CommandContext) -> None:
    card = ctx.card(cmd.card_id)
    ctx.cards[:] = [c for c in ctx.cards if c.id != card.id]
    ctx.archived_cards.append(ArchivedCard.from_card(card))
    ctx.graph.cards.archive_card_edges(card.id)


@execute.register(RestoreCard)
def _(cmd: RestoreCard, ctx: CommandContext) -> None:
    index = ctx.archived_index(cmd.card_id)
    ctx.column(cmd.column_id)
    archived = ctx.archived_cards.pop(index)
    position = cmd.position
    if position is None:
        position = next_position_in_column(ctx.cards, cmd.column_id)
    card = archived.card
    card.move_to_column(cmd.column_id, position)
    ctx.cards.append(card)
    ctx.graph.cards.unarchive_card_edges(card.id)


@execute.register(DeleteCard)
def _(cmd: DeleteCard, ctx: CommandContext) -> None:
    index = ctx.archived_index(cmd.card_id)
    del ctx.archived_cards[index]
    ctx.graph.cards.remove_card_edges(cmd.card_id)


@execute.register(AssignCardToSprint)
def _(cmd: AssignCardToSprint, ctx: CommandContext) -> None:
    card = ctx.card(cmd.card_id)
    sprint = ctx.sprint(cmd.sprint_id)
    board = ctx.board(sprint.board_id)
    if ctx.board_of_column(card.column_id).id != board.id:
        raise ValidationError(f"Sprint {sprint.id} belongs to another board")
    if card.sprint_id == sprint.id and card.current_sprint_log() is not None:
        return
    card.assign_to_sprint(
        sprint.id, sprint.sprint_number, sprint.get_name(board), sprint.status.value
    )


@execute.register(UnassignCardFromSprint)
def _(cmd: UnassignCardFromSprint, ctx: CommandContext) -> None:
    ctx.card(cmd.card_id).unassign_sprint()


@execute.register(CreateSprint)
def _(cmd: CreateSprint, ctx: CommandContext) -> None:
    board = ctx.board(cmd.board_id)
    if cmd.prefix is not None:
        validate_prefix(cmd.prefix)
    if cmd.card_prefix is not None:
        validate_prefix(cmd.card_prefix)
    prefix = cmd.prefix or board.effective_sprint_prefix(ctx.default_sprint_prefix)
    board.ensure_sprint_counter_initialized(prefix, ctx.sprints)
    number = board.get_next_sprint_number(prefix)
    if cmd.name:
        name_index = board.add_sprint_name_at_used_index(cmd.name)
    else:
        name_index = board.consume_sprint_name()
    ctx.sprints.append(
        Sprint(
            id=cmd.sprint_id,
            board_id=board.id,
            sprint_number=number,
            name_index=name_index,
            prefix=cmd.prefix,
            card_prefix=cmd.card_prefix,
        )
    )


@execute.register(UpdateSprint)
def _(cmd: UpdateSprint, ctx: CommandContext) -> None:
    sprint = ctx.sprint(cmd.sprint_id)
    updates = cmd.updates
    if cmd.name:
        board = ctx.board(sprint.board_id)
        index = board.add_sprint_name_at_used_index(cmd.name)
        updates = replace(updates, name_index=FieldUpdate.of(index))
    sprint.update(updates)


@execute.register(ActivateSprint)
def _(cmd: ActivateSprint, ctx: CommandContext) -> None:
    sprint = ctx.sprint(cmd.sprint_id)
    board = ctx.board(sprint.board_id)
    duration = cmd.duration_days
    if duration is None:
        duration = board.sprint_duration_days
    if duration is None:
        duration = ctx.default_sprint_duration_days
    if duration <= 0:
        raise ValidationError("Sprint duration must be at least one day")
    sprint.activate(duration)
    board.active_sprint_id = sprint.id
    board.touch()
    _refresh_sprint_log_status(ctx, sprint)


@execute.register(CompleteSprint)
def _(cmd: CompleteSprint, ctx: CommandContext) -> None:
    sprint = ctx.sprint(cmd.sprint_id)
    sprint.complete()
    _release_active_sprint(ctx, sprint)
    _refresh_sprint_log_status(ctx, sprint)


@execute.register(CancelSprint)
def _(cmd: CancelSprint, ctx: CommandContext) -> None:
    sprint = ctx.sprint(cmd.sprint_id)
    sprint.cancel()
    _release_active_sprint(ctx, sprint)
    _refresh_sprint_log_status(ctx, sprint)


@execute.register(DeleteSprint)
def _(cmd: DeleteSprint, ctx: CommandContext) -> None:
    sprint = ctx.sprint(cmd.sprint_id)
    for card in ctx.cards:
        if card.sprint_id == sprint.id:
            card.unassign_sprint()
    for archived in ctx.archived_cards:
        if archived.card.sprint_id == sprint.id:
            archived.card.unassign_sprint()
    _release_active_sprint(ctx, sprint)
    ctx.sprints[:] = [s for s in ctx.sprints if s.id != sprint.id]


def _release_active_sprint(ctx: CommandContext, sprint: Sprint) -> None:
    for board in ctx.boards:
        if board.active_sprint_id == sprint.id:
            board.active_sprint_id = None
            board.touch()


def _refresh_sprint_log_status(ctx: CommandContext, sprint: Sprint) -> None:
    for card in ctx.cards:
        if card.sprint_id != sprint.id:
            continue
        log = card.current_sprint_log()
        if log is not None and log.sprint_id == sprint.id:
            log.status = sprint.status.value


@execute.register(AddBlocks)
def _(cmd: AddBlocks, ctx: CommandContext) -> None:
    _require_endpoints(ctx, cmd.blocker_id, cmd.blocked_id)
    ctx.graph.cards.add_blocks(cmd.blocker_id, cmd.blocked_id)


@execute.register(AddRelatesTo)
def _(cmd: AddRelatesTo, ctx: CommandContext) -> None:
    _require_endpoints(ctx, cmd.card_a_id, cmd.card_b_id)
    ctx.graph.cards.add_relates_to(cmd.card_a_id, cmd.card_b_id)


@execute.register(SetParent)
def _(cmd: SetParent, ctx: CommandContext) -> None:
    _require_endpoints(ctx, cmd.child_id, cmd.parent_id)
    ctx.graph.cards.set_parent(cmd.child_id, cmd.parent_id)


@execute.register(RemoveDependency)
def _(cmd: RemoveDependency, ctx: CommandContext) -> None:
    ctx.graph.cards.remove_dependency(cmd.source_id, cmd.target_id)


@execute.register(RemoveParent)
def _(cmd: RemoveParent, ctx: CommandContext) -> None:
    ctx.graph.cards.remove_parent(cmd.child_id, cmd.parent_id)


def _require_endpoints(ctx: CommandContext, a: uuid.UUID, b: uuid.UUID) -> None:
    # Self-reference is reported before existence so the error names the real problem
    if a != b:
        ctx.require_card_known(a)
        ctx.require_card_known(b)


@execute.register(ImportSnapshot)
def _(cmd: ImportSnapshot, ctx: CommandContext) -> None:
    incoming = cmd.snapshot.clone()
    if not incoming.boards:
        raise NotFoundError("Board in import")
    _reject_existing("Board", {b.id for b in ctx.boards}, [b.id for b in incoming.boards])
    _reject_existing("Column", {c.id for c in ctx.columns}, [c.id for c in incoming.columns])
    _reject_existing("Sprint", {s.id for s in ctx.sprints}, [s.id for s in incoming.sprints])
    known_cards = {c.id for c in ctx.cards} | {a.card.id for a in ctx.archived_cards}
    _reject_existing(
        "Card",
        known_cards,
        [c.id for c in incoming.cards] + [a.card.id for a in incoming.archived_cards],
    )
    _check_import_references(ctx, incoming)

    ctx.boards.extend(incoming.boards)
    ctx.columns.extend(incoming.columns)
    ctx.sprints.extend(incoming.sprints)
    ctx.cards.extend(incoming.cards)
    ctx.archived_cards.extend(incoming.archived_cards)
    for edge in incoming.graph.cards.edges:
        ctx.graph.cards.add_edge(edge)
    logger.debug(
        "Imported {} board(s), {} card(s)", len(incoming.boards), len(incoming.cards)
    )


def _reject_existing(kind: str, existing: set[uuid.UUID], incoming: list[uuid.UUID]) -> None:
    for entity_id in incoming:
        if entity_id in existing:
            raise ValidationError(f"{kind} {entity_id} already exists")


def _check_import_references(ctx: CommandContext, incoming: DataSnapshot) -> None:
    """Every reference in the import must land on the existing state or the import itself."""
    board_ids = {b.id for b in ctx.boards} | {b.id for b in incoming.boards}
    column_ids = {c.id for c in ctx.columns} | {c.id for c in incoming.columns}
    sprint_ids = {s.id for s in ctx.sprints} | {s.id for s in incoming.sprints}
    cards = [*incoming.cards, *(a.card for a in incoming.archived_cards)]
    card_ids = {c.id for c in ctx.cards} | {a.card.id for a in ctx.archived_cards}
    card_ids |= {c.id for c in cards}

    for owned in [*incoming.columns, *incoming.sprints]:
        _require_reference("Board", owned.board_id, board_ids)
    for board in incoming.boards:
        _require_reference("Column", board.completion_column_id, column_ids)
        _require_reference("Sprint", board.active_sprint_id, sprint_ids)
    for card in cards:
        _require_reference("Column", card.column_id, column_ids)
        _require_reference("Sprint", card.sprint_id, sprint_ids)
    for archived in incoming.archived_cards:
        _require_reference("Column", archived.original_column_id, column_ids)

    merged = CardGraph(ctx.graph.cards.edges)
    for edge in incoming.graph.cards.edges:
        _require_reference("Card", edge.source, card_ids)
        _require_reference("Card", edge.target, card_ids)
        if edge.label.requires_dag and edge.is_active:
            if merged.would_create_cycle(edge.source, edge.target, edge.label):
                raise ValidationError(
                    f"Imported {edge.label.value} edge {edge.source} -> {edge.target} forms a cycle"
                )
        merged.add_edge(edge)


def _require_reference(kind: str, entity_id: uuid.UUID | None, known: set[uuid.UUID]) -> None:
    if entity_id is not None and entity_id not in known:
        raise ValidationError(f"{kind} {entity_id} referenced by import does not exist")


# ---------------------------------------------------------------------------
# describe
# ---------------------------------------------------------------------------


@singledispatch
def describe(cmd: object) -> str:
    return type(cmd).__name__


@describe.register(CreateBoard)
def _(cmd: CreateBoard) -> str:
    return f"Create board: '{cmd.name}'"


@describe.register(UpdateBoard)
def _(cmd: UpdateBoard) -> str:
    return "Update board"


@describe.register(DeleteBoard)
def _(cmd: DeleteBoard) -> str:
    return f"Delete board {cmd.board_id}"


@describe.register(SetBoardTaskSort)
def _(cmd: SetBoardTaskSort) -> str:
    return f"Set board task sort to {cmd.sort_field.value} {cmd.order.value}"


@describe.register(SetBoardTaskListView)
def _(cmd: SetBoardTaskListView) -> str:
    return f"Set board task list view to {cmd.view.value}"


@describe.register(CreateColumn)
def _(cmd: CreateColumn) -> str:
    return f"Create column: '{cmd.name}'"


@describe.register(UpdateColumn)
def _(cmd: UpdateColumn) -> str:
    return "Update column"


@describe.register(DeleteColumn)
def _(cmd: DeleteColumn) -> str:
    return f"Delete column {cmd.column_id}"


@describe.register(CompactColumnPositions)
def _(cmd: CompactColumnPositions) -> str:
    return f"Compact card positions in column {cmd.column_id}"


@describe.register(CreateCard)
def _(cmd: CreateCard) -> str:
    return f"Create card: '{cmd.title}'"


@describe.register(CreateSubcard)
def _(cmd: CreateSubcard) -> str:
    return f"Create subcard '{cmd.title}' under {cmd.parent_id}"


@describe.register(UpdateCard)
def _(cmd: UpdateCard) -> str:
    return "Update card"


@describe.register(MoveCard)
def _(cmd: MoveCard) -> str:
    return f"Move card {cmd.card_id} to column {cmd.new_column_id}"


@describe.register(ArchiveCard)
def _(cmd: ArchiveCard) -> str:
    return f"Archive card {cmd.card_id}"


@describe.register(RestoreCard)
def _(cmd: RestoreCard) -> str:
    return f"Restore card {cmd.card_id}"


@describe.register(DeleteCard)
def _(cmd: DeleteCard) -> str:
    return f"Delete card {cmd.card_id}"


@describe.register(AssignCardToSprint)
def _(cmd: AssignCardToSprint) -> str:
    return f"Assign card {cmd.card_id} to sprint {cmd.sprint_id}"


@describe.register(UnassignCardFromSprint)
def _(cmd: UnassignCardFromSprint) -> str:
    return f"Unassign card {cmd.card_id} from sprint"


@describe.register(CreateSprint)
def _(cmd: CreateSprint) -> str:
    return f"Create sprint on board {cmd.board_id}"


@describe.register(UpdateSprint)
def _(cmd: UpdateSprint) -> str:
    return "Update sprint"


@describe.register(ActivateSprint)
def _(cmd: ActivateSprint) -> str:
    return f"Activate sprint {cmd.sprint_id}"


@describe.register(CompleteSprint)
def _(cmd: CompleteSprint) -> str:
    return f"Complete sprint {cmd.sprint_id}"


@describe.register(CancelSprint)
def _(cmd: CancelSprint) -> str:
    return f"Cancel sprint {cmd.sprint_id}"


@describe.register(DeleteSprint)
def _(cmd: DeleteSprint) -> str:
    return f"Delete sprint {cmd.sprint_id}"


@describe.register(AddBlocks)
def _(cmd: AddBlocks) -> str:
    return f"Add blocks dependency: {cmd.blocker_id} blocks {cmd.blocked_id}"


@describe.register(AddRelatesTo)
def _(cmd: AddRelatesTo) -> str:
    return f"Add relates-to dependency: {cmd.card_a_id} <-> {cmd.card_b_id}"


@describe.register(SetParent)
def _(cmd: SetParent) -> str:
    return f"Set parent of {cmd.child_id} to {cmd.parent_id}"


@describe.register(RemoveDependency)
def _(cmd: RemoveDependency) -> str:
    return f"Remove dependency: {cmd.source_id} -> {cmd.target_id}"


@describe.register(RemoveParent)
def _(cmd: RemoveParent) -> str:
    return f"Remove parent {cmd.parent_id} from {cmd.child_id}"


@describe.register(ImportSnapshot)
def _(cmd: ImportSnapshot) -> str:
    names = ", ".join(f"'{b.name}'" for b in cmd.snapshot.boards)
    return f"Import board(s): {names}"
