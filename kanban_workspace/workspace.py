"""
KanbanWorkspace: the operations facade the HTTP surface and tools use.

Responsibilities:
  - Turn each operation into commands and run them as one batch
  - Save to the configured store after every batch
  - Surface persistence conflicts (force-save or reload to resolve)
  - Undo / redo
  - Read-side queries: card lists, search, layouts, sprint summaries

The executor is the only place state changes. Mutating methods are async
and serialised by a single asyncio.Lock; reads are plain methods over the
current state.
"""

from __future__ import annotations

import asyncio
import uuid
from dataclasses import dataclass, field
from datetime import datetime
from typing import Iterable

from loguru import logger

from .commands import (
    ActivateSprint,
    AddBlocks,
    AddRelatesTo,
    ArchiveCard,
    AssignCardToSprint,
    CancelSprint,
    Command,
    CommandContext,
    CompactColumnPositions,
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
    RemoveParent,
    RestoreCard,
    SetBoardTaskListView,
    SetBoardTaskSort,
    SetParent,
    UnassignCardFromSprint,
    UpdateBoard,
    UpdateCard,
    UpdateColumn,
    UpdateSprint,
)
from .config import DEFAULT_HISTORY_LIMIT, WorkspaceConfig
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
    CardUpdate,
    Column,
    ColumnUpdate,
    FieldUpdate,
    SortField,
    SortOrder,
    Sprint,
    SprintUpdate,
    TaskListView,
)
from .errors import (
    ConflictDetectedError,
    InternalError,
    KanbanError,
    NotFoundError,
    ValidationError,
)
from .executor import CommandExecutor
from .history import HistoryManager
from .hooks import AsyncHookFn, HookRegistry, WorkspaceEvent
from .json_store import JsonFileStore
from .layout import LayoutStrategy, ViewRefreshContext, layout_for_view
from .lifecycle import (
    MoveDirection,
    compute_card_column_move,
    compute_completion_toggle,
    migrate_sprint_logs,
    next_position_in_column,
    resolve_restore_column,
    sorted_board_columns,
)
from .query import CardQueryBuilder, calculate_points, partition_sprint_cards
from .snapshot import DataSnapshot
from .sqlite_store import SqliteStore
from .store import PersistenceMetadata, PersistenceStore, StoreSnapshot


@dataclass
class BulkFailure:
    id: uuid.UUID
    error: str


@dataclass
class BulkOperationResult:
    succeeded: list[uuid.UUID] = field(default_factory=list)
    failed: list[BulkFailure] = field(default_factory=list)

    @property
    def succeeded_count(self) -> int:
        return len(self.succeeded)

    @property
    def failed_count(self) -> int:
        return len(self.failed)


@dataclass
class SprintSummary:
    sprint: Sprint
    uncompleted: list[uuid.UUID]
    completed: list[uuid.UUID]
    total_points: int
    completed_points: int


def store_for(config: WorkspaceConfig) -> PersistenceStore | None:
    if config.file is None:
        return None
    if config.store == "sqlite":
        return SqliteStore(config.file)
    return JsonFileStore(config.file)


class KanbanWorkspace:
    """
    Args:
        store:        Where state is loaded from and saved to after every batch.
                      Pass ``None`` for an in-memory workspace (useful in tests).
        hooks:        Event name -> async callables; see ``hooks.HOOK_EVENTS``.
        history_limit: Maximum undo depth.
    """

    def __init__(
        self,
        store: PersistenceStore | None = None,
        hooks: dict[str, list[AsyncHookFn]] | None = None,
        history_limit: int = DEFAULT_HISTORY_LIMIT,
        default_card_prefix: str = DEFAULT_CARD_PREFIX,
        default_sprint_prefix: str = DEFAULT_SPRINT_PREFIX,
        default_sprint_duration_days: int = DEFAULT_SPRINT_DURATION_DAYS,
    ) -> None:
        self._store = store
        self._default_card_prefix = default_card_prefix
        self._default_sprint_prefix = default_sprint_prefix
        self._executor = CommandExecutor(
            history=HistoryManager(history_limit),
            default_card_prefix=default_card_prefix,
            default_sprint_prefix=default_sprint_prefix,
            default_sprint_duration_days=default_sprint_duration_days,
        )
        self._lock = asyncio.Lock()
        self._hook_registry = HookRegistry()
        if hooks:
            for event, hook_list in hooks.items():
                for hook in hook_list:
                    self._hook_registry.register(event, hook)

        if store is not None and store.exists():
            self._load()

    @classmethod
    def from_config(
        cls,
        config: WorkspaceConfig,
        hooks: dict[str, list[AsyncHookFn]] | None = None,
    ) -> "KanbanWorkspace":
        return cls(
            store=store_for(config),
            hooks=hooks,
            history_limit=config.history_limit,
            default_card_prefix=config.default_card_prefix,
            default_sprint_prefix=config.default_sprint_prefix,
            default_sprint_duration_days=config.sprint_duration_days,
        )

    @property
    def state(self) -> DataSnapshot:
        return self._executor.state

    @property
    def store(self) -> PersistenceStore | None:
        return self._store

    @property
    def history(self) -> HistoryManager:
        if self._executor.history is None:
            raise InternalError("Workspace executor has no history manager")
        return self._executor.history

    def register_hook(self, event: str, hook: AsyncHookFn) -> None:
        self._hook_registry.register(event, hook)

    # ------------------------------------------------------------------
    # Boards
    # ------------------------------------------------------------------

    async def create_board(
        self,
        name: str,
        description: str | None = None,
        card_prefix: str | None = None,
        sprint_prefix: str | None = None,
    ) -> Board:
        cmd = CreateBoard(
            name=name,
            description=description,
            card_prefix=card_prefix,
            sprint_prefix=sprint_prefix,
        )
        await self._apply(cmd)
        logger.info("Created board {} {!r}", cmd.board_id, name)
        return self.get_board(cmd.board_id)

    async def update_board(self, board_id: uuid.UUID, updates: BoardUpdate) -> Board:
        await self._apply(UpdateBoard(board_id, updates))
        return self.get_board(board_id)

    async def set_board_task_sort(
        self, board_id: uuid.UUID, sort_field: SortField, order: SortOrder
    ) -> Board:
        await self._apply(SetBoardTaskSort(board_id, sort_field, order))
        return self.get_board(board_id)

    async def set_board_task_list_view(self, board_id: uuid.UUID, view: TaskListView) -> Board:
        await self._apply(SetBoardTaskListView(board_id, view))
        return self.get_board(board_id)

    async def delete_board(self, board_id: uuid.UUID) -> None:
        await self._apply(DeleteBoard(board_id))
        logger.info("Deleted board {}", board_id)

    def get_board(self, board_id: uuid.UUID) -> Board:
        return self._ctx().board(board_id)

    def list_boards(self) -> list[Board]:
        return list(self.state.boards)

    # ------------------------------------------------------------------
    # Columns
    # ------------------------------------------------------------------

    async def create_column(
        self,
        board_id: uuid.UUID,
        name: str,
        position: int | None = None,
        wip_limit: int | None = None,
    ) -> Column:
        cmd = CreateColumn(board_id=board_id, name=name, position=position, wip_limit=wip_limit)
        await self._apply(cmd)
        return self.get_column(cmd.column_id)

    async def update_column(self, column_id: uuid.UUID, updates: ColumnUpdate) -> Column:
        await self._apply(UpdateColumn(column_id, updates))
        return self.get_column(column_id)

    async def reorder_column(self, column_id: uuid.UUID, new_position: int) -> Column:
        return await self.update_column(
            column_id, ColumnUpdate(position=FieldUpdate.of(new_position))
        )

    async def swap_columns(self, column_a: uuid.UUID, column_b: uuid.UUID) -> None:
        """Exchange two columns' positions in a single batch."""
        a, b = self.get_column(column_a), self.get_column(column_b)
        await self._apply(
            UpdateColumn(a.id, ColumnUpdate(position=FieldUpdate.of(b.position))),
            UpdateColumn(b.id, ColumnUpdate(position=FieldUpdate.of(a.position))),
        )

    async def delete_column(self, column_id: uuid.UUID) -> None:
        await self._apply(DeleteColumn(column_id))

    async def compact_column(self, column_id: uuid.UUID) -> None:
        await self._apply(CompactColumnPositions(column_id))

    def get_column(self, column_id: uuid.UUID) -> Column:
        return self._ctx().column(column_id)

    def list_columns(self, board_id: uuid.UUID) -> list[Column]:
        self.get_board(board_id)
        return sorted_board_columns(board_id, self.state.columns)

    # ------------------------------------------------------------------
    # Cards
    # ------------------------------------------------------------------

    async def create_card(
        self,
        board_id: uuid.UUID,
        column_id: uuid.UUID,
        title: str,
        position: int | None = None,
        description: str | None = None,
        priority: CardPriority | None = None,
        points: int | None = None,
        due_date: datetime | None = None,
    ) -> Card:
        cmd = CreateCard(
            board_id=board_id,
            column_id=column_id,
            title=title,
            position=position,
            description=description,
            priority=priority,
            points=points,
            due_date=due_date,
        )
        await self._apply(cmd)
        return self.get_card(cmd.card_id)

    async def create_subcard(
        self,
        board_id: uuid.UUID,
        parent_id: uuid.UUID,
        title: str,
        column_id: uuid.UUID | None = None,
    ) -> Card:
        cmd = CreateSubcard(board_id=board_id, parent_id=parent_id, title=title, column_id=column_id)
        await self._apply(cmd)
        return self.get_card(cmd.card_id)

    async def update_card(self, card_id: uuid.UUID, updates: CardUpdate) -> Card:
        await self._apply(UpdateCard(card_id, updates))
        return self.get_card(card_id)

    async def move_card(
        self, card_id: uuid.UUID, column_id: uuid.UUID, position: int | None = None
    ) -> Card:
        if position is None:
            position = next_position_in_column(self.state.cards, column_id)
        await self._apply(MoveCard(card_id, column_id, position))
        return self.get_card(card_id)

    async def move_card_direction(self, card_id: uuid.UUID, direction: MoveDirection) -> Card | None:
        """
        Move a card to the neighbouring column, adjusting its status when it
        enters or leaves the completion column.

        Returns:
            The moved card, or None if it is already in the outermost column.
        """
        card = self.get_card(card_id)
        board = self._board_of_card(card)
        result = compute_card_column_move(
            card, board, self.state.columns, self.state.cards, direction
        )
        if result is None:
            return None
        updates = CardUpdate(
            column_id=FieldUpdate.of(result.target_column_id),
            position=FieldUpdate.of(result.new_position),
            status=FieldUpdate.from_optional(result.new_status),
        )
        await self._apply(UpdateCard(card_id, updates))
        return self.get_card(card_id)

    async def toggle_completion(self, card_id: uuid.UUID) -> Card:
        """
        Flip a card between Done and Todo, moving it into or out of the
        board's completion column.

        Raises:
            ValidationError: The board layout leaves the card nowhere to go.
        """
        card = self.get_card(card_id)
        board = self._board_of_card(card)
        result = compute_completion_toggle(card, board, self.state.columns, self.state.cards)
        if result is None:
            raise ValidationError(f"Card {card_id} cannot be toggled on this board")
        updates = CardUpdate(
            status=FieldUpdate.of(result.new_status),
            column_id=FieldUpdate.of(result.target_column_id),
            position=FieldUpdate.of(result.new_position),
        )
        await self._apply(UpdateCard(card_id, updates))
        return self.get_card(card_id)

    async def archive_card(self, card_id: uuid.UUID) -> ArchivedCard:
        await self._apply(ArchiveCard(card_id))
        return self.get_archived_card(card_id)

    async def restore_card(
        self,
        card_id: uuid.UUID,
        column_id: uuid.UUID | None = None,
        position: int | None = None,
    ) -> Card:
        """Restore into ``column_id``, else the original column, else the board's first column."""
        if column_id is None:
            archived = self.get_archived_card(card_id)
            board_id = self._board_id_of_column(archived.original_column_id)
            column_id = resolve_restore_column(
                archived.original_column_id, board_id, self.state.columns
            )
            if column_id is None:
                raise ValidationError(f"No column to restore card {card_id} into")
        await self._apply(RestoreCard(card_id, column_id, position))
        return self.get_card(card_id)

    async def delete_card(self, card_id: uuid.UUID) -> None:
        """Permanently delete a card, archiving it first if it is still live."""
        if any(c.id == card_id for c in self.state.cards):
            await self._apply(ArchiveCard(card_id), DeleteCard(card_id))
        else:
            await self._apply(DeleteCard(card_id))

    def get_card(self, card_id: uuid.UUID) -> Card:
        return self._ctx().card(card_id)

    def board_of_card(self, card_id: uuid.UUID) -> Board:
        return self._board_of_card(self.get_card(card_id))

    def card_identifier(self, card: Card, board: Board | None = None) -> str:
        """``{prefix}-{number}`` using the card, sprint, board and configured prefixes."""
        board = board or self._board_of_card(card)
        return card.identifier(board, self.state.sprints, self._default_card_prefix)

    def get_archived_card(self, card_id: uuid.UUID) -> ArchivedCard:
        ctx = self._ctx()
        return ctx.archived_cards[ctx.archived_index(card_id)]

    def list_archived_cards(self, board_id: uuid.UUID | None = None) -> list[ArchivedCard]:
        if board_id is None:
            return list(self.state.archived_cards)
        column_ids = {c.id for c in self.state.columns if c.board_id == board_id}
        return [a for a in self.state.archived_cards if a.original_column_id in column_ids]

    def list_cards(
        self,
        board_id: uuid.UUID,
        column_id: uuid.UUID | None = None,
        sprint_ids: Iterable[uuid.UUID] = (),
        hide_assigned: bool = False,
        search: str | None = None,
    ) -> list[Card]:
        """A board's cards, filtered and sorted by the board's sort settings."""
        query = (
            self._query(board_id)
            .in_sprints(sprint_ids)
            .hide_assigned(hide_assigned)
            .search(search)
        )
        if column_id is not None:
            query.in_column(column_id)
        return query.execute_cards()

    def search_cards(self, board_id: uuid.UUID, query: str) -> list[Card]:
        return self.list_cards(board_id, search=query)

    def view(
        self,
        board_id: uuid.UUID,
        sprint_ids: Iterable[uuid.UUID] = (),
        hide_assigned: bool = False,
        search: str | None = None,
        layout: LayoutStrategy | None = None,
    ) -> LayoutStrategy:
        """
        Refresh ``layout`` (or a fresh one matching the board's list view)
        with the board's current cards.
        """
        board = self.get_board(board_id)
        layout = layout or layout_for_view(board.task_list_view)
        layout.refresh(
            ViewRefreshContext(
                board=board,
                cards=self.state.cards,
                columns=self.state.columns,
                sprints=self.state.sprints,
                active_sprint_filters=set(sprint_ids),
                hide_assigned=hide_assigned,
                search_query=search,
            )
        )
        return layout

    def branch_name(self, card_id: uuid.UUID) -> str:
        card = self.get_card(card_id)
        return card.branch_name(
            self._board_of_card(card), self.state.sprints, self._default_card_prefix
        )

    def git_checkout(self, card_id: uuid.UUID) -> str:
        card = self.get_card(card_id)
        return card.git_checkout_command(
            self._board_of_card(card), self.state.sprints, self._default_card_prefix
        )

    # ------------------------------------------------------------------
    # Bulk operations
    # ------------------------------------------------------------------

    async def bulk_archive_cards(self, card_ids: Iterable[uuid.UUID]) -> BulkOperationResult:
        return await self._apply_each((card_id, ArchiveCard(card_id)) for card_id in card_ids)

    async def bulk_move_cards(
        self, card_ids: Iterable[uuid.UUID], column_id: uuid.UUID
    ) -> BulkOperationResult:
        def moves():
            for card_id in card_ids:
                position = next_position_in_column(self.state.cards, column_id)
                yield card_id, MoveCard(card_id, column_id, position)

        return await self._apply_each(moves())

    async def bulk_assign_sprint(
        self, card_ids: Iterable[uuid.UUID], sprint_id: uuid.UUID
    ) -> BulkOperationResult:
        return await self._apply_each(
            (card_id, AssignCardToSprint(card_id, sprint_id)) for card_id in card_ids
        )

    # ------------------------------------------------------------------
    # Sprints
    # ------------------------------------------------------------------

    async def create_sprint(
        self,
        board_id: uuid.UUID,
        prefix: str | None = None,
        name: str | None = None,
        card_prefix: str | None = None,
    ) -> Sprint:
        cmd = CreateSprint(board_id=board_id, prefix=prefix, name=name, card_prefix=card_prefix)
        await self._apply(cmd)
        return self.get_sprint(cmd.sprint_id)

    async def update_sprint(
        self,
        sprint_id: uuid.UUID,
        updates: SprintUpdate | None = None,
        name: str | None = None,
    ) -> Sprint:
        await self._apply(UpdateSprint(sprint_id, updates or SprintUpdate(), name))
        return self.get_sprint(sprint_id)

    async def activate_sprint(self, sprint_id: uuid.UUID, duration_days: int | None = None) -> Sprint:
        await self._apply(ActivateSprint(sprint_id, duration_days))
        return self.get_sprint(sprint_id)

    async def complete_sprint(self, sprint_id: uuid.UUID) -> Sprint:
        await self._apply(CompleteSprint(sprint_id))
        return self.get_sprint(sprint_id)

    async def cancel_sprint(self, sprint_id: uuid.UUID) -> Sprint:
        await self._apply(CancelSprint(sprint_id))
        return self.get_sprint(sprint_id)

    async def delete_sprint(self, sprint_id: uuid.UUID) -> None:
        await self._apply(DeleteSprint(sprint_id))

    async def assign_card_to_sprint(self, card_id: uuid.UUID, sprint_id: uuid.UUID) -> Card:
        await self._apply(AssignCardToSprint(card_id, sprint_id))
        return self.get_card(card_id)

    async def unassign_card_from_sprint(self, card_id: uuid.UUID) -> Card:
        await self._apply(UnassignCardFromSprint(card_id))
        return self.get_card(card_id)

    def get_sprint(self, sprint_id: uuid.UUID) -> Sprint:
        return self._ctx().sprint(sprint_id)

    def sprint_name(self, sprint: Sprint) -> str:
        return sprint.formatted_name(self.get_board(sprint.board_id), self._default_sprint_prefix)

    def list_sprints(self, board_id: uuid.UUID) -> list[Sprint]:
        self.get_board(board_id)
        return sorted(
            (s for s in self.state.sprints if s.board_id == board_id),
            key=lambda s: s.sprint_number,
        )

    def sprint_summary(self, sprint_id: uuid.UUID) -> SprintSummary:
        sprint = self.get_sprint(sprint_id)
        uncompleted, completed = partition_sprint_cards(sprint_id, self.state.cards)
        done = set(completed)
        in_sprint = [c for c in self.state.cards if c.sprint_id == sprint_id]
        return SprintSummary(
            sprint=sprint,
            uncompleted=uncompleted,
            completed=completed,
            total_points=calculate_points(in_sprint),
            completed_points=calculate_points(c for c in in_sprint if c.id in done),
        )

    # ------------------------------------------------------------------
    # Dependencies
    # ------------------------------------------------------------------

    async def add_blocks(self, blocker_id: uuid.UUID, blocked_id: uuid.UUID) -> None:
        await self._apply(AddBlocks(blocker_id, blocked_id))

    async def add_relates_to(self, card_a_id: uuid.UUID, card_b_id: uuid.UUID) -> None:
        await self._apply(AddRelatesTo(card_a_id, card_b_id))

    async def set_parent(self, child_id: uuid.UUID, parent_id: uuid.UUID) -> None:
        await self._apply(SetParent(child_id, parent_id))

    async def remove_dependency(self, source_id: uuid.UUID, target_id: uuid.UUID) -> None:
        await self._apply(RemoveDependency(source_id, target_id))

    async def remove_parent(self, child_id: uuid.UUID, parent_id: uuid.UUID) -> None:
        await self._apply(RemoveParent(child_id, parent_id))

    @property
    def card_graph(self) -> CardGraph:
        return self.state.graph.cards

    def can_start(self, card_id: uuid.UUID) -> bool:
        """True when every card blocking ``card_id`` is Done."""
        self._ctx().require_card_known(card_id)
        done = {c.id for c in self.state.cards if c.is_completed}
        done |= {a.card.id for a in self.state.archived_cards if a.card.is_completed}
        return self.card_graph.can_start(card_id, lambda blocker: blocker in done)

    # ------------------------------------------------------------------
    # Export / import
    # ------------------------------------------------------------------

    def export_snapshot(self, board_id: uuid.UUID | None = None) -> DataSnapshot:
        """A copy of one board (with its archived cards and edges) or of everything."""
        if board_id is None:
            return self.state.clone()
        board = self.get_board(board_id)
        columns = [c for c in self.state.columns if c.board_id == board_id]
        column_ids = {c.id for c in columns}
        cards = [c for c in self.state.cards if c.column_id in column_ids]
        archived = [a for a in self.state.archived_cards if a.original_column_id in column_ids]
        card_ids = {c.id for c in cards} | {a.card.id for a in archived}
        edges = [
            e
            for e in self.card_graph.edges
            if e.source in card_ids and e.target in card_ids
        ]
        return DataSnapshot(
            boards=[board],
            columns=columns,
            cards=cards,
            archived_cards=archived,
            sprints=[s for s in self.state.sprints if s.board_id == board_id],
            graph=DependencyGraph(cards=CardGraph(edges)),
        ).clone()

    def export_json(self, board_id: uuid.UUID | None = None) -> bytes:
        return self.export_snapshot(board_id).to_json_bytes()

    async def import_snapshot(self, snapshot: DataSnapshot) -> list[Board]:
        """
        Add an exported snapshot's entities to the workspace.

        Raises:
            NotFoundError:   The snapshot holds no board.
            ValidationError: An id in the snapshot already exists here.
        """
        await self._apply(ImportSnapshot(snapshot))
        return [self.get_board(b.id) for b in snapshot.boards]

    async def import_json(self, data: bytes) -> list[Board]:
        return await self.import_snapshot(DataSnapshot.from_json_bytes(data))

    # ------------------------------------------------------------------
    # History
    # ------------------------------------------------------------------

    async def undo(self) -> bool:
        async with self._lock:
            changed = self._executor.undo()
            if changed:
                self._persist()
        return changed

    async def redo(self) -> bool:
        async with self._lock:
            changed = self._executor.redo()
            if changed:
                self._persist()
        return changed

    # ------------------------------------------------------------------
    # Persistence
    # ------------------------------------------------------------------

    async def save(self) -> PersistenceMetadata | None:
        return await self._save_and_notify(force=False)

    async def force_save(self) -> PersistenceMetadata | None:
        """Overwrite the store even if another instance changed it."""
        return await self._save_and_notify(force=True)

    async def reload(self) -> None:
        """Discard in-memory state (and history) in favour of what the store holds."""
        async with self._lock:
            if self._store is None:
                raise ValidationError("Workspace has no store to reload from")
            self._load()

    def _load(self) -> None:
        if self._store is None:
            raise ValidationError("Workspace has no store to load from")
        snapshot, metadata = self._store.load()
        state = DataSnapshot.from_json_bytes(snapshot.data)
        backfilled = migrate_sprint_logs(state.cards, state.sprints, state.boards)
        if backfilled:
            logger.info("Backfilled sprint logs for {} card(s)", backfilled)
        self._executor.replace_state(state)
        logger.info(
            "Workspace loaded from {} ({} boards, saved {})",
            self._store.path,
            len(state.boards),
            metadata.saved_at,
        )

    def _persist(self) -> PersistenceMetadata | None:
        """Save the current state. Must be called inside the lock."""
        if self._store is None:
            return None
        snapshot = StoreSnapshot(
            data=self.state.to_json_bytes(),
            metadata=PersistenceMetadata(instance_id=self._store.instance_id),
        )
        metadata = self._store.save(snapshot)
        logger.success("Workspace saved to {}", self._store.path)
        return metadata

    async def _save_and_notify(self, force: bool) -> PersistenceMetadata | None:
        conflict: ConflictDetectedError | None = None
        metadata = None
        async with self._lock:
            if force and self._store is not None:
                self._store.clear_last_known_metadata()
            try:
                metadata = self._persist()
            except ConflictDetectedError as exc:
                conflict = exc
        await self._after_save([], metadata, conflict)
        return metadata

    async def _after_save(
        self,
        descriptions: list[str],
        metadata: PersistenceMetadata | None,
        conflict: ConflictDetectedError | None,
    ) -> None:
        if conflict is not None:
            logger.warning("Save refused: {}", conflict)
            await self._hook_registry.fire(
                WorkspaceEvent("on_conflict", descriptions, detail=conflict.path)
            )
            raise conflict
        if metadata is not None and self._store is not None:
            await self._hook_registry.fire(
                WorkspaceEvent("on_saved", descriptions, detail=str(self._store.path))
            )

    # ------------------------------------------------------------------
    # Internal helpers
    # ------------------------------------------------------------------

    async def _apply(self, *commands: Command) -> list[str]:
        """Run ``commands`` as one batch, then save. Hooks fire outside the lock."""
        conflict: ConflictDetectedError | None = None
        metadata = None
        async with self._lock:
            descriptions = self._executor.execute_batch(commands)
            try:
                metadata = self._persist()
            except ConflictDetectedError as exc:
                conflict = exc

        await self._hook_registry.fire(WorkspaceEvent("on_batch", descriptions))
        await self._after_save(descriptions, metadata, conflict)
        return descriptions

    async def _apply_each(
        self, items: Iterable[tuple[uuid.UUID, Command]]
    ) -> BulkOperationResult:
        """Run each command as its own batch, collecting per-item failures; save once."""
        result = BulkOperationResult()
        descriptions: list[str] = []
        conflict: ConflictDetectedError | None = None
        metadata = None
        async with self._lock:
            for item_id, command in items:
                try:
                    descriptions.extend(self._executor.execute_batch([command]))
                except KanbanError as exc:
                    result.failed.append(BulkFailure(item_id, str(exc)))
                else:
                    result.succeeded.append(item_id)
            if result.succeeded:
                try:
                    metadata = self._persist()
                except ConflictDetectedError as exc:
                    conflict = exc

        logger.info(
            "Bulk operation: {} succeeded, {} failed",
            result.succeeded_count,
            result.failed_count,
        )
        if descriptions:
            await self._hook_registry.fire(WorkspaceEvent("on_batch", descriptions))
        await self._after_save(descriptions, metadata, conflict)
        return result

    def _ctx(self) -> CommandContext:
        return self._executor.context()

    def _board_id_of_column(self, column_id: uuid.UUID) -> uuid.UUID | None:
        for column in self.state.columns:
            if column.id == column_id:
                return column.board_id
        return None

    def _board_of_card(self, card: Card) -> Board:
        board_id = self._board_id_of_column(card.column_id)
        if board_id is None:
            raise NotFoundError(f"Column {card.column_id}")
        return self.get_board(board_id)

    def _query(self, board_id: uuid.UUID) -> CardQueryBuilder:
        return CardQueryBuilder(
            self.state.cards, self.state.columns, self.state.sprints, self.get_board(board_id)
        )
