"""
FastAPI tool surface: thin HTTP wrapper over KanbanWorkspace.

Responsibilities (only):
  - Parse and validate HTTP input (via Pydantic request schemas)
  - Delegate to the workspace
  - Translate workspace errors -> HTTP status codes
  - Wrap every response in the tool envelope

Envelope:
  success   {"success": true,  "data": <payload>}
  list      {"success": true,  "data": {"count": N, "items": [...]}}
  delete    {"success": true,  "data": {"deleted": "<uuid>"}}
  archive   {"success": true,  "data": {"archived": "<uuid>"}}
  error     {"success": false, "error": "<message>", "kind": "<error kind>"}

Endpoints:
  GET    /boards                          List boards
  POST   /boards                          Create a board
  GET    /boards/{id}                     Get a board
  PATCH  /boards/{id}                     Update a board
  DELETE /boards/{id}                     Delete a board and everything on it
  GET    /boards/{id}/columns             List columns in position order
  POST   /boards/{id}/columns             Create a column
  PATCH  /columns/{id}                    Update a column
  POST   /columns/{id}/swap/{other}       Swap two columns' positions
  DELETE /columns/{id}                    Delete an empty column
  GET    /boards/{id}/cards               List / search cards
  POST   /boards/{id}/cards               Create a card
  GET    /boards/{id}/archived            List archived cards
  GET    /cards/{id}                      Get a card
  PATCH  /cards/{id}                      Update a card
  POST   /cards/{id}/move                 Move to a column
  POST   /cards/{id}/move/{direction}     Move one column left / right
  POST   /cards/{id}/toggle               Toggle completion
  POST   /cards/{id}/archive              Archive
  POST   /cards/{id}/restore              Restore from the archive
  DELETE /cards/{id}                      Delete permanently
  POST   /cards/{id}/subcards             Create a child card
  GET    /cards/{id}/branch               Branch name and checkout command
  POST   /cards/{id}/sprint               Assign to a sprint
  DELETE /cards/{id}/sprint               Unassign from its sprint
  GET    /cards/{id}/dependencies         Blockers, related, parents, children
  POST   /cards/{id}/blocks               Add a Blocks edge
  POST   /cards/{id}/relates              Add a RelatesTo edge
  POST   /cards/{id}/parent               Set a parent
  DELETE /cards/{id}/parent/{parent}      Remove a parent
  DELETE /cards/{id}/dependencies/{other} Remove every edge between two cards
  POST   /cards/bulk/archive|move|assign  Bulk operations
  GET    /boards/{id}/sprints             List sprints
  POST   /boards/{id}/sprints             Create a sprint
  POST   /sprints/{id}/activate|complete|cancel
  GET    /sprints/{id}/summary            Card and point totals
  DELETE /sprints/{id}                    Delete a sprint
  GET    /export                          Export everything (or ?board_id=)
  POST   /import                          Import an exported snapshot
  POST   /undo  /redo                     History
  POST   /save/force  /reload             Conflict resolution
"""

from __future__ import annotations

import uuid
from contextlib import asynccontextmanager
from datetime import datetime
from typing import Annotated, Any, Generic, TypeVar

from fastapi import Body, Depends, FastAPI, HTTPException, Query, Request
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from loguru import logger
from pydantic import BaseModel, Field

from .config import WorkspaceConfig
from .domain import (
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
    SprintStatus,
    TaskListView,
)
from .errors import ErrorKind, KanbanError
from .hooks import log_batch
from .lifecycle import MoveDirection
from .snapshot import DataSnapshot
from .workspace import BulkOperationResult, KanbanWorkspace


# ---------------------------------------------------------------------------
# Shared workspace instance (created once at startup)
# ---------------------------------------------------------------------------

_workspace: KanbanWorkspace | None = None


@asynccontextmanager
async def lifespan(app: FastAPI):
    global _workspace
    config = WorkspaceConfig.load()
    _workspace = KanbanWorkspace.from_config(config, hooks={"on_batch": [log_batch]})
    logger.info(
        "Workspace ready ({} store at {})",
        config.store if config.file else "in-memory",
        config.file,
    )
    yield
    _workspace = None


def get_workspace() -> KanbanWorkspace:
    if _workspace is None:
        raise HTTPException(status_code=503, detail="Workspace not initialised")
    return _workspace


WorkspaceDep = Annotated[KanbanWorkspace, Depends(get_workspace)]


# ---------------------------------------------------------------------------
# Envelope
# ---------------------------------------------------------------------------

T = TypeVar("T")


class Envelope(BaseModel, Generic[T]):
    success: bool = True
    data: T


class ListData(BaseModel, Generic[T]):
    count: int
    items: list[T]


class Deleted(BaseModel):
    deleted: uuid.UUID


class Archived(BaseModel):
    archived: uuid.UUID


def _ok(data: Any) -> dict:
    return {"success": True, "data": data}


def _list(items: list) -> dict:
    return _ok({"count": len(items), "items": items})


# ---------------------------------------------------------------------------
# Pydantic schemas
# ---------------------------------------------------------------------------


def _update(body: BaseModel, name: str) -> FieldUpdate:
    """Absent -> no change, explicit null -> clear, value -> set."""
    if name not in body.model_fields_set:
        return FieldUpdate.no_change()
    value = getattr(body, name)
    return FieldUpdate.clear() if value is None else FieldUpdate.of(value)


class CreateBoardRequest(BaseModel):
    name: str = Field(..., min_length=1, max_length=200)
    description: str | None = None
    card_prefix: str | None = None
    sprint_prefix: str | None = None


class UpdateBoardRequest(BaseModel):
    """Only the fields present in the body change; ``null`` clears optional fields."""

    name: str | None = None
    description: str | None = None
    card_prefix: str | None = None
    sprint_prefix: str | None = None
    sprint_duration_days: int | None = Field(default=None, gt=0)
    task_sort_field: SortField | None = None
    task_sort_order: SortOrder | None = None
    task_list_view: TaskListView | None = None
    completion_column_id: uuid.UUID | None = None

    def to_update(self) -> BoardUpdate:
        return BoardUpdate(
            name=_update(self, "name"),
            description=_update(self, "description"),
            card_prefix=_update(self, "card_prefix"),
            sprint_prefix=_update(self, "sprint_prefix"),
            sprint_duration_days=_update(self, "sprint_duration_days"),
            task_sort_field=_update(self, "task_sort_field"),
            task_sort_order=_update(self, "task_sort_order"),
            task_list_view=_update(self, "task_list_view"),
            completion_column_id=_update(self, "completion_column_id"),
        )


class CreateColumnRequest(BaseModel):
    name: str = Field(..., min_length=1, max_length=120)
    position: int | None = Field(default=None, ge=0)
    wip_limit: int | None = Field(default=None, gt=0)


class UpdateColumnRequest(BaseModel):
    name: str | None = None
    position: int | None = Field(default=None, ge=0)
    wip_limit: int | None = Field(default=None, gt=0)

    def to_update(self) -> ColumnUpdate:
        return ColumnUpdate(
            name=_update(self, "name"),
            position=_update(self, "position"),
            wip_limit=_update(self, "wip_limit"),
        )


class CreateCardRequest(BaseModel):
    """
    Request body for creating a card.

    Attributes:
        column_id: Column the card starts in (must belong to the board).
        title: Card title (1-500 characters).
        position: Slot in the column; appended when omitted.
    """

    column_id: uuid.UUID
    title: str = Field(..., min_length=1, max_length=500)
    position: int | None = Field(default=None, ge=0)
    description: str | None = None
    priority: CardPriority | None = None
    points: int | None = Field(default=None, ge=0)
    due_date: datetime | None = None


class UpdateCardRequest(BaseModel):
    title: str | None = None
    description: str | None = None
    priority: CardPriority | None = None
    status: CardStatus | None = None
    points: int | None = Field(default=None, ge=0)
    due_date: datetime | None = None
    card_prefix: str | None = None

    def to_update(self) -> CardUpdate:
        return CardUpdate(
            title=_update(self, "title"),
            description=_update(self, "description"),
            priority=_update(self, "priority"),
            status=_update(self, "status"),
            points=_update(self, "points"),
            due_date=_update(self, "due_date"),
            card_prefix=_update(self, "card_prefix"),
        )


class MoveCardRequest(BaseModel):
    column_id: uuid.UUID
    position: int | None = Field(default=None, ge=0)


class RestoreCardRequest(BaseModel):
    column_id: uuid.UUID | None = None
    position: int | None = Field(default=None, ge=0)


class CreateSubcardRequest(BaseModel):
    title: str = Field(..., min_length=1, max_length=500)
    column_id: uuid.UUID | None = None


class AssignSprintRequest(BaseModel):
    sprint_id: uuid.UUID


class CardRefRequest(BaseModel):
    card_id: uuid.UUID


class ParentRequest(BaseModel):
    parent_id: uuid.UUID


class BulkArchiveRequest(BaseModel):
    card_ids: list[uuid.UUID] = Field(..., min_length=1)


class BulkMoveRequest(BulkArchiveRequest):
    column_id: uuid.UUID


class BulkAssignRequest(BulkArchiveRequest):
    sprint_id: uuid.UUID


class CreateSprintRequest(BaseModel):
    prefix: str | None = None
    name: str | None = None
    card_prefix: str | None = None


class ActivateSprintRequest(BaseModel):
    duration_days: int | None = Field(default=None, gt=0)


class BoardResponse(BaseModel):
    id: uuid.UUID
    name: str
    description: str | None
    card_prefix: str | None
    sprint_prefix: str | None
    task_sort_field: SortField
    task_sort_order: SortOrder
    task_list_view: TaskListView
    sprint_duration_days: int | None
    active_sprint_id: uuid.UUID | None
    completion_column_id: uuid.UUID | None
    next_card_number: int
    created_at: datetime
    updated_at: datetime

    @classmethod
    def from_board(cls, board: Board) -> "BoardResponse":
        return cls(
            id=board.id,
            name=board.name,
            description=board.description,
            card_prefix=board.card_prefix,
            sprint_prefix=board.sprint_prefix,
            task_sort_field=board.task_sort_field,
            task_sort_order=board.task_sort_order,
            task_list_view=board.task_list_view,
            sprint_duration_days=board.sprint_duration_days,
            active_sprint_id=board.active_sprint_id,
            completion_column_id=board.completion_column_id,
            next_card_number=board.next_card_number,
            created_at=board.created_at,
            updated_at=board.updated_at,
        )


class ColumnResponse(BaseModel):
    id: uuid.UUID
    board_id: uuid.UUID
    name: str
    position: int
    wip_limit: int | None

    @classmethod
    def from_column(cls, column: Column) -> "ColumnResponse":
        return cls(
            id=column.id,
            board_id=column.board_id,
            name=column.name,
            position=column.position,
            wip_limit=column.wip_limit,
        )


class CardResponse(BaseModel):
    id: uuid.UUID
    column_id: uuid.UUID
    title: str
    description: str | None
    priority: CardPriority
    status: CardStatus
    position: int
    points: int | None
    due_date: datetime | None
    card_number: int
    identifier: str
    sprint_id: uuid.UUID | None
    completed_at: datetime | None
    created_at: datetime
    updated_at: datetime

    @classmethod
    def from_card(cls, card: Card, identifier: str) -> "CardResponse":
        return cls(
            id=card.id,
            column_id=card.column_id,
            title=card.title,
            description=card.description,
            priority=card.priority,
            status=card.status,
            position=card.position,
            points=card.points,
            due_date=card.due_date,
            card_number=card.card_number,
            identifier=identifier,
            sprint_id=card.sprint_id,
            completed_at=card.completed_at,
            created_at=card.created_at,
            updated_at=card.updated_at,
        )


class ArchivedCardResponse(BaseModel):
    card: CardResponse
    archived_at: datetime
    original_column_id: uuid.UUID
    original_position: int


class SprintResponse(BaseModel):
    id: uuid.UUID
    board_id: uuid.UUID
    sprint_number: int
    name: str
    status: SprintStatus
    start_date: datetime | None
    end_date: datetime | None

    @classmethod
    def from_sprint(cls, sprint: Sprint, name: str) -> "SprintResponse":
        return cls(
            id=sprint.id,
            board_id=sprint.board_id,
            sprint_number=sprint.sprint_number,
            name=name,
            status=sprint.status,
            start_date=sprint.start_date,
            end_date=sprint.end_date,
        )


class SprintSummaryResponse(BaseModel):
    sprint: SprintResponse
    uncompleted: list[uuid.UUID]
    completed: list[uuid.UUID]
    total_points: int
    completed_points: int


class BulkFailureResponse(BaseModel):
    id: uuid.UUID
    error: str


class BulkResponse(BaseModel):
    succeeded_count: int
    failed_count: int
    succeeded: list[uuid.UUID]
    failed: list[BulkFailureResponse]

    @classmethod
    def from_result(cls, result: BulkOperationResult) -> "BulkResponse":
        return cls(
            succeeded_count=result.succeeded_count,
            failed_count=result.failed_count,
            succeeded=result.succeeded,
            failed=[BulkFailureResponse(id=f.id, error=f.error) for f in result.failed],
        )


class DependenciesResponse(BaseModel):
    blockers: list[uuid.UUID]
    blocks: list[uuid.UUID]
    related: list[uuid.UUID]
    parents: list[uuid.UUID]
    children: list[uuid.UUID]
    can_start: bool


class BranchResponse(BaseModel):
    branch: str
    checkout: str


class HistoryResponse(BaseModel):
    changed: bool
    can_undo: bool
    can_redo: bool


def _card(ws: KanbanWorkspace, card: Card) -> CardResponse:
    return CardResponse.from_card(card, ws.card_identifier(card))


def _archived(ws: KanbanWorkspace, board: Board, archived: ArchivedCard) -> ArchivedCardResponse:
    card = archived.card
    return ArchivedCardResponse(
        card=CardResponse.from_card(card, ws.card_identifier(card, board)),
        archived_at=archived.archived_at,
        original_column_id=archived.original_column_id,
        original_position=archived.original_position,
    )


def _sprint(ws: KanbanWorkspace, sprint: Sprint) -> SprintResponse:
    return SprintResponse.from_sprint(sprint, ws.sprint_name(sprint))


# ---------------------------------------------------------------------------
# Exception -> HTTP translation
# ---------------------------------------------------------------------------

_STATUS_BY_KIND = {
    ErrorKind.NOT_FOUND: 404,
    ErrorKind.VALIDATION: 422,
    ErrorKind.SELF_REFERENCE: 422,
    ErrorKind.CYCLE_DETECTED: 409,
    ErrorKind.CONFLICT_DETECTED: 409,
    ErrorKind.SERIALIZATION: 400,
}


def _http(exc: KanbanError) -> JSONResponse:
    """Map workspace errors to status codes and the error envelope."""
    status = _STATUS_BY_KIND.get(exc.kind, 500)
    return JSONResponse(
        status_code=status,
        content={"success": False, "error": str(exc), "kind": exc.kind.value},
    )


# ---------------------------------------------------------------------------
# App
# ---------------------------------------------------------------------------

app = FastAPI(
    title="Kanban Workspace API",
    version="2.0.0",
    lifespan=lifespan,
)


@app.exception_handler(KanbanError)
async def kanban_error_handler(request: Request, exc: KanbanError) -> JSONResponse:
    return _http(exc)


@app.exception_handler(RequestValidationError)
async def request_validation_handler(request: Request, exc: RequestValidationError) -> JSONResponse:
    message = "; ".join(
        f"{'.'.join(str(p) for p in err['loc'])}: {err['msg']}" for err in exc.errors()
    )
    return JSONResponse(
        status_code=422,
        content={"success": False, "error": message, "kind": ErrorKind.VALIDATION.value},
    )


# ---------------------------------------------------------------------------
# Boards
# ---------------------------------------------------------------------------


@app.get("/boards", response_model=Envelope[ListData[BoardResponse]])
def list_boards(ws: WorkspaceDep) -> dict:
    return _list([BoardResponse.from_board(b) for b in ws.list_boards()])


@app.post("/boards", response_model=Envelope[BoardResponse], status_code=201)
async def create_board(body: CreateBoardRequest, ws: WorkspaceDep) -> dict:
    board = await ws.create_board(
        name=body.name,
        description=body.description,
        card_prefix=body.card_prefix,
        sprint_prefix=body.sprint_prefix,
    )
    return _ok(BoardResponse.from_board(board))


@app.get("/boards/{board_id}", response_model=Envelope[BoardResponse])
def get_board(board_id: uuid.UUID, ws: WorkspaceDep) -> dict:
    return _ok(BoardResponse.from_board(ws.get_board(board_id)))


@app.patch("/boards/{board_id}", response_model=Envelope[BoardResponse])
async def update_board(board_id: uuid.UUID, body: UpdateBoardRequest, ws: WorkspaceDep) -> dict:
    board = await ws.update_board(board_id, body.to_update())
    return _ok(BoardResponse.from_board(board))


@app.delete("/boards/{board_id}", response_model=Envelope[Deleted])
async def delete_board(board_id: uuid.UUID, ws: WorkspaceDep) -> dict:
    await ws.delete_board(board_id)
    return _ok({"deleted": board_id})


# ---------------------------------------------------------------------------
# Columns
# ---------------------------------------------------------------------------


@app.get("/boards/{board_id}/columns", response_model=Envelope[ListData[ColumnResponse]])
def list_columns(board_id: uuid.UUID, ws: WorkspaceDep) -> dict:
    return _list([ColumnResponse.from_column(c) for c in ws.list_columns(board_id)])


@app.post("/boards/{board_id}/columns", response_model=Envelope[ColumnResponse], status_code=201)
async def create_column(board_id: uuid.UUID, body: CreateColumnRequest, ws: WorkspaceDep) -> dict:
    column = await ws.create_column(board_id, body.name, body.position, body.wip_limit)
    return _ok(ColumnResponse.from_column(column))


@app.patch("/columns/{column_id}", response_model=Envelope[ColumnResponse])
async def update_column(column_id: uuid.UUID, body: UpdateColumnRequest, ws: WorkspaceDep) -> dict:
    column = await ws.update_column(column_id, body.to_update())
    return _ok(ColumnResponse.from_column(column))


@app.post("/columns/{column_id}/swap/{other_id}", response_model=Envelope[ListData[ColumnResponse]])
async def swap_columns(column_id: uuid.UUID, other_id: uuid.UUID, ws: WorkspaceDep) -> dict:
    await ws.swap_columns(column_id, other_id)
    board_id = ws.get_column(column_id).board_id
    return _list([ColumnResponse.from_column(c) for c in ws.list_columns(board_id)])


@app.delete("/columns/{column_id}", response_model=Envelope[Deleted])
async def delete_column(column_id: uuid.UUID, ws: WorkspaceDep) -> dict:
    await ws.delete_column(column_id)
    return _ok({"deleted": column_id})


# ---------------------------------------------------------------------------
# Cards
# ---------------------------------------------------------------------------


@app.get("/boards/{board_id}/cards", response_model=Envelope[ListData[CardResponse]])
def list_cards(
    board_id: uuid.UUID,
    ws: WorkspaceDep,
    column_id: uuid.UUID | None = Query(default=None, description="Only this column"),
    sprint_id: list[uuid.UUID] = Query(default=[], description="Only these sprints"),
    hide_assigned: bool = Query(default=False, description="Hide cards already in a sprint"),
    search: str | None = Query(default=None, description="Title, identifier or branch"),
) -> dict:
    cards = ws.list_cards(
        board_id,
        column_id=column_id,
        sprint_ids=sprint_id,
        hide_assigned=hide_assigned,
        search=search,
    )
    return _list([_card(ws, c) for c in cards])


@app.post("/boards/{board_id}/cards", response_model=Envelope[CardResponse], status_code=201)
async def create_card(board_id: uuid.UUID, body: CreateCardRequest, ws: WorkspaceDep) -> dict:
    card = await ws.create_card(
        board_id,
        body.column_id,
        body.title,
        position=body.position,
        description=body.description,
        priority=body.priority,
        points=body.points,
        due_date=body.due_date,
    )
    return _ok(_card(ws, card))


@app.get("/boards/{board_id}/archived", response_model=Envelope[ListData[ArchivedCardResponse]])
def list_archived(board_id: uuid.UUID, ws: WorkspaceDep) -> dict:
    board = ws.get_board(board_id)
    return _list([_archived(ws, board, a) for a in ws.list_archived_cards(board_id)])


@app.post("/cards/bulk/archive", response_model=Envelope[BulkResponse])
async def bulk_archive(body: BulkArchiveRequest, ws: WorkspaceDep) -> dict:
    return _ok(BulkResponse.from_result(await ws.bulk_archive_cards(body.card_ids)))


@app.post("/cards/bulk/move", response_model=Envelope[BulkResponse])
async def bulk_move(body: BulkMoveRequest, ws: WorkspaceDep) -> dict:
    return _ok(BulkResponse.from_result(await ws.bulk_move_cards(body.card_ids, body.column_id)))


@app.post("/cards/bulk/assign", response_model=Envelope[BulkResponse])
async def bulk_assign(body: BulkAssignRequest, ws: WorkspaceDep) -> dict:
    return _ok(
        BulkResponse.from_result(await ws.bulk_assign_sprint(body.card_ids, body.sprint_id))
    )


@app.get("/cards/{card_id}", response_model=Envelope[CardResponse])
def get_card(card_id: uuid.UUID, ws: WorkspaceDep) -> dict:
    return _ok(_card(ws, ws.get_card(card_id)))


@app.patch("/cards/{card_id}", response_model=Envelope[CardResponse])
async def update_card(card_id: uuid.UUID, body: UpdateCardRequest, ws: WorkspaceDep) -> dict:
    return _ok(_card(ws, await ws.update_card(card_id, body.to_update())))


@app.post("/cards/{card_id}/move", response_model=Envelope[CardResponse])
async def move_card(card_id: uuid.UUID, body: MoveCardRequest, ws: WorkspaceDep) -> dict:
    return _ok(_card(ws, await ws.move_card(card_id, body.column_id, body.position)))


@app.post("/cards/{card_id}/move/{direction}", response_model=Envelope[CardResponse])
async def move_card_direction(
    card_id: uuid.UUID, direction: MoveDirection, ws: WorkspaceDep
) -> dict:
    moved = await ws.move_card_direction(card_id, direction)
    return _ok(_card(ws, moved or ws.get_card(card_id)))


@app.post("/cards/{card_id}/toggle", response_model=Envelope[CardResponse])
async def toggle_completion(card_id: uuid.UUID, ws: WorkspaceDep) -> dict:
    return _ok(_card(ws, await ws.toggle_completion(card_id)))


@app.post("/cards/{card_id}/archive", response_model=Envelope[Archived])
async def archive_card(card_id: uuid.UUID, ws: WorkspaceDep) -> dict:
    await ws.archive_card(card_id)
    return _ok({"archived": card_id})


@app.post("/cards/{card_id}/restore", response_model=Envelope[CardResponse])
async def restore_card(
    card_id: uuid.UUID, ws: WorkspaceDep, body: RestoreCardRequest | None = None
) -> dict:
    body = body or RestoreCardRequest()
    return _ok(_card(ws, await ws.restore_card(card_id, body.column_id, body.position)))


@app.delete("/cards/{card_id}", response_model=Envelope[Deleted])
async def delete_card(card_id: uuid.UUID, ws: WorkspaceDep) -> dict:
    await ws.delete_card(card_id)
    return _ok({"deleted": card_id})


@app.post("/cards/{card_id}/subcards", response_model=Envelope[CardResponse], status_code=201)
async def create_subcard(card_id: uuid.UUID, body: CreateSubcardRequest, ws: WorkspaceDep) -> dict:
    board = ws.board_of_card(card_id)
    child = await ws.create_subcard(board.id, card_id, body.title, body.column_id)
    return _ok(_card(ws, child))


@app.get("/cards/{card_id}/branch", response_model=Envelope[BranchResponse])
def card_branch(card_id: uuid.UUID, ws: WorkspaceDep) -> dict:
    return _ok(BranchResponse(branch=ws.branch_name(card_id), checkout=ws.git_checkout(card_id)))


@app.post("/cards/{card_id}/sprint", response_model=Envelope[CardResponse])
async def assign_sprint(card_id: uuid.UUID, body: AssignSprintRequest, ws: WorkspaceDep) -> dict:
    return _ok(_card(ws, await ws.assign_card_to_sprint(card_id, body.sprint_id)))


@app.delete("/cards/{card_id}/sprint", response_model=Envelope[CardResponse])
async def unassign_sprint(card_id: uuid.UUID, ws: WorkspaceDep) -> dict:
    return _ok(_card(ws, await ws.unassign_card_from_sprint(card_id)))


# ---------------------------------------------------------------------------
# Dependencies
# ---------------------------------------------------------------------------


@app.get("/cards/{card_id}/dependencies", response_model=Envelope[DependenciesResponse])
def card_dependencies(card_id: uuid.UUID, ws: WorkspaceDep) -> dict:
    graph = ws.card_graph
    return _ok(
        DependenciesResponse(
            blockers=graph.blockers(card_id),
            blocks=graph.blocked_by(card_id),
            related=graph.related(card_id),
            parents=graph.parents(card_id),
            children=graph.children(card_id),
            can_start=ws.can_start(card_id),
        )
    )


@app.post("/cards/{card_id}/blocks", response_model=Envelope[DependenciesResponse])
async def add_blocks(card_id: uuid.UUID, body: CardRefRequest, ws: WorkspaceDep) -> dict:
    """``card_id`` blocks ``body.card_id``."""
    await ws.add_blocks(card_id, body.card_id)
    return card_dependencies(card_id, ws)


@app.post("/cards/{card_id}/relates", response_model=Envelope[DependenciesResponse])
async def add_relates(card_id: uuid.UUID, body: CardRefRequest, ws: WorkspaceDep) -> dict:
    await ws.add_relates_to(card_id, body.card_id)
    return card_dependencies(card_id, ws)


@app.post("/cards/{card_id}/parent", response_model=Envelope[DependenciesResponse])
async def set_parent(card_id: uuid.UUID, body: ParentRequest, ws: WorkspaceDep) -> dict:
    await ws.set_parent(card_id, body.parent_id)
    return card_dependencies(card_id, ws)


@app.delete("/cards/{card_id}/parent/{parent_id}", response_model=Envelope[DependenciesResponse])
async def remove_parent(card_id: uuid.UUID, parent_id: uuid.UUID, ws: WorkspaceDep) -> dict:
    await ws.remove_parent(card_id, parent_id)
    return card_dependencies(card_id, ws)


@app.delete("/cards/{card_id}/dependencies/{other_id}", response_model=Envelope[DependenciesResponse])
async def remove_dependency(card_id: uuid.UUID, other_id: uuid.UUID, ws: WorkspaceDep) -> dict:
    await ws.remove_dependency(card_id, other_id)
    return card_dependencies(card_id, ws)


# ---------------------------------------------------------------------------
# Sprints
# ---------------------------------------------------------------------------


@app.get("/boards/{board_id}/sprints", response_model=Envelope[ListData[SprintResponse]])
def list_sprints(board_id: uuid.UUID, ws: WorkspaceDep) -> dict:
    return _list([_sprint(ws, s) for s in ws.list_sprints(board_id)])


@app.post("/boards/{board_id}/sprints", response_model=Envelope[SprintResponse], status_code=201)
async def create_sprint(board_id: uuid.UUID, body: CreateSprintRequest, ws: WorkspaceDep) -> dict:
    sprint = await ws.create_sprint(
        board_id, prefix=body.prefix, name=body.name, card_prefix=body.card_prefix
    )
    return _ok(_sprint(ws, sprint))


@app.post("/sprints/{sprint_id}/activate", response_model=Envelope[SprintResponse])
async def activate_sprint(
    sprint_id: uuid.UUID, ws: WorkspaceDep, body: ActivateSprintRequest | None = None
) -> dict:
    duration = body.duration_days if body else None
    return _ok(_sprint(ws, await ws.activate_sprint(sprint_id, duration)))


@app.post("/sprints/{sprint_id}/complete", response_model=Envelope[SprintResponse])
async def complete_sprint(sprint_id: uuid.UUID, ws: WorkspaceDep) -> dict:
    return _ok(_sprint(ws, await ws.complete_sprint(sprint_id)))


@app.post("/sprints/{sprint_id}/cancel", response_model=Envelope[SprintResponse])
async def cancel_sprint(sprint_id: uuid.UUID, ws: WorkspaceDep) -> dict:
    return _ok(_sprint(ws, await ws.cancel_sprint(sprint_id)))


@app.get("/sprints/{sprint_id}/summary", response_model=Envelope[SprintSummaryResponse])
def sprint_summary(sprint_id: uuid.UUID, ws: WorkspaceDep) -> dict:
    summary = ws.sprint_summary(sprint_id)
    return _ok(
        SprintSummaryResponse(
            sprint=_sprint(ws, summary.sprint),
            uncompleted=summary.uncompleted,
            completed=summary.completed,
            total_points=summary.total_points,
            completed_points=summary.completed_points,
        )
    )


@app.delete("/sprints/{sprint_id}", response_model=Envelope[Deleted])
async def delete_sprint(sprint_id: uuid.UUID, ws: WorkspaceDep) -> dict:
    await ws.delete_sprint(sprint_id)
    return _ok({"deleted": sprint_id})


# ---------------------------------------------------------------------------
# Export / import, history, persistence
# ---------------------------------------------------------------------------


@app.get("/export")
def export_snapshot(
    ws: WorkspaceDep,
    board_id: uuid.UUID | None = Query(default=None, description="Export one board only"),
) -> dict:
    return _ok(ws.export_snapshot(board_id).to_dict())


@app.post("/import", response_model=Envelope[ListData[BoardResponse]], status_code=201)
async def import_snapshot(ws: WorkspaceDep, payload: dict = Body(...)) -> dict:
    boards = await ws.import_snapshot(DataSnapshot.from_dict(payload))
    return _list([BoardResponse.from_board(b) for b in boards])


def _history(ws: KanbanWorkspace, changed: bool) -> dict:
    return _ok(
        HistoryResponse(
            changed=changed, can_undo=ws.history.can_undo(), can_redo=ws.history.can_redo()
        )
    )


@app.post("/undo", response_model=Envelope[HistoryResponse])
async def undo(ws: WorkspaceDep) -> dict:
    return _history(ws, await ws.undo())


@app.post("/redo", response_model=Envelope[HistoryResponse])
async def redo(ws: WorkspaceDep) -> dict:
    return _history(ws, await ws.redo())


@app.post("/save/force")
async def force_save(ws: WorkspaceDep) -> dict:
    metadata = await ws.force_save()
    return _ok(metadata.to_dict() if metadata else None)


@app.post("/reload", response_model=Envelope[ListData[BoardResponse]])
async def reload(ws: WorkspaceDep) -> dict:
    await ws.reload()
    return _list([BoardResponse.from_board(b) for b in ws.list_boards()])
