"""
Core domain: Board, Column, Card, Sprint, SprintLog, ArchivedCard.

Nothing here imports from the rest of the package except errors and the
timestamp helpers. Entities refer to each other by id only; every mutator
bumps ``updated_at``.
"""

from __future__ import annotations

import uuid
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from enum import Enum
from typing import Any, Generic, TypeVar

from .errors import ValidationError
from .timestamps import (
    from_rfc3339,
    optional_from_rfc3339,
    optional_rfc3339,
    to_rfc3339,
    utc_now,
)

T = TypeVar("T")

DEFAULT_CARD_PREFIX = "task"
DEFAULT_SPRINT_PREFIX = "sprint"
DEFAULT_SPRINT_DURATION_DAYS = 14
MAX_BRANCH_NAME_BYTES = 250


# ---------------------------------------------------------------------------
# Enums
# ---------------------------------------------------------------------------


class CardPriority(str, Enum):
    LOW = "Low"
    MEDIUM = "Medium"
    HIGH = "High"
    CRITICAL = "Critical"

    @property
    def rank(self) -> int:
        return _PRIORITY_RANK[self]

    @classmethod
    def parse(cls, raw: str) -> "CardPriority":
        return _parse_enum(cls, raw, "priority")


class CardStatus(str, Enum):
    TODO = "Todo"
    IN_PROGRESS = "InProgress"
    BLOCKED = "Blocked"
    DONE = "Done"

    @property
    def rank(self) -> int:
        return _STATUS_RANK[self]

    @classmethod
    def parse(cls, raw: str) -> "CardStatus":
        return _parse_enum(cls, raw, "status")


_PRIORITY_RANK = {
    CardPriority.LOW: 0,
    CardPriority.MEDIUM: 1,
    CardPriority.HIGH: 2,
    CardPriority.CRITICAL: 3,
}

_STATUS_RANK = {
    CardStatus.TODO: 0,
    CardStatus.BLOCKED: 1,
    CardStatus.IN_PROGRESS: 2,
    CardStatus.DONE: 3,
}


class SprintStatus(str, Enum):
    PLANNING = "Planning"
    ACTIVE = "Active"
    COMPLETED = "Completed"
    CANCELLED = "Cancelled"


class SortField(str, Enum):
    POINTS = "Points"
    PRIORITY = "Priority"
    CREATED_AT = "CreatedAt"
    UPDATED_AT = "UpdatedAt"
    STATUS = "Status"
    POSITION = "Position"
    DEFAULT = "Default"


class SortOrder(str, Enum):
    ASCENDING = "Ascending"
    DESCENDING = "Descending"


class TaskListView(str, Enum):
    FLAT = "Flat"
    GROUPED_BY_COLUMN = "GroupedByColumn"
    COLUMN_VIEW = "ColumnView"


def _parse_enum(enum_cls: type[Enum], raw: str, what: str) -> Any:
    """Accept the serialised value or the member name, case-insensitively."""
    needle = raw.strip().replace("_", "").replace("-", "").lower()
    for member in enum_cls:
        if needle in (member.value.lower(), member.name.replace("_", "").lower()):
            return member
    raise ValidationError(f"Invalid {what}: {raw!r}")


# ---------------------------------------------------------------------------
# FieldUpdate
# ---------------------------------------------------------------------------


class UpdateKind(str, Enum):
    NO_CHANGE = "NoChange"
    SET = "Set"
    CLEAR = "Clear"


@dataclass(frozen=True)
class FieldUpdate(Generic[T]):
    """
    Tri-state partial update: leave the field alone, set it, or clear it.

    ``FieldUpdate()`` is NoChange; build the others with ``FieldUpdate.of(v)``
    and ``FieldUpdate.clear()``.
    """

    kind: UpdateKind = UpdateKind.NO_CHANGE
    value: T | None = None

    @classmethod
    def of(cls, value: T) -> "FieldUpdate[T]":
        return cls(UpdateKind.SET, value)

    @classmethod
    def clear(cls) -> "FieldUpdate[T]":
        return cls(UpdateKind.CLEAR)

    @classmethod
    def no_change(cls) -> "FieldUpdate[T]":
        return cls()

    @classmethod
    def from_optional(cls, value: T | None) -> "FieldUpdate[T]":
        """``None`` clears, anything else sets."""
        return cls.clear() if value is None else cls.of(value)

    def is_change(self) -> bool:
        return self.kind is not UpdateKind.NO_CHANGE

    def apply_to(self, current: T | None) -> T | None:
        if self.kind is UpdateKind.SET:
            return self.value
        if self.kind is UpdateKind.CLEAR:
            return None
        return current

    def apply_required(self, current: T, field_name: str) -> T:
        """Like ``apply_to`` for fields that must always hold a value."""
        if self.kind is UpdateKind.CLEAR:
            raise ValidationError(f"{field_name} cannot be cleared")
        if self.kind is UpdateKind.SET:
            return self.value  # type: ignore[return-value]
        return current


# ---------------------------------------------------------------------------
# Names and prefixes
# ---------------------------------------------------------------------------


def kebab_case(text: str) -> str:
    """Lowercase, collapse every non-alphanumeric run into one ``-``, trim."""
    pieces: list[str] = []
    current: list[str] = []
    for ch in text.lower():
        if ch.isalnum():
            current.append(ch)
        elif current:
            pieces.append("".join(current))
            current = []
    if current:
        pieces.append("".join(current))
    return "-".join(pieces)


def truncate_utf8(text: str, max_bytes: int) -> str:
    """Cut ``text`` to at most ``max_bytes`` UTF-8 bytes without splitting a character."""
    encoded = text.encode("utf-8")
    if len(encoded) <= max_bytes:
        return text
    return encoded[:max_bytes].decode("utf-8", errors="ignore")


def is_valid_prefix(prefix: str) -> bool:
    if not prefix:
        return False
    if prefix.startswith("-") or prefix.endswith("-"):
        return False
    return all(ch.isascii() and (ch.isalnum() or ch in "-_") for ch in prefix)


def validate_prefix(prefix: str) -> str:
    if not is_valid_prefix(prefix):
        raise ValidationError(
            f"Invalid prefix {prefix!r}: use letters, digits, '-' or '_' "
            "and do not start or end with '-'"
        )
    return prefix


def _validate_optional_prefix(prefix: str | None) -> str | None:
    return validate_prefix(prefix) if prefix is not None else None


def _uuid_or_none(raw: str | None) -> uuid.UUID | None:
    return uuid.UUID(raw) if raw else None


def _str_or_none(value: uuid.UUID | None) -> str | None:
    return str(value) if value is not None else None


# ---------------------------------------------------------------------------
# Column
# ---------------------------------------------------------------------------


@dataclass
class ColumnUpdate:
    name: FieldUpdate[str] = field(default_factory=FieldUpdate)
    position: FieldUpdate[int] = field(default_factory=FieldUpdate)
    wip_limit: FieldUpdate[int] = field(default_factory=FieldUpdate)


@dataclass
class Column:
    board_id: uuid.UUID
    name: str
    position: int
    id: uuid.UUID = field(default_factory=uuid.uuid4)
    wip_limit: int | None = None
    created_at: datetime = field(default_factory=utc_now)
    updated_at: datetime = field(default_factory=utc_now)

    def touch(self) -> None:
        self.updated_at = utc_now()

    def update_position(self, position: int) -> None:
        self.position = position
        self.touch()

    def update(self, updates: ColumnUpdate) -> None:
        self.name = updates.name.apply_required(self.name, "Column name")
        self.position = updates.position.apply_required(self.position, "Column position")
        self.wip_limit = updates.wip_limit.apply_to(self.wip_limit)
        self.touch()

    def to_dict(self) -> dict:
        return {
            "id": str(self.id),
            "board_id": str(self.board_id),
            "name": self.name,
            "position": self.position,
            "wip_limit": self.wip_limit,
            "created_at": to_rfc3339(self.created_at),
            "updated_at": to_rfc3339(self.updated_at),
        }

    @classmethod
    def from_dict(cls, raw: dict) -> "Column":
        return cls(
            id=uuid.UUID(raw["id"]),
            board_id=uuid.UUID(raw["board_id"]),
            name=raw["name"],
            position=int(raw.get("position", 0)),
            wip_limit=raw.get("wip_limit"),
            created_at=_timestamp(raw, "created_at"),
            updated_at=_timestamp(raw, "updated_at"),
        )


def _timestamp(raw: dict, key: str) -> datetime:
    value = raw.get(key)
    return from_rfc3339(value) if value else utc_now()


# ---------------------------------------------------------------------------
# SprintLog / Sprint
# ---------------------------------------------------------------------------


@dataclass
class SprintLog:
    """One interval of a card's membership in a sprint."""

    sprint_id: uuid.UUID
    sprint_number: int
    sprint_name: str | None = None
    started_at: datetime = field(default_factory=utc_now)
    ended_at: datetime | None = None
    status: str = SprintStatus.PLANNING.value

    @property
    def is_open(self) -> bool:
        return self.ended_at is None

    def end(self) -> None:
        if self.ended_at is None:
            self.ended_at = utc_now()

    def to_dict(self) -> dict:
        return {
            "sprint_id": str(self.sprint_id),
            "sprint_number": self.sprint_number,
            "sprint_name": self.sprint_name,
            "started_at": to_rfc3339(self.started_at),
            "ended_at": optional_rfc3339(self.ended_at),
            "status": self.status,
        }

    @classmethod
    def from_dict(cls, raw: dict) -> "SprintLog":
        return cls(
            sprint_id=uuid.UUID(raw["sprint_id"]),
            sprint_number=int(raw.get("sprint_number", 0)),
            sprint_name=raw.get("sprint_name"),
            started_at=_timestamp(raw, "started_at"),
            ended_at=optional_from_rfc3339(raw.get("ended_at")),
            status=raw.get("status", SprintStatus.PLANNING.value),
        )


@dataclass
class SprintUpdate:
    name_index: FieldUpdate[int] = field(default_factory=FieldUpdate)
    prefix: FieldUpdate[str] = field(default_factory=FieldUpdate)
    card_prefix: FieldUpdate[str] = field(default_factory=FieldUpdate)
    start_date: FieldUpdate[datetime] = field(default_factory=FieldUpdate)
    end_date: FieldUpdate[datetime] = field(default_factory=FieldUpdate)


@dataclass
class Sprint:
    board_id: uuid.UUID
    sprint_number: int
    id: uuid.UUID = field(default_factory=uuid.uuid4)
    name_index: int | None = None
    prefix: str | None = None
    card_prefix: str | None = None
    status: SprintStatus = SprintStatus.PLANNING
    start_date: datetime | None = None
    end_date: datetime | None = None
    created_at: datetime = field(default_factory=utc_now)
    updated_at: datetime = field(default_factory=utc_now)

    def touch(self) -> None:
        self.updated_at = utc_now()

    def get_name(self, board: "Board") -> str | None:
        if self.name_index is None or not 0 <= self.name_index < len(board.sprint_names):
            return None
        return board.sprint_names[self.name_index]

    def effective_prefix(self, board: "Board", default: str = DEFAULT_SPRINT_PREFIX) -> str:
        return self.prefix or board.sprint_prefix or default

    def effective_card_prefix(self, board: "Board", default: str = DEFAULT_CARD_PREFIX) -> str:
        return self.card_prefix or board.card_prefix or default

    def formatted_name(self, board: "Board", default: str = DEFAULT_SPRINT_PREFIX) -> str:
        prefix = self.effective_prefix(board, default)
        name = self.get_name(board)
        if name:
            return f"{prefix}-{self.sprint_number}/{name}"
        return f"{prefix}-{self.sprint_number}"

    # -- transitions -------------------------------------------------------

    def activate(self, duration_days: int) -> None:
        if self.status is not SprintStatus.PLANNING:
            raise ValidationError(
                f"Cannot activate sprint in status {self.status.value}"
            )
        start = utc_now()
        self.status = SprintStatus.ACTIVE
        self.start_date = start
        if self.end_date is None:
            self.end_date = start + timedelta(days=duration_days)
        self.touch()

    def complete(self) -> None:
        if self.status is not SprintStatus.ACTIVE:
            raise ValidationError(
                f"Cannot complete sprint in status {self.status.value}"
            )
        self.status = SprintStatus.COMPLETED
        self.touch()

    def cancel(self) -> None:
        if self.status not in (SprintStatus.PLANNING, SprintStatus.ACTIVE):
            raise ValidationError(
                f"Cannot cancel sprint in status {self.status.value}"
            )
        self.status = SprintStatus.CANCELLED
        self.touch()

    def is_ended(self) -> bool:
        if self.status is not SprintStatus.ACTIVE or self.end_date is None:
            return False
        return utc_now() > self.end_date

    def update(self, updates: SprintUpdate) -> None:
        self.name_index = updates.name_index.apply_to(self.name_index)
        self.prefix = _validate_optional_prefix(updates.prefix.apply_to(self.prefix))
        self.card_prefix = _validate_optional_prefix(
            updates.card_prefix.apply_to(self.card_prefix)
        )
        self.start_date = updates.start_date.apply_to(self.start_date)
        self.end_date = updates.end_date.apply_to(self.end_date)
        self.touch()

    def to_dict(self) -> dict:
        return {
            "id": str(self.id),
            "board_id": str(self.board_id),
            "sprint_number": self.sprint_number,
            "name_index": self.name_index,
            "prefix": self.prefix,
            "card_prefix": self.card_prefix,
            "status": self.status.value,
            "start_date": optional_rfc3339(self.start_date),
            "end_date": optional_rfc3339(self.end_date),
            "created_at": to_rfc3339(self.created_at),
            "updated_at": to_rfc3339(self.updated_at),
        }

    @classmethod
    def from_dict(cls, raw: dict) -> "Sprint":
        return cls(
            id=uuid.UUID(raw["id"]),
            board_id=uuid.UUID(raw["board_id"]),
            sprint_number=int(raw.get("sprint_number", 1)),
            name_index=raw.get("name_index"),
            prefix=raw.get("prefix", raw.get("prefix_override")),
            card_prefix=raw.get("card_prefix"),
            status=SprintStatus(raw.get("status", SprintStatus.PLANNING.value)),
            start_date=optional_from_rfc3339(raw.get("start_date")),
            end_date=optional_from_rfc3339(raw.get("end_date")),
            created_at=_timestamp(raw, "created_at"),
            updated_at=_timestamp(raw, "updated_at"),
        )


# ---------------------------------------------------------------------------
# Board
# ---------------------------------------------------------------------------


@dataclass
class BoardUpdate:
    name: FieldUpdate[str] = field(default_factory=FieldUpdate)
    description: FieldUpdate[str] = field(default_factory=FieldUpdate)
    sprint_prefix: FieldUpdate[str] = field(default_factory=FieldUpdate)
    card_prefix: FieldUpdate[str] = field(default_factory=FieldUpdate)
    task_sort_field: FieldUpdate[SortField] = field(default_factory=FieldUpdate)
    task_sort_order: FieldUpdate[SortOrder] = field(default_factory=FieldUpdate)
    sprint_duration_days: FieldUpdate[int] = field(default_factory=FieldUpdate)
    task_list_view: FieldUpdate[TaskListView] = field(default_factory=FieldUpdate)
    active_sprint_id: FieldUpdate[uuid.UUID] = field(default_factory=FieldUpdate)
    completion_column_id: FieldUpdate[uuid.UUID] = field(default_factory=FieldUpdate)


@dataclass
class Board:
    name: str
    id: uuid.UUID = field(default_factory=uuid.uuid4)
    description: str | None = None
    sprint_prefix: str | None = None
    card_prefix: str | None = None
    task_sort_field: SortField = SortField.DEFAULT
    task_sort_order: SortOrder = SortOrder.ASCENDING
    sprint_duration_days: int | None = None
    sprint_names: list[str] = field(default_factory=list)
    sprint_name_used_count: int = 0
    next_sprint_number: int = 1
    active_sprint_id: uuid.UUID | None = None
    task_list_view: TaskListView = TaskListView.FLAT
    prefix_counters: dict[str, int] = field(default_factory=dict)
    sprint_counters: dict[str, int] = field(default_factory=dict)
    completion_column_id: uuid.UUID | None = None
    created_at: datetime = field(default_factory=utc_now)
    updated_at: datetime = field(default_factory=utc_now)

    def touch(self) -> None:
        self.updated_at = utc_now()

    @property
    def next_card_number(self) -> int:
        """Next number for the board's default card prefix."""
        return self.prefix_counters.get(self.effective_card_prefix(), 1)

    def effective_card_prefix(self, default: str = DEFAULT_CARD_PREFIX) -> str:
        return self.card_prefix or default

    def effective_sprint_prefix(self, default: str = DEFAULT_SPRINT_PREFIX) -> str:
        return self.sprint_prefix or default

    # -- counters ----------------------------------------------------------

    def get_next_card_number(self, prefix: str) -> int:
        number = self.prefix_counters.get(prefix, 1)
        self.prefix_counters[prefix] = number + 1
        self.touch()
        return number

    def get_next_sprint_number(self, prefix: str) -> int:
        number = self.sprint_counters.get(prefix, 1)
        self.sprint_counters[prefix] = number + 1
        self.next_sprint_number = max(self.next_sprint_number, number + 1)
        self.touch()
        return number

    def ensure_card_counter_initialized(self, prefix: str, board_cards: list["Card"]) -> None:
        """Seed a prefix counter from the highest number already issued under it."""
        if prefix in self.prefix_counters:
            return
        highest = max(
            (
                c.card_number
                for c in board_cards
                if (c.assigned_prefix or self.effective_card_prefix()) == prefix
            ),
            default=0,
        )
        self.prefix_counters[prefix] = highest + 1
        self.touch()

    def ensure_sprint_counter_initialized(self, prefix: str, sprints: list[Sprint]) -> None:
        if prefix in self.sprint_counters:
            return
        highest = max(
            (
                s.sprint_number
                for s in sprints
                if s.board_id == self.id and s.effective_prefix(self) == prefix
            ),
            default=0,
        )
        self.sprint_counters[prefix] = highest + 1
        self.touch()

    # -- reserved sprint names ---------------------------------------------

    def consume_sprint_name(self) -> int | None:
        if self.sprint_name_used_count < len(self.sprint_names):
            index = self.sprint_name_used_count
            self.sprint_name_used_count += 1
            self.touch()
            return index
        return None

    def add_sprint_name_at_used_index(self, name: str) -> int:
        self.sprint_name_used_count = min(self.sprint_name_used_count, len(self.sprint_names))
        index = self.sprint_name_used_count
        self.sprint_names.insert(index, name)
        self.sprint_name_used_count += 1
        self.touch()
        return index

    # -- mutators ----------------------------------------------------------

    def update_task_sort(self, sort_field: SortField, order: SortOrder) -> None:
        self.task_sort_field = sort_field
        self.task_sort_order = order
        self.touch()

    def update_task_list_view(self, view: TaskListView) -> None:
        self.task_list_view = view
        self.touch()

    def update(self, updates: BoardUpdate) -> None:
        self.name = updates.name.apply_required(self.name, "Board name")
        self.description = updates.description.apply_to(self.description)
        self.sprint_prefix = _validate_optional_prefix(
            updates.sprint_prefix.apply_to(self.sprint_prefix)
        )
        self.card_prefix = _validate_optional_prefix(
            updates.card_prefix.apply_to(self.card_prefix)
        )
        self.task_sort_field = updates.task_sort_field.apply_required(
            self.task_sort_field, "Sort field"
        )
        self.task_sort_order = updates.task_sort_order.apply_required(
            self.task_sort_order, "Sort order"
        )
        self.sprint_duration_days = updates.sprint_duration_days.apply_to(
            self.sprint_duration_days
        )
        self.task_list_view = updates.task_list_view.apply_required(
            self.task_list_view, "Task list view"
        )
        self.active_sprint_id = updates.active_sprint_id.apply_to(self.active_sprint_id)
        self.completion_column_id = updates.completion_column_id.apply_to(
            self.completion_column_id
        )
        self.touch()

    # -- serialisation -----------------------------------------------------

    def to_dict(self) -> dict:
        return {
            "id": str(self.id),
            "name": self.name,
            "description": self.description,
            "sprint_prefix": self.sprint_prefix,
            "card_prefix": self.card_prefix,
            "task_sort_field": self.task_sort_field.value,
            "task_sort_order": self.task_sort_order.value,
            "sprint_duration_days": self.sprint_duration_days,
            "sprint_names": list(self.sprint_names),
            "sprint_name_used_count": self.sprint_name_used_count,
            "next_sprint_number": self.next_sprint_number,
            "next_card_number": self.next_card_number,
            "active_sprint_id": _str_or_none(self.active_sprint_id),
            "task_list_view": self.task_list_view.value,
            "prefix_counters": dict(self.prefix_counters),
            "sprint_counters": dict(self.sprint_counters),
            "completion_column_id": _str_or_none(self.completion_column_id),
            "created_at": to_rfc3339(self.created_at),
            "updated_at": to_rfc3339(self.updated_at),
        }

    @classmethod
    def from_dict(cls, raw: dict) -> "Board":
        board = cls(
            id=uuid.UUID(raw["id"]),
            name=raw["name"],
            description=raw.get("description"),
            sprint_prefix=raw.get("sprint_prefix") or raw.get("branch_prefix"),
            card_prefix=raw.get("card_prefix"),
            task_sort_field=SortField(raw.get("task_sort_field") or SortField.DEFAULT.value),
            task_sort_order=SortOrder(raw.get("task_sort_order") or SortOrder.ASCENDING.value),
            sprint_duration_days=raw.get("sprint_duration_days"),
            sprint_names=list(raw.get("sprint_names") or []),
            sprint_name_used_count=int(raw.get("sprint_name_used_count") or 0),
            next_sprint_number=int(raw.get("next_sprint_number") or 1),
            active_sprint_id=_uuid_or_none(raw.get("active_sprint_id")),
            task_list_view=TaskListView(raw.get("task_list_view") or TaskListView.FLAT.value),
            prefix_counters={k: int(v) for k, v in (raw.get("prefix_counters") or {}).items()},
            sprint_counters={k: int(v) for k, v in (raw.get("sprint_counters") or {}).items()},
            completion_column_id=_uuid_or_none(raw.get("completion_column_id")),
            created_at=_timestamp(raw, "created_at"),
            updated_at=_timestamp(raw, "updated_at"),
        )
        # Files written before per-prefix counters only carry next_card_number
        legacy_next = int(raw.get("next_card_number") or 0)
        if legacy_next > 1 and not board.prefix_counters:
            board.prefix_counters[board.effective_card_prefix()] = legacy_next
        return board


# ---------------------------------------------------------------------------
# Card
# ---------------------------------------------------------------------------


@dataclass
class CardUpdate:
    title: FieldUpdate[str] = field(default_factory=FieldUpdate)
    description: FieldUpdate[str] = field(default_factory=FieldUpdate)
    priority: FieldUpdate[CardPriority] = field(default_factory=FieldUpdate)
    status: FieldUpdate[CardStatus] = field(default_factory=FieldUpdate)
    position: FieldUpdate[int] = field(default_factory=FieldUpdate)
    column_id: FieldUpdate[uuid.UUID] = field(default_factory=FieldUpdate)
    due_date: FieldUpdate[datetime] = field(default_factory=FieldUpdate)
    points: FieldUpdate[int] = field(default_factory=FieldUpdate)
    card_prefix: FieldUpdate[str] = field(default_factory=FieldUpdate)


@dataclass
class Card:
    column_id: uuid.UUID
    title: str
    position: int
    card_number: int = 0
    id: uuid.UUID = field(default_factory=uuid.uuid4)
    description: str | None = None
    priority: CardPriority = CardPriority.MEDIUM
    status: CardStatus = CardStatus.TODO
    due_date: datetime | None = None
    points: int | None = None
    sprint_id: uuid.UUID | None = None
    assigned_prefix: str | None = None
    card_prefix: str | None = None
    sprint_logs: list[SprintLog] = field(default_factory=list)
    completed_at: datetime | None = None
    created_at: datetime = field(default_factory=utc_now)
    updated_at: datetime = field(default_factory=utc_now)

    @classmethod
    def new(
        cls,
        board: Board,
        column_id: uuid.UUID,
        title: str,
        position: int,
        prefix: str = DEFAULT_CARD_PREFIX,
    ) -> "Card":
        """Create a card, drawing its number from the board's counter for ``prefix``."""
        number = board.get_next_card_number(prefix)
        return cls(
            column_id=column_id,
            title=title,
            position=position,
            card_number=number,
            assigned_prefix=prefix,
        )

    def touch(self) -> None:
        self.updated_at = utc_now()

    @property
    def is_completed(self) -> bool:
        return self.status is CardStatus.DONE

    def move_to_column(self, column_id: uuid.UUID, position: int) -> None:
        self.column_id = column_id
        self.position = position
        self.touch()

    def update_status(self, status: CardStatus) -> None:
        self._set_status(status)
        self.touch()

    def _set_status(self, status: CardStatus) -> None:
        if status is CardStatus.DONE and self.status is not CardStatus.DONE:
            self.completed_at = utc_now()
        elif status is not CardStatus.DONE:
            self.completed_at = None
        self.status = status

    def update(self, updates: CardUpdate) -> None:
        self.title = updates.title.apply_required(self.title, "Card title")
        self.description = updates.description.apply_to(self.description)
        self.priority = updates.priority.apply_required(self.priority, "Card priority")
        self._set_status(updates.status.apply_required(self.status, "Card status"))
        self.position = updates.position.apply_required(self.position, "Card position")
        self.column_id = updates.column_id.apply_required(self.column_id, "Card column")
        self.due_date = updates.due_date.apply_to(self.due_date)
        self.points = updates.points.apply_to(self.points)
        self.card_prefix = _validate_optional_prefix(
            updates.card_prefix.apply_to(self.card_prefix)
        )
        self.touch()

    # -- sprint membership -------------------------------------------------

    def current_sprint_log(self) -> SprintLog | None:
        for log in reversed(self.sprint_logs):
            if log.is_open:
                return log
        return None

    def end_current_sprint_log(self) -> None:
        log = self.current_sprint_log()
        if log is not None:
            log.end()

    def assign_to_sprint(
        self,
        sprint_id: uuid.UUID,
        sprint_number: int,
        sprint_name: str | None,
        sprint_status: str,
    ) -> None:
        self.end_current_sprint_log()
        self.sprint_id = sprint_id
        self.sprint_logs.append(
            SprintLog(
                sprint_id=sprint_id,
                sprint_number=sprint_number,
                sprint_name=sprint_name,
                status=sprint_status,
            )
        )
        self.touch()

    def unassign_sprint(self) -> None:
        self.end_current_sprint_log()
        self.sprint_id = None
        self.touch()

    # -- derived names -----------------------------------------------------

    def effective_prefix(
        self,
        board: Board,
        sprints: list[Sprint] | None = None,
        default: str = DEFAULT_CARD_PREFIX,
    ) -> str:
        """Card override, then its sprint's card prefix, then the board's, then ``default``."""
        if self.card_prefix:
            return self.card_prefix
        if self.sprint_id is not None and sprints:
            sprint = next((s for s in sprints if s.id == self.sprint_id), None)
            if sprint is not None and sprint.card_prefix:
                return sprint.card_prefix
        return board.card_prefix or default

    def identifier(
        self,
        board: Board,
        sprints: list[Sprint] | None = None,
        default: str = DEFAULT_CARD_PREFIX,
    ) -> str:
        return f"{self.effective_prefix(board, sprints, default)}-{self.card_number}"

    def branch_name(
        self,
        board: Board,
        sprints: list[Sprint] | None = None,
        default: str = DEFAULT_CARD_PREFIX,
    ) -> str:
        branch = f"{self.identifier(board, sprints, default)}/{kebab_case(self.title)}"
        return truncate_utf8(branch, MAX_BRANCH_NAME_BYTES)

    def git_checkout_command(
        self,
        board: Board,
        sprints: list[Sprint] | None = None,
        default: str = DEFAULT_CARD_PREFIX,
    ) -> str:
        return "git checkout -b " + self.branch_name(board, sprints, default)

    # -- serialisation -----------------------------------------------------

    def to_dict(self) -> dict:
        return {
            "id": str(self.id),
            "column_id": str(self.column_id),
            "title": self.title,
            "description": self.description,
            "priority": self.priority.value,
            "status": self.status.value,
            "position": self.position,
            "due_date": optional_rfc3339(self.due_date),
            "points": self.points,
            "card_number": self.card_number,
            "sprint_id": _str_or_none(self.sprint_id),
            "assigned_prefix": self.assigned_prefix,
            "card_prefix": self.card_prefix,
            "created_at": to_rfc3339(self.created_at),
            "updated_at": to_rfc3339(self.updated_at),
            "completed_at": optional_rfc3339(self.completed_at),
            "sprint_logs": [log.to_dict() for log in self.sprint_logs],
        }

    @classmethod
    def from_dict(cls, raw: dict) -> "Card":
        return cls(
            id=uuid.UUID(raw["id"]),
            column_id=uuid.UUID(raw["column_id"]),
            title=raw["title"],
            description=raw.get("description"),
            priority=CardPriority(raw.get("priority") or CardPriority.MEDIUM.value),
            status=CardStatus(raw.get("status") or CardStatus.TODO.value),
            position=int(raw.get("position", 0)),
            due_date=optional_from_rfc3339(raw.get("due_date")),
            points=raw.get("points"),
            card_number=int(raw.get("card_number") or 0),
            sprint_id=_uuid_or_none(raw.get("sprint_id")),
            assigned_prefix=raw.get("assigned_prefix"),
            card_prefix=raw.get("card_prefix"),
            created_at=_timestamp(raw, "created_at"),
            updated_at=_timestamp(raw, "updated_at"),
            completed_at=optional_from_rfc3339(raw.get("completed_at")),
            sprint_logs=[SprintLog.from_dict(e) for e in raw.get("sprint_logs") or []],
        )


# ---------------------------------------------------------------------------
# ArchivedCard
# ---------------------------------------------------------------------------


@dataclass
class ArchivedCard:
    card: Card
    original_column_id: uuid.UUID
    original_position: int
    archived_at: datetime = field(default_factory=utc_now)

    @classmethod
    def from_card(cls, card: Card) -> "ArchivedCard":
        return cls(card=card, original_column_id=card.column_id, original_position=card.position)

    @property
    def id(self) -> uuid.UUID:
        return self.card.id

    def to_dict(self) -> dict:
        return {
            "card": self.card.to_dict(),
            "archived_at": to_rfc3339(self.archived_at),
            "original_column_id": str(self.original_column_id),
            "original_position": self.original_position,
        }

    @classmethod
    def from_dict(cls, raw: dict) -> "ArchivedCard":
        return cls(
            card=Card.from_dict(raw["card"]),
            archived_at=_timestamp(raw, "archived_at"),
            original_column_id=uuid.UUID(raw["original_column_id"]),
            original_position=int(raw.get("original_position", 0)),
        )
