"""
Card lifecycle rules.

Pure functions tying card status to column placement. They never mutate
the entities they are given (except the two explicitly named maintenance
helpers at the bottom); callers turn the proposals into commands.
"""

from __future__ import annotations

import uuid
from dataclasses import dataclass
from enum import Enum

from .domain import Board, Card, CardStatus, Column, Sprint, SprintLog


class MoveDirection(str, Enum):
    LEFT = "left"
    RIGHT = "right"


@dataclass(frozen=True)
class CompletionToggleResult:
    new_status: CardStatus
    target_column_id: uuid.UUID
    new_position: int


@dataclass(frozen=True)
class CardMoveResult:
    target_column_id: uuid.UUID
    new_position: int
    new_status: CardStatus | None = None  # None means leave the status alone


def sorted_board_columns(board: Board | uuid.UUID, columns: list[Column]) -> list[Column]:
    board_id = board.id if isinstance(board, Board) else board
    return sorted((c for c in columns if c.board_id == board_id), key=lambda c: c.position)


def next_position_in_column(cards: list[Card], column_id: uuid.UUID) -> int:
    return sum(1 for c in cards if c.column_id == column_id)


def resolve_completion_column(board: Board, columns: list[Column]) -> uuid.UUID | None:
    """The board's explicit override when it still exists, else its last column."""
    board_columns = sorted_board_columns(board, columns)
    if not board_columns:
        return None
    if board.completion_column_id is not None and any(
        c.id == board.completion_column_id for c in board_columns
    ):
        return board.completion_column_id
    return board_columns[-1].id


def compute_completion_toggle(
    card: Card,
    board: Board,
    columns: list[Column],
    cards: list[Card],
) -> CompletionToggleResult | None:
    """
    Work out where a card lands when its completion state is toggled.

    Not Done -> Done: the card is appended to the completion column.
    Done -> Todo from the completion column: appended to the column just
    before it. Done -> Todo anywhere else: status flips in place.

    Returns None when the board has fewer than two columns, when the card's
    column is not on the board, or when the completion column is the first
    column and the card would have nowhere to go back to.
    """
    ordered = sorted_board_columns(board, columns)
    if len(ordered) < 2:
        return None
    completion_id = resolve_completion_column(board, columns)
    ids = [c.id for c in ordered]
    if completion_id is None or card.column_id not in ids:
        return None

    if card.status is CardStatus.DONE:
        if card.column_id != completion_id:
            return CompletionToggleResult(CardStatus.TODO, card.column_id, card.position)
        completion_idx = ids.index(completion_id)
        if completion_idx == 0:
            return None
        target = ids[completion_idx - 1]
        return CompletionToggleResult(
            CardStatus.TODO, target, next_position_in_column(cards, target)
        )

    if card.column_id == completion_id:
        return CompletionToggleResult(CardStatus.DONE, card.column_id, card.position)
    return CompletionToggleResult(
        CardStatus.DONE, completion_id, next_position_in_column(cards, completion_id)
    )


def compute_card_column_move(
    card: Card,
    board: Board,
    columns: list[Column],
    cards: list[Card],
    direction: MoveDirection,
) -> CardMoveResult | None:
    """Neighbouring column in position order, or None at either end."""
    ordered = sorted_board_columns(board, columns)
    ids = [c.id for c in ordered]
    if card.column_id not in ids:
        return None
    current = ids.index(card.column_id)
    target = current - 1 if direction is MoveDirection.LEFT else current + 1
    if target < 0 or target >= len(ids):
        return None

    target_id = ids[target]
    completion_id = resolve_completion_column(board, columns)
    new_status = None
    if len(ids) > 1 and completion_id is not None:
        if target_id == completion_id and card.status is not CardStatus.DONE:
            new_status = CardStatus.DONE
        elif card.column_id == completion_id and card.status is CardStatus.DONE:
            new_status = CardStatus.TODO
    return CardMoveResult(target_id, next_position_in_column(cards, target_id), new_status)


def should_auto_complete_new_card(
    column_id: uuid.UUID, board: Board, columns: list[Column]
) -> bool:
    if len(sorted_board_columns(board, columns)) <= 2:
        return False
    return resolve_completion_column(board, columns) == column_id


def resolve_restore_column(
    original_column_id: uuid.UUID, board: Board | uuid.UUID, columns: list[Column]
) -> uuid.UUID | None:
    ordered = sorted_board_columns(board, columns)
    if any(c.id == original_column_id for c in ordered):
        return original_column_id
    return ordered[0].id if ordered else None


# ---------------------------------------------------------------------------
# Maintenance helpers (these do mutate)
# ---------------------------------------------------------------------------


def compact_column_positions(cards: list[Card], column_id: uuid.UUID) -> None:
    """Re-index a column's cards to 0..N-1, keeping their current order."""
    in_column = sorted(
        (c for c in cards if c.column_id == column_id), key=lambda c: c.position
    )
    for new_position, card in enumerate(in_column):
        if card.position != new_position:
            card.position = new_position
            card.touch()


def migrate_sprint_logs(cards: list[Card], sprints: list[Sprint], boards: list[Board]) -> int:
    """Give cards that carry a sprint but no log history their opening log entry."""
    sprints_by_id = {s.id: s for s in sprints}
    boards_by_id = {b.id: b for b in boards}
    migrated = 0
    for card in cards:
        if card.sprint_id is None or card.sprint_logs:
            continue
        sprint = sprints_by_id.get(card.sprint_id)
        if sprint is None:
            continue
        board = boards_by_id.get(sprint.board_id)
        card.sprint_logs.append(
            SprintLog(
                sprint_id=sprint.id,
                sprint_number=sprint.sprint_number,
                sprint_name=sprint.get_name(board) if board else None,
                status=sprint.status.value,
            )
        )
        migrated += 1
    return migrated
