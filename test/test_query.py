"""Tests for kanban_workspace.query - filters, search and sort."""

import uuid
from datetime import datetime, timedelta, timezone

import pytest

from kanban_workspace.domain import (
    Board,
    Card,
    CardPriority,
    CardStatus,
    Column,
    SortField,
    SortOrder,
    Sprint,
)
from kanban_workspace.query import (
    CardQueryBuilder,
    CompositeSearcher,
    calculate_points,
    calculate_points_by_ids,
    partition_sprint_cards,
    sort_card_ids,
    sort_cards,
)


@pytest.fixture
def board():
    return Board(name="Query")


@pytest.fixture
def columns(board):
    return [Column(board_id=board.id, name="Todo", position=0), Column(board_id=board.id, name="Done", position=1)]


@pytest.fixture
def sprint(board):
    return Sprint(board_id=board.id, sprint_number=1)


@pytest.fixture
def cards(columns, sprint):
    todo, done = columns
    login = Card(column_id=todo.id, title="Fix login bug", position=0, card_number=3, points=5)
    docs = Card(column_id=todo.id, title="Write docs", position=1, card_number=1,
                priority=CardPriority.CRITICAL)
    ship = Card(column_id=done.id, title="Ship it", position=0, card_number=2, points=1,
                status=CardStatus.DONE, sprint_id=sprint.id)
    return [login, docs, ship]


def query(board, cards, columns, sprint):
    return CardQueryBuilder(cards, columns, [sprint], board)


def test_default_sort_is_card_number(board, cards, columns, sprint):
    titles = [c.title for c in query(board, cards, columns, sprint).execute_cards()]
    assert titles == ["Write docs", "Ship it", "Fix login bug"]


def test_other_boards_cards_are_excluded(board, cards, columns, sprint):
    stray = Card(column_id=uuid.uuid4(), title="Elsewhere", position=0)
    result = query(board, cards + [stray], columns, sprint).execute()
    assert stray.id not in result
    assert len(result) == 3


def test_column_filter(board, cards, columns, sprint):
    result = query(board, cards, columns, sprint).in_column(columns[1].id).execute()
    assert result == [cards[2].id]


def test_sprint_filter_and_hide_assigned(board, cards, columns, sprint):
    in_sprint = query(board, cards, columns, sprint).in_sprints([sprint.id]).execute()
    assert in_sprint == [cards[2].id]

    unassigned = query(board, cards, columns, sprint).hide_assigned().execute()
    assert cards[2].id not in unassigned


def test_empty_sprint_filter_means_no_filter(board, cards, columns, sprint):
    assert len(query(board, cards, columns, sprint).in_sprints([]).execute()) == 3


@pytest.mark.parametrize("needle", ["LOGIN", "task-3", "task-3/fix-login"])
def test_search_matches_title_identifier_or_branch(board, cards, columns, sprint, needle):
    result = query(board, cards, columns, sprint).search(needle).execute()
    assert result == [cards[0].id]


def test_empty_search_matches_everything(board, cards, columns, sprint):
    assert len(query(board, cards, columns, sprint).search("").execute()) == 3
    assert CompositeSearcher().matches(cards[0], board, [])


def test_sort_by_points_puts_unpointed_last(cards):
    ascending = sort_cards(cards, SortField.POINTS, SortOrder.ASCENDING)
    assert [c.points for c in ascending] == [1, 5, None]


def test_sort_by_priority_descending(cards):
    result = sort_cards(cards, SortField.PRIORITY, SortOrder.DESCENDING)
    assert result[0].priority is CardPriority.CRITICAL


def test_sort_by_status_rank(cards):
    cards[1].status = CardStatus.BLOCKED
    result = sort_cards(cards, SortField.STATUS, SortOrder.ASCENDING)
    assert [c.status for c in result] == [CardStatus.TODO, CardStatus.BLOCKED, CardStatus.DONE]


def test_board_sort_settings_drive_builder(board, cards, columns, sprint):
    cards[0].created_at -= timedelta(days=1)
    board.task_sort_field = SortField.CREATED_AT
    board.task_sort_order = SortOrder.ASCENDING
    assert query(board, cards, columns, sprint).execute()[0] == cards[0].id


@pytest.mark.parametrize("sort_field", list(SortField))
def test_descending_is_ascending_reversed_without_ties(sort_field):
    start = datetime(2026, 1, 1, tzinfo=timezone.utc)
    priorities = [CardPriority.HIGH, CardPriority.LOW, CardPriority.CRITICAL, CardPriority.MEDIUM]
    statuses = [CardStatus.DONE, CardStatus.TODO, CardStatus.IN_PROGRESS, CardStatus.BLOCKED]
    shuffled = [2, 0, 3, 1]
    cards = [
        Card(
            column_id=uuid.uuid4(),
            title=f"Card {i}",
            position=n,
            card_number=n + 1,
            points=n * 2,
            priority=priorities[i],
            status=statuses[i],
            created_at=start + timedelta(hours=n),
            updated_at=start - timedelta(hours=n),
        )
        for i, n in enumerate(shuffled)
    ]

    ascending = sort_cards(cards, sort_field, SortOrder.ASCENDING)
    descending = sort_cards(cards, sort_field, SortOrder.DESCENDING)
    assert [c.id for c in descending] == [c.id for c in reversed(ascending)]


def test_sort_card_ids_drops_unknown(cards):
    ids = [cards[0].id, uuid.uuid4(), cards[1].id]
    assert sort_card_ids(ids, cards, SortField.DEFAULT, SortOrder.ASCENDING) == [
        cards[1].id,
        cards[0].id,
    ]


def test_sprint_partition_and_points(cards, sprint):
    cards[0].sprint_id = sprint.id
    uncompleted, completed = partition_sprint_cards(sprint.id, cards)
    assert uncompleted == [cards[0].id]
    assert completed == [cards[2].id]
    assert calculate_points(cards) == 6
    assert calculate_points_by_ids(completed, cards) == 1
