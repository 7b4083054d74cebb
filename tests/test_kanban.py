"""Tests for the kanban drop controller."""

import pytest

from mortgagepro import LOAN_STATUS_COLUMNS, OPPORTUNITY_STAGE_COLUMNS, DragTarget, KanbanBoard
from mortgagepro.kanban import array_move
from mortgagepro.services import LoansService

LOANS = [
    {"id": "l1", "loan_status": "application"},
    {"id": "l2", "loan_status": "processing"},
    {"id": "l3", "loan_status": "archived"},
]


def card(item: dict) -> DragTarget:
    return DragTarget("card", item["id"], item)


class Recorder:
    def __init__(self) -> None:
        self.changes: list = []

    async def __call__(self, item_id: str, value: str) -> None:
        self.changes.append((item_id, value))


@pytest.fixture
def recorder() -> Recorder:
    return Recorder()


@pytest.fixture
def board(recorder) -> KanbanBoard:
    return KanbanBoard(LOAN_STATUS_COLUMNS, "loan_status", recorder)


class TestGrouping:
    """Tests for column layout."""

    def test_group_drops_unknown_values(self, board) -> None:
        grouped = board.group(LOANS)
        assert [i["id"] for i in grouped["application"]] == ["l1"]
        assert [i["id"] for i in grouped["processing"]] == ["l2"]
        assert sum(len(items) for items in grouped.values()) == 2
        assert list(grouped) == board.column_ids

    def test_opportunity_columns(self) -> None:
        board = KanbanBoard(OPPORTUNITY_STAGE_COLUMNS, "stage")
        assert board.column_ids[0] == "inquiry"
        assert "converted" in board.column_ids

    def test_array_move(self) -> None:
        assert array_move([1, 2, 3, 4], 0, 2) == [2, 3, 1, 4]
        assert array_move([1, 2, 3, 4], 3, 0) == [4, 1, 2, 3]


class TestDrop:
    """Tests for drag end handling."""

    async def test_drop_on_column(self, board, recorder) -> None:
        result = await board.on_drag_end(card(LOANS[0]), DragTarget("column", "underwriting"))
        assert result == "underwriting"
        assert recorder.changes == [("l1", "underwriting")]

    async def test_drop_on_card_takes_its_column(self, board, recorder) -> None:
        result = await board.on_drag_end(card(LOANS[0]), card(LOANS[1]))
        assert result == "processing"
        assert recorder.changes == [("l1", "processing")]

    async def test_drop_in_same_column_is_ignored(self, board, recorder) -> None:
        assert await board.on_drag_end(card(LOANS[0]), DragTarget("column", "application")) is None
        assert await board.on_drag_end(card(LOANS[1]), card({"id": "x", "loan_status": "processing"})) is None
        assert recorder.changes == []

    async def test_drop_outside_or_on_unknown_column(self, board, recorder) -> None:
        assert await board.on_drag_end(card(LOANS[0]), None) is None
        assert await board.on_drag_end(card(LOANS[0]), DragTarget("column", "nowhere")) is None
        assert await board.on_drag_end(card(LOANS[0]), card(LOANS[2])) is None
        assert recorder.changes == []

    async def test_column_reorder(self, board, recorder) -> None:
        await board.on_drag_end(DragTarget("column", "funded"), DragTarget("column", "application"))
        assert board.column_ids[:2] == ["funded", "application"]
        assert recorder.changes == []

    async def test_sync_callback(self) -> None:
        seen = []
        board = KanbanBoard(LOAN_STATUS_COLUMNS, "loan_status", lambda i, v: seen.append((i, v)))
        await board.on_drag_end(card(LOANS[0]), DragTarget("column", "funded"))
        assert seen == [("l1", "funded")]

    async def test_drop_persists_through_loan_service(self, make_service, backend) -> None:
        backend.seed("loans", [{"id": "l1", "user_id": "user-1", "loan_status": "application"}])
        loans = make_service(LoansService)
        board = KanbanBoard(LOAN_STATUS_COLUMNS, "loan_status", loans.change_status)

        await board.on_drag_end(card(LOANS[0]), DragTarget("column", "clear_to_close"))

        assert backend.rows("loans")[0]["loan_status"] == "clear_to_close"
