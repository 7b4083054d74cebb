"""Drag-and-drop controller for the loan and opportunity boards.

The board only decides what a drop means. Persisting the change is the
caller's ``on_change`` callback, normally a service's optimistic update
(``LoansService.change_status`` or ``OpportunitiesService.change_stage``).
"""

from __future__ import annotations

import inspect
import logging
from collections.abc import Callable, Iterable
from dataclasses import dataclass
from typing import Any, Literal

from mortgagepro.types import Row

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class Column:
    id: str
    title: str


LOAN_STATUS_COLUMNS = (
    Column("application", "Application"),
    Column("processing", "Processing"),
    Column("underwriting", "Underwriting"),
    Column("conditional_approval", "Conditional Approval"),
    Column("clear_to_close", "Clear to Close"),
    Column("funded", "Funded"),
    Column("denied", "Denied"),
)

OPPORTUNITY_STAGE_COLUMNS = (
    Column("inquiry", "Inquiry"),
    Column("contacted", "Contacted"),
    Column("qualified", "Qualified"),
    Column("nurturing", "Nurturing"),
    Column("ready_to_apply", "Ready to Apply"),
    Column("converted", "Converted"),
    Column("lost", "Lost"),
)


@dataclass(frozen=True)
class DragTarget:
    """What is being dragged, or what it was dropped on."""

    kind: Literal["column", "card"]
    id: str
    item: Row | None = None


def array_move(items: list[Any], start: int, end: int) -> list[Any]:
    """Return a copy of items with the element at start moved to end."""
    moved = list(items)
    moved.insert(end, moved.pop(start))
    return moved


class KanbanBoard:
    """Columns keyed on one field of the items (``loan_status``, ``stage``)."""

    def __init__(
        self,
        columns: Iterable[Column],
        field: str,
        on_change: Callable[[str, str], Any] | None = None,
    ) -> None:
        self.columns = list(columns)
        self.field = field
        self.on_change = on_change

    @property
    def column_ids(self) -> list[str]:
        return [column.id for column in self.columns]

    def group(self, items: Iterable[Row]) -> dict[str, list[Row]]:
        """Bucket items by column; items with an unknown value are dropped."""
        grouped: dict[str, list[Row]] = {column.id: [] for column in self.columns}
        for item in items:
            value = item.get(self.field)
            if value in grouped:
                grouped[value].append(item)
        return grouped

    def move_column(self, active_id: str, over_id: str) -> list[Column]:
        """Reorder columns by dragging one onto another's position."""
        ids = self.column_ids
        if active_id == over_id or active_id not in ids or over_id not in ids:
            return self.columns
        self.columns = array_move(self.columns, ids.index(active_id), ids.index(over_id))
        return self.columns

    def resolve_drop(self, active: DragTarget, over: DragTarget | None) -> str | None:
        """The column value a dropped card should take, or None to ignore."""
        if over is None or active.kind != "card" or active.item is None:
            return None
        if over.kind == "card":
            target = over.item.get(self.field) if over.item else None
        else:
            target = over.id
        if target not in self.column_ids:
            return None
        if target == active.item.get(self.field):
            return None
        return target

    async def on_drag_end(self, active: DragTarget, over: DragTarget | None) -> str | None:
        """Handle a drop; calls on_change only when the value changed."""
        if over is not None and active.kind == "column" and over.kind == "column":
            self.move_column(active.id, over.id)
            return None

        new_value = self.resolve_drop(active, over)
        if new_value is None:
            return None
        logger.debug("Moving %s to %s=%s", active.id, self.field, new_value)
        if self.on_change is not None:
            result = self.on_change(active.id, new_value)
            if inspect.isawaitable(result):
                await result
        return new_value


__all__ = [
    "Column",
    "DragTarget",
    "KanbanBoard",
    "LOAN_STATUS_COLUMNS",
    "OPPORTUNITY_STAGE_COLUMNS",
    "array_move",
]
