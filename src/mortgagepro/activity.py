"""Activity feed and notification writes that follow a successful mutation."""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Any

from mortgagepro.backends.base import DataBackend
from mortgagepro.types import Row

logger = logging.getLogger(__name__)


@dataclass(frozen=True, slots=True)
class ActivityResult:
    """Outcome of one best-effort activity/notification write."""

    activity_error: BaseException | None = None
    notification_error: BaseException | None = None

    @property
    def ok(self) -> bool:
        return self.activity_error is None and self.notification_error is None


class ActivityLogger:
    """Writes activity and notification rows without ever raising.

    The primary write has already committed by the time this runs, so a
    failure here is logged and counted, never propagated.
    """

    def __init__(self, backend: DataBackend) -> None:
        self._backend = backend
        self.failed_writes = 0

    async def log_activity_and_notify(
        self,
        activity: Row,
        notification: Row | None = None,
    ) -> ActivityResult:
        activity_error = await self._insert("activities", activity)
        notification_error = None
        if notification is not None:
            notification_error = await self._insert(
                "notifications", {"read": False, **notification}
            )
        return ActivityResult(activity_error, notification_error)

    async def _insert(self, table: str, row: dict[str, Any]) -> BaseException | None:
        try:
            await self._backend.table(table).insert(row).execute()
        except Exception as exc:
            self.failed_writes += 1
            logger.warning("Failed to write %s row: %s", table, exc)
            return exc
        return None


__all__ = ["ActivityLogger", "ActivityResult"]
