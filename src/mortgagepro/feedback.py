"""Toast-style user feedback."""

import logging
from collections import deque
from dataclasses import dataclass
from typing import Literal

logger = logging.getLogger(__name__)

Variant = Literal["default", "destructive"]


@dataclass(frozen=True, slots=True)
class Toast:
    """A short message for the user."""

    title: str
    description: str
    variant: Variant = "default"


class Toaster:
    """Collects toasts for the presentation layer to drain."""

    def __init__(self, max_items: int = 50) -> None:
        self._toasts: deque[Toast] = deque(maxlen=max_items)

    def success(self, title: str, description: str) -> Toast:
        toast = Toast(title=title, description=description)
        self._toasts.append(toast)
        logger.info("%s: %s", title, description)
        return toast

    def error(self, title: str, description: str) -> Toast:
        toast = Toast(title=title, description=description, variant="destructive")
        self._toasts.append(toast)
        logger.warning("%s: %s", title, description)
        return toast

    @property
    def toasts(self) -> list[Toast]:
        return list(self._toasts)

    def drain(self) -> list[Toast]:
        """Return and forget every pending toast."""
        toasts = list(self._toasts)
        self._toasts.clear()
        return toasts
