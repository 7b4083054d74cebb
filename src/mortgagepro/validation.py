"""Field rules shared by person, entity and document validation.

Each helper appends a message to ``errors`` when its rule fails, so callers
can collect every problem before deciding whether to write anything.
"""

import re
from typing import Any

EMAIL_PATTERN = re.compile(r"^[^\s@]+@[^\s@]+\.[^\s@]+$")


def is_blank(value: Any) -> bool:
    return value is None or (isinstance(value, str) and not value.strip())


def is_valid_email(value: str) -> bool:
    return bool(EMAIL_PATTERN.match(value))


def require(errors: list[str], value: Any, message: str) -> None:
    """Fail when value is missing or a whitespace-only string."""
    if is_blank(value):
        errors.append(message)


def check_email(errors: list[str], value: str | None) -> None:
    """Fail when a present email is malformed."""
    if value and not is_valid_email(value):
        errors.append("Invalid email format")


def non_negative(errors: list[str], value: float | None, message: str) -> None:
    if value is not None and value < 0:
        errors.append(message)


def in_range(
    errors: list[str], value: float | None, low: float, high: float, message: str
) -> None:
    """Fail when a present value falls outside [low, high]."""
    if value is not None and not low <= value <= high:
        errors.append(message)


__all__ = [
    "EMAIL_PATTERN",
    "check_email",
    "in_range",
    "is_blank",
    "is_valid_email",
    "non_negative",
    "require",
]
