"""Exception hierarchy and user-facing error messages."""

from __future__ import annotations

from typing import Any

import httpx

GENERIC_ERROR_MESSAGE = "An unexpected error occurred. Please try again."

# Postgres error codes surfaced by the backend
_CODE_MESSAGES: dict[str, str] = {
    "23505": (
        "A person with this email already exists. Please use a different "
        "email or select the existing person."
    ),
    "23503": "Invalid reference data provided. Please check your input and try again.",
    "23514": "Data validation failed. Please check your input values.",
    "42501": "You do not have permission to perform this action.",
}

_NETWORK_MESSAGE = (
    "Network connection error. Please check your internet connection and try again."
)


class MortgageProError(Exception):
    """Base class for all mortgagepro errors."""

    def __init__(self, message: str) -> None:
        self.message = message
        super().__init__(message)


class ValidationError(MortgageProError):
    """One or more field rules failed before any remote call was made."""

    def __init__(self, errors: list[str]) -> None:
        self.errors = list(errors)
        super().__init__(f"Validation failed: {', '.join(self.errors)}")


class AuthenticationError(MortgageProError):
    """No signed-in user is available."""

    def __init__(self, message: str = "User not authenticated") -> None:
        super().__init__(message)


class BackendError(MortgageProError):
    """A structured error returned by the data backend."""

    def __init__(
        self,
        message: str,
        *,
        code: str | None = None,
        details: str | None = None,
        hint: str | None = None,
        status_code: int | None = None,
    ) -> None:
        self.code = code
        self.details = details
        self.hint = hint
        self.status_code = status_code
        super().__init__(message)

    @classmethod
    def from_payload(cls, payload: Any, status_code: int | None = None) -> BackendError:
        """Build an error from a PostgREST-style JSON body."""
        if not isinstance(payload, dict):
            return cls(f"HTTP {status_code}", status_code=status_code)
        message = payload.get("message") or payload.get("error") or f"HTTP {status_code}"
        code = payload.get("code")
        return cls(
            str(message),
            code=str(code) if code is not None else None,
            details=payload.get("details"),
            hint=payload.get("hint"),
            status_code=status_code,
        )

    def __str__(self) -> str:
        if self.code:
            return f"{self.message} (code {self.code})"
        return self.message


class StorageError(BackendError):
    """Object storage rejected an upload, download, or removal."""


class ChatError(MortgageProError):
    """The AI assistant could not produce a reply."""


def describe_error(error: BaseException | None) -> str:
    """Map an error to the message shown to the user."""
    if error is None:
        return GENERIC_ERROR_MESSAGE
    if isinstance(error, BackendError) and error.code in _CODE_MESSAGES:
        return _CODE_MESSAGES[error.code]
    if isinstance(error, httpx.TransportError):
        return _NETWORK_MESSAGE
    text = str(error)
    for code, message in _CODE_MESSAGES.items():
        if code in text:
            return message
    if "connection" in text.lower():
        return _NETWORK_MESSAGE
    if isinstance(error, MortgageProError):
        return error.message
    return text or GENERIC_ERROR_MESSAGE


__all__ = [
    "AuthenticationError",
    "BackendError",
    "ChatError",
    "GENERIC_ERROR_MESSAGE",
    "MortgageProError",
    "StorageError",
    "ValidationError",
    "describe_error",
]
