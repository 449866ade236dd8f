"""
Error taxonomy shared by the sync, metrics and citation engines.

Expected failures travel inside a ``Result`` (see ``src.core.result``);
``ValidationError`` is raised before any backing-store call.
"""

from __future__ import annotations

from typing import Optional


class IndexServiceError(Exception):
    code: str = "InternalError"
    retryable: bool = False

    def __init__(self, message: str, *, cause: Optional[BaseException] = None):
        super().__init__(message)
        self.message = message
        self.cause = cause

    def to_dict(self) -> dict:
        return {"code": self.code, "message": self.message, "retryable": self.retryable}


class NotFoundError(IndexServiceError):
    """The indexed record or the authoritative record does not exist."""

    code = "NotFound"

    def __init__(self, resource: str, identifier: str):
        super().__init__(f"{resource} not found: {identifier}")
        self.resource = resource
        self.identifier = identifier


class TransientFetchError(IndexServiceError):
    """The repository or a backing store could not be reached. Callers may retry."""

    code = "TransientFetchError"
    retryable = True


class StoreUnavailableError(TransientFetchError):
    code = "StoreUnavailable"

    def __init__(self, store: str, message: str, *, cause: Optional[BaseException] = None):
        super().__init__(f"[{store}] {message}", cause=cause)
        self.store = store


class CircuitOpenError(TransientFetchError):
    code = "CircuitOpen"


class ValidationError(IndexServiceError, ValueError):
    code = "ValidationError"

    def __init__(self, message: str, field: Optional[str] = None):
        super().__init__(message)
        self.field = field
