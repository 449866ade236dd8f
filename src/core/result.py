"""
Explicit success/failure return value for engine operations.

    res = sync.refresh_record(uri)
    if res.ok:
        print(res.value.changed)
    elif isinstance(res.error, NotFoundError):
        ...
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Generic, Optional, TypeVar

from src.core.errors import IndexServiceError

T = TypeVar("T")


@dataclass(frozen=True)
class Result(Generic[T]):
    ok: bool
    value: Optional[T] = None
    error: Optional[IndexServiceError] = None

    @classmethod
    def success(cls, value: Optional[T] = None) -> "Result[T]":
        return cls(ok=True, value=value)

    @classmethod
    def failure(cls, error: IndexServiceError) -> "Result[T]":
        return cls(ok=False, error=error)

    def unwrap(self) -> T:
        """Value on success; re-raises the carried error otherwise."""
        if not self.ok:
            raise self.error  # type: ignore[misc]
        return self.value  # type: ignore[return-value]
