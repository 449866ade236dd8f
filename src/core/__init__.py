from src.core.errors import (
    CircuitOpenError,
    IndexServiceError,
    NotFoundError,
    StoreUnavailableError,
    TransientFetchError,
    ValidationError,
)
from src.core.result import Result

__all__ = [
    "CircuitOpenError",
    "IndexServiceError",
    "NotFoundError",
    "Result",
    "StoreUnavailableError",
    "TransientFetchError",
    "ValidationError",
]
