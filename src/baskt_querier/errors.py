"""Error taxonomy shared by the stores and the queriers.

Store layers raise :class:`QuerierError` (wrapped once at the store
boundary); queriers turn it into a ``QueryResult`` failure envelope.
"""

from __future__ import annotations

import functools
from enum import Enum
from typing import Any, Awaitable, Callable, Optional, TypeVar

from sqlalchemy.exc import SQLAlchemyError

F = TypeVar("F", bound=Callable[..., Awaitable[Any]])


class ErrorCode(str, Enum):
    METADATA_ERROR = "METADATA_ERROR"
    ONCHAIN_ERROR = "ONCHAIN_ERROR"
    TIMESCALE_ERROR = "TIMESCALE_ERROR"
    NOT_FOUND = "NOT_FOUND"
    VALIDATION_ERROR = "VALIDATION_ERROR"
    UNKNOWN_ERROR = "UNKNOWN_ERROR"


class QuerierError(Exception):
    """A failure with a stable code and an HTTP-style status."""

    def __init__(
        self,
        message: str,
        code: ErrorCode = ErrorCode.UNKNOWN_ERROR,
        status_code: int = 500,
        cause: Optional[BaseException] = None,
    ) -> None:
        super().__init__(message)
        self.message = message
        self.code = code
        self.status_code = status_code
        self.cause = cause


class StoreConnectionError(QuerierError):
    """Raised when a store stays unreachable after every connect attempt."""


class ComputationError(ValueError):
    """Degenerate input to a financial formula (zero base price, zero denominator)."""


class LedgerAccountNotFound(LookupError):
    """The requested ledger account does not exist (closed or never created)."""

    def __init__(self, address: str) -> None:
        super().__init__(f"ledger account not found: {address}")
        self.address = address


def to_querier_error(exc: BaseException, fallback: str = "Unexpected error") -> QuerierError:
    """Map any exception onto a :class:`QuerierError` without double wrapping."""
    if isinstance(exc, QuerierError):
        return exc
    if isinstance(exc, SQLAlchemyError):
        return QuerierError(fallback, ErrorCode.METADATA_ERROR, 500, cause=exc)
    if isinstance(exc, LedgerAccountNotFound):
        return QuerierError(str(exc), ErrorCode.NOT_FOUND, 404, cause=exc)
    if isinstance(exc, ValueError):
        return QuerierError(str(exc) or fallback, ErrorCode.VALIDATION_ERROR, 400, cause=exc)
    return QuerierError(fallback, ErrorCode.UNKNOWN_ERROR, 500, cause=exc)


def wrap_errors(code: ErrorCode, message: str) -> Callable[[F], F]:
    """Decorate an async store method so driver failures surface as ``QuerierError``.

    Parameters
    ----------
    code : ErrorCode
        Code attached to wrapped failures.
    message : str
        Sanitized message for the envelope; the original exception is kept
        as ``cause``.
    """

    def decorator(func: F) -> F:
        @functools.wraps(func)
        async def wrapper(*args: Any, **kwargs: Any) -> Any:
            try:
                return await func(*args, **kwargs)
            except QuerierError:
                raise
            except Exception as exc:
                raise QuerierError(message, code, 500, cause=exc) from exc

        return wrapper  # type: ignore[return-value]

    return decorator
