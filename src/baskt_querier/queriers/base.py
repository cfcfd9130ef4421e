"""Helpers shared by every querier: the envelope decorator and ledger-call wrapping."""

from __future__ import annotations

import functools
from typing import Any, Awaitable, Callable, TypeVar

from baskt_querier.entities import QueryResult
from baskt_querier.errors import ErrorCode, LedgerAccountNotFound, QuerierError

T = TypeVar("T")
F = TypeVar("F", bound=Callable[..., Awaitable[Any]])


def envelope(operation: str) -> Callable[[F], F]:
    """Catch everything a public querier method raises and return it as a failed ``QueryResult``."""

    def decorator(func: F) -> F:
        @functools.wraps(func)
        async def wrapper(*args: Any, **kwargs: Any) -> QueryResult:
            try:
                return await func(*args, **kwargs)
            except Exception as exc:
                return QueryResult.from_error(exc, operation)

        return wrapper  # type: ignore[return-value]

    return decorator


async def ledger_call(awaitable: Awaitable[T], message: str = "Failed to read ledger accounts") -> T:
    """Await a ledger read, wrapping transport failures as ``ONCHAIN_ERROR``.

    ``LedgerAccountNotFound`` passes through untouched so callers can skip
    pruned accounts.
    """
    try:
        return await awaitable
    except (LedgerAccountNotFound, QuerierError):
        raise
    except Exception as exc:
        raise QuerierError(message, ErrorCode.ONCHAIN_ERROR, 502, cause=exc) from exc
