"""Async database layer via SQLAlchemy (aiosqlite locally, asyncpg for Postgres/Timescale).

One :class:`Database` per store. Each owns its engine and session factory
and has an explicit connect / close lifecycle; connecting retries with
exponential backoff, queries never do.
"""

from __future__ import annotations

import asyncio
from contextlib import asynccontextmanager
from typing import Any, AsyncGenerator, Awaitable, Callable, Dict, Optional

import structlog
from sqlalchemy import MetaData, text
from sqlalchemy.engine import make_url
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import (
    AsyncEngine,
    AsyncSession,
    async_sessionmaker,
    create_async_engine,
)

from baskt_querier.config import RetryPolicy
from baskt_querier.errors import ErrorCode, StoreConnectionError

logger = structlog.get_logger()


def backoff_delay(attempt: int, policy: RetryPolicy) -> float:
    """Seconds to wait after failed connect attempt number ``attempt`` (1-based)."""
    if attempt < 1:
        raise ValueError("attempt is 1-based")
    return min(policy.initial_delay * policy.multiplier ** (attempt - 1), policy.max_delay)


class Database:
    """Engine + session factory for one store.

    Parameters
    ----------
    url : str
        SQLAlchemy async URL, e.g. ``sqlite+aiosqlite:///./meta.db`` or
        ``postgresql+asyncpg://user:pw@host/db``.
    name : str
        Store name used in log events ("metadata", "timeseries").
    metadata : MetaData
        Tables created on connect.
    error_code : ErrorCode
        Code attached to :class:`StoreConnectionError` when connecting fails.
    pool_size : int, optional
        Upper bound on pooled connections (ignored for SQLite).
    """

    def __init__(
        self,
        url: str,
        name: str,
        metadata: MetaData,
        error_code: ErrorCode = ErrorCode.METADATA_ERROR,
        pool_size: Optional[int] = None,
        retry: Optional[RetryPolicy] = None,
        sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep,
    ) -> None:
        self.url = url
        self.name = name
        self._metadata = metadata
        self._error_code = error_code
        self._pool_size = pool_size
        self._retry = retry or RetryPolicy()
        self._sleep = sleep

        self._engine: Optional[AsyncEngine] = None
        self._session_factory: Optional[async_sessionmaker[AsyncSession]] = None

    @property
    def is_connected(self) -> bool:
        return self._engine is not None

    @property
    def safe_url(self) -> str:
        return make_url(self.url).render_as_string(hide_password=True)

    def _engine_kwargs(self) -> Dict[str, Any]:
        if self.url.startswith("sqlite") or self._pool_size is None:
            return {}
        return {"pool_size": self._pool_size, "max_overflow": 0, "pool_pre_ping": True}

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    async def connect(self) -> None:
        """Create the engine, probe it, and ensure tables exist."""
        if self._engine is not None:
            return

        last_exc: Optional[BaseException] = None
        for attempt in range(1, self._retry.max_attempts + 1):
            engine = create_async_engine(self.url, echo=False, **self._engine_kwargs())
            try:
                async with engine.begin() as conn:
                    await conn.execute(text("SELECT 1"))
                    await conn.run_sync(self._metadata.create_all)
            except (SQLAlchemyError, OSError) as exc:
                await engine.dispose()
                last_exc = exc
                if attempt == self._retry.max_attempts:
                    break
                delay = backoff_delay(attempt, self._retry)
                logger.warning(
                    "database_connect_retry",
                    store=self.name,
                    attempt=attempt,
                    delay=delay,
                    error=str(exc),
                )
                await self._sleep(delay)
                continue

            self._engine = engine
            self._session_factory = async_sessionmaker(engine, expire_on_commit=False)
            logger.info("database_initialized", store=self.name, url=self.safe_url)
            return

        logger.error(
            "database_connect_failed",
            store=self.name,
            attempts=self._retry.max_attempts,
            error=str(last_exc),
        )
        raise StoreConnectionError(
            f"Could not connect to the {self.name} store",
            self._error_code,
            503,
            cause=last_exc,
        )

    async def close(self) -> None:
        """Dispose engine connections."""
        if self._engine is not None:
            await self._engine.dispose()
            self._engine = None
            self._session_factory = None
            logger.info("database_closed", store=self.name)

    async def ping(self) -> bool:
        if self._engine is None:
            return False
        try:
            async with self._engine.connect() as conn:
                await conn.execute(text("SELECT 1"))
        except SQLAlchemyError as exc:
            logger.warning("database_ping_failed", store=self.name, error=str(exc))
            return False
        return True

    @asynccontextmanager
    async def session(self) -> AsyncGenerator[AsyncSession, None]:
        """Yield an async session with automatic commit / rollback."""
        if self._session_factory is None:
            raise RuntimeError(f"{self.name} store is not connected; call connect() first")
        async with self._session_factory() as session:
            try:
                yield session
                await session.commit()
            except Exception:
                await session.rollback()
                raise
