"""Connect-time backoff for the SQL stores."""

import pytest
from sqlalchemy import MetaData

from baskt_querier.config import RetryPolicy
from baskt_querier.database import Database, backoff_delay
from baskt_querier.errors import ErrorCode, StoreConnectionError


def test_backoff_doubles_then_caps():
    policy = RetryPolicy()
    assert [backoff_delay(n, policy) for n in (1, 2, 3)] == [1.0, 2.0, 4.0]
    assert backoff_delay(10, policy) == policy.max_delay


def test_backoff_attempts_are_one_based():
    with pytest.raises(ValueError):
        backoff_delay(0, RetryPolicy())


async def test_unreachable_store_raises_after_retries(tmp_path):
    delays = []

    async def fake_sleep(seconds):
        delays.append(seconds)

    db = Database(
        f"sqlite+aiosqlite:///{tmp_path / 'missing' / 'dir' / 'meta.db'}",
        "metadata",
        MetaData(),
        retry=RetryPolicy(max_attempts=3, initial_delay=0.5),
        sleep=fake_sleep,
    )
    with pytest.raises(StoreConnectionError) as exc_info:
        await db.connect()

    assert exc_info.value.code == ErrorCode.METADATA_ERROR
    assert exc_info.value.status_code == 503
    assert delays == [0.5, 1.0]
    assert not db.is_connected


async def test_session_requires_connect():
    db = Database("sqlite+aiosqlite://", "metadata", MetaData())
    with pytest.raises(RuntimeError):
        async with db.session():
            pass


async def test_connect_and_ping(tmp_path):
    db = Database(f"sqlite+aiosqlite:///{tmp_path / 'ok.db'}", "timeseries", MetaData())
    await db.connect()
    try:
        assert await db.ping()
    finally:
        await db.close()
    assert not await db.ping()
