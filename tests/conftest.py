"""Shared fixtures: file-backed SQLite stores, an in-memory ledger and a fixed clock."""

from __future__ import annotations

from datetime import datetime, timezone

import pytest

from baskt_querier.config import RetryPolicy, Settings
from baskt_querier.mocks import InMemoryLedger
from baskt_querier.querier import Querier

NOW = datetime(2025, 6, 1, 12, 0, tzinfo=timezone.utc)


def fixed_clock() -> datetime:
    return NOW


@pytest.fixture
def settings(tmp_path):
    return Settings(
        _env_file=None,
        metadata_db_url=f"sqlite+aiosqlite:///{tmp_path / 'metadata.db'}",
        timeseries_db_url=f"sqlite+aiosqlite:///{tmp_path / 'timeseries.db'}",
        connect_retry=RetryPolicy(max_attempts=1, initial_delay=0.0),
        dry_run=True,
    )


@pytest.fixture
def ledger():
    return InMemoryLedger()


@pytest.fixture
async def querier(settings, ledger):
    q = Querier(settings, ledger, clock=fixed_clock)
    await q.init()
    yield q
    await q.shutdown()
