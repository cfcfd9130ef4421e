"""Querier wiring, ledger selection and the background trackers."""

from datetime import timedelta

import pytest

from baskt_querier.config import Settings
from baskt_querier.errors import ErrorCode, QuerierError
from baskt_querier.ledger import LedgerAsset, LedgerAssetConfig, LedgerBaskt, LedgerPool
from baskt_querier.main import configure_logging, parse_args, run_service
from baskt_querier.mocks import InMemoryLedger
from baskt_querier.querier import load_ledger
from baskt_querier.records import FeeEventRecord
from baskt_querier.timeseries import NAVS
from baskt_querier.trackers import LPTracker, NavTracker

from conftest import NOW, fixed_clock

P = 1_000_000


def test_dry_run_uses_in_memory_ledger(settings):
    assert isinstance(load_ledger(settings), InMemoryLedger)


def test_live_mode_requires_backend():
    with pytest.raises(ValueError):
        Settings(_env_file=None, dry_run=False)


def test_backend_must_be_module_and_factory():
    settings = Settings(_env_file=None, dry_run=False, ledger_backend="no_colon_here")
    with pytest.raises(ValueError):
        load_ledger(settings)


async def test_health_reports_both_stores(querier):
    assert await querier.is_healthy() == {"metadata": True, "timeseries": True}


async def test_lp_tracker_stores_apr(querier, ledger):
    ledger.set_pool(LedgerPool(address=ledger.liquidity_pool_address(), total_liquidity=100_000 * P))
    await querier.fee_events.create_fee_event(
        FeeEventRecord(
            event_id="e1",
            event_type="POSITION_OPENED",
            transaction_signature="tx-1",
            timestamp=NOW - timedelta(days=2),
            fee_to_blp=1_000 * P,
        )
    )
    tracker = LPTracker(querier.gateway, querier.pool, querier.fee_events, clock=fixed_clock)

    apr = await tracker.run_once()

    pool = await querier.gateway.get_pool(ledger.liquidity_pool_address())
    assert pool.latest_apr == pytest.approx(apr)
    assert pool.last_apr_at == NOW
    assert pool.fees_collected_30d == 1_000 * P
    assert pool.total_fees_collected == 1_000 * P


async def test_lp_tracker_without_pool(querier):
    tracker = LPTracker(querier.gateway, querier.pool, querier.fee_events, clock=fixed_clock)
    assert await tracker.run_once() is None


async def test_nav_tracker_records_priced_baskts_only(querier, ledger):
    for uid in (1, 2):
        ledger.add_asset(LedgerAsset(address=f"asset-{uid}", ticker=f"T{uid}"))
        ledger.add_baskt(
            LedgerBaskt(
                address=ledger.baskt_address(uid),
                uid=uid,
                creator="c",
                assets=[
                    LedgerAssetConfig(asset_id=f"asset-{uid}", direction=True, weight=10_000, baseline_price=P)
                ],
                baseline_nav=P,
            )
        )
    await querier.prices.record_asset_price("asset-1", 2 * P, at=NOW - timedelta(minutes=1))
    tracker = NavTracker(querier.baskts, querier.timeseries, clock=fixed_clock)

    assert await tracker.run_once() == 1

    sample = await querier.timeseries.latest(ledger.baskt_address(1), NAVS)
    assert sample.time == NOW
    assert sample.raw == 2 * P
    assert await querier.timeseries.latest(ledger.baskt_address(2), NAVS) is None


async def test_nav_tracker_keeps_going_when_one_sample_fails(querier, ledger, monkeypatch):
    for uid in (1, 2):
        ledger.add_asset(LedgerAsset(address=f"asset-{uid}", ticker=f"T{uid}"))
        ledger.add_baskt(
            LedgerBaskt(
                address=ledger.baskt_address(uid),
                uid=uid,
                creator="c",
                assets=[
                    LedgerAssetConfig(asset_id=f"asset-{uid}", direction=True, weight=10_000, baseline_price=P)
                ],
                baseline_nav=P,
            )
        )
        await querier.prices.record_asset_price(f"asset-{uid}", 2 * P, at=NOW - timedelta(minutes=1))

    broken = ledger.baskt_address(1)
    record_nav = querier.timeseries.record_nav

    async def flaky_record_nav(baskt_id, at, nav):
        if baskt_id == broken:
            raise QuerierError("Failed to record NAV", ErrorCode.TIMESCALE_ERROR, 500)
        await record_nav(baskt_id, at, nav)

    monkeypatch.setattr(querier.timeseries, "record_nav", flaky_record_nav)
    tracker = NavTracker(querier.baskts, querier.timeseries, clock=fixed_clock)

    assert await tracker.run_once() == 1
    assert await querier.timeseries.latest(broken, NAVS) is None
    assert (await querier.timeseries.latest(ledger.baskt_address(2), NAVS)).raw == 2 * P


def test_cli_flags():
    args = parse_args(["--once", "--log-level", "debug"])
    assert args.once is True
    assert args.log_level == "debug"
    assert args.ledger_fixture is None


def test_unknown_log_level_is_rejected():
    with pytest.raises(ValueError):
        configure_logging("chatty")


async def test_single_pass_service_run(settings):
    await run_service(settings, once=True)
