"""Fee event log, windowed totals and the clamped pool APR."""

from datetime import timedelta

import pytest

from baskt_querier.ledger import LedgerPool
from baskt_querier.records import FeeEventRecord

from conftest import NOW

P = 1_000_000


def _event(event_id, event_type="POSITION_OPENED", age=timedelta(days=1), treasury=0, blp=0, **extra):
    return FeeEventRecord(
        event_id=event_id,
        event_type=event_type,
        transaction_signature=f"tx-{event_id}",
        timestamp=NOW - age,
        fee_to_treasury=treasury,
        fee_to_blp=blp,
        **extra,
    )


async def test_create_is_idempotent(querier):
    first = await querier.fee_events.create_fee_event(_event("e1", blp=P))
    second = await querier.fee_events.create_fee_event(_event("e1", blp=P))
    assert first.data is True
    assert second.success and second.data is False


async def test_total_fee_defaults_to_split_sum(querier):
    await querier.fee_events.create_fee_event(_event("e1", treasury=2 * P, blp=3 * P))
    event = (await querier.fee_events.get_fee_event_by_id("e1")).data
    assert event.total_fee == 5 * P


async def test_finders(querier):
    await querier.fee_events.create_fee_event(_event("e1", owner="Alice", baskt_id="b1"))
    await querier.fee_events.create_fee_event(_event("e2", event_type="POSITION_CLOSED", owner="bob"))

    fees = querier.fee_events
    assert [e.event_id for e in (await fees.get_fee_events_by_owner("alice")).data] == ["e1"]
    assert [e.event_id for e in (await fees.get_fee_events_by_type("POSITION_CLOSED")).data] == ["e2"]
    assert [e.event_id for e in (await fees.get_fee_events_by_baskt("b1")).data] == ["e1"]
    assert [e.event_id for e in (await fees.get_fee_events_by_transaction("tx-e2")).data] == ["e2"]
    missing = await fees.get_fee_event_by_id("nope")
    assert missing.status_code == 404


async def test_stats_break_down_by_type(querier):
    await querier.fee_events.create_fee_event(_event("e1", treasury=P, blp=2 * P))
    await querier.fee_events.create_fee_event(_event("e2", treasury=P, blp=P))
    await querier.fee_events.create_fee_event(_event("e3", event_type="POSITION_LIQUIDATED", blp=4 * P))

    stats = (await querier.fee_events.get_fee_event_stats()).data
    assert stats.total_events == 3
    assert stats.total_fee_to_blp == 7 * P
    assert stats.total_fee_to_treasury == 2 * P
    assert stats.by_type["POSITION_OPENED"].count == 2
    assert stats.by_type["POSITION_LIQUIDATED"].fee_to_blp == 4 * P


async def test_window_only_counts_recent_events(querier):
    await querier.fee_events.create_fee_event(_event("recent", blp=3 * P))
    await querier.fee_events.create_fee_event(_event("old", age=timedelta(days=40), blp=100 * P))

    window = (await querier.fee_events.get_fee_data_for_window(30)).data
    assert window.event_count == 1
    assert window.fee_to_blp == 3 * P
    assert window.end == NOW


async def test_small_pool_apr_is_clamped(querier, ledger):
    ledger.set_pool(
        LedgerPool(address=ledger.liquidity_pool_address(), total_liquidity=500 * P, total_shares=500 * P)
    )
    # 50% of liquidity per day for 30 days
    await querier.fee_events.create_fee_event(_event("fees", blp=7_500 * P))

    analytics = (await querier.fee_events.get_pool_analytics()).data
    assert analytics.raw_apr > 100
    assert analytics.apr <= 15
    assert analytics.total_liquidity == 500
    assert analytics.window_fees_to_blp == 7_500


async def test_apr_within_cap_is_unchanged(querier, ledger):
    ledger.set_pool(LedgerPool(address=ledger.liquidity_pool_address(), total_liquidity=100_000 * P))
    # 1000 USDC over 30 days on 100k -> 12.1666%
    await querier.fee_events.create_fee_event(_event("fees", blp=1_000 * P))

    analytics = (await querier.fee_events.get_pool_analytics()).data
    assert analytics.apr == pytest.approx(1_000 / 100_000 / 30 * 365 * 100)
    assert analytics.apr == analytics.raw_apr


async def test_analytics_without_pool(querier):
    result = await querier.fee_events.get_pool_analytics()
    assert result.status_code == 404
