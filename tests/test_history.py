"""Trader activity feed: ordering, baskt names, pagination and realized PnL."""

from datetime import timedelta

import pytest

from baskt_querier.records import BasktRecord, OrderRecord, PositionRecord

from conftest import NOW

P = 1_000_000


async def _seed(querier):
    await querier.gateway.upsert_baskt(BasktRecord(baskt_id="b1", uid=1, name="Majors"))
    await querier.gateway.upsert_position(
        PositionRecord(
            position_pda="pos-closed",
            position_id=1,
            baskt_id="b1",
            owner="alice",
            status="CLOSED",
            entry_price=100 * P,
            exit_price=110 * P,
            size=2 * P,
            collateral=40 * P,
            open_ts=NOW - timedelta(days=2),
            close_tx="close-tx",
        )
    )
    await querier.gateway.upsert_position(
        PositionRecord(
            position_pda="pos-open",
            position_id=2,
            baskt_id="b1",
            owner="alice",
            entry_price=100 * P,
            size=P,
            collateral=20 * P,
            open_ts=NOW - timedelta(hours=3),
        )
    )
    await querier.gateway.upsert_order(
        OrderRecord(
            order_pda="order-open",
            order_id=10,
            baskt_id="b1",
            owner="alice",
            status="FILLED",
            size=2 * P,
            collateral=40 * P,
            limit_price=100 * P,
            create_ts=NOW - timedelta(days=3),
            create_tx="open-tx",
        )
    )
    await querier.gateway.upsert_order(
        OrderRecord(
            order_pda="order-close",
            order_id=11,
            baskt_id="b1",
            owner="alice",
            status="FILLED",
            action="Close",
            size=2 * P,
            collateral=40 * P,
            limit_price=110 * P,
            target_position="POS-CLOSED",
            create_ts=NOW - timedelta(days=1),
            fill_tx="fill-tx",
        )
    )


async def test_newest_first_with_baskt_names(querier):
    await _seed(querier)
    result = await querier.history.get_history(owner="alice")
    assert result.success
    assert [i.id for i in result.data] == ["pos-open", "order-close", "pos-closed", "order-open"]
    assert {i.baskt_name for i in result.data} == {"Majors"}
    assert result.data[0].item_type == "position"
    assert result.data[1].order_id == 11


async def test_limit_and_offset(querier):
    await _seed(querier)
    page = (await querier.history.get_history(limit=2, offset=1)).data
    assert [i.id for i in page] == ["order-close", "pos-closed"]

    assert (await querier.history.get_history(offset=10)).data == []


async def test_negative_limit_is_a_validation_error(querier):
    result = await querier.history.get_history(limit=-1)
    assert not result.success
    assert result.code == "VALIDATION_ERROR"
    assert result.status_code == 400


async def test_closed_position_carries_realized_pnl(querier):
    await _seed(querier)
    items = {i.id: i for i in (await querier.history.get_history()).data}

    closed = items["pos-closed"]
    assert closed.action == "Close"
    assert closed.pnl == 20 * P
    assert closed.pnl_percentage == pytest.approx(50.0)

    still_open = items["pos-open"]
    assert still_open.action == "Open"
    assert still_open.pnl is None


async def test_filled_close_order_priced_against_its_target(querier):
    await _seed(querier)
    items = {i.id: i for i in (await querier.history.get_history()).data}

    close = items["order-close"]
    assert close.exit_price == 110 * P
    assert close.entry_price is None
    assert close.pnl == 20 * P
    assert close.close_tx == "fill-tx"

    opening = items["order-open"]
    assert opening.entry_price == 100 * P
    assert opening.pnl is None


async def test_short_close_order_without_target_uses_owner_position(querier):
    await querier.gateway.upsert_position(
        PositionRecord(
            position_pda="short-pos",
            baskt_id="b2",
            owner="Bob",
            status="CLOSED",
            is_long=False,
            entry_price=50 * P,
            size=P,
            collateral=10 * P,
        )
    )
    await querier.gateway.upsert_order(
        OrderRecord(
            order_pda="short-close",
            baskt_id="b2",
            owner="bob",
            status="FILLED",
            action="Close",
            size=P,
            limit_price=45 * P,
            create_ts=NOW,
        )
    )
    items = {i.id: i for i in (await querier.history.get_history(baskt_id="b2")).data}
    assert items["short-close"].pnl == 5 * P
    assert items["short-close"].pnl_percentage == pytest.approx(50.0)
    assert items["short-close"].baskt_name == ""


async def test_action_and_status_filters_apply_to_both_kinds(querier):
    await _seed(querier)
    closes = (await querier.history.get_history(action="Close")).data
    assert sorted(i.id for i in closes) == ["order-close", "pos-closed"]
    # the close order still finds its position for PnL
    assert next(i for i in closes if i.id == "order-close").pnl == 20 * P

    open_positions = (await querier.history.get_history(status="OPEN")).data
    assert [i.id for i in open_positions] == ["pos-open"]


async def test_ledger_failure_fails_the_feed(querier, ledger):
    ledger.failing.add("get_all_orders")
    result = await querier.history.get_history()
    assert not result.success
    assert result.code == "ONCHAIN_ERROR"
