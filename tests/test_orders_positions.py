"""Order and position queriers over metadata plus ledger."""

from datetime import timedelta

import pytest

from baskt_querier.ledger import LedgerOrder, LedgerPosition
from baskt_querier.records import OrderRecord, PartialClose, PositionRecord

from conftest import NOW

P = 1_000_000


class TestOrders:
    async def test_one_order_per_pda_with_ledger_precedence(self, querier, ledger):
        await querier.gateway.upsert_order(
            OrderRecord(order_pda="order-1", baskt_id="b1", owner="Alice", status="PENDING", create_tx="tx1")
        )
        await querier.gateway.upsert_order(OrderRecord(order_pda="order-2", baskt_id="b1", owner="alice"))
        ledger.add_order(
            LedgerOrder(address="order-1", order_id=1, baskt_id="b1", owner="Alice", status="FILLED", size=P)
        )
        ledger.add_order(LedgerOrder(address="order-3", order_id=3, baskt_id="b2", owner="bob"))

        orders = (await querier.orders.get_orders()).data
        assert sorted(o.order_pda for o in orders) == ["order-1", "order-2", "order-3"]
        first = next(o for o in orders if o.order_pda == "order-1")
        assert first.status == "FILLED"
        assert first.create_tx == "tx1"

    async def test_filters(self, querier, ledger):
        await querier.gateway.upsert_order(OrderRecord(order_pda="order-1", baskt_id="b1", owner="alice"))
        ledger.add_order(LedgerOrder(address="order-3", order_id=3, baskt_id="b2", owner="bob", status="FILLED"))

        assert [o.order_pda for o in (await querier.orders.get_orders(owner="ALICE")).data] == ["order-1"]
        assert [o.order_pda for o in (await querier.orders.get_orders(status="FILLED")).data] == ["order-3"]
        assert (await querier.orders.get_orders(baskt_id="b3")).data == []

    async def test_legacy_order_size(self, querier):
        await querier.gateway.upsert_order(
            OrderRecord(order_pda="legacy", size=0, collateral=50 * P, limit_price=25 * P)
        )
        order = (await querier.orders.get_order("LEGACY")).data
        assert order.size == 2 * P
        assert order.usdc_size == 50 * P

    async def test_unknown_order(self, querier):
        result = await querier.orders.get_order("missing")
        assert result.status_code == 404


class TestPositions:
    async def test_open_position_gets_liquidation_price(self, querier, ledger):
        ledger.add_position(
            LedgerPosition(
                address="pos-1",
                position_id=1,
                baskt_id="b1",
                owner="alice",
                size=P,
                collateral=10 * P,
                entry_price=100 * P,
            )
        )
        position = (await querier.positions.get_position("pos-1")).data
        assert position.liquidation_price is not None
        # threshold 500 bps + closing fee 10 bps
        assert position.liquidation_price / P == pytest.approx(94.8367, abs=1e-3)

    async def test_closed_position_has_no_liquidation_price(self, querier):
        await querier.gateway.upsert_position(
            PositionRecord(position_pda="pos-2", status="CLOSED", size=P, entry_price=100 * P, collateral=10 * P)
        )
        position = (await querier.positions.get_position("pos-2")).data
        assert position.liquidation_price is None

    async def test_partial_close_shrinks_remaining_once(self, querier):
        await querier.gateway.upsert_position(
            PositionRecord(position_pda="pos-3", size=4 * P, entry_price=10 * P, collateral=40 * P)
        )
        entry = PartialClose(
            order_id="close-order", ts=NOW - timedelta(hours=1), tx="close-tx", size_closed=P, exit_price=11 * P
        )
        await querier.gateway.append_partial_close("pos-3", entry)
        await querier.gateway.append_partial_close("pos-3", entry)

        position = (await querier.positions.get_position("pos-3")).data
        assert position.remaining_size == 3 * P
        assert len(position.partial_close_history) == 1

    async def test_partial_close_matches_position_case_insensitively(self, querier):
        await querier.gateway.upsert_position(
            PositionRecord(position_pda="Pos-Mixed", size=2 * P, entry_price=10 * P, collateral=20 * P)
        )
        entry = PartialClose(
            order_id="close-order", ts=NOW - timedelta(hours=1), tx="close-tx", size_closed=P, exit_price=11 * P
        )
        updated = await querier.gateway.append_partial_close("pos-mixed", entry)
        assert updated is not None
        assert updated.remaining_size == P

    async def test_status_filter(self, querier, ledger):
        ledger.add_position(LedgerPosition(address="pos-1", position_id=1, baskt_id="b1", owner="a", size=P))
        await querier.gateway.upsert_position(PositionRecord(position_pda="pos-2", status="CLOSED", size=P))
        closed = (await querier.positions.get_positions(status="CLOSED")).data
        assert [p.position_pda for p in closed] == ["pos-2"]
