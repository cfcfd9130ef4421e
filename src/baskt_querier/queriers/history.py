"""HistoryQuerier — one activity feed of orders and positions, newest first.

Each item carries its baskt's display name. Realized PnL is attached to
filled close orders (priced at the order's limit price against the
position it closed) and to positions that are no longer open.
"""

from __future__ import annotations

import asyncio
from datetime import datetime, timezone
from typing import Dict, List, Optional

import structlog

from baskt_querier.calculations import pnl_percentage, realized_pnl
from baskt_querier.combine import normalize_key
from baskt_querier.entities import CombinedOrder, CombinedPosition, HistoryItem, QueryResult
from baskt_querier.gateway import MetadataGateway
from baskt_querier.queriers.base import envelope
from baskt_querier.queriers.order import OrderQuerier
from baskt_querier.queriers.position import PositionQuerier
from baskt_querier.records import OrderAction, OrderStatus, PositionStatus

logger = structlog.get_logger()

DEFAULT_HISTORY_LIMIT = 50
_UNDATED = datetime.min.replace(tzinfo=timezone.utc)


def position_action(position: CombinedPosition) -> str:
    return OrderAction.OPEN.value if position.status == PositionStatus.OPEN.value else OrderAction.CLOSE.value


def _closed_position_for(order: CombinedOrder, positions: List[CombinedPosition]) -> Optional[CombinedPosition]:
    """The position a close order settled: its target, else the owner's closed position in that baskt."""
    if order.target_position:
        key = normalize_key(order.target_position)
        target = next((p for p in positions if normalize_key(p.position_pda) == key), None)
        if target is not None:
            return target
    return next(
        (
            p
            for p in positions
            if p.owner.lower() == order.owner.lower()
            and p.baskt_id == order.baskt_id
            and p.status == PositionStatus.CLOSED.value
        ),
        None,
    )


def order_item(order: CombinedOrder, positions: List[CombinedPosition], baskt_name: str = "") -> HistoryItem:
    is_close = order.action == OrderAction.CLOSE.value
    item = HistoryItem(
        id=order.order_pda,
        item_type="order",
        order_id=order.order_id,
        baskt_id=order.baskt_id,
        baskt_name=baskt_name,
        owner=order.owner,
        action=order.action,
        status=order.status,
        size=order.size,
        collateral=order.collateral,
        is_long=order.is_long,
        entry_price=None if is_close else (order.limit_price or None),
        exit_price=(order.limit_price or None) if is_close else None,
        timestamp=order.create_ts,
        open_tx=order.create_tx,
        close_tx=order.fill_tx,
    )
    if not (is_close and order.status == OrderStatus.FILLED.value and order.limit_price > 0):
        return item

    position = _closed_position_for(order, positions)
    if position is None or position.entry_price <= 0:
        return item
    pnl = realized_pnl(position.entry_price, order.limit_price, order.size or position.size, position.is_long)
    item.pnl = pnl
    item.pnl_percentage = pnl_percentage(pnl, position.collateral)
    return item


def position_item(position: CombinedPosition, baskt_name: str = "") -> HistoryItem:
    item = HistoryItem(
        id=position.position_pda,
        item_type="position",
        position_id=position.position_id,
        baskt_id=position.baskt_id,
        baskt_name=baskt_name,
        owner=position.owner,
        action=position_action(position),
        status=position.status,
        size=position.size,
        collateral=position.collateral,
        is_long=position.is_long,
        entry_price=position.entry_price or None,
        exit_price=position.exit_price,
        timestamp=position.open_ts,
        open_tx=position.open_tx,
        close_tx=position.close_tx,
    )
    if position.status != PositionStatus.OPEN.value and position.exit_price and position.entry_price > 0:
        pnl = realized_pnl(position.entry_price, position.exit_price, position.size, position.is_long)
        item.pnl = pnl
        item.pnl_percentage = pnl_percentage(pnl, position.collateral)
    return item


class HistoryQuerier:
    def __init__(self, gateway: MetadataGateway, orders: OrderQuerier, positions: PositionQuerier) -> None:
        self._gateway = gateway
        self._orders = orders
        self._positions = positions

    async def load_history(
        self,
        baskt_id: Optional[str] = None,
        owner: Optional[str] = None,
        status: Optional[str] = None,
        action: Optional[str] = None,
    ) -> List[HistoryItem]:
        """Every matching order and position, newest first."""
        orders, all_positions, baskts = await asyncio.gather(
            self._orders.load_orders(baskt_id=baskt_id, owner=owner, status=status, action=action),
            self._positions.load_positions(baskt_id=baskt_id, owner=owner),
            self._gateway.get_all_baskts(),
        )
        names: Dict[str, str] = {normalize_key(b.baskt_id): b.name for b in baskts}

        # Close-order PnL needs the settled position even when the filters exclude it.
        positions = [
            p
            for p in all_positions
            if (not status or p.status == status) and (not action or position_action(p) == action)
        ]
        items = [order_item(o, all_positions, names.get(normalize_key(o.baskt_id), "")) for o in orders]
        items.extend(position_item(p, names.get(normalize_key(p.baskt_id), "")) for p in positions)
        items.sort(key=lambda i: i.timestamp or _UNDATED, reverse=True)
        logger.debug("history_loaded", orders=len(orders), positions=len(positions))
        return items

    @envelope("get_history")
    async def get_history(
        self,
        baskt_id: Optional[str] = None,
        owner: Optional[str] = None,
        status: Optional[str] = None,
        action: Optional[str] = None,
        limit: int = DEFAULT_HISTORY_LIMIT,
        offset: int = 0,
    ) -> QueryResult:
        if limit < 0 or offset < 0:
            raise ValueError("limit and offset must not be negative")
        items = await self.load_history(baskt_id, owner, status, action)
        return QueryResult.ok(items[offset:offset + limit])
