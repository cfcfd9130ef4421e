"""OrderQuerier — ledger + metadata into ``CombinedOrder``, one per order PDA."""

from __future__ import annotations

import asyncio
from typing import List, Optional

from baskt_querier.combine import combine_order, normalize_key, pair_one, pair_sources
from baskt_querier.entities import CombinedOrder, QueryResult
from baskt_querier.gateway import MetadataGateway
from baskt_querier.ledger import LedgerOrder, LedgerReader
from baskt_querier.queriers.base import envelope, ledger_call


class OrderQuerier:
    def __init__(self, gateway: MetadataGateway, ledger: LedgerReader) -> None:
        self._gateway = gateway
        self._ledger = ledger

    async def load_orders(
        self,
        baskt_id: Optional[str] = None,
        owner: Optional[str] = None,
        status: Optional[str] = None,
        action: Optional[str] = None,
    ) -> List[CombinedOrder]:
        # Status and action are filtered after the merge: the ledger may
        # disagree with metadata about either.
        metadata, accounts = await asyncio.gather(
            self._gateway.get_orders(baskt_id=baskt_id, owner=owner),
            ledger_call(self._ledger.get_all_orders(), "Failed to read ledger orders"),
        )
        accounts = [a for a in accounts if _matches(a, baskt_id, owner)]
        orders = [
            combine_order(source)
            for source in pair_sources(metadata, accounts, lambda m: m.order_pda, lambda a: a.address)
        ]
        if status:
            orders = [o for o in orders if o.status == status]
        if action:
            orders = [o for o in orders if o.action == action]
        return orders

    @envelope("get_orders")
    async def get_orders(
        self,
        baskt_id: Optional[str] = None,
        owner: Optional[str] = None,
        status: Optional[str] = None,
        action: Optional[str] = None,
    ) -> QueryResult:
        return QueryResult.ok(await self.load_orders(baskt_id, owner, status, action))

    @envelope("get_order")
    async def get_order(self, order_pda: str) -> QueryResult:
        metadata, accounts = await asyncio.gather(
            self._gateway.get_order(order_pda),
            ledger_call(self._ledger.get_all_orders(), "Failed to read ledger orders"),
        )
        key = normalize_key(order_pda)
        account = next((a for a in accounts if normalize_key(a.address) == key), None)
        source = pair_one(order_pda, metadata, account)
        if source is None:
            return QueryResult.not_found(f"Order {order_pda} not found")
        return QueryResult.ok(combine_order(source))


def _matches(account: LedgerOrder, baskt_id: Optional[str], owner: Optional[str]) -> bool:
    if baskt_id and account.baskt_id != baskt_id:
        return False
    if owner and account.owner.lower() != owner.lower():
        return False
    return True
