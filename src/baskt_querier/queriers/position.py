"""PositionQuerier — ledger + metadata into ``CombinedPosition`` with liquidation price."""

from __future__ import annotations

import asyncio
from typing import List, Optional

import structlog

from baskt_querier.calculations import liquidation_price
from baskt_querier.combine import combine_position, normalize_key, pair_one, pair_sources
from baskt_querier.entities import CombinedPosition, QueryResult
from baskt_querier.errors import ComputationError
from baskt_querier.gateway import MetadataGateway
from baskt_querier.ledger import LedgerPosition, LedgerReader
from baskt_querier.queriers.base import envelope, ledger_call
from baskt_querier.records import PositionStatus

logger = structlog.get_logger()


class PositionQuerier:
    """Combined positions.

    Parameters
    ----------
    liquidation_threshold_bps : int
        Maintenance margin used for the liquidation price.
    closing_fee_bps : int
        Closing fee charged on the notional at liquidation.
    """

    def __init__(
        self,
        gateway: MetadataGateway,
        ledger: LedgerReader,
        liquidation_threshold_bps: int = 500,
        closing_fee_bps: int = 0,
    ) -> None:
        self._gateway = gateway
        self._ledger = ledger
        self._threshold_bps = liquidation_threshold_bps
        self._closing_fee_bps = closing_fee_bps

    def _with_liquidation_price(self, position: CombinedPosition) -> CombinedPosition:
        if position.status != PositionStatus.OPEN.value or position.remaining_size <= 0:
            return position
        try:
            position.liquidation_price = liquidation_price(
                entry_price=position.entry_price,
                size=position.remaining_size,
                collateral=position.remaining_collateral,
                is_long=position.is_long,
                funding_accumulated=position.funding_accumulated,
                liquidation_threshold_bps=self._threshold_bps,
                closing_fee_bps=self._closing_fee_bps,
            )
        except ComputationError as exc:
            logger.debug("liquidation_price_undefined", position=position.position_pda, error=str(exc))
        return position

    async def load_positions(
        self,
        baskt_id: Optional[str] = None,
        owner: Optional[str] = None,
        status: Optional[str] = None,
    ) -> List[CombinedPosition]:
        metadata, accounts = await asyncio.gather(
            self._gateway.get_positions(baskt_id=baskt_id, owner=owner),
            ledger_call(self._ledger.get_all_positions(), "Failed to read ledger positions"),
        )
        accounts = [a for a in accounts if _matches(a, baskt_id, owner)]
        positions = [
            self._with_liquidation_price(combine_position(source))
            for source in pair_sources(metadata, accounts, lambda m: m.position_pda, lambda a: a.address)
        ]
        if status:
            positions = [p for p in positions if p.status == status]
        return positions

    @envelope("get_positions")
    async def get_positions(
        self,
        baskt_id: Optional[str] = None,
        owner: Optional[str] = None,
        status: Optional[str] = None,
    ) -> QueryResult:
        return QueryResult.ok(await self.load_positions(baskt_id, owner, status))

    @envelope("get_position")
    async def get_position(self, position_pda: str) -> QueryResult:
        metadata, accounts = await asyncio.gather(
            self._gateway.get_position(position_pda),
            ledger_call(self._ledger.get_all_positions(), "Failed to read ledger positions"),
        )
        key = normalize_key(position_pda)
        account = next((a for a in accounts if normalize_key(a.address) == key), None)
        source = pair_one(position_pda, metadata, account)
        if source is None:
            return QueryResult.not_found(f"Position {position_pda} not found")
        return QueryResult.ok(self._with_liquidation_price(combine_position(source)))


def _matches(account: LedgerPosition, baskt_id: Optional[str], owner: Optional[str]) -> bool:
    if baskt_id and account.baskt_id != baskt_id:
        return False
    if owner and account.owner.lower() != owner.lower():
        return False
    return True
