"""MetricsQuerier — open interest, volume and per-asset exposure from position metadata.

Notional of a position is ``size * entry_price // 1e6`` in USDC base units.
Asset-level figures split each baskt position across the baskt's ledger
allocations by weight; a leg is long when the position direction matches
the asset direction.
"""

from __future__ import annotations

import asyncio
from collections import defaultdict
from typing import Dict, Iterable, List, Optional

import structlog

from baskt_querier.calculations import BPS_DIVISOR, usdc_notional
from baskt_querier.combine import normalize_key
from baskt_querier.entities import (
    AssetExposure,
    AssetMetrics,
    BasktMetrics,
    OpenInterestData,
    QueryResult,
    VolumeData,
)
from baskt_querier.gateway import MetadataGateway
from baskt_querier.ledger import LedgerBaskt, LedgerReader
from baskt_querier.queriers.base import envelope, ledger_call
from baskt_querier.records import PositionRecord, PositionStatus

logger = structlog.get_logger()

_OPEN = PositionStatus.OPEN.value


def open_size(position: PositionRecord) -> int:
    """Size still exposed to the market."""
    if position.status == _OPEN and position.remaining_size is not None:
        return position.remaining_size
    return position.size


def open_interest(positions: Iterable[PositionRecord]) -> OpenInterestData:
    data = OpenInterestData()
    for position in positions:
        notional = usdc_notional(open_size(position), position.entry_price)
        if position.is_long:
            data.long_open_interest += notional
        else:
            data.short_open_interest += notional
        data.position_count += 1
    data.total_open_interest = data.long_open_interest + data.short_open_interest
    return data


def volume(positions: Iterable[PositionRecord]) -> VolumeData:
    """Traded notional: opening counts once, a finished position counts open and close."""
    data = VolumeData()
    for position in positions:
        legs = 1 if position.status == _OPEN else 2
        notional = usdc_notional(position.size, position.entry_price) * legs
        if position.is_long:
            data.long_volume += notional
        else:
            data.short_volume += notional
    data.total_volume = data.long_volume + data.short_volume
    return data


def asset_exposures(
    baskt: LedgerBaskt,
    positions: Iterable[PositionRecord],
) -> Dict[str, AssetExposure]:
    exposures = {cfg.asset_id: AssetExposure(asset_id=cfg.asset_id) for cfg in baskt.assets}
    for position in positions:
        if position.status != _OPEN:
            continue
        notional = usdc_notional(open_size(position), position.entry_price)
        for cfg in baskt.assets:
            share = notional * cfg.weight // BPS_DIVISOR
            exposure = exposures[cfg.asset_id]
            if position.is_long == cfg.direction:
                exposure.long_open_interest += share
            else:
                exposure.short_open_interest += share
    for exposure in exposures.values():
        exposure.net_exposure = exposure.long_open_interest - exposure.short_open_interest
    return exposures


class MetricsQuerier:
    def __init__(self, gateway: MetadataGateway, ledger: LedgerReader) -> None:
        self._gateway = gateway
        self._ledger = ledger

    async def _baskts_holding(self, asset_id: str) -> List[LedgerBaskt]:
        key = normalize_key(asset_id)
        baskts = await ledger_call(self._ledger.get_baskts(), "Failed to read ledger baskts")
        return [b for b in baskts if any(normalize_key(c.asset_id) == key for c in b.assets)]

    async def _asset_legs(self, asset_id: str, status: Optional[str]) -> List[PositionRecord]:
        """Positions on baskts holding the asset, each scaled to the asset's leg."""
        key = normalize_key(asset_id)
        baskts = await self._baskts_holding(asset_id)
        per_baskt = await asyncio.gather(
            *(self._gateway.get_positions(baskt_id=b.address, status=status) for b in baskts)
        )
        legs: List[PositionRecord] = []
        for baskt, positions in zip(baskts, per_baskt):
            cfg = next(c for c in baskt.assets if normalize_key(c.asset_id) == key)
            for position in positions:
                legs.append(
                    position.model_copy(
                        update={
                            "size": position.size * cfg.weight // BPS_DIVISOR,
                            "remaining_size": (
                                position.remaining_size * cfg.weight // BPS_DIVISOR
                                if position.remaining_size is not None
                                else None
                            ),
                            "is_long": position.is_long == cfg.direction,
                        }
                    )
                )
        return legs

    # ------------------------------------------------------------------
    # Baskt level
    # ------------------------------------------------------------------

    @envelope("get_baskt_open_interest")
    async def get_baskt_open_interest(self, baskt_id: str, status: str = _OPEN) -> QueryResult:
        positions = await self._gateway.get_positions(baskt_id=baskt_id, status=status)
        return QueryResult.ok(open_interest(positions))

    @envelope("get_baskt_volume")
    async def get_baskt_volume(self, baskt_id: str) -> QueryResult:
        positions = await self._gateway.get_positions(baskt_id=baskt_id)
        return QueryResult.ok(volume(positions))

    @envelope("get_all_baskts_with_positions")
    async def get_all_baskts_with_positions(self) -> QueryResult:
        """Metrics and per-asset exposures for every baskt with open positions."""
        positions, baskts = await asyncio.gather(
            self._gateway.get_positions(),
            ledger_call(self._ledger.get_baskts(), "Failed to read ledger baskts"),
        )
        by_baskt: Dict[str, List[PositionRecord]] = defaultdict(list)
        for position in positions:
            by_baskt[position.baskt_id].append(position)
        ledger_baskts = {b.address: b for b in baskts}

        results: List[BasktMetrics] = []
        for baskt_id, baskt_positions in by_baskt.items():
            live = [p for p in baskt_positions if p.status == _OPEN]
            if not live:
                continue
            account = ledger_baskts.get(baskt_id)
            if account is None:
                logger.warning("metrics_baskt_missing_on_ledger", baskt_id=baskt_id)
            results.append(
                BasktMetrics(
                    baskt_id=baskt_id,
                    open_interest=open_interest(live),
                    volume=volume(baskt_positions),
                    exposures=list(asset_exposures(account, live).values()) if account is not None else [],
                )
            )
        results.sort(key=lambda m: m.open_interest.total_open_interest, reverse=True)
        return QueryResult.ok(results)

    # ------------------------------------------------------------------
    # Asset level
    # ------------------------------------------------------------------

    @envelope("get_asset_open_interest")
    async def get_asset_open_interest(self, asset_id: str) -> QueryResult:
        return QueryResult.ok(open_interest(await self._asset_legs(asset_id, _OPEN)))

    @envelope("get_asset_volume")
    async def get_asset_volume(self, asset_id: str) -> QueryResult:
        return QueryResult.ok(volume(await self._asset_legs(asset_id, None)))

    @envelope("get_asset_metrics")
    async def get_asset_metrics(self, asset_id: str) -> QueryResult:
        legs = await self._asset_legs(asset_id, None)
        return QueryResult.ok(
            AssetMetrics(
                asset_id=asset_id,
                open_interest=open_interest(p for p in legs if p.status == _OPEN),
                volume=volume(legs),
            )
        )

    @envelope("get_all_asset_open_interest")
    async def get_all_asset_open_interest(self) -> QueryResult:
        """Open interest per asset across every baskt, keyed by asset id."""
        positions, baskts = await asyncio.gather(
            self._gateway.get_positions(status=_OPEN),
            ledger_call(self._ledger.get_baskts(), "Failed to read ledger baskts"),
        )
        by_baskt: Dict[str, List[PositionRecord]] = defaultdict(list)
        for position in positions:
            by_baskt[position.baskt_id].append(position)

        totals: Dict[str, AssetExposure] = {}
        for baskt in baskts:
            for asset_id, exposure in asset_exposures(baskt, by_baskt.get(baskt.address, [])).items():
                total = totals.setdefault(asset_id, AssetExposure(asset_id=asset_id))
                total.long_open_interest += exposure.long_open_interest
                total.short_open_interest += exposure.short_open_interest
        for total in totals.values():
            total.net_exposure = total.long_open_interest - total.short_open_interest
        return QueryResult.ok(totals)
