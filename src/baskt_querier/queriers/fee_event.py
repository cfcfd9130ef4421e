"""FeeEventQuerier — fee event log, windowed totals and the clamped LP APR."""

from __future__ import annotations

import asyncio
from datetime import datetime, timedelta
from decimal import Decimal
from typing import Callable, Iterable, Optional, Tuple

import structlog

from baskt_querier.calculations import USDC_DECIMALS, calculate_apr, clamp_apr, to_usd
from baskt_querier.codec import ensure_utc, utcnow
from baskt_querier.config import AprClampPolicy
from baskt_querier.entities import FeeEventStats, FeeTypeBreakdown, FeeWindowData, PoolAnalytics, QueryResult
from baskt_querier.gateway import MetadataGateway
from baskt_querier.queriers.base import envelope
from baskt_querier.queriers.pool import PoolQuerier
from baskt_querier.records import FeeEventRecord

logger = structlog.get_logger()


def summarize_fee_events(events: Iterable[FeeEventRecord]) -> FeeEventStats:
    stats = FeeEventStats()
    for event in events:
        stats.total_events += 1
        stats.total_fees += event.total_fee
        stats.total_fee_to_treasury += event.fee_to_treasury
        stats.total_fee_to_blp += event.fee_to_blp
        bucket = stats.by_type.setdefault(event.event_type, FeeTypeBreakdown(event_type=event.event_type))
        bucket.count += 1
        bucket.total_fees += event.total_fee
        bucket.fee_to_treasury += event.fee_to_treasury
        bucket.fee_to_blp += event.fee_to_blp
    return stats


class FeeEventQuerier:
    """Fee events and the LP yield derived from them.

    Parameters
    ----------
    pools : PoolQuerier
        Source of the pool's total liquidity for APR.
    clamp : AprClampPolicy
        Liquidity tiers and caps applied to the raw APR.
    window_days : int
        Default trailing window for APR.
    """

    def __init__(
        self,
        gateway: MetadataGateway,
        pools: PoolQuerier,
        clamp: Optional[AprClampPolicy] = None,
        window_days: int = 30,
        clock: Callable[[], datetime] = utcnow,
    ) -> None:
        self._gateway = gateway
        self._pools = pools
        self._clamp = clamp or AprClampPolicy()
        self._window_days = window_days
        self._clock = clock

    # ------------------------------------------------------------------
    # Writes
    # ------------------------------------------------------------------

    @envelope("create_fee_event")
    async def create_fee_event(self, record: FeeEventRecord) -> QueryResult:
        if record.fee_to_treasury < 0 or record.fee_to_blp < 0:
            raise ValueError("fee amounts must not be negative")
        created = await self._gateway.create_fee_event(record)
        if not created:
            logger.debug("fee_event_duplicate", event_id=record.event_id)
        return QueryResult.ok(created, message=None if created else "Fee event already recorded")

    # ------------------------------------------------------------------
    # Finders
    # ------------------------------------------------------------------

    @envelope("get_fee_event_by_id")
    async def get_fee_event_by_id(self, event_id: str) -> QueryResult:
        event = await self._gateway.get_fee_event(event_id)
        if event is None:
            return QueryResult.not_found(f"Fee event {event_id} not found")
        return QueryResult.ok(event)

    @envelope("get_fee_events_by_transaction")
    async def get_fee_events_by_transaction(self, transaction_signature: str) -> QueryResult:
        return QueryResult.ok(await self._gateway.find_fee_events(transaction_signature=transaction_signature))

    @envelope("get_fee_events_by_type")
    async def get_fee_events_by_type(self, event_type: str, limit: Optional[int] = None) -> QueryResult:
        return QueryResult.ok(await self._gateway.find_fee_events(event_type=event_type, limit=limit))

    @envelope("get_fee_events_by_owner")
    async def get_fee_events_by_owner(self, owner: str, limit: Optional[int] = None) -> QueryResult:
        return QueryResult.ok(await self._gateway.find_fee_events(owner=owner, limit=limit))

    @envelope("get_fee_events_by_baskt")
    async def get_fee_events_by_baskt(self, baskt_id: str, limit: Optional[int] = None) -> QueryResult:
        return QueryResult.ok(await self._gateway.find_fee_events(baskt_id=baskt_id, limit=limit))

    @envelope("get_fee_events")
    async def get_fee_events(
        self,
        event_type: Optional[str] = None,
        owner: Optional[str] = None,
        baskt_id: Optional[str] = None,
        start: Optional[datetime] = None,
        end: Optional[datetime] = None,
        limit: Optional[int] = None,
        offset: int = 0,
    ) -> QueryResult:
        if limit is not None and limit < 0:
            raise ValueError("limit must not be negative")
        events = await self._gateway.find_fee_events(
            event_type=event_type,
            owner=owner,
            baskt_id=baskt_id,
            start=ensure_utc(start),
            end=ensure_utc(end),
            limit=limit,
            offset=offset,
        )
        return QueryResult.ok(events)

    # ------------------------------------------------------------------
    # Aggregates
    # ------------------------------------------------------------------

    async def window_data(self, window_days: float, end: Optional[datetime] = None) -> FeeWindowData:
        if window_days <= 0:
            raise ValueError("window_days must be positive")
        end = ensure_utc(end) or self._clock()
        start = end - timedelta(days=window_days)
        events = await self._gateway.find_fee_events(start=start, end=end)
        return FeeWindowData(
            start=start,
            end=end,
            window_days=window_days,
            event_count=len(events),
            fee_to_blp=sum(e.fee_to_blp for e in events),
            total_fees=sum(e.total_fee for e in events),
        )

    async def compute_apr(
        self, total_liquidity: int, window_days: Optional[float] = None
    ) -> Tuple[float, float, FeeWindowData]:
        """Return ``(clamped_apr, raw_apr, window)`` for the pool's liquidity in base units."""
        days = window_days or self._window_days
        window = await self.window_data(days)
        liquidity = total_liquidity / USDC_DECIMALS
        raw = calculate_apr(window.fee_to_blp / USDC_DECIMALS, liquidity, days)
        apr = clamp_apr(raw, liquidity, self._clamp)
        if apr != raw:
            logger.debug("apr_clamped", raw_apr=raw, apr=apr, liquidity=liquidity)
        return apr, raw, window

    async def load_stats(self, start: Optional[datetime] = None, end: Optional[datetime] = None) -> FeeEventStats:
        events = await self._gateway.find_fee_events(start=ensure_utc(start), end=ensure_utc(end))
        return summarize_fee_events(events)

    @envelope("get_fee_event_stats")
    async def get_fee_event_stats(
        self,
        start: Optional[datetime] = None,
        end: Optional[datetime] = None,
    ) -> QueryResult:
        return QueryResult.ok(await self.load_stats(start, end))

    @envelope("get_fee_data_for_window")
    async def get_fee_data_for_window(self, window_days: float, end: Optional[datetime] = None) -> QueryResult:
        return QueryResult.ok(await self.window_data(window_days, end))

    @envelope("get_pool_analytics")
    async def get_pool_analytics(self, window_days: Optional[float] = None) -> QueryResult:
        pool, stats = await asyncio.gather(self._pools.load_pool(), self.load_stats())
        if pool is None:
            return QueryResult.not_found("Liquidity pool not found")
        apr, raw, window = await self.compute_apr(pool.total_liquidity, window_days)
        return QueryResult.ok(
            PoolAnalytics(
                pool_address=pool.pool_address,
                total_liquidity=to_usd(pool.total_liquidity),
                total_shares=Decimal(pool.total_shares) / USDC_DECIMALS,
                apr=apr,
                raw_apr=raw,
                window=window,
                window_fees_to_blp=to_usd(window.fee_to_blp),
                total_fees_collected=to_usd(stats.total_fee_to_blp),
                fee_stats=stats,
            )
        )
