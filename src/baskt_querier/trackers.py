"""Periodic background jobs run by the service entry point.

- :class:`LPTracker` recomputes the clamped LP APR and fee totals and
  stores them on the pool record.
- :class:`NavTracker` samples every baskt's price-derived NAV into the
  time-series store, which feeds baskt performance windows.
"""

from __future__ import annotations

import asyncio
from datetime import datetime
from typing import Callable, Optional

import structlog

from baskt_querier.codec import utcnow
from baskt_querier.errors import QuerierError
from baskt_querier.gateway import MetadataGateway
from baskt_querier.queriers.baskt import BasktQuerier
from baskt_querier.queriers.fee_event import FeeEventQuerier
from baskt_querier.queriers.pool import PoolQuerier
from baskt_querier.timeseries import TimeSeriesReader

logger = structlog.get_logger()


class _PeriodicTracker:
    name = "tracker"

    def __init__(self, interval_sec: float) -> None:
        self._interval = interval_sec
        self._stop_event = asyncio.Event()

    async def run_once(self) -> None:
        raise NotImplementedError

    async def run(self) -> None:
        """Call :meth:`run_once` every interval until :meth:`stop`."""
        self._stop_event.clear()
        logger.info("tracker_started", tracker=self.name, interval=self._interval)
        while not self._stop_event.is_set():
            try:
                await self.run_once()
            except Exception as exc:
                logger.error("tracker_run_error", tracker=self.name, error=str(exc))

            try:
                await asyncio.wait_for(self._stop_event.wait(), timeout=self._interval)
                break
            except asyncio.TimeoutError:
                pass
        logger.info("tracker_stopped", tracker=self.name)

    async def stop(self) -> None:
        self._stop_event.set()


class LPTracker(_PeriodicTracker):
    """Keeps ``latest_apr`` and the fee totals on the pool record current."""

    name = "lp_tracker"

    def __init__(
        self,
        gateway: MetadataGateway,
        pools: PoolQuerier,
        fees: FeeEventQuerier,
        interval_sec: float = 300,
        clock: Callable[[], datetime] = utcnow,
    ) -> None:
        super().__init__(interval_sec)
        self._gateway = gateway
        self._pools = pools
        self._fees = fees
        self._clock = clock

    async def run_once(self) -> Optional[float]:
        pool = await self._pools.resync_pool()
        if pool is None:
            logger.warning("lp_tracker_pool_missing")
            return None
        apr, raw, window = await self._fees.compute_apr(pool.total_liquidity)
        lifetime = await self._fees.load_stats()
        await self._gateway.update_pool_fees(
            pool.pool_address,
            latest_apr=apr,
            calculated_at=self._clock(),
            fees_collected_30d=window.fee_to_blp,
            total_fees_collected=lifetime.total_fee_to_blp,
        )
        logger.info(
            "lp_apr_updated",
            pool=pool.pool_address,
            apr=round(apr, 4),
            raw_apr=round(raw, 4),
            window_fees=window.fee_to_blp,
        )
        return apr


class NavTracker(_PeriodicTracker):
    """Records one NAV sample per baskt whose NAV could be priced."""

    name = "nav_tracker"

    def __init__(
        self,
        baskts: BasktQuerier,
        timeseries: TimeSeriesReader,
        interval_sec: float = 60,
        clock: Callable[[], datetime] = utcnow,
    ) -> None:
        super().__init__(interval_sec)
        self._baskts = baskts
        self._timeseries = timeseries
        self._clock = clock

    async def run_once(self) -> int:
        now = self._clock()
        recorded = 0
        for baskt, source in await self._baskts.load_all_with_source():
            # History and baseline NAVs are never written back.
            if source != "prices":
                logger.debug("nav_sample_skipped", baskt_id=baskt.baskt_id, source=source)
                continue
            try:
                await self._timeseries.record_nav(baskt.baskt_id, now, baskt.nav)
            except QuerierError as exc:
                logger.warning("nav_sample_failed", baskt_id=baskt.baskt_id, error=exc.message)
                continue
            recorded += 1
        logger.info("nav_samples_recorded", count=recorded)
        return recorded
