"""PriceQuerier — latest prices, ranges, and trailing performance windows.

Reference rule for a horizon ``H`` ending at ``now``:

1. the latest sample inside ``[now - H - tolerance, now - H]``
2. otherwise the latest sample at or before ``now - H``
3. otherwise the oldest sample in the series (performance since inception)

The batch path resolves step 1 for every id in one windowed query and
runs steps 2-3 only for the ids whose band missed. Both paths yield the
same reference.
"""

from __future__ import annotations

import asyncio
from datetime import datetime, timedelta
from decimal import Decimal
from typing import Callable, Dict, Optional, Sequence, Tuple

import structlog

from baskt_querier.calculations import percent_change, to_usd
from baskt_querier.codec import ensure_utc, utcnow
from baskt_querier.entities import (
    FormattedPrice,
    PerformanceWindows,
    PriceRange,
    PriceStats,
    QueryResult,
)
from baskt_querier.queriers.base import envelope
from baskt_querier.timeseries import NAVS, PRICES, PriceSample, Series, TimeSeriesReader

logger = structlog.get_logger()

HORIZONS: Dict[str, timedelta] = {
    "daily": timedelta(days=1),
    "weekly": timedelta(days=7),
    "monthly": timedelta(days=30),
    "yearly": timedelta(days=365),
}


def _formatted(sample: PriceSample) -> FormattedPrice:
    return FormattedPrice(asset_id=sample.series_id, time=sample.time, price=sample.price, raw=sample.raw)


def _windows(current: PriceSample, references: Dict[str, Optional[PriceSample]]) -> PerformanceWindows:
    return PerformanceWindows(
        **{
            label: percent_change(current.raw, ref.raw if ref is not None else None)
            for label, ref in references.items()
        }
    )


class PriceQuerier:
    """Price and NAV series queries.

    Parameters
    ----------
    timeseries : TimeSeriesReader
        Reader over the price / NAV store.
    tolerance : timedelta
        Width of the coarse reference band (default one day).
    clock : callable
        Returns the current UTC time; injectable for tests.
    """

    def __init__(
        self,
        timeseries: TimeSeriesReader,
        tolerance: timedelta = timedelta(days=1),
        clock: Callable[[], datetime] = utcnow,
    ) -> None:
        self._ts = timeseries
        self._tolerance = tolerance
        self._clock = clock

    # ------------------------------------------------------------------
    # Performance (internal, raising)
    # ------------------------------------------------------------------

    async def _reference(self, series_id: str, target: datetime, series: Series) -> Optional[PriceSample]:
        sample = await self._ts.at_or_before(series_id, target, series=series)
        if sample is not None:
            return sample
        return await self._ts.oldest(series_id, series=series)

    async def compute_performance(
        self,
        series_id: str,
        series: Series = PRICES,
        now: Optional[datetime] = None,
    ) -> Tuple[Optional[PriceSample], PerformanceWindows]:
        """Latest sample and its performance windows for one series id."""
        now = ensure_utc(now) if now is not None else self._clock()
        current = await self._ts.latest(series_id, series=series)
        if current is None:
            return None, PerformanceWindows()
        labels = list(HORIZONS)
        refs = await asyncio.gather(
            *(self._reference(series_id, now - HORIZONS[label], series) for label in labels)
        )
        return current, _windows(current, dict(zip(labels, refs)))

    async def compute_batch_performance(
        self,
        series_ids: Sequence[str],
        series: Series = PRICES,
        now: Optional[datetime] = None,
    ) -> Dict[str, Tuple[PriceSample, PerformanceWindows]]:
        """Latest sample and performance windows for many ids.

        Ids without any samples are left out of the result.
        """
        now = ensure_utc(now) if now is not None else self._clock()
        targets = {label: now - delta for label, delta in HORIZONS.items()}
        windows = await self._ts.window_references(series_ids, targets, self._tolerance, series=series)

        misses = [
            (sid, label)
            for sid, entry in windows.items()
            for label in targets
            if entry.get(label) is None
        ]
        if misses:
            fallbacks = await asyncio.gather(
                *(self._reference(sid, targets[label], series) for sid, label in misses)
            )
            for (sid, label), sample in zip(misses, fallbacks):
                windows[sid][label] = sample

        results: Dict[str, Tuple[PriceSample, PerformanceWindows]] = {}
        for sid, entry in windows.items():
            current = entry.get("current")
            if current is None:
                continue
            results[sid] = (current, _windows(current, {label: entry.get(label) for label in targets}))
        logger.debug(
            "batch_performance_computed",
            requested=len(series_ids),
            resolved=len(results),
            misses=len(misses),
        )
        return results

    # ------------------------------------------------------------------
    # Public API
    # ------------------------------------------------------------------

    @envelope("get_latest_price")
    async def get_latest_price(self, asset_id: str) -> QueryResult:
        sample = await self._ts.latest(asset_id)
        if sample is None:
            return QueryResult.not_found(f"No price found for asset {asset_id}")
        return QueryResult.ok(_formatted(sample))

    @envelope("get_latest_prices")
    async def get_latest_prices(self, asset_ids: Sequence[str]) -> QueryResult:
        samples = await self._ts.latest_many(asset_ids)
        return QueryResult.ok([_formatted(samples[aid]) for aid in asset_ids if aid in samples])

    @envelope("get_price_history")
    async def get_price_history(
        self,
        asset_id: str,
        start: Optional[datetime] = None,
        end: Optional[datetime] = None,
        limit: Optional[int] = None,
    ) -> QueryResult:
        samples = await self._ts.history(asset_id, start=start, end=end, limit=limit)
        return QueryResult.ok([_formatted(s) for s in samples])

    @envelope("get_price_range")
    async def get_price_range(self, asset_id: str, start: datetime, end: datetime) -> QueryResult:
        if ensure_utc(start) > ensure_utc(end):
            raise ValueError("start must not be after end")
        agg = await self._ts.aggregate(asset_id, start, end)
        return QueryResult.ok(
            PriceRange(
                asset_id=asset_id,
                start=start,
                end=end,
                count=agg.count,
                min_price=to_usd(agg.minimum) if agg.minimum is not None else None,
                max_price=to_usd(agg.maximum) if agg.maximum is not None else None,
                latest_price=agg.last.price if agg.last is not None else None,
            )
        )

    @envelope("get_price_stats")
    async def get_price_stats(self, asset_id: str, start: datetime, end: datetime) -> QueryResult:
        if ensure_utc(start) > ensure_utc(end):
            raise ValueError("start must not be after end")
        agg = await self._ts.aggregate(asset_id, start, end)
        stats = PriceStats(asset_id=asset_id, start=start, end=end, count=agg.count)
        if agg.count:
            stats.min_price = to_usd(agg.minimum)
            stats.max_price = to_usd(agg.maximum)
            stats.avg_price = to_usd(agg.total) / Decimal(agg.count)
            stats.first_price = agg.first.price if agg.first else None
            stats.last_price = agg.last.price if agg.last else None
            stats.change_percent = percent_change(
                agg.last.raw if agg.last else None,
                agg.first.raw if agg.first else None,
            )
            stats.volatility = percent_change(agg.maximum, agg.minimum)
        return QueryResult.ok(stats)

    @envelope("get_asset_performance")
    async def get_asset_performance(self, asset_id: str) -> QueryResult:
        current, windows = await self.compute_performance(asset_id)
        if current is None:
            return QueryResult.not_found(f"No price history for asset {asset_id}")
        return QueryResult.ok(windows)

    @envelope("get_batch_asset_performance")
    async def get_batch_asset_performance(self, asset_ids: Sequence[str]) -> QueryResult:
        results = await self.compute_batch_performance(asset_ids)
        return QueryResult.ok({aid: windows for aid, (_, windows) in results.items()})

    @envelope("get_baskt_performance")
    async def get_baskt_performance(self, baskt_id: str) -> QueryResult:
        # No NAV history yet: every window reports zero.
        _, windows = await self.compute_performance(baskt_id, series=NAVS)
        return QueryResult.ok(windows)

    @envelope("get_baskt_nav_history")
    async def get_baskt_nav_history(
        self,
        baskt_id: str,
        start: Optional[datetime] = None,
        end: Optional[datetime] = None,
    ) -> QueryResult:
        samples = await self._ts.history(baskt_id, start=start, end=end, series=NAVS)
        return QueryResult.ok([_formatted(s) for s in samples])

    @envelope("record_asset_price")
    async def record_asset_price(
        self, asset_id: str, raw_price: int, at: Optional[datetime] = None
    ) -> QueryResult:
        if raw_price < 0:
            raise ValueError("price must not be negative")
        await self._ts.record_price(asset_id, at or self._clock(), raw_price)
        return QueryResult.ok(True)

    @envelope("record_baskt_nav")
    async def record_baskt_nav(self, baskt_id: str, raw_nav: int, at: Optional[datetime] = None) -> QueryResult:
        if raw_nav < 0:
            raise ValueError("NAV must not be negative")
        await self._ts.record_nav(baskt_id, at or self._clock(), raw_nav)
        return QueryResult.ok(True)
