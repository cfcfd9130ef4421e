"""Time-series reader over asset price samples and baskt NAV samples.

Both series share one shape, ``(series_id, time) -> raw value`` with 1e6
precision, so every query here is parameterized by a :class:`Series`.
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime, timedelta
from decimal import Decimal
from typing import Dict, List, Mapping, Optional, Sequence, Tuple

import structlog
from sqlalchemy import Table, and_, func, or_, select

from baskt_querier.calculations import to_usd
from baskt_querier.codec import ensure_utc
from baskt_querier.database import Database
from baskt_querier.errors import ErrorCode, wrap_errors
from baskt_querier.models import AssetPriceRow, BasktNavRow

logger = structlog.get_logger()

_TIMESCALE = ErrorCode.TIMESCALE_ERROR


@dataclass(frozen=True)
class Series:
    table: Table
    key: str
    value: str

    @property
    def key_col(self):
        return self.table.c[self.key]

    @property
    def value_col(self):
        return self.table.c[self.value]

    @property
    def time_col(self):
        return self.table.c.time


PRICES = Series(AssetPriceRow.__table__, "asset_id", "price")
NAVS = Series(BasktNavRow.__table__, "baskt_id", "nav")


@dataclass(frozen=True)
class PriceSample:
    series_id: str
    time: datetime
    raw: int

    @property
    def price(self) -> Decimal:
        return to_usd(self.raw)


@dataclass(frozen=True)
class SeriesAggregate:
    count: int
    minimum: Optional[int]
    maximum: Optional[int]
    total: int
    first: Optional[PriceSample]
    last: Optional[PriceSample]


def _sample(row) -> PriceSample:
    return PriceSample(
        series_id=row[0],
        time=ensure_utc(row[1]),
        raw=int(row[2]),
    )


class TimeSeriesReader:
    """Point and range queries over the time-series store."""

    def __init__(self, db: Database) -> None:
        self._db = db

    @property
    def db(self) -> Database:
        return self._db

    def _select(self, series: Series):
        return select(series.key_col, series.time_col, series.value_col)

    # ------------------------------------------------------------------
    # Point lookups
    # ------------------------------------------------------------------

    @wrap_errors(_TIMESCALE, "Failed to read latest sample")
    async def latest(self, series_id: str, series: Series = PRICES) -> Optional[PriceSample]:
        stmt = (
            self._select(series)
            .where(series.key_col == series_id)
            .order_by(series.time_col.desc())
            .limit(1)
        )
        async with self._db.session() as session:
            row = (await session.execute(stmt)).first()
        return _sample(row) if row is not None else None

    @wrap_errors(_TIMESCALE, "Failed to read latest samples")
    async def latest_many(self, series_ids: Sequence[str], series: Series = PRICES) -> Dict[str, PriceSample]:
        """Latest sample per id in a single query; ids without samples are absent."""
        ids = list(dict.fromkeys(series_ids))
        if not ids:
            return {}
        newest = (
            select(series.key_col.label("sid"), func.max(series.time_col).label("t"))
            .where(series.key_col.in_(ids))
            .group_by(series.key_col)
            .subquery()
        )
        stmt = self._select(series).join(
            newest,
            and_(series.key_col == newest.c.sid, series.time_col == newest.c.t),
        )
        async with self._db.session() as session:
            rows = (await session.execute(stmt)).all()
        return {row[0]: _sample(row) for row in rows}

    @wrap_errors(_TIMESCALE, "Failed to read sample")
    async def at_or_before(
        self,
        series_id: str,
        moment: datetime,
        not_before: Optional[datetime] = None,
        series: Series = PRICES,
    ) -> Optional[PriceSample]:
        """Latest sample with ``not_before <= time <= moment``."""
        stmt = self._select(series).where(series.key_col == series_id, series.time_col <= ensure_utc(moment))
        if not_before is not None:
            stmt = stmt.where(series.time_col >= ensure_utc(not_before))
        stmt = stmt.order_by(series.time_col.desc()).limit(1)
        async with self._db.session() as session:
            row = (await session.execute(stmt)).first()
        return _sample(row) if row is not None else None

    @wrap_errors(_TIMESCALE, "Failed to read sample")
    async def oldest(self, series_id: str, series: Series = PRICES) -> Optional[PriceSample]:
        stmt = (
            self._select(series)
            .where(series.key_col == series_id)
            .order_by(series.time_col.asc())
            .limit(1)
        )
        async with self._db.session() as session:
            row = (await session.execute(stmt)).first()
        return _sample(row) if row is not None else None

    # ------------------------------------------------------------------
    # Ranges
    # ------------------------------------------------------------------

    @wrap_errors(_TIMESCALE, "Failed to read history")
    async def history(
        self,
        series_id: str,
        start: Optional[datetime] = None,
        end: Optional[datetime] = None,
        limit: Optional[int] = None,
        series: Series = PRICES,
    ) -> List[PriceSample]:
        """Samples in ``[start, end]``, oldest first."""
        stmt = self._select(series).where(series.key_col == series_id)
        if start is not None:
            stmt = stmt.where(series.time_col >= ensure_utc(start))
        if end is not None:
            stmt = stmt.where(series.time_col <= ensure_utc(end))
        stmt = stmt.order_by(series.time_col.asc())
        if limit is not None:
            stmt = stmt.limit(limit)
        async with self._db.session() as session:
            rows = (await session.execute(stmt)).all()
        return [_sample(row) for row in rows]

    @wrap_errors(_TIMESCALE, "Failed to aggregate samples")
    async def aggregate(
        self,
        series_id: str,
        start: datetime,
        end: datetime,
        series: Series = PRICES,
    ) -> SeriesAggregate:
        """Min / max / sum / count over ``[start, end]`` plus its first and last samples."""
        bounds = (
            series.key_col == series_id,
            series.time_col >= ensure_utc(start),
            series.time_col <= ensure_utc(end),
        )
        stats_stmt = select(
            func.count(),
            func.min(series.value_col),
            func.max(series.value_col),
            func.coalesce(func.sum(series.value_col), 0),
        ).where(*bounds)
        first_stmt = self._select(series).where(*bounds).order_by(series.time_col.asc()).limit(1)
        last_stmt = self._select(series).where(*bounds).order_by(series.time_col.desc()).limit(1)
        async with self._db.session() as session:
            count, minimum, maximum, total = (await session.execute(stats_stmt)).one()
            first = (await session.execute(first_stmt)).first()
            last = (await session.execute(last_stmt)).first()
        return SeriesAggregate(
            count=int(count),
            minimum=int(minimum) if minimum is not None else None,
            maximum=int(maximum) if maximum is not None else None,
            total=int(total),
            first=_sample(first) if first is not None else None,
            last=_sample(last) if last is not None else None,
        )

    # ------------------------------------------------------------------
    # Batch windowed references
    # ------------------------------------------------------------------

    @wrap_errors(_TIMESCALE, "Failed to read windowed samples")
    async def window_references(
        self,
        series_ids: Sequence[str],
        targets: Mapping[str, datetime],
        tolerance: timedelta,
        series: Series = PRICES,
    ) -> Dict[str, Dict[str, Optional[PriceSample]]]:
        """Per id: the latest sample (under ``"current"``) and, per labelled target,
        the latest sample inside ``[target - tolerance, target]``.

        One grouped query finds every matching timestamp through correlated
        ``MAX(time)`` sub-lookups; a second query fetches the values at those
        timestamps. Ids without any samples are absent from the result; a
        target whose band holds no sample maps to ``None``.
        """
        ids = list(dict.fromkeys(series_ids))
        if not ids:
            return {}

        labels = list(targets)
        columns = [series.key_col, func.max(series.time_col).label("current")]
        for label in labels:
            upper = ensure_utc(targets[label])
            inner = series.table.alias()
            columns.append(
                select(func.max(inner.c.time))
                .where(
                    inner.c[series.key] == series.key_col,
                    inner.c.time <= upper,
                    inner.c.time >= upper - tolerance,
                )
                .scalar_subquery()
                .label(label)
            )
        window_stmt = select(*columns).where(series.key_col.in_(ids)).group_by(series.key_col)

        async with self._db.session() as session:
            window_rows = (await session.execute(window_stmt)).all()

            wanted: Dict[Tuple[str, datetime], None] = {}
            for row in window_rows:
                for moment in row[1:]:
                    if moment is not None:
                        wanted[(row[0], moment)] = None

            values: Dict[Tuple[str, datetime], PriceSample] = {}
            if wanted:
                value_stmt = self._select(series).where(
                    or_(*(and_(series.key_col == sid, series.time_col == moment) for sid, moment in wanted))
                )
                for row in (await session.execute(value_stmt)).all():
                    sample = _sample(row)
                    values[(row[0], ensure_utc(row[1]))] = sample

        result: Dict[str, Dict[str, Optional[PriceSample]]] = {}
        for row in window_rows:
            sid = row[0]
            entry: Dict[str, Optional[PriceSample]] = {}
            for name, moment in zip(["current", *labels], row[1:]):
                entry[name] = values.get((sid, ensure_utc(moment))) if moment is not None else None
            result[sid] = entry
        return result

    # ------------------------------------------------------------------
    # Writes
    # ------------------------------------------------------------------

    @wrap_errors(_TIMESCALE, "Failed to record price sample")
    async def record_price(self, asset_id: str, time: datetime, raw_price: int) -> None:
        async with self._db.session() as session:
            await session.merge(AssetPriceRow(asset_id=asset_id, time=ensure_utc(time), price=raw_price))

    @wrap_errors(_TIMESCALE, "Failed to record NAV sample")
    async def record_nav(self, baskt_id: str, time: datetime, raw_nav: int) -> None:
        async with self._db.session() as session:
            await session.merge(BasktNavRow(baskt_id=baskt_id, time=ensure_utc(time), nav=raw_nav))
        logger.debug("nav_recorded", baskt_id=baskt_id, nav=raw_nav)
