"""Querier facade — owns the stores and wires every domain querier.

Usage::

    querier = Querier.from_settings(Settings())
    await querier.init()
    result = await querier.baskts.get_all_baskts()
    await querier.shutdown()
"""

from __future__ import annotations

import asyncio
import importlib
from datetime import datetime, timedelta
from typing import Callable, Dict, Optional

import structlog

from baskt_querier.codec import utcnow
from baskt_querier.config import Settings
from baskt_querier.database import Database
from baskt_querier.errors import ErrorCode
from baskt_querier.gateway import MetadataGateway
from baskt_querier.ledger import LedgerReader
from baskt_querier.mocks import InMemoryLedger
from baskt_querier.models import Base, TimeseriesBase
from baskt_querier.queriers import (
    AccessQuerier,
    AssetQuerier,
    BasktQuerier,
    FeeEventQuerier,
    HistoryQuerier,
    MetricsQuerier,
    OrderQuerier,
    PoolQuerier,
    PositionQuerier,
    PriceQuerier,
    WithdrawQueueQuerier,
)
from baskt_querier.timeseries import TimeSeriesReader

logger = structlog.get_logger()


def load_ledger(settings: Settings) -> LedgerReader:
    """In-memory ledger in dry-run mode, otherwise the configured ``module:factory``."""
    if settings.dry_run:
        if settings.ledger_fixture_path:
            return InMemoryLedger.from_json(settings.ledger_fixture_path, settings.program_id)
        return InMemoryLedger(settings.program_id)

    module_name, _, attr = settings.ledger_backend.partition(":")
    if not module_name or not attr:
        raise ValueError(
            f"ledger_backend must look like 'package.module:factory', got {settings.ledger_backend!r}"
        )
    factory = getattr(importlib.import_module(module_name), attr)
    ledger = factory(settings)
    if not isinstance(ledger, LedgerReader):
        raise TypeError(f"{settings.ledger_backend} did not return a LedgerReader")
    return ledger


class Querier:
    """Single entry point over the three stores.

    Stores are opened by :meth:`init` and released by :meth:`shutdown`;
    nothing touches the network at construction time.
    """

    def __init__(
        self,
        settings: Settings,
        ledger: LedgerReader,
        clock: Callable[[], datetime] = utcnow,
    ) -> None:
        self.settings = settings
        self.ledger = ledger

        self.metadata_db = Database(
            settings.metadata_db_url,
            "metadata",
            Base.metadata,
            error_code=ErrorCode.METADATA_ERROR,
            retry=settings.connect_retry,
        )
        self.timeseries_db = Database(
            settings.timeseries_db_url,
            "timeseries",
            TimeseriesBase.metadata,
            error_code=ErrorCode.TIMESCALE_ERROR,
            pool_size=settings.timeseries_pool_size,
            retry=settings.connect_retry,
        )
        self.gateway = MetadataGateway(self.metadata_db)
        self.timeseries = TimeSeriesReader(self.timeseries_db)

        self.prices = PriceQuerier(
            self.timeseries,
            tolerance=timedelta(hours=settings.performance_tolerance_hours),
            clock=clock,
        )
        self.assets = AssetQuerier(self.gateway, ledger, self.prices)
        self.baskts = BasktQuerier(self.gateway, ledger, self.assets, self.prices)
        self.orders = OrderQuerier(self.gateway, ledger)
        self.positions = PositionQuerier(
            self.gateway,
            ledger,
            liquidation_threshold_bps=settings.liquidation_threshold_bps,
            closing_fee_bps=settings.closing_fee_bps,
        )
        self.pool = PoolQuerier(self.gateway, ledger, clock=clock)
        self.fee_events = FeeEventQuerier(
            self.gateway,
            self.pool,
            clamp=settings.apr_clamp,
            window_days=settings.apr_window_days,
            clock=clock,
        )
        self.history = HistoryQuerier(self.gateway, self.orders, self.positions)
        self.withdraw_queue = WithdrawQueueQuerier(self.gateway, ledger, clock=clock)
        self.metrics = MetricsQuerier(self.gateway, ledger)
        self.access = AccessQuerier(self.gateway, clock=clock)

    @classmethod
    def from_settings(cls, settings: Optional[Settings] = None) -> Querier:
        settings = settings or Settings()
        return cls(settings, load_ledger(settings))

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    async def init(self) -> None:
        """Connect both stores; fails with ``StoreConnectionError`` after retries."""
        await asyncio.gather(self.metadata_db.connect(), self.timeseries_db.connect())
        logger.info(
            "querier_initialized",
            ledger=type(self.ledger).__name__,
            dry_run=self.settings.dry_run,
        )

    async def shutdown(self) -> None:
        await asyncio.gather(self.metadata_db.close(), self.timeseries_db.close())
        logger.info("querier_shutdown")

    async def is_healthy(self) -> Dict[str, bool]:
        metadata, timeseries = await asyncio.gather(self.metadata_db.ping(), self.timeseries_db.ping())
        return {"metadata": metadata, "timeseries": timeseries}
