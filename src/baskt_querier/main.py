"""Service entry point — opens the stores and keeps the derived metrics fresh.

``baskt-querier`` runs two periodic jobs side by side until SIGINT/SIGTERM:

  1. LP tracker: clamped APR and fee totals written to the pool record
  2. NAV tracker: price-derived baskt NAVs sampled into the time-series store

``baskt-querier --once`` runs each job a single time and exits, which is
what a cron-driven deployment wants.
"""

from __future__ import annotations

import argparse
import asyncio
import logging
import signal
import sys
from typing import List, Optional, Sequence

import structlog

from baskt_querier.config import Settings
from baskt_querier.querier import Querier
from baskt_querier.trackers import LPTracker, NavTracker

logger = structlog.get_logger()


# ---------------------------------------------------------------------------
# Structured logging setup
# ---------------------------------------------------------------------------

def configure_logging(log_level: str) -> None:
    """Console-rendered structlog output filtered at ``log_level``."""
    level = logging.getLevelName(log_level.upper())
    if not isinstance(level, int):
        raise ValueError(f"Unknown log level: {log_level}")
    structlog.configure(
        processors=[
            structlog.contextvars.merge_contextvars,
            structlog.processors.add_log_level,
            structlog.processors.TimeStamper(fmt="iso"),
            structlog.dev.ConsoleRenderer(),
        ],
        wrapper_class=structlog.make_filtering_bound_logger(level),
        context_class=dict,
        logger_factory=structlog.PrintLoggerFactory(),
        cache_logger_on_first_use=True,
    )


def parse_args(argv: Optional[Sequence[str]] = None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(prog="baskt-querier", description=__doc__.splitlines()[0])
    parser.add_argument("--once", action="store_true", help="run every tracker once and exit")
    parser.add_argument("--log-level", default=None, help="override LOG_LEVEL from the environment")
    parser.add_argument("--ledger-fixture", default=None, help="JSON ledger snapshot for dry-run mode")
    return parser.parse_args(argv)


def build_trackers(querier: Querier, settings: Settings) -> List[LPTracker | NavTracker]:
    return [
        LPTracker(
            querier.gateway,
            querier.pool,
            querier.fee_events,
            interval_sec=settings.lp_tracker_interval_sec,
        ),
        NavTracker(
            querier.baskts,
            querier.timeseries,
            interval_sec=settings.nav_tracker_interval_sec,
        ),
    ]


def _install_signal_handlers(stop: asyncio.Event) -> None:
    loop = asyncio.get_running_loop()
    if sys.platform != "win32":
        for sig in (signal.SIGINT, signal.SIGTERM):
            loop.add_signal_handler(sig, stop.set)
        return
    try:
        signal.signal(signal.SIGTERM, lambda *_: loop.call_soon_threadsafe(stop.set))
    except (AttributeError, ValueError):
        logger.warning("sigterm_handler_unavailable")


# ---------------------------------------------------------------------------
# Main
# ---------------------------------------------------------------------------

async def run_service(settings: Settings, once: bool = False) -> None:
    """Initialize the querier, run the trackers, always shut the stores down."""
    logger.info(
        "querier_starting",
        dry_run=settings.dry_run,
        program_id=settings.program_id,
        apr_window_days=settings.apr_window_days,
        once=once,
    )

    querier = Querier.from_settings(settings)
    await querier.init()
    trackers = build_trackers(querier, settings)

    try:
        if once:
            for tracker in trackers:
                result = await tracker.run_once()
                logger.info("tracker_ran_once", tracker=tracker.name, result=result)
            return

        stop = asyncio.Event()
        _install_signal_handlers(stop)

        async def _stop_on_signal() -> None:
            await stop.wait()
            logger.info("shutdown_signal_received")
            for tracker in trackers:
                await tracker.stop()

        await asyncio.gather(*(t.run() for t in trackers), _stop_on_signal())
    except asyncio.CancelledError:
        logger.info("tasks_cancelled")
    finally:
        for tracker in trackers:
            await tracker.stop()
        await querier.shutdown()
        logger.info("querier_stopped")


def main(argv: Optional[Sequence[str]] = None) -> None:
    """Console-script wrapper around ``asyncio.run``."""
    args = parse_args(argv)
    overrides = {}
    if args.ledger_fixture:
        overrides["ledger_fixture_path"] = args.ledger_fixture
    settings = Settings(**overrides)
    configure_logging(args.log_level or settings.log_level)
    try:
        asyncio.run(run_service(settings, once=args.once))
    except KeyboardInterrupt:
        pass


if __name__ == "__main__":
    main()
