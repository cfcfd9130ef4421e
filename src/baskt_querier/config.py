"""Application settings — Pydantic-based configuration for the Baskt querier.

Every value can be set in a `.env` file in the project root or overridden
with the corresponding environment variable (nested models use ``__``,
e.g. ``APR_CLAMP__TOP_CAP=12``).
"""

from __future__ import annotations

from typing import List, Optional, Tuple

from pydantic import BaseModel, model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class RetryPolicy(BaseModel):
    """Exponential backoff used while connecting to a store at startup."""

    max_attempts: int = 5
    initial_delay: float = 1.0  # seconds
    max_delay: float = 30.0  # seconds
    multiplier: float = 2.0


class AprClampPolicy(BaseModel):
    """Caps applied to the LP APR estimate.

    ``tiers`` is a list of ``(liquidity_below, cap)`` pairs checked in
    ascending order; liquidity at or above the last bound gets ``top_cap``.
    """

    tiers: List[Tuple[float, float]] = [(100.0, 10.0), (1_000.0, 15.0), (10_000.0, 20.0)]
    top_cap: float = 25.0
    outlier_threshold: float = 100.0  # raw APR % above which the cap is forced down
    outlier_cap: float = 10.0

    @model_validator(mode="after")
    def _sort_tiers(self) -> AprClampPolicy:
        self.tiers = sorted(self.tiers, key=lambda t: t[0])
        return self


class Settings(BaseSettings):
    """Global configuration for the querier service.

    Values are loaded from a `.env` file in the project root.
    Any field can be overridden by setting the corresponding environment variable.
    """

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        env_nested_delimiter="__",
        case_sensitive=False,
    )

    # --- Stores -----------------------------------------------------------
    metadata_db_url: str = "sqlite+aiosqlite:///./baskt_metadata.db"
    timeseries_db_url: str = "sqlite+aiosqlite:///./baskt_timeseries.db"
    timeseries_pool_size: int = 5  # max concurrent connections to the price store
    connect_retry: RetryPolicy = RetryPolicy()

    # --- Ledger -----------------------------------------------------------
    program_id: str = "BASKTxProgram111111111111111111111111111111"
    dry_run: bool = True  # serve the in-memory ledger instead of a live client
    ledger_fixture_path: Optional[str] = None  # JSON snapshot loaded in dry-run mode
    ledger_backend: str = ""  # "package.module:factory" returning a LedgerReader

    # --- Derived metrics --------------------------------------------------
    apr_window_days: int = 30
    apr_clamp: AprClampPolicy = AprClampPolicy()
    performance_tolerance_hours: float = 24.0  # width of the coarse reference window
    liquidation_threshold_bps: int = 500
    closing_fee_bps: int = 10

    # --- Trackers (seconds) -----------------------------------------------
    lp_tracker_interval_sec: int = 300
    nav_tracker_interval_sec: int = 60

    log_level: str = "INFO"  # DEBUG, INFO, WARNING, ERROR

    @model_validator(mode="after")
    def _require_backend_when_live(self) -> Settings:
        if not self.dry_run and not self.ledger_backend:
            raise ValueError("ledger_backend must be set when dry_run is disabled")
        return self
