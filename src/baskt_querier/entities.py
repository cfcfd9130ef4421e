"""Consumer-facing entities and the ``QueryResult`` envelope."""

from __future__ import annotations

from datetime import datetime
from decimal import Decimal
from typing import Any, Dict, Generic, List, Optional, TypeVar

import structlog
from pydantic import BaseModel, ConfigDict, Field

from baskt_querier.errors import ErrorCode, QuerierError, to_querier_error
from baskt_querier.ledger import LedgerAsset, LedgerBaskt, LedgerOrder, LedgerPosition
from baskt_querier.records import (
    BasktAssetConfig,
    DepositRecord,
    PartialClose,
    ProcessingEntry,
    WithdrawalRequestRecord,
)

logger = structlog.get_logger()

T = TypeVar("T")


class _Entity(BaseModel):
    model_config = ConfigDict(arbitrary_types_allowed=True, use_enum_values=True)


# ---------------------------------------------------------------------------
# Envelope
# ---------------------------------------------------------------------------

class QueryResult(_Entity, Generic[T]):
    """Envelope returned by every public querier method."""

    success: bool
    data: Optional[T] = None
    message: Optional[str] = None
    error: Optional[str] = None
    code: Optional[str] = None
    status_code: int = 200

    @classmethod
    def ok(cls, data: Any = None, message: Optional[str] = None) -> QueryResult:
        return cls(success=True, data=data, message=message)

    @classmethod
    def fail(
        cls,
        message: str,
        code: ErrorCode = ErrorCode.UNKNOWN_ERROR,
        status_code: int = 500,
    ) -> QueryResult:
        return cls(
            success=False,
            message=message,
            error=message,
            code=code.value,
            status_code=status_code,
        )

    @classmethod
    def not_found(cls, message: str) -> QueryResult:
        return cls.fail(message, ErrorCode.NOT_FOUND, 404)

    @classmethod
    def from_error(cls, exc: BaseException, operation: str) -> QueryResult:
        """Log the root cause and translate it into a sanitized failure."""
        err: QuerierError = to_querier_error(exc, f"Failed to {operation.replace('_', ' ')}")
        cause = err.cause if err.cause is not None else exc
        logger.error(
            "query_failed",
            operation=operation,
            code=err.code.value,
            error=str(cause),
            error_type=type(cause).__name__,
        )
        return cls.fail(err.message, err.code, err.status_code)


# ---------------------------------------------------------------------------
# Assets & baskts
# ---------------------------------------------------------------------------

class PerformanceWindows(_Entity):
    """Percent change per trailing horizon."""

    daily: float = 0.0
    weekly: float = 0.0
    monthly: float = 0.0
    yearly: float = 0.0


class AssetConfig(_Entity):
    price_config: Dict[str, Any] = Field(default_factory=dict)
    coingecko_id: Optional[str] = None


class CombinedAsset(_Entity):
    asset_address: str
    ticker: str
    name: str = ""
    logo: str = ""
    price: Decimal = Decimal(0)  # USD
    price_raw: int = 0
    change_24h: float = 0.0
    latest_price_time: Optional[datetime] = None
    account: Optional[LedgerAsset] = None
    is_active: bool = False
    weight: float = 0.0  # percent, set when resolved inside a baskt
    config: AssetConfig = Field(default_factory=AssetConfig)
    baskt_ids: List[str] = Field(default_factory=list)
    performance: Optional[PerformanceWindows] = None


class BasktAsset(CombinedAsset):
    direction: bool = True
    weight_bps: int = 0
    baseline_price: int = 0


class CombinedBaskt(_Entity):
    baskt_id: str
    uid: int = 0
    name: str = ""
    creator: str = ""
    is_public: bool = True
    status: str = "Pending"
    allocations: List[BasktAssetConfig] = Field(default_factory=list)
    baseline_nav: int = 0
    nav: int = 0
    price: Decimal = Decimal(0)  # NAV in USD
    performance: PerformanceWindows = Field(default_factory=PerformanceWindows)
    assets: List[BasktAsset] = Field(default_factory=list)
    open_positions: int = 0
    creation_tx: Optional[str] = None
    creation_ts: Optional[datetime] = None
    last_rebalance_ts: Optional[datetime] = None
    account: Optional[LedgerBaskt] = None


# ---------------------------------------------------------------------------
# Orders & positions
# ---------------------------------------------------------------------------

class CombinedOrder(_Entity):
    order_pda: str
    order_id: int = 0
    baskt_id: str = ""
    owner: str = ""
    status: str = "PENDING"
    action: str = "Open"
    order_type: str = "Market"
    size: int = 0
    collateral: int = 0
    usdc_size: int = 0
    is_long: bool = True
    leverage_bps: int = 10_000
    limit_price: int = 0
    max_slippage_bps: int = 0
    target_position: Optional[str] = None
    position: Optional[str] = None
    create_tx: Optional[str] = None
    create_ts: Optional[datetime] = None
    fill_tx: Optional[str] = None
    fill_ts: Optional[datetime] = None
    cancel_tx: Optional[str] = None
    cancel_ts: Optional[datetime] = None
    account: Optional[LedgerOrder] = None


class CombinedPosition(_Entity):
    position_pda: str
    position_id: int = 0
    baskt_id: str = ""
    owner: str = ""
    status: str = "OPEN"
    is_long: bool = True
    entry_price: int = 0
    exit_price: Optional[int] = None
    size: int = 0
    remaining_size: int = 0
    collateral: int = 0
    remaining_collateral: int = 0
    usdc_size: int = 0
    funding_accumulated: int = 0
    liquidation_price: Optional[int] = None
    open_order: Optional[str] = None
    close_order: Optional[str] = None
    open_tx: Optional[str] = None
    open_ts: Optional[datetime] = None
    close_tx: Optional[str] = None
    close_ts: Optional[datetime] = None
    partial_close_history: List[PartialClose] = Field(default_factory=list)
    account: Optional[LedgerPosition] = None


class HistoryItem(_Entity):
    """One row of a trader's activity feed: an order or a position."""

    id: str
    item_type: str  # "order" or "position"
    order_id: Optional[int] = None
    position_id: Optional[int] = None
    baskt_id: str = ""
    baskt_name: str = ""
    owner: str = ""
    action: str = "Open"
    status: str = ""
    size: int = 0
    collateral: int = 0
    is_long: bool = True
    entry_price: Optional[int] = None
    exit_price: Optional[int] = None
    pnl: Optional[int] = None
    pnl_percentage: Optional[float] = None
    timestamp: Optional[datetime] = None
    open_tx: Optional[str] = None
    close_tx: Optional[str] = None


# ---------------------------------------------------------------------------
# Prices
# ---------------------------------------------------------------------------

class FormattedPrice(_Entity):
    asset_id: str
    time: datetime
    price: Decimal
    raw: int


class PriceRange(_Entity):
    asset_id: str
    start: datetime
    end: datetime
    count: int = 0
    min_price: Optional[Decimal] = None
    max_price: Optional[Decimal] = None
    latest_price: Optional[Decimal] = None


class PriceStats(_Entity):
    asset_id: str
    start: datetime
    end: datetime
    count: int = 0
    min_price: Optional[Decimal] = None
    max_price: Optional[Decimal] = None
    avg_price: Optional[Decimal] = None
    first_price: Optional[Decimal] = None
    last_price: Optional[Decimal] = None
    change_percent: float = 0.0
    volatility: float = 0.0  # (max - min) / min * 100


# ---------------------------------------------------------------------------
# Fees
# ---------------------------------------------------------------------------

class FeeTypeBreakdown(_Entity):
    event_type: str
    count: int = 0
    total_fees: int = 0
    fee_to_treasury: int = 0
    fee_to_blp: int = 0


class FeeEventStats(_Entity):
    total_events: int = 0
    total_fees: int = 0
    total_fee_to_treasury: int = 0
    total_fee_to_blp: int = 0
    by_type: Dict[str, FeeTypeBreakdown] = Field(default_factory=dict)


class FeeWindowData(_Entity):
    start: datetime
    end: datetime
    window_days: float
    event_count: int = 0
    fee_to_blp: int = 0
    total_fees: int = 0


class PoolAnalytics(_Entity):
    pool_address: str
    total_liquidity: Decimal  # USDC
    total_shares: Decimal
    apr: float  # clamped, percent
    raw_apr: float
    window: FeeWindowData
    window_fees_to_blp: Decimal  # USDC
    total_fees_collected: Decimal  # USDC
    fee_stats: FeeEventStats


# ---------------------------------------------------------------------------
# Pool & withdrawal queue
# ---------------------------------------------------------------------------

class UserDeposits(_Entity):
    provider: str
    deposits: List[DepositRecord] = Field(default_factory=list)
    withdrawals: List[WithdrawalRequestRecord] = Field(default_factory=list)
    total_deposited: int = 0
    total_shares_minted: int = 0
    total_lp_requested: int = 0
    total_lp_burned: int = 0
    total_withdrawn: int = 0
    pending_lp: int = 0


class ProviderSummary(_Entity):
    provider: str
    deposit_count: int = 0
    total_deposited: int = 0
    total_shares_minted: int = 0
    withdrawal_count: int = 0
    total_lp_requested: int = 0
    total_lp_burned: int = 0
    total_withdrawn: int = 0


class WithdrawQueueItem(_Entity):
    request_id: int
    address: str
    provider: str
    provider_token_account: str = ""
    requested_lp_amount: int = 0
    remaining_lp: int = 0
    requested_at: Optional[datetime] = None
    queue_position: int = 0  # 1-based
    status: str = "QUEUED"
    amount_processed: int = 0
    processing_history: List[ProcessingEntry] = Field(default_factory=list)


class WithdrawQueueStats(_Entity):
    total_items: int = 0
    total_pending_lp: int = 0
    queue_head: int = 0
    queue_tail: int = 0
    processing_rate_per_hour: float = 0.0
    processing_interval_minutes: float = 0.0
    user_queue_position: Optional[int] = None
    estimated_wait_minutes: Optional[float] = None
    is_processing_now: bool = False
    next_processing_time: Optional[datetime] = None


# ---------------------------------------------------------------------------
# Metrics
# ---------------------------------------------------------------------------

class OpenInterestData(_Entity):
    long_open_interest: int = 0
    short_open_interest: int = 0
    total_open_interest: int = 0
    position_count: int = 0


class VolumeData(_Entity):
    long_volume: int = 0
    short_volume: int = 0
    total_volume: int = 0


class AssetExposure(_Entity):
    asset_id: str
    long_open_interest: int = 0
    short_open_interest: int = 0
    net_exposure: int = 0


class AssetMetrics(_Entity):
    asset_id: str
    open_interest: OpenInterestData
    volume: VolumeData


class BasktMetrics(_Entity):
    baskt_id: str
    open_interest: OpenInterestData
    volume: VolumeData
    exposures: List[AssetExposure] = Field(default_factory=list)


class BasktNav(_Entity):
    baskt_id: str
    nav: int
    price: Decimal
    baseline_nav: int
    source: str  # "prices", "history" or "baseline"


# ---------------------------------------------------------------------------
# Access
# ---------------------------------------------------------------------------

class WalletAccess(_Entity):
    has_access: bool
    message: str
    authorized_at: Optional[datetime] = None
    access_code_used: Optional[str] = None
    last_login_at: Optional[datetime] = None
