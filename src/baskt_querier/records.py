"""Typed metadata records.

These are what the persistence gateway returns. Amounts go through the
codec types in :mod:`baskt_querier.codec`; derived fields (withdrawal
status, remaining LP) are recomputed on every validation.
"""

from __future__ import annotations

from enum import Enum
from typing import Any, Dict, List, Optional, Sequence, Tuple

from pydantic import BaseModel, ConfigDict, Field, model_validator

from baskt_querier.codec import Amount, OptionalAmount, UtcDatetime, decode_amount


# ---------------------------------------------------------------------------
# Enums
# ---------------------------------------------------------------------------

class BasktStatus(str, Enum):
    PENDING = "Pending"
    ACTIVE = "Active"
    DECOMMISSIONING = "Decommissioning"
    CLOSED = "Closed"


class OrderStatus(str, Enum):
    PENDING = "PENDING"
    FILLED = "FILLED"
    CANCELLED = "CANCELLED"


class OrderAction(str, Enum):
    OPEN = "Open"
    CLOSE = "Close"


class OrderType(str, Enum):
    MARKET = "Market"
    LIMIT = "Limit"


class PositionStatus(str, Enum):
    OPEN = "OPEN"
    CLOSED = "CLOSED"
    LIQUIDATED = "LIQUIDATED"


class FeeEventType(str, Enum):
    POSITION_OPENED = "POSITION_OPENED"
    POSITION_CLOSED = "POSITION_CLOSED"
    POSITION_LIQUIDATED = "POSITION_LIQUIDATED"
    LIQUIDITY_ADDED = "LIQUIDITY_ADDED"
    LIQUIDITY_REMOVED = "LIQUIDITY_REMOVED"
    BASKT_CREATED = "BASKT_CREATED"
    REBALANCE_REQUESTED = "REBALANCE_REQUESTED"


class WithdrawalStatus(str, Enum):
    QUEUED = "QUEUED"
    PROCESSING = "PROCESSING"
    COMPLETED = "COMPLETED"


class _Record(BaseModel):
    model_config = ConfigDict(from_attributes=True, use_enum_values=True)


# ---------------------------------------------------------------------------
# Assets & baskts
# ---------------------------------------------------------------------------

class AssetRecord(_Record):
    asset_address: str
    ticker: str
    name: str = ""
    logo: str = ""
    price_config: Dict[str, Any] = Field(default_factory=dict)
    coingecko_id: Optional[str] = None
    baskt_ids: List[str] = Field(default_factory=list)
    created_at: Optional[UtcDatetime] = None


class BasktAssetConfig(_Record):
    asset_id: str
    direction: bool = True  # True = long
    weight: int = 0  # bps
    baseline_price: Amount = 0


class BasktRecord(_Record):
    baskt_id: str  # PDA
    uid: int = 0
    name: str = ""
    creator: str = ""
    is_public: bool = True
    status: BasktStatus = BasktStatus.PENDING
    assets: List[BasktAssetConfig] = Field(default_factory=list)
    baseline_nav: Amount = 0
    creation_tx: Optional[str] = None
    creation_ts: Optional[UtcDatetime] = None
    last_rebalance_ts: Optional[UtcDatetime] = None


# ---------------------------------------------------------------------------
# Orders & positions
# ---------------------------------------------------------------------------

class OrderRecord(_Record):
    order_pda: str
    order_id: int = 0
    baskt_id: str = ""
    owner: str = ""
    status: OrderStatus = OrderStatus.PENDING
    action: OrderAction = OrderAction.OPEN
    order_type: OrderType = OrderType.MARKET
    size: Amount = 0
    collateral: Amount = 0
    usdc_size: OptionalAmount = None
    is_long: bool = True
    leverage_bps: int = 10_000
    limit_price: Amount = 0
    max_slippage_bps: int = 0
    target_position: Optional[str] = None  # close orders
    position: Optional[str] = None  # position opened by a filled open order
    create_tx: Optional[str] = None
    create_ts: Optional[UtcDatetime] = None
    fill_tx: Optional[str] = None
    fill_ts: Optional[UtcDatetime] = None
    cancel_tx: Optional[str] = None
    cancel_ts: Optional[UtcDatetime] = None


class SettlementDetails(_Record):
    model_config = ConfigDict(from_attributes=True, frozen=True)

    escrow_to_treasury: Amount = 0
    escrow_to_pool: Amount = 0
    escrow_to_user: Amount = 0
    pool_to_user: Amount = 0
    fee: Amount = 0
    pnl: Amount = 0
    funding_accumulated: Amount = 0
    bad_debt: Amount = 0
    user_payout: Amount = 0
    collateral_released: Amount = 0


class PartialClose(_Record):
    model_config = ConfigDict(from_attributes=True, frozen=True)

    order_id: str  # PDA of the closing order
    ts: UtcDatetime
    tx: str
    size_closed: Amount
    exit_price: Amount
    settlement: SettlementDetails = SettlementDetails()


class PositionRecord(_Record):
    position_pda: str
    position_id: int = 0
    baskt_id: str = ""
    owner: str = ""
    status: PositionStatus = PositionStatus.OPEN
    is_long: bool = True
    entry_price: Amount = 0
    exit_price: OptionalAmount = None
    size: Amount = 0
    remaining_size: OptionalAmount = None
    collateral: Amount = 0
    remaining_collateral: OptionalAmount = None
    usdc_size: OptionalAmount = None
    funding_accumulated: Amount = 0
    open_order: Optional[str] = None
    close_order: Optional[str] = None
    open_tx: Optional[str] = None
    open_ts: Optional[UtcDatetime] = None
    close_tx: Optional[str] = None
    close_ts: Optional[UtcDatetime] = None
    partial_close_history: List[PartialClose] = Field(default_factory=list)


# ---------------------------------------------------------------------------
# Access
# ---------------------------------------------------------------------------

class AccessCodeRecord(_Record):
    code: str
    description: str = ""
    expires_at: Optional[UtcDatetime] = None
    is_used: bool = False
    used_by: Optional[str] = None
    used_at: Optional[UtcDatetime] = None
    created_by: Optional[str] = None
    created_at: Optional[UtcDatetime] = None


class WalletRecord(_Record):
    wallet_address: str
    access_code_used: str
    authorized_at: UtcDatetime
    last_login_at: Optional[UtcDatetime] = None
    is_active: bool = True


# ---------------------------------------------------------------------------
# Fees
# ---------------------------------------------------------------------------

class FeeEventRecord(_Record):
    model_config = ConfigDict(from_attributes=True, use_enum_values=True, frozen=True)

    event_id: str
    event_type: FeeEventType
    transaction_signature: str
    timestamp: UtcDatetime
    owner: str = ""
    baskt_id: Optional[str] = None
    fee_to_treasury: Amount = 0
    fee_to_blp: Amount = 0
    total_fee: Amount = 0
    payload: Dict[str, Any] = Field(default_factory=dict)

    @model_validator(mode="before")
    @classmethod
    def _default_total(cls, data: Any) -> Any:
        if isinstance(data, dict) and data.get("total_fee") in (None, ""):
            total = decode_amount(data.get("fee_to_treasury")) + decode_amount(data.get("fee_to_blp"))
            data = {**data, "total_fee": total}
        return data


# ---------------------------------------------------------------------------
# Liquidity pool
# ---------------------------------------------------------------------------

class PoolRecord(_Record):
    pool_address: str
    total_liquidity: Amount = 0
    lp_mint: str = ""
    total_shares: Amount = 0
    last_update_ts: Optional[UtcDatetime] = None
    deposit_fee_bps: int = 0
    withdrawal_fee_bps: int = 0
    min_deposit: Amount = 0
    pending_lp_tokens: Amount = 0
    withdraw_queue_head: int = 0
    withdraw_queue_tail: int = 0
    latest_apr: float = 0.0
    last_apr_at: Optional[UtcDatetime] = None
    fees_collected_30d: Amount = 0
    total_fees_collected: Amount = 0


class DepositRecord(_Record):
    transaction_signature: str
    provider: str
    pool_address: str
    deposit_amount: Amount = 0
    fee_amount: Amount = 0
    shares_minted: Amount = 0
    net_deposit: Amount = 0
    timestamp: UtcDatetime


class ProcessingEntry(_Record):
    model_config = ConfigDict(from_attributes=True, frozen=True)

    ts: UtcDatetime
    tx: str
    amount_processed: Amount = 0
    lp_tokens_burned: Amount = 0


def derive_withdrawal_state(
    requested_lp_amount: int,
    history: Sequence[ProcessingEntry],
) -> Tuple[WithdrawalStatus, int]:
    """Status and remaining LP as a pure function of the processing history."""
    burned = sum(entry.lp_tokens_burned for entry in history)
    remaining = max(requested_lp_amount - burned, 0)
    if not history:
        return WithdrawalStatus.QUEUED, remaining
    if burned >= requested_lp_amount:
        return WithdrawalStatus.COMPLETED, remaining
    return WithdrawalStatus.PROCESSING, remaining


class WithdrawalRequestRecord(_Record):
    request_id: int
    provider: str
    provider_token_account: str = ""
    pool_address: str = ""
    requested_lp_amount: Amount = 0
    remaining_lp: Amount = 0
    requested_ts: Optional[UtcDatetime] = None
    request_tx: Optional[str] = None
    status: WithdrawalStatus = WithdrawalStatus.QUEUED
    processing_history: List[ProcessingEntry] = Field(default_factory=list)

    @model_validator(mode="after")
    def _rederive_status(self) -> WithdrawalRequestRecord:
        # The stored status is a cache; the history is the source of truth.
        status, remaining = derive_withdrawal_state(self.requested_lp_amount, self.processing_history)
        self.status = status.value  # type: ignore[assignment]
        self.remaining_lp = remaining
        return self

    @property
    def lp_tokens_burned(self) -> int:
        return sum(entry.lp_tokens_burned for entry in self.processing_history)

    @property
    def amount_processed(self) -> int:
        return sum(entry.amount_processed for entry in self.processing_history)
