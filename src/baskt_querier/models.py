"""SQLAlchemy ORM tables.

Two declarative bases:
- ``Base`` for the metadata store (mutable off-chain records)
- ``TimeseriesBase`` for the price / NAV sample store

Financial amounts in the metadata store are ``String`` columns holding
decimal integers (see :mod:`baskt_querier.codec`); nested, append-only
data lives in JSON columns.
"""

from __future__ import annotations

from datetime import datetime
from typing import Any, Dict, List, Optional

from sqlalchemy import JSON, BigInteger, Boolean, Column, DateTime, Float, Integer, String, func
from sqlalchemy.orm import DeclarativeBase


# ---------------------------------------------------------------------------
# SQLAlchemy bases
# ---------------------------------------------------------------------------

class Base(DeclarativeBase):
    """Declarative base for the metadata store."""

    __allow_unmapped__ = True


class TimeseriesBase(DeclarativeBase):
    """Declarative base for the time-series store."""

    __allow_unmapped__ = True


# ---------------------------------------------------------------------------
# Assets & baskts
# ---------------------------------------------------------------------------

class AssetRow(Base):
    __tablename__ = "asset_metadata"

    asset_address: str = Column(String, primary_key=True)
    ticker: str = Column(String, nullable=False, index=True)
    name: str = Column(String, default="")
    logo: str = Column(String, default="")
    price_config: Dict[str, Any] = Column(JSON, default=dict)
    coingecko_id: Optional[str] = Column(String, nullable=True)
    baskt_ids: List[str] = Column(JSON, default=list)
    created_at: datetime = Column(  # type: ignore[assignment]
        DateTime(timezone=True),
        default=func.now(),
    )

    def __repr__(self) -> str:
        return f"<AssetRow {self.ticker} {self.asset_address}>"


class BasktRow(Base):
    __tablename__ = "baskt_metadata"

    baskt_id: str = Column(String, primary_key=True)
    uid: int = Column(Integer, index=True, default=0)
    name: str = Column(String, default="")
    creator: str = Column(String, default="")
    is_public: bool = Column(Boolean, default=True)
    status: str = Column(String, default="Pending")
    assets: List[Dict[str, Any]] = Column(JSON, default=list)  # allocation table
    baseline_nav: str = Column(String, default="0")
    creation_tx: Optional[str] = Column(String, nullable=True)
    creation_ts: Optional[datetime] = Column(DateTime(timezone=True), nullable=True)
    last_rebalance_ts: Optional[datetime] = Column(DateTime(timezone=True), nullable=True)

    def __repr__(self) -> str:
        return f"<BasktRow {self.name} uid={self.uid} status={self.status}>"


# ---------------------------------------------------------------------------
# Orders & positions
# ---------------------------------------------------------------------------

class OrderRow(Base):
    __tablename__ = "order_metadata"

    order_pda: str = Column(String, primary_key=True)
    order_id: int = Column(Integer, default=0)
    baskt_id: str = Column(String, index=True, default="")
    owner: str = Column(String, index=True, default="")
    status: str = Column(String, default="PENDING")
    action: str = Column(String, default="Open")
    order_type: str = Column(String, default="Market")
    size: str = Column(String, default="0")
    collateral: str = Column(String, default="0")
    usdc_size: Optional[str] = Column(String, nullable=True)
    is_long: bool = Column(Boolean, default=True)
    leverage_bps: int = Column(Integer, default=10_000)
    limit_price: str = Column(String, default="0")
    max_slippage_bps: int = Column(Integer, default=0)
    target_position: Optional[str] = Column(String, nullable=True)
    position: Optional[str] = Column(String, nullable=True)
    create_tx: Optional[str] = Column(String, nullable=True)
    create_ts: Optional[datetime] = Column(DateTime(timezone=True), nullable=True)
    fill_tx: Optional[str] = Column(String, nullable=True)
    fill_ts: Optional[datetime] = Column(DateTime(timezone=True), nullable=True)
    cancel_tx: Optional[str] = Column(String, nullable=True)
    cancel_ts: Optional[datetime] = Column(DateTime(timezone=True), nullable=True)

    def __repr__(self) -> str:
        return f"<OrderRow {self.order_pda} {self.action} status={self.status}>"


class PositionRow(Base):
    __tablename__ = "position_metadata"

    position_pda: str = Column(String, primary_key=True)
    position_id: int = Column(Integer, default=0)
    baskt_id: str = Column(String, index=True, default="")
    owner: str = Column(String, index=True, default="")
    status: str = Column(String, default="OPEN")
    is_long: bool = Column(Boolean, default=True)
    entry_price: str = Column(String, default="0")
    exit_price: Optional[str] = Column(String, nullable=True)
    size: str = Column(String, default="0")
    remaining_size: Optional[str] = Column(String, nullable=True)
    collateral: str = Column(String, default="0")
    remaining_collateral: Optional[str] = Column(String, nullable=True)
    usdc_size: Optional[str] = Column(String, nullable=True)
    funding_accumulated: str = Column(String, default="0")
    open_order: Optional[str] = Column(String, nullable=True)
    close_order: Optional[str] = Column(String, nullable=True)
    open_tx: Optional[str] = Column(String, nullable=True)
    open_ts: Optional[datetime] = Column(DateTime(timezone=True), nullable=True)
    close_tx: Optional[str] = Column(String, nullable=True)
    close_ts: Optional[datetime] = Column(DateTime(timezone=True), nullable=True)
    partial_close_history: List[Dict[str, Any]] = Column(JSON, default=list)

    def __repr__(self) -> str:
        return f"<PositionRow {self.position_pda} status={self.status} size={self.size}>"


# ---------------------------------------------------------------------------
# Access
# ---------------------------------------------------------------------------

class AccessCodeRow(Base):
    __tablename__ = "access_codes"

    code: str = Column(String, primary_key=True)
    description: str = Column(String, default="")
    expires_at: Optional[datetime] = Column(DateTime(timezone=True), nullable=True)
    is_used: bool = Column(Boolean, default=False)
    used_by: Optional[str] = Column(String, nullable=True)
    used_at: Optional[datetime] = Column(DateTime(timezone=True), nullable=True)
    created_by: Optional[str] = Column(String, nullable=True)
    created_at: datetime = Column(  # type: ignore[assignment]
        DateTime(timezone=True),
        default=func.now(),
    )


class WalletRow(Base):
    __tablename__ = "authorized_wallets"

    wallet_address: str = Column(String, primary_key=True)  # lower-cased
    access_code_used: str = Column(String, nullable=False)
    authorized_at: datetime = Column(DateTime(timezone=True), nullable=False)  # type: ignore[assignment]
    last_login_at: Optional[datetime] = Column(DateTime(timezone=True), nullable=True)
    is_active: bool = Column(Boolean, default=True)


# ---------------------------------------------------------------------------
# Fees & liquidity
# ---------------------------------------------------------------------------

class FeeEventRow(Base):
    __tablename__ = "fee_events"

    event_id: str = Column(String, primary_key=True)
    event_type: str = Column(String, nullable=False, index=True)
    transaction_signature: str = Column(String, nullable=False, index=True)
    timestamp: datetime = Column(DateTime(timezone=True), nullable=False, index=True)  # type: ignore[assignment]
    owner: str = Column(String, index=True, default="")
    baskt_id: Optional[str] = Column(String, index=True, nullable=True)
    fee_to_treasury: str = Column(String, default="0")
    fee_to_blp: str = Column(String, default="0")
    total_fee: str = Column(String, default="0")
    payload: Dict[str, Any] = Column(JSON, default=dict)

    def __repr__(self) -> str:
        return f"<FeeEventRow {self.event_id} {self.event_type} total={self.total_fee}>"


class PoolRow(Base):
    __tablename__ = "liquidity_pools"

    pool_address: str = Column(String, primary_key=True)
    total_liquidity: str = Column(String, default="0")
    lp_mint: str = Column(String, default="")
    total_shares: str = Column(String, default="0")
    last_update_ts: Optional[datetime] = Column(DateTime(timezone=True), nullable=True)
    deposit_fee_bps: int = Column(Integer, default=0)
    withdrawal_fee_bps: int = Column(Integer, default=0)
    min_deposit: str = Column(String, default="0")
    pending_lp_tokens: str = Column(String, default="0")
    withdraw_queue_head: int = Column(Integer, default=0)
    withdraw_queue_tail: int = Column(Integer, default=0)
    latest_apr: float = Column(Float, default=0.0)
    last_apr_at: Optional[datetime] = Column(DateTime(timezone=True), nullable=True)
    fees_collected_30d: str = Column(String, default="0")
    total_fees_collected: str = Column(String, default="0")


class DepositRow(Base):
    __tablename__ = "liquidity_deposits"

    transaction_signature: str = Column(String, primary_key=True)
    provider: str = Column(String, index=True, nullable=False)
    pool_address: str = Column(String, index=True, nullable=False)
    deposit_amount: str = Column(String, default="0")
    fee_amount: str = Column(String, default="0")
    shares_minted: str = Column(String, default="0")
    net_deposit: str = Column(String, default="0")
    timestamp: datetime = Column(DateTime(timezone=True), nullable=False)  # type: ignore[assignment]


class WithdrawalRequestRow(Base):
    __tablename__ = "withdrawal_requests"

    request_id: int = Column(Integer, primary_key=True, autoincrement=False)
    provider: str = Column(String, index=True, nullable=False)
    provider_token_account: str = Column(String, default="")
    pool_address: str = Column(String, default="")
    requested_lp_amount: str = Column(String, default="0")
    remaining_lp: str = Column(String, default="0")
    requested_ts: Optional[datetime] = Column(DateTime(timezone=True), nullable=True)
    request_tx: Optional[str] = Column(String, nullable=True)
    status: str = Column(String, default="QUEUED")
    processing_history: List[Dict[str, Any]] = Column(JSON, default=list)

    def __repr__(self) -> str:
        return f"<WithdrawalRequestRow #{self.request_id} status={self.status}>"


# ---------------------------------------------------------------------------
# Time-series samples (raw fixed-point, 1e6 precision)
# ---------------------------------------------------------------------------

class AssetPriceRow(TimeseriesBase):
    __tablename__ = "asset_prices"

    asset_id: str = Column(String, primary_key=True)
    time: datetime = Column(DateTime(timezone=True), primary_key=True)  # type: ignore[assignment]
    price: int = Column(BigInteger, nullable=False)


class BasktNavRow(TimeseriesBase):
    __tablename__ = "baskt_navs"

    baskt_id: str = Column(String, primary_key=True)
    time: datetime = Column(DateTime(timezone=True), primary_key=True)  # type: ignore[assignment]
    nav: int = Column(BigInteger, nullable=False)
