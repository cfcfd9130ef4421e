"""Ledger reader interface and the on-chain account shapes it returns.

The ledger is read-only, eventually consistent and rate-limited. Any
client exposing the :class:`LedgerReader` coroutines can back the
queriers; :class:`baskt_querier.mocks.InMemoryLedger` is the bundled one.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from typing import List, Optional, Protocol, runtime_checkable


# ---------------------------------------------------------------------------
# Account shapes
# ---------------------------------------------------------------------------

@dataclass
class LedgerAsset:
    address: str
    ticker: str
    is_active: bool = True
    allow_longs: bool = True
    allow_shorts: bool = True
    listing_time: Optional[datetime] = None


@dataclass
class LedgerAssetConfig:
    asset_id: str
    direction: bool  # True = long
    weight: int  # bps
    baseline_price: int  # 1e6


@dataclass
class LedgerBaskt:
    address: str
    uid: int
    creator: str
    is_public: bool = True
    status: str = "Active"
    assets: List[LedgerAssetConfig] = field(default_factory=list)
    baseline_nav: int = 0
    open_positions: int = 0
    creation_time: Optional[datetime] = None
    last_rebalance_time: Optional[datetime] = None


@dataclass
class LedgerOrder:
    address: str
    order_id: int
    baskt_id: str
    owner: str
    status: str = "PENDING"
    action: str = "Open"
    order_type: str = "Market"
    size: int = 0
    collateral: int = 0
    is_long: bool = True
    leverage_bps: int = 10_000
    limit_price: int = 0
    max_slippage_bps: int = 0
    target_position: Optional[str] = None
    timestamp: Optional[datetime] = None


@dataclass
class LedgerPosition:
    address: str
    position_id: int
    baskt_id: str
    owner: str
    status: str = "OPEN"
    is_long: bool = True
    size: int = 0
    collateral: int = 0
    entry_price: int = 0
    exit_price: Optional[int] = None
    funding_accumulated: int = 0
    timestamp_open: Optional[datetime] = None
    timestamp_close: Optional[datetime] = None


@dataclass
class LedgerPool:
    address: str
    total_liquidity: int = 0
    lp_mint: str = ""
    total_shares: int = 0
    last_update_timestamp: Optional[datetime] = None
    deposit_fee_bps: int = 0
    withdrawal_fee_bps: int = 0
    min_deposit: int = 0
    pending_lp_tokens: int = 0
    withdraw_queue_head: int = 0  # next sequence number to assign
    withdraw_queue_tail: int = 0  # oldest unprocessed sequence number
    rate_limit_period_secs: int = 3600
    last_rate_limit_reset: Optional[datetime] = None


@dataclass
class LedgerWithdrawRequest:
    address: str
    request_id: int
    provider: str
    provider_token_account: str = ""
    requested_lp_amount: int = 0
    remaining_lp: int = 0
    requested_at: Optional[datetime] = None


# ---------------------------------------------------------------------------
# Client interface
# ---------------------------------------------------------------------------

@runtime_checkable
class LedgerReader(Protocol):
    """Read-only access to program accounts.

    Single-account fetches return ``None`` when the account does not exist,
    except :meth:`get_withdraw_request`, which raises
    :class:`baskt_querier.errors.LedgerAccountNotFound` so queue scans can
    tell a pruned slot from a transport failure.
    """

    async def get_all_assets(self) -> List[LedgerAsset]: ...

    async def get_asset(self, address: str) -> Optional[LedgerAsset]: ...

    async def get_baskt(self, address: str) -> Optional[LedgerBaskt]: ...

    async def get_baskts(self) -> List[LedgerBaskt]: ...

    def baskt_address(self, uid: int) -> str: ...

    async def get_all_orders(self) -> List[LedgerOrder]: ...

    async def get_all_positions(self) -> List[LedgerPosition]: ...

    def liquidity_pool_address(self) -> str: ...

    async def get_liquidity_pool(self) -> Optional[LedgerPool]: ...

    def withdraw_request_address(self, index: int) -> str: ...

    async def get_withdraw_request(self, address: str) -> LedgerWithdrawRequest: ...
