"""InMemoryLedger — deterministic ledger double for dry-run mode and tests.

Implements :class:`baskt_querier.ledger.LedgerReader` over plain dicts,
optionally seeded from a JSON snapshot.
"""

from __future__ import annotations

import hashlib
import json
from dataclasses import fields
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Dict, List, Optional, Set, Type, TypeVar

import structlog

from baskt_querier.errors import LedgerAccountNotFound
from baskt_querier.ledger import (
    LedgerAsset,
    LedgerAssetConfig,
    LedgerBaskt,
    LedgerOrder,
    LedgerPool,
    LedgerPosition,
    LedgerWithdrawRequest,
)

logger = structlog.get_logger()

T = TypeVar("T")


def derive_address(program_id: str, *seeds: Any) -> str:
    """Deterministic account address for ``program_id`` + seeds."""
    digest = hashlib.sha256(program_id.encode())
    for seed in seeds:
        digest.update(b"\x00")
        digest.update(str(seed).encode())
    return digest.hexdigest()[:44]


def _parse_time(value: Any) -> Optional[datetime]:
    if value is None or isinstance(value, datetime):
        return value
    if isinstance(value, (int, float)):
        return datetime.fromtimestamp(value, tz=timezone.utc)
    return datetime.fromisoformat(str(value))


def _build(cls: Type[T], raw: Dict[str, Any]) -> T:
    """Construct a ledger dataclass from a JSON object, ignoring unknown keys."""
    names = {f.name for f in fields(cls)}  # type: ignore[arg-type]
    kwargs = {k: v for k, v in raw.items() if k in names}
    for key, value in kwargs.items():
        if key.endswith(("_time", "_timestamp", "_at", "_reset")) or key.startswith("timestamp"):
            kwargs[key] = _parse_time(value)
    return cls(**kwargs)


class InMemoryLedger:
    """A deterministic, dict-backed ledger.

    Parameters
    ----------
    program_id : str
        Seed for every derived address.
    """

    def __init__(self, program_id: str = "BASKTxProgram111111111111111111111111111111") -> None:
        self.program_id = program_id
        self.assets: Dict[str, LedgerAsset] = {}
        self.baskts: Dict[str, LedgerBaskt] = {}
        self.orders: Dict[str, LedgerOrder] = {}
        self.positions: Dict[str, LedgerPosition] = {}
        self.pool: Optional[LedgerPool] = None
        self.withdraw_requests: Dict[str, LedgerWithdrawRequest] = {}
        self.failing: Set[str] = set()  # account addresses / method names that raise

    # ------------------------------------------------------------------
    # Seeding
    # ------------------------------------------------------------------

    def add_asset(self, asset: LedgerAsset) -> LedgerAsset:
        self.assets[asset.address] = asset
        return asset

    def add_baskt(self, baskt: LedgerBaskt) -> LedgerBaskt:
        self.baskts[baskt.address] = baskt
        return baskt

    def add_order(self, order: LedgerOrder) -> LedgerOrder:
        self.orders[order.address] = order
        return order

    def add_position(self, position: LedgerPosition) -> LedgerPosition:
        self.positions[position.address] = position
        return position

    def set_pool(self, pool: LedgerPool) -> LedgerPool:
        self.pool = pool
        return pool

    def add_withdraw_request(self, request: LedgerWithdrawRequest) -> LedgerWithdrawRequest:
        """Store a request at the address derived from its id and advance the queue head."""
        request.address = self.withdraw_request_address(request.request_id)
        self.withdraw_requests[request.address] = request
        if self.pool is not None and request.request_id >= self.pool.withdraw_queue_head:
            self.pool.withdraw_queue_head = request.request_id + 1
        return request

    def remove_withdraw_request(self, request_id: int) -> None:
        self.withdraw_requests.pop(self.withdraw_request_address(request_id), None)

    @classmethod
    def from_json(cls, path: str | Path, program_id: Optional[str] = None) -> InMemoryLedger:
        """Load a snapshot: ``{"assets": [...], "baskts": [...], "orders": [...],
        "positions": [...], "pool": {...}, "withdraw_requests": [...]}``."""
        data = json.loads(Path(path).read_text(encoding="utf-8"))
        ledger = cls(program_id or data.get("program_id") or "BASKTxProgram111111111111111111111111111111")
        for raw in data.get("assets", []):
            ledger.add_asset(_build(LedgerAsset, raw))
        for raw in data.get("baskts", []):
            configs = [_build(LedgerAssetConfig, c) for c in raw.get("assets", [])]
            baskt = _build(LedgerBaskt, {"address": "", **raw, "assets": configs})
            if not baskt.address:
                baskt.address = ledger.baskt_address(baskt.uid)
            ledger.add_baskt(baskt)
        for raw in data.get("orders", []):
            ledger.add_order(_build(LedgerOrder, raw))
        for raw in data.get("positions", []):
            ledger.add_position(_build(LedgerPosition, raw))
        if data.get("pool"):
            pool = _build(LedgerPool, {"address": ledger.liquidity_pool_address(), **data["pool"]})
            ledger.set_pool(pool)
        for raw in data.get("withdraw_requests", []):
            ledger.add_withdraw_request(_build(LedgerWithdrawRequest, {"address": "", **raw}))
        logger.info(
            "ledger_fixture_loaded",
            path=str(path),
            assets=len(ledger.assets),
            baskts=len(ledger.baskts),
        )
        return ledger

    def _check(self, key: str) -> None:
        if key in self.failing:
            raise ConnectionError(f"ledger unavailable for {key}")

    # ------------------------------------------------------------------
    # LedgerReader
    # ------------------------------------------------------------------

    async def get_all_assets(self) -> List[LedgerAsset]:
        self._check("get_all_assets")
        return list(self.assets.values())

    async def get_asset(self, address: str) -> Optional[LedgerAsset]:
        self._check(address)
        return self.assets.get(address)

    async def get_baskt(self, address: str) -> Optional[LedgerBaskt]:
        self._check(address)
        return self.baskts.get(address)

    async def get_baskts(self) -> List[LedgerBaskt]:
        self._check("get_baskts")
        return list(self.baskts.values())

    def baskt_address(self, uid: int) -> str:
        return derive_address(self.program_id, "baskt", uid)

    async def get_all_orders(self) -> List[LedgerOrder]:
        self._check("get_all_orders")
        return list(self.orders.values())

    async def get_all_positions(self) -> List[LedgerPosition]:
        self._check("get_all_positions")
        return list(self.positions.values())

    def liquidity_pool_address(self) -> str:
        return derive_address(self.program_id, "liquidity_pool")

    async def get_liquidity_pool(self) -> Optional[LedgerPool]:
        self._check("get_liquidity_pool")
        return self.pool

    def withdraw_request_address(self, index: int) -> str:
        return derive_address(self.program_id, "withdraw", index)

    async def get_withdraw_request(self, address: str) -> LedgerWithdrawRequest:
        self._check(address)
        request = self.withdraw_requests.get(address)
        if request is None:
            raise LedgerAccountNotFound(address)
        return request
