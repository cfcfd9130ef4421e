"""Combination engine — pure merges of metadata records and ledger accounts.

Sources are paired into one of three tagged shapes per entity key:

- :class:`MetadataOnly`: the ledger is silent (not yet indexed, or pruned)
- :class:`LedgerOnly`: no off-chain record exists yet
- :class:`Combined`: both exist; ledger fields win, metadata supplies
  the off-chain fields (names, logos, tx signatures, history)

Nothing in this module performs I/O.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Callable, Dict, Generic, Iterable, List, Mapping, Optional, TypeVar, Union

from baskt_querier.calculations import (
    BPS_DIVISOR,
    DEFAULT_BASELINE_NAV,
    reconstruct_size,
    to_usd,
    usdc_notional,
)
from baskt_querier.entities import (
    AssetConfig,
    BasktAsset,
    CombinedAsset,
    CombinedBaskt,
    CombinedOrder,
    CombinedPosition,
)
from baskt_querier.ledger import LedgerAsset, LedgerBaskt, LedgerOrder, LedgerPosition
from baskt_querier.records import AssetRecord, BasktAssetConfig, BasktRecord, OrderRecord, PositionRecord
from baskt_querier.timeseries import PriceSample

M = TypeVar("M")
L = TypeVar("L")


# ---------------------------------------------------------------------------
# Tagged sources
# ---------------------------------------------------------------------------

@dataclass(frozen=True)
class MetadataOnly(Generic[M]):
    key: str
    metadata: M


@dataclass(frozen=True)
class LedgerOnly(Generic[L]):
    key: str
    ledger: L


@dataclass(frozen=True)
class Combined(Generic[M, L]):
    key: str
    metadata: M
    ledger: L


Source = Union[MetadataOnly[M], LedgerOnly[L], Combined[M, L]]


def normalize_key(key: str) -> str:
    return key.strip().lower()


def pair_one(key: str, metadata: Optional[M], ledger: Optional[L]) -> Optional[Source]:
    """Tag a single lookup; ``None`` when both sides are absent."""
    key = normalize_key(key)
    if metadata is not None and ledger is not None:
        return Combined(key, metadata, ledger)
    if metadata is not None:
        return MetadataOnly(key, metadata)
    if ledger is not None:
        return LedgerOnly(key, ledger)
    return None


def pair_sources(
    metadata: Iterable[M],
    ledger: Iterable[L],
    metadata_key: Callable[[M], str],
    ledger_key: Callable[[L], str],
) -> List[Source]:
    """Pair two collections on a case-insensitive key, one entry per key.

    Ledger order is kept; metadata-only entries follow in metadata order.
    When a side repeats a key, its first occurrence wins.
    """
    meta_by_key: Dict[str, M] = {}
    for record in metadata:
        meta_by_key.setdefault(normalize_key(metadata_key(record)), record)

    paired: List[Source] = []
    seen: set[str] = set()
    for account in ledger:
        key = normalize_key(ledger_key(account))
        if key in seen:
            continue
        seen.add(key)
        record = meta_by_key.get(key)
        paired.append(Combined(key, record, account) if record is not None else LedgerOnly(key, account))

    for key, record in meta_by_key.items():
        if key not in seen:
            paired.append(MetadataOnly(key, record))
    return paired


def _ledger_wins(base: Dict[str, Any], ledger_values: Mapping[str, Any]) -> Dict[str, Any]:
    """Overlay ledger values, except where the ledger has nothing (``None``)."""
    merged = dict(base)
    for key, value in ledger_values.items():
        if value is not None:
            merged[key] = value
    return merged


# ---------------------------------------------------------------------------
# Assets
# ---------------------------------------------------------------------------

def combine_asset(
    source: Source,
    price: PriceSample,
    change_24h: float = 0.0,
) -> CombinedAsset:
    """Merge one asset. Callers drop assets without a live price before calling."""
    if isinstance(source, Combined):
        meta: AssetRecord = source.metadata
        account: Optional[LedgerAsset] = source.ledger
        values = _asset_from_metadata(meta)
        values.update(account=account, is_active=account.is_active)
    elif isinstance(source, MetadataOnly):
        values = _asset_from_metadata(source.metadata)
        values.update(account=None, is_active=False)
    elif isinstance(source, LedgerOnly):
        account = source.ledger
        values = {
            "asset_address": account.address,
            "ticker": account.ticker,
            "name": account.ticker,
            "account": account,
            "is_active": account.is_active,
        }
    else:
        raise TypeError(f"unexpected asset source: {source!r}")

    return CombinedAsset(
        **values,
        price=price.price,
        price_raw=price.raw,
        latest_price_time=price.time,
        change_24h=change_24h,
    )


def _asset_from_metadata(meta: AssetRecord) -> Dict[str, Any]:
    return {
        "asset_address": meta.asset_address,
        "ticker": meta.ticker,
        "name": meta.name or meta.ticker,
        "logo": meta.logo,
        "config": AssetConfig(price_config=meta.price_config, coingecko_id=meta.coingecko_id),
        "baskt_ids": list(meta.baskt_ids),
    }


def asset_address_of(source: Source) -> str:
    """Address under which an asset's price samples are stored."""
    if isinstance(source, (Combined, MetadataOnly)):
        return source.metadata.asset_address
    if isinstance(source, LedgerOnly):
        return source.ledger.address
    raise TypeError(f"unexpected asset source: {source!r}")


# ---------------------------------------------------------------------------
# Baskts
# ---------------------------------------------------------------------------

def _allocations_from_ledger(account: LedgerBaskt) -> List[BasktAssetConfig]:
    return [
        BasktAssetConfig(
            asset_id=cfg.asset_id,
            direction=cfg.direction,
            weight=cfg.weight,
            baseline_price=cfg.baseline_price,
        )
        for cfg in account.assets
    ]


def _ledger_baskt_fields(account: LedgerBaskt) -> Dict[str, Any]:
    return {
        "baskt_id": account.address,
        "uid": account.uid,
        "creator": account.creator,
        "is_public": account.is_public,
        "status": account.status,
        "allocations": _allocations_from_ledger(account),
        "baseline_nav": account.baseline_nav or None,
        "open_positions": account.open_positions,
        "last_rebalance_ts": account.last_rebalance_time,
    }


def _metadata_baskt_fields(meta: BasktRecord) -> Dict[str, Any]:
    return {
        "baskt_id": meta.baskt_id,
        "uid": meta.uid,
        "name": meta.name,
        "creator": meta.creator,
        "is_public": meta.is_public,
        "status": meta.status,
        "allocations": list(meta.assets),
        "baseline_nav": meta.baseline_nav,
        "creation_tx": meta.creation_tx,
        "creation_ts": meta.creation_ts,
        "last_rebalance_ts": meta.last_rebalance_ts,
    }


def combine_baskt(source: Source) -> CombinedBaskt:
    """Merge one baskt's identity and allocation table.

    NAV, price, performance and resolved assets are attached by the caller.
    """
    if isinstance(source, Combined):
        account: LedgerBaskt = source.ledger
        values = _ledger_wins(_metadata_baskt_fields(source.metadata), _ledger_baskt_fields(account))
        if values.get("creation_ts") is None:
            values["creation_ts"] = account.creation_time
        values["account"] = account
    elif isinstance(source, MetadataOnly):
        values = _metadata_baskt_fields(source.metadata)
    elif isinstance(source, LedgerOnly):
        account = source.ledger
        values = _ledger_wins({"name": f"Baskt #{account.uid}"}, _ledger_baskt_fields(account))
        values["creation_ts"] = account.creation_time
        values["account"] = account
    else:
        raise TypeError(f"unexpected baskt source: {source!r}")

    if not values.get("baseline_nav"):
        values["baseline_nav"] = DEFAULT_BASELINE_NAV
    values["nav"] = values["baseline_nav"]
    values["price"] = to_usd(values["baseline_nav"])
    return CombinedBaskt(**values)


def resolve_baskt_assets(
    allocations: Iterable[BasktAssetConfig],
    assets_by_address: Mapping[str, CombinedAsset],
) -> List[BasktAsset]:
    """Attach allocation weight and direction to each referenced asset.

    Allocations whose asset is missing from the lookup are dropped.
    """
    lookup = {normalize_key(k): v for k, v in assets_by_address.items()}
    resolved: List[BasktAsset] = []
    for alloc in allocations:
        asset = lookup.get(normalize_key(alloc.asset_id))
        if asset is None:
            continue
        resolved.append(
            BasktAsset(
                **{
                    **dict(asset),
                    "weight": alloc.weight * 100 / BPS_DIVISOR,
                },
                direction=alloc.direction,
                weight_bps=alloc.weight,
                baseline_price=alloc.baseline_price,
            )
        )
    return resolved


# ---------------------------------------------------------------------------
# Orders
# ---------------------------------------------------------------------------

def _ledger_order_fields(account: LedgerOrder) -> Dict[str, Any]:
    return {
        "order_pda": account.address,
        "order_id": account.order_id,
        "baskt_id": account.baskt_id,
        "owner": account.owner,
        "status": account.status,
        "action": account.action,
        "order_type": account.order_type,
        "size": account.size,
        "collateral": account.collateral,
        "is_long": account.is_long,
        "leverage_bps": account.leverage_bps,
        "limit_price": account.limit_price,
        "max_slippage_bps": account.max_slippage_bps,
        "target_position": account.target_position,
    }


def combine_order(source: Source) -> CombinedOrder:
    """Merge one order and fill in size / USDC notional for legacy records."""
    persisted_usdc: Optional[int] = None
    account: Optional[LedgerOrder] = None
    if isinstance(source, Combined):
        meta: OrderRecord = source.metadata
        account = source.ledger
        values = _ledger_wins(dict(meta), _ledger_order_fields(account))
        if values.get("create_ts") is None:
            values["create_ts"] = account.timestamp
        persisted_usdc = meta.usdc_size
    elif isinstance(source, MetadataOnly):
        values = dict(source.metadata)
        persisted_usdc = source.metadata.usdc_size
    elif isinstance(source, LedgerOnly):
        account = source.ledger
        values = _ledger_order_fields(account)
        values["create_ts"] = account.timestamp
    else:
        raise TypeError(f"unexpected order source: {source!r}")

    size = reconstruct_size(values["size"], values["collateral"], values["limit_price"])
    values["size"] = size
    values["usdc_size"] = (
        persisted_usdc if persisted_usdc is not None else usdc_notional(size, values["limit_price"])
    )
    values["account"] = account
    return CombinedOrder(**values)


# ---------------------------------------------------------------------------
# Positions
# ---------------------------------------------------------------------------

def _ledger_position_fields(account: LedgerPosition) -> Dict[str, Any]:
    return {
        "position_pda": account.address,
        "position_id": account.position_id,
        "baskt_id": account.baskt_id,
        "owner": account.owner,
        "status": account.status,
        "is_long": account.is_long,
        "entry_price": account.entry_price,
        "exit_price": account.exit_price,
        "funding_accumulated": account.funding_accumulated,
        "open_ts": account.timestamp_open,
        "close_ts": account.timestamp_close,
    }


def combine_position(source: Source) -> CombinedPosition:
    """Merge one position.

    The ledger account holds the *current* size and collateral; metadata
    remembers what was opened. ``remaining_size`` never exceeds ``size``.
    """
    persisted_usdc: Optional[int] = None
    account: Optional[LedgerPosition] = None
    if isinstance(source, Combined):
        meta: PositionRecord = source.metadata
        account = source.ledger
        values = _ledger_wins(dict(meta), _ledger_position_fields(account))
        size = meta.size or account.size
        remaining = account.size
        collateral = meta.collateral or account.collateral
        remaining_collateral = account.collateral
        persisted_usdc = meta.usdc_size
    elif isinstance(source, MetadataOnly):
        meta = source.metadata
        values = dict(meta)
        size = meta.size
        remaining = meta.remaining_size if meta.remaining_size is not None else meta.size
        collateral = meta.collateral
        remaining_collateral = (
            meta.remaining_collateral if meta.remaining_collateral is not None else meta.collateral
        )
        persisted_usdc = meta.usdc_size
    elif isinstance(source, LedgerOnly):
        account = source.ledger
        values = _ledger_position_fields(account)
        size = remaining = account.size
        collateral = remaining_collateral = account.collateral
    else:
        raise TypeError(f"unexpected position source: {source!r}")

    entry_price = values["entry_price"]
    size = reconstruct_size(size, collateral, entry_price)
    if remaining == 0 and values["status"] == "OPEN":
        remaining = size
    values.update(
        size=size,
        remaining_size=min(remaining, size),
        collateral=collateral,
        remaining_collateral=remaining_collateral,
        usdc_size=persisted_usdc if persisted_usdc is not None else usdc_notional(size, entry_price),
        account=account,
    )
    return CombinedPosition(**values)
