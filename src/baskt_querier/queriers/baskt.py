"""BasktQuerier — metadata + ledger + resolved assets into ``CombinedBaskt``.

NAV falls back in order: computed from current asset prices, the latest
recorded NAV sample, the baseline NAV.
"""

from __future__ import annotations

import asyncio
from typing import List, Mapping, Optional, Tuple

import structlog

from baskt_querier.calculations import NavAllocation, compute_nav, to_usd
from baskt_querier.combine import combine_baskt, normalize_key, pair_one, pair_sources, resolve_baskt_assets
from baskt_querier.entities import BasktNav, CombinedAsset, CombinedBaskt, PerformanceWindows, QueryResult
from baskt_querier.errors import ComputationError
from baskt_querier.gateway import MetadataGateway
from baskt_querier.ledger import LedgerBaskt, LedgerReader
from baskt_querier.queriers.asset import AssetQuerier
from baskt_querier.queriers.base import envelope, ledger_call
from baskt_querier.queriers.price import PriceQuerier
from baskt_querier.records import BasktAssetConfig, BasktRecord
from baskt_querier.timeseries import NAVS, PriceSample

logger = structlog.get_logger()


def nav_from_prices(baskt: CombinedBaskt, assets: Mapping[str, CombinedAsset]) -> Optional[int]:
    """NAV from live prices, or ``None`` when any allocated asset lacks a price."""
    if not baskt.allocations:
        return None
    lookup = {normalize_key(k): v for k, v in assets.items()}
    legs: List[NavAllocation] = []
    for alloc in baskt.allocations:
        asset = lookup.get(normalize_key(alloc.asset_id))
        if asset is None or asset.price_raw <= 0:
            return None
        legs.append(
            NavAllocation(
                direction=alloc.direction,
                weight=alloc.weight,
                baseline_price=alloc.baseline_price,
                current_price=asset.price_raw,
            )
        )
    try:
        return compute_nav(legs, baskt.baseline_nav)
    except ComputationError as exc:
        logger.warning("baskt_nav_uncomputable", baskt_id=baskt.baskt_id, error=str(exc))
        return None


class BasktQuerier:
    def __init__(
        self,
        gateway: MetadataGateway,
        ledger: LedgerReader,
        assets: AssetQuerier,
        prices: PriceQuerier,
    ) -> None:
        self._gateway = gateway
        self._ledger = ledger
        self._assets = assets
        self._prices = prices

    def _enrich(
        self,
        baskt: CombinedBaskt,
        assets: Mapping[str, CombinedAsset],
        nav_series: Mapping[str, Tuple[PriceSample, PerformanceWindows]],
    ) -> Tuple[CombinedBaskt, str]:
        history = nav_series.get(baskt.baskt_id)
        nav = nav_from_prices(baskt, assets)
        source = "prices"
        if nav is None and history is not None:
            nav, source = history[0].raw, "history"
        if nav is None:
            nav, source = baskt.baseline_nav, "baseline"
        enriched = baskt.model_copy(
            update={
                "assets": resolve_baskt_assets(baskt.allocations, assets),
                "nav": nav,
                "price": to_usd(nav),
                "performance": history[1] if history is not None else PerformanceWindows(),
            }
        )
        return enriched, source

    # ------------------------------------------------------------------
    # Internal loaders
    # ------------------------------------------------------------------

    async def load_all_with_source(self) -> List[Tuple[CombinedBaskt, str]]:
        """Every baskt with the source its NAV came from."""
        metadata, accounts, assets = await asyncio.gather(
            self._gateway.get_all_baskts(),
            ledger_call(self._ledger.get_baskts(), "Failed to read ledger baskts"),
            self._assets.load_asset_lookup(),
        )
        combined = [
            combine_baskt(source)
            for source in pair_sources(metadata, accounts, lambda m: m.baskt_id, lambda a: a.address)
        ]
        nav_series = await self._prices.compute_batch_performance([b.baskt_id for b in combined], series=NAVS)
        return [self._enrich(b, assets, nav_series) for b in combined]

    async def load_all_baskts(self) -> List[CombinedBaskt]:
        return [baskt for baskt, _ in await self.load_all_with_source()]

    async def load_baskt(self, baskt_id: str) -> Optional[Tuple[CombinedBaskt, str]]:
        metadata, account = await asyncio.gather(
            self._gateway.get_baskt(baskt_id),
            ledger_call(self._ledger.get_baskt(baskt_id), "Failed to read ledger baskt"),
        )
        source = pair_one(baskt_id, metadata, account)
        if source is None:
            return None
        baskt = combine_baskt(source)
        assets, nav_series = await asyncio.gather(
            self._assets.load_asset_lookup([a.asset_id for a in baskt.allocations]),
            self._prices.compute_batch_performance([baskt.baskt_id], series=NAVS),
        )
        return self._enrich(baskt, assets, nav_series)

    # ------------------------------------------------------------------
    # Public API
    # ------------------------------------------------------------------

    @envelope("get_all_baskts")
    async def get_all_baskts(self, public_only: bool = False, creator: Optional[str] = None) -> QueryResult:
        baskts = await self.load_all_baskts()
        if public_only:
            baskts = [b for b in baskts if b.is_public]
        if creator:
            baskts = [b for b in baskts if b.creator.lower() == creator.lower()]
        return QueryResult.ok(baskts)

    @envelope("get_baskt_by_address")
    async def get_baskt_by_address(self, baskt_id: str) -> QueryResult:
        loaded = await self.load_baskt(baskt_id)
        if loaded is None:
            return QueryResult.not_found(f"Baskt {baskt_id} not found")
        return QueryResult.ok(loaded[0])

    @envelope("get_baskt_by_uid")
    async def get_baskt_by_uid(self, uid: int) -> QueryResult:
        metadata = await self._gateway.get_baskt_by_uid(uid)
        baskt_id = metadata.baskt_id if metadata is not None else self._ledger.baskt_address(uid)
        loaded = await self.load_baskt(baskt_id)
        if loaded is None:
            return QueryResult.not_found(f"Baskt with uid {uid} not found")
        return QueryResult.ok(loaded[0])

    @envelope("get_baskt_nav")
    async def get_baskt_nav(self, baskt_id: str) -> QueryResult:
        loaded = await self.load_baskt(baskt_id)
        if loaded is None:
            return QueryResult.not_found(f"Baskt {baskt_id} not found")
        baskt, source = loaded
        return QueryResult.ok(
            BasktNav(
                baskt_id=baskt.baskt_id,
                nav=baskt.nav,
                price=baskt.price,
                baseline_nav=baskt.baseline_nav,
                source=source,
            )
        )

    @envelope("get_baskts_by_asset")
    async def get_baskts_by_asset(self, asset_address: str) -> QueryResult:
        key = normalize_key(asset_address)
        baskts = await self.load_all_baskts()
        return QueryResult.ok(
            [b for b in baskts if any(normalize_key(a.asset_id) == key for a in b.allocations)]
        )

    @envelope("resync_baskt_metadata")
    async def resync_baskt_metadata(self, baskt_id: str) -> QueryResult:
        """Persist the ledger's view of a baskt into its metadata record."""
        account, existing = await asyncio.gather(
            ledger_call(self._ledger.get_baskt(baskt_id), "Failed to read ledger baskt"),
            self._gateway.get_baskt(baskt_id),
        )
        if account is None:
            return QueryResult.not_found(f"Baskt {baskt_id} not found on ledger")
        await self._gateway.upsert_baskt(_record_from_ledger(account, existing))
        logger.info("baskt_resynced", baskt_id=baskt_id, created=existing is None)
        loaded = await self.load_baskt(account.address)
        return QueryResult.ok(loaded[0] if loaded is not None else None)


def _record_from_ledger(account: LedgerBaskt, existing: Optional[BasktRecord]) -> BasktRecord:
    return BasktRecord(
        baskt_id=account.address,
        uid=account.uid,
        name=existing.name if existing is not None else "",
        creator=account.creator,
        is_public=account.is_public,
        status=account.status,
        assets=[
            BasktAssetConfig(
                asset_id=cfg.asset_id,
                direction=cfg.direction,
                weight=cfg.weight,
                baseline_price=cfg.baseline_price,
            )
            for cfg in account.assets
        ],
        baseline_nav=account.baseline_nav or (existing.baseline_nav if existing is not None else 0),
        creation_tx=existing.creation_tx if existing is not None else None,
        creation_ts=(existing.creation_ts if existing is not None else None) or account.creation_time,
        last_rebalance_ts=account.last_rebalance_time,
    )
