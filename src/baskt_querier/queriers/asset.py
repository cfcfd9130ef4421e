"""AssetQuerier — metadata + ledger + latest price into ``CombinedAsset``."""

from __future__ import annotations

import asyncio
from typing import Dict, List, Optional, Sequence, Tuple

import structlog

from baskt_querier.combine import (
    Source,
    asset_address_of,
    combine_asset,
    pair_one,
    pair_sources,
)
from baskt_querier.entities import CombinedAsset, QueryResult
from baskt_querier.errors import QuerierError
from baskt_querier.gateway import MetadataGateway
from baskt_querier.ledger import LedgerAsset, LedgerReader
from baskt_querier.queriers.base import envelope, ledger_call
from baskt_querier.queriers.price import PriceQuerier

logger = structlog.get_logger()


class AssetQuerier:
    def __init__(self, gateway: MetadataGateway, ledger: LedgerReader, prices: PriceQuerier) -> None:
        self._gateway = gateway
        self._ledger = ledger
        self._prices = prices

    async def _price_sources(self, sources: Sequence[Source], with_performance: bool) -> List[CombinedAsset]:
        """Attach prices to paired sources, dropping those without a live price."""
        addresses = [asset_address_of(s) for s in sources]
        performance = await self._prices.compute_batch_performance(addresses)

        assets: List[CombinedAsset] = []
        for source, address in zip(sources, addresses):
            priced = performance.get(address)
            if priced is None:
                logger.debug("asset_skipped_without_price", address=address)
                continue
            sample, windows = priced
            asset = combine_asset(source, sample, change_24h=windows.daily)
            if with_performance:
                asset.performance = windows
            assets.append(asset)
        return assets

    # ------------------------------------------------------------------
    # Internal loaders (raise on store failure)
    # ------------------------------------------------------------------

    async def load_all_assets(self, with_performance: bool = False) -> List[CombinedAsset]:
        metadata, accounts = await asyncio.gather(
            self._gateway.get_all_assets(),
            ledger_call(self._ledger.get_all_assets(), "Failed to read ledger assets"),
        )
        sources = pair_sources(metadata, accounts, lambda m: m.ticker, lambda a: a.ticker)
        return await self._price_sources(sources, with_performance)

    async def load_assets(self, addresses: Sequence[str], with_performance: bool = False) -> List[CombinedAsset]:
        """Combined assets for the given addresses; unknown or unpriced ones are left out."""
        addresses = list(dict.fromkeys(addresses))
        if not addresses:
            return []
        metadata, *fetched = await asyncio.gather(
            self._gateway.get_assets_by_addresses(addresses),
            *(self._fetch_account(a) for a in addresses),
        )
        meta_by_address = {m.asset_address: m for m in metadata}
        sources = [
            source
            for address, (readable, account) in zip(addresses, fetched)
            if readable and (source := pair_one(address, meta_by_address.get(address), account)) is not None
        ]
        return await self._price_sources(sources, with_performance)

    async def _fetch_account(self, address: str) -> Tuple[bool, Optional[LedgerAsset]]:
        """``(readable, account)``; an unreadable account is dropped from the batch."""
        try:
            return True, await ledger_call(self._ledger.get_asset(address), "Failed to read ledger asset")
        except QuerierError as exc:
            logger.warning("ledger_asset_fetch_failed", address=address, error=str(exc.cause or exc))
            return False, None

    async def load_asset_lookup(self, addresses: Optional[Sequence[str]] = None) -> Dict[str, CombinedAsset]:
        assets = await (self.load_assets(addresses) if addresses is not None else self.load_all_assets())
        return {a.asset_address: a for a in assets}

    # ------------------------------------------------------------------
    # Public API
    # ------------------------------------------------------------------

    @envelope("get_all_assets")
    async def get_all_assets(self, with_performance: bool = False) -> QueryResult:
        return QueryResult.ok(await self.load_all_assets(with_performance))

    @envelope("get_asset_by_address")
    async def get_asset_by_address(self, asset_address: str, with_performance: bool = False) -> QueryResult:
        metadata, account = await asyncio.gather(
            self._gateway.get_asset(asset_address),
            ledger_call(self._ledger.get_asset(asset_address), "Failed to read ledger asset"),
        )
        source = pair_one(asset_address, metadata, account)
        if source is None:
            return QueryResult.not_found(f"Asset {asset_address} not found")
        assets = await self._price_sources([source], with_performance)
        if not assets:
            return QueryResult.not_found(f"No price available for asset {asset_address}")
        return QueryResult.ok(assets[0])

    @envelope("get_assets_by_address")
    async def get_assets_by_address(self, addresses: Sequence[str], with_performance: bool = False) -> QueryResult:
        return QueryResult.ok(await self.load_assets(addresses, with_performance))

    @envelope("get_asset_by_ticker")
    async def get_asset_by_ticker(self, ticker: str, with_performance: bool = False) -> QueryResult:
        metadata, accounts = await asyncio.gather(
            self._gateway.get_asset_by_ticker(ticker),
            ledger_call(self._ledger.get_all_assets(), "Failed to read ledger assets"),
        )
        account = next((a for a in accounts if a.ticker.lower() == ticker.lower()), None)
        source = pair_one(ticker, metadata, account)
        if source is None:
            return QueryResult.not_found(f"Asset {ticker} not found")
        assets = await self._price_sources([source], with_performance)
        if not assets:
            return QueryResult.not_found(f"No price available for asset {ticker}")
        return QueryResult.ok(assets[0])
