"""Price reads, performance windows and price-gated asset listing."""

from datetime import timedelta

import pytest

from baskt_querier.ledger import LedgerAsset
from baskt_querier.records import AssetRecord

from conftest import NOW

P = 1_000_000


async def _seed_history(querier, asset_id="btc-addr"):
    await querier.prices.record_asset_price(asset_id, 50 * P, at=NOW - timedelta(days=10))
    await querier.prices.record_asset_price(asset_id, 100 * P, at=NOW - timedelta(days=1, hours=2))
    await querier.prices.record_asset_price(asset_id, 110 * P, at=NOW - timedelta(hours=1))


class TestPrices:
    async def test_latest_price(self, querier):
        await _seed_history(querier)
        result = await querier.prices.get_latest_price("btc-addr")
        assert result.success
        assert result.data.raw == 110 * P
        assert result.data.price == 110

    async def test_missing_price_is_not_found(self, querier):
        result = await querier.prices.get_latest_price("nothing")
        assert not result.success
        assert result.status_code == 404

    async def test_performance_uses_at_or_before_then_oldest(self, querier):
        await _seed_history(querier)
        result = await querier.prices.get_asset_performance("btc-addr")
        windows = result.data
        assert windows.daily == pytest.approx(10.0)
        assert windows.weekly == pytest.approx(120.0)
        assert windows.monthly == pytest.approx(120.0)
        assert windows.yearly == pytest.approx(120.0)

    async def test_batch_matches_single_series(self, querier):
        await _seed_history(querier, "btc-addr")
        await _seed_history(querier, "eth-addr")
        single = (await querier.prices.get_asset_performance("btc-addr")).data
        batch = (await querier.prices.get_batch_asset_performance(["btc-addr", "eth-addr", "none"])).data
        assert set(batch) == {"btc-addr", "eth-addr"}
        assert batch["btc-addr"] == single

    async def test_stats_and_range(self, querier):
        await _seed_history(querier)
        start, end = NOW - timedelta(days=30), NOW
        stats = (await querier.prices.get_price_stats("btc-addr", start, end)).data
        assert stats.count == 3
        assert stats.min_price == 50
        assert stats.max_price == 110
        assert stats.change_percent == pytest.approx(120.0)
        assert stats.volatility == pytest.approx(120.0)

        price_range = (await querier.prices.get_price_range("btc-addr", start, end)).data
        assert price_range.latest_price == 110

    async def test_inverted_range_is_a_validation_error(self, querier):
        result = await querier.prices.get_price_stats("btc-addr", NOW, NOW - timedelta(days=1))
        assert not result.success
        assert result.code == "VALIDATION_ERROR"
        assert result.status_code == 400

    async def test_negative_price_rejected(self, querier):
        result = await querier.prices.record_asset_price("btc-addr", -1)
        assert not result.success

    async def test_baskt_performance_without_history_is_zero(self, querier):
        windows = (await querier.prices.get_baskt_performance("unknown")).data
        assert windows.daily == windows.weekly == windows.monthly == windows.yearly == 0.0


class TestAssets:
    async def _seed(self, querier, ledger):
        for address, ticker in (("btc-addr", "BTC"), ("eth-addr", "ETH")):
            await querier.gateway.upsert_asset(AssetRecord(asset_address=address, ticker=ticker, name=ticker))
            ledger.add_asset(LedgerAsset(address=address, ticker=ticker))
        await _seed_history(querier, "btc-addr")

    async def test_assets_without_price_are_excluded(self, querier, ledger):
        await self._seed(querier, ledger)
        result = await querier.assets.get_all_assets()
        assert result.success
        assert [a.ticker for a in result.data] == ["BTC"]
        assert result.data[0].change_24h == pytest.approx(10.0)

    async def test_unpriced_asset_lookup_fails(self, querier, ledger):
        await self._seed(querier, ledger)
        result = await querier.assets.get_asset_by_address("eth-addr")
        assert not result.success
        assert result.status_code == 404

    async def test_lookup_by_ticker_with_performance(self, querier, ledger):
        await self._seed(querier, ledger)
        result = await querier.assets.get_asset_by_ticker("btc", with_performance=True)
        assert result.success
        assert result.data.performance.weekly == pytest.approx(120.0)
        assert result.data.is_active

    async def test_ledger_failure_is_reported_as_onchain_error(self, querier, ledger):
        ledger.failing.add("get_all_assets")
        result = await querier.assets.get_all_assets()
        assert not result.success
        assert result.code == "ONCHAIN_ERROR"

    async def test_unreadable_ledger_asset_is_dropped_from_batch(self, querier, ledger):
        await self._seed(querier, ledger)
        await _seed_history(querier, "eth-addr")
        ledger.failing.add("eth-addr")

        result = await querier.assets.get_assets_by_address(["btc-addr", "eth-addr"])
        assert result.success
        assert [a.asset_address for a in result.data] == ["btc-addr"]
