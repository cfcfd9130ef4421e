"""Baskt merge, NAV fallbacks and lookups by uid and asset."""

from datetime import timedelta

from baskt_querier.ledger import LedgerAsset, LedgerAssetConfig, LedgerBaskt
from baskt_querier.records import BasktRecord

from conftest import NOW

P = 1_000_000


def _add_baskt(ledger, uid=1):
    address = ledger.baskt_address(uid)
    ledger.add_asset(LedgerAsset(address="a1", ticker="AAA"))
    ledger.add_asset(LedgerAsset(address="a2", ticker="BBB"))
    ledger.add_baskt(
        LedgerBaskt(
            address=address,
            uid=uid,
            creator="Creator1",
            assets=[
                LedgerAssetConfig(asset_id="a1", direction=True, weight=5_000, baseline_price=100 * P),
                LedgerAssetConfig(asset_id="a2", direction=False, weight=5_000, baseline_price=50 * P),
            ],
            baseline_nav=1000 * P,
        )
    )
    return address


async def _price(querier, asset_id, raw):
    await querier.prices.record_asset_price(asset_id, raw, at=NOW - timedelta(minutes=5))


async def test_nav_from_live_prices(querier, ledger):
    baskt_id = _add_baskt(ledger)
    await _price(querier, "a1", 96 * P)
    await _price(querier, "a2", 50 * P)

    result = await querier.baskts.get_baskt_nav(baskt_id)
    assert result.success
    assert result.data.nav == 980 * P
    assert result.data.source == "prices"


async def test_nav_falls_back_to_history_then_baseline(querier, ledger):
    baskt_id = _add_baskt(ledger)
    await _price(querier, "a1", 96 * P)  # a2 has no price

    baseline = (await querier.baskts.get_baskt_nav(baskt_id)).data
    assert baseline.source == "baseline"
    assert baseline.nav == 1000 * P

    await querier.prices.record_baskt_nav(baskt_id, 1020 * P, at=NOW - timedelta(hours=1))
    history = (await querier.baskts.get_baskt_nav(baskt_id)).data
    assert history.source == "history"
    assert history.nav == 1020 * P


async def test_combined_baskt_resolves_assets(querier, ledger):
    baskt_id = _add_baskt(ledger)
    await querier.gateway.upsert_baskt(BasktRecord(baskt_id=baskt_id, uid=1, name="Majors", creator="Creator1"))
    await _price(querier, "a1", 100 * P)
    await _price(querier, "a2", 50 * P)

    baskt = (await querier.baskts.get_baskt_by_address(baskt_id)).data
    assert baskt.name == "Majors"
    assert baskt.status == "Active"
    assert [a.asset_address for a in baskt.assets] == ["a1", "a2"]
    assert baskt.assets[1].direction is False
    assert baskt.assets[0].weight == 50.0


async def test_lookup_by_uid_uses_derived_address(querier, ledger):
    baskt_id = _add_baskt(ledger, uid=7)
    result = await querier.baskts.get_baskt_by_uid(7)
    assert result.success
    assert result.data.baskt_id == baskt_id
    assert result.data.name == "Baskt #7"


async def test_missing_baskt_is_not_found(querier):
    result = await querier.baskts.get_baskt_by_address("nope")
    assert not result.success
    assert result.status_code == 404


async def test_filters_and_asset_membership(querier, ledger):
    _add_baskt(ledger, uid=1)
    _add_baskt(ledger, uid=2)
    ledger.baskts[ledger.baskt_address(2)].is_public = False

    public = (await querier.baskts.get_all_baskts(public_only=True)).data
    assert [b.uid for b in public] == [1]

    by_creator = (await querier.baskts.get_all_baskts(creator="creator1")).data
    assert len(by_creator) == 2

    holding = (await querier.baskts.get_baskts_by_asset("A1")).data
    assert len(holding) == 2


async def test_resync_copies_ledger_view(querier, ledger):
    baskt_id = _add_baskt(ledger)
    result = await querier.baskts.resync_baskt_metadata(baskt_id)
    assert result.success

    stored = await querier.gateway.get_baskt(baskt_id)
    assert stored.uid == 1
    assert [a.asset_id for a in stored.assets] == ["a1", "a2"]
    assert stored.baseline_nav == 1000 * P


async def test_unreadable_ledger_asset_does_not_fail_the_baskt(querier, ledger):
    baskt_id = _add_baskt(ledger)
    await _price(querier, "a1", 96 * P)
    await _price(querier, "a2", 50 * P)
    ledger.failing.add("a2")

    result = await querier.baskts.get_baskt_by_address(baskt_id)
    assert result.success
    assert [a.asset_address for a in result.data.assets] == ["a1"]

    nav = (await querier.baskts.get_baskt_nav(baskt_id)).data
    assert nav.source == "baseline"
    assert nav.nav == 1000 * P
