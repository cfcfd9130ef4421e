"""Pure formulas: NAV, APR with clamping, liquidation price, size reconstruction."""

import pytest

from baskt_querier.calculations import (
    NavAllocation,
    apr_cap,
    calculate_apr,
    clamp_apr,
    compute_nav,
    liquidation_price,
    percent_change,
    pnl_percentage,
    realized_pnl,
    reconstruct_size,
    usdc_notional,
)
from baskt_querier.config import AprClampPolicy
from baskt_querier.errors import ComputationError

P = 1_000_000


class TestNav:
    def test_single_long_leg_tracks_price(self):
        legs = [NavAllocation(direction=True, weight=10_000, baseline_price=100 * P, current_price=110 * P)]
        assert compute_nav(legs, 1000 * P) == 1100 * P

    def test_mixed_directions(self):
        legs = [
            NavAllocation(direction=True, weight=5_000, baseline_price=100 * P, current_price=96 * P),
            NavAllocation(direction=False, weight=5_000, baseline_price=50 * P, current_price=50 * P),
        ]
        assert compute_nav(legs, 1000 * P) == 980 * P

    def test_all_short(self):
        legs = [
            NavAllocation(direction=False, weight=5_000, baseline_price=10 * P, current_price=12 * P),
            NavAllocation(direction=False, weight=5_000, baseline_price=20 * P, current_price=21 * P),
        ]
        assert compute_nav(legs, 1000 * P) == 875 * P

    def test_never_negative(self):
        legs = [NavAllocation(direction=False, weight=10_000, baseline_price=P, current_price=5 * P)]
        assert compute_nav(legs, 1000 * P) == 0

    def test_rejects_zero_baseline_price(self):
        with pytest.raises(ComputationError):
            compute_nav([NavAllocation(True, 10_000, 0, P)], 1000 * P)


class TestApr:
    def test_formula(self):
        # 1 unit of fees per day on 1000 liquidity -> 36.5%
        assert calculate_apr(30, 1000, 30) == pytest.approx(36.5)

    def test_zero_liquidity_or_days(self):
        assert calculate_apr(10, 0, 30) == 0.0
        assert calculate_apr(10, 1000, 0) == 0.0

    @pytest.mark.parametrize(
        "liquidity,expected_cap",
        [(50, 10), (500, 15), (5_000, 20), (50_000, 25)],
    )
    def test_liquidity_tiers(self, liquidity, expected_cap):
        assert apr_cap(liquidity, 5.0, AprClampPolicy()) == expected_cap

    def test_outlier_forces_low_cap(self):
        assert apr_cap(50_000, 150.0, AprClampPolicy()) == 10

    def test_small_pool_with_extreme_fees_is_clamped(self):
        # 50%/day on 500 units over 30 days
        raw = calculate_apr(250 * 30, 500, 30)
        assert raw > 100
        assert clamp_apr(raw, 500, AprClampPolicy()) <= 15

    def test_clamp_never_negative(self):
        assert clamp_apr(-3.0, 1000, AprClampPolicy()) == 0.0


class TestLiquidationPrice:
    def test_long(self):
        price = liquidation_price(entry_price=100 * P, size=P, collateral=10 * P, is_long=True)
        assert price / P == pytest.approx(94.7368, abs=1e-3)

    def test_short(self):
        price = liquidation_price(entry_price=100 * P, size=P, collateral=10 * P, is_long=False)
        assert price / P == pytest.approx(104.7619, abs=1e-3)

    def test_zero_size_is_undefined(self):
        with pytest.raises(ComputationError):
            liquidation_price(entry_price=100 * P, size=0, collateral=P, is_long=True)


def test_reconstruct_size_only_for_legacy_records():
    assert reconstruct_size(0, 50 * P, 25 * P) == 2 * P
    assert reconstruct_size(3, 50 * P, 25 * P) == 3
    assert reconstruct_size(0, 0, 25 * P) == 0


def test_notional_and_percent_change():
    assert usdc_notional(2 * P, 25 * P) == 50 * P
    assert percent_change(110, 100) == pytest.approx(10.0)
    assert percent_change(110, 0) == 0.0
    assert percent_change(None, 100) == 0.0


def test_realized_pnl_by_direction():
    assert realized_pnl(100 * P, 110 * P, 2 * P, is_long=True) == 20 * P
    assert realized_pnl(100 * P, 110 * P, 2 * P, is_long=False) == -20 * P
    # truncates toward zero
    assert realized_pnl(3, 4, 1, is_long=False) == 0


def test_pnl_percentage_needs_collateral():
    assert pnl_percentage(20 * P, 40 * P) == 50.0
    assert pnl_percentage(-P, 3 * P) == -33.33
    assert pnl_percentage(P, 0) is None
