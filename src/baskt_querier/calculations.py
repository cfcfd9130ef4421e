"""Pure financial formulas.

All ledger quantities are fixed-point integers: prices and NAV carry
``PRICE_PRECISION`` (1e6), weights and fees are basis points.
"""

from __future__ import annotations

from dataclasses import dataclass
from decimal import Decimal
from fractions import Fraction
from typing import Iterable, Optional

from baskt_querier.config import AprClampPolicy
from baskt_querier.errors import ComputationError

PRICE_PRECISION = 1_000_000
BPS_DIVISOR = 10_000
USDC_DECIMALS = 1_000_000
DEFAULT_BASELINE_NAV = 100 * PRICE_PRECISION
SECONDS_PER_DAY = 86_400


@dataclass(frozen=True)
class NavAllocation:
    """One leg of a baskt as seen by the NAV formula."""

    direction: bool  # True = long
    weight: int  # bps
    baseline_price: int
    current_price: int


def to_usd(raw: int) -> Decimal:
    """Convert a 1e6 fixed-point amount into a decimal USD value."""
    return Decimal(raw) / Decimal(PRICE_PRECISION)


def reconstruct_size(size: int, collateral: int, price: int) -> int:
    """Recover ``size`` for legacy records that only stored collateral and price."""
    if size == 0 and collateral > 0 and price > 0:
        return collateral * PRICE_PRECISION // price
    return size


def usdc_notional(size: int, price: int) -> int:
    return size * price // PRICE_PRECISION


def percent_change(current: Optional[int], reference: Optional[int]) -> float:
    """``(current - reference) / reference * 100``; 0 when either side is missing or the reference is 0."""
    if current is None or not reference:
        return 0.0
    return float((Fraction(current) - reference) / reference * 100)


def compute_nav(allocations: Iterable[NavAllocation], baseline_nav: int = DEFAULT_BASELINE_NAV) -> int:
    """NAV of a baskt from its allocation table and current prices.

    ``nav = baseline * (1 + sum(dir * w / 10000 * (p / p0 - 1)))``,
    floored to an integer and never negative.

    Raises
    ------
    ComputationError
        If any allocation has a non-positive baseline price.
    """
    weighted = Fraction(0)
    for alloc in allocations:
        if alloc.baseline_price <= 0:
            raise ComputationError("baseline price must be positive")
        sign = 1 if alloc.direction else -1
        weighted += sign * Fraction(alloc.weight, BPS_DIVISOR) * (
            Fraction(alloc.current_price, alloc.baseline_price) - 1
        )
    nav = baseline_nav * (1 + weighted)
    return max(int(nav), 0)


def calculate_apr(fees_to_blp: float, total_liquidity: float, window_days: float) -> float:
    """Annualized LP return in percent: ``fees / liquidity / days * 365 * 100``."""
    if total_liquidity <= 0 or window_days <= 0:
        return 0.0
    daily_rate = fees_to_blp / total_liquidity / window_days
    return daily_rate * 365 * 100


def apr_cap(total_liquidity: float, raw_apr: float, policy: AprClampPolicy) -> float:
    cap = policy.top_cap
    for bound, tier_cap in policy.tiers:
        if total_liquidity < bound:
            cap = tier_cap
            break
    if raw_apr > policy.outlier_threshold:
        cap = min(cap, policy.outlier_cap)
    return cap


def clamp_apr(raw_apr: float, total_liquidity: float, policy: AprClampPolicy) -> float:
    """Clamp a raw APR to the liquidity tier's ceiling (never negative)."""
    return max(min(raw_apr, apr_cap(total_liquidity, raw_apr, policy)), 0.0)


def liquidation_price(
    entry_price: int,
    size: int,
    collateral: int,
    is_long: bool,
    funding_accumulated: int = 0,
    liquidation_threshold_bps: int = 500,
    closing_fee_bps: int = 0,
) -> int:
    """Price at which a position's equity falls to the maintenance threshold.

    ``liq = (entry*size*dir - (collateral + funding)*P) * BPS
            / (size * (dir*BPS - (threshold + fee)))``

    Raises
    ------
    ComputationError
        When the denominator is zero (zero size or a degenerate threshold).
    """
    direction = 1 if is_long else -1
    denominator = size * (direction * BPS_DIVISOR - (liquidation_threshold_bps + closing_fee_bps))
    if denominator == 0:
        raise ComputationError("liquidation price is undefined for this position")
    numerator = (
        entry_price * size * direction - (collateral + funding_accumulated) * PRICE_PRECISION
    ) * BPS_DIVISOR
    price = Fraction(numerator, denominator)
    return max(int(price), 0)


def realized_pnl(entry_price: int, exit_price: int, size: int, is_long: bool) -> int:
    """Signed PnL in USDC base units, ``(exit - entry) * size / P``, truncated toward zero."""
    direction = 1 if is_long else -1
    return int(Fraction(direction * (exit_price - entry_price) * size, PRICE_PRECISION))


def pnl_percentage(pnl: int, collateral: int) -> Optional[float]:
    """PnL as a percent of collateral, two decimals; ``None`` without collateral."""
    if collateral <= 0:
        return None
    return round(pnl / collateral * 100, 2)
