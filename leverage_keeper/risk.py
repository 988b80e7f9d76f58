"""Health-factor arithmetic and banding (all values in basis points)."""
from __future__ import annotations

from .amounts import STABLE_DECIMALS, Amount
from .models import HealthStatus, WaterfallAllocation

BASIS_POINTS = 10_000

LIQUIDATION_THRESHOLD_BP = 11_000
CRITICAL_THRESHOLD_BP = 12_500
WARNING_THRESHOLD_BP = 14_000

# Returned for debt-free positions.
MAX_HEALTH_FACTOR = 2**63 - 1

SLIPPAGE_BUFFER_PERCENT = 5


def compute_health_factor(collateral_value: Amount, debt: Amount) -> int:
    """``floor(collateral_value * 10000 / debt)``; both in the stable scale."""
    if collateral_value.decimals != debt.decimals:
        raise ValueError("Collateral value and debt must share a scale")
    if debt.units <= 0:
        return MAX_HEALTH_FACTOR
    return collateral_value.units * BASIS_POINTS // debt.units


def determine_health_status(health_factor: int) -> HealthStatus:
    if health_factor < LIQUIDATION_THRESHOLD_BP:
        return HealthStatus.LIQUIDATABLE
    if health_factor < CRITICAL_THRESHOLD_BP:
        return HealthStatus.CRITICAL
    if health_factor < WARNING_THRESHOLD_BP:
        return HealthStatus.WARNING
    return HealthStatus.HEALTHY


def apply_slippage_buffer(
    amount: Amount, percent: int = SLIPPAGE_BUFFER_PERCENT
) -> Amount:
    return amount.mul_div(100 + percent, 100)


def format_bp(health_factor: int) -> str:
    """Render basis points as a percentage, e.g. 15000 -> '150.0%'."""
    if health_factor >= MAX_HEALTH_FACTOR:
        return "∞"
    whole, rem = divmod(health_factor, 100)
    return f"{whole}.{rem // 10}%"


def allocate_waterfall(gross: Amount, principal: Amount, interest: Amount) -> WaterfallAllocation:
    """Split ``gross`` strictly in order: principal, interest, residual.

    Each layer is capped by what remains of ``gross``. A gross amount below
    principal + interest simply leaves later layers short (residual zero).
    """
    for amount in (gross, principal, interest):
        if amount.decimals != STABLE_DECIMALS:
            raise ValueError("Waterfall amounts must be stable amounts")
        if amount.is_negative:
            raise ValueError("Waterfall amounts must be non-negative")

    senior = principal.min(gross)
    remaining = gross - senior
    interest_paid = interest.min(remaining)
    residual = remaining - interest_paid
    return WaterfallAllocation(senior=senior, interest=interest_paid, residual=residual)
