"""Unit tests for health-factor arithmetic and banding."""
from __future__ import annotations

import pytest

from leverage_keeper.amounts import collateral, parse_collateral, parse_stable, stable
from leverage_keeper.models import HealthStatus
from leverage_keeper.risk import (
    MAX_HEALTH_FACTOR,
    allocate_waterfall,
    apply_slippage_buffer,
    compute_health_factor,
    determine_health_status,
    format_bp,
)


class TestHealthFactor:
    def test_standard_position(self) -> None:
        assert compute_health_factor(parse_stable("150000"), parse_stable("100000")) == 15000

    def test_floors(self) -> None:
        assert compute_health_factor(stable(2), stable(3)) == 6666

    def test_zero_debt_is_max(self) -> None:
        assert compute_health_factor(stable(1), stable(0)) == MAX_HEALTH_FACTOR

    def test_scale_mismatch(self) -> None:
        with pytest.raises(ValueError):
            compute_health_factor(collateral(1), stable(1))


class TestBands:
    @pytest.mark.parametrize(
        ("health_factor", "expected"),
        [
            (0, HealthStatus.LIQUIDATABLE),
            (10999, HealthStatus.LIQUIDATABLE),
            (11000, HealthStatus.CRITICAL),
            (12499, HealthStatus.CRITICAL),
            (12500, HealthStatus.WARNING),
            (13999, HealthStatus.WARNING),
            (14000, HealthStatus.HEALTHY),
            (MAX_HEALTH_FACTOR, HealthStatus.HEALTHY),
        ],
    )
    def test_boundaries(self, health_factor: int, expected: HealthStatus) -> None:
        assert determine_health_status(health_factor) == expected


class TestSlippage:
    def test_five_percent_buffer(self) -> None:
        assert apply_slippage_buffer(parse_collateral("1")) == parse_collateral("1.05")

    def test_custom_percent(self) -> None:
        assert apply_slippage_buffer(stable(200), percent=10) == stable(220)


class TestFormatBp:
    def test_percentage(self) -> None:
        assert format_bp(15000) == "150.0%"
        assert format_bp(10555) == "105.5%"

    def test_infinite(self) -> None:
        assert format_bp(MAX_HEALTH_FACTOR) == "∞"


class TestWaterfall:
    def test_full_coverage_pays_residual(self) -> None:
        result = allocate_waterfall(
            parse_stable("120000"), parse_stable("100000"), parse_stable("5000")
        )
        assert result.senior == parse_stable("100000")
        assert result.interest == parse_stable("5000")
        assert result.residual == parse_stable("15000")
        assert result.total == parse_stable("120000")

    def test_partial_interest(self) -> None:
        result = allocate_waterfall(
            parse_stable("102000"), parse_stable("100000"), parse_stable("5000")
        )
        assert result.interest == parse_stable("2000")
        assert not result.residual

    def test_below_principal(self) -> None:
        result = allocate_waterfall(
            parse_stable("90000"), parse_stable("100000"), parse_stable("5000")
        )
        assert result.senior == parse_stable("90000")
        assert not result.interest
        assert not result.residual

    def test_rejects_collateral_amounts(self) -> None:
        with pytest.raises(ValueError):
            allocate_waterfall(parse_collateral("1"), stable(0), stable(0))

    def test_rejects_negative(self) -> None:
        with pytest.raises(ValueError):
            allocate_waterfall(stable(-1), stable(0), stable(0))

    @pytest.mark.parametrize(
        ("gross", "principal", "interest"),
        [
            (0, 100_000_000_000, 5_000_000_000),
            (1, 100_000_000_000, 5_000_000_000),
            (99_999_999_999, 100_000_000_000, 5_000_000_000),
            (100_000_000_000, 100_000_000_000, 5_000_000_000),
            (100_000_000_001, 100_000_000_000, 5_000_000_000),
            (104_999_999_999, 100_000_000_000, 5_000_000_000),
            (105_000_000_000, 100_000_000_000, 5_000_000_000),
            (105_000_000_001, 100_000_000_000, 5_000_000_000),
            (210_000_000_000, 100_000_000_000, 5_000_000_000),
            (50_000_000, 0, 0),
            (50_000_000, 0, 70_000_000),
            (50_000_000, 70_000_000, 0),
        ],
    )
    def test_conservation(self, gross: int, principal: int, interest: int) -> None:
        result = allocate_waterfall(stable(gross), stable(principal), stable(interest))

        assert result.total == stable(gross)
        assert result.senior <= stable(principal)
        assert result.interest <= stable(interest)
        assert not any(x.is_negative for x in (result.senior, result.interest, result.residual))
        if gross < principal + interest:
            assert not result.residual
        else:
            assert result.senior == stable(principal)
            assert result.interest == stable(interest)
        if gross < principal:
            assert not result.interest
