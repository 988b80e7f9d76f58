"""Unit tests for the in-memory simulated ledger."""
from __future__ import annotations

import pytest

from conftest import FakeClock
from leverage_keeper.amounts import parse_collateral, parse_stable, zero_collateral
from leverage_keeper.config import SimulatedPositionConfig
from leverage_keeper.errors import (
    LedgerRejectedError,
    LedgerUnavailableError,
    PositionNotFoundError,
)
from leverage_keeper.ledger import SimulatedLedger
from leverage_keeper.models import PositionStatus
from leverage_keeper.services.price_cache import PriceCache

PRICE = parse_stable("3000")


def _open(ledger: SimulatedLedger) -> int:
    return ledger.open_position(
        "0xA11CE", parse_collateral("50"), parse_stable("100000"), PRICE
    )


class TestPositions:
    @pytest.mark.asyncio
    async def test_open_and_list(self, sim_ledger: SimulatedLedger) -> None:
        assert _open(sim_ledger) == 1
        assert _open(sim_ledger) == 2

        positions = await sim_ledger.list_positions()
        assert [p.position_id for p in positions] == [1, 2]
        assert positions[0].health_factor == 15000
        assert positions[0].initial_ltv == 6666
        assert positions[0].status == PositionStatus.ACTIVE

    def test_seed_from_config(self, sim_ledger: SimulatedLedger) -> None:
        ids = sim_ledger.seed(
            [SimulatedPositionConfig(owner="0xB0B", collateral="10", debt="15000")], PRICE
        )
        assert ids == [1]
        assert len(sim_ledger) == 1

    @pytest.mark.asyncio
    async def test_unknown_position(self, sim_ledger: SimulatedLedger) -> None:
        with pytest.raises(PositionNotFoundError):
            await sim_ledger.read_position_status(42)

    @pytest.mark.asyncio
    async def test_health_factor_at_price(self, sim_ledger: SimulatedLedger) -> None:
        position_id = _open(sim_ledger)
        assert await sim_ledger.read_health_factor(position_id, parse_stable("2100")) == 10500


class TestInterest:
    @pytest.mark.asyncio
    async def test_accrues_linearly(
        self, sim_ledger: SimulatedLedger, clock: FakeClock
    ) -> None:
        position_id = _open(sim_ledger)
        assert not await sim_ledger.read_accrued_interest(position_id)

        clock.advance(days=365)
        # 5% of 100,000 over one year
        assert await sim_ledger.read_accrued_interest(position_id) == parse_stable("5000")

    @pytest.mark.asyncio
    async def test_set_accrued_interest(self, sim_ledger: SimulatedLedger) -> None:
        position_id = _open(sim_ledger)
        sim_ledger.set_accrued_interest(position_id, parse_stable("123"))
        assert await sim_ledger.read_accrued_interest(position_id) == parse_stable("123")


class TestLiquidity:
    @pytest.mark.asyncio
    async def test_requires_tenfold_reserve(
        self, price_cache: PriceCache, clock: FakeClock
    ) -> None:
        ledger = SimulatedLedger(
            dex_stable_reserve=parse_stable("30000"),
            price_source=price_cache.current_price,
            clock=clock,
        )
        # 1 collateral is quoted at 3,000; 10x is exactly the reserve
        assert await ledger.check_liquidity(parse_collateral("1")) is True
        assert await ledger.check_liquidity(parse_collateral("1.01")) is False


class TestHarvest:
    @pytest.mark.asyncio
    async def test_swaps_buffered_amount(self, sim_ledger: SimulatedLedger) -> None:
        position_id = _open(sim_ledger)
        sim_ledger.set_accrued_interest(position_id, parse_stable("3000"))

        outcome = await sim_ledger.execute_harvest(position_id, PRICE)

        assert outcome.collateral_swapped == parse_collateral("1.05")
        assert outcome.stable_received == parse_stable("3150")
        assert outcome.interest_paid == parse_stable("3000")
        assert not await sim_ledger.read_accrued_interest(position_id)
        # The 150 over the interest goes to principal
        assert await sim_ledger.read_outstanding_debt(position_id) == parse_stable("99850")

    @pytest.mark.asyncio
    async def test_nothing_due(self, sim_ledger: SimulatedLedger) -> None:
        position_id = _open(sim_ledger)
        outcome = await sim_ledger.execute_harvest(position_id, PRICE)
        assert outcome.collateral_swapped == zero_collateral()
        assert not outcome.interest_paid


class TestTerminalOperations:
    @pytest.mark.asyncio
    async def test_liquidation(self, sim_ledger: SimulatedLedger) -> None:
        position_id = _open(sim_ledger)
        outcome = await sim_ledger.execute_liquidation(position_id, parse_stable("1800"))

        assert outcome.collateral_sold == parse_collateral("50")
        assert outcome.recovered == parse_stable("90000")
        assert await sim_ledger.read_position_status(position_id) == PositionStatus.LIQUIDATED
        assert await sim_ledger.read_outstanding_debt(position_id) == parse_stable("10000")

    @pytest.mark.asyncio
    async def test_liquidation_requires_active(self, sim_ledger: SimulatedLedger) -> None:
        position_id = _open(sim_ledger)
        await sim_ledger.execute_liquidation(position_id, parse_stable("1800"))
        with pytest.raises(LedgerRejectedError):
            await sim_ledger.execute_liquidation(position_id, parse_stable("1800"))

    @pytest.mark.asyncio
    async def test_settlement_waterfall(self, sim_ledger: SimulatedLedger) -> None:
        position_id = _open(sim_ledger)
        sim_ledger.set_accrued_interest(position_id, parse_stable("5000"))

        outcome = await sim_ledger.execute_settlement(position_id, parse_stable("120000"))

        assert outcome.senior_repayment == parse_stable("100000")
        assert outcome.interest_repayment == parse_stable("5000")
        assert outcome.residual_to_owner == parse_stable("15000")
        assert await sim_ledger.read_position_status(position_id) == PositionStatus.SETTLED

    @pytest.mark.asyncio
    async def test_settlement_rejects_settled(self, sim_ledger: SimulatedLedger) -> None:
        position_id = _open(sim_ledger)
        await sim_ledger.execute_settlement(position_id, parse_stable("1"))
        with pytest.raises(LedgerRejectedError):
            await sim_ledger.execute_settlement(position_id, parse_stable("1"))


class TestFailureInjection:
    @pytest.mark.asyncio
    async def test_fail_next(self, sim_ledger: SimulatedLedger) -> None:
        position_id = _open(sim_ledger)
        sim_ledger.fail_next(2)
        for _ in range(2):
            with pytest.raises(LedgerUnavailableError):
                await sim_ledger.read_position_status(position_id)
        assert await sim_ledger.read_position_status(position_id) == PositionStatus.ACTIVE
        assert sim_ledger.calls.count("read_position_status") == 3
