"""Integration tests for the harvest keeper."""
from __future__ import annotations

from unittest.mock import AsyncMock

import pytest

from conftest import START, FakeClock
from leverage_keeper.amounts import parse_collateral, parse_stable
from leverage_keeper.errors import InvalidTransitionError, TransitionInProgressError
from leverage_keeper.ledger import SimulatedLedger
from leverage_keeper.models import NotificationCategory, PositionStatus, SettlementRecord
from leverage_keeper.retry import RetryPolicy
from leverage_keeper.services.guard import TransitionGuard
from leverage_keeper.services.harvest_keeper import HarvestKeeper
from leverage_keeper.services.notifications import NotificationDispatcher
from leverage_keeper.services.position_ledger import PositionLedgerMirror
from leverage_keeper.services.price_cache import PriceCache


@pytest.fixture()
def keeper(
    mirror: PositionLedgerMirror,
    sim_ledger: SimulatedLedger,
    price_cache: PriceCache,
    dispatcher: NotificationDispatcher,
    retry: RetryPolicy,
    guard: TransitionGuard,
    clock: FakeClock,
) -> HarvestKeeper:
    return HarvestKeeper(mirror, sim_ledger, price_cache, dispatcher, retry, guard, clock)


class TestHarvestKeeper:
    @pytest.mark.asyncio
    async def test_harvests_accrued_interest(
        self,
        keeper: HarvestKeeper,
        standard_position: int,
        sim_ledger: SimulatedLedger,
        mirror: PositionLedgerMirror,
        notifier: AsyncMock,
    ) -> None:
        sim_ledger.set_accrued_interest(standard_position, parse_stable("3000"))

        record = await keeper.harvest_position(standard_position)

        assert record is not None
        assert record.collateral_swapped == parse_collateral("1.05")
        assert record.interest_paid == parse_stable("3000")
        assert record.interest_accrued == parse_stable("3000")
        assert record.price == parse_stable("3000")
        assert record.health_factor_before == 14563  # 150,000 / 103,000
        assert record.health_factor_after == 14707  # 146,850 / 99,850

        position = mirror.require_position(standard_position)
        assert position.collateral_amount == parse_collateral("48.95")
        assert position.debt_amount == parse_stable("99850")  # 150 buffer excess repaid
        assert position.total_interest_paid == parse_stable("3000")
        assert position.harvest_history == (record,)

        notification = notifier.send.await_args.args[0]
        assert notification.category == NotificationCategory.YIELD_HARVESTED
        assert notification.header == "Yield Harvested"

    @pytest.mark.asyncio
    async def test_zero_interest_skipped(
        self,
        keeper: HarvestKeeper,
        standard_position: int,
        sim_ledger: SimulatedLedger,
        notifier: AsyncMock,
    ) -> None:
        assert await keeper.harvest_position(standard_position) is None
        assert "execute_harvest" not in sim_ledger.calls
        notifier.send.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_insufficient_liquidity_skipped(
        self,
        keeper: HarvestKeeper,
        standard_position: int,
        sim_ledger: SimulatedLedger,
        mirror: PositionLedgerMirror,
    ) -> None:
        sim_ledger.set_accrued_interest(standard_position, parse_stable("3000"))
        sim_ledger.dex_stable_reserve = parse_stable("10000")

        report = await keeper.run_cycle()

        assert report.skipped == 1
        assert report.acted == 0
        assert "execute_harvest" not in sim_ledger.calls
        assert mirror.require_position(standard_position).collateral_amount == parse_collateral("50")

    @pytest.mark.asyncio
    async def test_busy_position_deferred(
        self,
        keeper: HarvestKeeper,
        standard_position: int,
        sim_ledger: SimulatedLedger,
        guard: TransitionGuard,
    ) -> None:
        sim_ledger.set_accrued_interest(standard_position, parse_stable("3000"))

        with guard.claim(standard_position, "liquidation"):
            with pytest.raises(TransitionInProgressError):
                await keeper.harvest_position(standard_position)
            report = await keeper.run_cycle()

        assert report.skipped == 1
        assert "read_accrued_interest" not in sim_ledger.calls

    @pytest.mark.asyncio
    async def test_terminal_position_rejected(
        self,
        keeper: HarvestKeeper,
        standard_position: int,
        mirror: PositionLedgerMirror,
    ) -> None:
        mirror.record_settlement(
            standard_position,
            SettlementRecord(
                timestamp=START,
                gross_amount=parse_stable("100000"),
                senior_repayment=parse_stable("100000"),
                interest_repayment=parse_stable("0"),
                residual_to_owner=parse_stable("0"),
                prior_status=PositionStatus.ACTIVE,
                reference="r",
            ),
        )
        with pytest.raises(InvalidTransitionError):
            await keeper.harvest_position(standard_position)
        assert (await keeper.run_cycle()).processed == 0

    @pytest.mark.asyncio
    async def test_one_failure_does_not_block_others(
        self,
        keeper: HarvestKeeper,
        standard_position: int,
        sim_ledger: SimulatedLedger,
        mirror: PositionLedgerMirror,
        price_cache: PriceCache,
    ) -> None:
        second = sim_ledger.open_position(
            "0xB0B", parse_collateral("10"), parse_stable("15000"), price_cache.current_price()
        )
        mirror.create_position(
            position_id=second,
            owner="0xB0B",
            collateral_amount=parse_collateral("10"),
            debt_amount=parse_stable("15000"),
            initial_ltv=5000,
            current_health_factor=20000,
        )
        sim_ledger.set_accrued_interest(second, parse_stable("300"))
        sim_ledger.fail_next(3)

        report = await keeper.run_cycle()

        assert report.processed == 2
        assert report.failed == 1
        assert report.acted == 1
