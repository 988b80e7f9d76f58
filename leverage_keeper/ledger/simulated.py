"""In-memory execution ledger for the demo mode and tests.

Mirrors the contract-side rules that matter to the keeper: only ACTIVE
positions can be harvested or liquidated, settlement accepts ACTIVE or
LIQUIDATED, and interest accrues linearly on outstanding principal.
"""
from __future__ import annotations

import logging
from collections.abc import Callable, Iterable
from dataclasses import dataclass
from datetime import datetime, timezone

from ..amounts import (
    COLLATERAL_DECIMALS,
    Amount,
    parse_collateral,
    parse_stable,
    zero_collateral,
    zero_stable,
)
from ..config import SimulatedPositionConfig
from ..errors import LedgerRejectedError, LedgerUnavailableError, PositionNotFoundError
from ..models import (
    HarvestOutcome,
    LedgerPosition,
    LiquidationOutcome,
    PositionStatus,
    SettlementOutcome,
)
from ..risk import BASIS_POINTS, allocate_waterfall, apply_slippage_buffer, compute_health_factor

logger = logging.getLogger(__name__)

SECONDS_PER_YEAR = 365 * 24 * 3600

# A swap is only considered safe when the pool holds this many times the quote.
LIQUIDITY_COVERAGE = 10

_ONE_COLLATERAL = 10**COLLATERAL_DECIMALS


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


@dataclass
class _SimPosition:
    position_id: int
    owner: str
    collateral: Amount
    principal: Amount
    interest: Amount
    initial_ltv: int
    asset_id: str
    accrued_at: datetime
    status: PositionStatus = PositionStatus.ACTIVE


class SimulatedLedger:
    def __init__(
        self,
        annual_interest_bp: int = 500,
        dex_stable_reserve: Amount | None = None,
        price_source: Callable[[], Amount] | None = None,
        clock: Callable[[], datetime] = _utcnow,
    ) -> None:
        self.annual_interest_bp = annual_interest_bp
        self.dex_stable_reserve = (
            dex_stable_reserve if dex_stable_reserve is not None else parse_stable("1000000")
        )
        self._price_source = price_source
        self._clock = clock
        self._positions: dict[int, _SimPosition] = {}
        self._next_id = 1
        self._tx_counter = 0
        self._failures_left = 0
        self.calls: list[str] = []

    # ------------------------------------------------------------------
    # Setup helpers
    # ------------------------------------------------------------------

    def open_position(
        self,
        owner: str,
        collateral_amount: Amount,
        debt_amount: Amount,
        price: Amount,
        asset_id: str = "",
    ) -> int:
        """Register a new ACTIVE position and return its id."""
        value = _value_of(collateral_amount, price)
        initial_ltv = (
            debt_amount.units * BASIS_POINTS // value.units if value.units > 0 else 0
        )
        position_id = self._next_id
        self._next_id += 1
        self._positions[position_id] = _SimPosition(
            position_id=position_id,
            owner=owner,
            collateral=collateral_amount,
            principal=debt_amount,
            interest=zero_stable(),
            initial_ltv=initial_ltv,
            asset_id=asset_id,
            accrued_at=self._clock(),
        )
        logger.info(
            "Simulated position %d opened for %s: %s collateral, $%s debt",
            position_id,
            owner,
            collateral_amount,
            debt_amount.format(),
        )
        return position_id

    def seed(self, positions: Iterable[SimulatedPositionConfig], price: Amount) -> list[int]:
        return [
            self.open_position(
                p.owner,
                parse_collateral(p.collateral),
                parse_stable(p.debt),
                price,
                p.asset_id,
            )
            for p in positions
        ]

    def set_accrued_interest(self, position_id: int, interest: Amount) -> None:
        pos = self._require(position_id)
        pos.interest = interest
        pos.accrued_at = self._clock()

    def fail_next(self, count: int = 1) -> None:
        """Make the next ``count`` calls raise ``LedgerUnavailableError``."""
        self._failures_left = count

    def __len__(self) -> int:
        return len(self._positions)

    # ------------------------------------------------------------------
    # Internals
    # ------------------------------------------------------------------

    def _enter(self, method: str) -> None:
        self.calls.append(method)
        if self._failures_left > 0:
            self._failures_left -= 1
            raise LedgerUnavailableError(f"{method}: simulated outage")

    def _require(self, position_id: int) -> _SimPosition:
        try:
            return self._positions[position_id]
        except KeyError:
            raise PositionNotFoundError(position_id) from None

    def _accrue(self, pos: _SimPosition) -> None:
        now = self._clock()
        elapsed = int((now - pos.accrued_at).total_seconds())
        if pos.status != PositionStatus.ACTIVE or elapsed <= 0:
            return
        delta = (
            pos.principal.units
            * self.annual_interest_bp
            * elapsed
            // (BASIS_POINTS * SECONDS_PER_YEAR)
        )
        # Only move the timestamp once something accrued, so frequent reads
        # don't round the interest away.
        if delta > 0:
            pos.interest = pos.interest + Amount(delta, pos.interest.decimals)
            pos.accrued_at = now

    def _reference(self, kind: str) -> str:
        self._tx_counter += 1
        return f"sim-{kind}-{self._tx_counter:06d}"

    def _snapshot(self, pos: _SimPosition, price: Amount | None) -> LedgerPosition:
        health = 0
        if price is not None:
            health = compute_health_factor(
                _value_of(pos.collateral, price), pos.principal + pos.interest
            )
        return LedgerPosition(
            position_id=pos.position_id,
            owner=pos.owner,
            collateral_amount=pos.collateral,
            debt_amount=pos.principal,
            initial_ltv=pos.initial_ltv,
            health_factor=health,
            status=pos.status,
            asset_id=pos.asset_id,
        )

    # ------------------------------------------------------------------
    # Reads
    # ------------------------------------------------------------------

    async def list_positions(self) -> list[LedgerPosition]:
        self._enter("list_positions")
        price = self._price_source() if self._price_source is not None else None
        return [self._snapshot(pos, price) for pos in self._positions.values()]

    async def read_position_status(self, position_id: int) -> PositionStatus:
        self._enter("read_position_status")
        return self._require(position_id).status

    async def read_health_factor(self, position_id: int, price: Amount) -> int:
        self._enter("read_health_factor")
        pos = self._require(position_id)
        self._accrue(pos)
        return compute_health_factor(
            _value_of(pos.collateral, price), pos.principal + pos.interest
        )

    async def read_accrued_interest(self, position_id: int) -> Amount:
        self._enter("read_accrued_interest")
        pos = self._require(position_id)
        self._accrue(pos)
        return pos.interest

    async def read_outstanding_debt(self, position_id: int) -> Amount:
        self._enter("read_outstanding_debt")
        return self._require(position_id).principal

    async def check_liquidity(self, collateral_amount: Amount) -> bool:
        self._enter("check_liquidity")
        if self._price_source is None:
            return True
        quote = _value_of(collateral_amount, self._price_source())
        return self.dex_stable_reserve.units >= quote.units * LIQUIDITY_COVERAGE

    # ------------------------------------------------------------------
    # Writes
    # ------------------------------------------------------------------

    async def execute_harvest(self, position_id: int, price: Amount) -> HarvestOutcome:
        self._enter("execute_harvest")
        pos = self._require(position_id)
        if pos.status != PositionStatus.ACTIVE:
            raise LedgerRejectedError(f"Position {position_id} is not active")
        self._accrue(pos)

        if not pos.interest:
            return HarvestOutcome(
                collateral_swapped=zero_collateral(),
                stable_received=zero_stable(),
                interest_paid=zero_stable(),
                reference=self._reference("harvest"),
            )

        needed = apply_slippage_buffer(
            Amount(pos.interest.units * _ONE_COLLATERAL // price.units, COLLATERAL_DECIMALS)
        )
        swapped = needed.min(pos.collateral)
        received = _value_of(swapped, price)
        if received > self.dex_stable_reserve:
            raise LedgerRejectedError("Insufficient DEX liquidity")

        interest_paid = received.min(pos.interest)
        excess = received - interest_paid
        pos.collateral = pos.collateral - swapped
        pos.interest = pos.interest - interest_paid
        pos.principal = (pos.principal - excess).clamp_zero()
        self.dex_stable_reserve = self.dex_stable_reserve - received

        return HarvestOutcome(
            collateral_swapped=swapped,
            stable_received=received,
            interest_paid=interest_paid,
            reference=self._reference("harvest"),
        )

    async def execute_liquidation(
        self, position_id: int, price: Amount
    ) -> LiquidationOutcome:
        self._enter("execute_liquidation")
        pos = self._require(position_id)
        if pos.status != PositionStatus.ACTIVE:
            raise LedgerRejectedError(f"Position {position_id} is not active")
        self._accrue(pos)

        sold = pos.collateral
        recovered = _value_of(sold, price)
        repaid = allocate_waterfall(recovered, pos.principal, pos.interest)
        pos.principal = pos.principal - repaid.senior
        pos.interest = pos.interest - repaid.interest
        pos.collateral = zero_collateral()
        pos.status = PositionStatus.LIQUIDATED

        return LiquidationOutcome(
            collateral_sold=sold,
            recovered=recovered,
            reference=self._reference("liquidation"),
        )

    async def execute_settlement(
        self, position_id: int, gross_amount: Amount
    ) -> SettlementOutcome:
        self._enter("execute_settlement")
        pos = self._require(position_id)
        if pos.status not in (PositionStatus.ACTIVE, PositionStatus.LIQUIDATED):
            raise LedgerRejectedError(
                f"Position {position_id} is {pos.status.value}; cannot settle"
            )
        self._accrue(pos)

        allocation = allocate_waterfall(gross_amount, pos.principal, pos.interest)
        pos.principal = pos.principal - allocation.senior
        pos.interest = pos.interest - allocation.interest
        pos.collateral = zero_collateral()
        pos.status = PositionStatus.SETTLED

        return SettlementOutcome(
            senior_repayment=allocation.senior,
            interest_repayment=allocation.interest,
            residual_to_owner=allocation.residual,
            reference=self._reference("settlement"),
        )


def _value_of(collateral_amount: Amount, price: Amount) -> Amount:
    return Amount(collateral_amount.units * price.units // _ONE_COLLATERAL, price.decimals)
