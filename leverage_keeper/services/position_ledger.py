"""In-memory mirror of leveraged positions held on the execution ledger."""
from __future__ import annotations

import logging
from collections.abc import Callable
from dataclasses import replace
from datetime import datetime, timezone

from ..amounts import Amount, zero_collateral, zero_stable
from ..errors import (
    DuplicatePositionError,
    InsufficientCollateralError,
    InvalidTransitionError,
    PositionNotFoundError,
)
from ..models import (
    HarvestRecord,
    HealthStatus,
    LedgerPosition,
    LeveragePosition,
    LiquidationRecord,
    PositionStats,
    PositionStatus,
    ReconciliationRecord,
    SettlementRecord,
)
from ..risk import determine_health_status, format_bp

logger = logging.getLogger(__name__)

SETTLEABLE_STATUSES = frozenset({PositionStatus.ACTIVE, PositionStatus.LIQUIDATED})

# Status changes the ledger may make without this process.
_LEDGER_TRANSITIONS = {
    PositionStatus.ACTIVE: frozenset(
        {PositionStatus.LIQUIDATED, PositionStatus.SETTLED, PositionStatus.CLOSED}
    ),
    PositionStatus.LIQUIDATED: frozenset({PositionStatus.SETTLED, PositionStatus.CLOSED}),
}


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class PositionLedgerMirror:
    """Cache of ``LeveragePosition`` records keyed by ledger position id.

    Every mutation builds a new frozen record and stores it with a single
    dict assignment, so fields that belong together (health factor and
    band, collateral and harvest totals, status and audit record) are
    always published together.
    """

    def __init__(self, clock: Callable[[], datetime] = _utcnow) -> None:
        self._clock = clock
        self._positions: dict[int, LeveragePosition] = {}

    # ------------------------------------------------------------------
    # Creation / reconciliation
    # ------------------------------------------------------------------

    def create_position(
        self,
        position_id: int,
        owner: str,
        collateral_amount: Amount,
        debt_amount: Amount,
        initial_ltv: int,
        current_health_factor: int,
        asset_id: str = "",
    ) -> LeveragePosition:
        if position_id in self._positions:
            raise DuplicatePositionError(f"Position {position_id} already exists")
        if collateral_amount.is_negative or debt_amount.is_negative:
            raise ValueError("Position amounts must be non-negative")

        now = self._clock()
        position = LeveragePosition(
            position_id=position_id,
            owner=owner.lower(),
            collateral_amount=collateral_amount,
            debt_amount=debt_amount,
            initial_ltv=initial_ltv,
            current_health_factor=current_health_factor,
            health_status=determine_health_status(current_health_factor),
            status=PositionStatus.ACTIVE,
            asset_id=asset_id,
            created_at=now,
            last_harvest_time=now,
        )
        self._positions[position_id] = position
        logger.info(
            "Leverage position created: ID %d for %s (%s)",
            position_id,
            position.owner,
            position.health_status.value,
        )
        return position

    def reconcile(self, snapshot: LedgerPosition) -> LeveragePosition | None:
        """Bring the mirror in line with a ledger snapshot.

        Unknown ACTIVE positions are created; known ACTIVE ones get their
        balances refreshed. A terminal status reported by the ledger is
        adopted, but terminal positions are never revived.
        """
        existing = self._positions.get(snapshot.position_id)
        if existing is None:
            if snapshot.status != PositionStatus.ACTIVE:
                return None
            return self.create_position(
                position_id=snapshot.position_id,
                owner=snapshot.owner,
                collateral_amount=snapshot.collateral_amount,
                debt_amount=snapshot.debt_amount,
                initial_ltv=snapshot.initial_ltv,
                current_health_factor=snapshot.health_factor,
                asset_id=snapshot.asset_id,
            )

        if snapshot.status != existing.status:
            if snapshot.status in _LEDGER_TRANSITIONS.get(existing.status, ()):
                return self.apply_ledger_status(
                    snapshot.position_id, snapshot.status, snapshot.debt_amount
                )
            return existing
        if existing.status != PositionStatus.ACTIVE:
            return existing

        updated = replace(
            existing,
            collateral_amount=snapshot.collateral_amount,
            debt_amount=snapshot.debt_amount,
            current_health_factor=snapshot.health_factor,
            health_status=determine_health_status(snapshot.health_factor),
        )
        self._positions[snapshot.position_id] = updated
        return updated

    def apply_ledger_status(
        self,
        position_id: int,
        ledger_status: PositionStatus,
        debt_amount: Amount | None = None,
    ) -> LeveragePosition:
        """Adopt a terminal status the ledger reached outside this process."""
        position = self.require_position(position_id)
        if ledger_status not in _LEDGER_TRANSITIONS.get(position.status, ()):
            raise InvalidTransitionError(
                f"Position {position_id} cannot move from {position.status.value} "
                f"to {ledger_status.value}"
            )

        debt = debt_amount if debt_amount is not None else position.debt_amount
        record = ReconciliationRecord(
            timestamp=self._clock(),
            prior_status=position.status,
            ledger_status=ledger_status,
            debt_amount=debt,
        )
        updated = replace(
            position,
            status=ledger_status,
            debt_amount=debt,
            collateral_amount=zero_collateral(),
            reconciliation=record,
        )
        self._positions[position_id] = updated
        logger.warning(
            "Position %d is %s on the ledger; mirror moved from %s",
            position_id,
            ledger_status.value,
            position.status.value,
        )
        return updated

    # ------------------------------------------------------------------
    # Queries
    # ------------------------------------------------------------------

    def get_position(self, position_id: int) -> LeveragePosition | None:
        return self._positions.get(position_id)

    def require_position(self, position_id: int) -> LeveragePosition:
        position = self._positions.get(position_id)
        if position is None:
            raise PositionNotFoundError(position_id)
        return position

    def all_positions(self) -> list[LeveragePosition]:
        return sorted(self._positions.values(), key=lambda p: p.position_id)

    def get_active_positions(self) -> list[LeveragePosition]:
        return [p for p in self._positions.values() if p.status == PositionStatus.ACTIVE]

    def get_user_positions(self, owner: str) -> list[LeveragePosition]:
        owner = owner.lower()
        positions = [p for p in self._positions.values() if p.owner == owner]
        return sorted(
            positions,
            key=lambda p: (p.created_at or datetime.min.replace(tzinfo=timezone.utc), p.position_id),
            reverse=True,
        )

    def get_settlement_pending_positions(self) -> list[LeveragePosition]:
        return [p for p in self._positions.values() if p.status in SETTLEABLE_STATUSES]

    def get_liquidatable_positions(self) -> list[LeveragePosition]:
        return [
            p
            for p in self._positions.values()
            if p.status == PositionStatus.ACTIVE
            and p.health_status == HealthStatus.LIQUIDATABLE
        ]

    def stats(self) -> PositionStats:
        active = self.get_active_positions()
        total_collateral = zero_collateral()
        total_debt = zero_stable()
        for p in active:
            total_collateral = total_collateral + p.collateral_amount
            total_debt = total_debt + p.debt_amount

        total_interest = zero_stable()
        for p in self._positions.values():
            total_interest = total_interest + p.total_interest_paid

        return PositionStats(
            total_positions=len(self._positions),
            active_positions=len(active),
            total_collateral=total_collateral,
            total_debt=total_debt,
            total_interest_paid=total_interest,
        )

    def __len__(self) -> int:
        return len(self._positions)

    # ------------------------------------------------------------------
    # Health / notification tracking
    # ------------------------------------------------------------------

    def update_health(self, position_id: int, health_factor: int) -> LeveragePosition:
        position = self.require_position(position_id)
        updated = replace(
            position,
            current_health_factor=health_factor,
            health_status=determine_health_status(health_factor),
        )
        self._positions[position_id] = updated
        logger.info(
            "Position %d health updated: %s (%s)",
            position_id,
            format_bp(health_factor),
            updated.health_status.value,
        )
        return updated

    def update_notification_tracking(
        self, position_id: int, kind: str, at: datetime | None = None
    ) -> LeveragePosition:
        position = self.require_position(position_id)
        changes: dict[str, object] = {"last_notification_time": at or self._clock()}
        if kind == "warning":
            changes["warning_notification_sent"] = True
        elif kind == "critical":
            changes["critical_notification_sent"] = True
        else:
            raise ValueError(f"Unknown notification kind '{kind}'")
        updated = replace(position, **changes)
        self._positions[position_id] = updated
        return updated

    def reset_notification_flags(self, position_id: int) -> LeveragePosition:
        position = self.require_position(position_id)
        updated = replace(
            position,
            warning_notification_sent=False,
            critical_notification_sent=False,
        )
        self._positions[position_id] = updated
        return updated

    # ------------------------------------------------------------------
    # Harvest / terminal transitions
    # ------------------------------------------------------------------

    def record_harvest(
        self,
        position_id: int,
        record: HarvestRecord,
        debt_amount: Amount | None = None,
    ) -> LeveragePosition:
        """Append ``record``, consume the swapped collateral and update health.

        ``debt_amount`` is the ledger principal after the swap; buffer excess
        may have paid some of it down.
        """
        position = self.require_position(position_id)
        if position.status != PositionStatus.ACTIVE:
            raise InvalidTransitionError(
                f"Cannot record harvest on {position.status.value} position {position_id}"
            )
        if record.collateral_swapped.is_negative:
            raise ValueError("Swapped collateral must be non-negative")
        if record.collateral_swapped > position.collateral_amount:
            raise InsufficientCollateralError(
                f"Position {position_id} holds {position.collateral_amount} collateral, "
                f"harvest swapped {record.collateral_swapped}"
            )

        updated = replace(
            position,
            collateral_amount=position.collateral_amount - record.collateral_swapped,
            total_collateral_harvested=position.total_collateral_harvested
            + record.collateral_swapped,
            total_interest_paid=position.total_interest_paid + record.interest_paid,
            last_harvest_time=record.timestamp,
            harvest_history=position.harvest_history + (record,),
            debt_amount=debt_amount if debt_amount is not None else position.debt_amount,
            current_health_factor=record.health_factor_after,
            health_status=determine_health_status(record.health_factor_after),
        )
        self._positions[position_id] = updated
        logger.info(
            "Harvest recorded for position %d: %s USDC interest paid",
            position_id,
            record.interest_paid.format(),
        )
        return updated

    def mark_liquidated(
        self, position_id: int, record: LiquidationRecord
    ) -> LeveragePosition:
        position = self.require_position(position_id)
        if position.status != PositionStatus.ACTIVE:
            raise InvalidTransitionError(
                f"Position {position_id} is {position.status.value}; "
                "only ACTIVE positions can be liquidated"
            )
        if record.collateral_sold > position.collateral_amount:
            raise InsufficientCollateralError(
                f"Liquidation sold {record.collateral_sold} but position {position_id} "
                f"holds {position.collateral_amount}"
            )

        updated = replace(
            position,
            status=PositionStatus.LIQUIDATED,
            health_status=HealthStatus.LIQUIDATABLE,
            collateral_amount=zero_collateral(),
            liquidation=record,
        )
        self._positions[position_id] = updated
        logger.warning(
            "Position %d liquidated (recovered $%s, shortfall $%s)",
            position_id,
            record.recovered.format(),
            record.shortfall.format(),
        )
        return updated

    def record_settlement(
        self, position_id: int, record: SettlementRecord
    ) -> LeveragePosition:
        position = self.require_position(position_id)
        if position.status not in SETTLEABLE_STATUSES:
            raise InvalidTransitionError(
                f"Position {position_id} is {position.status.value}; "
                "only ACTIVE or LIQUIDATED positions can be settled"
            )

        updated = replace(position, status=PositionStatus.SETTLED, settlement=record)
        self._positions[position_id] = updated
        logger.info(
            "Settlement recorded for position %d: $%s pushed to owner",
            position_id,
            record.residual_to_owner.format(),
        )
        return updated
