"""Settlement waterfall: senior principal, then interest, then owner residual."""
from __future__ import annotations

import logging
from collections.abc import Callable, Mapping
from datetime import datetime, timezone

from ..amounts import STABLE_DECIMALS, Amount
from ..errors import InvalidTransitionError, KeeperError, LedgerOutcomeError
from ..interfaces.ledger import ExecutionLedger
from ..models import (
    LeveragePosition,
    Notification,
    NotificationCategory,
    SettlementOutcome,
    SettlementRecord,
    Severity,
)
from ..retry import RetryPolicy
from ..risk import allocate_waterfall
from .guard import TransitionGuard
from .notifications import NotificationDispatcher
from .position_ledger import SETTLEABLE_STATUSES, PositionLedgerMirror

logger = logging.getLogger(__name__)


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def check_conservation(
    outcome: SettlementOutcome, gross: Amount, principal: Amount, interest: Amount
) -> None:
    """Raise ``LedgerOutcomeError`` if a settlement result breaks the waterfall rules."""
    parts = (outcome.senior_repayment, outcome.interest_repayment, outcome.residual_to_owner)
    if any(p.is_negative for p in parts):
        raise LedgerOutcomeError("Settlement produced a negative allocation")
    if outcome.total > gross:
        raise LedgerOutcomeError(
            f"Settlement allocated {outcome.total} out of a gross {gross}"
        )
    if outcome.senior_repayment > principal:
        raise LedgerOutcomeError("Senior repayment exceeds outstanding principal")
    if outcome.interest_repayment > interest:
        raise LedgerOutcomeError("Interest repayment exceeds accrued interest")
    if gross < principal + interest and outcome.residual_to_owner:
        raise LedgerOutcomeError("Residual paid although debt was not covered")


class SettlementWorkflow:
    """Apply an external settlement event to an ACTIVE or LIQUIDATED position."""

    def __init__(
        self,
        mirror: PositionLedgerMirror,
        ledger: ExecutionLedger,
        notifications: NotificationDispatcher,
        retry: RetryPolicy,
        guard: TransitionGuard,
        clock: Callable[[], datetime] = _utcnow,
    ) -> None:
        self._mirror = mirror
        self._ledger = ledger
        self._notifications = notifications
        self._retry = retry
        self._guard = guard
        self._clock = clock

    async def settle(self, position_id: int, gross_amount: Amount) -> LeveragePosition:
        if gross_amount.decimals != STABLE_DECIMALS or gross_amount.is_negative:
            raise ValueError("Settlement amount must be a non-negative stable amount")

        with self._guard.claim(position_id, "settlement"):
            position = self._mirror.require_position(position_id)
            if position.status not in SETTLEABLE_STATUSES:
                raise InvalidTransitionError(
                    f"Position {position_id} is {position.status.value}; cannot settle"
                )

            principal = await self._retry.call(
                self._ledger.read_outstanding_debt,
                position_id,
                description=f"read debt of position {position_id}",
            )
            interest = await self._retry.call(
                self._ledger.read_accrued_interest,
                position_id,
                description=f"read interest of position {position_id}",
            )
            expected = allocate_waterfall(gross_amount, principal, interest)
            logger.info(
                "Settling position %d: gross $%s -> senior $%s, interest $%s, residual $%s",
                position_id,
                gross_amount.format(),
                expected.senior.format(),
                expected.interest.format(),
                expected.residual.format(),
            )

            outcome = await self._retry.call(
                self._ledger.execute_settlement,
                position_id,
                gross_amount,
                description=f"settle position {position_id}",
            )
            check_conservation(outcome, gross_amount, principal, interest)
            if outcome.total != expected.total or outcome.senior_repayment != expected.senior:
                logger.warning(
                    "Ledger settlement for position %d differs from local waterfall "
                    "(ledger total $%s, expected $%s)",
                    position_id,
                    outcome.total.format(),
                    expected.total.format(),
                )

            record = SettlementRecord(
                timestamp=self._clock(),
                gross_amount=gross_amount,
                senior_repayment=outcome.senior_repayment,
                interest_repayment=outcome.interest_repayment,
                residual_to_owner=outcome.residual_to_owner,
                prior_status=position.status,
                reference=outcome.reference,
            )
            updated = self._mirror.record_settlement(position_id, record)

        await self._notifications.dispatch(
            Notification(
                recipient=updated.owner,
                header="Position Settled",
                detail=(
                    f"Settlement of ${gross_amount.format()} processed: "
                    f"${record.senior_repayment.format()} principal and "
                    f"${record.interest_repayment.format()} interest repaid, "
                    f"${record.residual_to_owner.format()} paid to you."
                ),
                severity=Severity.INFO,
                category=NotificationCategory.SETTLEMENT,
                metadata={
                    "position_id": position_id,
                    "reference": record.reference,
                    "senior": str(record.senior_repayment),
                    "interest": str(record.interest_repayment),
                    "residual": str(record.residual_to_owner),
                },
            )
        )
        return updated

    async def settle_pending(
        self, gross_by_position: Mapping[int, Amount]
    ) -> dict[int, LeveragePosition | None]:
        """Settle several positions; one failure does not stop the others."""
        results: dict[int, LeveragePosition | None] = {}
        for position_id, gross in gross_by_position.items():
            try:
                results[position_id] = await self.settle(position_id, gross)
            except KeeperError as e:
                logger.error("Failed to settle position %d: %s", position_id, e)
                results[position_id] = None
        return results
