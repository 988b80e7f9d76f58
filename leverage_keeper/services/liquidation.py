"""Forced liquidation of unsafe positions."""
from __future__ import annotations

import logging
from collections.abc import Callable
from datetime import datetime, timezone

from ..errors import InvalidTransitionError
from ..interfaces.ledger import ExecutionLedger
from ..models import (
    LeveragePosition,
    LiquidationRecord,
    Notification,
    NotificationCategory,
    PositionStatus,
    Severity,
)
from ..retry import RetryPolicy
from .guard import TransitionGuard
from .notifications import NotificationDispatcher
from .position_ledger import PositionLedgerMirror
from .price_cache import PriceCache

logger = logging.getLogger(__name__)


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class LiquidationWorkflow:
    """Sell all remaining collateral of an ACTIVE position and record the result.

    Proceeds above the outstanding debt are recorded as ``surplus`` on the
    audit record and are not paid out by this workflow.
    """

    def __init__(
        self,
        mirror: PositionLedgerMirror,
        ledger: ExecutionLedger,
        price_cache: PriceCache,
        notifications: NotificationDispatcher,
        retry: RetryPolicy,
        guard: TransitionGuard,
        clock: Callable[[], datetime] = _utcnow,
    ) -> None:
        self._mirror = mirror
        self._ledger = ledger
        self._prices = price_cache
        self._notifications = notifications
        self._retry = retry
        self._guard = guard
        self._clock = clock

    async def liquidate(self, position_id: int) -> LeveragePosition:
        """Liquidate ``position_id``.

        Raises:
            PositionNotFoundError: unknown id.
            InvalidTransitionError: the position is not ACTIVE, locally or
                on the ledger.
            TransitionInProgressError: another workflow holds the position.
            RetryExhaustedError: the ledger stayed unavailable.
        """
        with self._guard.claim(position_id, "liquidation"):
            position = self._mirror.require_position(position_id)
            if position.status != PositionStatus.ACTIVE:
                raise InvalidTransitionError(
                    f"Position {position_id} is already {position.status.value}"
                )

            ledger_status = await self._retry.call(
                self._ledger.read_position_status,
                position_id,
                description=f"read status of position {position_id}",
            )
            if ledger_status != PositionStatus.ACTIVE:
                self._mirror.apply_ledger_status(position_id, ledger_status)
                raise InvalidTransitionError(
                    f"Ledger reports position {position_id} as {ledger_status.value}; "
                    "liquidation skipped"
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
            debt = principal + interest

            price = self._prices.current_price()
            logger.warning(
                "Position %d is liquidatable, selling %s collateral at $%s against $%s debt",
                position_id,
                position.collateral_amount,
                price.format(),
                debt.format(),
            )
            outcome = await self._retry.call(
                self._ledger.execute_liquidation,
                position_id,
                price,
                description=f"liquidate position {position_id}",
            )

            record = LiquidationRecord(
                timestamp=self._clock(),
                collateral_sold=outcome.collateral_sold,
                recovered=outcome.recovered,
                shortfall=(debt - outcome.recovered).clamp_zero(),
                surplus=(outcome.recovered - debt).clamp_zero(),
                price=price,
                reference=outcome.reference,
            )
            updated = self._mirror.mark_liquidated(position_id, record)

        await self._notifications.dispatch(
            Notification(
                recipient=updated.owner,
                header="Position Liquidated",
                detail=(
                    "Your leveraged position has been liquidated due to a low health "
                    f"factor. All collateral was sold for ${record.recovered.format()}"
                    + (
                        f", leaving a shortfall of ${record.shortfall.format()}."
                        if record.shortfall
                        else "."
                    )
                ),
                severity=Severity.ERROR,
                category=NotificationCategory.LIQUIDATION,
                metadata={
                    "position_id": position_id,
                    "reference": record.reference,
                    "collateral_sold": str(record.collateral_sold),
                    "recovered": str(record.recovered),
                    "shortfall": str(record.shortfall),
                },
            )
        )
        logger.warning("Position %d liquidated: %s", position_id, record.reference)
        return updated
