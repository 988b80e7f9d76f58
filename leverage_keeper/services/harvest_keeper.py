"""Harvest keeper — converts collateral yield into stable to service interest.

Per ACTIVE position and cycle:

1. read accrued interest (zero → skip)
2. size the swap: ``stable_to_collateral(interest)`` plus a 5% slippage buffer
3. check DEX liquidity for that size (insufficient → skip, retried next cycle)
4. execute the harvest on the ledger and record the result
"""
from __future__ import annotations

import logging
from collections.abc import Callable
from datetime import datetime, timezone

from ..errors import InvalidTransitionError, KeeperError, TransitionInProgressError
from ..interfaces.ledger import ExecutionLedger
from ..models import (
    CycleReport,
    HarvestRecord,
    Notification,
    NotificationCategory,
    PositionStatus,
    Severity,
)
from ..retry import RetryPolicy
from ..risk import apply_slippage_buffer, format_bp
from .guard import TransitionGuard
from .notifications import NotificationDispatcher
from .position_ledger import PositionLedgerMirror
from .price_cache import PriceCache

logger = logging.getLogger(__name__)


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class HarvestKeeper:
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

    async def run_cycle(self) -> CycleReport:
        positions = self._mirror.get_active_positions()
        logger.info("Starting harvest cycle (%d active positions)", len(positions))

        acted = skipped = failed = 0
        for position in positions:
            try:
                record = await self.harvest_position(position.position_id)
            except TransitionInProgressError as e:
                skipped += 1
                logger.info("Position %d busy, harvest deferred: %s", position.position_id, e)
                continue
            except KeeperError as e:
                failed += 1
                logger.error("Failed to harvest position %d: %s", position.position_id, e)
                continue
            except Exception:
                failed += 1
                logger.exception("Unexpected error harvesting position %d", position.position_id)
                continue
            if record is None:
                skipped += 1
            else:
                acted += 1

        report = CycleReport(
            processed=len(positions), acted=acted, skipped=skipped, failed=failed
        )
        logger.info(
            "Harvest cycle completed (harvested=%d, skipped=%d, failed=%d)",
            report.acted,
            report.skipped,
            report.failed,
        )
        return report

    async def harvest_position(self, position_id: int) -> HarvestRecord | None:
        """Harvest one position; returns None when there was nothing to do."""
        with self._guard.claim(position_id, "harvest"):
            current = self._mirror.require_position(position_id)
            if current.status != PositionStatus.ACTIVE:
                raise InvalidTransitionError(
                    f"Position {position_id} is {current.status.value}; nothing to harvest"
                )

            interest = await self._retry.call(
                self._ledger.read_accrued_interest,
                position_id,
                description=f"read interest of position {position_id}",
            )
            if not interest:
                logger.info("Position %d: no interest to pay, skipping", position_id)
                return None

            required = apply_slippage_buffer(self._prices.stable_to_collateral(interest))
            logger.info(
                "Position %d: %s USDC interest due, needs %s collateral",
                position_id,
                interest.format(),
                required,
            )

            has_liquidity = await self._retry.call(
                self._ledger.check_liquidity,
                required,
                description="check DEX liquidity",
            )
            if not has_liquidity:
                logger.warning(
                    "Position %d: insufficient DEX liquidity, skipping", position_id
                )
                return None

            price = self._prices.current_price()
            health_before = await self._retry.call(
                self._ledger.read_health_factor,
                position_id,
                price,
                description=f"read health of position {position_id}",
            )
            outcome = await self._retry.call(
                self._ledger.execute_harvest,
                position_id,
                price,
                description=f"harvest position {position_id}",
            )
            health_after = await self._retry.call(
                self._ledger.read_health_factor,
                position_id,
                price,
                description=f"read health of position {position_id}",
            )
            principal = await self._retry.call(
                self._ledger.read_outstanding_debt,
                position_id,
                description=f"read debt of position {position_id}",
            )

            record = HarvestRecord(
                timestamp=self._clock(),
                collateral_swapped=outcome.collateral_swapped,
                stable_received=outcome.stable_received,
                interest_paid=outcome.interest_paid,
                interest_accrued=interest,
                price=price,
                health_factor_before=health_before,
                health_factor_after=health_after,
                reference=outcome.reference,
            )
            position = self._mirror.record_harvest(position_id, record, principal)

        await self._notifications.dispatch(
            Notification(
                recipient=position.owner,
                header="Yield Harvested",
                detail=(
                    f"{record.interest_paid.format()} USDC interest paid from your "
                    f"collateral yield. Health factor: {format_bp(health_after)}"
                ),
                severity=Severity.INFO,
                category=NotificationCategory.YIELD_HARVESTED,
                metadata={
                    "position_id": position_id,
                    "collateral_swapped": str(record.collateral_swapped),
                    "stable_received": str(record.stable_received),
                    "health_factor_before": health_before,
                    "health_factor_after": health_after,
                    "reference": record.reference,
                },
            )
        )
        logger.info(
            "Position %d harvested: %s USDC paid", position_id, record.interest_paid.format()
        )
        return record
