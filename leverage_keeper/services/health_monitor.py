"""Health monitor — recomputes health factors and reacts to each band.

Bands (basis points):

- < 11000: LIQUIDATABLE → liquidate immediately
- 11000-12499: CRITICAL → alert, at most every 4 hours
- 12500-13999: WARNING → alert once
- >= 14000: HEALTHY → clear alert flags
"""
from __future__ import annotations

import logging
from collections.abc import Callable
from datetime import datetime, timedelta, timezone

from ..errors import KeeperError
from ..interfaces.ledger import ExecutionLedger
from ..models import (
    CycleReport,
    HealthStatus,
    LeveragePosition,
    Notification,
    NotificationCategory,
    Severity,
)
from ..risk import LIQUIDATION_THRESHOLD_BP, WARNING_THRESHOLD_BP, format_bp
from ..retry import RetryPolicy
from .liquidation import LiquidationWorkflow
from .notifications import NotificationDispatcher
from .position_ledger import PositionLedgerMirror
from .price_cache import PriceCache

logger = logging.getLogger(__name__)

CRITICAL_NOTIFICATION_INTERVAL = timedelta(hours=4)


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class HealthMonitor:
    """Sweeps every ACTIVE position once per cycle."""

    def __init__(
        self,
        mirror: PositionLedgerMirror,
        ledger: ExecutionLedger,
        price_cache: PriceCache,
        liquidation: LiquidationWorkflow,
        notifications: NotificationDispatcher,
        retry: RetryPolicy,
        clock: Callable[[], datetime] = _utcnow,
    ) -> None:
        self._mirror = mirror
        self._ledger = ledger
        self._prices = price_cache
        self._liquidation = liquidation
        self._notifications = notifications
        self._retry = retry
        self._clock = clock

    async def run_cycle(self) -> CycleReport:
        """Check every ACTIVE position; failures are isolated per position."""
        positions = self._mirror.get_active_positions()
        logger.info("Starting health check cycle (%d active positions)", len(positions))

        acted = failed = 0
        for position in positions:
            try:
                if await self.check_position(position.position_id):
                    acted += 1
            except KeeperError as e:
                failed += 1
                logger.error(
                    "Failed to check health for position %d: %s", position.position_id, e
                )
            except Exception:
                failed += 1
                logger.exception(
                    "Unexpected error checking position %d", position.position_id
                )

        report = CycleReport(processed=len(positions), acted=acted, failed=failed)
        logger.info(
            "Health check cycle completed (acted=%d, failed=%d)", report.acted, report.failed
        )
        return report

    async def check_position(self, position_id: int) -> bool:
        """Refresh one position's health and act on its band.

        Returns True when a liquidation or notification was triggered.
        """
        price = self._prices.current_price()
        health_factor = await self._retry.call(
            self._ledger.read_health_factor,
            position_id,
            price,
            description=f"read health of position {position_id}",
        )
        position = self._mirror.update_health(position_id, health_factor)
        logger.debug(
            "Position %d: %s (%s)",
            position_id,
            format_bp(health_factor),
            position.health_status.value,
        )

        status = position.health_status
        if status == HealthStatus.LIQUIDATABLE:
            await self._liquidation.liquidate(position_id)
            return True
        if status == HealthStatus.CRITICAL:
            return await self._handle_critical(position)
        if status == HealthStatus.WARNING:
            return await self._handle_warning(position)

        if position.warning_notification_sent or position.critical_notification_sent:
            self._mirror.reset_notification_flags(position_id)
            logger.info("Position %d recovered; alert flags cleared", position_id)
        return False

    async def _handle_critical(self, position: LeveragePosition) -> bool:
        now = self._clock()
        last = position.last_notification_time
        if last is not None and now - last < CRITICAL_NOTIFICATION_INTERVAL:
            return False

        self._mirror.update_notification_tracking(position.position_id, "critical", now)
        await self._notifications.dispatch(
            Notification(
                recipient=position.owner,
                header="Critical: Position Near Liquidation",
                detail=(
                    f"Your leveraged position health is "
                    f"{format_bp(position.current_health_factor)}. Add collateral now "
                    f"to avoid liquidation at {format_bp(LIQUIDATION_THRESHOLD_BP)}."
                ),
                severity=Severity.WARNING,
                category=NotificationCategory.SYSTEM_ALERT,
                metadata={
                    "position_id": position.position_id,
                    "health_factor": position.current_health_factor,
                    "liquidation_threshold": LIQUIDATION_THRESHOLD_BP,
                },
            )
        )
        logger.warning("Critical health alert sent for position %d", position.position_id)
        return True

    async def _handle_warning(self, position: LeveragePosition) -> bool:
        if position.warning_notification_sent:
            return False

        self._mirror.update_notification_tracking(
            position.position_id, "warning", self._clock()
        )
        await self._notifications.dispatch(
            Notification(
                recipient=position.owner,
                header="Position Health Warning",
                detail=(
                    f"Your leveraged position health is "
                    f"{format_bp(position.current_health_factor)}. Consider adding "
                    "collateral to maintain a healthy position."
                ),
                severity=Severity.WARNING,
                category=NotificationCategory.SYSTEM_ALERT,
                metadata={
                    "position_id": position.position_id,
                    "health_factor": position.current_health_factor,
                    "recommended_threshold": WARNING_THRESHOLD_BP,
                },
            )
        )
        logger.info("Warning health alert sent for position %d", position.position_id)
        return True
