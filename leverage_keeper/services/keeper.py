"""Keeper orchestration: wires config into the workflows and their schedules."""
from __future__ import annotations

import asyncio
import logging
from collections.abc import Awaitable, Callable, Iterable
from datetime import datetime, timezone
from typing import Any

from ..amounts import Amount, parse_stable
from ..config import AppConfig, SimulatedPositionConfig
from ..feeds import CsvPriceFeed
from ..interfaces.ledger import ExecutionLedger
from ..interfaces.notifier import Notifier
from ..interfaces.price_feed import PriceFeed
from ..ledger import JsonRpcLedger, SimulatedLedger
from ..models import LeveragePosition, PositionStatus
from ..notifications import EmailNotifier, LogNotifier, TelegramNotifier
from ..retry import RetryPolicy
from ..risk import format_bp
from .guard import TransitionGuard
from .harvest_keeper import HarvestKeeper
from .health_monitor import HealthMonitor
from .liquidation import LiquidationWorkflow
from .notifications import NotificationDispatcher
from .position_ledger import PositionLedgerMirror
from .price_cache import PriceCache
from .scheduler import PeriodicScheduler
from .settlement import SettlementWorkflow

logger = logging.getLogger(__name__)

_STATUS_ICONS = {
    "HEALTHY": "✅ Healthy",
    "WARNING": "⚠️ WARNING",
    "CRITICAL": "🚨 CRITICAL",
    "LIQUIDATABLE": "💀 LIQUIDATABLE",
}


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class Keeper:
    """Owns every component of one keeper process.

    Collaborators can be injected for tests; anything left out is built
    from ``config``.
    """

    def __init__(
        self,
        config: AppConfig,
        *,
        ledger: ExecutionLedger | None = None,
        price_feed: PriceFeed | None = None,
        notifiers: Iterable[Notifier] | None = None,
        clock: Callable[[], datetime] = _utcnow,
        sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep,
    ) -> None:
        self._config = config
        self._clock = clock

        self.price_cache = PriceCache(clock)
        if price_feed is None and config.price.source:
            price_feed = CsvPriceFeed(config.price.source)
        self._price_feed = price_feed

        # Simulated positions need a price, so they are opened in prepare().
        self._pending_seed: tuple[SimulatedPositionConfig, ...] = ()
        if ledger is None:
            ledger = self._build_ledger()
        self.ledger = ledger

        self.mirror = PositionLedgerMirror(clock)
        self.guard = TransitionGuard()
        self.retry = RetryPolicy.from_config(config.retry, sleep=sleep)

        if notifiers is None:
            notifiers = self._build_notifiers()
        self.notifications = NotificationDispatcher(notifiers)

        self.liquidation = LiquidationWorkflow(
            self.mirror,
            self.ledger,
            self.price_cache,
            self.notifications,
            self.retry,
            self.guard,
            clock,
        )
        self.settlement = SettlementWorkflow(
            self.mirror, self.ledger, self.notifications, self.retry, self.guard, clock
        )
        self.health_monitor = HealthMonitor(
            self.mirror,
            self.ledger,
            self.price_cache,
            self.liquidation,
            self.notifications,
            self.retry,
            clock,
        )
        self.harvest_keeper = HarvestKeeper(
            self.mirror,
            self.ledger,
            self.price_cache,
            self.notifications,
            self.retry,
            self.guard,
            clock,
        )

        self.schedulers = [
            PeriodicScheduler(
                "price-refresh",
                config.price.refresh_interval_seconds,
                self.price_cache.refresh_async,
                sleep,
            ),
            PeriodicScheduler(
                "health-monitor",
                config.health.check_interval_seconds,
                self.health_monitor.run_cycle,
                sleep,
            ),
            PeriodicScheduler(
                "harvest-keeper",
                config.harvest.interval_seconds,
                self.harvest_keeper.run_cycle,
                sleep,
            ),
            PeriodicScheduler(
                "ledger-sync",
                config.ledger.sync_interval_seconds,
                self.sync_positions,
                sleep,
            ),
        ]
        self._stopped = asyncio.Event()

    # ------------------------------------------------------------------
    # Construction helpers
    # ------------------------------------------------------------------

    def _build_ledger(self) -> ExecutionLedger:
        ledger_cfg = self._config.ledger
        if ledger_cfg.mode == "jsonrpc":
            return JsonRpcLedger(ledger_cfg)

        sim = ledger_cfg.simulated
        self._pending_seed = sim.positions
        return SimulatedLedger(
            annual_interest_bp=sim.annual_interest_bp,
            dex_stable_reserve=parse_stable(sim.dex_stable_reserve),
            price_source=self.price_cache.current_price,
            clock=self._clock,
        )

    def _build_notifiers(self) -> list[Notifier]:
        notifiers: list[Notifier] = [LogNotifier()]
        cfg = self._config.notifications
        if cfg.telegram.enabled:
            notifiers.append(TelegramNotifier(cfg.telegram))
        if cfg.email.enabled:
            notifiers.append(EmailNotifier(cfg.email))
        return notifiers

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    def load_prices(self) -> int:
        return self.price_cache.load(self._price_feed, self._config.price.history_days)

    async def sync_positions(self) -> int:
        """Reconcile the mirror with the ledger's position list."""
        snapshots = await self.retry.call(
            self.ledger.list_positions, description="list ledger positions"
        )
        synced = 0
        for snapshot in snapshots:
            if self.mirror.reconcile(snapshot) is not None:
                synced += 1
        logger.info("Synced %d positions from the ledger", synced)
        return synced

    async def prepare(self) -> None:
        """Load prices and mirror the ledger; idempotent."""
        if not self.price_cache.is_loaded:
            self.load_prices()
        if self._pending_seed and isinstance(self.ledger, SimulatedLedger):
            self.ledger.seed(self._pending_seed, self.price_cache.current_price())
            self._pending_seed = ()
        await self.sync_positions()

    async def start(self) -> None:
        await self.prepare()
        self._stopped.clear()
        for scheduler in self.schedulers:
            scheduler.start()
        logger.info(
            "Keeper started: %d positions, harvest mode %s",
            len(self.mirror),
            self._config.harvest.mode,
        )

    async def stop(self) -> None:
        for scheduler in self.schedulers:
            await scheduler.stop()
        self._stopped.set()
        logger.info("Keeper stopped")

    def request_stop(self) -> None:
        self._stopped.set()

    async def run_forever(self) -> None:
        await self.start()
        try:
            await self._stopped.wait()
        finally:
            await self.stop()

    # ------------------------------------------------------------------
    # Manual operations
    # ------------------------------------------------------------------

    async def settle(self, position_id: int, gross_amount: Amount) -> LeveragePosition:
        return await self.settlement.settle(position_id, gross_amount)

    def build_report(self) -> str:
        """Text summary of all mirrored positions and the current price."""
        lines = ["📋 Leverage Keeper Report", ""]
        if self.price_cache.is_loaded:
            source = "simulated" if self.price_cache.synthetic else "feed"
            override = " (override)" if self.price_cache.is_overridden else ""
            lines.append(
                f"Price: ${self.price_cache.current_price().format()}{override} · {source}"
            )
            lines.append("")

        positions = self.mirror.all_positions()
        if not positions:
            lines.append("No positions found.")
        for p in positions:
            if p.status == PositionStatus.ACTIVE:
                state = _STATUS_ICONS.get(p.health_status.value, p.health_status.value)
            else:
                state = p.status.value
            lines.append(
                f"#{p.position_id} · {p.owner} · {state}\n"
                f"  Collateral: {p.collateral_amount.format(4)}\n"
                f"  Debt: ${p.debt_amount.format()}\n"
                f"  HF: {format_bp(p.current_health_factor)} · "
                f"Interest paid: ${p.total_interest_paid.format()}"
            )

        stats = self.mirror.stats()
        lines.extend(
            [
                "",
                f"Active: {stats.active_positions}/{stats.total_positions} · "
                f"Total debt: ${stats.total_debt.format()}",
                "",
                f"{self._clock().strftime('%Y-%m-%d %H:%M:%S')} UTC",
            ]
        )
        return "\n".join(lines)
