"""Service modules"""
from .guard import TransitionGuard
from .harvest_keeper import HarvestKeeper
from .health_monitor import HealthMonitor
from .keeper import Keeper
from .liquidation import LiquidationWorkflow
from .notifications import NotificationDispatcher
from .position_ledger import PositionLedgerMirror
from .price_cache import PriceCache
from .scheduler import PeriodicScheduler
from .settlement import SettlementWorkflow, allocate_waterfall

__all__ = [
    "HarvestKeeper",
    "HealthMonitor",
    "Keeper",
    "LiquidationWorkflow",
    "NotificationDispatcher",
    "PeriodicScheduler",
    "PositionLedgerMirror",
    "PriceCache",
    "SettlementWorkflow",
    "TransitionGuard",
    "allocate_waterfall",
]
