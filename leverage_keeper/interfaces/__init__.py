"""Protocol interfaces for the leverage keeper."""
from .ledger import ExecutionLedger
from .notifier import Notifier
from .price_feed import PriceFeed

__all__ = ["ExecutionLedger", "Notifier", "PriceFeed"]
