"""Price feed protocol — historical price series source."""
from typing import Protocol

from ..models import PriceSample


class PriceFeed(Protocol):
    """Abstract interface for loading a historical collateral price series."""

    def load_samples(self, lookback_days: int) -> list[PriceSample]: ...
