"""Historical price feeds."""
from .csv_feed import CsvPriceFeed

__all__ = ["CsvPriceFeed"]
