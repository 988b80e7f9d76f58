"""CSV price history feed (``timestamp,price`` rows, oldest or newest first)."""
from __future__ import annotations

import csv
import logging
from datetime import datetime
from pathlib import Path

from ..amounts import parse_stable
from ..models import PriceSample

logger = logging.getLogger(__name__)


def _parse_timestamp(raw: str) -> datetime:
    text = raw.strip().replace(" UTC", "")
    for fmt in ("%Y-%m-%d %H:%M:%S", "%Y-%m-%dT%H:%M:%S", "%Y-%m-%d"):
        try:
            return datetime.strptime(text, fmt)
        except ValueError:
            continue
    return datetime.fromisoformat(text)


def _truncate_price(raw: str) -> str:
    """Keep at most 6 fractional digits so the price fits the stable scale."""
    raw = raw.strip()
    if "." in raw:
        whole, frac = raw.split(".", 1)
        return f"{whole}.{frac[:6]}"
    return raw


class CsvPriceFeed:
    """Load daily prices from a CSV export with a header row."""

    def __init__(self, path: str | Path) -> None:
        self.path = Path(path)

    def load_samples(self, lookback_days: int) -> list[PriceSample]:
        """Return the last ``lookback_days`` samples, oldest first.

        Raises:
            FileNotFoundError: the CSV file does not exist.
            ValueError: the file holds no parsable rows.
        """
        if not self.path.exists():
            raise FileNotFoundError(f"Price history not found: {self.path}")

        samples: list[PriceSample] = []
        with open(self.path, newline="") as f:
            reader = csv.reader(f)
            next(reader, None)
            for row in reader:
                if len(row) < 2 or not row[0].strip() or not row[1].strip():
                    continue
                try:
                    when = _parse_timestamp(row[0])
                    price = parse_stable(_truncate_price(row[1]))
                except ValueError:
                    logger.debug("Skipping unparsable price row: %s", row)
                    continue
                if price.units <= 0:
                    continue
                samples.append(PriceSample(date=when.date(), price=price))

        if not samples:
            raise ValueError(f"No price samples in {self.path}")

        samples.sort(key=lambda s: s.date)
        samples = samples[-lookback_days:]
        logger.info(
            "Loaded %d price samples from %s (%s to %s)",
            len(samples),
            self.path,
            samples[0].date,
            samples[-1].date,
        )
        return samples
