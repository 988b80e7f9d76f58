"""Collateral price cache backed by a historical series.

The cache walks forward through a daily price history, one sample per
refresh tick. Readers only ever dereference ``self._snapshot`` once, and the
refresh path publishes a brand-new immutable ``PriceSnapshot`` with a single
assignment, so a concurrent reader sees either the old or the new price,
never a mix.

When no history is available the cache synthesises a deterministic series:
``lookback_days`` daily samples starting at ``SYNTHETIC_SEED_PRICE`` and
growing at ``SYNTHETIC_ANNUAL_YIELD`` compounded daily.
"""
from __future__ import annotations

import logging
from collections.abc import Callable
from dataclasses import dataclass, replace
from datetime import date, datetime, timedelta, timezone
from decimal import ROUND_DOWN, Decimal

from ..amounts import COLLATERAL_DECIMALS, STABLE_DECIMALS, Amount
from ..errors import PriceUnavailableError
from ..interfaces.price_feed import PriceFeed
from ..models import PriceSample

logger = logging.getLogger(__name__)

SYNTHETIC_SEED_PRICE = Decimal("2850")
SYNTHETIC_ANNUAL_YIELD = Decimal("0.05")

_ONE_COLLATERAL = 10**COLLATERAL_DECIMALS


def synthetic_series(lookback_days: int, end: date) -> list[PriceSample]:
    """Deterministic fallback series ending on ``end``, oldest first."""
    daily = 1 + SYNTHETIC_ANNUAL_YIELD / 365
    quant = Decimal(1).scaleb(-STABLE_DECIMALS)
    start = end - timedelta(days=lookback_days - 1)

    samples: list[PriceSample] = []
    for n in range(lookback_days):
        price = (SYNTHETIC_SEED_PRICE * daily**n).quantize(quant, rounding=ROUND_DOWN)
        samples.append(
            PriceSample(
                date=start + timedelta(days=n),
                price=Amount.parse(price, STABLE_DECIMALS),
            )
        )
    return samples


@dataclass(frozen=True)
class PriceSnapshot:
    samples: tuple[PriceSample, ...]
    index: int = 0
    override: Amount | None = None

    @property
    def sample(self) -> PriceSample:
        return self.samples[self.index]

    @property
    def price(self) -> Amount:
        if self.override is not None:
            return self.override
        return self.samples[self.index].price

    @property
    def at_end(self) -> bool:
        return self.index >= len(self.samples) - 1


@dataclass(frozen=True)
class PriceStats:
    current: Decimal
    min: Decimal
    max: Decimal
    avg: Decimal
    change_percent: Decimal


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class PriceCache:
    """In-memory collateral price series with O(1) current-price reads."""

    def __init__(self, clock: Callable[[], datetime] = _utcnow) -> None:
        self._clock = clock
        self._snapshot: PriceSnapshot | None = None
        self.synthetic = False

    # ------------------------------------------------------------------
    # Loading
    # ------------------------------------------------------------------

    def load(self, feed: PriceFeed | None, lookback_days: int) -> int:
        """Populate the series from ``feed``, falling back to synthetic data.

        Returns the number of samples loaded.

        Raises:
            PriceUnavailableError: neither the feed nor the fallback produced
                a single sample.
        """
        samples: list[PriceSample] = []
        self.synthetic = False

        if feed is not None:
            try:
                samples = feed.load_samples(lookback_days)
            except (OSError, ValueError) as e:
                logger.warning("Price feed unavailable (%s); using simulated data", e)
                samples = []

        if not samples:
            samples = synthetic_series(lookback_days, self._clock().date())
            self.synthetic = True
            logger.info("Initialized %d days of simulated price history", len(samples))

        if not samples:
            raise PriceUnavailableError("No price data could be loaded or synthesised")

        self._snapshot = PriceSnapshot(samples=tuple(samples))
        logger.info(
            "Price cache starting at $%s (%s)",
            self._snapshot.price.format(),
            self._snapshot.sample.date,
        )
        return len(samples)

    @property
    def is_loaded(self) -> bool:
        return self._snapshot is not None

    def _require_snapshot(self) -> PriceSnapshot:
        snapshot = self._snapshot
        if snapshot is None:
            raise PriceUnavailableError("Price cache has not been loaded")
        return snapshot

    # ------------------------------------------------------------------
    # Queries
    # ------------------------------------------------------------------

    def snapshot(self) -> PriceSnapshot:
        return self._require_snapshot()

    def current_price(self) -> Amount:
        """Stable units per one whole collateral token (6 decimals)."""
        return self._require_snapshot().price

    def collateral_to_stable(self, amount: Amount) -> Amount:
        if amount.decimals != COLLATERAL_DECIMALS:
            raise ValueError("collateral_to_stable expects a collateral amount")
        price = self.current_price()
        return Amount(amount.units * price.units // _ONE_COLLATERAL, STABLE_DECIMALS)

    def stable_to_collateral(self, amount: Amount) -> Amount:
        if amount.decimals != STABLE_DECIMALS:
            raise ValueError("stable_to_collateral expects a stable amount")
        price = self.current_price()
        if price.units <= 0:
            raise PriceUnavailableError("Current price is zero")
        return Amount(amount.units * _ONE_COLLATERAL // price.units, COLLATERAL_DECIMALS)

    def price_for_date(self, day: date) -> Amount:
        snapshot = self._require_snapshot()
        for sample in snapshot.samples:
            if sample.date == day:
                return sample.price
        return snapshot.price

    def chart(self, days: int = 30) -> list[PriceSample]:
        samples = self._require_snapshot().samples
        return list(samples[-days:]) if days > 0 else []

    def stats(self) -> PriceStats:
        snapshot = self._require_snapshot()
        prices = [s.price.to_decimal() for s in snapshot.samples]
        current = snapshot.price.to_decimal()
        first = prices[0]
        change = (current - first) / first * 100 if first else Decimal(0)
        return PriceStats(
            current=current,
            min=min(prices),
            max=max(prices),
            avg=sum(prices) / len(prices),
            change_percent=change,
        )

    # ------------------------------------------------------------------
    # Mutation (single writer)
    # ------------------------------------------------------------------

    def refresh(self) -> Amount | None:
        """Advance to the next sample and publish a new snapshot.

        Never raises; on failure the previous price stays in place.
        """
        try:
            current = self._require_snapshot()
            if current.at_end:
                logger.warning(
                    "Reached end of price history; staying at $%s",
                    current.price.format(),
                )
                return current.price

            nxt = replace(current, index=current.index + 1)
            self._snapshot = nxt
            logger.info(
                "Price updated: $%s -> $%s (%s)",
                current.sample.price.format(),
                nxt.sample.price.format(),
                nxt.sample.date,
            )
            return nxt.price
        except Exception:
            logger.exception("Price refresh failed; keeping previous price")
            return None

    async def refresh_async(self) -> None:
        """Scheduler-friendly wrapper around :meth:`refresh`."""
        self.refresh()

    def set_override(self, price: Amount) -> None:
        if price.decimals != STABLE_DECIMALS or price.units <= 0:
            raise ValueError("Override price must be a positive stable amount")
        self._snapshot = replace(self._require_snapshot(), override=price)
        logger.warning("Price override set to $%s", price.format())

    def clear_override(self) -> None:
        self._snapshot = replace(self._require_snapshot(), override=None)
        logger.info("Price override cleared, resuming series prices")

    @property
    def is_overridden(self) -> bool:
        snapshot = self._snapshot
        return snapshot is not None and snapshot.override is not None
