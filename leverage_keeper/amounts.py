"""Fixed-point amounts — big-integer base units tagged with their decimal scale."""
from __future__ import annotations

import functools
from dataclasses import dataclass
from decimal import ROUND_DOWN, Decimal, InvalidOperation, localcontext

COLLATERAL_DECIMALS = 18
STABLE_DECIMALS = 6

_PRECISION = 80


@functools.total_ordering
@dataclass(frozen=True)
class Amount:
    """Integer amount in base units, e.g. ``Amount(1_500_000, 6)`` is 1.5 USDC.

    Arithmetic and comparisons are only defined between amounts of the same
    scale. Scaling by a ratio always multiplies before dividing.
    """

    units: int
    decimals: int

    def __post_init__(self) -> None:
        if isinstance(self.units, bool) or not isinstance(self.units, int):
            raise TypeError(f"Amount units must be int, got {type(self.units).__name__}")
        if self.decimals < 0:
            raise ValueError("Amount decimals must be non-negative")

    # ------------------------------------------------------------------
    # Construction / rendering
    # ------------------------------------------------------------------

    @classmethod
    def parse(cls, text: str | int | Decimal, decimals: int) -> Amount:
        """Parse a human decimal string ("120000.50") into exact base units."""
        if isinstance(text, float):
            raise TypeError("Floats are not accepted for amounts")
        try:
            value = Decimal(str(text).strip())
        except InvalidOperation as e:
            raise ValueError(f"Invalid amount: {text!r}") from e
        if not value.is_finite():
            raise ValueError(f"Invalid amount: {text!r}")

        with localcontext() as ctx:
            ctx.prec = _PRECISION
            scaled = value.scaleb(decimals)
        if scaled != scaled.to_integral_value():
            raise ValueError(
                f"Amount {text!r} has more than {decimals} decimal places"
            )
        return cls(int(scaled), decimals)

    def to_decimal(self) -> Decimal:
        with localcontext() as ctx:
            ctx.prec = _PRECISION
            return Decimal(self.units).scaleb(-self.decimals)

    def format(self, places: int = 2) -> str:
        """Render with thousands separators, truncated to ``places``."""
        with localcontext() as ctx:
            ctx.prec = _PRECISION
            quant = Decimal(1).scaleb(-places)
            value = self.to_decimal().quantize(quant, rounding=ROUND_DOWN)
        return f"{value:,.{places}f}"

    def __str__(self) -> str:
        return str(self.to_decimal())

    # ------------------------------------------------------------------
    # Arithmetic
    # ------------------------------------------------------------------

    def _check_scale(self, other: object) -> Amount:
        if not isinstance(other, Amount):
            raise TypeError(f"Cannot combine Amount with {type(other).__name__}")
        if other.decimals != self.decimals:
            raise ValueError(
                f"Scale mismatch: {self.decimals} vs {other.decimals} decimals"
            )
        return other

    def __add__(self, other: Amount) -> Amount:
        other = self._check_scale(other)
        return Amount(self.units + other.units, self.decimals)

    def __sub__(self, other: Amount) -> Amount:
        other = self._check_scale(other)
        return Amount(self.units - other.units, self.decimals)

    def __lt__(self, other: Amount) -> bool:
        other = self._check_scale(other)
        return self.units < other.units

    def __bool__(self) -> bool:
        return self.units != 0

    @property
    def is_negative(self) -> bool:
        return self.units < 0

    def mul_div(self, numerator: int, denominator: int) -> Amount:
        """Return ``floor(self * numerator / denominator)`` in the same scale."""
        if denominator == 0:
            raise ZeroDivisionError("mul_div denominator is zero")
        return Amount(self.units * numerator // denominator, self.decimals)

    def min(self, other: Amount) -> Amount:
        other = self._check_scale(other)
        return self if self.units <= other.units else other

    def clamp_zero(self) -> Amount:
        return self if self.units > 0 else Amount(0, self.decimals)


def collateral(units: int) -> Amount:
    return Amount(units, COLLATERAL_DECIMALS)


def stable(units: int) -> Amount:
    return Amount(units, STABLE_DECIMALS)


def zero_collateral() -> Amount:
    return Amount(0, COLLATERAL_DECIMALS)


def zero_stable() -> Amount:
    return Amount(0, STABLE_DECIMALS)


def parse_collateral(text: str | int | Decimal) -> Amount:
    return Amount.parse(text, COLLATERAL_DECIMALS)


def parse_stable(text: str | int | Decimal) -> Amount:
    return Amount.parse(text, STABLE_DECIMALS)
