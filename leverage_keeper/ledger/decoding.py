"""Pure decoding of raw ledger payloads into typed results.

The ledger encodes every amount as a decimal string of base units (token
amounts routinely exceed 2**53). Decoding happens once, here, so the
workflows never touch loosely-typed payloads.
"""
from __future__ import annotations

from typing import Any

from ..amounts import Amount, collateral, stable
from ..errors import LedgerOutcomeError
from ..models import (
    HarvestOutcome,
    LedgerPosition,
    LiquidationOutcome,
    PositionStatus,
    SettlementOutcome,
)

# On-chain enum order of the vault's PositionStatus.
_STATUS_BY_INDEX = (
    PositionStatus.ACTIVE,
    PositionStatus.LIQUIDATED,
    PositionStatus.SETTLED,
    PositionStatus.CLOSED,
)


def _field(raw: dict[str, Any], name: str) -> Any:
    if not isinstance(raw, dict):
        raise LedgerOutcomeError(f"Expected an object, got {type(raw).__name__}")
    if name not in raw or raw[name] is None:
        raise LedgerOutcomeError(f"Ledger result is missing '{name}'")
    return raw[name]


def decode_int(value: Any, name: str = "value") -> int:
    """Decode a base-unit integer sent as int or decimal/hex string."""
    if isinstance(value, bool):
        raise LedgerOutcomeError(f"'{name}' is not an integer: {value!r}")
    if isinstance(value, int):
        return value
    if isinstance(value, str):
        text = value.strip()
        try:
            return int(text, 16) if text.lower().startswith("0x") else int(text)
        except ValueError as e:
            raise LedgerOutcomeError(f"'{name}' is not an integer: {value!r}") from e
    raise LedgerOutcomeError(f"'{name}' is not an integer: {value!r}")


def _non_negative(value: Any, name: str) -> int:
    units = decode_int(value, name)
    if units < 0:
        raise LedgerOutcomeError(f"'{name}' is negative: {units}")
    return units


def _collateral(raw: dict[str, Any], name: str) -> Amount:
    return collateral(_non_negative(_field(raw, name), name))


def _stable(raw: dict[str, Any], name: str) -> Amount:
    return stable(_non_negative(_field(raw, name), name))


def _reference(raw: dict[str, Any]) -> str:
    return str(raw.get("txHash") or raw.get("reference") or "")


def decode_status(value: Any) -> PositionStatus:
    if isinstance(value, str) and not value.strip().isdigit():
        try:
            return PositionStatus(value.strip().upper())
        except ValueError as e:
            raise LedgerOutcomeError(f"Unknown position status {value!r}") from e
    index = decode_int(value, "status")
    if not 0 <= index < len(_STATUS_BY_INDEX):
        raise LedgerOutcomeError(f"Unknown position status {value!r}")
    return _STATUS_BY_INDEX[index]


def decode_position(raw: dict[str, Any]) -> LedgerPosition:
    return LedgerPosition(
        position_id=decode_int(_field(raw, "positionId"), "positionId"),
        owner=str(_field(raw, "owner")),
        collateral_amount=_collateral(raw, "collateral"),
        debt_amount=_stable(raw, "debt"),
        initial_ltv=decode_int(raw.get("initialLtv", 0), "initialLtv"),
        health_factor=_non_negative(_field(raw, "healthFactor"), "healthFactor"),
        status=decode_status(_field(raw, "status")),
        asset_id=str(raw.get("assetId", "")),
    )


def decode_harvest(raw: dict[str, Any]) -> HarvestOutcome:
    return HarvestOutcome(
        collateral_swapped=_collateral(raw, "swapped"),
        stable_received=_stable(raw, "received"),
        interest_paid=_stable(raw, "interestPaid"),
        reference=_reference(raw),
    )


def decode_liquidation(raw: dict[str, Any]) -> LiquidationOutcome:
    return LiquidationOutcome(
        collateral_sold=_collateral(raw, "collateralSold"),
        recovered=_stable(raw, "recovered"),
        reference=_reference(raw),
    )


def decode_settlement(raw: dict[str, Any]) -> SettlementOutcome:
    return SettlementOutcome(
        senior_repayment=_stable(raw, "senior"),
        interest_repayment=_stable(raw, "interest"),
        residual_to_owner=_stable(raw, "residual"),
        reference=_reference(raw),
    )


def decode_stable(value: Any, name: str = "amount") -> Amount:
    """Decode a bare stable-asset amount (e.g. accrued interest)."""
    return stable(_non_negative(value, name))
