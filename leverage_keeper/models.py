"""Data models — all frozen (immutable)."""
from __future__ import annotations

from dataclasses import dataclass, field
from datetime import date, datetime
from enum import Enum
from typing import Any

from .amounts import Amount, zero_collateral, zero_stable


class HealthStatus(str, Enum):
    HEALTHY = "HEALTHY"
    WARNING = "WARNING"
    CRITICAL = "CRITICAL"
    LIQUIDATABLE = "LIQUIDATABLE"


class PositionStatus(str, Enum):
    ACTIVE = "ACTIVE"
    LIQUIDATED = "LIQUIDATED"
    SETTLED = "SETTLED"
    CLOSED = "CLOSED"


TERMINAL_STATUSES = frozenset(
    {PositionStatus.LIQUIDATED, PositionStatus.SETTLED, PositionStatus.CLOSED}
)


class Severity(str, Enum):
    INFO = "INFO"
    WARNING = "WARNING"
    ERROR = "ERROR"


class NotificationCategory(str, Enum):
    SYSTEM_ALERT = "SYSTEM_ALERT"
    YIELD_HARVESTED = "YIELD_HARVESTED"
    LIQUIDATION = "LIQUIDATION"
    SETTLEMENT = "SETTLEMENT"


# ---------------------------------------------------------------------------
# Price
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class PriceSample:
    """One point of the historical series; price is stable units per whole collateral."""

    date: date
    price: Amount


# ---------------------------------------------------------------------------
# Position audit records
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class HarvestRecord:
    timestamp: datetime
    collateral_swapped: Amount
    stable_received: Amount
    interest_paid: Amount
    interest_accrued: Amount
    price: Amount
    health_factor_before: int
    health_factor_after: int
    reference: str


@dataclass(frozen=True)
class LiquidationRecord:
    timestamp: datetime
    collateral_sold: Amount
    recovered: Amount
    shortfall: Amount
    surplus: Amount
    price: Amount
    reference: str


@dataclass(frozen=True)
class SettlementRecord:
    timestamp: datetime
    gross_amount: Amount
    senior_repayment: Amount
    interest_repayment: Amount
    residual_to_owner: Amount
    prior_status: PositionStatus
    reference: str


@dataclass(frozen=True)
class ReconciliationRecord:
    """Terminal status adopted from the ledger without a local workflow."""

    timestamp: datetime
    prior_status: PositionStatus
    ledger_status: PositionStatus
    debt_amount: Amount


@dataclass(frozen=True)
class LeveragePosition:
    """Mirror of one leveraged position held on the execution ledger."""

    position_id: int
    owner: str
    collateral_amount: Amount
    debt_amount: Amount
    initial_ltv: int
    current_health_factor: int
    health_status: HealthStatus
    status: PositionStatus = PositionStatus.ACTIVE
    asset_id: str = ""
    created_at: datetime | None = None
    last_harvest_time: datetime | None = None
    total_interest_paid: Amount = field(default_factory=zero_stable)
    total_collateral_harvested: Amount = field(default_factory=zero_collateral)
    harvest_history: tuple[HarvestRecord, ...] = ()
    warning_notification_sent: bool = False
    critical_notification_sent: bool = False
    last_notification_time: datetime | None = None
    liquidation: LiquidationRecord | None = None
    settlement: SettlementRecord | None = None
    reconciliation: ReconciliationRecord | None = None

    @property
    def is_terminal(self) -> bool:
        return self.status in TERMINAL_STATUSES


# ---------------------------------------------------------------------------
# Typed execution-ledger results
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class LedgerPosition:
    """Position snapshot as reported by the execution ledger."""

    position_id: int
    owner: str
    collateral_amount: Amount
    debt_amount: Amount
    initial_ltv: int
    health_factor: int
    status: PositionStatus
    asset_id: str = ""


@dataclass(frozen=True)
class HarvestOutcome:
    collateral_swapped: Amount
    stable_received: Amount
    interest_paid: Amount
    reference: str


@dataclass(frozen=True)
class LiquidationOutcome:
    collateral_sold: Amount
    recovered: Amount
    reference: str


@dataclass(frozen=True)
class SettlementOutcome:
    senior_repayment: Amount
    interest_repayment: Amount
    residual_to_owner: Amount
    reference: str

    @property
    def total(self) -> Amount:
        return self.senior_repayment + self.interest_repayment + self.residual_to_owner


@dataclass(frozen=True)
class WaterfallAllocation:
    senior: Amount
    interest: Amount
    residual: Amount

    @property
    def total(self) -> Amount:
        return self.senior + self.interest + self.residual


# ---------------------------------------------------------------------------
# Notifications / reporting
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class Notification:
    recipient: str
    header: str
    detail: str
    severity: Severity = Severity.INFO
    category: NotificationCategory = NotificationCategory.SYSTEM_ALERT
    metadata: dict[str, Any] = field(default_factory=dict)


@dataclass(frozen=True)
class PositionStats:
    total_positions: int
    active_positions: int
    total_collateral: Amount
    total_debt: Amount
    total_interest_paid: Amount


@dataclass(frozen=True)
class CycleReport:
    """Outcome counters of one scheduler sweep."""

    processed: int = 0
    acted: int = 0
    skipped: int = 0
    failed: int = 0
