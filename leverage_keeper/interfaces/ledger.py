"""Execution ledger protocol — the authoritative system of record."""
from typing import Protocol

from ..amounts import Amount
from ..models import (
    HarvestOutcome,
    LedgerPosition,
    LiquidationOutcome,
    PositionStatus,
    SettlementOutcome,
)


class ExecutionLedger(Protocol):
    """Abstract interface for reading and mutating positions on the ledger.

    Every method may raise ``LedgerUnavailableError`` (transient) or
    ``LedgerRejectedError`` (permanent).
    """

    async def list_positions(self) -> list[LedgerPosition]: ...

    async def read_position_status(self, position_id: int) -> PositionStatus: ...

    async def read_health_factor(self, position_id: int, price: Amount) -> int: ...

    async def read_accrued_interest(self, position_id: int) -> Amount: ...

    async def read_outstanding_debt(self, position_id: int) -> Amount: ...

    async def check_liquidity(self, collateral_amount: Amount) -> bool: ...

    async def execute_harvest(self, position_id: int, price: Amount) -> HarvestOutcome: ...

    async def execute_liquidation(
        self, position_id: int, price: Amount
    ) -> LiquidationOutcome: ...

    async def execute_settlement(
        self, position_id: int, gross_amount: Amount
    ) -> SettlementOutcome: ...
