"""Exception hierarchy for the keeper."""
from __future__ import annotations


class KeeperError(Exception):
    """Root of all keeper errors."""


# Invariant violations: local to one position, never retried.


class PositionNotFoundError(KeeperError):
    def __init__(self, position_id: int) -> None:
        super().__init__(f"Position {position_id} not found")
        self.position_id = position_id


class DuplicatePositionError(KeeperError):
    pass


class InvalidTransitionError(KeeperError):
    pass


class TransitionInProgressError(KeeperError):
    pass


class InsufficientCollateralError(KeeperError):
    pass


class PriceUnavailableError(KeeperError):
    pass


# Execution ledger


class LedgerError(KeeperError):
    pass


class LedgerUnavailableError(LedgerError):
    """Transient failure (timeout, transport, node error); safe to retry."""


class LedgerRejectedError(LedgerError):
    """The ledger refused the operation; retrying will not help."""


class LedgerOutcomeError(LedgerError):
    """A ledger result could not be decoded or breaks an accounting rule."""


class RetryExhaustedError(LedgerError):
    def __init__(self, description: str, attempts: int, last_error: BaseException) -> None:
        super().__init__(
            f"{description} failed after {attempts} attempts: {last_error}"
        )
        self.description = description
        self.attempts = attempts
        self.last_error = last_error
