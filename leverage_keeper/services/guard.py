"""Per-position gate serialising state-changing workflows in this process."""
from __future__ import annotations

from collections.abc import Iterator
from contextlib import contextmanager

from ..errors import TransitionInProgressError


class TransitionGuard:
    """Non-blocking claim on a position id.

    Harvest, liquidation and settlement all claim the position before
    calling the ledger; a second claimant is rejected instead of queued.
    """

    def __init__(self) -> None:
        self._busy: dict[int, str] = {}

    def is_busy(self, position_id: int) -> bool:
        return position_id in self._busy

    @contextmanager
    def claim(self, position_id: int, operation: str) -> Iterator[None]:
        holder = self._busy.get(position_id)
        if holder is not None:
            raise TransitionInProgressError(
                f"Position {position_id} is busy ({holder}); {operation} rejected"
            )
        self._busy[position_id] = operation
        try:
            yield
        finally:
            del self._busy[position_id]
