"""Bounded exponential-backoff retry policy shared by every ledger call site."""
from __future__ import annotations

import asyncio
import logging
from collections.abc import Awaitable, Callable
from typing import Any, TypeVar

from tenacity import (
    AsyncRetrying,
    RetryError,
    before_sleep_log,
    retry_if_exception_type,
    stop_after_attempt,
    wait_exponential,
)

from .config import RetryConfig
from .errors import LedgerUnavailableError, RetryExhaustedError

logger = logging.getLogger(__name__)

T = TypeVar("T")


class RetryPolicy:
    """Retry transient ledger failures with exponential backoff.

    Only ``LedgerUnavailableError`` is retried; any other exception passes
    through on the first attempt. When attempts run out a
    ``RetryExhaustedError`` wrapping the last failure is raised.
    """

    def __init__(
        self,
        max_attempts: int = 5,
        base_delay: float = 2.0,
        multiplier: float = 2.0,
        max_delay: float = 60.0,
        sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep,
    ) -> None:
        if max_attempts < 1:
            raise ValueError("max_attempts must be at least 1")
        self.max_attempts = max_attempts
        self.base_delay = base_delay
        self.multiplier = multiplier
        self.max_delay = max_delay
        self._sleep = sleep

    @classmethod
    def from_config(cls, config: RetryConfig, **kwargs: Any) -> RetryPolicy:
        return cls(
            max_attempts=config.max_attempts,
            base_delay=config.base_delay,
            multiplier=config.multiplier,
            max_delay=config.max_delay,
            **kwargs,
        )

    def delays(self) -> list[float]:
        """Backoff delays between attempts, e.g. [2, 4, 8, 16] for 5 attempts."""
        return [
            min(self.base_delay * self.multiplier**n, self.max_delay)
            for n in range(self.max_attempts - 1)
        ]

    def _retrying(self) -> AsyncRetrying:
        return AsyncRetrying(
            stop=stop_after_attempt(self.max_attempts),
            wait=wait_exponential(
                multiplier=self.base_delay,
                exp_base=self.multiplier,
                max=self.max_delay,
            ),
            retry=retry_if_exception_type(LedgerUnavailableError),
            before_sleep=before_sleep_log(logger, logging.WARNING),
            sleep=self._sleep,
        )

    async def call(
        self,
        fn: Callable[..., Awaitable[T]],
        *args: Any,
        description: str = "",
        **kwargs: Any,
    ) -> T:
        description = description or getattr(fn, "__name__", "ledger call")
        try:
            async for attempt in self._retrying():
                with attempt:
                    return await fn(*args, **kwargs)
        except RetryError as e:
            last = e.last_attempt.exception()
            logger.error(
                "Giving up on %s after %d attempts: %s",
                description,
                self.max_attempts,
                last,
            )
            raise RetryExhaustedError(description, self.max_attempts, last) from last
        raise AssertionError("unreachable")  # pragma: no cover
