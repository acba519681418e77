"""Bounded retry with linear backoff for single remote reads.

Every point lookup and metadata fetch goes through ``RetryingCaller``.
Range queries do not: they have their own window-shrinking backoff in
``AdaptiveRangeFetcher``.

Usage::

    caller = RetryingCaller(RetryConfig(attempts=3, base_delay=0.25))
    state = await caller.call(lambda: reader.get_listing(item_id))
"""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass
from typing import Awaitable, Callable, Optional, TypeVar

LOGGER = logging.getLogger(__name__)

T = TypeVar("T")

SleepFn = Callable[[float], Awaitable[None]]


# ---------------------------------------------------------------------------
# Config
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class RetryConfig:
    """Configuration for the retrying caller.

    Parameters
    ----------
    attempts:
        Total number of invocations before giving up. Default 3.
    base_delay:
        Seconds to wait after the first failure; the n-th failure waits
        ``base_delay * n``. Linear, no jitter. Default 0.25.
    """

    attempts: int = 3
    base_delay: float = 0.25


@dataclass
class RetryStats:
    total_calls: int = 0
    total_retries: int = 0
    total_failures: int = 0

    def reset(self) -> None:
        self.total_calls = 0
        self.total_retries = 0
        self.total_failures = 0


# ---------------------------------------------------------------------------
# Caller
# ---------------------------------------------------------------------------


class RetryingCaller:
    def __init__(
        self,
        config: RetryConfig | None = None,
        sleep: SleepFn | None = None,
    ) -> None:
        self._config = config or RetryConfig()
        self._sleep = sleep or asyncio.sleep
        self._stats = RetryStats()

    @property
    def config(self) -> RetryConfig:
        return self._config

    @property
    def stats(self) -> RetryStats:
        return self._stats

    async def call(
        self,
        fn: Callable[[], Awaitable[T]],
        attempts: Optional[int] = None,
        base_delay: Optional[float] = None,
    ) -> T:
        """Invoke ``fn`` until it succeeds or ``attempts`` are used up.

        Parameters
        ----------
        fn:
            Zero-argument callable returning an awaitable. Called afresh
            on every attempt.
        attempts:
            Overrides ``config.attempts`` for this call.
        base_delay:
            Overrides ``config.base_delay`` for this call.

        Raises
        ------
        The last exception raised by ``fn`` once all attempts failed.
        """
        total = max(1, attempts if attempts is not None else self._config.attempts)
        delay = self._config.base_delay if base_delay is None else base_delay
        self._stats.total_calls += 1

        attempt = 1
        while True:
            try:
                return await fn()
            except asyncio.CancelledError:
                raise
            except Exception as exc:
                if attempt >= total:
                    self._stats.total_failures += 1
                    raise
                wait = delay * attempt
                LOGGER.debug(
                    "retrying after attempt %d/%d failed (%s); waiting %.2fs",
                    attempt, total, exc, wait,
                )
                self._stats.total_retries += 1
                await self._sleep(wait)
                attempt += 1
