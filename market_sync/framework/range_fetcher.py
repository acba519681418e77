"""Adaptive block-range event fetcher.

Queries ``ItemListed`` logs over ``[from_block, to_block]``. When the RPC
provider throttles the query, the window is shrunk and the query retried:

* ``from_block`` stays fixed, only ``to_block`` moves down
  (``to = from + max(min_window, (to - from) // 2)``);
* a fixed cool-down is slept between attempts;
* once the window is at or below ``min_window`` the error propagates.

The caller gets back the range that was actually served so it can move its
cursor to ``used_from - 1``. Keeping ``from`` fixed means a shrunk page
covers the older end of the requested window; the newer blocks above
``used_to`` are not revisited by the backward-moving cursor.
"""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass

from market_sync.errors import ErrorClass, classify_error
from market_sync.framework.retry import SleepFn
from market_sync.ledger.base import LedgerReader
from market_sync.models import RangeResult

LOGGER = logging.getLogger(__name__)


@dataclass(frozen=True)
class RangeFetcherConfig:
    """Configuration for the adaptive range fetcher.

    Parameters
    ----------
    min_window:
        Smallest window (``to - from``) the fetcher will shrink to before
        giving up. Default 40.
    shrink_cooldown:
        Seconds slept after a throttled attempt. Default 0.4.
    """

    min_window: int = 40
    shrink_cooldown: float = 0.4


@dataclass
class RangeFetcherStats:
    total_queries: int = 0
    total_rate_limited: int = 0
    total_shrinks: int = 0


class AdaptiveRangeFetcher:
    def __init__(
        self,
        reader: LedgerReader,
        config: RangeFetcherConfig | None = None,
        sleep: SleepFn | None = None,
    ) -> None:
        self._reader = reader
        self._config = config or RangeFetcherConfig()
        self._sleep = sleep or asyncio.sleep
        self._stats = RangeFetcherStats()

    @property
    def config(self) -> RangeFetcherConfig:
        return self._config

    @property
    def stats(self) -> RangeFetcherStats:
        return self._stats

    async def fetch_range(
        self,
        from_block: int,
        to_block: int,
        min_window: int | None = None,
    ) -> RangeResult:
        """Fetch listing events, shrinking the window on rate limits.

        Returns
        -------
        RangeResult with the records and the exact ``[used_from, used_to]``
        range that was served.
        """
        floor = self._config.min_window if min_window is None else min_window
        left = from_block
        right = to_block

        while True:
            self._stats.total_queries += 1
            try:
                records = await self._reader.query_listed_events(left, right)
            except asyncio.CancelledError:
                raise
            except Exception as exc:
                window = right - left
                if classify_error(exc) is not ErrorClass.RATE_LIMITED:
                    raise
                self._stats.total_rate_limited += 1
                if window <= floor:
                    LOGGER.warning(
                        "range [%d, %d] still rate limited at window floor %d",
                        left, right, floor,
                    )
                    raise
                half = max(floor, window // 2)
                right = left + half
                self._stats.total_shrinks += 1
                LOGGER.info(
                    "rate limited on window %d; retrying [%d, %d]",
                    window, left, right,
                )
                await self._sleep(self._config.shrink_cooldown)
                continue

            return RangeResult(records=tuple(records), used_from=left, used_to=right)
