"""Warm-start scan of the collection's current listings.

Enumerates up to ``max_items`` items by index and keeps the ones whose
current listing price is non-zero. This gives a consistent first view
without replaying historical ``ItemListed`` events, at the cost of
O(max_items) point reads.

The scan never raises: a failing index is logged and skipped, and a
collection that cannot be enumerated yields an empty result, which callers
treat as "no warm-start data".
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import List

from market_sync.framework.retry import RetryingCaller
from market_sync.ledger.base import LedgerReader, MetadataFetcher
from market_sync.ledger.metadata import resolve_metadata
from market_sync.models import Listing

LOGGER = logging.getLogger(__name__)


@dataclass
class ScanStats:
    total_scans: int = 0
    last_enumerated: int = 0
    last_listed: int = 0
    last_failed: int = 0


class WarmStartScanner:
    def __init__(
        self,
        reader: LedgerReader,
        metadata: MetadataFetcher,
        caller: RetryingCaller | None = None,
    ) -> None:
        self._reader = reader
        self._metadata = metadata
        self._caller = caller or RetryingCaller()
        self._stats = ScanStats()

    @property
    def stats(self) -> ScanStats:
        return self._stats

    async def scan(self, max_items: int) -> List[Listing]:
        """Return listed items among the first ``max_items`` enumerable ones.

        Results carry ``provenance_block=0``; a later event for the same
        composite key replaces them with a dated entry.
        """
        self._stats.total_scans += 1
        self._stats.last_enumerated = 0
        self._stats.last_listed = 0
        self._stats.last_failed = 0
        if max_items <= 0:
            return []

        try:
            total = int(await self._caller.call(self._reader.total_supply))
        except Exception as exc:
            LOGGER.warning("warm start unavailable (total supply): %s", exc)
            return []

        count = min(total, max_items)
        items: List[Listing] = []
        for index in range(count):
            try:
                listing = await self._scan_index(index)
            except Exception as exc:
                self._stats.last_failed += 1
                LOGGER.warning("warm start index %d failed: %s", index, exc)
                continue
            self._stats.last_enumerated += 1
            if listing is not None:
                items.append(listing)

        self._stats.last_listed = len(items)
        LOGGER.info("warm start scanned %d/%d items, %d listed", count, total, len(items))
        return items

    async def _scan_index(self, index: int) -> Listing | None:
        item_id = await self._caller.call(lambda: self._reader.token_by_index(index))
        state = await self._caller.call(lambda: self._reader.get_listing(item_id))
        if not state.is_listed:
            return None
        metadata = await resolve_metadata(self._reader, self._metadata, self._caller, item_id)
        return Listing(
            item_id=item_id,
            seller=state.seller,
            price_units=state.price_units,
            provenance_block=0,
            metadata=metadata,
        )
