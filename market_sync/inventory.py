"""Owner-scoped inventory ("my items") loader.

Independent from the listing engine: it only shares the read client. Items
are enumerated through the owner index, each enriched with metadata and its
current listing state; accumulated proceeds are read last and a failure
there never fails the load.
"""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass, field
from decimal import Decimal
from typing import List, Optional, Tuple

from market_sync.framework.retry import RetryingCaller, SleepFn
from market_sync.ledger.base import LedgerReader, MetadataFetcher
from market_sync.ledger.metadata import resolve_metadata
from market_sync.models import WEI_PER_ETH, ListingMetadata

LOGGER = logging.getLogger(__name__)

OWNER_INDEX_ATTEMPTS = 4


@dataclass(frozen=True)
class OwnedItem:
    item_id: str
    metadata: ListingMetadata = field(default_factory=ListingMetadata)
    listed: bool = False
    price_units: int = 0
    seller: str = ""

    @property
    def price_eth(self) -> Optional[Decimal]:
        if not self.listed:
            return None
        return Decimal(self.price_units) / WEI_PER_ETH


@dataclass(frozen=True)
class InventorySnapshot:
    owner: str
    items: Tuple[OwnedItem, ...] = ()
    proceeds_units: int = 0

    @property
    def proceeds_eth(self) -> Decimal:
        return Decimal(self.proceeds_units) / WEI_PER_ETH


class InventoryLoader:
    def __init__(
        self,
        reader: LedgerReader,
        metadata: MetadataFetcher,
        caller: RetryingCaller | None = None,
        item_delay: float = 0.1,
        sleep: SleepFn | None = None,
    ) -> None:
        self._reader = reader
        self._metadata = metadata
        self._sleep = sleep or asyncio.sleep
        self._caller = caller or RetryingCaller(sleep=self._sleep)
        self._item_delay = item_delay

    async def load(self, owner: str) -> InventorySnapshot:
        """Items held by ``owner`` plus their withdrawable proceeds.

        Raises when the balance itself cannot be read; individual index or
        item failures are logged and skipped.
        """
        owner = (owner or "").lower()
        balance = int(await self._caller.call(lambda: self._reader.balance_of(owner)))
        LOGGER.info("inventory: %s holds %d items", owner, balance)

        item_ids: List[str] = []
        for index in range(balance):
            try:
                item_id = await self._caller.call(
                    lambda: self._reader.token_of_owner_by_index(owner, index),
                    attempts=OWNER_INDEX_ATTEMPTS,
                )
            except Exception as exc:
                LOGGER.warning("inventory: owner index %d failed: %s", index, exc)
                continue
            item_ids.append(str(item_id))

        items: List[OwnedItem] = []
        for position, item_id in enumerate(item_ids):
            try:
                items.append(await self._load_item(item_id))
            except Exception as exc:
                LOGGER.warning("inventory: item %s skipped: %s", item_id, exc)
            if self._item_delay > 0 and position + 1 < len(item_ids):
                await self._sleep(self._item_delay)

        return InventorySnapshot(
            owner=owner,
            items=tuple(items),
            proceeds_units=await self.proceeds(owner),
        )

    async def proceeds(self, owner: str) -> int:
        try:
            return int(await self._caller.call(lambda: self._reader.get_proceeds(owner)))
        except Exception as exc:
            LOGGER.warning("inventory: proceeds unavailable for %s: %s", owner, exc)
            return 0

    async def _load_item(self, item_id: str) -> OwnedItem:
        state = await self._caller.call(lambda: self._reader.get_listing(item_id))
        metadata = await resolve_metadata(self._reader, self._metadata, self._caller, item_id)
        return OwnedItem(
            item_id=item_id,
            metadata=metadata,
            listed=state.is_listed,
            price_units=state.price_units,
            seller=state.seller,
        )
