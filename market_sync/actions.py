"""Lock-guarded marketplace actions.

Every action runs inside ``ConcurrencyLockRegistry.run_exclusive`` under its
own kind key, so a repeated request for the same item is dropped while the
first one is still waiting for finality. Signing, submission and finality
are delegated to an opaque ``ActionSubmitter``.

Each method returns the registry's verdict: True when the action was
submitted and became final, False when it was ignored as a duplicate,
refused by a local pre-check, declined by the user or failed.
"""

from __future__ import annotations

import logging

from market_sync.errors import ActionRejected
from market_sync.framework.lock_registry import (
    ConcurrencyLockRegistry,
    LockKey,
    buy_key,
    cancel_key,
    list_key,
    update_key,
)
from market_sync.framework.retry import RetryingCaller
from market_sync.ledger.base import ActionKind, ActionSubmitter, LedgerReader, MutatingAction

LOGGER = logging.getLogger(__name__)

WITHDRAW_KEY = LockKey("withdraw", "proceeds")


class MarketplaceActions:
    def __init__(
        self,
        reader: LedgerReader,
        submitter: ActionSubmitter,
        registry: ConcurrencyLockRegistry | None = None,
        caller: RetryingCaller | None = None,
    ) -> None:
        self._reader = reader
        self._submitter = submitter
        self._registry = registry or ConcurrencyLockRegistry()
        self._caller = caller or RetryingCaller()

    @property
    def registry(self) -> ConcurrencyLockRegistry:
        return self._registry

    async def buy(self, item_id: str, seller_hint: str = "") -> bool:
        item_id = str(item_id)

        async def _buy() -> None:
            me = (await self._submitter.account() or "").lower()
            if seller_hint and seller_hint.lower() == me:
                raise ActionRejected("cannot buy your own item")
            # The card may be stale; the ledger decides price and seller.
            state = await self._caller.call(lambda: self._reader.get_listing(item_id))
            if not state.is_listed:
                raise ActionRejected(f"item {item_id} is no longer listed")
            if state.seller == me:
                raise ActionRejected("cannot buy your own item")
            await self._submitter.submit(
                MutatingAction(
                    kind=ActionKind.BUY,
                    item_id=item_id,
                    price_units=state.price_units,
                    value_units=state.price_units,
                )
            )
            LOGGER.info("bought item %s for %d", item_id, state.price_units)

        return await self._registry.run_exclusive(buy_key(item_id), _buy)

    async def list_item(self, item_id: str, price_units: int) -> bool:
        return await self._priced(ActionKind.LIST, list_key(item_id), str(item_id), price_units)

    async def update_price(self, item_id: str, price_units: int) -> bool:
        return await self._priced(ActionKind.UPDATE, update_key(item_id), str(item_id), price_units)

    async def cancel(self, item_id: str) -> bool:
        item_id = str(item_id)

        async def _cancel() -> None:
            await self._submitter.submit(MutatingAction(kind=ActionKind.CANCEL, item_id=item_id))
            LOGGER.info("cancelled listing of item %s", item_id)

        return await self._registry.run_exclusive(cancel_key(item_id), _cancel)

    async def withdraw_proceeds(self) -> bool:
        async def _withdraw() -> None:
            await self._submitter.submit(MutatingAction(kind=ActionKind.WITHDRAW))
            LOGGER.info("withdrew proceeds")

        return await self._registry.run_exclusive(WITHDRAW_KEY, _withdraw)

    async def _priced(self, kind: ActionKind, key: LockKey, item_id: str, price_units: int) -> bool:
        async def _submit() -> None:
            if int(price_units) <= 0:
                raise ActionRejected(f"price must be positive, got {price_units}")
            await self._submitter.submit(
                MutatingAction(kind=kind, item_id=item_id, price_units=int(price_units))
            )
            LOGGER.info("%s item %s at %d", kind.value, item_id, int(price_units))

        return await self._registry.run_exclusive(key, _submit)
