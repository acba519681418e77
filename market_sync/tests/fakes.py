"""In-memory ledger, metadata and submitter doubles shared by the tests."""

from __future__ import annotations

import asyncio
from typing import Any, Dict, Iterable, List, Optional, Sequence, Set, Tuple

from market_sync.errors import CapabilityUnavailableError
from market_sync.ledger.base import ActionSubmitter, LedgerReader, MetadataFetcher, MutatingAction
from market_sync.models import ListedEvent, Listing, ListingMetadata, ListingState

COLLECTION = "0x00000000000000000000000000000000000000aa"
SELLER = "0x00000000000000000000000000000000000000b1"
BUYER = "0x00000000000000000000000000000000000000c2"


class RateLimitError(Exception):
    def __init__(self, message: str = "too many requests") -> None:
        super().__init__(message)
        self.code = 429


class RpcDown(Exception):
    pass


class SleepRecorder:
    def __init__(self) -> None:
        self.delays: List[float] = []

    async def __call__(self, seconds: float) -> None:
        self.delays.append(seconds)


def listing(
    item_id: str,
    price: int = 1,
    block: int = 0,
    seller: str = SELLER,
    name: str = "",
) -> Listing:
    return Listing(
        item_id=item_id,
        seller=seller,
        price_units=price,
        provenance_block=block,
        metadata=ListingMetadata(name=name),
    )


def event(item_id: str, block: int, seller: str = SELLER, collection: str = COLLECTION) -> ListedEvent:
    return ListedEvent(
        collection=collection,
        item_id=item_id,
        seller=seller,
        price_units=1,
        block_number=block,
    )


class FakeLedger(LedgerReader):
    def __init__(
        self,
        head: int = 1000,
        events: Iterable[ListedEvent] = (),
        states: Optional[Dict[str, ListingState]] = None,
        supply: Optional[Sequence[str]] = None,
        owners: Optional[Dict[str, List[str]]] = None,
        proceeds: Optional[Dict[str, int]] = None,
        collection: str = COLLECTION,
    ) -> None:
        self.collection = collection
        self.head = head
        self.events = list(events)
        self.states = dict(states or {})
        self.supply = list(supply) if supply is not None else None
        self.owners = {k.lower(): list(v) for k, v in (owners or {}).items()}
        self.proceeds = dict(proceeds or {})

        self.query_calls: List[Tuple[int, int]] = []
        self.listing_calls: List[str] = []
        self.rate_limit_above: Optional[int] = None
        self.fail_query_below: Optional[int] = None
        self.failing_items: Set[str] = set()
        self.failing_head = False
        self.head_gate: Optional[asyncio.Event] = None
        self.closed = False

    async def block_number(self) -> int:
        if self.head_gate is not None:
            await self.head_gate.wait()
        if self.failing_head:
            raise RpcDown("head unavailable")
        return self.head

    async def query_listed_events(self, from_block: int, to_block: int) -> Sequence[ListedEvent]:
        self.query_calls.append((from_block, to_block))
        if self.rate_limit_above is not None and to_block - from_block > self.rate_limit_above:
            raise RateLimitError()
        if self.fail_query_below is not None and from_block < self.fail_query_below:
            raise RpcDown(f"query [{from_block}, {to_block}] failed")
        return [e for e in self.events if from_block <= e.block_number <= to_block]

    async def get_listing(self, item_id: str) -> ListingState:
        self.listing_calls.append(item_id)
        if item_id in self.failing_items:
            raise RpcDown(f"getListing({item_id}) failed")
        return self.states.get(item_id, ListingState(price_units=0))

    async def token_uri(self, item_id: str) -> str:
        return f"ipfs://meta/{item_id}"

    async def total_supply(self) -> int:
        if self.supply is None:
            raise CapabilityUnavailableError("not enumerable")
        return len(self.supply)

    async def token_by_index(self, index: int) -> str:
        if self.supply is None:
            raise CapabilityUnavailableError("not enumerable")
        return self.supply[index]

    async def balance_of(self, owner: str) -> int:
        return len(self.owners.get(owner.lower(), []))

    async def token_of_owner_by_index(self, owner: str, index: int) -> str:
        item_id = self.owners[owner.lower()][index]
        if item_id in self.failing_items:
            raise RpcDown(f"tokenOfOwnerByIndex({index}) failed")
        return item_id

    async def get_proceeds(self, owner: str) -> int:
        if owner.lower() not in self.proceeds:
            raise RpcDown("getProceeds failed")
        return self.proceeds[owner.lower()]

    async def aclose(self) -> None:
        self.closed = True


class FakeMetadata(MetadataFetcher):
    def __init__(self, failing: Iterable[str] = ()) -> None:
        self.failing = set(failing)
        self.fetched: List[str] = []
        self.closed = False

    async def fetch(self, uri: str) -> Dict[str, Any]:
        self.fetched.append(uri)
        item_id = uri.rsplit("/", 1)[-1]
        if item_id in self.failing:
            raise RpcDown(f"gateway timeout for {uri}")
        return {
            "name": f"Item {item_id}",
            "description": f"Description of item {item_id}",
            "image": f"https://img.example/{item_id}.png",
        }

    async def aclose(self) -> None:
        self.closed = True


class FakeSubmitter(ActionSubmitter):
    def __init__(self, account: str = BUYER, error: Optional[BaseException] = None) -> None:
        self._account = account
        self.error = error
        self.submitted: List[MutatingAction] = []
        self.gate: Optional[asyncio.Event] = None

    async def account(self) -> str:
        return self._account

    async def submit(self, action: MutatingAction) -> Any:
        if self.gate is not None:
            await self.gate.wait()
        if self.error is not None:
            raise self.error
        self.submitted.append(action)
        return {"status": 1}
