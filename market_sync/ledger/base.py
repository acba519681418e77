from __future__ import annotations

from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, Sequence

from market_sync.errors import CapabilityUnavailableError
from market_sync.models import ListedEvent, ListingState


class LedgerReader(ABC):
    """Narrow read API over the marketplace and its collection contract."""

    collection: str

    @abstractmethod
    async def block_number(self) -> int:
        raise NotImplementedError

    @abstractmethod
    async def query_listed_events(self, from_block: int, to_block: int) -> Sequence[ListedEvent]:
        raise NotImplementedError

    @abstractmethod
    async def get_listing(self, item_id: str) -> ListingState:
        raise NotImplementedError

    @abstractmethod
    async def token_uri(self, item_id: str) -> str:
        raise NotImplementedError

    async def total_supply(self) -> int:
        """Number of enumerable items. Collections without enumeration raise."""
        raise CapabilityUnavailableError("collection does not support enumeration")

    async def token_by_index(self, index: int) -> str:
        raise CapabilityUnavailableError("collection does not support enumeration")

    async def balance_of(self, owner: str) -> int:
        raise CapabilityUnavailableError("collection does not expose balances")

    async def token_of_owner_by_index(self, owner: str, index: int) -> str:
        raise CapabilityUnavailableError("collection does not support owner enumeration")

    async def get_proceeds(self, owner: str) -> int:
        raise CapabilityUnavailableError("marketplace does not expose proceeds")

    async def chain_id(self) -> int | None:
        return None

    async def aclose(self) -> None:
        return None


class MetadataFetcher(ABC):
    @abstractmethod
    async def fetch(self, uri: str) -> Dict[str, Any]:
        """Fetch the descriptive JSON document behind ``uri``."""
        raise NotImplementedError

    async def aclose(self) -> None:
        return None


class ActionKind(str, Enum):
    BUY = "buy"
    LIST = "list"
    UPDATE = "update"
    CANCEL = "cancel"
    WITHDRAW = "withdraw"


@dataclass(frozen=True)
class MutatingAction:
    kind: ActionKind
    item_id: str = ""
    price_units: int = 0
    value_units: int = 0
    extra: Dict[str, Any] = field(default_factory=dict)


class ActionSubmitter(ABC):
    """Opaque "sign, submit and wait for finality" capability."""

    @abstractmethod
    async def submit(self, action: MutatingAction) -> Any:
        raise NotImplementedError

    @abstractmethod
    async def account(self) -> str:
        """Address of the account that signs submitted actions."""
        raise NotImplementedError
