from __future__ import annotations

from dataclasses import dataclass, field
from decimal import Decimal
from enum import Enum
from typing import Any, Dict, Tuple

WEI_PER_ETH = Decimal(10) ** 18


def composite_key(item_id: str, seller: str) -> str:
    """Uniqueness identity of a listing: ``item_id:seller`` (seller lower-cased)."""
    return f"{item_id}:{(seller or '').lower()}"


@dataclass(frozen=True)
class ListingMetadata:
    name: str = ""
    description: str = ""
    image: str = ""

    @classmethod
    def from_payload(cls, payload: Any) -> "ListingMetadata":
        if not isinstance(payload, dict):
            return cls()
        return cls(
            name=str(payload.get("name") or ""),
            description=str(payload.get("description") or ""),
            image=str(payload.get("image") or ""),
        )


@dataclass(frozen=True)
class Listing:
    item_id: str
    seller: str
    price_units: int
    provenance_block: int = 0
    metadata: ListingMetadata = field(default_factory=ListingMetadata)

    def __post_init__(self) -> None:
        object.__setattr__(self, "item_id", str(self.item_id))
        object.__setattr__(self, "seller", (self.seller or "").lower())
        if self.price_units < 0:
            raise ValueError(f"negative price for item {self.item_id}: {self.price_units}")

    @property
    def composite_key(self) -> str:
        return composite_key(self.item_id, self.seller)

    @property
    def is_listed(self) -> bool:
        return self.price_units > 0

    @property
    def price_eth(self) -> Decimal:
        return Decimal(self.price_units) / WEI_PER_ETH

    def to_payload(self) -> Dict[str, Any]:
        """JSON shape served by the HTTP listing endpoint."""
        return {
            "tokenId": self.item_id,
            "name": self.metadata.name,
            "description": self.metadata.description,
            "image": self.metadata.image,
            "seller": self.seller,
            "priceWei": str(self.price_units),
            "priceEth": format(self.price_eth.normalize(), "f"),
            "blockNumber": self.provenance_block,
        }


@dataclass(frozen=True)
class ListingState:
    """Current on-ledger listing state of one item."""
    price_units: int
    seller: str = ""

    @property
    def is_listed(self) -> bool:
        return self.price_units > 0


@dataclass(frozen=True)
class ListedEvent:
    """Decoded ``ItemListed`` log."""
    collection: str
    item_id: str
    seller: str
    price_units: int
    block_number: int


@dataclass(frozen=True)
class RangeResult:
    records: Tuple[ListedEvent, ...]
    used_from: int
    used_to: int


@dataclass(frozen=True)
class PaginationCursor:
    boundary: int
    exhausted: bool = False


class SyncUpdateKind(str, Enum):
    LISTINGS = "listings"
    SCANNING = "scanning"
    ERROR = "error"
    RESET = "reset"


@dataclass(frozen=True)
class SyncUpdate:
    kind: SyncUpdateKind
    listings: Tuple[Listing, ...] = ()
    message: str = ""


@dataclass(frozen=True)
class ExternalStateChange:
    """Chain or account change reported by the wallet/provider layer."""
    kind: str  # "chain" or "accounts"
    value: Any = None


@dataclass(frozen=True)
class LoadReport:
    accepted: Tuple[Listing, ...]
    pages_used: int
    cursor: PaginationCursor
    scan_bootstrap: bool = False
    scanned_count: int = 0
    ranges: Tuple[Tuple[int, int], ...] = ()

    @property
    def collected(self) -> int:
        return len(self.accepted)
