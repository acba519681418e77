"""Merge listing batches into the canonical, deduplicated, sorted set.

``merge_listings`` is pure. Callers feed batches in precedence order: the
last write for a composite key wins, with no block-number comparison. A
batch entry priced at zero removes its key, so a delisting observed in a
later batch takes the item out of the view.
"""

from __future__ import annotations

from typing import Dict, Iterable, List, Sequence, Tuple

from market_sync.models import Listing


def _item_order(item_id: str) -> Tuple[int, int, str]:
    # Decimal ids compare numerically and rank above non-numeric ids.
    if item_id.isdecimal():
        return (1, int(item_id), "")
    return (0, 0, item_id)


def listing_sort_key(listing: Listing) -> Tuple:
    """Sort key for ``(provenance_block desc, item_id desc)``.

    Use with ``reverse=True``. The seller is the last component so two
    sellers of the same item in the same block still order totally.
    """
    return (listing.provenance_block, _item_order(listing.item_id), _invert(listing.seller))


def _invert(text: str) -> Tuple[int, ...]:
    # Seller ascending under reverse=True.
    return tuple(-ord(ch) for ch in text) + (1,)


def sort_listings(listings: Iterable[Listing]) -> List[Listing]:
    return sorted(listings, key=listing_sort_key, reverse=True)


def merge_listings(
    existing: Sequence[Listing] | None,
    batch: Sequence[Listing] | None,
) -> List[Listing]:
    """Return ``existing`` with ``batch`` applied, deduplicated and sorted."""
    by_key: Dict[str, Listing] = {item.composite_key: item for item in existing or ()}
    for item in batch or ():
        if item.is_listed:
            by_key[item.composite_key] = item
        else:
            by_key.pop(item.composite_key, None)
    return sort_listings(by_key.values())


def listing_keys(listings: Iterable[Listing]) -> set[str]:
    return {item.composite_key for item in listings}
