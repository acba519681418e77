"""Local search / price range / sort over the canonical listing set.

Pure functions; the canonical set itself is never modified.
"""

from __future__ import annotations

import re
from dataclasses import dataclass
from decimal import Decimal, InvalidOperation
from enum import Enum
from typing import Iterable, List, Optional, Union

from market_sync.framework.reconciler import sort_listings
from market_sync.models import Listing

_NON_DIGITS = re.compile(r"\D")

PriceBound = Union[Decimal, float, int, str, None]


class SortOrder(str, Enum):
    RECENT = "recent"
    PRICE_ASC = "price-asc"
    PRICE_DESC = "price-desc"


@dataclass(frozen=True)
class ListingQuery:
    """View parameters.

    Parameters
    ----------
    text:
        Free-text search. All digits: exact item id match. Mixed text with
        digits: item id equal to the digits, or a case-insensitive substring
        of name, description or seller. Otherwise substring only.
    min_price / max_price:
        Inclusive bounds in ether. Unparseable or empty bounds are ignored.
    sort:
        ``recent`` keeps canonical order; ``price-asc`` / ``price-desc``
        order by price. Any other value falls back to ``recent``.
    """

    text: str = ""
    min_price: PriceBound = None
    max_price: PriceBound = None
    sort: SortOrder = SortOrder.RECENT


def _as_decimal(value: PriceBound) -> Optional[Decimal]:
    if value is None:
        return None
    if isinstance(value, str) and not value.strip():
        return None
    try:
        parsed = Decimal(str(value).strip())
    except InvalidOperation:
        return None
    if not parsed.is_finite():
        return None
    return parsed


def _sort_order(value: SortOrder | str) -> SortOrder:
    try:
        return SortOrder(value)
    except ValueError:
        return SortOrder.RECENT


def _text_match(listing: Listing, needle: str) -> bool:
    fields = (listing.metadata.name, listing.metadata.description, listing.seller)
    return any(needle in (value or "").lower() for value in fields)


def matches_text(listing: Listing, text: str) -> bool:
    raw = (text or "").strip()
    if not raw:
        return True
    if raw.isdigit():
        return listing.item_id == raw
    needle = raw.lower()
    digits = _NON_DIGITS.sub("", raw)
    if digits and listing.item_id == digits:
        return True
    return _text_match(listing, needle)


def filter_listings(listings: Iterable[Listing], query: ListingQuery | None = None) -> List[Listing]:
    query = query or ListingQuery()
    low = _as_decimal(query.min_price)
    high = _as_decimal(query.max_price)

    selected = []
    for listing in listings:
        if not matches_text(listing, query.text):
            continue
        price = listing.price_eth
        if low is not None and price < low:
            continue
        if high is not None and price > high:
            continue
        selected.append(listing)

    order = _sort_order(query.sort)
    if order is SortOrder.PRICE_ASC:
        return sorted(selected, key=lambda item: item.price_units)
    if order is SortOrder.PRICE_DESC:
        return sorted(selected, key=lambda item: item.price_units, reverse=True)
    return sort_listings(selected)
