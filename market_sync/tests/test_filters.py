from __future__ import annotations

from market_sync.filters import ListingQuery, SortOrder, filter_listings, matches_text
from market_sync.models import Listing, ListingMetadata
from market_sync.tests.fakes import BUYER, SELLER

ETH = 10**18


def _item(item_id: str, price_eth: float, block: int, name: str = "", seller: str = SELLER) -> Listing:
    return Listing(
        item_id=item_id,
        seller=seller,
        price_units=int(price_eth * ETH),
        provenance_block=block,
        metadata=ListingMetadata(name=name, description=f"desc {name}".strip()),
    )


ITEMS = [
    _item("1", 0.5, 100, name="Red Fox"),
    _item("12", 2.0, 90, name="Blue Whale 12"),
    _item("21", 1.0, 95, name="Green Frog", seller=BUYER),
]


class TestTextSearch:
    def test_digits_match_id_exactly(self) -> None:
        assert [i.item_id for i in filter_listings(ITEMS, ListingQuery(text="12"))] == ["12"]
        assert filter_listings(ITEMS, ListingQuery(text="2")) == []

    def test_mixed_text_matches_id_digits_or_fields(self) -> None:
        assert matches_text(ITEMS[1], "#12")
        assert matches_text(ITEMS[1], "whale 12")
        assert not matches_text(ITEMS[0], "#12")

    def test_plain_text_is_case_insensitive_substring(self) -> None:
        assert [i.item_id for i in filter_listings(ITEMS, ListingQuery(text="fRoG"))] == ["21"]

    def test_seller_substring(self) -> None:
        found = filter_listings(ITEMS, ListingQuery(text=BUYER[-6:].upper()))
        assert [i.item_id for i in found] == ["21"]

    def test_blank_text_keeps_everything(self) -> None:
        assert len(filter_listings(ITEMS, ListingQuery(text="   "))) == 3


class TestPriceAndSort:
    def test_inclusive_price_bounds(self) -> None:
        found = filter_listings(ITEMS, ListingQuery(min_price="0.5", max_price=1))
        assert {i.item_id for i in found} == {"1", "21"}

    def test_unparseable_bounds_are_ignored(self) -> None:
        assert len(filter_listings(ITEMS, ListingQuery(min_price="abc", max_price=""))) == 3

    def test_recent_uses_canonical_order(self) -> None:
        assert [i.item_id for i in filter_listings(ITEMS)] == ["1", "21", "12"]

    def test_price_sorts(self) -> None:
        asc = filter_listings(ITEMS, ListingQuery(sort=SortOrder.PRICE_ASC))
        desc = filter_listings(ITEMS, ListingQuery(sort="price-desc"))
        assert [i.item_id for i in asc] == ["1", "21", "12"]
        assert [i.item_id for i in desc] == ["12", "21", "1"]

    def test_unknown_sort_falls_back_to_recent(self) -> None:
        items = filter_listings(ITEMS, ListingQuery(sort="newest"))
        assert [i.item_id for i in items] == ["1", "21", "12"]

    def test_input_not_mutated(self) -> None:
        items = list(ITEMS)
        filter_listings(items, ListingQuery(sort=SortOrder.PRICE_DESC))
        assert items == ITEMS
