"""Tests for the HTTP listing endpoint."""

from __future__ import annotations

from fastapi.testclient import TestClient

from market_sync.api.server import _clamp, _parse_cursor, _should_scan, create_app
from market_sync.config import AppSettings, LedgerSettings, PaginationSettings
from market_sync.models import ListingState
from market_sync.runtime import ReadServices
from market_sync.tests.fakes import SELLER, FakeLedger, FakeMetadata, SleepRecorder, event


def _ledger() -> FakeLedger:
    events = [event(str(i + 1), 1000 - 30 * i) for i in range(30)]
    states = {str(i + 1): ListingState(10**17 * (i + 1), SELLER) for i in range(30)}
    return FakeLedger(head=1000, events=events, states=states)


def _client(ledger: FakeLedger, deploy_block: int = 0, batch_target: int = 3) -> TestClient:
    settings = AppSettings(
        ledger=LedgerSettings(
            rpc_url="https://rpc.example",
            market_address="0xmarket",
            nft_address=ledger.collection,
            deploy_block=deploy_block,
        ),
        pagination=PaginationSettings(batch_target=batch_target, page_size=80),
    )
    services = ReadServices(settings=settings, reader=ledger, metadata=FakeMetadata(), sleep=SleepRecorder())
    return TestClient(create_app(settings, services=services))


class TestQueryParsing:
    def test_clamp(self) -> None:
        assert _clamp(None, 10, 50) == 10
        assert _clamp("0", 10, 50) == 10
        assert _clamp("abc", 10, 50) == 10
        assert _clamp("1000", 10, 50) == 50
        assert _clamp("-4", 10, 50) == 1
        assert _clamp("7", 10, 50) == 7

    def test_cursor(self) -> None:
        assert _parse_cursor(None) is None
        assert _parse_cursor("nope") is None
        assert _parse_cursor("920") == 920

    def test_scan_defaults(self) -> None:
        assert _should_scan(None, has_cursor=False)
        assert not _should_scan(None, has_cursor=True)
        assert _should_scan("true", has_cursor=True)
        assert not _should_scan("false", has_cursor=False)


class TestListingsEndpoint:
    def test_first_page_from_head(self) -> None:
        with _client(_ledger()) as client:
            response = client.get("/api/marketplace/listings")
        assert response.status_code == 200
        body = response.json()
        assert [item["tokenId"] for item in body["listings"]] == ["1", "2", "3"]
        assert body["listings"][0] == {
            "tokenId": "1",
            "name": "Item 1",
            "description": "Description of item 1",
            "image": "https://img.example/1.png",
            "seller": SELLER,
            "priceWei": str(10**17),
            "priceEth": "0.1",
            "blockNumber": 1000,
        }
        assert body["cursor"] == {"nextTo": 920, "done": False}
        assert body["meta"] == {"target": 3, "returned": 3, "scanBootstrap": True, "pagesUsed": 1}

    def test_cursor_continues_without_scan(self) -> None:
        with _client(_ledger()) as client:
            body = client.get("/api/marketplace/listings", params={"cursor": 920, "target": 2}).json()
        assert [item["tokenId"] for item in body["listings"]] == ["4", "5", "6"]
        assert body["cursor"] == {"nextTo": 840, "done": False}
        assert body["meta"]["scanBootstrap"] is False

    def test_scan_counts_toward_target(self) -> None:
        ledger = _ledger()
        ledger.supply = ["30", "29"]
        with _client(ledger) as client:
            body = client.get("/api/marketplace/listings", params={"target": 2}).json()
        assert {item["tokenId"] for item in body["listings"]} == {"29", "30"}
        assert body["meta"]["pagesUsed"] == 0

    def test_done_reports_origin(self) -> None:
        with _client(_ledger(), deploy_block=950, batch_target=10) as client:
            body = client.get("/api/marketplace/listings").json()
        assert body["cursor"] == {"nextTo": 950, "done": True}
        assert body["meta"]["returned"] == 2

    def test_cursor_below_origin_is_done(self) -> None:
        ledger = _ledger()
        with _client(ledger, deploy_block=950) as client:
            body = client.get("/api/marketplace/listings", params={"cursor": 900}).json()
        assert body["listings"] == []
        assert body["cursor"] == {"nextTo": 950, "done": True}
        assert ledger.query_calls == []

    def test_target_clamped(self) -> None:
        with _client(_ledger()) as client:
            body = client.get("/api/marketplace/listings", params={"target": 500, "maxPages": 1}).json()
        assert body["meta"]["target"] == 50
        assert body["meta"]["pagesUsed"] == 1

    def test_requests_do_not_share_state(self) -> None:
        with _client(_ledger()) as client:
            first = client.get("/api/marketplace/listings").json()
            second = client.get("/api/marketplace/listings").json()
        assert first["listings"] == second["listings"]

    def test_failure_returns_500(self) -> None:
        ledger = _ledger()
        ledger.failing_head = True
        with _client(ledger) as client:
            response = client.get("/api/marketplace/listings")
        assert response.status_code == 500
        assert response.json() == {"error": "head unavailable"}

    def test_health(self) -> None:
        with _client(_ledger()) as client:
            assert client.get("/health").json() == {"ok": True}
