from __future__ import annotations

import asyncio

import httpx
import pytest

from market_sync.framework.retry import RetryingCaller
from market_sync.ledger.metadata import (
    DEFAULT_IPFS_GATEWAY,
    HttpMetadataFetcher,
    normalize_ipfs_uri,
    resolve_metadata,
)
from market_sync.models import ListingMetadata
from market_sync.tests.fakes import FakeLedger, FakeMetadata, SleepRecorder


class TestNormalizeIpfsUri:
    def test_rewrites_ipfs_scheme(self) -> None:
        assert normalize_ipfs_uri("ipfs://bafy/1.json") == DEFAULT_IPFS_GATEWAY + "bafy/1.json"

    def test_strips_redundant_ipfs_prefix(self) -> None:
        assert normalize_ipfs_uri("ipfs://ipfs/bafy", "https://gw.example/ipfs") == "https://gw.example/ipfs/bafy"

    def test_passes_http_through(self) -> None:
        assert normalize_ipfs_uri("https://x.example/a.json") == "https://x.example/a.json"

    def test_empty(self) -> None:
        assert normalize_ipfs_uri(None) == ""


def _client(handler) -> httpx.AsyncClient:
    return httpx.AsyncClient(transport=httpx.MockTransport(handler))


class TestHttpMetadataFetcher:
    def test_fetch_rewrites_uri_and_image(self) -> None:
        requested = []

        def handler(request: httpx.Request) -> httpx.Response:
            requested.append(str(request.url))
            return httpx.Response(200, json={"name": "N", "image": "ipfs://img/1.png"})

        async def run() -> dict:
            fetcher = HttpMetadataFetcher("https://gw.example/ipfs/", client=_client(handler))
            try:
                return await fetcher.fetch("ipfs://meta/1")
            finally:
                await fetcher.aclose()

        payload = asyncio.run(run())
        assert requested == ["https://gw.example/ipfs/meta/1"]
        assert payload["image"] == "https://gw.example/ipfs/img/1.png"

    def test_http_error_raises(self) -> None:
        async def run() -> None:
            fetcher = HttpMetadataFetcher(client=_client(lambda request: httpx.Response(504)))
            try:
                await fetcher.fetch("https://x.example/1.json")
            finally:
                await fetcher.aclose()

        with pytest.raises(httpx.HTTPStatusError):
            asyncio.run(run())

    def test_non_object_payload_rejected(self) -> None:
        async def run() -> None:
            fetcher = HttpMetadataFetcher(client=_client(lambda request: httpx.Response(200, json=[1, 2])))
            try:
                await fetcher.fetch("https://x.example/1.json")
            finally:
                await fetcher.aclose()

        with pytest.raises(ValueError):
            asyncio.run(run())


class TestResolveMetadata:
    def test_success(self) -> None:
        caller = RetryingCaller(sleep=SleepRecorder())
        meta = asyncio.run(resolve_metadata(FakeLedger(), FakeMetadata(), caller, "4"))
        assert meta.name == "Item 4"
        assert meta.image == "https://img.example/4.png"

    def test_failure_yields_empty_fields_after_retries(self) -> None:
        sleep = SleepRecorder()
        fetcher = FakeMetadata(failing={"4"})
        meta = asyncio.run(resolve_metadata(FakeLedger(), fetcher, RetryingCaller(sleep=sleep), "4"))
        assert meta == ListingMetadata()
        assert len(fetcher.fetched) == 3
        assert sleep.delays == [0.25, 0.5]
