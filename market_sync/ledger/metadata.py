"""Token metadata fetch over HTTP, with IPFS gateway rewriting."""

from __future__ import annotations

import logging
from typing import Any, Dict

import httpx

from market_sync.framework.retry import RetryingCaller
from market_sync.ledger.base import LedgerReader, MetadataFetcher
from market_sync.models import ListingMetadata

LOGGER = logging.getLogger(__name__)

IPFS_SCHEME = "ipfs://"
DEFAULT_IPFS_GATEWAY = "https://gateway.pinata.cloud/ipfs/"


def normalize_gateway(gateway: str | None) -> str:
    value = (gateway or DEFAULT_IPFS_GATEWAY).strip() or DEFAULT_IPFS_GATEWAY
    return value.rstrip("/") + "/"


def normalize_ipfs_uri(uri: str | None, gateway: str = DEFAULT_IPFS_GATEWAY) -> str:
    """Rewrite ``ipfs://<cid>/path`` to an HTTP gateway URL; pass others through."""
    if not uri:
        return ""
    if not uri.startswith(IPFS_SCHEME):
        return uri
    path = uri[len(IPFS_SCHEME):]
    if path.startswith("ipfs/"):
        path = path[len("ipfs/"):]
    return normalize_gateway(gateway) + path


class HttpMetadataFetcher(MetadataFetcher):
    def __init__(
        self,
        gateway: str = DEFAULT_IPFS_GATEWAY,
        timeout_seconds: float = 10.0,
        client: httpx.AsyncClient | None = None,
    ) -> None:
        self._gateway = normalize_gateway(gateway)
        self._client = client or httpx.AsyncClient(timeout=timeout_seconds, follow_redirects=True)

    @property
    def gateway(self) -> str:
        return self._gateway

    async def fetch(self, uri: str) -> Dict[str, Any]:
        url = normalize_ipfs_uri(uri, self._gateway)
        if not url:
            raise ValueError("empty metadata uri")
        response = await self._client.get(url)
        response.raise_for_status()
        payload = response.json()
        if not isinstance(payload, dict):
            raise ValueError(f"metadata at {url} is not a JSON object")
        image = payload.get("image")
        if isinstance(image, str):
            payload = {**payload, "image": normalize_ipfs_uri(image, self._gateway)}
        return payload

    async def aclose(self) -> None:
        await self._client.aclose()


async def resolve_metadata(
    reader: LedgerReader,
    fetcher: MetadataFetcher,
    caller: RetryingCaller,
    item_id: str,
) -> ListingMetadata:
    """Token URI + document fetch, both retried. Failure yields empty fields."""
    try:
        uri = await caller.call(lambda: reader.token_uri(item_id))
        payload = await caller.call(lambda: fetcher.fetch(uri))
    except Exception as exc:
        LOGGER.warning("metadata unavailable for item %s: %s", item_id, exc)
        return ListingMetadata()
    return ListingMetadata.from_payload(payload)
