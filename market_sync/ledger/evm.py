from __future__ import annotations

import logging
from typing import Any, List, Sequence

from aiohttp import ClientTimeout
from web3 import AsyncHTTPProvider, AsyncWeb3

from market_sync.errors import CapabilityUnavailableError, ConfigurationError
from market_sync.models import ListedEvent, ListingState

from .base import LedgerReader

LOGGER = logging.getLogger(__name__)

MARKET_ABI: List[dict[str, Any]] = [
    {
        "anonymous": False,
        "inputs": [
            {"indexed": True, "name": "seller", "type": "address"},
            {"indexed": True, "name": "nft", "type": "address"},
            {"indexed": True, "name": "tokenId", "type": "uint256"},
            {"indexed": False, "name": "price", "type": "uint256"},
        ],
        "name": "ItemListed",
        "type": "event",
    },
    {
        "inputs": [
            {"name": "nft", "type": "address"},
            {"name": "tokenId", "type": "uint256"},
        ],
        "name": "getListing",
        "outputs": [
            {
                "components": [
                    {"name": "price", "type": "uint256"},
                    {"name": "seller", "type": "address"},
                ],
                "name": "",
                "type": "tuple",
            }
        ],
        "stateMutability": "view",
        "type": "function",
    },
    {
        "inputs": [{"name": "seller", "type": "address"}],
        "name": "getProceeds",
        "outputs": [{"name": "", "type": "uint256"}],
        "stateMutability": "view",
        "type": "function",
    },
]

NFT_ABI: List[dict[str, Any]] = [
    {
        "inputs": [{"name": "tokenId", "type": "uint256"}],
        "name": "tokenURI",
        "outputs": [{"name": "", "type": "string"}],
        "stateMutability": "view",
        "type": "function",
    },
    {
        "inputs": [],
        "name": "totalSupply",
        "outputs": [{"name": "", "type": "uint256"}],
        "stateMutability": "view",
        "type": "function",
    },
    {
        "inputs": [{"name": "index", "type": "uint256"}],
        "name": "tokenByIndex",
        "outputs": [{"name": "", "type": "uint256"}],
        "stateMutability": "view",
        "type": "function",
    },
    {
        "inputs": [{"name": "owner", "type": "address"}],
        "name": "balanceOf",
        "outputs": [{"name": "", "type": "uint256"}],
        "stateMutability": "view",
        "type": "function",
    },
    {
        "inputs": [
            {"name": "owner", "type": "address"},
            {"name": "index", "type": "uint256"},
        ],
        "name": "tokenOfOwnerByIndex",
        "outputs": [{"name": "", "type": "uint256"}],
        "stateMutability": "view",
        "type": "function",
    },
]


def _listing_state(raw: Any) -> ListingState:
    # Struct outputs decode to a (price, seller) tuple; tolerate a nested one.
    if isinstance(raw, (list, tuple)) and len(raw) == 1 and isinstance(raw[0], (list, tuple)):
        raw = raw[0]
    if isinstance(raw, (list, tuple)) and len(raw) >= 2:
        return ListingState(price_units=int(raw[0]), seller=str(raw[1] or "").lower())
    price = getattr(raw, "price", 0)
    seller = getattr(raw, "seller", "")
    return ListingState(price_units=int(price or 0), seller=str(seller or "").lower())


class Web3LedgerReader(LedgerReader):
    """LedgerReader over an EVM JSON-RPC endpoint using web3.py."""

    def __init__(
        self,
        rpc_url: str,
        market_address: str,
        nft_address: str,
        timeout_seconds: float = 15.0,
    ) -> None:
        if not rpc_url or not market_address or not nft_address:
            raise ConfigurationError("rpc_url, market_address and nft_address are required")
        self._rpc_url = rpc_url
        provider = AsyncHTTPProvider(
            rpc_url,
            request_kwargs={"timeout": ClientTimeout(total=timeout_seconds)},
        )
        self._w3 = AsyncWeb3(provider)
        self.collection = nft_address.lower()
        self._nft_checksum = AsyncWeb3.to_checksum_address(nft_address)
        self._market_checksum = AsyncWeb3.to_checksum_address(market_address)
        self._market = self._w3.eth.contract(
            address=self._market_checksum,
            abi=MARKET_ABI,
        )
        self._nft = self._w3.eth.contract(address=self._nft_checksum, abi=NFT_ABI)

    @property
    def rpc_url(self) -> str:
        return self._rpc_url

    async def chain_id(self) -> int | None:
        return int(await self._w3.eth.chain_id)

    async def missing_contracts(self) -> list[str]:
        """Configured addresses that hold no contract code on this chain."""
        missing = []
        for address in (self._market_checksum, self._nft_checksum):
            code = await self._w3.eth.get_code(address)
            if not code:
                missing.append(address.lower())
        return missing

    async def block_number(self) -> int:
        return int(await self._w3.eth.block_number)

    async def query_listed_events(self, from_block: int, to_block: int) -> Sequence[ListedEvent]:
        logs = await self._market.events.ItemListed.get_logs(
            from_block=from_block,
            to_block=to_block,
        )
        events: list[ListedEvent] = []
        for log in logs:
            args = log["args"]
            events.append(
                ListedEvent(
                    collection=str(args["nft"]).lower(),
                    item_id=str(int(args["tokenId"])),
                    seller=str(args["seller"]).lower(),
                    price_units=int(args["price"]),
                    block_number=int(log["blockNumber"]),
                )
            )
        return events

    async def get_listing(self, item_id: str) -> ListingState:
        raw = await self._market.functions.getListing(self._nft_checksum, int(item_id)).call()
        return _listing_state(raw)

    async def token_uri(self, item_id: str) -> str:
        return str(await self._nft.functions.tokenURI(int(item_id)).call())

    async def total_supply(self) -> int:
        try:
            return int(await self._nft.functions.totalSupply().call())
        except Exception as exc:
            # Non-enumerable collections revert or return empty data here.
            raise CapabilityUnavailableError(f"totalSupply unavailable: {exc}") from exc

    async def token_by_index(self, index: int) -> str:
        return str(int(await self._nft.functions.tokenByIndex(index).call()))

    async def balance_of(self, owner: str) -> int:
        owner_checksum = AsyncWeb3.to_checksum_address(owner)
        return int(await self._nft.functions.balanceOf(owner_checksum).call())

    async def token_of_owner_by_index(self, owner: str, index: int) -> str:
        owner_checksum = AsyncWeb3.to_checksum_address(owner)
        raw = await self._nft.functions.tokenOfOwnerByIndex(owner_checksum, index).call()
        return str(int(raw))

    async def get_proceeds(self, owner: str) -> int:
        owner_checksum = AsyncWeb3.to_checksum_address(owner)
        return int(await self._market.functions.getProceeds(owner_checksum).call())

    async def aclose(self) -> None:
        provider = self._w3.provider
        if hasattr(provider, "disconnect"):
            await provider.disconnect()


async def connect_ledger_reader(
    rpc_url: str,
    market_address: str,
    nft_address: str,
    fallback_rpc_url: str | None = None,
    timeout_seconds: float = 15.0,
) -> Web3LedgerReader:
    """Build a validated reader, preferring ``rpc_url`` over the fallback.

    The primary endpoint is validated with a ``chain_id`` round trip. When
    it does not answer, the fallback endpoint is used instead (also
    validated). Raises ConfigurationError when neither is usable.
    A reachable endpoint whose chain has no code at the market or the
    collection address is a configuration error and is not retried on the
    fallback.
    """
    candidates = [url for url in (rpc_url, fallback_rpc_url) if url]
    if not candidates:
        raise ConfigurationError("no RPC endpoint configured")

    last_error: Exception | None = None
    for url in candidates:
        reader = Web3LedgerReader(url, market_address, nft_address, timeout_seconds=timeout_seconds)
        try:
            chain = await reader.chain_id()
        except Exception as exc:
            last_error = exc
            LOGGER.warning("read endpoint %s failed validation: %s", url, exc)
            await reader.aclose()
            continue
        missing = await reader.missing_contracts()
        if missing:
            await reader.aclose()
            raise ConfigurationError(f"no contract code at {', '.join(missing)} on chain {chain}")
        LOGGER.info("read endpoint %s connected (chain_id=%s)", url, chain)
        return reader

    raise ConfigurationError(f"no reachable RPC endpoint: {last_error}")
