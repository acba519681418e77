from __future__ import annotations

import os
from dataclasses import dataclass, field

from dotenv import load_dotenv

from market_sync.errors import ConfigurationError
from market_sync.ledger.metadata import DEFAULT_IPFS_GATEWAY


def _as_float(value: str | None, default: float) -> float:
    if value is None or not value.strip():
        return default
    return float(value)


def _as_int(value: str | None, default: int) -> int:
    if value is None or not value.strip():
        return default
    return int(value)


def _as_optional_int(value: str | None) -> int | None:
    if value is None or not value.strip():
        return None
    return int(value)


def _as_str(value: str | None, default: str = "") -> str:
    if value is None:
        return default
    return value.strip() or default


@dataclass(frozen=True)
class LedgerSettings:
    rpc_url: str = ""
    fallback_rpc_url: str = ""
    market_address: str = ""
    nft_address: str = ""
    deploy_block: int = 0
    timeout_seconds: float = 15.0


@dataclass(frozen=True)
class PaginationSettings:
    batch_target: int = 10
    max_pages: int = 6
    page_size: int = 80
    page_delay_seconds: float = 1.2
    min_window: int | None = None
    shrink_cooldown_seconds: float = 0.4


@dataclass(frozen=True)
class ScanSettings:
    max_items: int = 200
    max_limit: int = 50
    max_page_cap: int = 12


@dataclass(frozen=True)
class RetrySettings:
    attempts: int = 3
    base_delay_seconds: float = 0.25


@dataclass(frozen=True)
class MetadataSettings:
    ipfs_gateway: str = DEFAULT_IPFS_GATEWAY
    timeout_seconds: float = 10.0


@dataclass(frozen=True)
class ServerSettings:
    host: str = "0.0.0.0"
    port: int = 4000


@dataclass(frozen=True)
class AppSettings:
    ledger: LedgerSettings = field(default_factory=LedgerSettings)
    pagination: PaginationSettings = field(default_factory=PaginationSettings)
    scan: ScanSettings = field(default_factory=ScanSettings)
    retry: RetrySettings = field(default_factory=RetrySettings)
    metadata: MetadataSettings = field(default_factory=MetadataSettings)
    server: ServerSettings = field(default_factory=ServerSettings)
    log_level: str = "INFO"

    def validate(self) -> "AppSettings":
        missing = [
            name
            for name, value in (
                ("MARKET_RPC_URL", self.ledger.rpc_url or self.ledger.fallback_rpc_url),
                ("MARKET_ADDRESS", self.ledger.market_address),
                ("NFT_ADDRESS", self.ledger.nft_address),
            )
            if not value
        ]
        if missing:
            raise ConfigurationError(f"missing settings: {', '.join(missing)}")
        if self.pagination.page_size <= 0:
            raise ConfigurationError("BLOCK_PAGE must be positive")
        if self.ledger.deploy_block < 0:
            raise ConfigurationError("MARKET_DEPLOY_BLOCK must not be negative")
        return self


def load_settings() -> AppSettings:
    load_dotenv(override=False)

    ledger = LedgerSettings(
        rpc_url=_as_str(os.getenv("MARKET_RPC_URL")),
        fallback_rpc_url=_as_str(os.getenv("MARKET_FALLBACK_RPC_URL")),
        market_address=_as_str(os.getenv("MARKET_ADDRESS")),
        nft_address=_as_str(os.getenv("NFT_ADDRESS")),
        deploy_block=_as_int(os.getenv("MARKET_DEPLOY_BLOCK"), 0),
        timeout_seconds=_as_float(os.getenv("MARKET_RPC_TIMEOUT_SECONDS"), 15.0),
    )
    pagination = PaginationSettings(
        batch_target=_as_int(os.getenv("GLOBAL_BATCH_TARGET"), 10),
        max_pages=_as_int(os.getenv("GLOBAL_MAX_PAGES"), 6),
        page_size=_as_int(os.getenv("BLOCK_PAGE"), 80),
        page_delay_seconds=_as_int(os.getenv("PAGE_DELAY_MS"), 1200) / 1000.0,
        min_window=_as_optional_int(os.getenv("RANGE_MIN_WINDOW")),
        shrink_cooldown_seconds=_as_int(os.getenv("RANGE_SHRINK_COOLDOWN_MS"), 400) / 1000.0,
    )
    scan = ScanSettings(
        max_items=_as_int(os.getenv("MARKETPLACE_SCAN_MAX"), 200),
        max_limit=_as_int(os.getenv("MARKETPLACE_MAX_LIMIT"), 50),
        max_page_cap=_as_int(os.getenv("MARKETPLACE_MAX_PAGES"), 12),
    )
    retry = RetrySettings(
        attempts=_as_int(os.getenv("RETRY_ATTEMPTS"), 3),
        base_delay_seconds=_as_int(os.getenv("RETRY_BASE_DELAY_MS"), 250) / 1000.0,
    )
    metadata = MetadataSettings(
        ipfs_gateway=_as_str(os.getenv("IPFS_GATEWAY"), DEFAULT_IPFS_GATEWAY),
        timeout_seconds=_as_float(os.getenv("METADATA_TIMEOUT_SECONDS"), 10.0),
    )
    server = ServerSettings(
        host=_as_str(os.getenv("HOST"), "0.0.0.0"),
        port=_as_int(os.getenv("PORT"), 4000),
    )

    return AppSettings(
        ledger=ledger,
        pagination=pagination,
        scan=scan,
        retry=retry,
        metadata=metadata,
        server=server,
        log_level=_as_str(os.getenv("LOG_LEVEL"), "INFO"),
    )
