"""Wiring from settings to the read services shared by engine instances.

The read client is built explicitly, validated once, and handed to every
controller that needs it; nothing here is a module-level singleton.
"""

from __future__ import annotations

import logging
from contextlib import asynccontextmanager
from dataclasses import dataclass, replace
from typing import Any, AsyncIterator

from market_sync.config import AppSettings
from market_sync.framework.retry import RetryConfig, RetryingCaller, SleepFn
from market_sync.ledger.base import LedgerReader, MetadataFetcher
from market_sync.ledger.evm import connect_ledger_reader
from market_sync.ledger.metadata import HttpMetadataFetcher
from market_sync.pagination import PaginationConfig, PaginationController

LOGGER = logging.getLogger(__name__)


def retry_config(settings: AppSettings) -> RetryConfig:
    return RetryConfig(
        attempts=settings.retry.attempts,
        base_delay=settings.retry.base_delay_seconds,
    )


def pagination_config(settings: AppSettings, **overrides: Any) -> PaginationConfig:
    config = PaginationConfig(
        origin_block=settings.ledger.deploy_block,
        page_size=settings.pagination.page_size,
        batch_target=settings.pagination.batch_target,
        max_pages=settings.pagination.max_pages,
        page_delay=settings.pagination.page_delay_seconds,
        min_window=settings.pagination.min_window,
        shrink_cooldown=settings.pagination.shrink_cooldown_seconds,
        scan_max_items=settings.scan.max_items,
    )
    return replace(config, **overrides) if overrides else config


@dataclass
class ReadServices:
    settings: AppSettings
    reader: LedgerReader
    metadata: MetadataFetcher
    sleep: SleepFn | None = None

    def caller(self) -> RetryingCaller:
        return RetryingCaller(retry_config(self.settings), sleep=self.sleep)

    def controller(self, **overrides: Any) -> PaginationController:
        """A fresh engine instance over the shared read client."""
        return PaginationController(
            self.reader,
            self.metadata,
            pagination_config(self.settings, **overrides),
            caller=self.caller(),
            sleep=self.sleep,
        )

    async def aclose(self) -> None:
        await self.metadata.aclose()
        await self.reader.aclose()


@asynccontextmanager
async def open_read_services(settings: AppSettings) -> AsyncIterator[ReadServices]:
    settings.validate()
    reader = await connect_ledger_reader(
        settings.ledger.rpc_url,
        settings.ledger.market_address,
        settings.ledger.nft_address,
        fallback_rpc_url=settings.ledger.fallback_rpc_url or None,
        timeout_seconds=settings.ledger.timeout_seconds,
    )
    metadata = HttpMetadataFetcher(
        gateway=settings.metadata.ipfs_gateway,
        timeout_seconds=settings.metadata.timeout_seconds,
    )
    services = ReadServices(settings=settings, reader=reader, metadata=metadata)
    try:
        yield services
    finally:
        await services.aclose()
        LOGGER.info("read services closed")
