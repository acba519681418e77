"""Listing synchronization engine: warm start + backward event pagination.

One ``PaginationController`` owns one canonical listing set and one
resumable cursor. A ``load`` call:

1. on reset, clears the view and seeds it from the warm-start scan
   (published immediately; an empty scan publishes a "still scanning"
   update instead);
2. walks ``ItemListed`` events backwards from the ledger head (or the
   carried cursor) one page at a time, resolving each new composite key
   against current ledger state and merging every page as soon as it is
   processed;
3. stops at ``target`` new listings, at ``max_pages`` pages, or once the
   marketplace origin block has been served, and persists the cursor
   whatever the outcome.

A ``load`` issued while another one is running on the same instance is
ignored. Events whose composite key is already in the view are skipped
before re-resolving, so an entry seeded by the warm start is not
re-checked by older events of the same traversal.

Usage::

    controller = PaginationController(reader, metadata, PaginationConfig(origin_block=5_000_000))
    unsubscribe = controller.subscribe(on_update)
    await controller.load(reset=True)
    await controller.load(reset=False)   # load more
"""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass
from enum import Enum
from typing import Callable, List, Optional, Tuple

from market_sync.errors import ConfigurationError
from market_sync.framework.events import EventHub, Unsubscribe
from market_sync.framework.range_fetcher import AdaptiveRangeFetcher, RangeFetcherConfig
from market_sync.framework.reconciler import listing_keys, merge_listings
from market_sync.framework.retry import RetryingCaller, SleepFn
from market_sync.ledger.base import LedgerReader, MetadataFetcher
from market_sync.ledger.metadata import resolve_metadata
from market_sync.models import (
    ExternalStateChange,
    ListedEvent,
    Listing,
    LoadReport,
    PaginationCursor,
    SyncUpdate,
    SyncUpdateKind,
    composite_key,
)
from market_sync.scanner import WarmStartScanner

LOGGER = logging.getLogger(__name__)

STILL_SCANNING_MESSAGE = "Scanning current listings..."


# ---------------------------------------------------------------------------
# Config
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class PaginationConfig:
    """Configuration for the synchronization engine.

    Parameters
    ----------
    origin_block:
        Block the marketplace was deployed at; nothing older is queried.
        Default 0.
    page_size:
        Blocks per page (``to - from + 1`` before any shrink). Default 80.
    batch_target:
        New listings wanted per ``load`` call. Default 10.
    max_pages:
        Page cap per ``load`` call. Default 6.
    page_delay:
        Seconds slept between pages. Default 1.2.
    min_window:
        Range-shrink floor. ``None`` means ``max(20, page_size // 2)``.
    shrink_cooldown:
        Seconds slept between shrink attempts. Default 0.4.
    scan_max_items:
        Warm-start enumeration cap. Default 200.
    scan_counts_toward_target:
        Count warm-start hits toward ``batch_target`` and keep at most
        that many of them. The HTTP endpoint uses this. Default False.
    """

    origin_block: int = 0
    page_size: int = 80
    batch_target: int = 10
    max_pages: int = 6
    page_delay: float = 1.2
    min_window: Optional[int] = None
    shrink_cooldown: float = 0.4
    scan_max_items: int = 200
    scan_counts_toward_target: bool = False

    @property
    def effective_min_window(self) -> int:
        if self.min_window is not None:
            return self.min_window
        return max(20, self.page_size // 2)


class SyncState(str, Enum):
    IDLE = "idle"
    FETCHING = "fetching"
    MERGING = "merging"
    DONE = "done"


# ---------------------------------------------------------------------------
# Controller
# ---------------------------------------------------------------------------


class PaginationController:
    def __init__(
        self,
        reader: LedgerReader,
        metadata: MetadataFetcher,
        config: PaginationConfig | None = None,
        caller: RetryingCaller | None = None,
        fetcher: AdaptiveRangeFetcher | None = None,
        scanner: WarmStartScanner | None = None,
        sleep: SleepFn | None = None,
    ) -> None:
        self._config = config or PaginationConfig()
        if self._config.page_size <= 0:
            raise ConfigurationError(f"page_size must be positive, got {self._config.page_size}")
        collection = str(getattr(reader, "collection", "") or "").lower()
        if not collection:
            raise ConfigurationError("ledger reader has no collection address")

        self._reader = reader
        self._metadata = metadata
        self._collection = collection
        self._sleep = sleep or asyncio.sleep
        self._caller = caller or RetryingCaller(sleep=self._sleep)
        self._fetcher = fetcher or AdaptiveRangeFetcher(
            reader,
            RangeFetcherConfig(
                min_window=self._config.effective_min_window,
                shrink_cooldown=self._config.shrink_cooldown,
            ),
            sleep=self._sleep,
        )
        self._scanner = scanner or WarmStartScanner(reader, metadata, self._caller)

        self._listings: List[Listing] = []
        self._cursor: Optional[PaginationCursor] = None
        self._state = SyncState.IDLE
        self._loading = False
        self._generation = 0

        self._updates: EventHub[SyncUpdate] = EventHub("sync-updates")
        self._external: EventHub[ExternalStateChange] = EventHub("external-state")
        self._external_unsubscribe: Optional[Unsubscribe] = self._external.subscribe(
            self._handle_external_change
        )

    # -- read side -----------------------------------------------------------

    @property
    def config(self) -> PaginationConfig:
        return self._config

    @property
    def listings(self) -> Tuple[Listing, ...]:
        return tuple(self._listings)

    @property
    def cursor(self) -> Optional[PaginationCursor]:
        return self._cursor

    @property
    def state(self) -> SyncState:
        return self._state

    @property
    def is_loading(self) -> bool:
        return self._loading

    # -- subscriptions -------------------------------------------------------

    def subscribe(self, handler: Callable[[SyncUpdate], None]) -> Unsubscribe:
        return self._updates.subscribe(handler)

    def on_external_state_change(self, handler: Callable[[ExternalStateChange], None]) -> Unsubscribe:
        return self._external.subscribe(handler)

    def notify_external_state_change(self, change: ExternalStateChange) -> None:
        self._external.publish(change)

    def resume_from(self, cursor: PaginationCursor) -> None:
        """Carry a cursor obtained elsewhere (e.g. an HTTP ``cursor`` param)."""
        self._cursor = cursor

    def reset_state(self) -> None:
        """Discard the view and the cursor; an in-flight load stops merging."""
        self._generation += 1
        self._listings = []
        self._cursor = None
        self._publish(SyncUpdateKind.RESET)

    async def aclose(self) -> None:
        if self._external_unsubscribe is not None:
            self._external_unsubscribe()
            self._external_unsubscribe = None
        self._external.clear()
        self._updates.clear()

    # -- load ----------------------------------------------------------------

    async def load(
        self,
        reset: bool = True,
        target: Optional[int] = None,
        *,
        max_pages: Optional[int] = None,
        scan: Optional[bool] = None,
    ) -> Optional[LoadReport]:
        """Load the next batch of listings.

        Parameters
        ----------
        reset:
            Start over from the ledger head, discarding view and cursor.
        target:
            New listings wanted. Defaults to ``config.batch_target``.
        max_pages:
            Page cap for this call. Defaults to ``config.max_pages``.
        scan:
            Run the warm-start scan first. Defaults to ``reset``.

        Returns
        -------
        LoadReport, or None when another load was already in progress.
        """
        if self._loading:
            LOGGER.info("load ignored: another load is in progress")
            return None

        self._loading = True
        try:
            return await self._load(
                reset=reset,
                target=self._config.batch_target if target is None else target,
                page_cap=self._config.max_pages if max_pages is None else max_pages,
                scan=reset if scan is None else scan,
            )
        except Exception as exc:
            LOGGER.warning("load failed: %s", exc)
            self._publish(SyncUpdateKind.ERROR, message=str(exc))
            raise
        finally:
            self._loading = False
            self._state = SyncState.DONE

    async def _load(self, reset: bool, target: int, page_cap: int, scan: bool) -> LoadReport:
        cfg = self._config
        if reset:
            self.reset_state()
        generation = self._generation

        accepted: List[Listing] = []
        collected = 0
        scanned_count = 0

        if scan:
            self._state = SyncState.FETCHING
            scanned = await self._scanner.scan(cfg.scan_max_items)
            if cfg.scan_counts_toward_target:
                scanned = merge_listings([], scanned)[: max(target, 0)]
                collected = len(scanned)
            scanned_count = len(scanned)
            if generation == self._generation:
                if scanned:
                    self._listings = merge_listings(self._listings, scanned)
                    self._publish(SyncUpdateKind.LISTINGS)
                else:
                    self._publish(SyncUpdateKind.SCANNING, message=STILL_SCANNING_MESSAGE)

        carried = None if reset else self._cursor
        if carried is None:
            self._state = SyncState.FETCHING
            boundary = int(await self._caller.call(self._reader.block_number))
            exhausted = boundary < cfg.origin_block
        else:
            boundary = carried.boundary
            exhausted = carried.exhausted or boundary < cfg.origin_block

        pages = 0
        ranges: List[Tuple[int, int]] = []
        try:
            while (
                pages < page_cap
                and collected < target
                and not exhausted
                and generation == self._generation
            ):
                self._state = SyncState.FETCHING
                lower = max(cfg.origin_block, boundary - (cfg.page_size - 1))
                result = await self._fetcher.fetch_range(lower, boundary, cfg.effective_min_window)

                self._state = SyncState.MERGING
                page = await self._resolve_page(result.records)
                if generation != self._generation:
                    break
                if page:
                    self._listings = merge_listings(self._listings, page)
                    self._publish(SyncUpdateKind.LISTINGS)
                accepted.extend(page)
                collected += len(page)
                ranges.append((result.used_from, result.used_to))

                exhausted = result.used_from <= cfg.origin_block
                boundary = result.used_from - 1
                pages += 1
                LOGGER.debug(
                    "page %d served [%d, %d]: %d events, %d accepted",
                    pages, result.used_from, result.used_to, len(result.records), len(page),
                )

                if not exhausted and collected < target and pages < page_cap:
                    await self._sleep(cfg.page_delay)
        finally:
            if generation == self._generation:
                self._cursor = PaginationCursor(boundary=boundary, exhausted=exhausted)

        LOGGER.info(
            "load done: %d new listings over %d pages (boundary=%d exhausted=%s)",
            len(accepted), pages, boundary, exhausted,
        )
        return LoadReport(
            accepted=tuple(accepted),
            pages_used=pages,
            cursor=PaginationCursor(boundary=boundary, exhausted=exhausted),
            scan_bootstrap=scan,
            scanned_count=scanned_count,
            ranges=tuple(ranges),
        )

    async def _resolve_page(self, events: Tuple[ListedEvent, ...]) -> List[Listing]:
        known = listing_keys(self._listings)
        page: List[Listing] = []
        for event in events:
            if event.collection.lower() != self._collection:
                continue
            if composite_key(event.item_id, event.seller) in known:
                continue
            try:
                listing = await self._resolve_event(event)
            except Exception as exc:
                LOGGER.warning("could not resolve item %s: %s", event.item_id, exc)
                continue
            if listing is None:
                continue
            known.add(listing.composite_key)
            page.append(listing)
        return page

    async def _resolve_event(self, event: ListedEvent) -> Optional[Listing]:
        state = await self._caller.call(lambda: self._reader.get_listing(event.item_id))
        if not state.is_listed:
            # Sold or cancelled since the event was emitted.
            return None
        metadata = await resolve_metadata(self._reader, self._metadata, self._caller, event.item_id)
        return Listing(
            item_id=event.item_id,
            seller=state.seller or event.seller,
            price_units=state.price_units,
            provenance_block=event.block_number,
            metadata=metadata,
        )

    # -- internals -----------------------------------------------------------

    def _publish(self, kind: SyncUpdateKind, message: str = "") -> None:
        self._updates.publish(SyncUpdate(kind=kind, listings=tuple(self._listings), message=message))

    def _handle_external_change(self, change: ExternalStateChange) -> None:
        LOGGER.info("external state change (%s): discarding view and cursor", change.kind)
        self.reset_state()
