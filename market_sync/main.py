from __future__ import annotations

import argparse
import asyncio
import json
import logging
from dataclasses import replace

from market_sync.config import AppSettings, load_settings
from market_sync.inventory import InventoryLoader
from market_sync.logging_setup import configure_logging
from market_sync.models import SyncUpdate, SyncUpdateKind
from market_sync.runtime import open_read_services

LOGGER = logging.getLogger(__name__)


def parse_args(argv: list[str] | None = None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(
        description="Marketplace listing synchronizer",
    )
    parser.add_argument(
        "--serve",
        action="store_true",
        help="Run the HTTP listing endpoint",
    )
    parser.add_argument(
        "--more",
        type=int,
        default=0,
        help="Follow the initial load with N 'load more' calls",
    )
    parser.add_argument(
        "--target",
        type=int,
        default=None,
        help="New listings wanted per load (default: GLOBAL_BATCH_TARGET)",
    )
    parser.add_argument(
        "--no-scan",
        action="store_true",
        help="Skip the warm-start scan on the initial load",
    )
    parser.add_argument(
        "--owner",
        type=str,
        default=None,
        help="Print the inventory and proceeds of this address instead",
    )
    parser.add_argument(
        "--log-level",
        type=str,
        default=None,
        help="Overrides LOG_LEVEL",
    )
    return parser.parse_args(argv)


def _print_update(update: SyncUpdate) -> None:
    if update.kind is SyncUpdateKind.SCANNING:
        LOGGER.info("%s", update.message)
    elif update.kind is SyncUpdateKind.ERROR:
        LOGGER.error("sync error: %s", update.message)


async def _sync(settings: AppSettings, args: argparse.Namespace) -> None:
    async with open_read_services(settings) as services:
        if args.owner:
            loader = InventoryLoader(services.reader, services.metadata, services.caller())
            snapshot = await loader.load(args.owner)
            for item in snapshot.items:
                print(json.dumps({
                    "tokenId": item.item_id,
                    "name": item.metadata.name,
                    "listed": item.listed,
                    "priceWei": str(item.price_units),
                    "seller": item.seller,
                }))
            print(json.dumps({"owner": snapshot.owner, "proceedsWei": str(snapshot.proceeds_units)}))
            return

        controller = services.controller()
        unsubscribe = controller.subscribe(_print_update)
        try:
            reports = [await controller.load(reset=True, target=args.target, scan=not args.no_scan)]
            for _ in range(max(0, args.more)):
                if controller.cursor is not None and controller.cursor.exhausted:
                    break
                reports.append(await controller.load(reset=False, target=args.target))
        finally:
            unsubscribe()
            await controller.aclose()

        for listing in controller.listings:
            print(json.dumps(listing.to_payload()))
        cursor = controller.cursor
        LOGGER.info(
            "synced listings=%d loads=%d boundary=%s exhausted=%s",
            len(controller.listings),
            len(reports),
            cursor.boundary if cursor else "-",
            cursor.exhausted if cursor else False,
        )


def _serve(settings: AppSettings) -> None:
    import uvicorn

    from market_sync.api.server import create_app

    uvicorn.run(
        create_app(settings),
        host=settings.server.host,
        port=settings.server.port,
        log_level=settings.log_level.lower(),
    )


def main(argv: list[str] | None = None) -> None:
    args = parse_args(argv)
    settings = load_settings()
    if args.log_level:
        settings = replace(settings, log_level=args.log_level)

    configure_logging(settings.log_level)
    settings.validate()

    if args.serve:
        _serve(settings)
        return
    asyncio.run(_sync(settings, args))


if __name__ == "__main__":
    main()
