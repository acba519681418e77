"""HTTP listing endpoint.

``GET /api/marketplace/listings?target=N&cursor=B&maxPages=P&scan=bool``
serves one page of the marketplace feed: an optional warm-start scan plus
up to ``maxPages`` event pages walked back from ``cursor`` (or the ledger
head). Each request runs its own controller over the shared read client, so
requests never see each other's state.

Run with::

    uvicorn market_sync.api.server:app --port 4000
"""

from __future__ import annotations

import logging
import math
from contextlib import asynccontextmanager
from typing import Any, Dict, Optional

from fastapi import APIRouter, FastAPI, Request
from fastapi.responses import JSONResponse

from market_sync.config import AppSettings, load_settings
from market_sync.framework.reconciler import sort_listings
from market_sync.models import PaginationCursor
from market_sync.runtime import ReadServices, open_read_services

LOGGER = logging.getLogger(__name__)

router = APIRouter(prefix="/api/marketplace", tags=["marketplace"])


def _clamp(raw: Optional[str], default: int, high: int, low: int = 1) -> int:
    # Missing, zero or unparseable values fall back to the default.
    try:
        value = float(raw) if raw is not None else 0.0
    except ValueError:
        value = 0.0
    if not math.isfinite(value) or value == 0:
        value = default
    return int(min(max(value, low), high))


def _parse_cursor(raw: Optional[str]) -> Optional[int]:
    if raw is None or not raw.strip():
        return None
    try:
        value = float(raw)
    except ValueError:
        return None
    if not math.isfinite(value):
        return None
    return int(value)


def _should_scan(raw: Optional[str], has_cursor: bool) -> bool:
    if raw == "true":
        return True
    return not has_cursor and raw != "false"


@router.get("/listings")
async def listings(
    request: Request,
    target: Optional[str] = None,
    cursor: Optional[str] = None,
    maxPages: Optional[str] = None,
    scan: Optional[str] = None,
):
    services: ReadServices = request.app.state.services
    settings = services.settings
    origin = settings.ledger.deploy_block

    batch_target = _clamp(target, settings.pagination.batch_target, settings.scan.max_limit)
    page_cap = _clamp(maxPages, settings.pagination.max_pages, settings.scan.max_page_cap)
    start = _parse_cursor(cursor)
    has_cursor = start is not None
    should_scan = _should_scan(scan, has_cursor)

    controller = services.controller(scan_counts_toward_target=True)
    try:
        if has_cursor:
            controller.resume_from(PaginationCursor(boundary=start, exhausted=start < origin))
        report = await controller.load(
            reset=not has_cursor,
            target=batch_target,
            max_pages=page_cap,
            scan=should_scan,
        )
    except Exception as exc:
        LOGGER.exception("GET /api/marketplace/listings failed")
        return JSONResponse(status_code=500, content={"error": str(exc) or type(exc).__name__})
    finally:
        await controller.aclose()

    items = sort_listings(controller.listings)
    done = report.cursor.exhausted
    body: Dict[str, Any] = {
        "listings": [item.to_payload() for item in items],
        "cursor": {
            "nextTo": origin if done else max(report.cursor.boundary, 0),
            "done": done,
        },
        "meta": {
            "target": batch_target,
            "returned": len(items),
            "scanBootstrap": should_scan,
            "pagesUsed": report.pages_used,
        },
    }
    return body


def create_app(
    settings: AppSettings | None = None,
    services: ReadServices | None = None,
) -> FastAPI:
    """Build the app. With ``services`` given, the lifespan does not open
    (or close) its own read client."""

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        if services is not None:
            app.state.services = services
            yield
            return
        async with open_read_services(settings or load_settings()) as opened:
            app.state.services = opened
            yield

    app = FastAPI(title="Marketplace Listings", lifespan=lifespan)
    app.include_router(router)

    @app.get("/health")
    async def health():
        return {"ok": True}

    return app


app = create_app()
