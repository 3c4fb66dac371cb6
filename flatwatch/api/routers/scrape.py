"""Crawl endpoints: batch JSON and Server-Sent Events.

Routes
------
POST /scrape          Body: {"url": "...", "page_range": 10}
GET  /scrape          ?url=...&page_range=10
GET  /scrape/stream   ?url=...&page_range=10   (text/event-stream)

Batch errors are rendered by the app-level ``CrawlError`` handler.

SSE event format
----------------
Each event names its kind and carries a JSON object on the ``data:`` line::

    event: start
    data: {"origin": "https://www.njuskalo.hr", "page_cap": 10}

    event: page
    data: {"page": 1, "url": "...", "count": 25, "hits": [...], "total_hits": 25}

    event: done
    data: {"pages": 3, "total_hits": 61}

    event: error
    data: {"error": "fetch_failed", "detail": "..."}
"""

from __future__ import annotations

import json
from typing import Any, AsyncIterator, Optional

from fastapi import APIRouter, Query, Request
from fastapi.responses import StreamingResponse
from pydantic import BaseModel, Field

from flatwatch.scraper.engine import CrawlEngine, crawl, stream_crawl
from flatwatch.scraper.models import CrawlEvent

router = APIRouter()


# ---------------------------------------------------------------------------
# Schemas
# ---------------------------------------------------------------------------

class ScrapeRequest(BaseModel):
    url: str
    page_range: Optional[int] = Field(default=None, ge=1)


class ListingHitOut(BaseModel):
    id: str
    listing_url: str
    title: str
    price_numeric: Optional[float] = None
    currency: Optional[str] = None
    raw_price: str
    area_m2: Optional[float] = None
    price_per_m2: Optional[float] = None


class MetaOut(BaseModel):
    pages_visited: int
    total_hits: int
    next_page_url: Optional[str] = None


class ScrapeResponse(BaseModel):
    hits: list[ListingHitOut]
    meta: MetaOut


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------

def _sse(event: CrawlEvent) -> str:
    """Format a crawl event as one SSE frame."""
    return f"event: {event.kind}\ndata: {json.dumps(event.data)}\n\n"


async def _scrape(engine: CrawlEngine, url: str, page_range: Optional[int]) -> dict[str, Any]:
    result = await crawl(url, page_range, engine=engine)
    return result.to_dict()


async def _scrape_sse_generator(
    engine: CrawlEngine, url: str, page_range: Optional[int]
) -> AsyncIterator[str]:
    """Yield SSE frames for the duration of one crawl run."""
    events = stream_crawl(url, page_range, engine=engine)
    try:
        async for event in events:
            yield _sse(event)
    finally:
        # Stops the crawl task if the client went away mid-run.
        await events.aclose()


# ---------------------------------------------------------------------------
# Routes
# ---------------------------------------------------------------------------

@router.post("", response_model=ScrapeResponse)
async def scrape_post(body: ScrapeRequest, request: Request) -> dict[str, Any]:
    """Crawl from ``body.url`` and return every unique hit plus a summary."""
    return await _scrape(request.app.state.engine, body.url, body.page_range)


@router.get("", response_model=ScrapeResponse)
async def scrape_get(
    request: Request,
    url: str = Query(..., description="Category URL, with or without ?page=N."),
    page_range: Optional[int] = Query(None, ge=1, description="Page cap."),
) -> dict[str, Any]:
    """Same as ``POST /scrape`` with query parameters."""
    return await _scrape(request.app.state.engine, url, page_range)


@router.get("/stream")
async def scrape_stream(
    request: Request,
    url: str = Query(..., description="Category URL, with or without ?page=N."),
    page_range: Optional[int] = Query(None, ge=1, description="Page cap."),
) -> StreamingResponse:
    """Run a crawl and stream ``start``/``page``/``done``/``error`` events."""
    return StreamingResponse(
        _scrape_sse_generator(request.app.state.engine, url, page_range),
        media_type="text/event-stream",
        headers={
            "Cache-Control": "no-cache",
            "X-Accel-Buffering": "no",   # disable nginx proxy buffering
        },
    )
