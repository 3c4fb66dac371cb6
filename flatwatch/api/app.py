"""FastAPI application factory.

Engine
------
The app owns one :class:`~flatwatch.scraper.engine.CrawlEngine` (shared via
``request.app.state.engine``).  The engine keeps no per-run state, so every
request gets its own pager cursor, dedup register and HTTP clients.

Routers
-------
    /            usage banner, health check, dashboard
    /scrape      batch crawl (GET/POST) and SSE stream
"""

from __future__ import annotations

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from flatwatch import __version__
from flatwatch.errors import BuildUrlFailed, CrawlError, DomainNotAllowed, FetchFailed, PolicyDisallowed
from flatwatch.scraper.engine import CrawlEngine

from flatwatch.api.routers import pages as pages_router
from flatwatch.api.routers import scrape as scrape_router

_STATUS_BY_ERROR = {
    DomainNotAllowed: 403,
    PolicyDisallowed: 403,
    FetchFailed: 502,
    BuildUrlFailed: 500,
}


async def crawl_error_handler(request: Request, exc: CrawlError) -> JSONResponse:
    """Render a :class:`CrawlError` as ``{"error": kind, "detail": message}``."""
    status_code = _STATUS_BY_ERROR.get(type(exc), 400)
    return JSONResponse(
        status_code=status_code,
        content={"error": exc.kind, "detail": str(exc)},
    )


def create_app(engine: CrawlEngine | None = None) -> FastAPI:
    """Return a fully-configured FastAPI application instance."""
    app = FastAPI(
        title="flatwatch API",
        description=(
            "Crawls a paginated real-estate category and returns price/area "
            "facts per listing, either as one batch result or as a live "
            "Server-Sent Events stream."
        ),
        version=__version__,
    )
    app.state.engine = engine or CrawlEngine()

    # Allow browser frontends on any origin (tighten for production).
    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],
        allow_methods=["*"],
        allow_headers=["*"],
    )
    app.add_exception_handler(CrawlError, crawl_error_handler)

    app.include_router(pages_router.router, tags=["pages"])
    app.include_router(scrape_router.router, prefix="/scrape", tags=["scrape"])

    return app


# Module-level instance used by uvicorn:
#   uvicorn flatwatch.api.app:app --reload
app = create_app()
