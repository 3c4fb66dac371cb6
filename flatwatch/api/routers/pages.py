"""Usage banner, health check and the bundled dashboard page.

Routes
------
GET /            Plain-text list of endpoints
GET /healthz     {"status": "ok"}
GET /dashboard   Single-page UI driving /scrape/stream
"""

from __future__ import annotations

from functools import lru_cache
from pathlib import Path

from fastapi import APIRouter
from fastapi.responses import HTMLResponse, PlainTextResponse

router = APIRouter()

_DASHBOARD_PATH = Path(__file__).resolve().parent.parent / "static" / "dashboard.html"

_BANNER = """flatwatch online.
JSON:
  POST /scrape {"url":"https://www.njuskalo.hr/prodaja-stanova/zagreb","page_range":10}
  GET  /scrape?url=...&page_range=10
Stream:
  GET  /scrape/stream?url=...&page_range=10 (SSE)
UI:
  GET  /dashboard
"""


@lru_cache(maxsize=1)
def _dashboard_html() -> str:
    return _DASHBOARD_PATH.read_text(encoding="utf-8")


@router.get("/", response_class=PlainTextResponse)
async def index() -> str:
    return _BANNER


@router.get("/healthz")
async def healthz() -> dict[str, str]:
    return {"status": "ok"}


@router.get("/dashboard", response_class=HTMLResponse)
async def dashboard() -> str:
    return _dashboard_html()
