"""Pager controller for the ``?page=N`` pagination scheme.

The site has no explicit "last page" marker, so a page that contributes no
listings is the end of the feed.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, replace
from typing import Optional
from urllib.parse import parse_qsl, urlencode, urlsplit, urlunsplit

from flatwatch.errors import BuildUrlFailed

logger = logging.getLogger(__name__)

PAGE_PARAM = "page"


@dataclass(frozen=True)
class PagerState:
    """Run-scoped pagination cursor."""

    base_url: str
    current_page: int
    previous_page_url: Optional[str] = None


def normalize(url: str) -> tuple[str, int]:
    """Split *url* into a page-less base URL and the page to start from.

    The start page is the value of the last parseable ``page`` parameter
    (minimum 1), or 1 if there is none.  All other query parameters keep
    their relative order.
    """
    parts = urlsplit(url)
    start_page = 1
    kept: list[tuple[str, str]] = []
    for key, value in parse_qsl(parts.query, keep_blank_values=True):
        if key != PAGE_PARAM:
            kept.append((key, value))
            continue
        if value.isascii() and value.isdigit():
            start_page = max(int(value), 1)
    base = urlunsplit(parts._replace(query=urlencode(kept)))
    return base, start_page


def build(base_url: str, page_number: int) -> str:
    """Return *base_url* with its ``page`` parameter set to *page_number*."""
    if page_number < 1:
        raise BuildUrlFailed(f"page number must be positive, got {page_number}")
    try:
        parts = urlsplit(base_url)
    except ValueError as exc:
        raise BuildUrlFailed(f"build page url failed: {exc}") from exc
    if not parts.scheme or not parts.netloc:
        raise BuildUrlFailed(f"build page url failed: not an absolute url: {base_url!r}")
    pairs = [
        (key, value)
        for key, value in parse_qsl(parts.query, keep_blank_values=True)
        if key != PAGE_PARAM
    ]
    pairs.append((PAGE_PARAM, str(page_number)))
    return urlunsplit(parts._replace(query=urlencode(pairs)))


def start(url: str) -> PagerState:
    base_url, start_page = normalize(url)
    return PagerState(base_url=base_url, current_page=start_page)


def page_url(state: PagerState) -> str:
    return build(state.base_url, state.current_page)


def advance(
    state: PagerState,
    *,
    fetched_url: str,
    hit_count: int,
    pages_visited: int,
    page_cap: int,
) -> Optional[PagerState]:
    """Move past the page just fetched, or return ``None`` to stop.

    Stops when the page cap has been reached or when the page just fetched
    yielded no records.
    """
    if hit_count == 0:
        logger.info("[pager] page %d yielded no records, stopping.", state.current_page)
        return None
    if pages_visited >= page_cap:
        logger.info("[pager] reached page cap=%d, stopping.", page_cap)
        return None
    return replace(
        state,
        current_page=state.current_page + 1,
        previous_page_url=fetched_url,
    )
