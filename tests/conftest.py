"""Shared fixtures: listing markup builders and in-memory crawl collaborators.

Nothing here touches the network.  ``FakeGate`` and ``FakeFetcher`` stand in
for the compliance gate and the page fetcher so the driver can be exercised
against a scripted feed.
"""

from __future__ import annotations

import asyncio
from typing import Callable, Optional
from urllib.parse import parse_qs, urlsplit

import pytest

from flatwatch.errors import DomainNotAllowed, FetchFailed
from flatwatch.scraper.compliance import CrawlTarget
from flatwatch.scraper.engine import CrawlEngine

START_URL = "https://www.njuskalo.hr/prodaja-stanova/zagreb"
ORIGIN = "https://www.njuskalo.hr"


# ---------------------------------------------------------------------------
# Markup builders
# ---------------------------------------------------------------------------

def card_html(
    listing_id: str,
    *,
    price: str = "250.000 €",
    area: Optional[str] = "62.5",
    title: str = "Stan, Trešnjevka",
) -> str:
    desc = ""
    if area is not None:
        desc = (
            '<div class="entity-description">'
            f'<div class="entity-description-main">Stambena površina: {area} m2</div>'
            "</div>"
        )
    return (
        '<li class="EntityList-item EntityList-item--Regular">'
        '<article class="entity-body">'
        f'<h3 class="entity-title"><a class="link" href="/nekretnine/stan-oglas-{listing_id}">{title}</a></h3>'
        f"{desc}"
        f'<div class="entity-prices"><strong class="price">{price}</strong></div>'
        "</article>"
        "</li>"
    )


def page_html(cards: list[str], *, pad_to: int = 5000) -> str:
    """Wrap cards in the listing structure, padded past the validity threshold."""
    body = (
        "<html><head><title>Njuškalo</title></head><body>"
        '<section class="EntityList EntityList--Regular">'
        f'<ul class="EntityList-items">{"".join(cards)}</ul>'
        "</section>"
    )
    filler = max(pad_to - len(body), 0)
    return body + f"<!-- {'x' * filler} --></body></html>"


def empty_page_html() -> str:
    # Still carries the marker so a real fetcher would accept it.
    return page_html([]) + "<!-- EntityList-item -->"


# ---------------------------------------------------------------------------
# Fakes
# ---------------------------------------------------------------------------

class FakeGate:
    """Allow-list check only; never fetches robots.txt."""

    def __init__(self, allowed_hosts: tuple[str, ...] = ("www.njuskalo.hr", "njuskalo.hr")) -> None:
        self.allowed_hosts = allowed_hosts
        self.checked: list[str] = []

    async def check(self, url: str) -> CrawlTarget:
        self.checked.append(url)
        parts = urlsplit(url)
        if parts.hostname not in self.allowed_hosts:
            raise DomainNotAllowed(f"domain not in whitelist: {parts.hostname}")
        return CrawlTarget(url=url, host=parts.hostname, origin=f"{parts.scheme}://{parts.netloc}")


def page_number(url: str) -> int:
    return int(parse_qs(urlsplit(url).query)["page"][0])


class FakeFetcher:
    """Serves markup by page number and records every call.

    ``pages`` maps a page number to markup; a page number missing from the
    map is served by ``default`` (or fails if there is none).  Pages listed
    in ``failing`` raise :class:`FetchFailed`.
    """

    def __init__(
        self,
        pages: Optional[dict[int, str]] = None,
        *,
        default: Optional[Callable[[int], str]] = None,
        failing: tuple[int, ...] = (),
    ) -> None:
        self.pages = pages or {}
        self.default = default
        self.failing = failing
        self.calls: list[tuple[str, str]] = []

    async def fetch(self, page_url: str, referer: str) -> str:
        self.calls.append((page_url, referer))
        await asyncio.sleep(0)
        number = page_number(page_url)
        if number in self.failing:
            raise FetchFailed(f"failed to fetch {page_url} after 5 attempts: body too short (120 chars)")
        if number in self.pages:
            return self.pages[number]
        if self.default is not None:
            return self.default(number)
        raise FetchFailed(f"no page {number}")


class SleepRecorder:
    def __init__(self) -> None:
        self.calls: list[float] = []

    async def __call__(self, seconds: float) -> None:
        self.calls.append(seconds)


def endless_feed(per_page: int = 3) -> Callable[[int], str]:
    """A feed where every page carries *per_page* fresh listings."""
    def _page(number: int) -> str:
        return page_html([card_html(f"{number}{i:03d}") for i in range(per_page)])
    return _page


# ---------------------------------------------------------------------------
# Fixtures
# ---------------------------------------------------------------------------

@pytest.fixture()
def make_engine() -> Callable[..., CrawlEngine]:
    """Build a :class:`CrawlEngine` over a fake gate and fetcher, no delays."""
    def _make(fetcher: FakeFetcher, gate: Optional[FakeGate] = None, **kwargs) -> CrawlEngine:
        kwargs.setdefault("page_delay_ms", (0, 0))
        return CrawlEngine(gate=gate or FakeGate(), fetcher=fetcher, **kwargs)  # type: ignore[arg-type]
    return _make
