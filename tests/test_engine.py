"""Tests for the crawl driver in batch and streaming mode.

Most tests replace the compliance gate and the fetcher with ``FakeGate`` and
``FakeFetcher`` (see ``conftest.py``); parsing and dedup run for real.
``TestCrawlOverHttp`` wires the real gate and fetcher to a scripted site
behind ``httpx.MockTransport``.
"""

from __future__ import annotations

import asyncio
import random

import httpx
import pytest

from conftest import (
    ORIGIN,
    START_URL,
    FakeFetcher,
    SleepRecorder,
    card_html,
    empty_page_html,
    endless_feed,
    page_html,
    page_number,
)
from flatwatch.errors import DomainNotAllowed, FetchFailed
from flatwatch.scraper.compliance import ComplianceGate
from flatwatch.scraper.engine import CollectingSink, CrawlEngine, crawl, stream_crawl
from flatwatch.scraper.fetcher import DESKTOP_USER_AGENTS, MOBILE_USER_AGENTS, PageFetcher


def _three_pages_then_empty() -> FakeFetcher:
    return FakeFetcher(
        {
            1: page_html([card_html("11"), card_html("12"), card_html("13")]),
            2: page_html([card_html("21"), card_html("22")]),
            3: page_html([card_html("31"), card_html("32"), card_html("33"), card_html("34")]),
            4: empty_page_html(),
        }
    )


async def _collect(events) -> list:
    return [event async for event in events]


# ---------------------------------------------------------------------------
# Batch mode
# ---------------------------------------------------------------------------

class TestCrawl:
    async def test_stops_on_first_empty_page(self, make_engine) -> None:
        fetcher = _three_pages_then_empty()

        result = await crawl(START_URL, engine=make_engine(fetcher))

        assert result.outcome.pages_visited == 4
        assert result.outcome.total_hits == 9
        assert result.outcome.next_page_url is None
        assert [h.id for h in result.hits] == ["11", "12", "13", "21", "22", "31", "32", "33", "34"]
        assert [page_number(url) for url, _ in fetcher.calls] == [1, 2, 3, 4]

    async def test_empty_first_page(self, make_engine) -> None:
        result = await crawl(START_URL, engine=make_engine(FakeFetcher({1: empty_page_html()})))

        assert result.outcome.pages_visited == 1
        assert result.outcome.total_hits == 0
        assert result.hits == []

    async def test_page_cap_stops_an_endless_feed(self, make_engine) -> None:
        fetcher = FakeFetcher(default=endless_feed(per_page=3))

        result = await crawl(START_URL, page_cap=2, engine=make_engine(fetcher))

        assert result.outcome.pages_visited == 2
        assert result.outcome.total_hits == 6
        assert result.outcome.next_page_url == f"{START_URL}?page=3"
        assert len(fetcher.calls) == 2

    async def test_default_page_cap(self, make_engine) -> None:
        fetcher = FakeFetcher(default=endless_feed(per_page=1))

        result = await crawl(START_URL, engine=make_engine(fetcher, default_page_cap=5))

        assert result.outcome.pages_visited == 5

    async def test_starts_from_page_in_url(self, make_engine) -> None:
        fetcher = FakeFetcher({3: page_html([card_html("1")]), 4: empty_page_html()})

        result = await crawl(f"{START_URL}?page=3", engine=make_engine(fetcher))

        assert [page_number(url) for url, _ in fetcher.calls] == [3, 4]
        assert result.outcome.pages_visited == 2

    async def test_referer_chain(self, make_engine) -> None:
        fetcher = _three_pages_then_empty()

        await crawl(START_URL, engine=make_engine(fetcher))

        referers = [referer for _, referer in fetcher.calls]
        urls = [url for url, _ in fetcher.calls]
        assert referers[0] == ORIGIN
        assert referers[1:] == urls[:-1]

    async def test_duplicates_across_pages_are_dropped(self, make_engine) -> None:
        fetcher = FakeFetcher(
            {
                1: page_html([card_html("1"), card_html("2")]),
                2: page_html([card_html("2"), card_html("3"), card_html("1")]),
                3: page_html([card_html("3")]),
            }
        )

        result = await crawl(START_URL, engine=make_engine(fetcher))

        assert [h.id for h in result.hits] == ["1", "2", "3"]
        # Page 3 only repeats a known listing, so it contributes nothing and ends the run.
        assert result.outcome.pages_visited == 3

    async def test_disallowed_domain_fails_before_any_fetch(self, make_engine) -> None:
        fetcher = FakeFetcher(default=endless_feed())

        with pytest.raises(DomainNotAllowed):
            await crawl("https://www.index.hr/oglasi", engine=make_engine(fetcher))

        assert fetcher.calls == []

    async def test_fetch_failure_propagates(self, make_engine) -> None:
        fetcher = FakeFetcher(default=endless_feed(), failing=(2,))

        with pytest.raises(FetchFailed):
            await crawl(START_URL, engine=make_engine(fetcher))

    async def test_rejects_non_positive_page_cap(self, make_engine) -> None:
        with pytest.raises(ValueError):
            await crawl(START_URL, page_cap=0, engine=make_engine(FakeFetcher()))

    async def test_politeness_delay_between_pages_only(self, make_engine) -> None:
        sleep = SleepRecorder()
        engine = make_engine(_three_pages_then_empty(), sleep=sleep, page_delay_ms=(900, 2200))

        await crawl(START_URL, engine=engine)

        assert len(sleep.calls) == 3
        assert all(0.9 <= s <= 2.2 for s in sleep.calls)

    async def test_page_results_reach_the_sink(self, make_engine) -> None:
        sink = CollectingSink()

        outcome = await make_engine(_three_pages_then_empty()).run(START_URL, sink)

        assert [p.page_number for p in sink.pages] == [1, 2, 3, 4]
        assert [p.hit_count for p in sink.pages] == [3, 2, 4, 0]
        assert sum(p.hit_count for p in sink.pages) == outcome.total_hits


# ---------------------------------------------------------------------------
# Streaming mode
# ---------------------------------------------------------------------------

class TestStreamCrawl:
    async def test_event_order(self, make_engine) -> None:
        events = await _collect(stream_crawl(START_URL, engine=make_engine(_three_pages_then_empty())))

        assert [e.kind for e in events] == ["start", "page", "page", "page", "page", "done"]
        assert events[0].data == {"origin": ORIGIN, "page_cap": 200}
        assert [e.data["page"] for e in events if e.kind == "page"] == [1, 2, 3, 4]
        assert [e.data["total_hits"] for e in events if e.kind == "page"] == [3, 5, 9, 9]
        assert events[-1].data == {"pages": 4, "total_hits": 9}

    async def test_page_event_payload(self, make_engine) -> None:
        events = await _collect(stream_crawl(START_URL, engine=make_engine(_three_pages_then_empty())))
        page = events[1].data

        assert page["url"] == f"{START_URL}?page=1"
        assert page["count"] == 3
        assert page["hits"][0]["id"] == "11"
        assert page["hits"][0]["currency"] == "EUR"
        assert page["hits"][0]["price_per_m2"] == 4000.0

    async def test_page_cap_is_reported_in_start(self, make_engine) -> None:
        fetcher = FakeFetcher(default=endless_feed())
        events = await _collect(stream_crawl(START_URL, page_cap=2, engine=make_engine(fetcher)))

        assert events[0].data["page_cap"] == 2
        assert [e.kind for e in events] == ["start", "page", "page", "done"]

    async def test_fetch_failure_keeps_emitted_pages(self, make_engine) -> None:
        fetcher = FakeFetcher(default=endless_feed(), failing=(2,))

        events = await _collect(stream_crawl(START_URL, engine=make_engine(fetcher)))

        assert [e.kind for e in events] == ["start", "page", "error"]
        assert events[1].data["count"] == 3
        assert events[-1].data["error"] == "fetch_failed"

    async def test_compliance_failure_is_the_only_event(self, make_engine) -> None:
        fetcher = FakeFetcher(default=endless_feed())

        events = await _collect(stream_crawl("https://www.index.hr/oglasi", engine=make_engine(fetcher)))

        assert [e.kind for e in events] == ["error"]
        assert events[0].data["error"] == "domain_not_allowed"
        assert fetcher.calls == []

    async def test_closing_the_consumer_stops_fetching(self, make_engine) -> None:
        fetcher = FakeFetcher(default=endless_feed())
        events = stream_crawl(START_URL, page_cap=50, engine=make_engine(fetcher), buffer=1)

        async for event in events:
            if event.kind == "page":
                break
        await events.aclose()

        fetched = len(fetcher.calls)
        for _ in range(20):
            await asyncio.sleep(0)
        assert len(fetcher.calls) == fetched
        assert fetched < 50


# ---------------------------------------------------------------------------
# Real gate and fetcher over a scripted site
# ---------------------------------------------------------------------------

_SHELL = "<html><body>Molimo pričekajte…</body></html>"


class _ListingSite:
    """Serves robots.txt, the home page and ``?page=N`` listing pages.

    ``shells`` maps a page number to how many block pages are served for it
    before the real markup.
    """

    def __init__(self, pages: dict[int, str], *, shells: dict[int, int] | None = None) -> None:
        self.pages = pages
        self.shells = dict(shells or {})
        self.requests: list[httpx.Request] = []

    def __call__(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        if request.url.path == "/robots.txt":
            return httpx.Response(200, text="User-agent: *\nDisallow: /*?*sort=\n")
        if request.url.path == "/":
            return httpx.Response(200, text="<html>home</html>")
        number = int(request.url.params["page"])
        if self.shells.get(number, 0) > 0:
            self.shells[number] -= 1
            return httpx.Response(200, text=_SHELL)
        return httpx.Response(200, text=self.pages.get(number, _SHELL))

    def summary(self) -> list[tuple[str, str | None]]:
        return [(r.url.path, r.url.params.get("page")) for r in self.requests]


def _http_engine(site: _ListingSite, sleep: SleepRecorder) -> CrawlEngine:
    transport = httpx.MockTransport(site)
    return CrawlEngine(
        gate=ComplianceGate(("www.njuskalo.hr",), transport=transport),
        fetcher=PageFetcher(
            transport=transport,
            sleep=sleep,
            rng=random.Random(3),
            max_attempts=5,
            min_body_chars=4000,
            content_marker="EntityList-item",
            backoff_ms=(600, 1500),
        ),
        sleep=sleep,
        rng=random.Random(3),
        page_delay_ms=(900, 2200),
    )


class TestCrawlOverHttp:
    async def test_warmup_retry_and_referer_chain(self) -> None:
        site = _ListingSite(
            {
                1: page_html([card_html("11"), card_html("12")]),
                2: page_html([card_html("21")]),
                3: empty_page_html(),
            },
            shells={1: 1},
        )
        sleep = SleepRecorder()

        result = await crawl(START_URL, engine=_http_engine(site, sleep))

        assert [h.id for h in result.hits] == ["11", "12", "21"]
        assert result.outcome.pages_visited == 3
        assert result.outcome.next_page_url is None

        path = "/prodaja-stanova/zagreb"
        assert site.summary() == [
            ("/robots.txt", None),
            ("/", None),
            (path, "1"),
            (path, "1"),
            ("/", None),
            (path, "2"),
            ("/", None),
            (path, "3"),
        ]

        pages = [r for r in site.requests if r.url.path == path]
        assert pages[0].headers["User-Agent"] in DESKTOP_USER_AGENTS
        assert pages[1].headers["User-Agent"] in MOBILE_USER_AGENTS
        assert [r.headers["Referer"] for r in pages] == [
            ORIGIN,
            ORIGIN,
            f"{START_URL}?page=1",
            f"{START_URL}?page=2",
        ]
        assert all(r.headers["Referer"] == ORIGIN for r in site.requests if r.url.path == "/")

        # One backoff on page 1, then a politeness delay after pages 1 and 2.
        assert len(sleep.calls) == 3
        assert 0.6 <= sleep.calls[0] <= 1.5
        assert all(0.9 <= s <= 2.2 for s in sleep.calls[1:])

    async def test_blocked_page_ends_stream_with_error(self) -> None:
        site = _ListingSite({1: page_html([card_html("11")])})
        sleep = SleepRecorder()

        events = await _collect(stream_crawl(START_URL, engine=_http_engine(site, sleep)))

        assert [e.kind for e in events] == ["start", "page", "error"]
        assert events[-1].data["error"] == "fetch_failed"
        assert "after 5 attempts" in events[-1].data["detail"]
        assert [p for _, p in site.summary()].count("2") == 5
