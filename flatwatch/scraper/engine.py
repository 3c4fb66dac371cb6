"""Crawl driver: compliance check, then fetch/parse/dedup page by page.

One driver serves both presentation modes.  What happens to each page's
result is decided by the :class:`ResultSink` passed to :meth:`CrawlEngine.run`:

- :class:`CollectingSink` accumulates hits for the batch API (:func:`crawl`).
- :class:`ChannelSink` pushes :class:`CrawlEvent` objects into a bounded
  queue read by :func:`stream_crawl`.

Pages are strictly sequential within a run.  All run state (pager cursor,
dedup register, counters) lives in local variables of :meth:`CrawlEngine.run`,
so one engine instance can serve concurrent runs.
"""

from __future__ import annotations

import asyncio
import logging
import random
from abc import ABC, abstractmethod
from typing import AsyncIterator, List, Optional

from flatwatch.config import settings
from flatwatch.errors import CrawlError
from flatwatch.scraper import pager
from flatwatch.scraper.compliance import ComplianceGate, CrawlTarget
from flatwatch.scraper.dedup import DedupRegister
from flatwatch.scraper.fetcher import PageFetcher, SleepFn
from flatwatch.scraper.models import (
    CrawlEvent,
    CrawlOutcome,
    CrawlResult,
    ListingHit,
    PageResult,
)
from flatwatch.scraper.parser import parse_page

logger = logging.getLogger(__name__)


# ---------------------------------------------------------------------------
# Result sinks
# ---------------------------------------------------------------------------

class ResultSink(ABC):
    """Receives the products of a crawl run as they are produced."""

    async def start(self, target: CrawlTarget, page_cap: int) -> None:
        """Called once, after the compliance gate passed."""

    @abstractmethod
    async def page(self, result: PageResult, total_hits: int) -> None:
        """Called once per fetched page, in page order."""


class CollectingSink(ResultSink):
    """Accumulates every page's hits in order."""

    def __init__(self) -> None:
        self.hits: List[ListingHit] = []
        self.pages: List[PageResult] = []

    async def page(self, result: PageResult, total_hits: int) -> None:
        self.pages.append(result)
        self.hits.extend(result.hits)


class ChannelSink(ResultSink):
    """Emits ``start``/``page`` events into a (bounded) queue.

    ``put`` blocks while the queue is full, so a slow consumer slows the
    crawl down instead of growing the buffer.
    """

    def __init__(self, queue: "asyncio.Queue[CrawlEvent]") -> None:
        self.queue = queue

    async def start(self, target: CrawlTarget, page_cap: int) -> None:
        await self.queue.put(CrawlEvent.start(target.origin, page_cap))

    async def page(self, result: PageResult, total_hits: int) -> None:
        await self.queue.put(CrawlEvent.page(result, total_hits))


# ---------------------------------------------------------------------------
# Driver
# ---------------------------------------------------------------------------

class CrawlEngine:
    """Runs the Validating -> Fetching -> Parsing -> ... -> Done/Failed cycle."""

    def __init__(
        self,
        *,
        gate: Optional[ComplianceGate] = None,
        fetcher: Optional[PageFetcher] = None,
        sleep: SleepFn = asyncio.sleep,
        rng: random.Random | None = None,
        page_delay_ms: Optional[tuple[int, int]] = None,
        default_page_cap: Optional[int] = None,
    ) -> None:
        self.gate = gate or ComplianceGate()
        self.fetcher = fetcher or PageFetcher()
        self._sleep = sleep
        self._rng = rng or random.Random()
        self.page_delay_ms = page_delay_ms or (settings.page_delay_min_ms, settings.page_delay_max_ms)
        self.default_page_cap = default_page_cap or settings.page_cap

    async def _politeness_delay(self) -> None:
        low, high = self.page_delay_ms
        if high <= 0:
            return
        await self._sleep(self._rng.uniform(low, high) / 1000)

    async def run(self, url: str, sink: ResultSink, page_cap: Optional[int] = None) -> CrawlOutcome:
        """Crawl from *url* until the feed ends or *page_cap* pages were visited.

        Raises:
            CrawlError: on a compliance failure or an unrecoverable page fetch.
        """
        cap = self.default_page_cap if page_cap is None else page_cap
        if cap < 1:
            raise ValueError(f"page cap must be a positive integer, got {cap}")

        target = await self.gate.check(url)
        await sink.start(target, cap)

        state = pager.start(target.url)
        register = DedupRegister()
        pages_visited = 0
        total_hits = 0
        next_page_url: Optional[str] = None

        while True:
            page_url = pager.page_url(state)
            pages_visited += 1
            referer = state.previous_page_url or target.origin

            html = await self.fetcher.fetch(page_url, referer)

            parsed = parse_page(html, page_url)
            hits = tuple(hit for hit in parsed if register.register(hit))
            result = PageResult(
                page_number=state.current_page,
                source_url=page_url,
                hits=hits,
            )
            total_hits += result.hit_count
            logger.info(
                "[%d] page=%s cards=%d new=%d total_hits=%d",
                state.current_page,
                page_url,
                len(parsed),
                result.hit_count,
                total_hits,
            )
            await sink.page(result, total_hits)

            if result.hit_count:
                next_page_url = pager.build(state.base_url, state.current_page + 1)
            else:
                next_page_url = None

            next_state = pager.advance(
                state,
                fetched_url=page_url,
                hit_count=result.hit_count,
                pages_visited=pages_visited,
                page_cap=cap,
            )
            if next_state is None:
                break
            state = next_state
            await self._politeness_delay()

        return CrawlOutcome(
            pages_visited=pages_visited,
            total_hits=total_hits,
            next_page_url=next_page_url,
        )


# ---------------------------------------------------------------------------
# Entry points
# ---------------------------------------------------------------------------

async def crawl(
    url: str,
    page_cap: Optional[int] = None,
    *,
    engine: Optional[CrawlEngine] = None,
) -> CrawlResult:
    """Run a crawl to completion and return every unique hit.

    Fail-fast: the first :class:`CrawlError` propagates and hits gathered
    from earlier pages are discarded.
    """
    engine = engine or CrawlEngine()
    sink = CollectingSink()
    outcome = await engine.run(url, sink, page_cap)
    return CrawlResult(hits=sink.hits, outcome=outcome)


async def _produce(
    engine: CrawlEngine,
    url: str,
    page_cap: Optional[int],
    queue: "asyncio.Queue[CrawlEvent]",
) -> None:
    try:
        outcome = await engine.run(url, ChannelSink(queue), page_cap)
    except CrawlError as exc:
        logger.warning("crawl of %s failed: %s", url, exc)
        await queue.put(CrawlEvent.error(exc.kind, str(exc)))
    except Exception as exc:  # noqa: BLE001
        logger.exception("crawl of %s crashed", url)
        await queue.put(CrawlEvent.error("internal_error", str(exc)))
    else:
        await queue.put(CrawlEvent.done(outcome))


async def stream_crawl(
    url: str,
    page_cap: Optional[int] = None,
    *,
    engine: Optional[CrawlEngine] = None,
    buffer: Optional[int] = None,
) -> AsyncIterator[CrawlEvent]:
    """Yield ``start``, one ``page`` per visited page, then ``done`` or ``error``.

    The crawl runs in a separate task feeding a bounded queue.  Closing the
    generator early (e.g. the client disconnected) cancels that task, so no
    further pages are fetched.
    """
    engine = engine or CrawlEngine()
    queue: asyncio.Queue[CrawlEvent] = asyncio.Queue(maxsize=buffer or settings.stream_buffer)
    producer = asyncio.create_task(_produce(engine, url, page_cap, queue))
    try:
        while True:
            event = await queue.get()
            yield event
            if event.is_terminal:
                break
    finally:
        if not producer.done():
            producer.cancel()
        await asyncio.wait([producer])
