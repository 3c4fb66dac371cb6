"""Scraper package: compliance gate, pager, fetcher, card parser and crawl driver."""

from flatwatch.scraper.engine import CrawlEngine, crawl, stream_crawl
from flatwatch.scraper.models import CrawlEvent, CrawlOutcome, CrawlResult, ListingHit, PageResult

__all__ = [
    "CrawlEngine",
    "crawl",
    "stream_crawl",
    "CrawlEvent",
    "CrawlOutcome",
    "CrawlResult",
    "ListingHit",
    "PageResult",
]
