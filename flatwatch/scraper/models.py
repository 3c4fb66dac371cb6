"""Data models for the crawl pipeline."""

from __future__ import annotations

from dataclasses import asdict, dataclass, field
from enum import Enum
from typing import Any, List, Optional


class Currency(str, Enum):
    """Currencies recognised in a listing's price text."""

    EUR = "EUR"
    HRK = "HRK"


@dataclass(frozen=True)
class ListingHit:
    """Structured price/area facts for one listing card.

    ``price_per_m2`` is set only when both ``price_numeric`` and a strictly
    positive ``area_m2`` are known; :meth:`build` enforces that.
    """

    id: str
    listing_url: str
    title: str
    raw_price: str
    price_numeric: Optional[float] = None
    currency: Optional[Currency] = None
    area_m2: Optional[float] = None
    price_per_m2: Optional[float] = None

    @classmethod
    def build(
        cls,
        *,
        id: str,
        listing_url: str,
        title: str,
        raw_price: str,
        price_numeric: Optional[float],
        currency: Optional[Currency],
        area_m2: Optional[float],
    ) -> "ListingHit":
        """Create a hit, deriving ``price_per_m2`` from price and area."""
        price_per_m2: Optional[float] = None
        if price_numeric is not None and area_m2 is not None and area_m2 > 0:
            price_per_m2 = price_numeric / area_m2
        return cls(
            id=id,
            listing_url=listing_url,
            title=title,
            raw_price=raw_price,
            price_numeric=price_numeric,
            currency=currency,
            area_m2=area_m2,
            price_per_m2=price_per_m2,
        )

    def to_dict(self) -> dict[str, Any]:
        data = asdict(self)
        data["currency"] = self.currency.value if self.currency else None
        return data


@dataclass(frozen=True)
class PageResult:
    """The hits contributed by one successfully fetched page."""

    page_number: int
    source_url: str
    hits: tuple[ListingHit, ...] = ()

    @property
    def hit_count(self) -> int:
        return len(self.hits)


@dataclass(frozen=True)
class CrawlOutcome:
    """Terminal summary of one crawl run."""

    pages_visited: int
    total_hits: int
    next_page_url: Optional[str] = None

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)


@dataclass
class CrawlResult:
    """Aggregate result of a batch crawl."""

    hits: List[ListingHit] = field(default_factory=list)
    outcome: CrawlOutcome = field(default_factory=lambda: CrawlOutcome(0, 0))

    def to_dict(self) -> dict[str, Any]:
        return {
            "hits": [hit.to_dict() for hit in self.hits],
            "meta": self.outcome.to_dict(),
        }


@dataclass(frozen=True)
class CrawlEvent:
    """One entry of the incremental event stream.

    ``kind`` is one of ``start``, ``page``, ``done`` or ``error``.
    """

    kind: str
    data: dict[str, Any] = field(default_factory=dict)

    @property
    def is_terminal(self) -> bool:
        return self.kind in ("done", "error")

    @classmethod
    def start(cls, origin: str, page_cap: int) -> "CrawlEvent":
        return cls("start", {"origin": origin, "page_cap": page_cap})

    @classmethod
    def page(cls, result: PageResult, total_hits: int) -> "CrawlEvent":
        return cls(
            "page",
            {
                "page": result.page_number,
                "url": result.source_url,
                "count": result.hit_count,
                "hits": [hit.to_dict() for hit in result.hits],
                "total_hits": total_hits,
            },
        )

    @classmethod
    def done(cls, outcome: CrawlOutcome) -> "CrawlEvent":
        return cls(
            "done",
            {"pages": outcome.pages_visited, "total_hits": outcome.total_hits},
        )

    @classmethod
    def error(cls, kind: str, detail: str) -> "CrawlEvent":
        return cls("error", {"error": kind, "detail": detail})
