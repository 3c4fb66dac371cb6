"""Utilities for rendering crawl results in the CLI."""

from __future__ import annotations

from typing import List, Optional

from flatwatch.scraper.models import CrawlEvent, CrawlOutcome, ListingHit


def _num(value: Optional[float], digits: int = 0) -> str:
    if value is None:
        return "-"
    return f"{value:,.{digits}f}"


def render_hits(hits: List[ListingHit], title_width: int = 48) -> str:
    """Render hits as a fixed-width text table.

    Args:
        hits: Hits in crawl order.
        title_width: Titles longer than this are truncated with an ellipsis.

    Returns:
        The table, header included, as one string.
    """
    header = f"{'#':>4}  {'ID':<10}  {'Title':<{title_width}}  {'Price':>12}  {'Cur':<3}  {'m²':>7}  {'€/m²':>8}"
    lines = [header, "-" * len(header)]
    for idx, hit in enumerate(hits, start=1):
        title = hit.title
        if len(title) > title_width:
            title = title[: title_width - 1] + "…"
        currency = hit.currency.value if hit.currency else "-"
        lines.append(
            f"{idx:>4}  {hit.id or '-':<10}  {title:<{title_width}}  "
            f"{_num(hit.price_numeric):>12}  {currency:<3}  "
            f"{_num(hit.area_m2, 1):>7}  {_num(hit.price_per_m2):>8}"
        )
    return "\n".join(lines)


def render_outcome(outcome: CrawlOutcome) -> str:
    line = f"pages={outcome.pages_visited}  total_hits={outcome.total_hits}"
    if outcome.next_page_url:
        line += f"  next={outcome.next_page_url}"
    return line


def render_event(event: CrawlEvent) -> str:
    """One human-readable line per stream event."""
    data = event.data
    if event.kind == "start":
        return f"[start] origin={data['origin']}  page_cap={data['page_cap']}"
    if event.kind == "page":
        return f"[page {data['page']}] {data['count']} hits  (total {data['total_hits']})  {data['url']}"
    if event.kind == "done":
        return f"[done] pages={data['pages']}  total_hits={data['total_hits']}"
    return f"[error] {data.get('error')}: {data.get('detail')}"
