"""Listing-card parsing: turns page markup into :class:`ListingHit` records.

Selectors are tuned to one markup shape (``EntityList`` sections of
``li.EntityList-item`` cards).  Card parsing never raises: a missing optional
field becomes ``None`` and a card without a link or price text is skipped.
"""

from __future__ import annotations

import logging
import re
from typing import List, Optional
from urllib.parse import urljoin

from bs4 import BeautifulSoup
from bs4.element import Tag

from flatwatch.scraper.models import Currency, ListingHit

logger = logging.getLogger(__name__)

# ---------------------------------------------------------------------------
# Selectors
# ---------------------------------------------------------------------------
LIST_CARDS = "section.EntityList ul.EntityList-items li.EntityList-item"
ANY_CARD = "li.EntityList-item"
ENTITY_BODY = "article.entity-body"
TITLE_LINK = "h3.entity-title > a.link"
PRICE = "div.entity-prices strong.price"
DESCRIPTION = ".entity-description-main"

_ID_MARKER = "-oglas-"
_LEADING_DIGITS = re.compile(r"[0-9]*")
_TRAILING_DIGITS = re.compile(r"[0-9]*\Z")
_NUMBER = re.compile(r"[0-9]+(?:\.[0-9]*)?\Z")
_THOUSANDS_DOT = re.compile(r"\.(?=[0-9]{3}(?:\.|\Z))")
_NOT_NUMERIC = re.compile(r"[^0-9.,]")
_AREA_SPLIT = re.compile(r"[\s,;]+")


# ---------------------------------------------------------------------------
# Normalisation helpers
# ---------------------------------------------------------------------------

def _to_number(token: str) -> Optional[float]:
    """Parse *token* using the ``1.234,56`` convention.

    With a comma present, every period is a thousands separator and the comma
    is the decimal mark.  Without one, a period counts as a thousands
    separator only when exactly three digits follow it.  A trailing decimal
    mark is allowed, so ``95.000,`` (from ``95.000,- €``) reads as 95000.
    """
    if "," in token:
        token = token.replace(".", "").replace(",", ".")
    else:
        token = _THOUSANDS_DOT.sub("", token)
    if not _NUMBER.match(token):
        return None
    return float(token)


def normalize_price(raw: str) -> tuple[Optional[float], Optional[Currency]]:
    """Return ``(numeric value, currency)`` for a raw price string."""
    currency: Optional[Currency] = None
    if "€" in raw:
        currency = Currency.EUR
    elif "kn" in raw.lower():
        currency = Currency.HRK

    if not any(ch.isascii() and ch.isdigit() for ch in raw):
        return None, currency

    for token in _NOT_NUMERIC.sub(" ", raw).split():
        value = _to_number(token)
        if value is not None:
            return value, currency
    return None, currency


def parse_area(text: str) -> Optional[float]:
    """Return the first number found in a card description, if any."""
    for token in _AREA_SPLIT.split(text):
        if not token:
            continue
        value = _to_number(token)
        if value is not None:
            return value
    return None


def extract_id(url: str) -> str:
    """Derive the listing identifier from its URL.

    ``...-oglas-12345...`` yields ``12345``; otherwise the trailing digits of
    the URL are used.  May be empty.
    """
    pos = url.rfind(_ID_MARKER)
    if pos != -1:
        return _LEADING_DIGITS.match(url, pos + len(_ID_MARKER)).group(0)
    return _TRAILING_DIGITS.search(url).group(0)


def _text(node: Optional[Tag]) -> str:
    if node is None:
        return ""
    return node.get_text().strip()


def _area_from(node: Tag) -> Optional[float]:
    desc = node.select_one(DESCRIPTION)
    if desc is None:
        return None
    return parse_area(desc.get_text())


# ---------------------------------------------------------------------------
# Public API
# ---------------------------------------------------------------------------

def parse_card(card: Tag, page_url: str) -> Optional[ListingHit]:
    """Extract a :class:`ListingHit` from one listing card.

    Returns ``None`` when the card has no resolvable link or no price text.
    """
    scope = card.select_one(ENTITY_BODY) or card
    title_link = scope.select_one(TITLE_LINK)

    title = _text(title_link)
    raw_price = _text(scope.select_one(PRICE))

    href = title_link.get("href") if title_link is not None else None
    if not href:
        href = card.get("data-href")
    listing_url = urljoin(page_url, href.strip()) if href and href.strip() else ""

    if not listing_url or not raw_price:
        return None

    price_numeric, currency = normalize_price(raw_price)
    area_m2 = _area_from(card)
    if area_m2 is None and scope is not card:
        area_m2 = _area_from(scope)

    return ListingHit.build(
        id=extract_id(listing_url),
        listing_url=listing_url,
        title=title,
        raw_price=raw_price,
        price_numeric=price_numeric,
        currency=currency,
        area_m2=area_m2,
    )


def _parse_cards(cards: List[Tag], page_url: str) -> List[ListingHit]:
    hits: List[ListingHit] = []
    for card in cards:
        hit = parse_card(card, page_url)
        if hit is not None:
            hits.append(hit)
    return hits


def parse_page(html: str, page_url: str) -> List[ListingHit]:
    """Parse every listing card on a page.

    Cards are taken from the ``EntityList`` section structure first; when that
    yields nothing, every ``li.EntityList-item`` on the page is tried.
    """
    soup = BeautifulSoup(html, "html.parser")

    hits = _parse_cards(soup.select(LIST_CARDS), page_url)
    if not hits:
        hits = _parse_cards(soup.select(ANY_CARD), page_url)
        if hits:
            logger.debug("fallback card selector matched %d cards on %s", len(hits), page_url)
    return hits
