"""Compliance gate: allow-list and robots.txt check before any page fetch."""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Iterable, Optional
from urllib.parse import urlsplit

import httpx
from protego import Protego

from flatwatch.config import settings
from flatwatch.errors import DomainNotAllowed, InvalidUrl, PolicyDisallowed
from flatwatch.scraper.fetcher import DESKTOP_USER_AGENTS

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class CrawlTarget:
    """A start URL that passed the gate."""

    url: str
    host: str
    origin: str


def _parse_target(url: str) -> CrawlTarget:
    try:
        parts = urlsplit(url.strip())
        host = parts.hostname
    except ValueError as exc:
        raise InvalidUrl(f"invalid url: {exc}") from exc
    if parts.scheme not in ("http", "https"):
        raise InvalidUrl(f"invalid url: unsupported scheme {parts.scheme!r}")
    if not host:
        raise InvalidUrl("url has no host")
    return CrawlTarget(
        url=url.strip(),
        host=host.lower(),
        origin=f"{parts.scheme}://{parts.netloc.lower()}",
    )


def policy_allows(robots_txt: str, agent: str, url: str) -> bool:
    """Return ``True`` if *robots_txt* lets *agent* fetch *url*.

    Rules follow RFC 9309: ``*`` and ``$`` patterns are honoured and the longest
    matching rule wins, with Allow beating Disallow on a tie.  An empty
    document allows everything.
    """
    return Protego.parse(robots_txt).can_fetch(url, agent)


class ComplianceGate:
    """Validates a start URL against the allow-list and the site's robots.txt.

    A transport failure (or a non-2xx answer) while fetching robots.txt is
    treated as "no restrictions found" so that an unreachable policy document
    never blocks the crawl.
    """

    def __init__(
        self,
        allowed_hosts: Optional[Iterable[str]] = None,
        *,
        agent: str = DESKTOP_USER_AGENTS[0],
        timeout: Optional[float] = None,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ) -> None:
        hosts = settings.allowed_hosts if allowed_hosts is None else allowed_hosts
        self.allowed_hosts = frozenset(h.lower() for h in hosts)
        self.agent = agent
        self.timeout = settings.request_timeout if timeout is None else timeout
        self._transport = transport

    async def _fetch_policy(self, origin: str) -> str:
        robots_url = f"{origin}/robots.txt"
        try:
            async with httpx.AsyncClient(
                timeout=self.timeout,
                follow_redirects=True,
                transport=self._transport,
            ) as client:
                response = await client.get(robots_url, headers={"User-Agent": self.agent})
        except (httpx.HTTPError, httpx.InvalidURL) as exc:
            logger.warning("robots.txt fetch failed for %s (%s); assuming no restrictions", robots_url, exc)
            return ""
        if not response.is_success:
            logger.info("robots.txt at %s returned HTTP %s; assuming no restrictions", robots_url, response.status_code)
            return ""
        return response.text

    async def check(self, url: str) -> CrawlTarget:
        """Return the validated :class:`CrawlTarget` for *url*.

        Raises:
            InvalidUrl: *url* does not parse or has no host.
            DomainNotAllowed: the host is not in the allow-list.
            PolicyDisallowed: robots.txt disallows *url*.
        """
        target = _parse_target(url)
        if target.host not in self.allowed_hosts:
            raise DomainNotAllowed(f"domain not in whitelist: {target.host}")

        robots_txt = await self._fetch_policy(target.origin)
        if not policy_allows(robots_txt, self.agent, target.url):
            raise PolicyDisallowed(f"robots.txt disallows this URL: {target.url}")

        logger.info("compliance ok for %s", target.url)
        return target
