"""Failure taxonomy for a crawl run.

Every fatal condition raised by the engine derives from :class:`CrawlError`.
Each subclass carries a stable ``kind`` string that the HTTP and streaming
layers surface to clients alongside the human-readable message.
"""

from __future__ import annotations


class CrawlError(Exception):
    """Base class for all fatal crawl failures."""

    kind = "crawl_error"


class InvalidUrl(CrawlError):
    """The start URL does not parse or has no host."""

    kind = "invalid_url"


class DomainNotAllowed(CrawlError):
    """The start URL's host is not in the allow-list."""

    kind = "domain_not_allowed"


class PolicyDisallowed(CrawlError):
    """The site's robots.txt forbids fetching the start URL."""

    kind = "policy_disallowed"


class FetchFailed(CrawlError):
    """All identity/backoff attempts for one page were exhausted."""

    kind = "fetch_failed"


class BuildUrlFailed(CrawlError):
    """A page URL could not be constructed from the pager base URL."""

    kind = "build_url_failed"
