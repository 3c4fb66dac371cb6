"""Page fetcher with identity rotation, retry/backoff and a content-validity check.

Anti-bot defences on the target site answer with HTTP 200 and a near-empty
shell instead of an error status, so a response only counts as a real listing
page when its body is long enough *and* contains a marker that only genuine
listing markup carries.
"""

from __future__ import annotations

import asyncio
import logging
import random
from dataclasses import dataclass
from enum import Enum
from typing import Awaitable, Callable, Iterator, Optional
from urllib.parse import urlsplit

import httpx

from flatwatch.config import settings
from flatwatch.errors import FetchFailed

logger = logging.getLogger(__name__)

# ---------------------------------------------------------------------------
# Identity profiles
# ---------------------------------------------------------------------------
DESKTOP_USER_AGENTS = (
    "Mozilla/5.0 (X11; Linux x86_64) AppleWebKit/537.36 (KHTML, like Gecko) "
    "Chrome/124.0 Safari/537.36",
    "Mozilla/5.0 (Windows NT 10.0; Win64; x64) AppleWebKit/537.36 (KHTML, like Gecko) "
    "Chrome/123.0 Safari/537.36",
    "Mozilla/5.0 (Macintosh; Intel Mac OS X 10_15_7) AppleWebKit/605.1.15 (KHTML, like Gecko) "
    "Version/17.5 Safari/605.1.15",
)

MOBILE_USER_AGENTS = (
    "Mozilla/5.0 (Linux; Android 14; Pixel 7) AppleWebKit/537.36 (KHTML, like Gecko) "
    "Chrome/124.0 Mobile Safari/537.36",
    "Mozilla/5.0 (iPhone; CPU iPhone OS 17_5 like Mac OS X) AppleWebKit/605.1.15 "
    "(KHTML, like Gecko) Version/17.5 Mobile/15E148 Safari/604.1",
)

_ACCEPT = "text/html,application/xhtml+xml,application/xml;q=0.9,*/*;q=0.8"

SleepFn = Callable[[float], Awaitable[None]]


class Profile(str, Enum):
    DESKTOP = "desktop"
    MOBILE = "mobile"

    def flipped(self) -> "Profile":
        return Profile.MOBILE if self is Profile.DESKTOP else Profile.DESKTOP


def random_user_agent(profile: Profile, rng: random.Random | None = None) -> str:
    pool = DESKTOP_USER_AGENTS if profile is Profile.DESKTOP else MOBILE_USER_AGENTS
    return (rng or random).choice(pool)


def build_headers(
    profile: Profile,
    referer: str,
    *,
    accept_language: Optional[str] = None,
    rng: random.Random | None = None,
) -> dict[str, str]:
    """Return the header set presented for one request under *profile*."""
    return {
        "User-Agent": random_user_agent(profile, rng),
        "Accept": _ACCEPT,
        "Accept-Language": accept_language or settings.accept_language,
        "Referer": referer,
        "Upgrade-Insecure-Requests": "1",
        "Connection": "keep-alive",
        "Cache-Control": "max-age=0",
        "Pragma": "no-cache",
        "DNT": "1",
        "Sec-Fetch-Site": "same-origin",
        "Sec-Fetch-Mode": "navigate",
        "Sec-Fetch-Dest": "document",
    }


def origin_of(url: str) -> str:
    parts = urlsplit(url)
    return f"{parts.scheme}://{parts.netloc}"


def judge_body(body: str, *, min_chars: int, marker: str) -> Optional[str]:
    """Return why *body* is not a genuine listing page, or ``None`` if it is."""
    if len(body) <= min_chars:
        return f"body too short ({len(body)} chars)"
    if marker not in body:
        return f"marker {marker!r} missing"
    return None


# ---------------------------------------------------------------------------
# Attempt state machine
# ---------------------------------------------------------------------------

@dataclass(frozen=True)
class FetchAttempt:
    profile: Profile
    attempt_number: int


class AttemptCycle:
    """Profile x attempt-count state machine for one page fetch.

    Starts with the desktop profile; every rejected attempt flips the
    profile.  Iterating yields one :class:`FetchAttempt` per try until the
    attempt budget is spent or :meth:`accept` has been called.
    """

    def __init__(self, max_attempts: int = 5) -> None:
        if max_attempts < 1:
            raise ValueError("max_attempts must be >= 1")
        self.max_attempts = max_attempts
        self.attempt_number = 0
        self.profile = Profile.DESKTOP
        self.last_reason: Optional[str] = None
        self.accepted = False

    @property
    def exhausted(self) -> bool:
        return not self.accepted and self.attempt_number >= self.max_attempts

    @property
    def has_next(self) -> bool:
        return not self.accepted and self.attempt_number < self.max_attempts

    def __iter__(self) -> Iterator[FetchAttempt]:
        while self.has_next:
            self.attempt_number += 1
            yield FetchAttempt(self.profile, self.attempt_number)

    def accept(self) -> None:
        self.accepted = True

    def reject(self, reason: str) -> None:
        self.last_reason = reason
        self.profile = self.profile.flipped()


# ---------------------------------------------------------------------------
# Fetcher
# ---------------------------------------------------------------------------

class PageFetcher:
    """Fetches listing-page markup for a URL.

    A fresh :class:`httpx.AsyncClient` is built for every page so that no
    connection state carries over between pages.  ``transport`` and ``sleep``
    are injectable so the retry logic can run against a fake server without
    real delays.
    """

    def __init__(
        self,
        *,
        transport: Optional[httpx.AsyncBaseTransport] = None,
        sleep: SleepFn = asyncio.sleep,
        rng: random.Random | None = None,
        max_attempts: Optional[int] = None,
        min_body_chars: Optional[int] = None,
        content_marker: Optional[str] = None,
        backoff_ms: Optional[tuple[int, int]] = None,
        timeout: Optional[float] = None,
        max_redirects: Optional[int] = None,
    ) -> None:
        self._transport = transport
        self._sleep = sleep
        self._rng = rng or random.Random()
        self.max_attempts = max_attempts or settings.fetch_attempts
        self.min_body_chars = settings.min_body_chars if min_body_chars is None else min_body_chars
        self.content_marker = content_marker or settings.content_marker
        self.backoff_ms = backoff_ms or (settings.backoff_min_ms, settings.backoff_max_ms)
        self.timeout = timeout or settings.request_timeout
        self.max_redirects = max_redirects or settings.max_redirects

    def _client(self) -> httpx.AsyncClient:
        return httpx.AsyncClient(
            headers={"User-Agent": random_user_agent(Profile.DESKTOP, self._rng)},
            timeout=self.timeout,
            follow_redirects=True,
            max_redirects=self.max_redirects,
            transport=self._transport,
        )

    async def _backoff(self) -> None:
        low, high = self.backoff_ms
        await self._sleep(self._rng.uniform(low, high) / 1000)

    async def warmup(self, client: httpx.AsyncClient, origin: str) -> None:
        """Best-effort request to the site origin to prime cookies.

        Failures are logged and never propagate.
        """
        headers = build_headers(Profile.DESKTOP, origin, rng=self._rng)
        try:
            await client.get(origin, headers=headers)
        except (httpx.HTTPError, httpx.InvalidURL) as exc:
            logger.warning("[warmup] failed: %s", exc)

    async def fetch(self, page_url: str, referer: str) -> str:
        """Return the markup of *page_url*.

        Raises:
            FetchFailed: no attempt produced a genuine listing page.
        """
        async with self._client() as client:
            await self.warmup(client, origin_of(page_url))
            return await self._retrieve(client, page_url, referer)

    async def _retrieve(self, client: httpx.AsyncClient, page_url: str, referer: str) -> str:
        cycle = AttemptCycle(self.max_attempts)
        for attempt in cycle:
            headers = build_headers(attempt.profile, referer, rng=self._rng)
            try:
                response = await client.get(page_url, headers=headers)
            except (httpx.HTTPError, httpx.InvalidURL) as exc:
                reason = f"{type(exc).__name__}: {exc}"
                logger.info(
                    "[fetch] %s attempt=%d profile=%s -> %s",
                    page_url,
                    attempt.attempt_number,
                    attempt.profile.value,
                    reason,
                )
            else:
                body = response.text
                logger.info(
                    "[fetch] %s attempt=%d profile=%s -> status=%s final=%s len=%d (referer=%s)",
                    page_url,
                    attempt.attempt_number,
                    attempt.profile.value,
                    response.status_code,
                    response.url,
                    len(body),
                    referer,
                )
                reason = judge_body(body, min_chars=self.min_body_chars, marker=self.content_marker)
                if reason is None:
                    cycle.accept()
                    return body
            cycle.reject(reason)
            if cycle.has_next:
                await self._backoff()

        raise FetchFailed(
            f"failed to fetch {page_url} after {cycle.attempt_number} attempts: {cycle.last_reason}"
        )
