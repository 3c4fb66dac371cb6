"""Centralised settings for the flatwatch crawler.

All runtime configuration is resolved here in one place.  Values can be
overridden via environment variables or a `.env` file in the project root
(loaded automatically when this module is imported).
"""

from __future__ import annotations

import os
from dataclasses import dataclass, field
from pathlib import Path

from dotenv import load_dotenv

# Load .env from the project root (one level up from this package)
_env_path = Path(__file__).resolve().parent.parent / ".env"
load_dotenv(_env_path, override=False)


def _csv(value: str) -> tuple[str, ...]:
    return tuple(part.strip().lower() for part in value.split(",") if part.strip())


@dataclass
class Settings:
    # ------------------------------------------------------------------
    # Compliance
    # ------------------------------------------------------------------
    allowed_hosts: tuple[str, ...] = field(
        default_factory=lambda: _csv(
            os.environ.get("ALLOWED_HOSTS", "www.njuskalo.hr,njuskalo.hr")
        )
    )

    # ------------------------------------------------------------------
    # Pagination
    # ------------------------------------------------------------------
    page_cap: int = field(
        default_factory=lambda: int(os.environ.get("PAGE_CAP", "200"))
    )
    page_delay_min_ms: int = field(
        default_factory=lambda: int(os.environ.get("PAGE_DELAY_MIN_MS", "900"))
    )
    page_delay_max_ms: int = field(
        default_factory=lambda: int(os.environ.get("PAGE_DELAY_MAX_MS", "2200"))
    )

    # ------------------------------------------------------------------
    # Fetching
    # ------------------------------------------------------------------
    request_timeout: float = field(
        default_factory=lambda: float(os.environ.get("REQUEST_TIMEOUT", "25.0"))
    )
    max_redirects: int = field(
        default_factory=lambda: int(os.environ.get("MAX_REDIRECTS", "8"))
    )
    fetch_attempts: int = field(
        default_factory=lambda: int(os.environ.get("FETCH_ATTEMPTS", "5"))
    )
    backoff_min_ms: int = field(
        default_factory=lambda: int(os.environ.get("BACKOFF_MIN_MS", "600"))
    )
    backoff_max_ms: int = field(
        default_factory=lambda: int(os.environ.get("BACKOFF_MAX_MS", "1500"))
    )
    accept_language: str = field(
        default_factory=lambda: os.environ.get(
            "ACCEPT_LANGUAGE", "hr-HR,hr;q=0.9,en-US;q=0.8,en;q=0.7"
        )
    )

    # ------------------------------------------------------------------
    # Validity heuristic
    # ------------------------------------------------------------------
    min_body_chars: int = field(
        default_factory=lambda: int(os.environ.get("MIN_BODY_CHARS", "4000"))
    )
    content_marker: str = field(
        default_factory=lambda: os.environ.get("CONTENT_MARKER", "EntityList-item")
    )

    # ------------------------------------------------------------------
    # Streaming / runtime
    # ------------------------------------------------------------------
    stream_buffer: int = field(
        default_factory=lambda: int(os.environ.get("STREAM_BUFFER", "32"))
    )
    log_level: str = field(
        default_factory=lambda: os.environ.get("LOG_LEVEL", "INFO").upper()
    )


# Module-level singleton, import this everywhere:
#   from flatwatch.config import settings
settings = Settings()
