"""Runtime settings, read from the environment (``.env`` is loaded by entry points)."""

from __future__ import annotations

import logging
import os
from collections.abc import Callable
from dataclasses import dataclass
from typing import TypeVar

logger = logging.getLogger(__name__)

N = TypeVar("N", int, float)

#: Staleness window shared by the fetch, sync and stats timestamps.
DEFAULT_CACHE_TTL_SECONDS = 5 * 60
DEFAULT_QUERY = "in:inbox"
DEFAULT_PAGE_SIZE = 100


@dataclass(frozen=True)
class Settings:
    """Connection and cache settings for a mailbox session."""

    api_url: str = "http://localhost:8080"
    user_email: str = ""
    cache_ttl: float = DEFAULT_CACHE_TTL_SECONDS
    default_query: str = DEFAULT_QUERY
    page_size: int = DEFAULT_PAGE_SIZE
    request_timeout: float = 30.0
    refresh_interval: int = 60

    @classmethod
    def from_env(cls) -> Settings:
        """Build Settings from MAILSORT_* environment variables."""
        return cls(
            api_url=os.environ.get("MAILSORT_API_URL", "http://localhost:8080").rstrip("/"),
            user_email=os.environ.get("MAILSORT_USER_EMAIL", ""),
            cache_ttl=_env_number(
                "MAILSORT_CACHE_TTL_SECONDS", DEFAULT_CACHE_TTL_SECONDS, float
            ),
            default_query=os.environ.get("MAILSORT_DEFAULT_QUERY", "") or DEFAULT_QUERY,
            page_size=_env_number("MAILSORT_PAGE_SIZE", DEFAULT_PAGE_SIZE, int),
            request_timeout=_env_number("MAILSORT_REQUEST_TIMEOUT_SECONDS", 30.0, float),
            refresh_interval=_env_number("MAILSORT_REFRESH_INTERVAL_SECONDS", 60, int),
        )


def _env_number(name: str, default: N, cast: Callable[[str], N]) -> N:
    """Read a positive number from the environment, falling back to default."""
    raw = os.environ.get(name)
    if raw is None or not raw.strip():
        return default
    try:
        value = cast(raw.strip())
    except ValueError:
        logger.warning("Invalid %s %r; defaulting to %s", name, raw, default)
        return default
    if value <= 0:
        logger.warning("%s must be positive (got %r); defaulting to %s", name, raw, default)
        return default
    return value
