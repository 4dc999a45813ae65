# backend/loginguard/core/rate_limit.py
"""
Client IP extraction and the rate limiting collaborator for auth paths.

The edge layer (WAF / CDN) forwards the client address in trusted headers;
the rate limiter itself is slowapi/limits, keyed by that address.
"""

import logging
import math
import time
from typing import NamedTuple

from limits import parse
from limits.aio.strategies import FixedWindowRateLimiter
from limits.storage import storage_from_string
from slowapi import Limiter
from slowapi.util import get_remote_address
from starlette.requests import Request

from loginguard.core.config import settings

logger = logging.getLogger(__name__)

AUTH_RATE_LIMIT_SCOPE = "auth"


def get_real_client_ip(request: Request) -> str:
    """
    Resolve the client IP as seen by the outermost trusted layer.

    Order: CF-Connecting-IP, first X-Forwarded-For hop, X-Real-IP, socket peer.
    Forwarded headers are only honoured when TRUSTED_PROXY_HEADERS is enabled.
    """
    if settings.TRUSTED_PROXY_HEADERS:
        cf_ip = request.headers.get("CF-Connecting-IP")
        if cf_ip and cf_ip.strip():
            return cf_ip.strip()

        forwarded_for = request.headers.get("X-Forwarded-For")
        if forwarded_for:
            first_hop = forwarded_for.split(",")[0].strip()
            if first_hop:
                return first_hop

        real_ip = request.headers.get("X-Real-IP")
        if real_ip and real_ip.strip():
            return real_ip.strip()

    return get_remote_address(request) or "unknown"


def get_country_code(request: Request) -> str | None:
    """Country code forwarded by the edge geo lookup, if any."""
    if not settings.TRUSTED_PROXY_HEADERS:
        return None
    country = request.headers.get("CF-IPCountry")
    if not country or country.upper() in ("XX", "T1"):
        return None
    return country.upper()[:2]


def build_limiter() -> Limiter:
    """Create the limiter owned by the application (stored on app.state)."""
    return Limiter(key_func=get_real_client_ip, storage_uri=settings.RATE_LIMIT_STORAGE_URI)


class RateDecision(NamedTuple):
    """Outcome of a rate limit check."""

    denied: bool
    key: str
    retry_after: int | None = None


def async_storage_uri(storage_uri: str) -> str:
    """limits selects its asyncio storage backends through the "async+" scheme prefix."""
    return storage_uri if storage_uri.startswith("async+") else f"async+{storage_uri}"


class AuthRateGuard:
    """
    Stricter rate limit profile for authentication endpoints.

    Uses the asyncio flavour of limits (same storage URI as the app's slowapi
    Limiter) so the login orchestrator can await an explicit allow/deny
    decision without blocking the event loop on a remote storage.
    """

    def __init__(self, limit: str | None = None, storage_uri: str | None = None):
        self._item = parse(limit or settings.AUTH_RATE_LIMIT)
        self._storage = storage_from_string(
            async_storage_uri(storage_uri or settings.RATE_LIMIT_STORAGE_URI)
        )
        self._strategy = FixedWindowRateLimiter(self._storage)

    async def protect(self, request: Request) -> RateDecision:
        client_ip = get_real_client_ip(request)
        if await self._strategy.hit(self._item, AUTH_RATE_LIMIT_SCOPE, client_ip):
            return RateDecision(denied=False, key=client_ip)

        reset_time, _remaining = await self._strategy.get_window_stats(
            self._item, AUTH_RATE_LIMIT_SCOPE, client_ip
        )
        retry_after = max(1, math.ceil(reset_time - time.time()))
        logger.info(f"Auth rate limit exceeded for {client_ip} ({self._item})")
        return RateDecision(denied=True, key=client_ip, retry_after=retry_after)
