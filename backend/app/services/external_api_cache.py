"""
In-memory TTL cache for external API GET requests (e.g. the risk factor API).
The same URL + params returns the cached JSON body until the TTL expires.
Only successful JSON responses are cached.
"""

import asyncio
import logging
import time
from typing import Any
from urllib.parse import urlencode

import httpx

logger = logging.getLogger(__name__)

DEFAULT_TTL_SECONDS = 300


def _make_cache_key(url: str, params: dict | None) -> str:
    """Build a deterministic cache key from URL and query params."""
    if not params:
        return url
    # Sort keys so same params in different order yield same key
    encoded = urlencode(sorted(params.items()), doseq=True)
    return f"{url}?{encoded}"


class _CachedResponse:
    """Minimal response-like object for cached data."""

    def __init__(self, status_code: int, data: dict | list):
        self.status_code = status_code
        self._data = data

    def json(self) -> dict | list:
        return self._data


class ResponseCache:
    """
    One cache per client. Safe to share between concurrent tasks: the
    dictionary is only touched under the lock, the request itself is not.
    """

    def __init__(self, ttl_seconds: float = DEFAULT_TTL_SECONDS):
        self.ttl_seconds = ttl_seconds
        # key -> (expiry_ts, status_code, body)
        self._cache: dict[str, tuple[float, int, dict | list]] = {}
        self._lock = asyncio.Lock()

    async def cached_get(
        self,
        client: httpx.AsyncClient,
        url: str,
        *,
        params: dict | None = None,
        service: str | None = None,
        **kwargs: Any,
    ) -> httpx.Response | _CachedResponse:
        key = _make_cache_key(url, params)

        async with self._lock:
            if key in self._cache:
                expiry_ts, status_code, body = self._cache[key]
                if time.monotonic() < expiry_ts:
                    logger.debug("Cache hit for %s (%s)", key[:80], service)
                    return _CachedResponse(status_code, body)
                del self._cache[key]

        start = time.monotonic()
        response = await client.get(url, params=params, **kwargs)
        elapsed_ms = int((time.monotonic() - start) * 1000)
        logger.debug(
            "GET %s -> %d in %dms (%s)", key[:80], response.status_code, elapsed_ms, service
        )

        # Only cache successful responses, never 4xx/5xx errors
        if response.status_code >= 400 or self.ttl_seconds <= 0:
            return response
        try:
            body = response.json()
        except ValueError:
            return response

        async with self._lock:
            self._cache[key] = (time.monotonic() + self.ttl_seconds, response.status_code, body)
        return response

    async def clear(self) -> None:
        async with self._lock:
            self._cache.clear()
