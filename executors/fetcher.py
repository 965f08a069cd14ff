"""HTTP page fetcher with Redis caching."""

import logging

import httpx

from core.cache import RedisCache, cache_key, create_cache
from core.config import settings

logger = logging.getLogger(__name__)

CACHE_PREFIX = "fetch:page"


class FetchError(Exception):
    """Source document could not be retrieved."""

    def __init__(self, message: str, error_code: str = "FETCH_FAILED") -> None:
        super().__init__(message)
        self.error_code = error_code


class HttpFetcher:
    """Fetches article HTML, reusing a cached copy when Redis is available."""

    def __init__(self, cache: RedisCache | None = None, timeout: float | None = None) -> None:
        self._cache = cache if cache is not None else create_cache()
        self._timeout = timeout or float(settings.fetch_timeout_seconds)

    def fetch(self, url: str) -> str:
        key = cache_key(CACHE_PREFIX, url)
        if self._cache:
            cached = self._cache.get_text(key)
            if cached:
                logger.info("Cache hit for %s", url[:80])
                return cached

        try:
            response = httpx.get(
                url,
                headers={"User-Agent": settings.fetch_user_agent},
                timeout=self._timeout,
                follow_redirects=True,
            )
        except httpx.HTTPError as e:
            raise FetchError(f"Failed to fetch {url}: {e}") from e

        if response.status_code >= 400:
            raise FetchError(f"Failed to fetch {url}: {response.status_code}")

        html = response.text
        if self._cache:
            self._cache.set_text(key, html)
        return html
