"""Best-effort web search used to ground stage prompts.

Search never fails a run: a missing API key, an HTTP error or a malformed
body all yield an empty result list.
"""

from __future__ import annotations

import logging
import time
from typing import Callable, Protocol

import httpx

from .models import ProjectConfig, SearchResult

logger = logging.getLogger(__name__)

TAVILY_URL = "https://api.tavily.com/search"
CACHE_TTL_SECONDS = 24 * 60 * 60
CACHE_MAX_SIZE = 500


class SearchCollaborator(Protocol):
    async def search(self, query: str, count: int = 5, depth: str = "basic") -> list[SearchResult]: ...


class NullSearch:
    """Search disabled: every query returns nothing."""

    async def search(self, query: str, count: int = 5, depth: str = "basic") -> list[SearchResult]:
        return []


def cache_key(query: str, count: int, depth: str) -> str:
    return f"{query.lower().strip()}|{count}|{depth}"


class TavilySearch:
    """Tavily search API client with an in-process TTL cache.

    Only successful responses are cached; when the cache is full the oldest
    entry is evicted before a new one is stored.
    """

    def __init__(
        self,
        api_key: str,
        *,
        timeout: float = 30.0,
        transport: httpx.AsyncBaseTransport | None = None,
        clock: Callable[[], float] = time.monotonic,
        ttl_seconds: float = CACHE_TTL_SECONDS,
        max_entries: int = CACHE_MAX_SIZE,
    ) -> None:
        self.api_key = api_key
        self.timeout = timeout
        self._transport = transport
        self._clock = clock
        self.ttl_seconds = ttl_seconds
        self.max_entries = max_entries
        self._cache: dict[str, tuple[float, list[SearchResult]]] = {}

    async def search(self, query: str, count: int = 5, depth: str = "basic") -> list[SearchResult]:
        if not query.strip():
            return []
        if not self.api_key:
            logger.debug("TAVILY_API_KEY not set; skipping search for %r", query)
            return []

        depth = "advanced" if depth == "advanced" else "basic"
        key = cache_key(query, count, depth)
        now = self._clock()
        cached = self._cache.get(key)
        if cached is not None:
            stored_at, results = cached
            if now - stored_at < self.ttl_seconds:
                logger.debug("search cache HIT: %r (%d results)", query, len(results))
                return list(results)
            del self._cache[key]

        try:
            async with httpx.AsyncClient(timeout=self.timeout, transport=self._transport) as client:
                response = await client.post(TAVILY_URL, json={
                    "api_key": self.api_key,
                    "query": query,
                    "max_results": count,
                    "search_depth": depth,
                })
                response.raise_for_status()
                data = response.json()
        except (httpx.HTTPError, ValueError) as exc:
            logger.warning("Search failed for %r: %s", query, exc)
            return []

        raw_results = data.get("results") if isinstance(data, dict) else None
        results = [
            SearchResult(
                title=str(r.get("title") or ""),
                url=str(r.get("url") or ""),
                snippet=str(r.get("content") or ""),
            )
            for r in (raw_results or [])
            if isinstance(r, dict)
        ]

        self._evict(now)
        self._cache[key] = (now, results)
        logger.debug("search cache MISS: %r -> %d results (%d cached)", query, len(results), len(self._cache))
        return list(results)

    def _evict(self, now: float) -> None:
        expired = [k for k, (stored_at, _) in self._cache.items() if now - stored_at >= self.ttl_seconds]
        for k in expired:
            del self._cache[k]
        while self._cache and len(self._cache) >= self.max_entries:
            oldest = min(self._cache, key=lambda k: self._cache[k][0])
            del self._cache[oldest]

    def __len__(self) -> int:
        return len(self._cache)


def make_search(config: ProjectConfig) -> SearchCollaborator:
    """Search collaborator for *config*; disabled search or no key gives ``NullSearch``."""
    if not config.search.enabled or not config.providers.tavily_api_key:
        return NullSearch()
    return TavilySearch(config.providers.tavily_api_key, timeout=config.search.timeout_seconds)
