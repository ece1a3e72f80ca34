"""Web search providers: DuckDuckGo with a SQLite cache, or Tavily."""

from __future__ import annotations

import datetime as dt
from typing import List, Optional, Sequence
from urllib.parse import urlsplit

from duckduckgo_search import DDGS
from pydantic import BaseModel
from sqlalchemy import select
from tavily import TavilyClient
from tenacity import retry, stop_after_attempt, wait_exponential

from ..config import ResearchConfig
from ..database import SearchCache, session_scope, utcnow
from ..utils.logging import get_logger


class SearchResult(BaseModel):
    url: str
    title: str = ""
    snippet: str = ""


def domain_of(url: str) -> str:
    host = (urlsplit(url).hostname or "").lower()
    return host[4:] if host.startswith("www.") else host


def matches_domain(url: str, domains: Sequence[str]) -> bool:
    """True when the url's host equals, or is a subdomain of, any entry in ``domains``."""

    host = domain_of(url)
    for domain in domains:
        domain = domain.lower().removeprefix("www.")
        if host == domain or host.endswith("." + domain):
            return True
    return False


def filter_by_domains(
    results: List[SearchResult],
    include_domains: Optional[Sequence[str]] = None,
    exclude_domains: Optional[Sequence[str]] = None,
) -> List[SearchResult]:
    filtered = results
    if include_domains:
        filtered = [result for result in filtered if matches_domain(result.url, include_domains)]
    if exclude_domains:
        filtered = [result for result in filtered if not matches_domain(result.url, exclude_domains)]
    return filtered


class DuckDuckGoSearchProvider:
    """Performs web searches with lightweight caching in SQLite.

    Domain restrictions are expressed with ``site:`` / ``-site:`` operators and
    re-applied to the returned results, since the engine treats them as hints.
    """

    def __init__(self, research_config: ResearchConfig, session_factory) -> None:  # type: ignore[no-untyped-def]
        self._config = research_config
        self._session_factory = session_factory
        self._logger = get_logger("web_search")

    def search(
        self,
        query: str,
        max_results: int = 8,
        include_domains: Optional[Sequence[str]] = None,
        exclude_domains: Optional[Sequence[str]] = None,
    ) -> List[SearchResult]:
        terms = [query.strip()]
        if include_domains:
            terms.append("(" + " OR ".join(f"site:{domain}" for domain in include_domains) + ")")
        for domain in exclude_domains or []:
            terms.append(f"-site:{domain}")
        full_query = " ".join(terms)
        cache_key = f"ddg::{max_results}::{full_query}"

        cached = self._read_cache(cache_key)
        if cached is None:
            raw = self._search(full_query, max_results)
            cached = [
                SearchResult(url=item.get("href", ""), title=item.get("title", ""), snippet=item.get("body", ""))
                for item in raw
                if item.get("href")
            ]
            self._write_cache(cache_key, full_query, cached)
        return filter_by_domains(cached, include_domains, exclude_domains)[:max_results]

    @retry(stop=stop_after_attempt(3), wait=wait_exponential(multiplier=1, min=2, max=10), reraise=True)
    def _search(self, query: str, max_results: int) -> List[dict]:
        self._logger.debug("DuckDuckGo search: %s", query)
        return list(DDGS().text(query, max_results=max_results) or [])

    def _read_cache(self, cache_key: str) -> Optional[List[SearchResult]]:
        with session_scope(self._session_factory) as session:
            entry = session.scalar(select(SearchCache).where(SearchCache.cache_key == cache_key))
            if entry is None:
                return None
            cached_at = entry.updated_at or entry.created_at
            if cached_at <= utcnow() - dt.timedelta(hours=self._config.cache_ttl_hours):
                return None
            return [SearchResult.model_validate(item) for item in entry.results or []]

    def _write_cache(self, cache_key: str, query: str, results: List[SearchResult]) -> None:
        payload = [result.model_dump() for result in results]
        with session_scope(self._session_factory) as session:
            entry = session.scalar(select(SearchCache).where(SearchCache.cache_key == cache_key))
            if entry:
                entry.query = query
                entry.results = payload
                entry.updated_at = utcnow()
            else:
                session.add(SearchCache(cache_key=cache_key, query=query, results=payload))


class TavilySearchProvider:
    def __init__(self, research_config: ResearchConfig, client: Optional[TavilyClient] = None) -> None:
        self._config = research_config
        self._client = client or TavilyClient(api_key=research_config.tavily_api_key)

    @retry(stop=stop_after_attempt(3), wait=wait_exponential(multiplier=1, min=2, max=10), reraise=True)
    def search(
        self,
        query: str,
        max_results: int = 8,
        include_domains: Optional[Sequence[str]] = None,
        exclude_domains: Optional[Sequence[str]] = None,
    ) -> List[SearchResult]:
        response = self._client.search(
            query=query,
            max_results=max_results,
            include_domains=list(include_domains or []),
            exclude_domains=list(exclude_domains or []),
        )
        return [
            SearchResult(url=item.get("url", ""), title=item.get("title", ""), snippet=item.get("content", ""))
            for item in response.get("results", [])
            if item.get("url")
        ]


def build_search_provider(research_config: ResearchConfig, session_factory):  # type: ignore[no-untyped-def]
    if research_config.provider == "tavily":
        return TavilySearchProvider(research_config)
    return DuckDuckGoSearchProvider(research_config, session_factory)


__all__ = [
    "DuckDuckGoSearchProvider",
    "SearchResult",
    "TavilySearchProvider",
    "build_search_provider",
    "domain_of",
    "filter_by_domains",
    "matches_domain",
]
