"""Tools exposed to the web scout model: search, duplicate check, evaluation and query refinement."""

from __future__ import annotations

import re
from typing import Any, Dict, List, Optional, Sequence

from pydantic import BaseModel, Field

from ..models import ContentType
from ..repositories.documents import DocumentRepository
from ..services.model_gateway import ToolSpec
from ..services.web_search import SearchResult, domain_of
from ..utils.logging import get_logger

DEFAULT_MAX_RESULTS = 8
SNIPPET_CHARS = 500
HEURISTIC_ACCEPT = 0.7
HEURISTIC_REJECT = 0.4

HIGH_QUALITY_DOMAINS = (
    "arxiv.org",
    "github.com",
    "stackoverflow.com",
    "wikipedia.org",
    "nature.com",
    "sciencedirect.com",
    "acm.org",
    "ieee.org",
    "mit.edu",
    "stanford.edu",
    "harvard.edu",
    "berkeley.edu",
    "medium.com",
    "dev.to",
    "towardsdatascience.com",
)
LOW_QUALITY_DOMAINS = ("pinterest", "facebook", "twitter", "x.com", "tiktok", "instagram", "reddit")

_WORD = re.compile(r"[a-z0-9]+")

_logger = get_logger("web_scout.tools")


class Evaluation(BaseModel):
    relevance_score: float = Field(ge=0.0, le=1.0)
    content_type: ContentType = ContentType.OTHER
    topics: List[str] = Field(default_factory=list)
    reasoning: str = ""


class RefinedQuery(BaseModel):
    query: str


def domain_heuristic(url: str, title: str, snippet: str, goal: str) -> float:
    """Cheap relevance estimate from domain reputation and goal-word overlap."""

    domain = domain_of(url)
    score = 0.5
    if any(domain == good or domain.endswith("." + good) for good in HIGH_QUALITY_DOMAINS) or domain.endswith(
        (".edu", ".gov")
    ):
        score += 0.2
    if any(bad in domain for bad in LOW_QUALITY_DOMAINS):
        score -= 0.3
    goal_words = {word for word in _WORD.findall(goal.lower()) if len(word) > 3}
    if goal_words:
        text = f"{title} {snippet}".lower()
        matched = sum(1 for word in goal_words if word in text)
        score += (matched / len(goal_words)) * 0.3
    return max(0.0, min(1.0, score))


def search_web(
    provider,  # type: ignore[no-untyped-def]
    query: str,
    max_results: int = DEFAULT_MAX_RESULTS,
    include_domains: Optional[Sequence[str]] = None,
    exclude_domains: Optional[Sequence[str]] = None,
    snippet_chars: int = SNIPPET_CHARS,
) -> List[SearchResult]:
    results = provider.search(
        query,
        max_results=max_results,
        include_domains=list(include_domains) if include_domains else None,
        exclude_domains=list(exclude_domains) if exclude_domains else None,
    )
    return [result.model_copy(update={"snippet": (result.snippet or "")[:snippet_chars]}) for result in results]


def check_vault_duplicate(documents: DocumentRepository, urls: Sequence[str]) -> Dict[str, List[str]]:
    existing = set(documents.filter_existing(urls))
    return {
        "new_urls": [url for url in urls if url not in existing],
        "existing_urls": [url for url in urls if url in existing],
    }


def evaluate_result(gateway, url: str, title: str, snippet: str, goal: str) -> Evaluation:  # type: ignore[no-untyped-def]
    """Score a search result; clear-cut heuristic scores skip the model call."""

    heuristic = domain_heuristic(url, title, snippet, goal)
    if heuristic > HEURISTIC_ACCEPT:
        return Evaluation(relevance_score=heuristic, content_type=ContentType.ARTICLE, reasoning="domain heuristic")
    if heuristic < HEURISTIC_REJECT:
        return Evaluation(relevance_score=heuristic, content_type=ContentType.OTHER, reasoning="domain heuristic")
    prompt = (
        f"Goal: {goal}\n\nURL: {url}\nTitle: {title}\nSnippet: {snippet}\n\n"
        "Rate how relevant this resource is to the goal from 0 to 1, classify its content type "
        "(article, documentation, paper, tutorial, video, other) and list its main topics."
    )
    try:
        return gateway.structured(prompt, Evaluation, system_prompt="You evaluate web resources for a research vault.")
    except Exception:  # noqa: BLE001
        _logger.warning("Model evaluation failed for %s; using heuristic", url, exc_info=True)
        return Evaluation(relevance_score=heuristic, content_type=ContentType.OTHER, reasoning="domain heuristic fallback")


def refine_query(gateway, goal: str, original_query: str, feedback: str) -> str:  # type: ignore[no-untyped-def]
    prompt = (
        f"Goal: {goal}\nPrevious query: {original_query}\nFeedback: {feedback}\n\n"
        "Write one improved web search query."
    )
    try:
        refined = gateway.structured(prompt, RefinedQuery, system_prompt="You write precise web search queries.")
    except Exception:  # noqa: BLE001
        _logger.warning("Query refinement failed; keeping %r", original_query, exc_info=True)
        return original_query
    return refined.query.strip() or original_query


def _schema(properties: Dict[str, Any], required: Sequence[str]) -> Dict[str, Any]:
    return {"type": "object", "properties": properties, "required": list(required)}


_STRING_LIST = {"type": "array", "items": {"type": "string"}}

TOOL_SPECS: List[ToolSpec] = [
    ToolSpec(
        name="search_web",
        description="Search the web. Returns a list of {url, title, snippet}.",
        parameters=_schema(
            {
                "query": {"type": "string"},
                "max_results": {"type": "integer", "minimum": 1, "maximum": 20},
                "include_domains": _STRING_LIST,
                "exclude_domains": _STRING_LIST,
            },
            ["query"],
        ),
    ),
    ToolSpec(
        name="check_vault_duplicate",
        description="Split URLs into those already in the vault and new ones.",
        parameters=_schema({"urls": _STRING_LIST}, ["urls"]),
    ),
    ToolSpec(
        name="evaluate_result",
        description="Score a search result's relevance to the goal and classify it.",
        parameters=_schema(
            {
                "url": {"type": "string"},
                "title": {"type": "string"},
                "snippet": {"type": "string"},
                "goal": {"type": "string"},
            },
            ["url", "title"],
        ),
    ),
    ToolSpec(
        name="refine_query",
        description="Rewrite a search query using feedback about poor results.",
        parameters=_schema(
            {
                "goal": {"type": "string"},
                "original_query": {"type": "string"},
                "feedback": {"type": "string"},
            },
            ["original_query", "feedback"],
        ),
    ),
]


__all__ = [
    "Evaluation",
    "TOOL_SPECS",
    "check_vault_duplicate",
    "domain_heuristic",
    "evaluate_result",
    "refine_query",
    "search_web",
]
