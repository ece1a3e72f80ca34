"""Tag normalization, LLM tag extraction and single-label categorization."""

from __future__ import annotations

import re
from typing import Iterable, List, Optional

from pydantic import BaseModel, Field

from ..utils.logging import get_logger

STOP_TAGS = frozenset(
    {
        "introduction",
        "overview",
        "guide",
        "article",
        "notes",
        "note",
        "example",
        "examples",
        "basics",
        "concepts",
        "summary",
        "summaries",
        "tutorial",
        "how to",
    }
)

CATEGORIES = ("learning", "software engineering", "ai systems", "finance", "productivity", "other")
UNCATEGORIZED = "uncategorized"

MAX_RAW_TAGS = 10
MAX_FINAL_TAGS = 8
MAX_CONTENT_CHARS = 12000

_NON_ALNUM = re.compile(r"[^a-z0-9\s]")
_WHITESPACE = re.compile(r"\s+")

_logger = get_logger("tags")


class TagExtraction(BaseModel):
    tags: List[str] = Field(default_factory=list, description="Short topical tags, 1-3 words each")


class CategoryChoice(BaseModel):
    category: str = Field(description="Exactly one of: " + ", ".join(CATEGORIES))


def normalize_tag(tag: str) -> Optional[str]:
    """Return the canonical tag, or ``None`` when it should be dropped."""

    value = _NON_ALNUM.sub(" ", (tag or "").strip().lower())
    value = _WHITESPACE.sub(" ", value).strip()
    if len(value) < 3 or len(value) > 40:
        return None
    if value in STOP_TAGS:
        return None
    if not 1 <= len(value.split(" ")) <= 3:
        return None
    return value


def finalize_tags(candidates: Iterable[str], max_final: int = MAX_FINAL_TAGS) -> List[str]:
    final: List[str] = []
    for candidate in candidates:
        tag = normalize_tag(candidate)
        if tag and tag not in final:
            final.append(tag)
        if len(final) >= max_final:
            break
    return final


def extract_tag_candidates(gateway, title: str, content: str) -> List[str]:  # type: ignore[no-untyped-def]
    prompt = (
        f"Suggest up to {MAX_RAW_TAGS} topical tags for this document. Prefer specific subjects "
        "over generic words like 'overview' or 'guide'.\n\n"
        f"Title: {title}\n\nContent:\n{content[:MAX_CONTENT_CHARS]}"
    )
    result = gateway.structured(prompt, TagExtraction, system_prompt="You tag documents in a personal knowledge vault.")
    return [tag for tag in result.tags if isinstance(tag, str)][:MAX_RAW_TAGS]


def categorize(gateway, title: str, tags: List[str]) -> str:  # type: ignore[no-untyped-def]
    """Pick one category for the document; any failure yields ``uncategorized``."""

    if not tags:
        return UNCATEGORIZED
    prompt = f"Title: {title}\nTags: {', '.join(tags)}\n\nChoose the single best category from: {', '.join(CATEGORIES)}."
    try:
        choice = gateway.structured(prompt, CategoryChoice, system_prompt="You classify documents.")
    except Exception:  # noqa: BLE001
        _logger.warning("Categorization failed for %r", title, exc_info=True)
        return UNCATEGORIZED
    category = (choice.category or "").strip().lower()
    return category if category in CATEGORIES else UNCATEGORIZED


__all__ = [
    "CATEGORIES",
    "MAX_FINAL_TAGS",
    "MAX_RAW_TAGS",
    "STOP_TAGS",
    "UNCATEGORIZED",
    "categorize",
    "extract_tag_candidates",
    "finalize_tags",
    "normalize_tag",
]
