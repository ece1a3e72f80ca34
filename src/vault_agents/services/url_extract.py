"""Fetch a web page and reduce it to a title and readable text."""

from __future__ import annotations

import re
from typing import Optional, Tuple

import requests
from bs4 import BeautifulSoup

USER_AGENT = "vault-agents/0.1 (+https://example.invalid/vault-agents)"
MIN_TEXT_CHARS = 200


class ExtractionError(Exception):
    """Raised when a page cannot be fetched or has no usable text."""


def html_to_text(html_text: str) -> Tuple[Optional[str], str]:
    soup = BeautifulSoup(html_text, "html.parser")
    title = soup.title.get_text(strip=True) if soup.title else None
    for tag in soup(["script", "style", "noscript", "nav", "footer", "header", "aside"]):
        tag.decompose()
    root = soup.find("article") or soup.find("main") or soup.body or soup
    text = root.get_text("\n", strip=True)
    return title, re.sub(r"\n{3,}", "\n\n", text).strip()


def fetch_url_text(url: str, timeout: int = 20) -> Tuple[str, str]:
    """Return ``(title, text)`` for ``url``; raises :class:`ExtractionError` on failure."""

    try:
        response = requests.get(url, timeout=timeout, headers={"User-Agent": USER_AGENT})
        response.raise_for_status()
    except requests.RequestException as exc:
        raise ExtractionError(f"Failed to fetch {url}: {exc}") from exc
    content_type = response.headers.get("content-type", "")
    if "html" not in content_type and "text" not in content_type:
        raise ExtractionError(f"Unsupported content type for {url}: {content_type or 'unknown'}")
    if "html" in content_type:
        title, text = html_to_text(response.text)
    else:
        title, text = None, response.text.strip()
    if len(text) < MIN_TEXT_CHARS:
        raise ExtractionError(f"Too little text extracted from {url}")
    return title or url, text


__all__ = ["ExtractionError", "fetch_url_text", "html_to_text"]
