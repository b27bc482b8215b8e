"""
HTML parsing for crawled pages: JSON-LD blocks, links and contact hints.
"""

from __future__ import annotations

import json
import logging
from dataclasses import dataclass, field
from typing import Any

from bs4 import BeautifulSoup

from app.crawling.urls import normalize_url

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class ParsedPage:
    title: str | None = None
    json_ld: list[dict[str, Any]] = field(default_factory=list)
    links: list[str] = field(default_factory=list)
    phones: list[str] = field(default_factory=list)
    emails: list[str] = field(default_factory=list)


def _flatten_json_ld(data: Any) -> list[dict[str, Any]]:
    if isinstance(data, list):
        items: list[dict[str, Any]] = []
        for item in data:
            items.extend(_flatten_json_ld(item))
        return items
    if isinstance(data, dict):
        graph = data.get("@graph")
        if isinstance(graph, list):
            return _flatten_json_ld(graph)
        return [data]
    return []


def extract_json_ld(soup: BeautifulSoup) -> list[dict[str, Any]]:
    """
    Return every JSON-LD object on the page. Blocks that fail to parse are skipped.
    """

    items: list[dict[str, Any]] = []
    for script in soup.find_all("script", type="application/ld+json"):
        raw = script.string or script.get_text()
        if not raw or not raw.strip():
            continue
        try:
            data = json.loads(raw)
        except json.JSONDecodeError as exc:
            logger.debug("Skipping malformed JSON-LD block: %s", exc)
            continue
        items.extend(_flatten_json_ld(data))
    return items


def parse_html(html: str, *, base_url: str) -> ParsedPage:
    """
    Parse one HTML document.

    Links are resolved against ``base_url`` and normalized; duplicates and
    non-http links are dropped. ``tel:`` and ``mailto:`` anchors are
    collected as contact hints.
    """

    soup = BeautifulSoup(html, "html.parser")

    links: list[str] = []
    seen: set[str] = set()
    phones: list[str] = []
    emails: list[str] = []
    for anchor in soup.find_all("a", href=True):
        href = str(anchor["href"]).strip()
        lowered = href.lower()
        if lowered.startswith("tel:"):
            phones.append(href[4:].strip())
            continue
        if lowered.startswith("mailto:"):
            emails.append(href[7:].split("?", 1)[0].strip())
            continue
        normalized = normalize_url(href, base=base_url)
        if normalized is None or normalized in seen:
            continue
        seen.add(normalized)
        links.append(normalized)

    title = soup.title.get_text(strip=True) if soup.title else None
    return ParsedPage(
        title=title or None,
        json_ld=extract_json_ld(soup),
        links=links,
        phones=phones,
        emails=emails,
    )
