"""Heuristic extraction of structured job fields from summary HTML."""

from __future__ import annotations

import re
from typing import Iterable, List, Sequence

from bs4 import BeautifulSoup

from jobjo.models import ExtractedContent

__all__ = [
    "APPLY_URL_PATTERNS",
    "REQUIREMENT_KEYWORDS",
    "RESPONSIBILITY_KEYWORDS",
    "extract_job_content",
    "find_apply_url",
    "find_list_after_keywords",
    "find_overview",
]

RESPONSIBILITY_KEYWORDS = ("responsibilities", "what you'll do", "what you will do")
REQUIREMENT_KEYWORDS = ("requirements", "qualifications", "what we're looking for")

#: Paragraphs longer than this are preferred as the overview.
OVERVIEW_MIN_LENGTH = 120

HEADING_TAGS = ["h2", "h3", "h4", "strong", "p"]
LIST_TAGS = ["ul", "ol"]

APPLY_TEXT_PATTERN = re.compile(r"apply", re.IGNORECASE)
APPLY_URL_PATTERNS = (
    re.compile(r"cryptojobslist\.com/jobs"),
    re.compile(r"boards\.greenhouse\.io/"),
    re.compile(r"jobs\.lever\.co/"),
    re.compile(r"jobs\.ashbyhq\.com/"),
    re.compile(r"apply\.workable\.com/"),
)


def _dedupe(values: Iterable[str]) -> List[str]:
    return list(dict.fromkeys(values))


def find_overview(soup: BeautifulSoup) -> str | None:
    """Return the first long paragraph, else the first paragraph."""

    paragraphs = [text for text in (p.get_text().strip() for p in soup.find_all("p")) if text]
    for text in paragraphs:
        if len(text) > OVERVIEW_MIN_LENGTH:
            return text
    return paragraphs[0] if paragraphs else None


def find_list_after_keywords(soup: BeautifulSoup, keywords: Sequence[str]) -> List[str]:
    """Return the items of the list following the first heading that names a keyword.

    Keywords are tried in order and, for each, only the first heading-like node
    containing it is considered. A later keyword is only consulted when the
    earlier one matched nothing or its heading is not followed by a list.
    """

    nodes = soup.find_all(HEADING_TAGS)
    for keyword in keywords:
        needle = keyword.lower()
        match = next((node for node in nodes if needle in node.get_text().lower()), None)
        if match is None:
            continue

        list_tag = match.find_next_sibling(LIST_TAGS)
        if list_tag is None:
            continue

        items = [text for text in (li.get_text().strip() for li in list_tag.find_all("li")) if text]
        if items:
            return _dedupe(items)
    return []


def find_apply_url(soup: BeautifulSoup) -> str | None:
    for anchor in soup.find_all("a", href=True):
        href = anchor["href"].strip()
        if not href:
            continue
        if APPLY_TEXT_PATTERN.search(anchor.get_text()):
            return href
        if any(pattern.search(href) for pattern in APPLY_URL_PATTERNS):
            return href
    return None


def extract_job_content(markup: str | None) -> ExtractedContent:
    """Extract overview, responsibilities, requirements and apply link from ``markup``."""

    if not markup or not markup.strip():
        return ExtractedContent()

    soup = BeautifulSoup(markup.replace("\\n", "\n"), "lxml")
    return ExtractedContent(
        overview=find_overview(soup),
        responsibilities=find_list_after_keywords(soup, RESPONSIBILITY_KEYWORDS),
        requirements=find_list_after_keywords(soup, REQUIREMENT_KEYWORDS),
        apply_url=find_apply_url(soup),
    )
