"""Turn RSS 2.0 and Atom 1.0 documents into :class:`RawEntry` lists."""

from __future__ import annotations

import logging
from datetime import datetime, timezone
from email.utils import parsedate_to_datetime
from typing import Callable, List

from bs4 import BeautifulSoup, Tag
from lxml import etree

from jobjo.models import RawEntry

__all__ = ["normalize_feed", "parse_timestamp"]

logger = logging.getLogger(__name__)

# Extension elements looked up by namespace, whatever prefix the feed declares.
NAMESPACED_ELEMENTS = {
    "dc:date": ("http://purl.org/dc/elements/1.1/", "date"),
    "content:encoded": ("http://purl.org/rss/1.0/modules/content/", "encoded"),
}


def parse_timestamp(value: str | None, default: datetime | None = None) -> datetime:
    """Parse an RFC 822 or ISO 8601 date into an aware UTC datetime.

    Missing or unparsable values yield ``default`` (or the current time).
    """

    fallback = default or datetime.now(timezone.utc)
    text = (value or "").strip()
    if not text:
        return fallback

    try:
        parsed = parsedate_to_datetime(text)
    except (TypeError, ValueError, IndexError, OverflowError):
        try:
            parsed = datetime.fromisoformat(text.replace("Z", "+00:00"))
        except (ValueError, OverflowError):
            return fallback

    if parsed.tzinfo is None:
        return parsed.replace(tzinfo=timezone.utc)
    try:
        return parsed.astimezone(timezone.utc)
    except OverflowError:
        # Offsets on dates at the edge of the calendar leave datetime's range.
        return fallback


def _is_well_formed(document: str) -> bool:
    try:
        # lxml parsers must not be shared between worker threads.
        parser = etree.XMLParser(encoding="utf-8", resolve_entities=False, no_network=True)
        etree.fromstring(document.encode("utf-8"), parser=parser)
    except etree.XMLSyntaxError:
        return False
    return True


def _element(name: str) -> Callable[[Tag], bool]:
    """Matcher for a core element (no prefix) or a known extension element."""

    if name in NAMESPACED_ELEMENTS:
        namespace, local = NAMESPACED_ELEMENTS[name]
        prefix = name.split(":", 1)[0]
        return lambda tag: tag.name == local and (tag.namespace == namespace or tag.prefix == prefix)
    return lambda tag: tag.name == name and not tag.prefix


def _text(node: Tag | None) -> str:
    if node is None:
        return ""
    return node.get_text().strip()


def _child_text(parent: Tag, *names: str) -> str:
    """Text of the first non-empty element among ``names``, tried in order."""

    for name in names:
        value = _text(parent.find(_element(name)))
        if value:
            return value
    return ""


def _descendants(soup: BeautifulSoup, *path: str) -> List[Tag]:
    nodes: List[Tag] = [soup]
    for name in path:
        nodes = [found for node in nodes for found in node.find_all(_element(name))]
    # Nested containers can reach the same element twice.
    unique: List[Tag] = []
    seen: set[int] = set()
    for node in nodes:
        if id(node) not in seen:
            seen.add(id(node))
            unique.append(node)
    return unique


def _atom_link(entry: Tag) -> str:
    links = [link for link in entry.find_all(_element("link")) if link.get("href", "").strip()]
    for link in links:
        if link.get("rel", "alternate") == "alternate":
            return link["href"].strip()
    return links[0]["href"].strip() if links else ""


def _rss_entries(items: List[Tag], fetched_at: datetime) -> List[RawEntry]:
    entries = []
    for item in items:
        link = _child_text(item, "link")
        entries.append(
            RawEntry(
                title=_child_text(item, "title"),
                link=link,
                guid=_child_text(item, "guid") or link,
                published=parse_timestamp(_child_text(item, "pubDate", "dc:date"), fetched_at),
                summary=_child_text(item, "description", "content:encoded"),
            )
        )
    return entries


def _atom_entries(items: List[Tag], fetched_at: datetime) -> List[RawEntry]:
    entries = []
    for entry in items:
        entry_id = _child_text(entry, "id")
        link = _atom_link(entry) or entry_id
        entries.append(
            RawEntry(
                title=_child_text(entry, "title"),
                link=link,
                guid=entry_id or link,
                published=parse_timestamp(_child_text(entry, "published", "updated"), fetched_at),
                summary=_child_text(entry, "summary", "content"),
            )
        )
    return entries


def normalize_feed(document: str, fetched_at: datetime | None = None) -> List[RawEntry]:
    """Parse a feed document into entries; malformed or unknown documents yield ``[]``."""

    if not document or not document.strip() or not _is_well_formed(document):
        logger.debug("Feed document is empty or not well-formed XML")
        return []

    fetched_at = fetched_at or datetime.now(timezone.utc)
    soup = BeautifulSoup(document, "xml")

    rss_items = _descendants(soup, "rss", "channel", "item")
    if rss_items:
        return _rss_entries(rss_items, fetched_at)

    atom_entries = _descendants(soup, "feed", "entry")
    if atom_entries:
        return _atom_entries(atom_entries, fetched_at)

    logger.debug("Document is neither RSS nor Atom")
    return []
