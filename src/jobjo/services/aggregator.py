"""Collect, filter, deduplicate and enrich job postings from several feeds."""

from __future__ import annotations

import logging
import threading
from concurrent.futures import ThreadPoolExecutor
from datetime import datetime, timezone
from typing import Callable, List, Optional, Sequence, TypeVar

from jobjo.config import CONCURRENCY, FetchOptions
from jobjo.errors import AggregationError, FeedFetchError
from jobjo.models import (
    AggregateSource,
    AggregationResult,
    FeedFetchOutcome,
    FeedSummary,
    FeedWarning,
    JobRecord,
    RawEntry,
)
from jobjo.services.extractor import extract_job_content
from jobjo.services.normalizer import normalize_feed
from jobjo.services.transport import FeedTransport

__all__ = [
    "collect_jobs",
    "dedupe_entries",
    "derive_aggregate_source",
    "map_with_concurrency",
    "matches_keywords",
]

logger = logging.getLogger(__name__)

T = TypeVar("T")
R = TypeVar("R")


def map_with_concurrency(items: Sequence[T], limit: int, fn: Callable[[T, int], R]) -> List[R]:
    """Apply ``fn`` to every item using at most ``limit`` worker threads.

    Workers claim indices from a shared cursor and write into a pre-sized list,
    so the returned results follow the input order whatever the completion order.
    An exception raised by ``fn`` propagates once all workers have stopped.
    """

    if not items:
        return []

    results: List[Optional[R]] = [None] * len(items)
    cursor = 0
    cursor_lock = threading.Lock()

    def claim() -> int:
        nonlocal cursor
        with cursor_lock:
            current = cursor
            cursor += 1
            return current

    def worker() -> None:
        while True:
            current = claim()
            if current >= len(items):
                return
            results[current] = fn(items[current], current)

    worker_count = max(1, min(limit, len(items)))
    with ThreadPoolExecutor(max_workers=worker_count, thread_name_prefix="feed-worker") as pool:
        futures = [pool.submit(worker) for _ in range(worker_count)]
    for future in futures:
        future.result()
    return results  # type: ignore[return-value]


def matches_keywords(entry: RawEntry, keywords: Sequence[str]) -> bool:
    """``True`` when the title or summary contains any keyword, ignoring case."""

    needles = [keyword.strip().lower() for keyword in keywords if keyword and keyword.strip()]
    if not needles:
        return True
    haystack = f"{entry.title} {entry.summary}".lower()
    return any(needle in haystack for needle in needles)


def dedupe_entries(entries: Sequence[RawEntry]) -> List[RawEntry]:
    """Keep the first entry per identity key, dropping entries without one."""

    seen: set[str] = set()
    unique: List[RawEntry] = []
    for entry in entries:
        key = entry.identity_key
        if not key or key in seen:
            continue
        seen.add(key)
        unique.append(entry)
    return unique


def derive_aggregate_source(outcomes: Sequence[FeedFetchOutcome]) -> AggregateSource:
    if not outcomes:
        return "cache"
    if all(outcome.source == "local-cache" for outcome in outcomes):
        return "local-cache"
    if any(outcome.source == "proxy" for outcome in outcomes):
        return "proxy"
    return "network"


def collect_jobs(
    feeds: Sequence[str],
    keywords: Sequence[str],
    options: FetchOptions,
    *,
    transport: FeedTransport | None = None,
    concurrency: int = CONCURRENCY,
) -> AggregationResult:
    """Run one aggregation over ``feeds`` and return the result envelope.

    Individual feed failures become warnings. :class:`AggregationError` is
    raised only when every feed failed and none was served from a snapshot.
    """

    if not feeds:
        raise ValueError("At least one feed URL is required")

    transport = transport or FeedTransport()
    warnings: List[FeedWarning] = []
    warnings_lock = threading.Lock()

    def fetch_one(url: str, index: int) -> FeedFetchOutcome:
        try:
            document, source = transport.fetch_feed_document(url, options)
            items = normalize_feed(document)
        except FeedFetchError as exc:
            message = exc.message or "Unable to fetch."
        except Exception as exc:  # noqa: BLE001 - one broken feed must not stop the others
            logger.exception("Unexpected failure processing %s", url)
            message = str(exc) or "Unable to fetch."
        else:
            logger.debug("Feed %d (%s) produced %d entries via %s", index, url, len(items), source)
            return FeedFetchOutcome(url=url, items=items, source=source)

        logger.warning("Feed %s failed: %s", url, message)
        with warnings_lock:
            warnings.append(FeedWarning(url=url, message=message))
        return FeedFetchOutcome(url=url, items=[], source="error")

    outcomes = map_with_concurrency(list(feeds), concurrency, fetch_one)

    merged = [entry for outcome in outcomes for entry in outcome.items]
    if not merged and len(warnings) == len(feeds):
        raise AggregationError.from_warnings(warnings)

    filtered = [entry for entry in merged if matches_keywords(entry, keywords)]
    unique = sorted(dedupe_entries(filtered), key=lambda entry: entry.published, reverse=True)
    items = [JobRecord.from_entry(entry, extract_job_content(entry.summary)) for entry in unique]

    saved_at = datetime.now(timezone.utc)
    source = derive_aggregate_source(outcomes)
    logger.info(
        "Collected %d jobs from %d feeds (%d merged, %d warnings, source=%s)",
        len(items),
        len(feeds),
        len(merged),
        len(warnings),
        source,
    )

    return AggregationResult(
        saved_at=saved_at,
        count=len(items),
        items=items,
        feeds=[
            FeedSummary(url=outcome.url, fetched_at=saved_at, source=outcome.source, count=len(outcome.items))
            for outcome in outcomes
        ],
        warnings=warnings,
        source=source,
    )
