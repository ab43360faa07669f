from __future__ import annotations

import threading
import time
from datetime import datetime, timezone
from types import SimpleNamespace
from xml.sax.saxutils import escape

import pytest
import requests

from jobjo.config import FetchOptions
from jobjo.errors import AggregationError, FeedFetchError
from jobjo.models import FeedFetchOutcome
from jobjo.services.aggregator import (
    collect_jobs,
    derive_aggregate_source,
    map_with_concurrency,
)
from jobjo.services.transport import FeedTransport

FEED_A = "https://a.example/rss"
FEED_B = "https://b.example/rss"


def rss(*items: dict) -> str:
    parts = []
    for item in items:
        fields = "".join(
            f"<{name}>{escape(value)}</{name}>" for name, value in item.items() if value is not None
        )
        parts.append(f"<item>{fields}</item>")
    return f"<rss><channel>{''.join(parts)}</channel></rss>"


def item(title: str, link: str, date: str, description: str = "", guid: str | None = None) -> dict:
    return {"title": title, "link": link, "guid": guid, "pubDate": date, "description": description}


class FakeRaw:
    def __init__(self, body: bytes) -> None:
        self._body = body

    def read1(self, amt: int, decode_content: bool = True) -> bytes:
        chunk, self._body = self._body[:amt], self._body[amt:]
        return chunk


class FakeResponse:
    def __init__(self, text: str, status_code: int = 200) -> None:
        self.status_code = status_code
        self.headers: dict = {}
        self.encoding = None
        self.raw = FakeRaw(text.encode("utf-8"))

    def close(self) -> None:
        pass


def fake_transport(documents: dict, sources: dict | None = None) -> SimpleNamespace:
    sources = sources or {}

    def fetch_feed_document(url, options):
        value = documents[url]
        if isinstance(value, Exception):
            raise value
        return value, sources.get(url, "network")

    return SimpleNamespace(fetch_feed_document=fetch_feed_document)


def test_partial_failure_keeps_successful_feed() -> None:
    document = rss(
        item("Rust Dev", "https://a.example/1", "Mon, 01 Jan 2024 00:00:00 GMT"),
        item("Go Dev", "https://a.example/2", "Tue, 02 Jan 2024 00:00:00 GMT"),
    )

    def fake_get(url, timeout, stream):
        if url == FEED_A:
            return FakeResponse(document)
        raise requests.Timeout("read timed out")

    transport = FeedTransport(sleep=lambda seconds: None)
    transport._session = SimpleNamespace(get=fake_get)

    result = collect_jobs([FEED_A, FEED_B], [], FetchOptions(), transport=transport)

    assert [job.title for job in result.items] == ["Go Dev", "Rust Dev"]
    assert result.count == 2
    assert [warning.url for warning in result.warnings] == [FEED_B]
    assert result.has_warnings
    assert result.source == "network"
    assert [(feed.url, feed.source, feed.count) for feed in result.feeds] == [
        (FEED_A, "network", 2),
        (FEED_B, "error", 0),
    ]


def test_total_failure_raises_with_every_warning() -> None:
    transport = fake_transport(
        {
            FEED_A: FeedFetchError(f"HTTP 500 for {FEED_A}"),
            FEED_B: FeedFetchError(f"HTTP 502 for {FEED_B}"),
        }
    )

    with pytest.raises(AggregationError) as excinfo:
        collect_jobs([FEED_A, FEED_B], [], FetchOptions(), transport=transport)

    error = excinfo.value
    assert {(warning.url, warning.message) for warning in error.warnings} == {
        (FEED_A, f"HTTP 500 for {FEED_A}"),
        (FEED_B, f"HTTP 502 for {FEED_B}"),
    }
    assert "2" in error.message
    assert FEED_A in error.message and FEED_B in error.message


def test_empty_but_reachable_feed_is_not_a_total_failure() -> None:
    transport = fake_transport(
        {FEED_A: FeedFetchError("offline"), FEED_B: rss()},
        sources={FEED_B: "local-cache"},
    )

    result = collect_jobs([FEED_A, FEED_B], [], FetchOptions(), transport=transport)

    assert result.items == []
    assert len(result.warnings) == 1


def test_unexpected_errors_become_warnings() -> None:
    transport = fake_transport(
        {
            FEED_A: RuntimeError("boom"),
            FEED_B: rss(item("Rust Dev", "https://b.example/1", "Mon, 01 Jan 2024 00:00:00 GMT")),
        }
    )

    result = collect_jobs([FEED_A, FEED_B], [], FetchOptions(), transport=transport)

    assert [job.title for job in result.items] == ["Rust Dev"]
    assert [(warning.url, warning.message) for warning in result.warnings] == [(FEED_A, "boom")]


def test_out_of_range_date_does_not_abort_sibling_feeds() -> None:
    atom = (
        '<feed xmlns="http://www.w3.org/2005/Atom"><entry>'
        "<title>Ancient Dev</title><id>urn:job:ancient</id>"
        "<updated>0001-01-01T00:00:00+01:00</updated>"
        "</entry></feed>"
    )
    transport = fake_transport(
        {
            FEED_A: atom,
            FEED_B: rss(item("Rust Dev", "https://b.example/1", "Mon, 01 Jan 2024 00:00:00 GMT")),
        }
    )

    result = collect_jobs([FEED_A, FEED_B], [], FetchOptions(), transport=transport)

    assert sorted(job.title for job in result.items) == ["Ancient Dev", "Rust Dev"]
    assert result.warnings == []
    ancient = next(job for job in result.items if job.title == "Ancient Dev")
    assert datetime(2020, 1, 1, tzinfo=timezone.utc) < ancient.published <= result.saved_at


def test_normalizer_failure_becomes_a_feed_warning(monkeypatch: pytest.MonkeyPatch) -> None:
    from jobjo.services import aggregator

    good = rss(item("Rust Dev", "https://b.example/1", "Mon, 01 Jan 2024 00:00:00 GMT"))
    real_normalize = aggregator.normalize_feed

    def flaky_normalize(document):
        if document == "<broken/>":
            raise OverflowError("date value out of range")
        return real_normalize(document)

    monkeypatch.setattr(aggregator, "normalize_feed", flaky_normalize)
    transport = fake_transport({FEED_A: "<broken/>", FEED_B: good})

    result = collect_jobs([FEED_A, FEED_B], [], FetchOptions(), transport=transport)

    assert [job.title for job in result.items] == ["Rust Dev"]
    assert [(warning.url, warning.message) for warning in result.warnings] == [
        (FEED_A, "date value out of range")
    ]
    assert [(feed.url, feed.source) for feed in result.feeds] == [(FEED_A, "error"), (FEED_B, "network")]


def test_keyword_filter_is_case_insensitive() -> None:
    transport = fake_transport(
        {
            FEED_A: rss(
                item("Senior Solidity Engineer", "https://a.example/1", "Mon, 01 Jan 2024 00:00:00 GMT"),
                item("Backend Dev", "https://a.example/2", "Mon, 01 Jan 2024 00:00:00 GMT", "<p>SOLIDITY audits</p>"),
                item("Rust Dev", "https://a.example/3", "Mon, 01 Jan 2024 00:00:00 GMT", "<p>Rust only</p>"),
            )
        }
    )

    result = collect_jobs([FEED_A], ["solidity"], FetchOptions(), transport=transport)

    assert [job.title for job in result.items] == ["Senior Solidity Engineer", "Backend Dev"]


def test_blank_keywords_keep_everything() -> None:
    transport = fake_transport(
        {FEED_A: rss(item("Rust Dev", "https://a.example/1", "Mon, 01 Jan 2024 00:00:00 GMT"))}
    )

    result = collect_jobs([FEED_A], ["", "  "], FetchOptions(), transport=transport)

    assert result.count == 1


def test_duplicates_keep_first_occurrence_in_feed_order() -> None:
    date = "Mon, 01 Jan 2024 00:00:00 GMT"
    transport = fake_transport(
        {
            FEED_A: rss(
                item("First copy", "https://a.example/1", date, guid="job-1"),
                item("", "", date),
            ),
            FEED_B: rss(
                item("Second copy", "https://b.example/1", date, guid="job-1"),
                item("Same link", "https://b.example/2", date),
                item("Same link again", "https://b.example/2", date),
            ),
        }
    )

    result = collect_jobs([FEED_A, FEED_B], [], FetchOptions(), transport=transport)

    assert [job.title for job in result.items] == ["First copy", "Same link"]


def test_sort_is_descending_and_stable() -> None:
    transport = fake_transport(
        {
            FEED_A: rss(
                item("Older A", "https://a.example/1", "Mon, 01 Jan 2024 00:00:00 GMT"),
                item("Older B", "https://a.example/2", "Mon, 01 Jan 2024 00:00:00 GMT"),
                item("Newest", "https://a.example/3", "Wed, 03 Jan 2024 00:00:00 GMT"),
            ),
            FEED_B: rss(item("Older C", "https://b.example/1", "Mon, 01 Jan 2024 00:00:00 GMT")),
        }
    )

    result = collect_jobs([FEED_A, FEED_B], [], FetchOptions(), transport=transport)

    assert [job.title for job in result.items] == ["Newest", "Older A", "Older B", "Older C"]
    published = [job.published for job in result.items]
    assert published == sorted(published, reverse=True)


def test_runs_are_idempotent_for_fixed_documents() -> None:
    documents = {
        FEED_A: rss(
            item(
                "Rust Dev",
                "https://a.example/1",
                "Mon, 01 Jan 2024 00:00:00 GMT",
                "<p>Responsibilities</p><ul><li>Write Rust</li></ul>",
            ),
            item("Go Dev", "https://a.example/2", "Mon, 01 Jan 2024 00:00:00 GMT"),
        ),
        FEED_B: rss(item("Zig Dev", "https://b.example/1", "Tue, 02 Jan 2024 00:00:00 GMT")),
    }

    first = collect_jobs([FEED_A, FEED_B], [], FetchOptions(), transport=fake_transport(documents))
    second = collect_jobs([FEED_A, FEED_B], [], FetchOptions(), transport=fake_transport(documents))

    assert first.items == second.items
    assert first.items[1].responsibilities == ["Write Rust"]


def test_items_carry_extracted_fields() -> None:
    description = (
        "<p>Join us.</p><h3>Requirements</h3><ul><li>Rust</li></ul>"
        '<a href="https://a.example/apply/1">Apply here</a>'
    )
    transport = fake_transport(
        {FEED_A: rss(item("Rust Dev", "https://a.example/1", "Mon, 01 Jan 2024 00:00:00 GMT", description))}
    )

    [job] = collect_jobs([FEED_A], [], FetchOptions(), transport=transport).items

    assert job.url == "https://a.example/1"
    assert job.published == datetime(2024, 1, 1, tzinfo=timezone.utc)
    assert job.summary == description
    assert job.overview == "Join us."
    assert job.requirements == ["Rust"]
    assert job.apply_url == "https://a.example/apply/1"


def test_empty_feed_list_is_a_usage_error() -> None:
    with pytest.raises(ValueError):
        collect_jobs([], [], FetchOptions(), transport=fake_transport({}))


@pytest.mark.parametrize(
    ("sources", "expected"),
    [
        ([], "cache"),
        (["local-cache", "local-cache"], "local-cache"),
        (["network", "proxy", "local-cache"], "proxy"),
        (["network", "error"], "network"),
        (["local-cache", "error"], "network"),
    ],
)
def test_derive_aggregate_source(sources: list[str], expected: str) -> None:
    outcomes = [FeedFetchOutcome(url=f"https://feed/{index}", source=source) for index, source in enumerate(sources)]

    assert derive_aggregate_source(outcomes) == expected


def test_map_with_concurrency_preserves_order_and_bounds_workers() -> None:
    active = 0
    peak = 0
    lock = threading.Lock()

    def work(value: int, index: int) -> int:
        nonlocal active, peak
        assert value == index
        with lock:
            active += 1
            peak = max(peak, active)
        time.sleep(0.005 * (5 - value % 5))
        with lock:
            active -= 1
        return value * 10

    results = map_with_concurrency(list(range(12)), 3, work)

    assert results == [value * 10 for value in range(12)]
    assert 1 <= peak <= 3


def test_map_with_concurrency_propagates_errors() -> None:
    def work(value: int, index: int) -> int:
        if value == 2:
            raise KeyError(value)
        return value

    with pytest.raises(KeyError):
        map_with_concurrency([0, 1, 2, 3], 2, work)

    assert map_with_concurrency([], 4, work) == []
