"""Per-job statuses, search and tagging for the aggregated job list."""

from __future__ import annotations

from typing import Dict, Iterable, List, Literal, Mapping, Sequence
from urllib.parse import urlparse

from jobjo.config import DEFAULT_KEYWORDS
from jobjo.models import JobRecord

__all__ = [
    "JOB_STATUSES",
    "STATUS_FILTERS",
    "cycle_status",
    "derive_tags",
    "filter_jobs",
    "get_status",
    "job_key",
    "mark_irrelevant",
    "set_status",
    "status_totals",
]

JobStatus = Literal["new", "applied", "irrelevant"]

JOB_STATUSES = ("new", "applied", "irrelevant")
STATUS_FILTERS = ("new", "applied", "irrelevant", "all")
DEFAULT_STATUS: JobStatus = "new"


def job_key(job: JobRecord) -> str:
    """Key under which a job's status is stored."""

    return (job.url or job.title or "").strip()


def get_status(statuses: Mapping[str, str], key: str) -> str:
    status = statuses.get(key)
    return status if status in JOB_STATUSES else DEFAULT_STATUS


def set_status(statuses: Mapping[str, str], key: str, status: str) -> Dict[str, str]:
    """Return a copy of ``statuses`` with ``key`` set to ``status``."""

    if status not in JOB_STATUSES:
        raise ValueError(f"Unknown job status: {status!r}")
    updated = dict(statuses)
    updated[key] = status
    return updated


def cycle_status(statuses: Mapping[str, str], key: str) -> Dict[str, str]:
    """Toggle between new and applied; an irrelevant job goes back to new."""

    next_status = "applied" if get_status(statuses, key) == "new" else "new"
    return set_status(statuses, key, next_status)


def mark_irrelevant(statuses: Mapping[str, str], key: str) -> Dict[str, str]:
    return set_status(statuses, key, "irrelevant")


def _search_text(job: JobRecord) -> str:
    parts = [
        job.title,
        job.overview,
        job.summary,
        " ".join(job.responsibilities),
        " ".join(job.requirements),
    ]
    return " ".join(part for part in parts if part).lower()


def filter_jobs(
    jobs: Iterable[JobRecord],
    statuses: Mapping[str, str],
    search: str = "",
    status_filter: str = "new",
) -> List[JobRecord]:
    """Return the jobs matching a free-text search and a status filter."""

    if status_filter not in STATUS_FILTERS:
        raise ValueError(f"Unknown status filter: {status_filter!r}")

    term = search.strip().lower()
    visible = []
    for job in jobs:
        if term and term not in _search_text(job):
            continue
        if status_filter != "all" and get_status(statuses, job_key(job)) != status_filter:
            continue
        visible.append(job)
    return visible


def status_totals(jobs: Iterable[JobRecord], statuses: Mapping[str, str]) -> Dict[str, int]:
    totals = {status: 0 for status in JOB_STATUSES}
    for job in jobs:
        totals[get_status(statuses, job_key(job))] += 1
    return totals


def derive_tags(job: JobRecord, keywords: Sequence[str] = (), limit: int = 3) -> List[str]:
    """Keywords found in the job plus its host name, unique and capped at ``limit``.

    Falls back to :data:`~jobjo.config.DEFAULT_KEYWORDS` when ``keywords`` is empty.
    """

    haystack = f"{job.title} {job.summary or ''}".lower()
    tags = [keyword for keyword in (keywords or DEFAULT_KEYWORDS) if keyword.lower() in haystack]

    if job.url:
        host = urlparse(job.url).netloc
        if host.startswith("www."):
            host = host[len("www."):]
        if host:
            tags.append(host)

    return list(dict.fromkeys(tags))[:limit]
