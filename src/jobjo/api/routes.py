"""API routes exposing the aggregator, cached jobs, settings and job statuses."""

from __future__ import annotations

import logging
from datetime import datetime
from typing import Dict, List, Optional

from fastapi import APIRouter, Body, HTTPException, Request
from fastapi.concurrency import run_in_threadpool
from pydantic import BaseModel, ConfigDict, Field

from jobjo.blobstore import feed_fingerprint, snapshot_name, snapshot_path
from jobjo.config import Settings
from jobjo.errors import AggregationError
from jobjo.models import AggregationResult, FeedWarning, JobRecord
from jobjo.services.aggregator import collect_jobs
from jobjo.services.board import (
    STATUS_FILTERS,
    cycle_status,
    derive_tags,
    filter_jobs,
    get_status,
    job_key,
    set_status,
    status_totals,
)
from jobjo.storage import (
    KeyValueStore,
    load_cached_result,
    load_settings,
    load_statuses,
    save_cached_result,
    save_settings,
    save_statuses,
)

logger = logging.getLogger(__name__)

router = APIRouter()


class JobEntry(BaseModel):
    key: str
    status: str
    tags: List[str] = Field(default_factory=list)
    job: JobRecord


class JobsResponse(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    items: List[JobEntry] = Field(default_factory=list)
    total: int = 0
    counts: Dict[str, int] = Field(default_factory=dict)
    saved_at: Optional[datetime] = Field(default=None, alias="savedAt")
    source: str = "cache"
    warnings: List[FeedWarning] = Field(default_factory=list)


class StatusUpdate(BaseModel):
    key: str
    status: Optional[str] = Field(
        default=None,
        description="New status; omit to toggle between new and applied",
    )


class StatusesResponse(BaseModel):
    statuses: Dict[str, str] = Field(default_factory=dict)


class FeedEntry(BaseModel):
    url: str
    fingerprint: str
    snapshot: str
    has_snapshot: bool


class FeedsResponse(BaseModel):
    feeds: List[FeedEntry] = Field(default_factory=list)


def _store(request: Request) -> KeyValueStore:
    return request.app.state.store


@router.get("/jobs", response_model=JobsResponse)
async def list_jobs(request: Request, status: str = "new", search: str = "") -> JobsResponse:
    """Return the cached jobs filtered by status and a free-text search."""

    if status not in STATUS_FILTERS:
        raise HTTPException(status_code=400, detail=f"Unknown status filter: {status}")

    store = _store(request)
    cached = load_cached_result(store)
    if cached is None:
        return JobsResponse(counts=status_totals([], {}))

    statuses = load_statuses(store)
    keywords = load_settings(store).keywords
    visible = filter_jobs(cached.items, statuses, search=search, status_filter=status)

    return JobsResponse(
        items=[
            JobEntry(
                key=job_key(job),
                status=get_status(statuses, job_key(job)),
                tags=derive_tags(job, keywords),
                job=job,
            )
            for job in visible
        ],
        total=len(cached.items),
        counts=status_totals(cached.items, statuses),
        saved_at=cached.saved_at,
        source=cached.source,
        warnings=cached.warnings,
    )


@router.post("/refresh", response_model=AggregationResult)
async def refresh_jobs(request: Request) -> AggregationResult:
    """Fetch every configured feed and replace the cached result."""

    lock = request.app.state.refresh_lock
    if lock.locked():
        raise HTTPException(status_code=409, detail="A refresh is already running.")

    async with lock:
        store = _store(request)
        settings = load_settings(store)
        try:
            result = await run_in_threadpool(
                collect_jobs,
                settings.feeds,
                settings.keywords,
                settings.fetch_options(),
                transport=request.app.state.transport,
            )
        except AggregationError as exc:
            logger.error("Refresh failed: %s", exc.message)
            raise HTTPException(
                status_code=502,
                detail={
                    "message": exc.message,
                    "warnings": [warning.model_dump() for warning in exc.warnings],
                },
            ) from exc

        if not save_cached_result(store, result):
            logger.warning("Aggregation result could not be cached")

    if result.has_warnings:
        logger.warning("Fetched %d jobs with %d warning(s)", result.count, len(result.warnings))
    return result


@router.get("/settings", response_model=Settings)
async def read_settings(request: Request) -> Settings:
    return load_settings(_store(request))


@router.put("/settings", response_model=Settings)
async def update_settings(request: Request, payload: Settings = Body(...)) -> Settings:
    """Persist new settings; empty feeds or proxy prefix fall back to the defaults."""

    if not save_settings(_store(request), payload):
        raise HTTPException(status_code=500, detail="Failed to store settings.")
    return payload


@router.post("/jobs/status", response_model=StatusesResponse)
async def update_job_status(request: Request, payload: StatusUpdate) -> StatusesResponse:
    """Set a job's status, or toggle it between new and applied."""

    key = payload.key.strip()
    if not key:
        raise HTTPException(status_code=400, detail="A job key is required.")

    store = _store(request)
    statuses = load_statuses(store)
    try:
        if payload.status is None:
            statuses = cycle_status(statuses, key)
        else:
            statuses = set_status(statuses, key, payload.status)
    except ValueError as exc:
        raise HTTPException(status_code=400, detail=str(exc)) from exc

    save_statuses(store, statuses)
    return StatusesResponse(statuses=statuses)


@router.get("/feeds", response_model=FeedsResponse)
async def list_feeds(request: Request) -> FeedsResponse:
    """Return the configured feeds with their local snapshot locations."""

    settings = load_settings(_store(request))
    snapshot_root = request.app.state.snapshot_root
    return FeedsResponse(
        feeds=[
            FeedEntry(
                url=url,
                fingerprint=feed_fingerprint(url),
                snapshot=snapshot_name(url),
                has_snapshot=snapshot_path(url, snapshot_root).exists(),
            )
            for url in settings.feeds
        ]
    )
