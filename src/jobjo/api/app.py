"""FastAPI application entrypoint."""

from __future__ import annotations

import asyncio
from pathlib import Path

from fastapi import FastAPI

from jobjo.api.routes import router
from jobjo.blobstore import DEFAULT_BLOB_ROOT
from jobjo.services.transport import FeedTransport
from jobjo.storage import FileKeyValueStore, KeyValueStore


def create_app(
    store: KeyValueStore | None = None,
    *,
    transport: FeedTransport | None = None,
    snapshot_root: Path | str | None = None,
) -> FastAPI:
    app = FastAPI(title="Jobjo", description="Job feed aggregator API")
    app.state.store = store or FileKeyValueStore(DEFAULT_BLOB_ROOT)
    app.state.snapshot_root = snapshot_root or DEFAULT_BLOB_ROOT
    app.state.transport = transport or FeedTransport(snapshot_root=app.state.snapshot_root)
    app.state.refresh_lock = asyncio.Lock()
    app.include_router(router, prefix="/api")
    return app


app = create_app()
