"""Service layer entry points for Jobjo."""

from __future__ import annotations

from .aggregator import collect_jobs  # noqa: F401
from .extractor import extract_job_content  # noqa: F401
from .normalizer import normalize_feed  # noqa: F401
from .transport import FeedTransport, build_feed_url  # noqa: F401

__all__ = ["FeedTransport", "build_feed_url", "collect_jobs", "extract_job_content", "normalize_feed"]
