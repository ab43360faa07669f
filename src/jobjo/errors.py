"""Exceptions raised by the feed aggregation pipeline."""

from __future__ import annotations

from typing import List, Sequence

from jobjo.models import FeedWarning


class TransportError(Exception):
    """A single fetch attempt failed (timeout, network error or non-2xx status)."""

    def __init__(self, message: str, url: str | None = None, status_code: int | None = None):
        self.message = message
        self.url = url
        self.status_code = status_code
        super().__init__(message)


class FeedFetchError(Exception):
    """Every attempt for a feed failed and no local snapshot could stand in."""

    def __init__(self, message: str, url: str | None = None):
        self.message = message
        self.url = url
        super().__init__(message)


class AggregationError(Exception):
    """
    Raised when every configured feed failed and none fell back to a snapshot.

    Attributes:
        message: Error description
        warnings: One entry per failed feed, in the order failures were recorded
    """

    def __init__(self, message: str, warnings: Sequence[FeedWarning] = ()):
        self.message = message
        self.warnings: List[FeedWarning] = list(warnings)
        super().__init__(message)

    @classmethod
    def from_warnings(cls, warnings: Sequence[FeedWarning]) -> "AggregationError":
        urls = ", ".join(warning.url for warning in warnings)
        message = (
            f"All feeds failed to load ({len(warnings)} of {len(warnings)}). "
            f"Check URLs or CORS access: {urls}"
        )
        return cls(message, warnings)


__all__ = ["AggregationError", "FeedFetchError", "TransportError"]
