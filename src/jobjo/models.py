"""Domain models used across the application."""

from __future__ import annotations

from datetime import datetime
from typing import List, Literal, Optional

from pydantic import BaseModel, ConfigDict, Field

FeedSource = Literal["network", "proxy", "local-cache", "error"]
AggregateSource = Literal["network", "proxy", "local-cache", "cache"]


class RawEntry(BaseModel):
    """One feed item before content extraction."""

    title: str = ""
    link: str = ""
    guid: str = ""
    published: datetime
    summary: str = ""

    @property
    def identity_key(self) -> str:
        """Key used to deduplicate entries across feeds."""

        return (self.guid or self.link or self.title or "").strip()


class ExtractedContent(BaseModel):
    """Structured fields derived from an entry's summary markup."""

    overview: Optional[str] = None
    responsibilities: List[str] = Field(default_factory=list)
    requirements: List[str] = Field(default_factory=list)
    apply_url: Optional[str] = None


class JobRecord(BaseModel):
    """A job posting as handed to the cache and the presentation layer."""

    model_config = ConfigDict(frozen=True)

    title: str = ""
    url: str = ""
    published: datetime
    summary: str = ""
    overview: Optional[str] = None
    responsibilities: List[str] = Field(default_factory=list)
    requirements: List[str] = Field(default_factory=list)
    apply_url: Optional[str] = None

    @classmethod
    def from_entry(cls, entry: RawEntry, content: ExtractedContent) -> "JobRecord":
        return cls(
            title=entry.title,
            url=entry.link,
            published=entry.published,
            summary=entry.summary,
            **content.model_dump(),
        )


class FeedFetchOutcome(BaseModel):
    """What a single configured feed produced during one run."""

    url: str
    items: List[RawEntry] = Field(default_factory=list)
    source: FeedSource


class FeedSummary(BaseModel):
    """Per-feed diagnostics stored alongside the aggregated jobs."""

    model_config = ConfigDict(populate_by_name=True)

    url: str
    fetched_at: datetime = Field(alias="fetchedAt")
    source: FeedSource
    count: int = 0


class FeedWarning(BaseModel):
    url: str
    message: str


class AggregationResult(BaseModel):
    """Envelope produced by one aggregation run."""

    model_config = ConfigDict(populate_by_name=True)

    saved_at: datetime = Field(alias="savedAt")
    count: int = 0
    items: List[JobRecord] = Field(default_factory=list)
    feeds: List[FeedSummary] = Field(default_factory=list)
    warnings: List[FeedWarning] = Field(default_factory=list)
    source: AggregateSource = "cache"

    @property
    def has_warnings(self) -> bool:
        """``True`` for a partial run where at least one feed failed."""

        return bool(self.warnings)

    def to_json(self) -> str:
        return self.model_dump_json(by_alias=True)

    @classmethod
    def from_json(cls, raw: str | bytes) -> "AggregationResult":
        return cls.model_validate_json(raw)


__all__ = [
    "AggregateSource",
    "AggregationResult",
    "ExtractedContent",
    "FeedFetchOutcome",
    "FeedSource",
    "FeedSummary",
    "FeedWarning",
    "JobRecord",
    "RawEntry",
]
