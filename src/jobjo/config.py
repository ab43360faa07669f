"""Configuration models and defaults for the job feed aggregator."""

from __future__ import annotations

import json
from pathlib import Path
from typing import Any, List

from pydantic import BaseModel, ConfigDict, Field, ValidationError, field_validator

__all__ = [
    "BACKOFF_SECONDS",
    "CONCURRENCY",
    "DEFAULT_FEEDS",
    "DEFAULT_KEYWORDS",
    "DEFAULT_PROXY_PREFIX",
    "DEFAULT_SETTINGS_PATH",
    "FetchOptions",
    "RETRIES",
    "Settings",
    "TIMEOUT_SECONDS",
]

DEFAULT_SETTINGS_PATH = Path(__file__).resolve().parents[2] / "data" / "settings.json"

DEFAULT_FEEDS = (
    "https://api.cryptojobslist.com/rss/Developer.xml",
    "https://api.cryptojobslist.com/rss/Solidity.xml",
    "https://api.cryptojobslist.com/rss/Rust.xml",
    "https://api.cryptojobslist.com/rss/Full%20Stack.xml",
)

DEFAULT_KEYWORDS = (
    "remote",
    "solidity",
    "full stack",
    "full-stack",
    "contractor",
    "senior",
)

DEFAULT_PROXY_PREFIX = "https://cloudflare-cors-anywhere.corstsx.workers.dev"

#: Number of feeds fetched in parallel.
CONCURRENCY = 4
#: Per-attempt request timeout.
TIMEOUT_SECONDS = 15.0
#: Extra attempts after the first one fails.
RETRIES = 2
#: Linear backoff step between attempts.
BACKOFF_SECONDS = 0.6


class FetchOptions(BaseModel):
    """Options controlling how a single feed document is retrieved."""

    use_proxy: bool = Field(default=False, description="Route requests through the proxy prefix")
    proxy_prefix: str = Field(default="", description="CORS proxy URL prepended to the feed URL")
    allow_local_fallback: bool = Field(
        default=False,
        description="Read the hash-addressed local snapshot when every attempt fails",
    )
    timeout: float = Field(default=TIMEOUT_SECONDS, gt=0, description="Per-attempt timeout in seconds")
    retries: int = Field(default=RETRIES, ge=0, description="Retries after the first attempt")
    backoff: float = Field(default=BACKOFF_SECONDS, ge=0, description="Backoff step in seconds")


class Settings(BaseModel):
    """User-facing aggregation settings.

    Field aliases follow the JSON shape persisted in the key-value store so that
    stored settings round-trip unchanged.
    """

    model_config = ConfigDict(populate_by_name=True)

    feeds: List[str] = Field(default_factory=lambda: list(DEFAULT_FEEDS), description="Feed URLs in fetch order")
    keywords: List[str] = Field(
        default_factory=lambda: list(DEFAULT_KEYWORDS),
        description="Case-insensitive substrings an entry must contain; empty keeps everything",
    )
    use_proxy: bool = Field(default=True, alias="useProxy")
    proxy_prefix: str = Field(default=DEFAULT_PROXY_PREFIX, alias="proxyPrefix")
    allow_local_cache: bool = Field(default=True, alias="allowLocalCache")

    @field_validator("feeds", "keywords")
    @classmethod
    def _strip_blank(cls, values: List[str]) -> List[str]:
        return [value.strip() for value in values if value and value.strip()]

    @field_validator("feeds")
    @classmethod
    def _default_feeds(cls, values: List[str]) -> List[str]:
        return values or list(DEFAULT_FEEDS)

    @field_validator("proxy_prefix")
    @classmethod
    def _default_prefix(cls, value: str) -> str:
        return value.strip() or DEFAULT_PROXY_PREFIX

    @classmethod
    def from_payload(cls, payload: Any) -> "Settings":
        """Build settings from loosely-typed stored data, keeping defaults for bad fields."""

        if not isinstance(payload, dict):
            return cls()

        data: dict[str, Any] = {}
        for key in ("feeds", "keywords"):
            value = payload.get(key)
            if isinstance(value, list):
                data[key] = [str(item) for item in value if isinstance(item, str)]
        for key in ("useProxy", "allowLocalCache"):
            if isinstance(payload.get(key), bool):
                data[key] = payload[key]
        if isinstance(payload.get("proxyPrefix"), str):
            data["proxyPrefix"] = payload["proxyPrefix"]

        return cls.model_validate(data)

    @classmethod
    def from_file(cls, path: Path | str | None = None) -> "Settings":
        """Load settings from a JSON file."""

        config_path = Path(path) if path else DEFAULT_SETTINGS_PATH
        try:
            data = json.loads(config_path.read_text(encoding="utf-8"))
        except FileNotFoundError as exc:
            raise FileNotFoundError(f"Configuration file not found: {config_path}") from exc
        except json.JSONDecodeError as exc:
            raise ValueError(f"Invalid JSON in configuration file: {config_path}") from exc

        try:
            return cls.model_validate(data)
        except ValidationError as exc:
            raise ValueError(f"Configuration file is invalid: {config_path}\n{exc}") from exc

    def dump(self, path: Path | str | None = None) -> None:
        """Persist the settings to disk as JSON."""

        config_path = Path(path) if path else DEFAULT_SETTINGS_PATH
        config_path.parent.mkdir(parents=True, exist_ok=True)
        config_path.write_text(self.model_dump_json(indent=2, by_alias=True), encoding="utf-8")

    def fetch_options(self, **overrides: Any) -> FetchOptions:
        """Return the :class:`FetchOptions` implied by these settings."""

        values: dict[str, Any] = {
            "use_proxy": self.use_proxy,
            "proxy_prefix": self.proxy_prefix,
            "allow_local_fallback": self.allow_local_cache,
        }
        values.update(overrides)
        return FetchOptions(**values)
