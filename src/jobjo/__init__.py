"""Jobjo package exposing settings, models, and the feed aggregation services."""

from __future__ import annotations

import os
from pathlib import Path

#: Optional ``KEY=value`` file at the project root, e.g. ``JOBJO_DATA_DIR=/srv/jobjo``.
ENV_FILE = Path(__file__).resolve().parents[2] / ".env"


def _load_local_env(env_path: Path = ENV_FILE) -> None:
    """Copy ``KEY=value`` lines from ``env_path`` into ``os.environ``.

    Variables already set in the environment win. ``export`` prefixes and
    matching quotes around values are accepted.
    """

    if not env_path.is_file():
        return

    for raw_line in env_path.read_text(encoding="utf-8").splitlines():
        line = raw_line.strip()
        if line.startswith("export "):
            line = line[len("export "):].lstrip()
        if not line or line.startswith("#") or "=" not in line:
            continue

        key, value = (part.strip() for part in line.split("=", 1))
        if len(value) >= 2 and value[0] == value[-1] and value[0] in "\"'":
            value = value[1:-1]
        if key:
            os.environ.setdefault(key, value)


_load_local_env()

from .config import FetchOptions, Settings  # noqa: E402,F401

__all__ = ["FetchOptions", "Settings"]
