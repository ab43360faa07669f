"""Utilities for working with the local data directory and feed snapshots."""

from __future__ import annotations

import hashlib
import logging
import os
from pathlib import Path
from typing import Union

logger = logging.getLogger(__name__)

# ``jobjo/blobstore`` is part of the package so stored state lives alongside the
# code unless ``JOBJO_DATA_DIR`` points somewhere else.
_PACKAGE_DIR = Path(__file__).resolve().parent

#: Name of the directory under :mod:`jobjo.blobstore` that contains the data.
DEFAULT_BLOB_SUBDIR = "data"

#: Default location where settings, cached results and snapshots are stored.
DEFAULT_BLOB_ROOT = Path(os.environ.get("JOBJO_DATA_DIR") or _PACKAGE_DIR / DEFAULT_BLOB_SUBDIR)

#: Directory under the blob root holding hash-addressed feed snapshots.
SNAPSHOT_SUBDIR = "cache"


_Pathish = Union[str, Path]


def resolve_blob_root(blob_root: _Pathish | None = None) -> Path:
    """Return a :class:`Path` pointing at the blob root.

    ``blob_root`` may be either a string or :class:`Path`.  When ``None`` is
    provided, :data:`DEFAULT_BLOB_ROOT` is returned.  The path is not created on
    disk; callers can use :func:`ensure_blob_root` if they need to create it.
    """

    if blob_root is None:
        return DEFAULT_BLOB_ROOT
    if isinstance(blob_root, Path):
        return blob_root
    return Path(blob_root)


def ensure_blob_root(blob_root: _Pathish | None = None) -> Path:
    """Ensure the blob root exists and return it as a :class:`Path`."""

    root = resolve_blob_root(blob_root)
    root.mkdir(parents=True, exist_ok=True)
    return root


def feed_fingerprint(url: str) -> str:
    """Return the SHA-1 hex digest of the original feed URL."""

    return hashlib.sha1(url.encode("utf-8")).hexdigest()


def snapshot_name(url: str) -> str:
    """Relative snapshot location for ``url``, e.g. ``cache/<sha1>.xml``."""

    return f"{SNAPSHOT_SUBDIR}/{feed_fingerprint(url)}.xml"


def snapshot_path(url: str, blob_root: _Pathish | None = None) -> Path:
    return resolve_blob_root(blob_root) / snapshot_name(url)


def read_snapshot(url: str, blob_root: _Pathish | None = None) -> str | None:
    """Return the stored snapshot for ``url`` or ``None`` when there is none."""

    path = snapshot_path(url, blob_root)
    try:
        return path.read_text(encoding="utf-8")
    except FileNotFoundError:
        return None
    except (OSError, UnicodeDecodeError) as exc:
        logger.warning("Failed to read snapshot %s for %s: %s", path, url, exc)
        return None


def store_snapshot(url: str, document: str, blob_root: _Pathish | None = None) -> Path:
    """Write ``document`` to the snapshot location of ``url`` and return the path."""

    path = snapshot_path(url, blob_root)
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_text(document, encoding="utf-8")
    return path


__all__ = [
    "DEFAULT_BLOB_ROOT",
    "DEFAULT_BLOB_SUBDIR",
    "SNAPSHOT_SUBDIR",
    "ensure_blob_root",
    "feed_fingerprint",
    "read_snapshot",
    "resolve_blob_root",
    "snapshot_name",
    "snapshot_path",
    "store_snapshot",
]
