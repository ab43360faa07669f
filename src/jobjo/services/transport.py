"""HTTP transport for feed documents with retries, proxying and snapshot fallback."""

from __future__ import annotations

import json
import logging
import time
from pathlib import Path
from typing import Callable, Tuple

import requests
from urllib3.exceptions import HTTPError as Urllib3HTTPError
from urllib3.exceptions import ReadTimeoutError

from jobjo.blobstore import read_snapshot, snapshot_name
from jobjo.config import BACKOFF_SECONDS, RETRIES, TIMEOUT_SECONDS, FetchOptions
from jobjo.errors import FeedFetchError, TransportError
from jobjo.models import FeedSource

__all__ = ["DEFAULT_HEADERS", "FeedTransport", "build_feed_url"]

logger = logging.getLogger(__name__)

DEFAULT_HEADERS = {
    "User-Agent": (
        "Mozilla/5.0 (Windows NT 10.0; Win64; x64) "
        "AppleWebKit/537.36 (KHTML, like Gecko) "
        "Chrome/129.0.0.0 Safari/537.36"
    ),
    "Accept": "application/rss+xml,application/atom+xml,application/xml;q=0.9,text/xml;q=0.8,*/*;q=0.5",
    "Accept-Language": "en-US,en;q=0.9",
}

# The CORS proxy forwards the headers listed here to the upstream feed.
PROXY_HEADERS = {"x-cors-headers": json.dumps({"cookies": "x=123"})}

#: Upper bound on a single body read while streaming a response.
READ_CHUNK_SIZE = 16 * 1024


def build_feed_url(url: str, use_proxy: bool, proxy_prefix: str | None) -> str:
    """Return the URL actually requested for ``url``.

    With a proxy the original URL becomes the query string of the prefix:
    ``https://proxy.example/?https://feed.example/rss``.
    """

    if not use_proxy:
        return url
    prefix = (proxy_prefix or "").strip()
    if not prefix:
        return url
    if prefix.endswith("/"):
        return f"{prefix}?{url}"
    return f"{prefix}/?{url}"


class FeedTransport:
    """Fetch feed documents over HTTP.

    ``snapshot_root`` is where hash-addressed snapshots are looked up when the
    network is exhausted. It is either a local directory or an ``http(s)`` base
    URL serving the same ``cache/<sha1>.xml`` layout.
    """

    def __init__(
        self,
        session: requests.Session | None = None,
        *,
        snapshot_root: Path | str | None = None,
        sleep: Callable[[float], None] = time.sleep,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self._session = session or requests.Session()
        self._session.headers.update(DEFAULT_HEADERS)
        self._snapshot_root = snapshot_root
        self._sleep = sleep
        self._clock = clock

    def fetch_feed_document(self, url: str, options: FetchOptions) -> Tuple[str, FeedSource]:
        """Fetch ``url`` and return the document text with its provenance."""

        target = build_feed_url(url, options.use_proxy, options.proxy_prefix)
        proxied = target != url
        try:
            text = self.fetch_with_retry(
                target,
                timeout=options.timeout,
                retries=options.retries,
                backoff=options.backoff,
                proxied=proxied,
            )
        except FeedFetchError as exc:
            if options.allow_local_fallback:
                fallback = self.read_local_snapshot(url)
                if fallback is not None:
                    logger.info("Serving %s from local snapshot after: %s", url, exc.message)
                    return fallback, "local-cache"
            raise
        return text, "proxy" if proxied else "network"

    def fetch_with_retry(
        self,
        url: str,
        *,
        timeout: float = TIMEOUT_SECONDS,
        retries: int = RETRIES,
        backoff: float = BACKOFF_SECONDS,
        proxied: bool = False,
    ) -> str:
        """Request ``url`` up to ``retries + 1`` times with a linear backoff.

        The loop is explicit rather than a ``urllib3`` ``Retry`` mounted on the
        session: the wait grows linearly (``backoff * attempt``), goes through the
        injectable ``sleep`` and the caller needs the last attempt's message.
        """

        attempts = retries + 1
        last_error: TransportError | None = None
        for attempt in range(attempts):
            try:
                return self._request(url, timeout=timeout, proxied=proxied)
            except TransportError as exc:
                last_error = exc
                logger.debug("Attempt %d/%d for %s failed: %s", attempt + 1, attempts, url, exc)
            if attempt + 1 < attempts:
                self._sleep(backoff * (attempt + 1))

        message = last_error.message if last_error is not None else "Unable to fetch feeds."
        raise FeedFetchError(message, url=url)

    def read_local_snapshot(self, url: str) -> str | None:
        """Single best-effort lookup of the snapshot stored for ``url``."""

        root = self._snapshot_root
        if isinstance(root, str) and root.startswith(("http://", "https://")):
            snapshot_url = f"{root.rstrip('/')}/{snapshot_name(url)}"
            try:
                return self._request(snapshot_url, timeout=TIMEOUT_SECONDS, proxied=False)
            except TransportError as exc:
                logger.debug("No snapshot for %s at %s: %s", url, snapshot_url, exc.message)
                return None

        text = read_snapshot(url, root)
        if text is None:
            logger.debug("No local snapshot stored for %s", url)
        return text

    def _request(self, url: str, *, timeout: float, proxied: bool) -> str:
        deadline = self._clock() + timeout
        try:
            if proxied:
                response = self._session.post(url, headers=PROXY_HEADERS, timeout=timeout, stream=True)
            else:
                response = self._session.get(url, timeout=timeout, stream=True)
        except requests.Timeout as exc:
            raise TransportError(_timed_out(url, timeout), url=url) from exc
        except requests.RequestException as exc:
            raise TransportError(str(exc) or f"Request failed for {url}", url=url) from exc

        try:
            if not 200 <= response.status_code < 300:
                raise TransportError(
                    f"HTTP {response.status_code} for {url}", url=url, status_code=response.status_code
                )
            body = self._read_body(response, url, timeout=timeout, deadline=deadline)
        finally:
            response.close()
        return _decode_body(response, body)

    def _read_body(self, response, url: str, *, timeout: float, deadline: float) -> bytes:
        """Read the streamed body, giving up once ``deadline`` has passed.

        The ``timeout`` handed to requests bounds connecting and each socket read
        only, so a server trickling bytes could otherwise hold an attempt open.
        """

        chunks = []
        try:
            while True:
                chunk = response.raw.read1(READ_CHUNK_SIZE, decode_content=True)
                if not chunk:
                    break
                chunks.append(chunk)
                if self._clock() > deadline:
                    raise TransportError(_timed_out(url, timeout), url=url)
        except ReadTimeoutError as exc:
            raise TransportError(_timed_out(url, timeout), url=url) from exc
        except (Urllib3HTTPError, OSError) as exc:
            raise TransportError(str(exc) or f"Request failed for {url}", url=url) from exc
        return b"".join(chunks)


def _timed_out(url: str, timeout: float) -> str:
    return f"Timed out after {timeout:g}s for {url}"


def _decode_body(response, body: bytes) -> str:
    # Feeds without a declared charset are treated as UTF-8, the XML default.
    content_type = response.headers.get("Content-Type", "").lower()
    encoding = response.encoding if "charset=" in content_type and response.encoding else "utf-8"
    try:
        return body.decode(encoding, errors="replace")
    except LookupError:
        return body.decode("utf-8", errors="replace")
