"""Convenience script for running the Jobjo aggregator locally."""

from __future__ import annotations

import argparse
import logging
import sys
from pathlib import Path

# Ensure the src directory is on the Python path so the jobjo package can be imported
SRC_PATH = Path(__file__).resolve().parent / "src"
if str(SRC_PATH) not in sys.path:
    sys.path.insert(0, str(SRC_PATH))

from jobjo.blobstore import DEFAULT_BLOB_ROOT, store_snapshot  # noqa: E402  (import after path setup)
from jobjo.config import Settings  # noqa: E402
from jobjo.errors import AggregationError, FeedFetchError  # noqa: E402
from jobjo.services.aggregator import collect_jobs  # noqa: E402
from jobjo.services.transport import FeedTransport  # noqa: E402
from jobjo.storage import FileKeyValueStore, save_cached_result  # noqa: E402


def refresh_snapshots(settings: Settings, transport: FeedTransport, data_dir: Path) -> None:
    """Download every feed and store it as the local fallback snapshot."""

    options = settings.fetch_options(allow_local_fallback=False)
    for url in settings.feeds:
        try:
            document, source = transport.fetch_feed_document(url, options)
        except FeedFetchError as exc:
            logging.error("Could not snapshot %s: %s", url, exc.message)
            continue
        path = store_snapshot(url, document, data_dir)
        logging.info("Stored snapshot of %s (%s) at %s", url, source, path)


def main() -> None:
    """Load settings, aggregate every configured feed and print the result."""

    parser = argparse.ArgumentParser(description=__doc__)
    parser.add_argument("--config", type=Path, default=None, help="Settings JSON file")
    parser.add_argument("--data-dir", type=Path, default=DEFAULT_BLOB_ROOT, help="Cache and snapshot root")
    parser.add_argument("--snapshot", action="store_true", help="Refresh local snapshots before aggregating")
    args = parser.parse_args()

    logging.basicConfig(level=logging.INFO, format="%(levelname)s: %(message)s")

    try:
        settings = Settings.from_file(args.config) if args.config else Settings()
    except (FileNotFoundError, ValueError) as exc:
        logging.error("Could not load settings: %s", exc)
        sys.exit(1)

    transport = FeedTransport(snapshot_root=args.data_dir)
    if args.snapshot:
        refresh_snapshots(settings, transport, args.data_dir)

    try:
        result = collect_jobs(
            settings.feeds,
            settings.keywords,
            settings.fetch_options(),
            transport=transport,
        )
    except AggregationError as exc:
        logging.error("%s", exc.message)
        for warning in exc.warnings:
            logging.error("  %s: %s", warning.url, warning.message)
        sys.exit(2)

    for warning in result.warnings:
        logging.warning("%s: %s", warning.url, warning.message)
    save_cached_result(FileKeyValueStore(args.data_dir), result)
    logging.info("Found %d jobs (source: %s)", result.count, result.source)

    print(result.model_dump_json(indent=2, by_alias=True))


if __name__ == "__main__":
    main()
