"""CLI entry point for gallerystore-admin: maintenance tasks."""

from __future__ import annotations

import argparse
import asyncio
import sys
from pathlib import Path

from gallerystore.config import GalleryStoreConfig, load_config, validate_storage_config
from gallerystore.errors import ConfigurationError
from gallerystore.logging_config import config_secrets, configure_logging
from gallerystore.metadata import create_metadata_store
from gallerystore.orphans import SweepReport, sweep_orphans
from gallerystore.storage import SignedStorageClient


def parse_args(argv: list[str] | None = None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(
        prog="gallerystore-admin",
        description="GalleryStore maintenance tool",
    )
    subparsers = parser.add_subparsers(dest="command", required=True)

    sweep_parser = subparsers.add_parser(
        "sweep-orphans", help="Retry deletes of storage keys in the orphan ledger"
    )
    sweep_parser.add_argument(
        "--config", type=Path, default=Path("gallerystore.yaml"),
        help="Config file path (default: gallerystore.yaml)",
    )
    sweep_parser.add_argument(
        "--limit", type=int, default=100,
        help="Maximum ledger entries to process (default: 100)",
    )

    return parser.parse_args(argv)


async def run_sweep(config: GalleryStoreConfig, limit: int) -> SweepReport:
    """Open the store and storage client, run one sweep, close both."""
    metadata = create_metadata_store(config.metadata)
    await metadata.init_db()
    storage = SignedStorageClient.from_config(config.storage)
    await storage.init()
    try:
        return await sweep_orphans(metadata, storage, limit=limit)
    finally:
        await storage.close()
        await metadata.close()


def main(argv: list[str] | None = None) -> int:
    args = parse_args(argv)

    try:
        config = load_config(args.config)
    except FileNotFoundError:
        print(f"Error: config file not found: {args.config}", file=sys.stderr)
        return 1
    except Exception as e:
        print(f"Error reading config: {e}", file=sys.stderr)
        return 1

    configure_logging(
        level=config.server.log_level,
        fmt=config.server.log_format,
        secrets=config_secrets(config),
    )

    if args.command == "sweep-orphans":
        if args.limit < 1:
            print("Error: --limit must be at least 1", file=sys.stderr)
            return 1
        try:
            validate_storage_config(config.storage)
        except ConfigurationError as e:
            print(f"Error: {e.message}", file=sys.stderr)
            return 1

        report = asyncio.run(run_sweep(config, args.limit))
        print(
            f"  attempted: {report.attempted}, removed: {report.removed}, "
            f"failed: {report.failed}",
            file=sys.stderr,
        )
        if report.failed:
            return 2

    return 0


def entry_point() -> None:
    """Console script entry point."""
    sys.exit(main())


if __name__ == "__main__":
    entry_point()
