"""CLI entry point for the GalleryStore API server."""

import argparse
import logging
import sys
from pathlib import Path

import uvicorn

from gallerystore.config import GalleryStoreConfig, load_config, validate_storage_config
from gallerystore.errors import ConfigurationError
from gallerystore.logging_config import config_secrets, configure_logging
from gallerystore.server import create_app

logger = logging.getLogger("gallerystore")

# argparse dest -> ServerConfig attribute; set values win over the file
SERVER_OVERRIDES = ("host", "port", "log_level", "log_format", "shutdown_timeout")


def parse_args(argv: list[str] | None = None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(
        prog="gallerystore",
        description="GalleryStore image gallery API server",
    )
    parser.add_argument(
        "--config", type=Path, default=Path("gallerystore.yaml"),
        help="YAML configuration file (default: gallerystore.yaml)",
    )
    parser.add_argument("--host", help="Bind address (overrides server.host)")
    parser.add_argument("--port", type=int, help="Listen port (overrides server.port)")
    parser.add_argument(
        "--log-level", choices=["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"],
        help="Overrides server.log_level",
    )
    parser.add_argument(
        "--log-format", choices=["text", "json"], help="Overrides server.log_format"
    )
    parser.add_argument(
        "--shutdown-timeout", type=int,
        help="Seconds to wait for in-flight requests on shutdown",
    )
    parser.add_argument(
        "--check-config", action="store_true",
        help="Validate the configuration and exit without serving",
    )
    return parser.parse_args(argv)


def apply_cli_overrides(config: GalleryStoreConfig, args: argparse.Namespace) -> GalleryStoreConfig:
    """Copy every server option given on the command line into ``config``."""
    for name in SERVER_OVERRIDES:
        value = getattr(args, name, None)
        if value is not None:
            setattr(config.server, name, value)
    return config


def main(argv: list[str] | None = None) -> int:
    """Load configuration, check storage credentials, and serve.

    Returns:
        Process exit code: 0 on clean shutdown or a passing
        ``--check-config``, 1 when the configuration is unusable.
    """
    args = parse_args(argv)

    try:
        config = load_config(args.config)
    except FileNotFoundError:
        print(f"Error: config file not found: {args.config}", file=sys.stderr)
        return 1
    except Exception as exc:
        print(f"Error reading config: {exc}", file=sys.stderr)
        return 1

    apply_cli_overrides(config, args)
    configure_logging(
        level=config.server.log_level,
        fmt=config.server.log_format,
        secrets=config_secrets(config),
    )

    try:
        validate_storage_config(config.storage)
    except ConfigurationError as exc:
        logger.error("%s", exc.message)
        return 1

    if args.check_config:
        logger.info("Configuration OK (bucket=%s)", config.storage.bucket)
        return 0

    logger.info(
        "Starting GalleryStore on %s:%d (bucket=%s, region=%s, metadata=%s)",
        config.server.host,
        config.server.port,
        config.storage.bucket,
        config.storage.region,
        config.metadata.engine,
    )
    uvicorn.run(
        create_app(config),
        host=config.server.host,
        port=config.server.port,
        log_level=config.server.log_level.lower(),
        timeout_graceful_shutdown=config.server.shutdown_timeout,
        timeout_keep_alive=5,
    )
    return 0


def entry_point() -> None:
    """Console script entry point."""
    sys.exit(main())


if __name__ == "__main__":
    entry_point()
