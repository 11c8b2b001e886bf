"""Command-line check that resolves a database key and runs one statement."""

from __future__ import annotations

import argparse
import logging
import sys
from pathlib import Path

from .drivers import DemoDriver, QueryExecutionError
from .errors import ConfigurationError, ConnectionError
from .manager import ConnectionManager

LOG = logging.getLogger(__name__)

DEFAULT_QUERY = "SELECT 1"


def parse_args(argv: list[str]) -> argparse.Namespace:
    parser = argparse.ArgumentParser(prog="connlease", description=__doc__)
    parser.add_argument("key", help="Logical database key from environment.toml")
    parser.add_argument("--config-dir", type=Path, default=None, help="Directory holding the TOML config files")
    parser.add_argument("--expiration-ms", type=int, default=None, help="Idle expiration window in milliseconds")
    parser.add_argument("--query", default=DEFAULT_QUERY, help="SQL to run once connected")
    parser.add_argument("--demo", action="store_true", help="Use the in-memory demo driver")
    parser.add_argument("-v", "--verbose", action="store_true", help="Enable debug logging")
    return parser.parse_args(argv)


def main(argv: list[str] | None = None) -> int:
    args = parse_args(sys.argv[1:] if argv is None else argv)
    logging.basicConfig(
        level=logging.DEBUG if args.verbose else logging.WARNING,
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )
    kwargs: dict[str, object] = {}
    if args.demo:
        kwargs["driver"] = DemoDriver()
    try:
        manager = ConnectionManager.from_config(
            args.key,
            config_dir=args.config_dir,
            expiration=args.expiration_ms,
            **kwargs,
        )
    except ConfigurationError as exc:
        print(f"Configuration error: {exc}", file=sys.stderr)
        return 2

    LOG.debug("Resolved database key", extra={"key": args.key, "endpoint": manager.endpoint.descriptor})
    with manager:
        try:
            result = manager.get_statement().execute(args.query)
        except ConnectionError as exc:
            print(f"Connection error: {exc}", file=sys.stderr)
            return 1
        except QueryExecutionError as exc:
            print(f"Query failed: {exc}", file=sys.stderr)
            return 1
        print(f"{manager.endpoint.descriptor}: {result.status} ({result.elapsed_ms} ms)")
        print(f"state={manager.state.value} expiration={manager.expiration}")
    return 0
