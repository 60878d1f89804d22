#!/usr/bin/env python3
"""
detcache command-line interface.

Usage:
    detcache put <KEY> < value.bin
    detcache get <KEY> > value.bin
    detcache hash < value.bin

    # Explicit configuration and more logging
    detcache --config caches.toml -vv get <KEY>

Exit codes:
    0  success
    1  value not found
    2  cache error (every backend failed a put)
    3  invalid key
    4  configuration error

Values travel over stdin/stdout as raw bytes; all logging goes to stderr.
"""

from __future__ import annotations

import argparse
import asyncio
import logging
import sys
from collections.abc import Mapping
from pathlib import Path
from typing import Any, BinaryIO, Optional, Sequence

from detcache import __version__
from detcache.core import constants as C
from detcache.core.config import DetCacheConfig
from detcache.core.errors import InvalidInput
from detcache.hashing import hash_stream
from detcache.observability.logging import LogLevel, StructuredLogger, setup_logging
from detcache.router import Cache, build_cache

logger = StructuredLogger("detcache.cli")


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="detcache",
        description="Content-addressed key/value cache over filesystem and S3 backends",
    )
    parser.add_argument(
        "--version",
        action="version",
        version=f"%(prog)s {__version__}",
    )
    parser.add_argument(
        "--config",
        type=Path,
        default=None,
        help=f"TOML cache configuration (default: ${C.CONFIG_ENV_VAR}, else one local cache)",
    )
    parser.add_argument(
        "--cache-dir",
        type=Path,
        default=None,
        help="Root for filesystem caches that do not set cache_dir",
    )
    parser.add_argument(
        "-v", "--verbose",
        action="count",
        default=0,
        help="More logging (repeatable)",
    )
    parser.add_argument(
        "-q", "--quiet",
        action="count",
        default=0,
        help="Less logging (repeatable)",
    )
    parser.add_argument(
        "--log-json",
        action="store_true",
        help="Emit log records as JSON lines",
    )

    subparsers = parser.add_subparsers(dest="command", required=True)

    get_parser = subparsers.add_parser("get", help="Write the value for KEY to stdout")
    get_parser.add_argument("key", help="64-character lowercase SHA-256 hex digest")

    put_parser = subparsers.add_parser("put", help="Store stdin under KEY")
    put_parser.add_argument("key", help="64-character lowercase SHA-256 hex digest")

    subparsers.add_parser("hash", help="Print the SHA-256 of stdin")

    return parser


# =============================================================================
# COMMANDS
# =============================================================================
async def _cmd_get(cache: Cache, key: str, stdout: BinaryIO) -> int:
    result = await cache.lookup(key)
    if result.is_err():
        logger.error(result.error.message)
        return C.EXIT_INVALID_KEY

    report = result.unwrap()
    if not report.hit:
        if report.all_failed:
            logger.warning("Every cache failed; treating as not found")
        else:
            logger.info("Value not found")
        return C.EXIT_VALUE_NOT_FOUND

    logger.info("Found value", source=report.source, size=len(report.value))
    stdout.write(report.value)
    stdout.flush()
    return C.EXIT_SUCCESS


async def _cmd_put(cache: Cache, key: str, value: bytes) -> int:
    result = await cache.put(key, value)
    if result.is_err():
        error = result.error
        if isinstance(error, InvalidInput):
            logger.error(error.message)
            return C.EXIT_INVALID_KEY
        logger.error(f"Failed to store value: {error.message}")
        return C.EXIT_CACHE_ERROR

    report = result.unwrap()
    if report.failures:
        logger.warning(
            f"Stored in {len(report.stored_in)} of {report.attempted} caches: {report.detail}"
        )
    else:
        logger.info("Stored value", caches=report.stored_in, size=len(value))
    return C.EXIT_SUCCESS


def _cmd_hash(stdin: BinaryIO, stdout: BinaryIO) -> int:
    stdout.write(f"{hash_stream(stdin)}\n".encode("ascii"))
    stdout.flush()
    return C.EXIT_SUCCESS


async def run(
    args: argparse.Namespace,
    stdin: BinaryIO,
    stdout: BinaryIO,
    environ: Optional[Mapping[str, str]] = None,
    session: Any = None,
) -> int:
    """Execute a parsed command and return its exit code."""
    if args.command == "hash":
        return _cmd_hash(stdin, stdout)

    config_result = DetCacheConfig.load(args.config, cache_dir=args.cache_dir, environ=environ)
    if config_result.is_err():
        logger.error(config_result.error.message)
        return C.EXIT_CONFIG_ERROR
    config = config_result.unwrap()

    with logger.context(key=args.key):
        async with build_cache(config, session=session) as cache:
            if args.command == "get":
                return await _cmd_get(cache, args.key, stdout)
            return await _cmd_put(cache, args.key, stdin.read())


def main(
    argv: Optional[Sequence[str]] = None,
    stdin: Optional[BinaryIO] = None,
    stdout: Optional[BinaryIO] = None,
    environ: Optional[Mapping[str, str]] = None,
    session: Any = None,
) -> int:
    """Console entry point."""
    args = build_parser().parse_args(argv)
    setup_logging(LogLevel.from_verbosity(args.verbose, args.quiet), json_output=args.log_json)

    try:
        return asyncio.run(run(
            args,
            stdin or sys.stdin.buffer,
            stdout or sys.stdout.buffer,
            environ=environ,
            session=session,
        ))
    except KeyboardInterrupt:
        logging.getLogger(__name__).warning("Interrupted")
        return 130


if __name__ == "__main__":
    sys.exit(main())
