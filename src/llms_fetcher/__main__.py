from __future__ import annotations

import argparse
import asyncio
import logging
from typing import Any, Dict, Optional, Sequence

from pydantic import ValidationError

from llms_fetcher.config import YamlConfigLoader
from llms_fetcher.config.models import AppConfig, ConfigLoadRequest
from llms_fetcher.logging import LOG_DATE_FORMAT, LOG_FORMAT, init_logging
from llms_fetcher.service import LlmsFetcher, MissingSourceError

logger = logging.getLogger(__name__)

EXIT_OK = 0
EXIT_FAILED = 1


def _add_fetch_arguments(parser: argparse.ArgumentParser) -> None:
    parser.add_argument("--public-url", "-u", dest="public_url", help="Site root; llms.txt is appended")
    parser.add_argument("--source-url", dest="source_url", help="Full URL of the file (overrides --public-url)")
    parser.add_argument("--output-dir", "-o", dest="output_dir", help="Directory to write into (default: public)")
    parser.add_argument("--output-file", "-f", dest="output_file", help="File name to write (default: llms.txt)")
    parser.add_argument("--user-agent", dest="user_agent", help="User-Agent header value")
    parser.add_argument("--timeout-ms", dest="timeout_ms", type=int, help="Request timeout in milliseconds")
    parser.add_argument("--ttl-hours", dest="ttl_hours", type=float, help="Reuse the local copy this long")


def _build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(prog="llms-fetcher", description="Fetch and keep llms.txt fresh")
    parser.add_argument(
        "--config",
        default="llms-fetcher.yaml",
        help="Path to the YAML config file (default: llms-fetcher.yaml, optional)",
    )
    parser.add_argument(
        "--env-file",
        default=".env",
        help="Path to a .env file (default: .env, optional)",
    )
    subparsers = parser.add_subparsers(dest="command", required=True, help="Command to run")

    # Command: run
    run_parser = subparsers.add_parser("run", help="Fetch once unconditionally and save")
    _add_fetch_arguments(run_parser)
    run_parser.add_argument("--dry-run", action="store_true", help="Print what would be fetched and exit")

    # Command: ensure
    ensure_parser = subparsers.add_parser("ensure", help="Fetch only if the local copy is stale")
    _add_fetch_arguments(ensure_parser)

    # Command: watch
    watch_parser = subparsers.add_parser("watch", help="Keep the local copy fresh on a schedule")
    _add_fetch_arguments(watch_parser)
    watch_parser.add_argument("--run-at", "-t", dest="run_at", help="Daily run time HH:MM (default: 02:00)")
    watch_parser.add_argument(
        "--interval-hours",
        dest="interval_hours",
        type=float,
        help="Run every N hours instead of daily; first run is immediate",
    )
    watch_parser.add_argument(
        "--run-seconds",
        type=float,
        default=None,
        help="Stop after N seconds (useful for smoke testing).",
    )

    return parser


def _collect_overrides(args: argparse.Namespace) -> Dict[str, Any]:
    return {
        "fetcher.public_url": getattr(args, "public_url", None),
        "fetcher.source_url": getattr(args, "source_url", None),
        "fetcher.output_dir": getattr(args, "output_dir", None),
        "fetcher.output_file": getattr(args, "output_file", None),
        "fetcher.user_agent": getattr(args, "user_agent", None),
        "fetcher.timeout_ms": getattr(args, "timeout_ms", None),
        "fetcher.ttl_hours": getattr(args, "ttl_hours", None),
        "schedule.run_at": getattr(args, "run_at", None),
        "schedule.interval_hours": getattr(args, "interval_hours", None),
    }


async def _load_config(args: argparse.Namespace) -> AppConfig:
    loader = YamlConfigLoader()
    request = ConfigLoadRequest(yaml_path=args.config, dotenv_path=args.env_file)
    return await loader.load(request, overrides=_collect_overrides(args))


async def _run(service: LlmsFetcher, args: argparse.Namespace) -> int:
    if args.dry_run:
        logger.info("Dry run: would fetch %s -> %s", service.source_url, service.output_path)
        return EXIT_OK
    outcome = await service.fetch_once()
    if not outcome.ok:
        logger.error("llms-fetcher error: %s", outcome.error)
        return EXIT_FAILED
    return EXIT_OK


async def _ensure(service: LlmsFetcher) -> int:
    outcome = await service.ensure_fresh()
    if not outcome.ok:
        logger.error("llms-fetcher error: %s", outcome.error)
        return EXIT_FAILED
    logger.info("Local copy ready. outcome=%s path=%s", outcome.kind, outcome.path)
    return EXIT_OK


async def _watch(service: LlmsFetcher, args: argparse.Namespace) -> int:
    scheduler = service.start_scheduler()
    try:
        if args.run_seconds is not None:
            await asyncio.sleep(args.run_seconds)
        else:
            await scheduler.wait()
    finally:
        await service.stop()
    return EXIT_OK


async def _main_async(argv: Optional[Sequence[str]] = None) -> int:
    parser = _build_parser()
    args = parser.parse_args(argv)

    try:
        config = await _load_config(args)
    except (ValidationError, KeyError, TypeError, ValueError) as e:
        logger.error("Invalid configuration: %s", e)
        return EXIT_FAILED
    init_logging(config.logging)

    try:
        service = LlmsFetcher(config)
    except MissingSourceError as e:
        logger.error("Error: %s", e)
        return EXIT_FAILED

    if args.command == "run":
        return await _run(service, args)
    if args.command == "ensure":
        return await _ensure(service)
    return await _watch(service, args)


def main(argv: Optional[Sequence[str]] = None) -> None:
    logging.basicConfig(level=logging.INFO, format=LOG_FORMAT, datefmt=LOG_DATE_FORMAT)
    try:
        code = asyncio.run(_main_async(argv))
    except KeyboardInterrupt:
        logger.info("Interrupted by user.")
        code = EXIT_OK
    raise SystemExit(code)


if __name__ == "__main__":
    main()
