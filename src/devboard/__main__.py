#!/usr/bin/env python3
"""
Devboard CLI
------------
Manage API keys and refresh the dashboard from the command line.

Usage:
    # Save a key (validated against the service first)
    python -m devboard --set-key coding-activity=waka_xxx

    # Remove a key
    python -m devboard --clear-key listening-activity

    # Refresh everything and print the summary
    python -m devboard --refresh

    # Refresh GitHub only and write the widget file
    python -m devboard --refresh --service repository-activity --export ./widget
"""
import argparse
import asyncio
import logging
import sys
from datetime import date
from pathlib import Path
from typing import List, Optional, Tuple

from .base import FetchParams
from .config import load_config, load_env
from .context import DashboardContext
from .credentials import mask_secret
from .errors import AdapterError, DevboardError
from .export import SnapshotWriter
from .models import AggregateSnapshot, FetchStatus, ServiceId, format_time_ago


def setup_logging(level: str = "INFO") -> None:
    """Configure logging format and level."""
    logging.basicConfig(
        level=getattr(logging, level.upper(), logging.INFO),
        format="%(asctime)s %(levelname)s: %(message)s",
        datefmt="%Y-%m-%d %H:%M:%S",
    )


def parse_service(value: str) -> ServiceId:
    try:
        return ServiceId(value.strip().lower())
    except ValueError:
        choices = ", ".join(s.value for s in ServiceId)
        raise argparse.ArgumentTypeError(f"Unknown service '{value}'. Choose from: {choices}")


def parse_key_assignment(value: str) -> Tuple[ServiceId, str]:
    if "=" not in value:
        raise argparse.ArgumentTypeError("Expected SERVICE=SECRET")
    service, secret = value.split("=", 1)
    return parse_service(service), secret


def parse_services(value: str) -> List[ServiceId]:
    return [parse_service(s) for s in value.split(",") if s.strip()]


def parse_args(argv: Optional[List[str]] = None) -> argparse.Namespace:
    """Parse command line arguments."""
    parser = argparse.ArgumentParser(
        prog="devboard",
        description="Aggregate WakaTime, GitHub and Spotify activity.",
        formatter_class=argparse.RawDescriptionHelpFormatter,
    )

    # Credentials
    parser.add_argument(
        "--set-key",
        type=parse_key_assignment,
        action="append",
        default=[],
        metavar="SERVICE=SECRET",
        help="Save the API key or access token for a service",
    )
    parser.add_argument(
        "--clear-key",
        type=parse_service,
        action="append",
        default=[],
        metavar="SERVICE",
        help="Remove the stored key for a service",
    )
    parser.add_argument(
        "--no-validate",
        action="store_true",
        help="Save keys without checking them against the service",
    )

    # Refresh
    parser.add_argument("--refresh", action="store_true", help="Fetch fresh data")
    parser.add_argument(
        "--service",
        type=parse_services,
        help="Comma-separated services to refresh (default: all)",
    )
    parser.add_argument(
        "--date",
        type=date.fromisoformat,
        help="Day to report coding activity for (YYYY-MM-DD, default: today)",
    )
    parser.add_argument(
        "--export",
        type=Path,
        help="Directory to write the widget JSON file to",
    )

    # General options
    parser.add_argument("--store", type=Path, help="Credential file path")
    parser.add_argument("--config", type=Path, help="YAML settings file")
    parser.add_argument(
        "--env",
        type=Path,
        default=Path.cwd() / ".env",
        help="Path to .env file",
    )
    parser.add_argument(
        "--log-level",
        choices=["DEBUG", "INFO", "WARNING", "ERROR"],
        default="INFO",
        help="Logging level",
    )
    parser.add_argument(
        "--list-services",
        action="store_true",
        help="List services and whether a key is stored, then exit",
    )

    return parser.parse_args(argv)


def print_services(ctx: DashboardContext) -> None:
    """Print every service and its stored key."""
    print("\nServices:\n")
    for service in ServiceId:
        print(f"  - {service.value}: {mask_secret(ctx.store.get(service))}")
    print()


def print_snapshot(snapshot: AggregateSnapshot, services: List[ServiceId]) -> None:
    """Print a short, human-readable summary of the snapshot."""
    print()
    for service in services:
        view = snapshot[service]
        line = f"{service.value:<20} {view.status.value:<8}"
        if not view.has_credential:
            line += " no key configured"
        elif view.digest is not None:
            line += f" {view.digest.activity_count} activities"
            if view.digest.last_activity_at is not None:
                line += f", last {format_time_ago(view.digest.last_activity_at)}"
        if view.error is not None:
            line += f" [{view.error.user_message}]"
        print(line)
    print()


async def save_keys(ctx: DashboardContext, args: argparse.Namespace) -> int:
    """Validate and store keys. Returns the number of failures."""
    failures = 0
    for service in args.clear_key:
        ctx.store.set(service, None)

    for service, secret in args.set_key:
        secret = secret.strip()
        if secret and not args.no_validate:
            adapter = ctx.adapters[service]
            try:
                await asyncio.to_thread(adapter.validate_credential, secret)
            except AdapterError as e:
                logging.error(f"Not saving {service.value} key: {e.kind.value}: {e.message}")
                failures += 1
                continue
        if not ctx.store.set(service, secret or None):
            logging.warning(f"{service.value} key saved for this session only")
    return failures


async def run(args: argparse.Namespace) -> int:
    config = load_config(args.config, store_path=args.store)
    params = FetchParams(day=args.date)

    async with DashboardContext(config, params=params) as ctx:
        if args.list_services:
            print_services(ctx)
            return 0

        failures = await save_keys(ctx, args)

        if args.refresh:
            services = args.service or list(ServiceId)
            if args.service:
                await asyncio.gather(*(ctx.view_model.retry(s) for s in services))
                snapshot = ctx.view_model.snapshot()
            else:
                snapshot = await ctx.view_model.refresh()

            print_snapshot(snapshot, services)
            failures += sum(1 for s in services if snapshot[s].status == FetchStatus.ERROR)

            if args.export:
                SnapshotWriter(args.export).write(snapshot)

        elif args.export:
            SnapshotWriter(args.export).write(ctx.view_model.snapshot())

    return failures


def main(argv: Optional[List[str]] = None) -> None:
    """Main entry point."""
    args = parse_args(argv)
    setup_logging(args.log_level)
    load_env(args.env)

    try:
        failures = asyncio.run(run(args))
    except DevboardError as e:
        logging.error(str(e))
        sys.exit(1)

    if failures:
        logging.info(f"Completed with {failures} failure(s)")
        sys.exit(1)


if __name__ == "__main__":
    main()
