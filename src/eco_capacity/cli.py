"""
Command-line interface for the application.

This module provides the main entry point for the CLI.
"""

from __future__ import annotations

import argparse
import logging
import sys
import time
from datetime import UTC, datetime, timedelta

from pydantic import ValidationError

from eco_capacity import __version__
from eco_capacity.config import get_settings
from eco_capacity.errors import UnknownSiteError
from eco_capacity.flows.sweep import REPORT_PATH, weather_sweep
from eco_capacity.services.container import build_services


def create_parser() -> argparse.ArgumentParser:
    """Create the argument parser for the CLI."""
    parser = argparse.ArgumentParser(
        prog="eco-capacity",
        description="Dynamic capacity and admission control for eco-tourism sites",
    )
    parser.add_argument(
        "-v",
        "--version",
        action="version",
        version=f"%(prog)s {__version__}",
    )
    parser.add_argument(
        "--debug",
        action="store_true",
        help="Enable debug logging",
    )

    subparsers = parser.add_subparsers(dest="command", help="Available commands")

    subparsers.add_parser("info", help="Show application info")

    subparsers.add_parser("sweep", help="Run one weather sweep over all sites")

    capacity_parser = subparsers.add_parser("capacity", help="Show adjusted capacity of a site")
    capacity_parser.add_argument("site", help="Site id")

    override_parser = subparsers.add_parser("override", help="Manage capacity overrides")
    override_sub = override_parser.add_subparsers(dest="action")
    set_parser = override_sub.add_parser("set", help="Set a site's capacity override")
    set_parser.add_argument("site", help="Site id")
    set_parser.add_argument("multiplier", type=float, help="Multiplier in (0, 1]")
    set_parser.add_argument(
        "--expires-in-hours",
        type=float,
        default=None,
        help="Expire the override after this many hours (default: never)",
    )
    set_parser.add_argument("--reason", default=None, help="Why the override is needed")
    set_parser.add_argument("--author", default=None, help="Who set the override")
    set_parser.add_argument(
        "--inactive",
        action="store_true",
        help="Store the override without applying it",
    )
    clear_parser = override_sub.add_parser("clear", help="Remove a site's capacity override")
    clear_parser.add_argument("site", help="Site id")

    subparsers.add_parser("monitor", help="Run the weather monitor until interrupted")

    return parser


def configure_logging(debug: bool) -> None:
    logging.basicConfig(
        level=logging.DEBUG if debug else logging.INFO,
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )


def cmd_info(_args: argparse.Namespace) -> int:
    """Handle the 'info' command."""
    settings = get_settings()
    services = build_services(settings)
    print(f"Application: {settings.app_name}")
    print(f"Version: {__version__}")
    print(f"Environment: {settings.app_env}")
    print(f"Debug: {settings.debug}")
    print(f"Data directory: {settings.data_dir}")
    print(f"Ledger: {type(services.ledger).__name__}")
    print(f"Weather cache: {type(services.cache).__name__}")
    print(f"Policy version: {services.config.version}")
    print(f"Sites: {len(services.ledger.list_sites())}")

    report = services.store.read(REPORT_PATH)
    if report:
        fresh = "fresh" if services.store.is_fresh(REPORT_PATH) else "stale"
        print(
            f"Last sweep: {report.get('finished_at')} ({fresh}), "
            f"{report.get('checked', 0)} checked, {report.get('alerts', 0)} alerts"
        )
    else:
        print("Last sweep: never")
    return 0


def cmd_sweep(_args: argparse.Namespace) -> int:
    """Handle the 'sweep' command: run the weather-sweep flow once."""
    result = weather_sweep()
    if result.get("skipped"):
        print("A sweep is already running.", file=sys.stderr)
        return 1
    return 0 if result.get("failures", 0) == 0 else 1


def cmd_capacity(args: argparse.Namespace) -> int:
    """Handle the 'capacity' command."""
    services = build_services(get_settings())
    try:
        site = services.ledger.get_site(args.site)
    except UnknownSiteError:
        print(f"Unknown site: {args.site}", file=sys.stderr)
        return 1

    result = services.engine.get_dynamic_capacity(site)
    print(f"{site.name} ({site.id}), {site.sensitivity} sensitivity")
    print(f"Capacity: {result.adjusted_capacity}/{result.original_capacity}")
    print(f"Occupancy: {site.current_occupancy}")
    print(f"Available: {result.available_spots}")
    for name, value in result.factors.model_dump(exclude={"combined"}).items():
        print(f"  {name:<12} {value:.2f}")
    print(f"  {'combined':<12} {result.factors.combined:.4f}")
    print(result.message)
    return 0


def cmd_override(args: argparse.Namespace) -> int:
    """Handle the 'override set|clear' commands."""
    services = build_services(get_settings())

    if args.action == "set":
        expires_at = None
        if args.expires_in_hours is not None:
            expires_at = datetime.now(UTC) + timedelta(hours=args.expires_in_hours)
        try:
            override = services.engine.set_capacity_override(
                args.site,
                args.multiplier,
                active=not args.inactive,
                expires_at=expires_at,
                reason=args.reason,
                author=args.author,
            )
        except ValidationError as exc:
            print(f"Invalid override: {exc.errors()[0]['msg']}", file=sys.stderr)
            return 1
        state = "active" if override.active else "inactive"
        until = f" until {override.expires_at.isoformat()}" if override.expires_at else ""
        print(f"Override for {args.site}: x{override.multiplier:.2f} ({state}){until}")
        return 0

    if args.action == "clear":
        if services.engine.clear_capacity_override(args.site):
            print(f"Override for {args.site} cleared")
            return 0
        print(f"No override set for {args.site}", file=sys.stderr)
        return 1

    print("Usage: eco-capacity override {set,clear} ...", file=sys.stderr)
    return 1


def cmd_monitor(_args: argparse.Namespace) -> int:
    """Handle the 'monitor' command: sweep on an interval until Ctrl+C."""
    services = build_services(get_settings())
    monitor = services.monitor
    monitor.start()
    print(f"Weather monitor running every {monitor.interval_hours} hours (Ctrl+C to stop)")
    try:
        while True:
            time.sleep(1)
    except KeyboardInterrupt:
        print("\nMonitor stopped.")
    finally:
        monitor.stop()
    return 0


def main() -> int:
    """Main entry point for the CLI."""
    parser = create_parser()
    args = parser.parse_args()

    if args.command is None:
        parser.print_help()
        return 0

    configure_logging(args.debug or get_settings().debug)

    commands = {
        "info": cmd_info,
        "sweep": cmd_sweep,
        "capacity": cmd_capacity,
        "override": cmd_override,
        "monitor": cmd_monitor,
    }

    handler = commands.get(args.command)
    if handler:
        return handler(args)
    else:
        parser.print_help()
        return 1


if __name__ == "__main__":
    sys.exit(main())
