"""Command-line interface for carrymatch."""

import argparse
import json
import logging
import os
import sys
from pathlib import Path

import yaml

from . import __version__
from .errors import CarrymatchError
from .models import Match
from .rules import RULES_ENV_VAR, BusinessRules, default_rules, load_rules
from .services import Services, build_services
from .utils import from_iso


def load_cli_rules(args: argparse.Namespace) -> BusinessRules:
    """Rules from --rules if given, else $CARRYMATCH_RULES, else defaults."""
    if args.rules:
        return load_rules(args.rules)
    return default_rules()


def get_services(args: argparse.Namespace) -> Services:
    data_dir = Path(args.data_dir) if args.data_dir else None
    return build_services(data_dir=data_dir, rules=load_cli_rules(args))


def format_match(match: Match) -> str:
    items = ", ".join(match.assigned_item_ids) if match.assigned_item_ids else "-"
    return (
        f"{match.id[:8]}  {match.status.value:<9}  score={match.match_score:<6g}  "
        f"trip={match.trip_id[:8]}  request={match.request_id[:8]}  items={items}"
    )


def cmd_serve(args: argparse.Namespace) -> int:
    """Start the API server, with background sweeps unless disabled."""
    try:
        import uvicorn

        services = get_services(args)

        print("Starting carrymatch API server...")
        print(f"Data directory: {services.store.data_dir}")
        print(f"API docs: http://{args.host}:{args.port}/docs")
        print()

        # When reload is enabled, uvicorn requires the app as an import string
        # and the worker process rebuilds its services from the environment
        if args.reload:
            os.environ["CARRYMATCH_DATA_DIR"] = str(services.store.data_dir)
            if args.rules:
                os.environ[RULES_ENV_VAR] = str(Path(args.rules).resolve())
            app_target = "carrymatch.api:app"
        else:
            from .api import app, set_services

            set_services(services)
            app_target = app

        scheduler = None
        if not args.no_sweeps:
            scheduler = services.scheduler()
            scheduler.start()

        try:
            uvicorn.run(
                app_target,
                host=args.host,
                port=args.port,
                reload=args.reload,
                workers=1,  # Single worker to avoid concurrent write issues
            )
        finally:
            if scheduler is not None:
                scheduler.stop()
        return 0

    except Exception as e:
        print(f"Error: {e}", file=sys.stderr)
        return 1


def cmd_sweep(args: argparse.Namespace) -> int:
    """Run the cooldown and purchase-deadline sweeps once."""
    try:
        services = get_services(args)
        now = from_iso(args.now) if args.now else None
        cooldowns, deadlines = services.scheduler().run_once(now)

        if args.json:
            data = {"cooldowns": cooldowns.to_dict(), "deadlines": deadlines.to_dict()}
            print(json.dumps(data, indent=2))
        else:
            print(f"Cooldowns ended: {cooldowns.processed} (failed: {len(cooldowns.failed_ids)})")
            print(
                f"Deadlines missed: {deadlines.processed} "
                f"(matches rejected: {deadlines.matches_rejected}, failed: {len(deadlines.failed_ids)})"
            )
            for request_id in cooldowns.failed_ids + deadlines.failed_ids:
                print(f"  failed: {request_id}")

        return 1 if cooldowns.failed_ids or deadlines.failed_ids else 0

    except ValueError as e:
        print(f"Error: invalid --now value: {e}", file=sys.stderr)
        return 1
    except CarrymatchError as e:
        print(f"Error: {e}", file=sys.stderr)
        return 1


def cmd_rules(args: argparse.Namespace) -> int:
    """Show the effective business rules."""
    try:
        rules = load_cli_rules(args)
        if args.json:
            print(json.dumps(rules.to_dict(), indent=2))
        else:
            print(yaml.safe_dump(rules.to_dict(), sort_keys=False), end="")
        return 0

    except CarrymatchError as e:
        print(f"Error: {e}", file=sys.stderr)
        return 1


def cmd_matches(args: argparse.Namespace) -> int:
    """List matches for a request or a trip."""
    try:
        services = get_services(args)
        lifecycle = services.lifecycle
        if args.request:
            matches = lifecycle.matches_for_request(args.request)
        else:
            matches = lifecycle.matches_for_trip(args.trip)

        if not args.all:
            matches = [m for m in matches if m.is_active]
        matches.sort(key=lambda m: -m.match_score)

        if args.json:
            print(json.dumps([m.to_dict() for m in matches], indent=2))
            return 0

        if not matches:
            print("No matches found.")
            return 0

        print(f"Matches ({len(matches)}):")
        for match in matches:
            print(f"  {format_match(match)}")
        return 0

    except CarrymatchError as e:
        print(f"Error: {e}", file=sys.stderr)
        return 1


def create_parser() -> argparse.ArgumentParser:
    """Create the argument parser."""
    parser = argparse.ArgumentParser(
        prog="carrymatch",
        description="Match shopper requests with traveler trips and manage bookings.",
    )
    parser.add_argument(
        "--version", action="version", version=f"%(prog)s {__version__}"
    )
    parser.add_argument("--rules", help="Business rules YAML file (default: $CARRYMATCH_RULES)")
    parser.add_argument("--data-dir", help="Data directory (default: $CARRYMATCH_DATA_DIR)")
    parser.add_argument("--verbose", "-v", action="store_true", help="Enable debug logging")

    subparsers = parser.add_subparsers(dest="command", help="Commands")

    # serve
    serve_parser = subparsers.add_parser("serve", help="Start the API server")
    serve_parser.add_argument(
        "--host", default="127.0.0.1", help="Host to bind to (default: 127.0.0.1)"
    )
    serve_parser.add_argument(
        "--port", "-p", type=int, default=8000, help="Port to bind to (default: 8000)"
    )
    serve_parser.add_argument(
        "--reload", action="store_true", help="Enable auto-reload for development"
    )
    serve_parser.add_argument(
        "--no-sweeps", action="store_true", help="Don't run background sweeps"
    )

    # sweep
    sweep_parser = subparsers.add_parser("sweep", help="Run cooldown and deadline sweeps once")
    sweep_parser.add_argument("--now", help="Evaluate as of this ISO 8601 time (default: now)")
    sweep_parser.add_argument("--json", action="store_true", help="Output as JSON")

    # rules
    rules_parser = subparsers.add_parser("rules", help="Show effective business rules")
    rules_parser.add_argument("--json", action="store_true", help="Output as JSON")

    # matches
    matches_parser = subparsers.add_parser("matches", help="List matches")
    target = matches_parser.add_mutually_exclusive_group(required=True)
    target.add_argument("--request", help="Shopper request ID")
    target.add_argument("--trip", help="Trip ID")
    matches_parser.add_argument(
        "--all", "-a", action="store_true", help="Include rejected matches"
    )
    matches_parser.add_argument("--json", action="store_true", help="Output as JSON")

    return parser


def main() -> int:
    """Main entry point."""
    parser = create_parser()
    args = parser.parse_args()

    logging.basicConfig(
        level=logging.DEBUG if args.verbose else logging.INFO,
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )

    if not args.command:
        parser.print_help()
        return 0

    commands = {
        "serve": cmd_serve,
        "sweep": cmd_sweep,
        "rules": cmd_rules,
        "matches": cmd_matches,
    }

    cmd_func = commands.get(args.command)
    if cmd_func:
        return cmd_func(args)

    parser.print_help()
    return 0


if __name__ == "__main__":
    sys.exit(main())
