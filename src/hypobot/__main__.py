"""Hypobot - Entry Point

Usage:
    python -m hypobot [--config PATH] [--dry-run | --live] [--log-level LEVEL] [COMMAND]

Commands:
    serve      - Run the HTTP API until SIGINT/SIGTERM (default)
    reconcile  - Settle pending bets once and print the summary
    cycle      - Run one ideation cycle and print the result
    health     - Query a running server's /health
    version    - Show version

Examples:
    python -m hypobot
    python -m hypobot --config config/production.toml --live
    python -m hypobot reconcile
    python -m hypobot cycle --prompt-file prompts/system.txt --cycle 7 --bankroll 112.5
"""

import argparse
import asyncio
import json
import sys
from pathlib import Path
from typing import Optional

import structlog

from hypobot import __version__


def parse_args(argv: Optional[list[str]] = None) -> argparse.Namespace:
    """Parse command-line arguments."""
    parser = argparse.ArgumentParser(
        prog="hypobot",
        description="Prediction-market bet tracking, reconciliation and order submission",
    )

    parser.add_argument(
        "--version",
        action="version",
        version=f"hypobot {__version__}",
    )

    parser.add_argument(
        "--config",
        type=Path,
        default=None,
        help="Path to configuration file (TOML)",
    )

    mode = parser.add_mutually_exclusive_group()
    mode.add_argument(
        "--dry-run",
        dest="dry_run",
        action="store_true",
        default=None,
        help="Never submit real orders",
    )
    mode.add_argument(
        "--live",
        dest="dry_run",
        action="store_false",
        help="Submit real orders",
    )

    parser.add_argument(
        "--log-level",
        choices=["DEBUG", "INFO", "WARNING", "ERROR"],
        default=None,
        help="Log level",
    )

    subparsers = parser.add_subparsers(dest="command", help="Commands")

    subparsers.add_parser("serve", help="Run the HTTP API")
    subparsers.add_parser("reconcile", help="Settle pending bets once")

    cycle = subparsers.add_parser("cycle", help="Run one ideation cycle")
    cycle.add_argument("--prompt-file", type=Path, required=True, help="System prompt file")
    cycle.add_argument("--cycle", type=int, default=1, help="Cycle number")
    cycle.add_argument("--bankroll", type=float, default=None, help="Starting bankroll")
    cycle.add_argument(
        "--live-cycle",
        action="store_true",
        help="Record bets as live and submit orders (requires --live)",
    )

    health = subparsers.add_parser("health", help="Check a running server")
    health.add_argument("--port", type=int, default=None, help="Server port")

    subparsers.add_parser("version", help="Show version")

    return parser.parse_args(argv)


def find_config_file(specified: Optional[Path]) -> Optional[Path]:
    """Find configuration file."""
    if specified and specified.exists():
        return specified

    search_paths = [
        Path("config/default.toml"),
        Path("config/development.toml"),
        Path("config/production.toml"),
        Path("hypobot.toml"),
        Path("/etc/hypobot/hypobot.toml"),
    ]

    for path in search_paths:
        if path.exists():
            return path

    return None


def load_config(args: argparse.Namespace):
    from hypobot.core.config import ConfigManager

    config = ConfigManager(find_config_file(args.config))
    if args.log_level:
        config.set("hypobot.log_level", args.log_level)
    return config


async def serve(args: argparse.Namespace) -> int:
    """Run the HTTP API until a shutdown signal."""
    from hypobot.app import HypobotApp

    app = HypobotApp(load_config(args), dry_run=args.dry_run)
    log = structlog.get_logger()

    try:
        await app.run_forever()
        return 0
    except Exception as e:
        log.error("fatal_error", error=str(e), error_type=type(e).__name__)
        return 1


async def reconcile_once(args: argparse.Namespace) -> int:
    """Run one reconciliation pass and print the summary as JSON."""
    from hypobot.app import HypobotApp

    app = HypobotApp(load_config(args), dry_run=args.dry_run, serve_http=False)
    await app.start()
    try:
        summary = await app.reconciliation.reconcile()
    finally:
        await app.stop()

    print(json.dumps(summary.to_dict(), indent=2))
    return 0


async def cycle_once(args: argparse.Namespace) -> int:
    """Run one ideation cycle and print the result as JSON."""
    from hypobot.app import HypobotApp

    prompt = args.prompt_file.read_text(encoding="utf-8")
    config = load_config(args)
    bankroll = args.bankroll
    if bankroll is None:
        bankroll = config.get_float("cycle.initial_bankroll", 100.0)

    app = HypobotApp(config, dry_run=args.dry_run, serve_http=False)
    await app.start()
    try:
        outcome = await app.trading_cycle.run(
            cycle=args.cycle,
            bankroll=bankroll,
            prompt=prompt,
            live=args.live_cycle,
        )
    finally:
        await app.stop()

    print(json.dumps(outcome.to_dict(), indent=2))
    return 0


async def check_health(args: argparse.Namespace) -> int:
    """Check health status of a running server."""
    import httpx

    port = args.port or load_config(args).get_int("server.port", 8080)
    url = f"http://localhost:{port}/health"

    try:
        async with httpx.AsyncClient() as client:
            response = await client.get(url, timeout=5.0)
    except httpx.ConnectError:
        print("Cannot connect to hypobot (is it running?)")
        return 1
    except httpx.HTTPError as e:
        print(f"Health check error: {e}")
        return 1

    data = response.json()
    print(f"Status: {data.get('status', 'unknown')}")
    details = data.get("details", {})
    print(f"Uptime: {details.get('uptime_seconds', 0):.0f}s")
    for name, info in details.get("components", {}).items():
        print(f"  {name}: {info.get('status', 'unknown')}")

    return 0 if data.get("status") == "healthy" else 1


def main(argv: Optional[list[str]] = None) -> int:
    """Main entry point."""
    args = parse_args(argv)

    if args.command == "version":
        print(f"hypobot {__version__}")
        return 0

    if args.command == "health":
        return asyncio.run(check_health(args))

    if args.command == "reconcile":
        return asyncio.run(reconcile_once(args))

    if args.command == "cycle":
        return asyncio.run(cycle_once(args))

    # Default: serve
    return asyncio.run(serve(args))


if __name__ == "__main__":
    sys.exit(main())
