"""Round keeper CLI entry point."""

from __future__ import annotations

import argparse
import json
import sys

from roundkeeper.config.loader import ConfigError
from roundkeeper.core.errors import KeeperError


def build_parser() -> argparse.ArgumentParser:
    """Build the CLI argument parser."""
    parser = argparse.ArgumentParser(
        prog="roundkeeper",
        description="Round keeper for the left/right candle market",
    )

    mode = parser.add_mutually_exclusive_group(required=True)
    mode.add_argument("--once", action="store_true", help="Run one keeper invocation and print its report")
    mode.add_argument("--daemon", action="store_true", help="Run the keeper periodically until SIGINT/SIGTERM")
    mode.add_argument("--serve", action="store_true", help="Serve the HTTP cron trigger")
    mode.add_argument(
        "--inspect",
        type=int,
        metavar="ROUND_ID",
        default=None,
        help="Decode a round and its bets with a payout preview",
    )
    mode.add_argument(
        "--payouts",
        type=int,
        metavar="ROUND_ID",
        default=None,
        help="Resume payouts for one settling round",
    )

    parser.add_argument(
        "--config-dir",
        type=str,
        default="config",
        help="Config directory path (default: config)",
    )
    parser.add_argument(
        "--env",
        type=str,
        default=None,
        help="Environment name (default: from RK_ENV)",
    )

    return parser


def main(argv: list[str] | None = None) -> int:
    """Main CLI entry point."""
    parser = build_parser()
    args = parser.parse_args(argv)

    for flag in ("inspect", "payouts"):
        value = getattr(args, flag)
        if value is not None and value < 0:
            parser.error(f"--{flag} needs a non-negative ROUND_ID")

    try:
        if args.serve:
            from roundkeeper.api.server import serve

            return serve(config_dir=args.config_dir, env=args.env)

        from roundkeeper.keeper import run_keeper

        if args.daemon:
            print("Starting round keeper daemon")
            result = run_keeper("daemon", config_dir=args.config_dir, env=args.env)
            return int(result) if isinstance(result, int) else 0

        if args.inspect is not None:
            result = run_keeper("inspect", config_dir=args.config_dir, env=args.env, round_id=args.inspect)
        elif args.payouts is not None:
            result = run_keeper("payouts", config_dir=args.config_dir, env=args.env, round_id=args.payouts)
        else:
            result = run_keeper("once", config_dir=args.config_dir, env=args.env)
    except ConfigError as exc:
        print(f"Configuration error: {exc}", file=sys.stderr)
        return 2
    except KeeperError as exc:
        print(f"Keeper error: {exc}", file=sys.stderr)
        return 1

    print(json.dumps(result, indent=2, default=str))
    return 0


if __name__ == "__main__":
    sys.exit(main())
