"""Entry point for ``python -m cal_sync``.

Subcommands:
    serve        -- Default. Run the HTTP API with uvicorn.
    check-config -- Validate environment settings and report what is
                    configured.

Exit codes:
    0 -- Success.
    1 -- Configuration error.
    2 -- Argument parsing error (handled by argparse).
"""

from __future__ import annotations

import argparse
import sys

import uvicorn

from cal_sync.api import create_app
from cal_sync.config import ConfigError, Settings, load_settings
from cal_sync.log import setup_logging


def build_parser() -> argparse.ArgumentParser:
    """Build and return the CLI argument parser with subcommands."""
    parser = argparse.ArgumentParser(
        prog="cal-sync",
        description="External calendar sync and conflict resolution service.",
    )

    subparsers = parser.add_subparsers(dest="command")

    serve_parser = subparsers.add_parser(
        "serve",
        help="Run the HTTP API.",
    )
    serve_parser.add_argument(
        "--host",
        type=str,
        default="127.0.0.1",
        help="Interface to bind (default: 127.0.0.1).",
    )
    serve_parser.add_argument(
        "--port",
        type=int,
        default=5000,
        help="Port to listen on (default: 5000).",
    )
    serve_parser.add_argument(
        "-v",
        "--verbose",
        action="store_true",
        default=False,
        help="Enable debug-level logging.",
    )

    check_parser = subparsers.add_parser(
        "check-config",
        help="Validate environment settings.",
    )
    check_parser.add_argument(
        "-v",
        "--verbose",
        action="store_true",
        default=False,
        help="Enable debug-level logging.",
    )

    return parser


def _resolve_command(parser: argparse.ArgumentParser, argv: list[str]) -> argparse.Namespace:
    """Parse *argv*, running ``serve`` when no subcommand is given."""
    if not argv or (argv[0] not in {"serve", "check-config", "-h", "--help"}):
        argv = ["serve", *argv]
    return parser.parse_args(argv)


def _handle_serve(args: argparse.Namespace, settings: Settings) -> int:
    if not settings.google_configured:
        print(
            "Warning: GOOGLE_CLIENT_ID / GOOGLE_CLIENT_SECRET not set; "
            "calendar sync endpoints will answer 503.",
            file=sys.stderr,
        )
    app = create_app(settings)
    # log_config=None keeps uvicorn on the root handler set up above.
    uvicorn.run(app, host=args.host, port=args.port, log_config=None)
    return 0


def _handle_check_config(settings: Settings) -> int:
    print(f"Google OAuth client:    {'configured' if settings.google_configured else 'missing'}")
    print(f"Redirect URI:           {settings.google_redirect_uri}")
    print(
        "Token encryption:       "
        f"{'configured' if settings.token_encryption_secret else 'missing'}"
    )
    print(f"API tokens:             {len(settings.api_tokens)}")
    print(f"Database:               {settings.database_path}")
    print(f"Fetch concurrency:      {settings.fetch_concurrency}")
    return 0


def main(argv: list[str] | None = None) -> int:
    """Run the cal-sync CLI.

    Args:
        argv: Command-line arguments.  Defaults to ``sys.argv[1:]``.

    Returns:
        Exit code: ``0`` on success, ``1`` on configuration error.
    """
    parser = build_parser()
    args = _resolve_command(parser, argv if argv is not None else sys.argv[1:])

    try:
        settings = load_settings()
    except ConfigError as exc:
        print(f"Error: {exc}", file=sys.stderr)
        return 1

    log_level = "DEBUG" if getattr(args, "verbose", False) else settings.log_level
    try:
        setup_logging(log_level)
    except ValueError as exc:
        print(f"Error: {exc}", file=sys.stderr)
        return 1

    if args.command == "check-config":
        return _handle_check_config(settings)
    return _handle_serve(args, settings)


if __name__ == "__main__":
    raise SystemExit(main())
