"""CLI argument parsing and main entry point.

Subcommands:

* ``apiguard status``   — probe the server once and print its health.
* ``apiguard login``    — exchange email/password for stored tokens.
* ``apiguard logout``   — forget the stored session.
* ``apiguard whoami``   — print the current user profile.
* ``apiguard request``  — send one call through the request pipeline.
* ``apiguard upload``   — upload an image file.
"""

from __future__ import annotations

import argparse
import asyncio
import getpass
import json
import logging
import os
import sys
from typing import Any, Awaitable, Callable, List, Optional

from apiguard.client import ApiClient
from apiguard.config import resolve_config
from apiguard.constants import CLIENT_NAME, CLIENT_VERSION, DEFAULT_LOG_LEVEL
from apiguard.display.logging_config import setup_logging
from apiguard.errors import ApiGuardError, ConfigurationError, HttpStatusError
from apiguard.pipeline import RequestOptions

module_logger = logging.getLogger(__name__)

Command = Callable[[ApiClient, argparse.Namespace], Awaitable[int]]


def _print_json(payload: Any) -> None:
    print(json.dumps(payload, indent=2, ensure_ascii=False, default=str))


def _report_error(exc: ApiGuardError) -> None:
    print(f"Error: {exc}", file=sys.stderr)
    if isinstance(exc, HttpStatusError) and exc.body is not None:
        print(json.dumps(exc.body, indent=2, ensure_ascii=False, default=str), file=sys.stderr)


# ── Subcommands ──────────────────────────────────────────────────────────


async def _cmd_status(api: ApiClient, _args: argparse.Namespace) -> int:
    status = await api.refresh_health_check()
    _print_json(status.to_dict())
    return 0 if status.is_healthy else 2


async def _cmd_login(api: ApiClient, args: argparse.Namespace) -> int:
    password = args.password
    if password is None:
        password = getpass.getpass(f"Password for {args.email}: ")
    await api.auth.login({"email": args.email, "password": password})
    print(f"Logged in as {args.email}.")
    return 0


async def _cmd_logout(api: ApiClient, _args: argparse.Namespace) -> int:
    was_logged_in = api.auth.is_logged_in()
    api.auth.logout()
    print("Logged out." if was_logged_in else "Not logged in.")
    return 0


async def _cmd_whoami(api: ApiClient, _args: argparse.Namespace) -> int:
    profile = await api.auth.get_current_user()
    if profile is None:
        print("Not logged in.", file=sys.stderr)
        return 1
    _print_json(profile.model_dump(exclude_none=True))
    return 0


async def _cmd_request(api: ApiClient, args: argparse.Namespace) -> int:
    body = None
    if args.data is not None:
        try:
            body = json.loads(args.data)
        except json.JSONDecodeError as exc:
            print(f"--data is not valid JSON: {exc}", file=sys.stderr)
            return 1
    if not args.no_health_check:
        await api.refresh_health_check()
    options = RequestOptions(
        requires_health_check=not args.no_health_check,
        skip_auth=args.no_auth,
    )
    result = await api.request(args.path, args.method, body, options)
    if result is not None:
        _print_json(result)
    return 0


async def _cmd_upload(api: ApiClient, args: argparse.Namespace) -> int:
    if not os.path.isfile(args.file):
        print(f"File not found: {args.file}", file=sys.stderr)
        return 1
    await api.refresh_health_check()
    if args.playlist is not None:
        result = await api.uploads.upload_playlist_cover(args.playlist, args.file)
    else:
        result = await api.uploads.upload_image(args.file)
    _print_json(result)
    return 0


async def _run(command: Command, args: argparse.Namespace) -> int:
    # One-shot commands: no background monitor, probes are explicit.
    api = ApiClient(resolve_config(args.config))
    try:
        return await command(api, args)
    finally:
        await api.close()


# ── CLI parser construction ──────────────────────────────────────────────


def _build_parser() -> argparse.ArgumentParser:
    """Build the argparse parser with one subparser per command."""
    parser = argparse.ArgumentParser(
        prog=CLIENT_NAME,
        description=f"{CLIENT_NAME} v{CLIENT_VERSION}",
    )
    parser.add_argument(
        "--config",
        type=str,
        default=None,
        help="Path to the YAML config file (default: $APIGUARD_CONFIG, then ./apiguard.yaml)",
    )
    parser.add_argument(
        "--log-level",
        type=str,
        default=DEFAULT_LOG_LEVEL,
        help="Log level for the log file (default: %(default)s)",
    )
    parser.add_argument(
        "-v",
        "--verbose",
        action="store_true",
        help="Mirror log output to stderr",
    )

    subparsers = parser.add_subparsers(dest="command")

    sp_status = subparsers.add_parser("status", help="Probe the server health once")
    sp_status.set_defaults(func=_cmd_status)

    sp_login = subparsers.add_parser("login", help="Log in and store the session tokens")
    sp_login.add_argument("--email", required=True, help="Account email")
    sp_login.add_argument("--password", default=None, help="Password (prompted if omitted)")
    sp_login.set_defaults(func=_cmd_login)

    sp_logout = subparsers.add_parser("logout", help="Forget the stored session")
    sp_logout.set_defaults(func=_cmd_logout)

    sp_whoami = subparsers.add_parser("whoami", help="Show the current user profile")
    sp_whoami.set_defaults(func=_cmd_whoami)

    # ── request ─────────────────────────────────────────────────
    sp_request = subparsers.add_parser("request", help="Send one API call through the pipeline")
    sp_request.add_argument(
        "method",
        type=str.upper,
        choices=["GET", "POST", "PUT", "PATCH", "DELETE"],
        help="HTTP method",
    )
    sp_request.add_argument("path", help="Path relative to the API base URL, e.g. /users/me")
    sp_request.add_argument("--data", default=None, help="JSON request body")
    sp_request.add_argument("--no-auth", action="store_true", help="Do not attach the bearer token")
    sp_request.add_argument(
        "--no-health-check",
        action="store_true",
        help="Skip the health probe and gate",
    )
    sp_request.set_defaults(func=_cmd_request)

    sp_upload = subparsers.add_parser("upload", help="Upload an image file")
    sp_upload.add_argument("file", help="Path of the file to upload")
    sp_upload.add_argument(
        "--playlist",
        default=None,
        help="Upload as the cover of this playlist id instead",
    )
    sp_upload.set_defaults(func=_cmd_upload)

    return parser


def main(argv: Optional[List[str]] = None) -> None:
    """Program entry point: parse arguments and dispatch to subcommand."""
    parser = _build_parser()
    args = parser.parse_args(argv)

    if args.command is None:
        parser.print_help()
        sys.exit(1)

    log_fpath, log_lvl = setup_logging(args.log_level, console=args.verbose)
    module_logger.debug("Logging to %s at %s", log_fpath, log_lvl)

    try:
        exit_code = asyncio.run(_run(args.func, args))
    except ConfigurationError as exc:
        print(f"Configuration error: {exc}", file=sys.stderr)
        exit_code = 1
    except ApiGuardError as exc:
        _report_error(exc)
        exit_code = 1
    except OSError as exc:
        print(f"Error: {exc}", file=sys.stderr)
        exit_code = 1
    except KeyboardInterrupt:
        exit_code = 130
    sys.exit(exit_code)
