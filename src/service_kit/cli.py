"""
Command-line interface for the service kit.

This module provides the main CLI entry point with commands for:
- cron: Validate a cron rule and preview its next fire times
- fetch: Send an HTTP request with signing, retries and dumps
- verify: Check an X-HTTP-GoKit-RequestId header against a request
"""

import argparse
import sys
from datetime import datetime
from pathlib import Path
from typing import Optional

import httpx

from . import __version__
from .config import ToolkitConfig, load_config_from_env, load_config_from_file
from .enums import LogLevel
from .exceptions import ServiceKitError
from .http_client import HTTPClient
from .rotating_logger import Logger
from .scheduler import CronParseError, parse_rule
from .signing import split_target, verify_request_id

FIELD_NAMES = ("second", "minute", "hour", "day-of-month", "month", "day-of-week")


def _split_pairs(items: Optional[list[str]], separator: str) -> list[tuple[str, str]]:
    """Split NAME<sep>VALUE arguments; raises ValueError on a missing separator."""
    pairs = []
    for item in items or []:
        name, sep, value = item.partition(separator)
        if not sep or not name.strip():
            raise ValueError(f"expected NAME{separator}VALUE, got {item!r}")
        pairs.append((name.strip(), value.strip()))
    return pairs


def _group(pairs: list[tuple[str, str]]) -> dict[str, list[str]]:
    grouped: dict[str, list[str]] = {}
    for name, value in pairs:
        grouped.setdefault(name, []).append(value)
    return grouped


def build_http_client(config: ToolkitConfig, logger: Optional[Logger] = None) -> HTTPClient:
    """Create the client used by the 'fetch' command."""
    return HTTPClient.from_config(config.http, logger=logger)


def cmd_cron(args: argparse.Namespace) -> int:
    """Handle the 'cron' command."""
    try:
        rule = parse_rule(args.rule)
    except CronParseError as e:
        print(f"Error: {e.message}", file=sys.stderr)
        return 1

    print(f"Rule: {rule.original_expression}")
    for name, field in zip(FIELD_NAMES, rule.fields()):
        values = ",".join(str(v) for v in sorted(field.values)) if not field.is_any else "*"
        print(f"  {name:<12} {values}")

    print("Next:")
    instant = datetime.now().replace(microsecond=0)
    for _ in range(max(args.next, 0)):
        fire = rule.next_after(instant)
        if fire is None:
            print("  (no fire time within the search window)")
            break
        print(f"  {fire.isoformat(sep=' ')}")
        instant = fire
    return 0


def cmd_fetch(args: argparse.Namespace) -> int:
    """Handle the 'fetch' command."""
    if args.config:
        config = load_config_from_file(Path(args.config))
        if config is None:
            print(f"Error: Could not load config from {args.config}", file=sys.stderr)
            return 1
    else:
        config = load_config_from_env()

    if args.retries is not None:
        config.http.retry.times = args.retries
    if args.retry_sleep is not None:
        config.http.retry.sleep_seconds = args.retry_sleep
    if args.sign_key is not None:
        config.http.sign_key = args.sign_key
    if args.dump:
        config.http.dump.enabled = True
        config.http.dump.with_body = True

    try:
        headers = _split_pairs(args.header, ":")
        query = _group(_split_pairs(args.query, "="))
        form = _group(_split_pairs(args.form, "="))
    except ValueError as e:
        print(f"Error: {e}", file=sys.stderr)
        return 2

    logger = Logger(sys.stderr, LogLevel.DEBUG if args.verbose else LogLevel.WARN)
    try:
        with build_http_client(config, logger) as client:
            response = client.do(
                args.method,
                args.url,
                raw_headers=headers,
                query=query,
                form=form,
            )
            with response:
                if args.dump:
                    for image in response.dumps:
                        sys.stderr.write(image.decode("utf-8", errors="replace"))
                        sys.stderr.write("\n\n")

                if args.output:
                    size = response.file(args.output)
                    print(f"Saved {size} bytes to: {args.output}")
                else:
                    sys.stdout.write(response.text())
                    sys.stdout.flush()

                if args.verbose:
                    trace = response.tracing
                    print(
                        f"Status: {response.status_code}  Attempts: {trace.attempts}  "
                        f"Send: {trace.send_time}ms  Recv: {trace.recv_time}ms",
                        file=sys.stderr,
                    )
                return 0 if 200 <= response.status_code < 300 else 1
    except ServiceKitError as e:
        print(f"Error: {e.message}", file=sys.stderr)
        return 1
    finally:
        logger.close()


def cmd_verify(args: argparse.Namespace) -> int:
    """Handle the 'verify' command."""
    try:
        path, query = split_target(httpx.URL(args.url))
    except httpx.InvalidURL as e:
        print(f"Error: invalid url: {e}", file=sys.stderr)
        return 1

    if verify_request_id(args.header, args.method, path, query, args.key, now=args.now):
        print("valid")
        return 0
    print("invalid")
    return 1


def create_parser() -> argparse.ArgumentParser:
    """Create the argument parser for the CLI."""
    parser = argparse.ArgumentParser(
        prog="service-kit",
        description="Cache, logging, scheduling and HTTP toolkit for backend services",
    )
    parser.add_argument(
        "--version",
        action="version",
        version=f"%(prog)s {__version__}",
    )

    subparsers = parser.add_subparsers(dest="command", help="Available commands")

    # 'cron' command
    cron_parser = subparsers.add_parser(
        "cron",
        help="Validate a cron rule and show its next fire times",
    )
    cron_parser.add_argument(
        "rule",
        help="Cron rule (6 fields, 5 fields, @macro or @every N unit)",
    )
    cron_parser.add_argument(
        "--next", "-n",
        type=int,
        default=5,
        help="Number of upcoming fire times to print (default: 5)",
    )
    cron_parser.set_defaults(func=cmd_cron)

    # 'fetch' command
    fetch_parser = subparsers.add_parser(
        "fetch",
        help="Send an HTTP request and print the response body",
    )
    fetch_parser.add_argument(
        "url",
        help="Absolute http(s) URL",
    )
    fetch_parser.add_argument(
        "--method", "-X",
        default="GET",
        help="HTTP method (default: GET)",
    )
    fetch_parser.add_argument(
        "--header", "-H",
        action="append",
        help="Request header as NAME:VALUE (repeatable)",
    )
    fetch_parser.add_argument(
        "--query", "-q",
        action="append",
        help="Query parameter as NAME=VALUE (repeatable)",
    )
    fetch_parser.add_argument(
        "--form", "-f",
        action="append",
        help="Form field as NAME=VALUE (repeatable)",
    )
    fetch_parser.add_argument(
        "--retries",
        type=int,
        help="Additional attempts on transport failure (-1 retries forever)",
    )
    fetch_parser.add_argument(
        "--retry-sleep",
        type=float,
        help="Seconds to wait between attempts",
    )
    fetch_parser.add_argument(
        "--sign-key",
        help="Client key used to sign the request ID",
    )
    fetch_parser.add_argument(
        "--dump",
        action="store_true",
        help="Print the request and response wire images to stderr",
    )
    fetch_parser.add_argument(
        "--output", "-o",
        help="Save the response body to this file instead of printing it",
    )
    fetch_parser.add_argument(
        "--config", "-c",
        help="Path to configuration file",
    )
    fetch_parser.add_argument(
        "--verbose", "-v",
        action="store_true",
        help="Enable verbose output",
    )
    fetch_parser.set_defaults(func=cmd_fetch)

    # 'verify' command
    verify_parser = subparsers.add_parser(
        "verify",
        help="Verify an X-HTTP-GoKit-RequestId header",
    )
    verify_parser.add_argument(
        "header",
        help="Header value (<timestamp>-<nonce>-<hash>)",
    )
    verify_parser.add_argument(
        "--method", "-X",
        default="GET",
        help="Request method (default: GET)",
    )
    verify_parser.add_argument(
        "--url", "-u",
        required=True,
        help="Full request URL",
    )
    verify_parser.add_argument(
        "--key", "-k",
        default="",
        help="Client key shared with the caller",
    )
    verify_parser.add_argument(
        "--now",
        type=float,
        help="Server clock in unix seconds (default: current time)",
    )
    verify_parser.set_defaults(func=cmd_verify)

    return parser


def main(argv: Optional[list[str]] = None) -> int:
    """
    Main entry point for the CLI.

    Args:
        argv: Command line arguments (defaults to sys.argv[1:])

    Returns:
        Exit code
    """
    parser = create_parser()
    args = parser.parse_args(argv)

    if args.command is None:
        parser.print_help()
        return 0

    return args.func(args)


if __name__ == "__main__":
    sys.exit(main())
