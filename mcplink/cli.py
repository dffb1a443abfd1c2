# -*- coding: utf-8 -*-
"""Location: ./mcplink/cli.py
Copyright 2025
SPDX-License-Identifier: Apache-2.0
Authors: Mihai Criveti

mcplink command line.

Two subcommands:

``mcplink test``
    Run a one-shot connection test and print the report as JSON. The exit
    status is 0 when the server passed and 1 otherwise.

``mcplink serve``
    Run the gateway server under uvicorn.

Examples:
    >>> parser = build_parser()
    >>> ns = parser.parse_args(["test", "--type", "stdio", "--command", "uvx", "--arg", "mcp-server-time"])
    >>> (ns.command_name, ns.kind, ns.command, ns.args)
    ('test', 'stdio', 'uvx', ['mcp-server-time'])
    >>> parse_pairs(["A=1", "B=x=y"], "=", "--env")
    {'A': '1', 'B': 'x=y'}
"""

# Standard
import argparse
import asyncio
import sys
from typing import Dict, List, Optional, Sequence

# Third-Party
import orjson
import uvicorn

# First-Party
from mcplink import __version__
from mcplink.config import settings
from mcplink.services.connection_tester import ConnectionTester
from mcplink.services.logging_service import LoggingService

# Initialize logging service first
logging_service = LoggingService()
logger = logging_service.get_logger(__name__)


def parse_pairs(items: Optional[Sequence[str]], delimiter: str, option: str) -> Dict[str, str]:
    """Parse repeated ``KEY<delimiter>VALUE`` options into a mapping.

    Args:
        items: Raw option values.
        delimiter: Separator between key and value.
        option: Option name, for error messages.

    Returns:
        The parsed mapping.

    Raises:
        ValueError: If an item has no delimiter or an empty key.

    Examples:
        >>> parse_pairs(["Authorization: Bearer t"], ":", "--header")
        {'Authorization': 'Bearer t'}
        >>> parse_pairs(None, "=", "--env")
        {}
    """
    pairs: Dict[str, str] = {}
    for item in items or []:
        key, sep, value = item.partition(delimiter)
        key = key.strip()
        if not sep or not key:
            raise ValueError(f"{option} expects KEY{delimiter}VALUE, got '{item}'")
        pairs[key] = value.strip() if delimiter == ":" else value
    return pairs


def build_parser() -> argparse.ArgumentParser:
    """Build the argument parser.

    Returns:
        argparse.ArgumentParser: The parser.
    """
    parser = argparse.ArgumentParser(prog="mcplink", description="MCP client toolkit: connection tests and a tool gateway.")
    parser.add_argument("--version", action="version", version=f"%(prog)s {__version__}")
    subparsers = parser.add_subparsers(dest="command_name", required=True)

    test = subparsers.add_parser("test", help="Test connectivity to one MCP server", formatter_class=argparse.ArgumentDefaultsHelpFormatter)
    test.add_argument("--type", dest="kind", required=True, help="Transport: stdio, http, sse or streamable-http")
    test.add_argument("--command", help="Executable for stdio servers")
    test.add_argument("--arg", dest="args", action="append", default=[], help="Argument for the stdio command (repeatable)")
    test.add_argument("--env", action="append", default=[], metavar="KEY=VALUE", help="Environment variable for the stdio process (repeatable)")
    test.add_argument("--url", help="URL for HTTP, SSE and streamable HTTP servers")
    test.add_argument("--header", action="append", default=[], metavar="NAME:VALUE", help="HTTP header (repeatable)")
    test.add_argument("--timeout", type=float, default=settings.default_timeout, help="Seconds allowed for the whole test")

    serve = subparsers.add_parser("serve", help="Run the gateway server", formatter_class=argparse.ArgumentDefaultsHelpFormatter)
    serve.add_argument("--config", default=settings.gateway_backends_file, help="YAML file listing backend servers")
    serve.add_argument("--host", default=settings.gateway_host, help="Bind address")
    serve.add_argument("--port", type=int, default=settings.gateway_port, help="Bind port")
    serve.add_argument("--log-level", default=settings.log_level, help="Log level")
    return parser


def run_test(args: argparse.Namespace) -> int:
    """Execute the ``test`` subcommand.

    Args:
        args: Parsed arguments.

    Returns:
        Exit status.
    """
    try:
        env = parse_pairs(args.env, "=", "--env")
        headers = parse_pairs(args.header, ":", "--header")
    except ValueError as exc:
        print(f"mcplink: error: {exc}", file=sys.stderr)
        return 2

    tester = ConnectionTester()
    report = asyncio.run(
        tester.test_config(
            args.kind,
            command=args.command,
            args=args.args,
            url=args.url,
            headers=headers,
            env=env,
            timeout=args.timeout,
        )
    )
    sys.stdout.write(orjson.dumps(report.model_dump(mode="json", by_alias=True), option=orjson.OPT_INDENT_2).decode() + "\n")
    return 0 if report.success else 1


def run_serve(args: argparse.Namespace) -> int:
    """Execute the ``serve`` subcommand.

    Args:
        args: Parsed arguments.

    Returns:
        Exit status.
    """
    # First-Party
    from mcplink.gateway_server import create_app  # pylint: disable=import-outside-toplevel

    settings.gateway_backends_file = args.config
    logging_service.initialize(level=args.log_level.upper())
    logger.info(f"Starting gateway on {args.host}:{args.port}")
    uvicorn.run(create_app(), host=args.host, port=args.port, log_level=args.log_level.lower())
    return 0


def main(argv: Optional[List[str]] = None) -> int:
    """Console script entry point.

    Args:
        argv: Arguments without the program name; defaults to ``sys.argv[1:]``.

    Returns:
        Exit status.
    """
    args = build_parser().parse_args(argv)
    if args.command_name == "test":
        return run_test(args)
    return run_serve(args)


if __name__ == "__main__":  # pragma: no cover
    sys.exit(main())
