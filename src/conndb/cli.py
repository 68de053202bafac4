"""Command-line argument parsing for the conndb inspection tool.

Defines CLI flags and applies precedence: CLI flag > env var > .env > default.
Called by main.py before Config instantiation; sets os.environ for any
explicitly provided flags so Config reads the overridden values.
"""

import argparse
import os
from pathlib import Path

_LOG_LEVELS = ("DEBUG", "INFO", "WARNING", "ERROR")


def _non_negative_int(value: str) -> int:
    """Argparse type for non-negative integers."""
    result = int(value)
    if result < 0:
        msg = f"must be non-negative, got {value}"
        raise argparse.ArgumentTypeError(msg)
    return result


def parse_args(argv: list[str] | None = None) -> argparse.Namespace:
    """Parse CLI arguments and return namespace.

    Args:
        argv: Argument list (defaults to sys.argv[1:]). Pass explicitly for testing.
    """
    parser = argparse.ArgumentParser(
        prog="conndb",
        description="Inspect the peer address store (conn.json)",
    )

    parser.add_argument(
        "--version",
        action="store_true",
        help="show version and exit",
    )
    parser.add_argument(
        "-v",
        "--verbose",
        action="store_true",
        help="enable debug logging (env: CONNDB_LOG_LEVEL=DEBUG)",
    )
    parser.add_argument(
        "--log-level",
        choices=_LOG_LEVELS,
        metavar="LEVEL",
        help="logging level: DEBUG, INFO, WARNING, ERROR (env: CONNDB_LOG_LEVEL)",
    )
    parser.add_argument(
        "--config-dir",
        type=Path,
        metavar="DIR",
        help="state directory (default: ~/.ssb, env: CONNDB_DIR)",
    )
    parser.add_argument(
        "--write-timeout",
        type=_non_negative_int,
        metavar="MS",
        help="debounce delay before writing, 0=immediate (default: 2000, env: CONNDB_WRITE_TIMEOUT)",
    )

    sub = parser.add_subparsers(dest="command", metavar="COMMAND")
    sub.add_parser("list", help="print every address and its data")
    get_cmd = sub.add_parser("get", help="print the data for one address")
    get_cmd.add_argument("address")
    lookup_cmd = sub.add_parser("lookup", help="find the address for a feed id")
    lookup_cmd.add_argument("feed_id")
    delete_cmd = sub.add_parser("delete", help="remove one address")
    delete_cmd.add_argument("address")

    return parser.parse_args(argv)


# Mapping: argparse dest → environment variable name
_FLAG_TO_ENV: list[tuple[str, str]] = [
    ("config_dir", "CONNDB_DIR"),
    ("write_timeout", "CONNDB_WRITE_TIMEOUT"),
]


def apply_args_to_env(args: argparse.Namespace) -> None:
    """Set environment variables from explicitly provided CLI flags.

    Call BEFORE Config instantiation to ensure CLI flags take precedence.
    Only sets env vars for flags that were explicitly provided (not None).
    """
    # --verbose always wins over --log-level
    if args.verbose:
        os.environ["CONNDB_LOG_LEVEL"] = "DEBUG"
    elif args.log_level is not None:
        os.environ["CONNDB_LOG_LEVEL"] = args.log_level.upper()

    for attr, env_var in _FLAG_TO_ENV:
        value = getattr(args, attr)
        if value is None:
            continue
        if isinstance(value, Path):
            os.environ[env_var] = str(value.expanduser().resolve())
        else:
            os.environ[env_var] = str(value)
