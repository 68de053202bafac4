"""Application entry point: logging setup and CLI dispatch.

``main()`` parses CLI flags (cli.py), applies them to the environment,
configures logging, and runs the selected inspection command against
the store.
"""

import argparse
import asyncio
import json
import logging
import os
import sys

import structlog

from . import __version__


def _short_name_processor(
    _logger: structlog.types.WrappedLogger,
    _method_name: str,
    event_dict: structlog.types.EventDict,
) -> structlog.types.EventDict:
    """Strip the 'conndb.' prefix, cap at 20 chars."""
    name = event_dict.get("_record", {}).get("name", "")
    if not name:
        name = event_dict.get("logger_name", "")
    if name.startswith("conndb."):
        name = name[len("conndb.") :]
    event_dict["short_name"] = name[:20]
    return event_dict


def setup_logging(log_level: str) -> None:
    """Configure structured, colored logging for interactive CLI use."""
    numeric_level = getattr(logging, log_level, None)
    if not isinstance(numeric_level, int):
        numeric_level = logging.INFO

    structlog.configure(
        processors=[
            structlog.contextvars.merge_contextvars,
            structlog.stdlib.filter_by_level,
            structlog.stdlib.add_log_level,
            structlog.stdlib.add_logger_name,
            structlog.stdlib.PositionalArgumentsFormatter(),
            structlog.processors.TimeStamper(fmt="%H:%M:%S"),
            structlog.processors.StackInfoRenderer(),
            structlog.processors.format_exc_info,
            _short_name_processor,
            structlog.stdlib.ProcessorFormatter.wrap_for_formatter,
        ],
        wrapper_class=structlog.stdlib.BoundLogger,
        context_class=dict,
        logger_factory=structlog.stdlib.LoggerFactory(),
        cache_logger_on_first_use=True,
    )

    root = logging.getLogger()
    root.handlers.clear()
    handler = logging.StreamHandler()
    handler.setFormatter(
        structlog.stdlib.ProcessorFormatter(
            processor=structlog.dev.ConsoleRenderer(
                colors=sys.stderr.isatty(),
                pad_event=40,
            ),
            foreign_pre_chain=[
                structlog.stdlib.add_log_level,
                structlog.stdlib.add_logger_name,
                structlog.processors.TimeStamper(fmt="%H:%M:%S"),
            ],
        )
    )
    root.addHandler(handler)
    root.setLevel(numeric_level)


async def _run_command(args: argparse.Namespace) -> int:
    from .config import Config
    from .errors import ConnDBError
    from .store import ConnDB

    logger = structlog.get_logger()
    db = ConnDB.from_config(Config())
    try:
        await db.loaded()
        if args.command == "list":
            out = {address: record.to_dict() for address, record in db.entries()}
        elif args.command == "get":
            record = db.get(args.address)
            if record is None:
                print(f"Error: no entry for {args.address}", file=sys.stderr)
                return 1
            out = record.to_dict()
        elif args.command == "lookup":
            out = db.get_address_for_id(args.feed_id)
            if out is None:
                print(f"Error: no address for {args.feed_id}", file=sys.stderr)
                return 1
        else:
            out = db.delete(args.address)
    except ConnDBError as e:
        logger.debug("Command %s failed", args.command, exc_info=True)
        print(f"Error: {e}", file=sys.stderr)
        return 1
    finally:
        await db.close()

    print(json.dumps(out, indent=2))
    return 0


def main(argv: list[str] | None = None) -> int:
    """Main entry point: parse flags, set up logging, run the command."""
    from .cli import apply_args_to_env, parse_args
    from .config import DEFAULT_LOG_LEVEL

    args = parse_args(argv)
    if args.version:
        print(f"conndb {__version__}")
        return 0

    apply_args_to_env(args)
    setup_logging(os.environ.get("CONNDB_LOG_LEVEL", DEFAULT_LOG_LEVEL).upper())

    if args.command is None:
        print("Error: a command is required (list, get, lookup, delete)", file=sys.stderr)
        return 2

    try:
        return asyncio.run(_run_command(args))
    except ValueError as e:
        print(f"Error: {e}", file=sys.stderr)
        return 1


if __name__ == "__main__":
    sys.exit(main())
