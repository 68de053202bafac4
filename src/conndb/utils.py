"""Shared utility functions used across conndb modules.

Provides:
  - conndb_dir(): resolve the state directory from CONNDB_DIR env var.
  - now_ms(): wall-clock milliseconds since the epoch.
  - atomic_write_bytes(): crash-safe file writes via temp+rename.
  - task_done_callback(): log unhandled exceptions from background asyncio tasks.
"""

import asyncio
import contextlib
import os
import tempfile
import time
from pathlib import Path

import structlog

logger = structlog.get_logger()

CONNDB_DIR_ENV = "CONNDB_DIR"


def conndb_dir() -> Path:
    """Resolve state directory from CONNDB_DIR env var or default ~/.ssb."""
    raw = os.environ.get(CONNDB_DIR_ENV, "")
    return Path(raw) if raw else Path.home() / ".ssb"


def now_ms() -> int:
    return int(time.time() * 1000)


def atomic_write_bytes(path: Path, data: bytes) -> None:
    """Write bytes to a file atomically.

    Writes to a temporary file in the same directory, then renames it
    to the target path. Readers see either the old or the new content,
    never a partial write.
    """
    path.parent.mkdir(parents=True, exist_ok=True)

    # Same directory keeps the rename on one filesystem
    fd, tmp_path = tempfile.mkstemp(
        dir=str(path.parent), suffix=".tmp", prefix=f".{path.name}."
    )
    try:
        with os.fdopen(fd, "wb") as f:
            f.write(data)
            f.flush()
            os.fsync(f.fileno())
        os.replace(tmp_path, str(path))
    except BaseException:
        with contextlib.suppress(OSError):
            os.unlink(tmp_path)
        raise


def task_done_callback(task: asyncio.Task[None]) -> None:
    """Log unhandled exceptions from background asyncio tasks.

    Attach to any fire-and-forget task via ``task.add_done_callback(task_done_callback)``.
    Suppresses CancelledError (normal shutdown).
    """
    if task.cancelled():
        return
    exc = task.exception()
    if exc is not None:
        logger.error("Background task %s failed", task.get_name(), exc_info=exc)
