"""Persistence gateway: whole-file reads and atomic whole-file writes.

Adds no atomicity of its own; writes go through atomic_write_bytes, so a
reader observes either the previous or the new complete content.
Errors propagate as OSError.
"""

import asyncio
from pathlib import Path

import aiofiles

from .utils import atomic_write_bytes


class StateFile:
    """A single file read and written as a unit."""

    def __init__(self, path: Path) -> None:
        self.path = path

    def __repr__(self) -> str:
        return f"StateFile({str(self.path)!r})"

    def exists(self) -> bool:
        return self.path.exists()

    async def read_all(self) -> bytes:
        async with aiofiles.open(self.path, "rb") as f:
            return await f.read()

    def read_all_sync(self) -> bytes:
        return self.path.read_bytes()

    async def write_all(self, data: bytes) -> None:
        await asyncio.to_thread(atomic_write_bytes, self.path, data)

    def write_all_sync(self, data: bytes) -> None:
        atomic_write_bytes(self.path, data)
