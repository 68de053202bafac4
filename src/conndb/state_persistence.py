"""Debounced, atomic state persistence.

Provides coalesced write-back for the store:
  - schedule_save(): debounced save (delay resets on each call).
  - flush(): wait for in-flight writes, then save if dirty.
  - close(): like flush() but always writes once.
  - suspend(): stop all further writes (after a failed startup load).

The snapshot is serialized when the write actually happens, so a burst
of mutations inside one delay window produces a single write of the
latest state.
"""

import asyncio
from collections.abc import Awaitable, Callable

import structlog

from .state_file import StateFile
from .utils import task_done_callback

logger = structlog.get_logger()

_SaveError = (OSError, TypeError, ValueError)


class StatePersistence:
    """Debounced writer for one StateFile."""

    def __init__(
        self,
        state_file: StateFile,
        serialize_fn: Callable[[], bytes],
        delay: float,
        before_write: Callable[[], Awaitable[None]] | None = None,
    ) -> None:
        self._state_file = state_file
        self._serialize_fn = serialize_fn
        self._delay = delay
        self._before_write = before_write
        self._save_timer: asyncio.TimerHandle | None = None
        self._write_lock = asyncio.Lock()
        self._tasks: set[asyncio.Task[None]] = set()
        self._dirty = False
        self._suspended = False
        self.write_count = 0

    @property
    def dirty(self) -> bool:
        return self._dirty

    @property
    def pending(self) -> bool:
        """True while a debounced save is armed but has not fired."""
        return self._save_timer is not None

    def schedule_save(self) -> None:
        """Schedule debounced save (resets the delay on each call)."""
        self._dirty = True
        if self._suspended:
            return
        self._cancel_timer()
        try:
            loop = asyncio.get_running_loop()
        except RuntimeError:
            self._save_sync()  # No event loop -> immediate
            return
        self._save_timer = loop.call_later(self._delay, self._spawn_save)

    def suspend(self) -> None:
        """Disable durable writes for the rest of this instance's life."""
        self._suspended = True
        self._cancel_timer()

    def _cancel_timer(self) -> None:
        if self._save_timer is not None:
            self._save_timer.cancel()
            self._save_timer = None

    def _spawn_save(self) -> None:
        self._save_timer = None
        task = asyncio.create_task(self._save(), name=f"save:{self._state_file.path.name}")
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)
        task.add_done_callback(task_done_callback)

    async def _save(self, force: bool = False) -> None:
        if self._before_write is not None:
            await self._before_write()
        async with self._write_lock:
            if self._suspended or not (self._dirty or force):
                return
            try:
                data = self._serialize_fn()
                # Mutations during the write mark the state dirty again
                self._dirty = False
                await self._state_file.write_all(data)
            except _SaveError:
                self._dirty = True
                logger.exception("Failed to save state to %s", self._state_file.path)
                return
            self.write_count += 1
            logger.debug("Saved state to %s", self._state_file.path)

    def _save_sync(self) -> None:
        try:
            data = self._serialize_fn()
            self._state_file.write_all_sync(data)
        except _SaveError:
            logger.exception("Failed to save state to %s", self._state_file.path)
            return
        self._dirty = False
        self.write_count += 1

    async def _drain(self) -> None:
        self._cancel_timer()
        if self._tasks:
            await asyncio.gather(*self._tasks, return_exceptions=True)

    async def flush(self) -> None:
        """Force an immediate save if anything changed since the last one."""
        await self._drain()
        if self._dirty:
            await self._save()

    async def close(self) -> None:
        """Cancel the pending save and write the current state once."""
        await self._drain()
        await self._save(force=True)
