"""ConnDB: durable address -> connection-data store.

Owns the in-memory map, the mutation/query API, the debounced write-back
to conn.json, and the change-event stream.

Startup runs once per instance, as a side effect of construction:
  1. conn.json exists       -> read it through the self-healing codec.
  2. only gossip.json exists -> migrate the legacy list, write conn.json.
  3. neither exists         -> write an empty conn.json.
With a running event loop this happens in a background task and
construction returns immediately; loaded() resolves when it finishes.
Mutations made before that commit against the (still empty) map, and
entries read from disk overwrite them on conflict.

If startup I/O fails, loaded() raises PersistenceError, the map stays
empty, and durable writes are suspended so an empty map never replaces
a file that merely could not be read.

Key class: ConnDB.
"""

import asyncio
import dataclasses
import json
from collections.abc import Callable, Iterator, Mapping
from enum import Enum
from pathlib import Path
from typing import TYPE_CHECKING, Any

import structlog

from .address import check
from .codec import decode, encode
from .errors import ClosedError, InvalidAddressError, InvalidRecordError, PersistenceError
from .migration import migrate_many
from .notifier import ChangeEvent, ChangeNotifier, ChangeType, Subscription
from .record import AddressRecord, as_mapping, merge
from .state_file import StateFile
from .state_persistence import StatePersistence
from .utils import now_ms, task_done_callback

if TYPE_CHECKING:
    from .config import Config

logger = structlog.get_logger()

MODERN_FILENAME = "conn.json"
LEGACY_FILENAME = "gossip.json"
DEFAULT_WRITE_TIMEOUT = 2000  # ms

_LoadError = (OSError, ValueError)

PartialRecord = Mapping[str, Any] | AddressRecord
RecordUpdater = Callable[[AddressRecord], PartialRecord]


class LoadState(str, Enum):
    START = "start"
    NO_FILE_FOUND = "no_file_found"
    LEGACY_ONLY = "legacy_only"
    MODERN_FOUND = "modern_found"
    READY = "ready"
    FAILED = "failed"


class ConnDB:
    """Keyed store of peer addresses and their connection metadata."""

    def __init__(
        self,
        directory: Path | str,
        *,
        write_timeout: float = DEFAULT_WRITE_TIMEOUT,
        check_address: Callable[[str], bool] = check,
        clock: Callable[[], int] = now_ms,
    ) -> None:
        if (
            not isinstance(write_timeout, (int, float))
            or isinstance(write_timeout, bool)
            or write_timeout < 0
        ):
            raise ValueError(f"write_timeout must be a non-negative number, got {write_timeout!r}")

        self.directory = Path(directory)
        self._state_file = StateFile(self.directory / MODERN_FILENAME)
        self._legacy_file = StateFile(self.directory / LEGACY_FILENAME)
        self._check_address = check_address
        self._clock = clock

        self._map: dict[str, AddressRecord] = {}
        self._notifier = ChangeNotifier()
        self._persistence = StatePersistence(
            self._state_file,
            self._serialize,
            write_timeout / 1000,
            before_write=self._wait_loaded,
        )
        self._closed = False

        self.load_state = LoadState.START
        self._load_error: PersistenceError | None = None
        self._load_task: asyncio.Task[None] | None = None
        try:
            loop = asyncio.get_running_loop()
        except RuntimeError:
            asyncio.run(self._init())  # No event loop -> load inline
        else:
            self._load_task = loop.create_task(self._init(), name=f"load:{self.directory}")
            self._load_task.add_done_callback(task_done_callback)

    @classmethod
    def from_config(cls, config: "Config") -> "ConnDB":
        return cls(config.config_dir, write_timeout=config.write_timeout)

    def __repr__(self) -> str:
        return f"ConnDB({str(self.directory)!r}, entries={len(self._map)}, state={self.load_state.value})"

    # ── Startup ──────────────────────────────────────────────────────────

    def _detect(self) -> LoadState:
        if self._state_file.exists():
            return LoadState.MODERN_FOUND
        if self._legacy_file.exists():
            return LoadState.LEGACY_ONLY
        return LoadState.NO_FILE_FOUND

    async def _init(self) -> None:
        self.load_state = self._detect()
        logger.debug("Loading %s: %s", self.directory, self.load_state.value)

        if self.load_state is LoadState.NO_FILE_FOUND:
            try:
                await self._state_file.write_all(encode({}))
            except OSError:
                logger.exception("Failed to create %s", self._state_file.path)
            self.load_state = LoadState.READY
            return

        try:
            if self.load_state is LoadState.LEGACY_ONLY:
                raw = await self._legacy_file.read_all()
                records = self._validate_entries(migrate_many(json.loads(raw)))
                await self._state_file.write_all(
                    encode({address: r.to_dict() for address, r in records.items()})
                )
            else:
                raw = await self._state_file.read_all()
                records = self._validate_entries(decode(raw))
        except _LoadError as e:
            self._fail(e)
            return

        self._map.update(records)
        self.load_state = LoadState.READY
        logger.info("Loaded %d addresses from %s", len(records), self.directory)

    def _validate_entries(self, raw: Mapping[str, Any]) -> dict[str, AddressRecord]:
        records: dict[str, AddressRecord] = {}
        for address, data in raw.items():
            if not self._check_address(address):
                logger.warning("Skipping stored entry with invalid address %r", address)
                continue
            try:
                records[address] = AddressRecord.from_dict(data)
            except InvalidRecordError as e:
                logger.warning("Skipping stored entry for %s: %s", address, e)
        return records

    def _fail(self, cause: Exception) -> None:
        source = self._legacy_file if self.load_state is LoadState.LEGACY_ONLY else self._state_file
        error = PersistenceError(f"Failed to load {source.path}: {cause}")
        error.__cause__ = cause
        self._load_error = error
        self.load_state = LoadState.FAILED
        self._persistence.suspend()
        logger.error("Failed to load %s, continuing with an empty store: %s", source.path, cause)

    async def _wait_loaded(self) -> None:
        if self._load_task is not None and not self._load_task.done():
            await asyncio.wait({self._load_task})

    # ── Internals ────────────────────────────────────────────────────────

    def _serialize(self) -> bytes:
        return encode({address: record.to_dict() for address, record in self._map.items()})

    def _ensure_open(self) -> None:
        if self._closed:
            raise ClosedError("This ConnDB instance is closed, create a new one.")

    def _validate_address(self, address: str) -> None:
        if not isinstance(address, str) or not self._check_address(address):
            raise InvalidAddressError(f"The given address is not a valid multiserver-address: {address!r}")

    def _with_birth(self, record: AddressRecord, previous: AddressRecord | None) -> AddressRecord:
        if previous is not None and previous.birth is not None:
            birth = previous.birth
        elif record.birth is not None:
            return record
        else:
            birth = self._clock()
        return dataclasses.replace(record, birth=birth)

    def _commit(self, address: str, record: AddressRecord, existed: bool) -> None:
        self._map[address] = record
        change = ChangeType.UPDATE if existed else ChangeType.INSERT
        self._notifier.notify(ChangeEvent(change, address))
        self._persistence.schedule_save()

    # ── Public API ───────────────────────────────────────────────────────

    def replace(self, address: str, data: PartialRecord) -> "ConnDB":
        """Set the whole record for ``address``, keeping only its birth."""
        self._ensure_open()
        self._validate_address(address)
        record = merge(None, as_mapping(data))

        previous = self._map.get(address)
        self._commit(address, self._with_birth(record, previous), existed=previous is not None)
        return self

    def set(self, address: str, data: PartialRecord) -> "ConnDB":
        """Shallow-merge ``data`` into the record for ``address``, inserting if needed.

        Fields set to ABSENT are removed.
        """
        self._ensure_open()
        self._validate_address(address)
        partial = as_mapping(data)

        previous = self._map.get(address)
        record = merge(previous, partial)
        self._commit(address, self._with_birth(record, previous), existed=previous is not None)
        return self

    def update(self, address: str, data: PartialRecord | RecordUpdater) -> "ConnDB":
        """Like set(), but only for addresses already present.

        ``data`` may be a function from the previous record to a partial
        record. It runs synchronously, so nothing can change the record
        between the read and the write.
        """
        self._ensure_open()
        self._validate_address(address)
        partial = None if callable(data) else as_mapping(data)

        previous = self._map.get(address)
        if previous is None:
            return self
        if partial is None:
            partial = as_mapping(data(previous))  # type: ignore[operator]

        record = merge(previous, partial)
        self._commit(address, self._with_birth(record, previous), existed=True)
        return self

    def get(self, address: str) -> AddressRecord | None:
        self._ensure_open()
        if not isinstance(address, str):
            return None
        return self._map.get(address)

    def has(self, address: str) -> bool:
        self._ensure_open()
        return isinstance(address, str) and address in self._map

    def get_address_for_id(self, feed_id: str) -> str | None:
        """Reverse lookup: the first address whose record ``key`` is ``feed_id``."""
        self._ensure_open()
        for address, record in self._map.items():
            if record.key == feed_id:
                return address
        return None

    def delete(self, address: str) -> bool:
        self._ensure_open()
        self._validate_address(address)
        if self._map.pop(address, None) is None:
            return False
        self._notifier.notify(ChangeEvent(ChangeType.DELETE, address))
        self._persistence.schedule_save()
        return True

    def entries(self) -> Iterator[tuple[str, AddressRecord]]:
        """Iterate over a snapshot of (address, record) pairs taken now."""
        self._ensure_open()
        return iter(list(self._map.items()))

    def listen(self, maxsize: int = 0) -> Subscription:
        """Subscribe to change events emitted from now on."""
        self._ensure_open()
        return self._notifier.listen(maxsize)

    async def loaded(self) -> None:
        """Wait for startup to finish. Raises PersistenceError if it failed."""
        self._ensure_open()
        if self._load_task is not None and not self._load_task.done():
            await asyncio.shield(self._load_task)
        if self._load_error is not None:
            raise self._load_error

    async def flush(self) -> None:
        """Write pending changes now instead of waiting for the debounce."""
        self._ensure_open()
        await self._persistence.flush()

    async def close(self) -> None:
        """Write the current state once and shut down. Safe to call twice."""
        if self._closed:
            return
        self._closed = True
        await self._persistence.close()
        self._notifier.close()
        logger.debug("Closed %s", self.directory)

    @property
    def closed(self) -> bool:
        return self._closed

    @property
    def write_count(self) -> int:
        """Number of successful debounced/final writes so far."""
        return self._persistence.write_count

    def __len__(self) -> int:
        self._ensure_open()
        return len(self._map)

    def __contains__(self, address: object) -> bool:
        return self.has(address)  # type: ignore[arg-type]
