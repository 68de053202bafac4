"""conndb: durable store of peer addresses and connection metadata.

Public API: ConnDB (the store), AddressRecord/Stats (record model),
ABSENT (field-removal sentinel), ChangeEvent/ChangeType (listen() events),
and the error classes.
"""

__version__ = "0.1.0"

from .errors import (
    ClosedError,
    ConnDBError,
    InvalidAddressError,
    InvalidRecordError,
    MigrationError,
    PersistenceError,
)
from .notifier import ChangeEvent, ChangeType, Subscription
from .record import ABSENT, AddressRecord, Stats
from .store import ConnDB

__all__ = [
    "ABSENT",
    "AddressRecord",
    "ChangeEvent",
    "ChangeType",
    "ClosedError",
    "ConnDB",
    "ConnDBError",
    "InvalidAddressError",
    "InvalidRecordError",
    "MigrationError",
    "PersistenceError",
    "Stats",
    "Subscription",
    "__version__",
]
