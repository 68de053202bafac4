"""Exception hierarchy for conndb.

Validation errors are raised synchronously to the caller of the offending
operation. PersistenceError surfaces once, through ConnDB.loaded(), when
the startup load fails. CorruptionError never leaves the codec.
"""


class ConnDBError(Exception):
    """Base class for all conndb errors."""


class InvalidAddressError(ConnDBError, ValueError):
    """The given address is not a valid multiserver address."""


class InvalidRecordError(ConnDBError, ValueError):
    """The given connection data is not a valid address record."""


class MigrationError(ConnDBError):
    """A single legacy entry could not be migrated."""


class PersistenceError(ConnDBError, OSError):
    """Reading or writing the state file failed."""


class ClosedError(ConnDBError, RuntimeError):
    """The store was closed and can no longer be used."""


class CorruptionError(ConnDBError):
    """Serialized state could not be parsed (codec-internal)."""
