"""One-time migration from the legacy gossip.json list format.

Legacy entries are flat objects carrying their address inline (or only
host/port/key, for very old files). The current format is keyed by
address, so migration pulls the address out of each entry.
"""

import json
from collections.abc import Mapping
from typing import Any

import structlog

from .address import check, to_multiserver_address
from .errors import MigrationError

logger = structlog.get_logger()

_CopyError = (TypeError, ValueError, RecursionError)


def _derive_address(entry: Mapping[str, Any]) -> str:
    address = entry.get("address")
    if address:
        if not isinstance(address, str):
            raise MigrationError(f"field 'address' should be a string, got {address!r}")
        return address
    try:
        return to_multiserver_address(entry.get("host"), entry.get("port"), entry.get("key"))
    except ValueError as e:
        raise MigrationError(f'Cannot migrate entry without field "address": {e}') from e


def migrate_one(entry: object) -> tuple[str, dict[str, Any]]:
    """Convert one legacy entry into an (address, record) pair.

    Raises MigrationError when no address can be derived or the entry is
    not plain JSON data.
    """
    if not entry or not isinstance(entry, Mapping):
        raise MigrationError("Cannot migrate empty or non-object entry")
    try:
        copy = json.loads(json.dumps(entry))
    except _CopyError as e:
        raise MigrationError("Cannot migrate entry that is not serializable") from e

    address = _derive_address(copy)
    if not check(address):
        raise MigrationError(f"Cannot migrate entry with invalid address {address!r}")
    copy.pop("address", None)
    return address, copy


def migrate_many(entries: object) -> dict[str, dict[str, Any]]:
    """Migrate a legacy list, skipping entries that fail."""
    if not isinstance(entries, list):
        return {}

    result: dict[str, dict[str, Any]] = {}
    for index, entry in enumerate(entries):
        try:
            address, record = migrate_one(entry)
        except MigrationError as e:
            logger.warning("Skipping legacy entry %d: %s", index, e)
            continue
        result[address] = record
    logger.info("Migrated %d of %d legacy entries", len(result), len(entries))
    return result
