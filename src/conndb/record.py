"""AddressRecord: per-address connection metadata.

The persisted shape is an open JSON object. Well-known fields get typed
attributes; everything else round-trips through ``extra`` untouched.

Serialization is sparse: None fields are omitted from ``to_dict()``.
Extra values are copied through JSON on construction and stored frozen
(mappings as read-only proxies, lists as tuples), so a record never
shares mutable state with its caller.

Key names:
  - AddressRecord, Stats: frozen dataclasses with from_dict()/to_dict().
  - ABSENT: sentinel that removes a field when merged.
  - merge(): shallow merge of a partial mapping over a record.
"""

import json
from collections.abc import Mapping
from dataclasses import dataclass, field
from types import MappingProxyType
from typing import Any

from .errors import InvalidRecordError


class _Absent:
    """Marker type for ABSENT."""

    _instance: "_Absent | None" = None

    def __new__(cls) -> "_Absent":
        if cls._instance is None:
            cls._instance = super().__new__(cls)
        return cls._instance

    def __repr__(self) -> str:
        return "ABSENT"

    def __bool__(self) -> bool:
        return False


ABSENT: Any = _Absent()


def _is_number(value: object) -> bool:
    return isinstance(value, (int, float)) and not isinstance(value, bool)


def _is_integral(value: object) -> bool:
    if isinstance(value, float):
        return value.is_integer()
    return _is_number(value)


def _check_mapping(data: object, what: str) -> Mapping[str, Any]:
    if not isinstance(data, Mapping):
        raise InvalidRecordError(f"{what} should be a mapping, got {type(data).__name__}")
    for key in data:
        if not isinstance(key, str):
            raise InvalidRecordError(f"{what} keys must be strings, got {key!r}")
    return data


def _number_field(data: Mapping[str, Any], name: str) -> float | int | None:
    value = data.get(name)
    if value is None:
        return None
    if not _is_number(value):
        raise InvalidRecordError(f"field {name!r} should be a number, got {value!r}")
    return value


def _str_field(data: Mapping[str, Any], name: str) -> str | None:
    value = data.get(name)
    if value is None:
        return None
    if not isinstance(value, str):
        raise InvalidRecordError(f"field {name!r} should be a string, got {value!r}")
    return value


_CopyError = (TypeError, ValueError, RecursionError)


def _freeze(value: Any) -> Any:
    if isinstance(value, dict):
        return MappingProxyType({k: _freeze(v) for k, v in value.items()})
    if isinstance(value, list):
        return tuple(_freeze(v) for v in value)
    return value


def _thaw(value: Any) -> Any:
    if isinstance(value, Mapping):
        return {k: _thaw(v) for k, v in value.items()}
    if isinstance(value, (list, tuple)):
        return [_thaw(v) for v in value]
    return value


def _frozen_extra(extra: object, what: str) -> Mapping[str, Any]:
    """Deep-copy extra fields through JSON and freeze the copy."""
    mapping = _check_mapping(extra, what)
    try:
        copy = json.loads(json.dumps(_thaw(mapping)))
    except _CopyError as e:
        raise InvalidRecordError(f"{what} contains a value that is not plain JSON data: {e}") from e
    return _freeze(copy)


_STATS_FIELDS = ("mean", "stdev", "count", "sum", "sqsum")


@dataclass(frozen=True, slots=True)
class Stats:
    """Running statistics for a latency series (ping or connection duration)."""

    mean: float | None = None
    stdev: float | None = None
    count: int | None = None
    sum: float | None = None
    sqsum: float | None = None
    extra: Mapping[str, Any] = field(default_factory=dict)

    def __post_init__(self) -> None:
        object.__setattr__(self, "extra", _frozen_extra(self.extra, "statistics"))

    @classmethod
    def from_dict(cls, data: object) -> "Stats":
        mapping = _check_mapping(data, "statistics")
        return cls(
            **{name: _number_field(mapping, name) for name in _STATS_FIELDS},
            extra={k: v for k, v in mapping.items() if k not in _STATS_FIELDS},
        )

    def to_dict(self) -> dict[str, Any]:
        d: dict[str, Any] = {}
        for name in _STATS_FIELDS:
            value = getattr(self, name)
            if value is not None:
                d[name] = value
        d.update(_thaw(self.extra))
        return d


# Python attribute -> wire key
_WIRE_NAMES: dict[str, str] = {
    "birth": "birth",
    "key": "key",
    "source": "source",
    "failure": "failure",
    "state_change": "stateChange",
    "duration": "duration",
    "ping": "ping",
}
_KNOWN_KEYS = frozenset(_WIRE_NAMES.values())


@dataclass(frozen=True, slots=True)
class AddressRecord:
    """Connection metadata stored for one address."""

    birth: int | None = None  # ms since epoch, set once
    key: str | None = None  # peer identity, e.g. "@abc=.ed25519"
    source: str | None = None  # provenance tag: "stored", "pub", "local", ...
    failure: float | None = None
    state_change: float | None = None
    duration: Stats | None = None
    ping: Stats | None = None
    extra: Mapping[str, Any] = field(default_factory=dict)

    def __post_init__(self) -> None:
        object.__setattr__(self, "extra", _frozen_extra(self.extra, "connection data"))

    @classmethod
    def from_dict(cls, data: object) -> "AddressRecord":
        """Build a record from its wire mapping, validating well-known fields."""
        mapping = _check_mapping(data, "connection data")
        birth = mapping.get("birth")
        if birth is not None and not _is_integral(birth):
            raise InvalidRecordError(f"field 'birth' should be an integer, got {birth!r}")
        duration = mapping.get("duration")
        ping = mapping.get("ping")
        return cls(
            birth=int(birth) if birth is not None else None,
            key=_str_field(mapping, "key"),
            source=_str_field(mapping, "source"),
            failure=_number_field(mapping, "failure"),
            state_change=_number_field(mapping, "stateChange"),
            duration=Stats.from_dict(duration) if duration is not None else None,
            ping=Stats.from_dict(ping) if ping is not None else None,
            extra={k: v for k, v in mapping.items() if k not in _KNOWN_KEYS},
        )

    def to_dict(self) -> dict[str, Any]:
        """Sparse wire mapping: None fields are omitted."""
        d: dict[str, Any] = {}
        for attr, wire in _WIRE_NAMES.items():
            value = getattr(self, attr)
            if value is None:
                continue
            d[wire] = value.to_dict() if isinstance(value, Stats) else value
        d.update(_thaw(self.extra))
        return d


def as_mapping(data: object) -> Mapping[str, Any]:
    """Accept either an AddressRecord or a wire mapping."""
    if isinstance(data, AddressRecord):
        return data.to_dict()
    return _check_mapping(data, "connection data")


def merge(previous: AddressRecord | None, partial: Mapping[str, Any]) -> AddressRecord:
    """Shallow-merge ``partial`` over ``previous``.

    Keys set to ABSENT are removed. Nested stats are replaced, not merged.
    """
    merged = previous.to_dict() if previous is not None else {}
    for key, value in partial.items():
        if value is ABSENT:
            merged.pop(key, None)
        else:
            merged[key] = value
    return AddressRecord.from_dict(merged)
