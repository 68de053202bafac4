"""Self-healing JSON codec for conn.json.

A state file cut short or padded with garbage by an interrupted write
should not take the store down. decode() trims up to MAX_TRIM - 1
trailing characters looking for a parseable object, and gives up with an
empty mapping rather than raising.
"""

import json
from collections.abc import Mapping
from typing import Any

import structlog

from .errors import CorruptionError

logger = structlog.get_logger()

MAX_TRIM = 10


def encode(data: Mapping[str, Any]) -> bytes:
    """Serialize a mapping as indented UTF-8 JSON."""
    return json.dumps(data, indent=2).encode("utf-8")


def _parse_object(text: str) -> dict[str, Any]:
    try:
        value = json.loads(text)
    except ValueError as e:
        raise CorruptionError(str(e)) from e
    if not isinstance(value, dict):
        raise CorruptionError(f"expected a JSON object, got {type(value).__name__}")
    return value


def decode(data: bytes | str | None) -> dict[str, Any]:
    """Parse serialized state, healing trailing corruption. Never raises."""
    if not data:
        return {}
    text = data.decode("utf-8", errors="replace") if isinstance(data, bytes) else data
    found_corruption = False
    for trim in range(MAX_TRIM):
        candidate = text[: len(text) - trim] if trim else text
        try:
            result = _parse_object(candidate)
        except CorruptionError:
            if not found_corruption:
                found_corruption = True
                logger.warning("Found corrupted state, attempting to heal it")
            continue
        if found_corruption:
            logger.info("Healed corrupted state by trimming %d characters", trim)
        return result
    logger.error("Failed to heal corrupted state, starting empty")
    return {}
