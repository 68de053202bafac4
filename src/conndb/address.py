"""Multiserver address syntax: validation and construction.

An address is one or more protocols separated by ``;``. Each protocol is
a chain of parts separated by ``~`` (transport first, then transforms),
and each part is a name followed by ``:``-separated arguments:

    net:staltz.com:8008~noauth
    net:1.2.3.4:8008~shs:dABVXEERk+yJSzdrDRUfF8R6FlXG7h9PaXKXlt8ma78=

Inside an argument, ``!`` escapes the next character so separators can
appear literally.
"""

import re

_NAME_RE = re.compile(r"^[A-Za-z][A-Za-z0-9_-]*$")
_SEPARATORS = frozenset(";~:")
_ESCAPE = "!"

_FEED_SIGIL = "@"
_FEED_SUFFIX = ".ed25519"


def _split_unescaped(text: str, sep: str) -> list[str] | None:
    """Split on ``sep`` outside escapes. None when an escape is dangling."""
    pieces: list[str] = []
    current: list[str] = []
    escaped = False
    for ch in text:
        if escaped:
            current.append(_ESCAPE + ch)
            escaped = False
        elif ch == _ESCAPE:
            escaped = True
        elif ch == sep:
            pieces.append("".join(current))
            current = []
        else:
            current.append(ch)
    if escaped:
        return None
    pieces.append("".join(current))
    return pieces


def _check_part(part: str) -> bool:
    fields = _split_unescaped(part, ":")
    if not fields or not _NAME_RE.match(fields[0]):
        return False
    for arg in fields[1:]:
        if not arg:
            return False
        # Unescaped separators were consumed by the splits above
        unescaped = re.sub(r"!.", "", arg)
        if _SEPARATORS & set(unescaped):
            return False
    return True


def check(address: object) -> bool:
    """Return True if ``address`` is a syntactically valid multiserver address."""
    if not isinstance(address, str) or not address:
        return False
    if any(ch.isspace() for ch in address):
        return False
    protocols = _split_unescaped(address, ";")
    if protocols is None:
        return False
    for protocol in protocols:
        parts = _split_unescaped(protocol, "~")
        if parts is None or not all(parts):
            return False
        if not all(_check_part(part) for part in parts):
            return False
    return True


def feed_id_to_key(feed_id: str) -> str:
    """Strip the ``@`` sigil and ``.ed25519`` suffix from a feed id."""
    key = feed_id
    if key.startswith(_FEED_SIGIL):
        key = key[len(_FEED_SIGIL) :]
    if key.endswith(_FEED_SUFFIX):
        key = key[: -len(_FEED_SUFFIX)]
    return key


def to_multiserver_address(host: str, port: int | str, key: str) -> str:
    """Build a ``net`` + ``shs`` address from legacy host/port/key fields.

    Raises ValueError when any component is missing or the result is not
    a valid address.
    """
    if not host or port in (None, "") or not key:
        raise ValueError("host, port and key are all required")
    address = f"net:{host}:{port}~shs:{feed_id_to_key(key)}"
    if not check(address):
        raise ValueError(f"cannot build a valid address from {host!r}:{port!r}")
    return address
