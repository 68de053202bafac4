"""Shared fixtures for integration tests.

Provide helpers that lay down conn.json / gossip.json in a temp state
directory before a store is constructed against it.
"""

import json
from pathlib import Path

import pytest


@pytest.fixture
def write_conn_json(tmp_path):
    """Factory: write raw bytes or a mapping to conn.json."""

    def _write(content: dict | bytes) -> Path:
        path = tmp_path / "conn.json"
        if isinstance(content, bytes):
            path.write_bytes(content)
        else:
            path.write_text(json.dumps(content, indent=2))
        return path

    return _write


@pytest.fixture
def write_gossip_json(tmp_path):
    """Factory: write a legacy gossip.json (list or raw text)."""

    def _write(content: list | str) -> Path:
        path = tmp_path / "gossip.json"
        path.write_text(content if isinstance(content, str) else json.dumps(content))
        return path

    return _write


@pytest.fixture
def read_conn_json(tmp_path):
    """Read conn.json back as a mapping."""

    def _read() -> dict:
        return json.loads((tmp_path / "conn.json").read_text(encoding="utf-8"))

    return _read
