"""Shared fixtures: store factory with guaranteed close()."""

import pytest

from conndb import ConnDB


@pytest.fixture
async def make_db(tmp_path):
    """Factory: create a ConnDB (default dir tmp_path, write_timeout 0)."""
    created: list[ConnDB] = []

    def _make(directory=None, **kwargs) -> ConnDB:
        kwargs.setdefault("write_timeout", 0)
        db = ConnDB(directory if directory is not None else tmp_path, **kwargs)
        created.append(db)
        return db

    yield _make
    for db in created:
        await db.close()
