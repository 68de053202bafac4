"""Tests for conndb.state_persistence: debounced, coalesced writes."""

import asyncio
import json
from pathlib import Path

import pytest

from conndb.state_file import StateFile
from conndb.state_persistence import StatePersistence


class _Source:
    """Mutable state with a call counter for serialize_fn."""

    def __init__(self) -> None:
        self.value = 0
        self.calls = 0

    def serialize(self) -> bytes:
        self.calls += 1
        return json.dumps({"value": self.value}).encode()


def _read(path: Path) -> dict:
    return json.loads(path.read_text(encoding="utf-8"))


@pytest.fixture
def target(tmp_path: Path) -> Path:
    return tmp_path / "conn.json"


class TestDebounce:
    async def test_burst_coalesces_into_one_write(self, target: Path):
        source = _Source()
        persistence = StatePersistence(StateFile(target), source.serialize, delay=0.05)
        for i in range(1, 6):
            source.value = i
            persistence.schedule_save()
        assert persistence.pending
        assert not target.exists()

        await asyncio.sleep(0.3)
        assert persistence.write_count == 1
        assert source.calls == 1
        assert _read(target) == {"value": 5}
        assert not persistence.dirty

    async def test_zero_delay_writes_on_next_iteration(self, target: Path):
        source = _Source()
        persistence = StatePersistence(StateFile(target), source.serialize, delay=0)
        persistence.schedule_save()
        await persistence.flush()
        assert persistence.write_count == 1
        assert _read(target) == {"value": 0}

    def test_no_event_loop_writes_immediately(self, target: Path):
        source = _Source()
        persistence = StatePersistence(StateFile(target), source.serialize, delay=10)
        source.value = 7
        persistence.schedule_save()
        assert persistence.write_count == 1
        assert _read(target) == {"value": 7}


class TestFlushAndClose:
    async def test_flush_writes_pending_state_now(self, target: Path):
        source = _Source()
        persistence = StatePersistence(StateFile(target), source.serialize, delay=60)
        source.value = 3
        persistence.schedule_save()
        await persistence.flush()
        assert not persistence.pending
        assert persistence.write_count == 1
        assert _read(target) == {"value": 3}

    async def test_flush_when_clean_does_nothing(self, target: Path):
        persistence = StatePersistence(StateFile(target), _Source().serialize, delay=60)
        await persistence.flush()
        assert persistence.write_count == 0
        assert not target.exists()

    async def test_close_cancels_timer_and_writes_once(self, target: Path):
        source = _Source()
        persistence = StatePersistence(StateFile(target), source.serialize, delay=0.05)
        persistence.schedule_save()
        await persistence.close()
        await asyncio.sleep(0.15)
        assert persistence.write_count == 1

    async def test_close_writes_even_when_clean(self, target: Path):
        persistence = StatePersistence(StateFile(target), _Source().serialize, delay=60)
        await persistence.close()
        assert persistence.write_count == 1
        assert _read(target) == {"value": 0}

    async def test_before_write_is_awaited(self, target: Path):
        order: list[str] = []

        async def before() -> None:
            order.append("before")

        def serialize() -> bytes:
            order.append("serialize")
            return b"{}"

        persistence = StatePersistence(StateFile(target), serialize, delay=0, before_write=before)
        persistence.schedule_save()
        await persistence.flush()
        assert order == ["before", "serialize"]


class TestFailures:
    async def test_write_error_is_logged_and_retried_next_cycle(self, tmp_path: Path):
        blocker = tmp_path / "blocker"
        blocker.write_text("not a directory")
        source = _Source()
        persistence = StatePersistence(
            StateFile(blocker / "conn.json"), source.serialize, delay=0
        )
        persistence.schedule_save()
        await persistence.flush()
        assert persistence.write_count == 0
        assert persistence.dirty

    async def test_suspend_blocks_all_writes(self, target: Path):
        persistence = StatePersistence(StateFile(target), _Source().serialize, delay=0)
        persistence.suspend()
        persistence.schedule_save()
        assert not persistence.pending
        await persistence.close()
        assert persistence.write_count == 0
        assert not target.exists()
