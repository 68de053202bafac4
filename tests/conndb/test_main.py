"""Tests for the conndb entry point: command dispatch and logging setup."""

import json
import logging
import sys

import pytest
import structlog

from conndb import __version__
from conndb.config import Config
from conndb.main import main, setup_logging

ALICE = "net:staltz.com:8008~noauth"
ALICE_ID = "@dABVXEERk+yJSzdrDRUfF8R6FlXG7h9PaXKXlt8ma78=.ed25519"


@pytest.fixture(autouse=True)
def _isolated(monkeypatch, tmp_path):
    for var in ("CONNDB_DIR", "CONNDB_WRITE_TIMEOUT", "CONNDB_LOG_LEVEL"):
        monkeypatch.setenv(var, "placeholder")
        monkeypatch.delenv(var)
    monkeypatch.chdir(tmp_path)
    monkeypatch.setattr("conndb.main.setup_logging", lambda level: None)
    structlog.configure(logger_factory=structlog.PrintLoggerFactory(sys.stderr))
    yield
    structlog.reset_defaults()


@pytest.fixture
def state_dir(tmp_path):
    path = tmp_path / "state"
    path.mkdir()
    (path / "conn.json").write_text(
        json.dumps({ALICE: {"birth": 1, "key": ALICE_ID, "source": "stored"}})
    )
    return path


def _run(capsys, *argv: str) -> tuple[int, str, str]:
    code = main(list(argv))
    out, err = capsys.readouterr()
    return code, out, err


class TestCommands:
    def test_version(self, capsys):
        code, out, _ = _run(capsys, "--version")
        assert code == 0
        assert __version__ in out

    def test_missing_command(self, capsys):
        code, _, err = _run(capsys)
        assert code == 2
        assert "command is required" in err

    def test_list(self, capsys, state_dir):
        code, out, _ = _run(capsys, "--config-dir", str(state_dir), "list")
        assert code == 0
        assert json.loads(out) == {ALICE: {"birth": 1, "key": ALICE_ID, "source": "stored"}}

    def test_list_empty_dir_creates_state(self, capsys, tmp_path):
        code, out, _ = _run(capsys, "--config-dir", str(tmp_path / "fresh"), "list")
        assert code == 0
        assert json.loads(out) == {}
        assert (tmp_path / "fresh" / "conn.json").read_text() == "{}"

    def test_get(self, capsys, state_dir):
        code, out, _ = _run(capsys, "--config-dir", str(state_dir), "get", ALICE)
        assert code == 0
        assert json.loads(out)["source"] == "stored"

    def test_get_missing(self, capsys, state_dir):
        code, _, err = _run(
            capsys, "--config-dir", str(state_dir), "get", "net:nowhere:1~noauth"
        )
        assert code == 1
        assert "no entry" in err

    def test_lookup(self, capsys, state_dir):
        code, out, _ = _run(capsys, "--config-dir", str(state_dir), "lookup", ALICE_ID)
        assert code == 0
        assert json.loads(out) == ALICE

    def test_delete_persists(self, capsys, state_dir):
        code, out, _ = _run(capsys, "--config-dir", str(state_dir), "delete", ALICE)
        assert code == 0
        assert json.loads(out) is True
        assert json.loads((state_dir / "conn.json").read_text()) == {}

    def test_delete_invalid_address(self, capsys, state_dir):
        code, _, err = _run(capsys, "--config-dir", str(state_dir), "delete", "bogus")
        assert code == 1
        assert "multiserver-address" in err

    def test_log_level_defaults_match_config(self, capsys, monkeypatch, state_dir):
        levels: list[str] = []
        monkeypatch.setattr("conndb.main.setup_logging", levels.append)
        code, _, _ = _run(capsys, "--config-dir", str(state_dir), "list")
        assert code == 0
        assert levels == [Config().log_level] == ["INFO"]

    def test_bad_config(self, capsys, monkeypatch, state_dir):
        monkeypatch.setenv("CONNDB_WRITE_TIMEOUT", "soon")
        code, _, err = _run(capsys, "--config-dir", str(state_dir), "list")
        assert code == 1
        assert "CONNDB_WRITE_TIMEOUT" in err


@pytest.fixture
def _restore_logging():
    root = logging.getLogger()
    handlers, level = root.handlers[:], root.level
    yield
    root.handlers[:] = handlers
    root.setLevel(level)
    structlog.reset_defaults()


@pytest.mark.usefixtures("_restore_logging")
class TestSetupLogging:
    def test_sets_root_level(self):
        setup_logging("DEBUG")
        assert logging.getLogger().level == logging.DEBUG
        assert len(logging.getLogger().handlers) == 1

    def test_unknown_level_falls_back_to_info(self):
        setup_logging("CHATTY")
        assert logging.getLogger().level == logging.INFO
