"""Configuration: reads env vars (with .env support) for the store.

.env loading priority: local .env (cwd) > $CONNDB_DIR/.env (default ~/.ssb).
The store itself never looks at the environment; callers build a Config
and pass its values (or use ConnDB.from_config).

Key class: Config.
"""

import os
from pathlib import Path

import structlog
from dotenv import load_dotenv

from .utils import conndb_dir

logger = structlog.get_logger()

DEFAULT_WRITE_TIMEOUT_MS = 2000
DEFAULT_LOG_LEVEL = "INFO"


class Config:
    """Store configuration loaded from environment variables."""

    def __init__(self) -> None:
        # load_dotenv default override=False means first-loaded wins
        local_env = Path(".env")
        if local_env.is_file():
            load_dotenv(local_env)
            logger.debug("Loaded env from %s", local_env.resolve())

        self.config_dir = conndb_dir()
        global_env = self.config_dir / ".env"
        if global_env.is_file():
            load_dotenv(global_env)
            logger.debug("Loaded env from %s", global_env)

        raw_timeout = os.getenv("CONNDB_WRITE_TIMEOUT", str(DEFAULT_WRITE_TIMEOUT_MS))
        try:
            self.write_timeout = int(raw_timeout)
        except ValueError as e:
            raise ValueError(
                f"CONNDB_WRITE_TIMEOUT must be an integer number of milliseconds: {e}"
            ) from e
        if self.write_timeout < 0:
            raise ValueError(
                f"CONNDB_WRITE_TIMEOUT must be non-negative, got {self.write_timeout}"
            )

        self.log_level = os.getenv("CONNDB_LOG_LEVEL", DEFAULT_LOG_LEVEL).upper()

        self.state_file = self.config_dir / "conn.json"
        self.legacy_file = self.config_dir / "gossip.json"

        logger.debug(
            "Config initialized: dir=%s, write_timeout=%dms",
            self.config_dir,
            self.write_timeout,
        )
