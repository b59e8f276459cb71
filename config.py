"""Service configuration.

Values come from the environment, with a `.env` file in the project root
loaded once on first access. Use get_config() rather than reading os.environ
directly.
"""

import os
from dataclasses import dataclass
from functools import lru_cache
from pathlib import Path

from dotenv import load_dotenv

PROJECT_ROOT = Path(__file__).resolve().parent


def _parse_int_env(name: str, default: int) -> int:
    value = os.getenv(name)
    if value is None:
        return default
    try:
        return int(value)
    except ValueError:
        return default


def _parse_float_env(name: str, default: float) -> float:
    value = os.getenv(name)
    if value is None:
        return default
    try:
        return float(value)
    except ValueError:
        return default


@dataclass(frozen=True)
class Config:
    database_path: str
    busy_timeout: float  # seconds a request waits for the SQLite write lock
    log_level: str
    host: str
    port: int


@lru_cache(maxsize=1)
def get_config() -> Config:
    """Load and return configuration. Cached after first call."""
    load_dotenv(PROJECT_ROOT / ".env")

    return Config(
        database_path=os.getenv("CONTACTS_DB_PATH", "contacts.db"),
        busy_timeout=_parse_float_env("SQLITE_BUSY_TIMEOUT", 5.0),
        log_level=os.getenv("LOG_LEVEL", "INFO").upper(),
        host=os.getenv("HOST", "0.0.0.0"),
        port=_parse_int_env("PORT", 8000),
    )
