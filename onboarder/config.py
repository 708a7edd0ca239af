"""
Runtime settings read from the environment.

Call ``onboarder.env.load_env()`` first so values from ``.env`` are visible.
"""

import os
from dataclasses import dataclass
from pathlib import Path
from typing import Optional

from .errors import ConfigError

CHUNK_SIZE = 500
QUEUE_NAME = "onboarding"
MAX_TRIES = 3
BACKOFF_SECONDS = 10
PROCESSING_DELAY = 0.1

_TRUE = {"1", "true", "yes", "on"}
_FALSE = {"0", "false", "no", "off"}


def _env_int(name: str, default: int, minimum: int = 0) -> int:
    raw = os.getenv(name)
    if raw is None or raw.strip() == "":
        return default
    try:
        value = int(raw)
    except ValueError:
        raise ConfigError(f"{name} must be an integer, got {raw!r}")
    if value < minimum:
        raise ConfigError(f"{name} must be >= {minimum}, got {value}")
    return value


def _env_float(name: str, default: float) -> float:
    raw = os.getenv(name)
    if raw is None or raw.strip() == "":
        return default
    try:
        value = float(raw)
    except ValueError:
        raise ConfigError(f"{name} must be a number, got {raw!r}")
    if value < 0:
        raise ConfigError(f"{name} must not be negative, got {value}")
    return value


def _env_bool(name: str, default: bool) -> bool:
    raw = os.getenv(name)
    if raw is None or raw.strip() == "":
        return default
    value = raw.strip().lower()
    if value in _TRUE:
        return True
    if value in _FALSE:
        return False
    raise ConfigError(f"{name} must be a boolean, got {raw!r}")


@dataclass(frozen=True)
class Settings:
    """Pipeline settings. Defaults match the production onboarding queue."""

    db_path: Path = Path("data/onboarding.db")
    chunk_size: int = CHUNK_SIZE
    queue_name: str = QUEUE_NAME
    tries: int = MAX_TRIES
    backoff: float = BACKOFF_SECONDS
    processing_delay: float = PROCESSING_DELAY
    workers: int = 2
    retry_validation_errors: bool = True
    log_level: str = "INFO"
    log_dir: Optional[Path] = None

    @classmethod
    def from_env(cls) -> "Settings":
        log_dir = os.getenv("ONBOARDER_LOG_DIR")
        log_level = os.getenv("ONBOARDER_LOG_LEVEL", "INFO").upper()
        if log_level not in {"DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"}:
            raise ConfigError(f"ONBOARDER_LOG_LEVEL is not a log level: {log_level!r}")

        return cls(
            db_path=Path(os.getenv("ONBOARDER_DB", "data/onboarding.db")),
            chunk_size=_env_int("ONBOARDER_CHUNK_SIZE", CHUNK_SIZE, minimum=1),
            queue_name=os.getenv("ONBOARDER_QUEUE", QUEUE_NAME),
            tries=_env_int("ONBOARDER_TRIES", MAX_TRIES, minimum=1),
            backoff=_env_float("ONBOARDER_BACKOFF", BACKOFF_SECONDS),
            processing_delay=_env_float("ONBOARDER_PROCESSING_DELAY", PROCESSING_DELAY),
            workers=_env_int("ONBOARDER_WORKERS", 2, minimum=1),
            retry_validation_errors=_env_bool("ONBOARDER_RETRY_VALIDATION", True),
            log_level=log_level,
            log_dir=Path(log_dir) if log_dir else None,
        )
