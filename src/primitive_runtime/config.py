"""
Runtime configuration, resolved from the environment.

    PRIMITIVE_RUNTIME_DB                  SQLite path (default: primitive-runtime.db)
    PRIMITIVE_RUNTIME_DEFAULT_TIMEOUT_MS  Timeout for primitives without one (30000)
    PRIMITIVE_RUNTIME_MAX_OUTPUT_BYTES    Cap on serialized handler output (1 MiB)
    PRIMITIVE_RUNTIME_LOG_LEVEL           Logging level for CLI and API (INFO)
"""

from __future__ import annotations

import logging
import os
from dataclasses import dataclass
from typing import Mapping, Optional

from .kernel.executor import DEFAULT_MAX_OUTPUT_BYTES
from .kernel.schema import DEFAULT_TIMEOUT_MS


DEFAULT_DB_PATH = "primitive-runtime.db"
LOG_FORMAT = "%(asctime)s %(levelname)s %(name)s: %(message)s"


def _int_setting(env: Mapping[str, str], key: str, default: int) -> int:
    raw = env.get(key)
    if raw is None or raw.strip() == "":
        return default
    try:
        value = int(raw)
    except ValueError:
        raise ValueError(f"{key} must be an integer, got {raw!r}") from None
    if value <= 0:
        raise ValueError(f"{key} must be positive, got {value}")
    return value


@dataclass
class RuntimeConfig:
    db_path: str = DEFAULT_DB_PATH
    default_timeout_ms: int = DEFAULT_TIMEOUT_MS
    max_output_bytes: int = DEFAULT_MAX_OUTPUT_BYTES
    log_level: str = "INFO"

    @classmethod
    def from_env(cls, env: Optional[Mapping[str, str]] = None) -> "RuntimeConfig":
        env = os.environ if env is None else env
        return cls(
            db_path=env.get("PRIMITIVE_RUNTIME_DB") or DEFAULT_DB_PATH,
            default_timeout_ms=_int_setting(env, "PRIMITIVE_RUNTIME_DEFAULT_TIMEOUT_MS", DEFAULT_TIMEOUT_MS),
            max_output_bytes=_int_setting(env, "PRIMITIVE_RUNTIME_MAX_OUTPUT_BYTES", DEFAULT_MAX_OUTPUT_BYTES),
            log_level=(env.get("PRIMITIVE_RUNTIME_LOG_LEVEL") or "INFO").upper(),
        )


def configure_logging(level: str = "INFO") -> None:
    """Install the root handler; only entry points call this."""
    logging.basicConfig(level=getattr(logging, level.upper(), logging.INFO), format=LOG_FORMAT)
