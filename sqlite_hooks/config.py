"""Connection configuration.

Values come from keyword arguments or, via ``ConnectionConfig.from_env()``,
from ``SQLITE_HOOKS_*`` environment variables. Bad values never raise: they
are logged and replaced by defaults or clamped into range.
"""
from __future__ import annotations
import os
from dataclasses import dataclass
from typing import Dict, Any
from .logging_util import warn

ENV_PREFIX = "SQLITE_HOOKS_"
MAX_BUSY_TIMEOUT_MS = 600_000     # 10 minutes
MIN_BUSY_TIMEOUT_MS = 0
DEFAULT_BUSY_TIMEOUT_MS = 5_000

_TRUE = {"1", "true", "yes", "on"}
_FALSE = {"0", "false", "no", "off"}


@dataclass
class ConnectionConfig:
    busy_timeout_ms: int = DEFAULT_BUSY_TIMEOUT_MS
    check_same_thread: bool = True
    results_as_hash: bool = False
    # IGNORE answered for a destructive action is escalated to DENY.
    strict_ignore: bool = True
    uri: bool = False

    @property
    def busy_timeout(self) -> float:
        """Busy timeout in seconds, as the engine expects it."""
        return self.busy_timeout_ms / 1000.0

    @classmethod
    def from_env(cls) -> "ConnectionConfig":
        def _int(name: str, default: int) -> int:
            key = ENV_PREFIX + name
            raw = os.environ.get(key)
            if raw is None:
                return default
            try:
                return int(raw)
            except ValueError:
                warn("invalid_env_int", key=key, value=raw, default=default)
                return default

        def _bool(name: str, default: bool) -> bool:
            key = ENV_PREFIX + name
            raw = os.environ.get(key)
            if raw is None:
                return default
            value = raw.strip().lower()
            if value in _TRUE:
                return True
            if value in _FALSE:
                return False
            warn("invalid_env_bool", key=key, value=raw, default=default)
            return default

        busy = _int("BUSY_TIMEOUT_MS", DEFAULT_BUSY_TIMEOUT_MS)
        if busy < MIN_BUSY_TIMEOUT_MS or busy > MAX_BUSY_TIMEOUT_MS:
            clamped = min(MAX_BUSY_TIMEOUT_MS, max(MIN_BUSY_TIMEOUT_MS, busy))
            warn("config_clamped", key=ENV_PREFIX + "BUSY_TIMEOUT_MS", original=busy, clamped=clamped)
            busy = clamped
        return cls(
            busy_timeout_ms=busy,
            check_same_thread=_bool("CHECK_SAME_THREAD", True),
            results_as_hash=_bool("RESULTS_AS_HASH", False),
            strict_ignore=_bool("STRICT_IGNORE", True),
            uri=_bool("URI", False),
        )

    def as_dict(self) -> Dict[str, Any]:
        return dict(self.__dict__)
