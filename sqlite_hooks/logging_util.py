"""Lightweight structured logging helper.

Emits one JSON object per line to stderr. The threshold comes from the
LOG_LEVEL environment variable and is re-read on every call so operators
(and tests) can change verbosity without reloading the package.
"""
from __future__ import annotations
import os, sys, json, time, threading

_lock = threading.Lock()
LEVEL_ORDER = ["DEBUG", "INFO", "WARN", "ERROR"]
_ALIASES = {"WARNING": "WARN", "CRITICAL": "ERROR"}


def _normalize(level: str) -> str:
    level = level.upper()
    return _ALIASES.get(level, level)


def _should(level: str) -> bool:
    threshold = _normalize(os.environ.get("LOG_LEVEL", "INFO"))
    try:
        return LEVEL_ORDER.index(level) >= LEVEL_ORDER.index(threshold)
    except ValueError:
        return True


def log(level: str, event: str, **fields):
    level = _normalize(level)
    if not _should(level):
        return
    record = {
        "ts": time.strftime('%Y-%m-%dT%H:%M:%SZ', time.gmtime()),
        "level": level,
        "logger": "sqlite_hooks",
        "event": event,
    }
    record.update(fields)
    line = json.dumps(record, separators=(',', ':'), default=str)
    with _lock:
        sys.stderr.write(line + "\n")
        sys.stderr.flush()

def debug(event: str, **fields): log("DEBUG", event, **fields)
def info(event: str, **fields): log("INFO", event, **fields)
def warn(event: str, **fields): log("WARN", event, **fields)
def error(event: str, **fields): log("ERROR", event, **fields)
