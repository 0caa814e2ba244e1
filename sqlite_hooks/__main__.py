"""CLI: open a database, optionally run one statement, dump JSON.

Usage: python -m sqlite_hooks <target> [--sql SQL] [--trace]
"""
from __future__ import annotations
import argparse, json, sqlite3, sys
from typing import Any, List, Optional

from . import PACKAGE_VERSION
from .config import ConnectionConfig
from .connection import Connection
from .errors import Error


def _jsonable(value: Any) -> Any:
    if isinstance(value, bytes):
        return value.hex()
    return str(value)


def parse_args(argv: Optional[List[str]]):
    ap = argparse.ArgumentParser(prog="python -m sqlite_hooks",
                                 description="Open a database, optionally run one statement, and dump the result as JSON")
    ap.add_argument("target", help="Database path, ':memory:' or a file: URI (with SQLITE_HOOKS_URI=1)")
    ap.add_argument("--sql", help="Statement to execute")
    ap.add_argument("--trace", action="store_true", help="Print each executed SQL string to stderr")
    return ap.parse_args(argv)


def main(argv: Optional[List[str]] = None) -> int:
    args = parse_args(argv)
    config = ConnectionConfig.from_env()
    try:
        with Connection(args.target, config) as db:
            if args.trace:
                db.set_trace(lambda sql: print(f"trace: {sql}", file=sys.stderr))
            rows = db.execute(args.sql) if args.sql else []
            out = {
                "version": PACKAGE_VERSION,
                "config": config.as_dict(),
                "engine": {"sqlite_version": sqlite3.sqlite_version},
                "total_changes": db.total_changes(),
                "rows": [list(r) if isinstance(r, tuple) else r for r in rows],
            }
    except (Error, sqlite3.Error) as e:
        print(json.dumps({"success": False, "error": str(e), "type": type(e).__name__}))
        return 1
    print(json.dumps(out, indent=2, default=_jsonable))
    return 0


if __name__ == "__main__":  # pragma: no cover
    raise SystemExit(main())
