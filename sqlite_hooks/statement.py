"""Prepared statement handle.

A statement is compiled (and authorized) when it is prepared, executed on
its first ``step()``, and must be finalized before its connection may
close. The handle keeps a non-owning reference to the connection.
"""
from __future__ import annotations
import re
import sqlite3
from typing import Any, Dict, Iterator, List, Mapping, Optional, Sequence, Tuple, Union, TYPE_CHECKING

from .authorizer import AuthContext
from .errors import ClosedError
from .registry import CallbackRegistry

if TYPE_CHECKING:  # pragma: no cover
    from .connection import Connection

Params = Union[Sequence[Any], Mapping[str, Any]]
Row = Union[Tuple[Any, ...], Dict[str, Any]]

_PARAM_RE = re.compile(r"""
      '(?:[^']|'')*'                # string or blob literal
    | "(?:[^"]|"")*"                # quoted identifiers
    | `(?:[^`]|``)*`
    | \[[^\]]*\]
    | --[^\n]*                      # comments
    | /\*.*?(?:\*/|\Z)
    | \?(?P<index>\d*)
    | (?<![\w$])(?P<name>[:@$][A-Za-z_]\w*)
""", re.VERBOSE | re.DOTALL)

_EXPLAIN_RE = re.compile(r"\s*EXPLAIN\b", re.IGNORECASE)


def placeholder_stub(sql: str) -> Params:
    """Build all-NULL parameters matching the placeholders in ``sql``.

    Numbering follows the engine: ``?`` takes the next index, ``?NNN`` the
    given one, and a repeated name reuses its first index. Statements with
    any named placeholder get a mapping (``?NNN`` is keyed by its number),
    everything else a tuple.
    """
    highest = 0
    names: List[str] = []
    numbered: List[str] = []
    for m in _PARAM_RE.finditer(sql):
        index, name = m.group("index"), m.group("name")
        if index:
            highest = max(highest, int(index))
            if index not in numbered:
                numbered.append(index)
        elif index is not None:
            highest += 1
        elif name is not None and name[1:] not in names:
            names.append(name[1:])
            highest += 1
    if names:
        return {key: None for key in names + numbered}
    return (None,) * highest


def compile_check(engine: sqlite3.Connection, registry: CallbackRegistry, sql: str, auth: AuthContext) -> None:
    """Compile ``sql`` without running it so syntax and authorization fail at prepare time."""
    if not sql.strip():
        return
    explain = sql if _EXPLAIN_RE.match(sql) else "EXPLAIN " + sql
    cursor = engine.cursor()
    try:
        with registry.dispatching(auth, trace=False):
            cursor.execute(explain, placeholder_stub(sql))
    finally:
        cursor.close()


class Statement:
    """One compiled query derived from a ``Connection``."""

    def __init__(self, connection: "Connection", engine: sqlite3.Connection,
                 registry: CallbackRegistry, sql: str, auth: AuthContext):
        self.connection = connection
        self.sql = sql
        self._engine = engine
        self._registry = registry
        self._auth = auth
        self._params: Params = ()
        self._cursor: Optional[sqlite3.Cursor] = None
        self._done = False
        self._finalized = False
        self._columns: List[str] = []

    # --- State ----------------------------------------------------------------------
    @property
    def finalized(self) -> bool:
        return self._finalized

    @property
    def executed(self) -> bool:
        return self._cursor is not None

    @property
    def done(self) -> bool:
        return self._done

    @property
    def columns(self) -> List[str]:
        """Result column names; empty until the statement has executed."""
        return list(self._columns)

    def _check_open(self) -> None:
        if self._finalized:
            raise ClosedError("statement is finalized")

    # --- Public API -----------------------------------------------------------------
    def bind(self, *params: Any) -> "Statement":
        """Set parameters for the next execution and rewind the statement.

        Accepts positional values (``bind(1, "a")``), a single sequence or a
        single mapping for named placeholders (``bind({"id": 1})``).
        """
        self._check_open()
        if len(params) == 1 and isinstance(params[0], (Mapping, list, tuple)):
            self._params = params[0]
        else:
            self._params = params
        self.reset()
        return self

    def step(self) -> Optional[Row]:
        """Return the next row, or None once the statement has run to completion.

        The engine reads one row ahead: SQL functions for row N+1 run inside
        the ``step()`` that returns row N, and a failure there surfaces from
        that call. A failure while fetching ends the execution: later calls
        return None until ``reset()`` or ``bind()`` rewinds the statement. A
        failure while starting it leaves nothing to end, so the next
        ``step()`` runs it again.
        """
        self._check_open()
        if self._done:
            return None
        try:
            if self._cursor is None:
                cursor = self._engine.cursor()
                try:
                    with self._registry.dispatching(self._auth, trace=True):
                        cursor.execute(self.sql, self._params)
                except Exception:
                    cursor.close()
                    raise
                self._cursor = cursor
                self._columns = [d[0] for d in cursor.description or ()]
            with self._registry.dispatching(self._auth):
                row = self._cursor.fetchone()
        except Exception:
            if self._cursor is not None:
                self._close_cursor()
                self._done = True
            raise
        if row is None:
            self._done = True
            return None
        if self.connection.config.results_as_hash:
            return dict(zip(self._columns, row))
        return row

    def _close_cursor(self) -> None:
        if self._cursor is not None:
            self._cursor.close()
            self._cursor = None

    def reset(self) -> None:
        """Rewind so the next ``step()`` runs the statement again."""
        self._check_open()
        self._close_cursor()
        self._done = False

    def finalize(self) -> None:
        """Release the compiled statement. Safe to call more than once."""
        if self._finalized:
            return
        self._close_cursor()
        self._finalized = True
        self.connection._release(self)

    close = finalize

    # --- Protocols ------------------------------------------------------------------
    def __iter__(self) -> Iterator[Row]:
        while True:
            row = self.step()
            if row is None:
                return
            yield row

    def __enter__(self) -> "Statement":
        return self

    def __exit__(self, exc_type, exc, tb) -> None:
        self.finalize()

    def __repr__(self) -> str:
        state = "finalized" if self._finalized else ("done" if self._done else "open")
        return f"<Statement {self.sql!r} {state}>"
