"""Connection: lifecycle and extension points over one SQLite session.

Lifecycle rules:
    - A connection is open from construction until ``close()`` succeeds
    - ``close()`` is refused (BusyError) while any prepared statement is
      still alive; statements are never finalized behind the caller's back
    - Every operation on a closed connection raises ClosedError, including
      a second ``close()``

Extension points (trace hook, authorizer, scalar and aggregate functions)
live in the connection's own CallbackRegistry, so several connections in
one process never share hooks.
"""
from __future__ import annotations
import sqlite3, os
from types import MappingProxyType
from typing import Any, List, Mapping, Optional, Set, Tuple, Union

from .base import AccumulatorFactory, AuthorizerHook, Invocable, TraceHook
from .config import ConnectionConfig
from .errors import BusyError, ClosedError, ConnectionError
from .functions import AggregateFunction, Arity, FunctionHandler, ScalarFunction
from .logging_util import debug, info, warn
from .registry import CallbackRegistry
from .statement import Row, Statement, compile_check

Target = Union[str, bytes, "os.PathLike[str]"]

MEMORY = ":memory:"


class Connection:
    """A single database connection.

    Responsibilities:
      - Own the engine session and the callback registry
      - Count live statements and refuse to close while any remain
      - Compile statements at prepare time so authorization fails early
      - Offer execute/get_first_value helpers built on prepare + step
    """

    def __init__(self, target: Target = MEMORY, config: Optional[ConnectionConfig] = None):
        self.config = config or ConnectionConfig.from_env()
        self.target = os.fsdecode(target) if isinstance(target, (bytes, os.PathLike)) else target
        if self.target != MEMORY and not self.config.uri and os.path.isdir(self.target):
            raise ConnectionError(f"Path points to a directory, expected file: {self.target}")
        try:
            engine = sqlite3.connect(
                self.target,
                timeout=self.config.busy_timeout,
                isolation_level=None,
                check_same_thread=self.config.check_same_thread,
                cached_statements=0,
                uri=self.config.uri,
            )
        except sqlite3.Error as e:
            raise ConnectionError(f"unable to open database {self.target!r}: {e}") from e
        self._engine: Optional[sqlite3.Connection] = engine
        self._registry: Optional[CallbackRegistry] = CallbackRegistry(engine, self.config)
        self._statements: Set[Statement] = set()
        info("connection_opened", target=self.target)

    @classmethod
    def open(cls, target: Target = MEMORY, config: Optional[ConnectionConfig] = None) -> "Connection":
        return cls(target, config)

    # --- State ----------------------------------------------------------------------
    @property
    def closed(self) -> bool:
        return self._engine is None

    @property
    def live_statement_count(self) -> int:
        return len(self._statements)

    @property
    def statements(self) -> Tuple[Statement, ...]:
        """Statements prepared on this connection and not yet finalized."""
        return tuple(self._statements)

    @property
    def functions(self) -> Mapping[str, FunctionHandler]:
        return MappingProxyType(self._open_registry().functions)

    def _check_open(self) -> sqlite3.Connection:
        if self._engine is None:
            raise ClosedError("database is closed")
        return self._engine

    def _open_registry(self) -> CallbackRegistry:
        self._check_open()
        assert self._registry is not None
        return self._registry

    # --- Lifecycle ------------------------------------------------------------------
    def close(self) -> None:
        engine = self._check_open()
        if self._statements:
            warn("close_refused_busy", target=self.target, live_statements=len(self._statements))
            raise BusyError(f"unable to close due to {len(self._statements)} unfinalized statement(s)")
        assert self._registry is not None
        self._registry.release()
        self._registry = None
        self._engine = None
        engine.close()
        info("connection_closed", target=self.target)

    def prepare(self, sql: str) -> Statement:
        """Compile ``sql`` into a Statement.

        Raises AuthorizationError when the authorizer denies any action the
        statement needs; syntax and schema errors come from the engine.
        """
        engine = self._check_open()
        registry = self._open_registry()
        auth = registry.snapshot_authorization()
        compile_check(engine, registry, sql, auth)
        stmt = Statement(self, engine, registry, sql, auth)
        self._statements.add(stmt)
        debug("statement_prepared", sql=sql, live_statements=len(self._statements))
        return stmt

    def _release(self, stmt: Statement) -> None:
        self._statements.discard(stmt)

    # --- Hooks ----------------------------------------------------------------------
    @property
    def trace(self) -> Optional[TraceHook]:
        return self._registry.trace_hook if self._registry is not None else None

    @trace.setter
    def trace(self, hook: Optional[TraceHook]) -> None:
        self.set_trace(hook)

    @property
    def authorizer(self) -> Optional[AuthorizerHook]:
        return self._registry.authorizer_hook if self._registry is not None else None

    @authorizer.setter
    def authorizer(self, hook: Optional[AuthorizerHook]) -> None:
        self.set_authorizer(hook)

    def set_trace(self, hook: Optional[TraceHook]) -> None:
        """Call ``hook(sql)`` once for every statement execution; None disables tracing."""
        self._open_registry().set_trace(hook)

    def set_authorizer(self, hook: Optional[AuthorizerHook]) -> None:
        """Use ``hook`` for statements prepared from now on; None allows everything."""
        self._open_registry().set_authorizer(hook)

    def define_function(self, name: str, handler: Invocable, arity: Union[int, Arity, None] = None) -> None:
        """Make ``handler`` callable from SQL as ``name(...)``.

        ``arity`` is a fixed argument count, -1 for any number, or None to
        read it from the handler's signature.
        """
        self._open_registry().define(ScalarFunction(name, handler, arity))

    def define_aggregate(self, name: str, factory: AccumulatorFactory, arity: Union[int, Arity, None] = None) -> None:
        """Register an aggregate; ``factory()`` must return an object with step() and finalize()."""
        self._open_registry().define(AggregateFunction(name, factory, arity))

    def interrupt(self) -> None:
        self._check_open().interrupt()

    # --- Counters -------------------------------------------------------------------
    def total_changes(self) -> int:
        return self._check_open().total_changes

    def changes(self) -> int:
        return self._internal_value("SELECT changes()")

    def last_insert_row_id(self) -> int:
        return self._internal_value("SELECT last_insert_rowid()")

    def _internal_value(self, sql: str) -> Any:
        engine = self._check_open()
        with self._open_registry().dispatching(None, trace=False):
            return engine.execute(sql).fetchone()[0]

    # --- Convenience ----------------------------------------------------------------
    def execute(self, sql: str, *params: Any) -> List[Row]:
        """Prepare, run to completion and finalize; return every row."""
        stmt = self.prepare(sql)
        try:
            if params:
                stmt.bind(*params)
            return list(stmt)
        finally:
            stmt.finalize()

    def get_first_row(self, sql: str, *params: Any) -> Optional[Row]:
        stmt = self.prepare(sql)
        try:
            if params:
                stmt.bind(*params)
            return stmt.step()
        finally:
            stmt.finalize()

    def get_first_value(self, sql: str, *params: Any) -> Any:
        row = self.get_first_row(sql, *params)
        if row is None:
            return None
        if isinstance(row, dict):
            return next(iter(row.values()), None)
        return row[0]

    # --- Protocols ------------------------------------------------------------------
    def __enter__(self) -> "Connection":
        return self

    def __exit__(self, exc_type, exc, tb) -> None:
        if not self.closed:
            self.close()

    def __repr__(self) -> str:
        state = "closed" if self.closed else f"open, {len(self._statements)} live statement(s)"
        return f"<Connection {self.target!r} {state}>"


def connect(target: Target = MEMORY, config: Optional[ConnectionConfig] = None, **overrides: Any) -> Connection:
    """Open a connection; keyword overrides are applied on top of ``config`` (or the environment)."""
    base = config or ConnectionConfig.from_env()
    if overrides:
        base = ConnectionConfig(**{**base.as_dict(), **overrides})
    return Connection(target, base)
