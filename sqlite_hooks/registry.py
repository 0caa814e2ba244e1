"""Per-connection callback registry.

Holds the trace hook, the authorizer hook and the user-defined functions
of one connection, and wires them into the engine's callback slots.

The engine swallows exceptions raised inside callbacks (trace) or flattens
them into a generic error (functions, authorizer). The registry keeps the
first such exception in a pending slot while an engine call is in flight;
``dispatching()`` re-raises it once the engine returns, chained to the
engine error when there is one.
"""
from __future__ import annotations
import sqlite3
from contextlib import contextmanager
from typing import Dict, Iterator, Optional

from .authorizer import AuthContext, AuthorizationGate, action_name
from .base import AuthorizerHook, TraceHook
from .config import ConnectionConfig
from .errors import AuthorizationError
from .functions import FunctionHandler
from .logging_util import debug, info, warn


class CallbackRegistry:
    """Hooks and functions owned by a single connection.

    Responsibilities:
      - Keep at most one trace hook and one authorizer hook
      - Keep the name -> FunctionHandler table and register handlers with the engine
      - Install the authorization gate for the lifetime of the session
      - Carry callback failures back to the caller of the engine operation
    """

    def __init__(self, engine: sqlite3.Connection, config: ConnectionConfig):
        self._engine = engine
        self.trace_hook: Optional[TraceHook] = None
        self.authorizer_hook: Optional[AuthorizerHook] = None
        self.functions: Dict[str, FunctionHandler] = {}
        # Kind of the dispatcher the engine holds for each function key.
        self._registered: Dict[str, str] = {}
        self.auth_context: Optional[AuthContext] = None
        self._tracing = False
        self._failure: Optional[BaseException] = None
        self.gate = AuthorizationGate(self, strict_ignore=config.strict_ignore)
        engine.set_authorizer(self.gate)

    # --- Hook slots -----------------------------------------------------------------
    def set_trace(self, hook: Optional[TraceHook]) -> None:
        if hook is not None and not callable(hook):
            raise TypeError("trace hook must be callable or None")
        self.trace_hook = hook
        self._engine.set_trace_callback(self._on_trace if hook is not None else None)

    def set_authorizer(self, hook: Optional[AuthorizerHook]) -> None:
        if hook is not None and not callable(hook):
            raise TypeError("authorizer hook must be callable or None")
        self.authorizer_hook = hook

    def snapshot_authorization(self) -> AuthContext:
        return AuthContext(hook=self.authorizer_hook)

    def define(self, handler: FunctionHandler) -> None:
        """Add or replace a function.

        The engine holds one dispatcher per name that looks the handler up
        here on every call, so replacing a handler of the same kind never
        touches the engine and is allowed while statements are running.
        Changing the kind (scalar <-> aggregate) re-registers with the
        engine, which refuses while any statement using the connection is
        active.
        """
        previous = self.functions.get(handler.key)
        if self._registered.get(handler.key) != handler.kind:
            handler.register(self._engine, self)
            self._registered[handler.key] = handler.kind
        self.functions[handler.key] = handler
        if previous is not None:
            info("function_replaced", name=handler.name, kind=handler.kind, previous=previous.kind)
        else:
            debug("function_defined", name=handler.name, kind=handler.kind, arity=handler.arity.describe())

    def release(self) -> None:
        """Drop every hook reference; the engine session is about to close."""
        # The gate stays installed until the engine closes; with no context it allows everything.
        self._engine.set_trace_callback(None)
        self.trace_hook = None
        self.authorizer_hook = None
        self.functions.clear()
        self._registered.clear()
        self.auth_context = None

    # --- Engine call bracket --------------------------------------------------------
    def record_failure(self, exc: BaseException) -> None:
        # Later failures are usually consequences of the first one.
        if self._failure is None:
            self._failure = exc

    def _take_failure(self) -> Optional[BaseException]:
        failure, self._failure = self._failure, None
        return failure

    @contextmanager
    def dispatching(self, auth: Optional[AuthContext] = None, trace: bool = False) -> Iterator[None]:
        """Bracket one engine call.

        ``auth`` is the authorization snapshot consulted by the gate (None
        lets every action through, for internal queries). ``trace=True`` arms
        the trace hook for one call: the engine reports trigger sub-programs
        with the outer statement's SQL, and only the statement itself is
        forwarded. Compilation, row fetches and internal queries pass False.
        """
        previous = (self.auth_context, self._tracing)
        self.auth_context, self._tracing = auth, trace
        self._failure = None
        try:
            yield
        except sqlite3.Error as exc:
            failure = self._take_failure()
            if failure is not None:
                raise failure from exc
            if auth is not None and auth.denied is not None:
                action, arg1, arg2, db_name, trigger_name = auth.denied
                warn("authorization_denied", action=action_name(action), arg1=arg1, arg2=arg2)
                raise AuthorizationError(
                    f"not authorized: {action_name(action)}"
                    + "".join(f" {a}" for a in (arg1, arg2) if a is not None),
                    action, arg1, arg2, db_name, trigger_name,
                ) from exc
            raise
        finally:
            self.auth_context, self._tracing = previous
        failure = self._take_failure()
        if failure is not None:
            raise failure

    def _on_trace(self, sql: str) -> None:
        if not self._tracing or self.trace_hook is None:
            return
        self._tracing = False
        try:
            self.trace_hook(sql)
        except Exception as exc:
            self.record_failure(exc)
