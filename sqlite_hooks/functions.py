"""User-defined SQL functions.

Every function is registered with the engine as variadic. Arity is checked
here instead, from metadata given at definition time or read off the
handler's signature, so a wrong argument count raises
``ArityMismatchError`` rather than an engine "wrong number of arguments"
compile error.

Exceptions raised by handlers are handed to the registry before the engine
sees them; the engine only learns that the call failed, and the original
exception is re-raised to whoever stepped the statement.
"""
from __future__ import annotations
import inspect
from dataclasses import dataclass
from typing import Any, Callable, Optional, Union, TYPE_CHECKING
import sqlite3

from .base import AccumulatorFactory, Invocable
from .errors import ArityMismatchError
from .values import to_sql_value

if TYPE_CHECKING:  # pragma: no cover
    from .registry import CallbackRegistry

VARIADIC = -1


@dataclass(frozen=True)
class Arity:
    """Accepted argument counts: ``minimum`` up to ``maximum`` (None = unbounded)."""
    minimum: int = 0
    maximum: Optional[int] = None

    @classmethod
    def exactly(cls, count: int) -> "Arity":
        if count == VARIADIC:
            return cls()
        if count < 0:
            raise ValueError(f"arity must be >= 0 or {VARIADIC} (variadic), got {count}")
        return cls(count, count)

    @classmethod
    def of(cls, fn: Callable[..., Any], skip_self: bool = False) -> "Arity":
        """Derive the arity from a callable's positional parameters."""
        try:
            params = list(inspect.signature(fn).parameters.values())
        except (TypeError, ValueError):
            return cls()
        if skip_self and params:
            params = params[1:]
        minimum, maximum = 0, 0
        for p in params:
            if p.kind is inspect.Parameter.VAR_POSITIONAL:
                return cls(minimum, None)
            if p.kind in (inspect.Parameter.POSITIONAL_ONLY, inspect.Parameter.POSITIONAL_OR_KEYWORD):
                maximum += 1
                if p.default is inspect.Parameter.empty:
                    minimum += 1
        return cls(minimum, maximum)

    def accepts(self, count: int) -> bool:
        return count >= self.minimum and (self.maximum is None or count <= self.maximum)

    def describe(self) -> str:
        if self.maximum is None:
            return f"at least {self.minimum}"
        if self.minimum == self.maximum:
            return str(self.minimum)
        return f"{self.minimum} to {self.maximum}"


def _resolve_arity(arity: Union[int, Arity, None], fn: Callable[..., Any], skip_self: bool = False) -> Arity:
    if isinstance(arity, Arity):
        return arity
    if arity is None:
        return Arity.of(fn, skip_self=skip_self)
    return Arity.exactly(arity)


class FunctionHandler:
    """Base for the two handler variants kept in the callback registry."""
    kind = "function"

    def __init__(self, name: str, arity: Arity):
        if not name:
            raise ValueError("function name must not be empty")
        self.name = name
        self.arity = arity

    @property
    def key(self) -> str:
        # Function names are case-insensitive in SQL.
        return self.name.lower()

    def check_arity(self, count: int) -> None:
        if not self.arity.accepts(count):
            raise ArityMismatchError(self.name, self.arity.describe(), count)

    def register(self, engine: sqlite3.Connection, registry: "CallbackRegistry") -> None:
        raise NotImplementedError

    def __repr__(self) -> str:
        return f"<{type(self).__name__} {self.name}/{self.arity.describe()}>"


class ScalarFunction(FunctionHandler):
    kind = "scalar"

    def __init__(self, name: str, handler: Invocable, arity: Union[int, Arity, None] = None):
        if not callable(handler):
            raise TypeError(f"scalar handler for {name!r} must be callable")
        super().__init__(name, _resolve_arity(arity, handler))
        self.handler = handler

    def register(self, engine: sqlite3.Connection, registry: "CallbackRegistry") -> None:
        engine.create_function(self.name, VARIADIC, self._dispatcher(registry))

    def _dispatcher(self, registry: "CallbackRegistry") -> Callable[..., Any]:
        key = self.key

        def dispatch(*args):
            try:
                current = registry.functions[key]
                current.check_arity(len(args))
                return to_sql_value(current.handler(*args))
            except Exception as exc:
                registry.record_failure(exc)
                raise
        return dispatch


class AggregateFunction(FunctionHandler):
    """Aggregate backed by a factory that builds one accumulator per execution."""
    kind = "aggregate"

    def __init__(self, name: str, factory: AccumulatorFactory, arity: Union[int, Arity, None] = None):
        if not callable(factory):
            raise TypeError(f"aggregate factory for {name!r} must be callable")
        if arity is None and isinstance(factory, type) and hasattr(factory, "step"):
            resolved = Arity.of(factory.step, skip_self=True)
        elif arity is None:
            resolved = Arity()
        else:
            resolved = _resolve_arity(arity, factory)
        super().__init__(name, resolved)
        self.factory = factory

    def register(self, engine: sqlite3.Connection, registry: "CallbackRegistry") -> None:
        engine.create_aggregate(self.name, VARIADIC, self._bridge(registry))

    def _bridge(self, registry: "CallbackRegistry") -> type:
        key = self.key

        # The engine instantiates this class once per execution; the handler
        # current at that moment serves the whole execution.
        class _Bridge:
            def __init__(self):
                try:
                    self._function = registry.functions[key]
                    self._accumulator = self._function.factory()
                except Exception as exc:
                    registry.record_failure(exc)
                    raise

            def step(self, *args):
                try:
                    self._function.check_arity(len(args))
                    self._accumulator.step(*args)
                except Exception as exc:
                    registry.record_failure(exc)
                    raise

            def finalize(self):
                accumulator, self._accumulator = self._accumulator, None
                try:
                    return to_sql_value(accumulator.finalize())
                except Exception as exc:
                    registry.record_failure(exc)
                    raise

        _Bridge.__name__ = f"Aggregate_{self.name}"
        return _Bridge


