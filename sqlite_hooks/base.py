"""Hook interfaces (structural typing only).

Every hook is a plain callable: a function, a lambda, a bound method or
any object defining ``__call__``. Aggregates are the one exception: they
are produced by a zero-argument factory (usually a class) whose instances
expose ``step`` and ``finalize``.
"""
from __future__ import annotations
from typing import Any, Callable, Optional, Protocol, Union

SqlValue = Union[int, float, str, bytes, None]


class Invocable(Protocol):  # pragma: no cover - structural typing helper
    def __call__(self, *args: Any) -> Any: ...


class TraceHook(Protocol):  # pragma: no cover - structural typing helper
    def __call__(self, sql: str) -> Any: ...


class AuthorizerHook(Protocol):  # pragma: no cover - structural typing helper
    def __call__(self, action: int, arg1: Optional[str], arg2: Optional[str],
                 db_name: Optional[str], trigger_name: Optional[str]) -> Any:
        """Return an AuthDecision, a bool, None, an engine result code or a decision name."""
        ...


class Accumulator(Protocol):  # pragma: no cover - structural typing helper
    def step(self, *args: SqlValue) -> Any: ...
    def finalize(self) -> Any: ...


AccumulatorFactory = Callable[[], Accumulator]
