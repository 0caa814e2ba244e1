"""Authorization gate.

The engine asks the gate about every action it examines while compiling a
statement (reading a column, inserting into a table, creating an index...).
The gate forwards the question to the connection's authorizer hook and
turns whatever the hook returned into an ``AuthDecision``.

Decisions taken while a statement is prepared are remembered on an
``AuthContext`` and replayed when that statement executes, so replacing the
authorizer never changes statements that were already prepared.
"""
from __future__ import annotations
import enum
from dataclasses import dataclass, field
from typing import Any, Dict, Optional, Set, Tuple, TYPE_CHECKING

from .base import AuthorizerHook
from .logging_util import debug, warn

if TYPE_CHECKING:  # pragma: no cover
    from .registry import CallbackRegistry


class Action(enum.IntEnum):
    """Authorizer action codes, as defined by the SQLite C API."""
    CREATE_INDEX = 1
    CREATE_TABLE = 2
    CREATE_TEMP_INDEX = 3
    CREATE_TEMP_TABLE = 4
    CREATE_TEMP_TRIGGER = 5
    CREATE_TEMP_VIEW = 6
    CREATE_TRIGGER = 7
    CREATE_VIEW = 8
    DELETE = 9
    DROP_INDEX = 10
    DROP_TABLE = 11
    DROP_TEMP_INDEX = 12
    DROP_TEMP_TABLE = 13
    DROP_TEMP_TRIGGER = 14
    DROP_TEMP_VIEW = 15
    DROP_TRIGGER = 16
    DROP_VIEW = 17
    INSERT = 18
    PRAGMA = 19
    READ = 20
    SELECT = 21
    TRANSACTION = 22
    UPDATE = 23
    ATTACH = 24
    DETACH = 25
    ALTER_TABLE = 26
    REINDEX = 27
    ANALYZE = 28
    CREATE_VTABLE = 29
    DROP_VTABLE = 30
    FUNCTION = 31
    SAVEPOINT = 32
    RECURSIVE = 33


DESTRUCTIVE_ACTIONS: Set[Action] = {
    Action.DELETE,
    Action.DROP_INDEX, Action.DROP_TABLE, Action.DROP_TRIGGER, Action.DROP_VIEW,
    Action.DROP_TEMP_INDEX, Action.DROP_TEMP_TABLE, Action.DROP_TEMP_TRIGGER, Action.DROP_TEMP_VIEW,
    Action.DROP_VTABLE, Action.ALTER_TABLE, Action.DETACH,
}


class AuthDecision(enum.IntEnum):
    """Answer given to the engine; values are the engine's result codes."""
    ALLOW = 0
    DENY = 1
    IGNORE = 2

    @classmethod
    def from_result(cls, value: Any) -> "AuthDecision":
        """Translate an authorizer hook's return value.

        ``True`` allows, ``False`` denies, ``None`` ignores. Integers are
        read as engine result codes (so ``0`` allows) and the strings
        ``"allow"``, ``"deny"`` and ``"ignore"`` name a decision. Any other
        value allows when truthy and denies when falsy.
        """
        if isinstance(value, cls):
            return value
        if value is None:
            return cls.IGNORE
        if isinstance(value, bool):
            return cls.ALLOW if value else cls.DENY
        if isinstance(value, int):
            try:
                return cls(value)
            except ValueError:
                return cls.ALLOW if value else cls.DENY
        if isinstance(value, str):
            try:
                return cls[value.strip().upper()]
            except KeyError:
                return cls.ALLOW if value else cls.DENY
        return cls.ALLOW if value else cls.DENY


def action_name(action: int) -> str:
    try:
        return Action(action).name.lower()
    except ValueError:
        return str(action)


AuthKey = Tuple[int, Optional[str], Optional[str], Optional[str], Optional[str]]


@dataclass
class AuthContext:
    """Authorizer snapshot for one statement."""
    hook: Optional[AuthorizerHook]
    decisions: Dict[AuthKey, AuthDecision] = field(default_factory=dict)
    denied: Optional[AuthKey] = None


class AuthorizationGate:
    """Engine-facing authorizer callback, installed once per connection."""

    def __init__(self, registry: "CallbackRegistry", strict_ignore: bool = True):
        self._registry = registry
        self.strict_ignore = strict_ignore

    def __call__(self, action: int, arg1: Optional[str], arg2: Optional[str],
                 db_name: Optional[str], trigger_name: Optional[str]) -> int:
        context = self._registry.auth_context
        if context is None or context.hook is None:
            return AuthDecision.ALLOW.value
        key = (action, arg1, arg2, db_name, trigger_name)
        decision = context.decisions.get(key)
        if decision is None:
            try:
                decision = self.decide(context.hook, key)
            except Exception as exc:
                self._registry.record_failure(exc)
                return AuthDecision.DENY.value
            context.decisions[key] = decision
        if decision is AuthDecision.DENY and context.denied is None:
            context.denied = key
        return decision.value

    def decide(self, hook: AuthorizerHook, key: AuthKey) -> AuthDecision:
        action = key[0]
        try:
            action = Action(action)
        except ValueError:
            pass
        decision = AuthDecision.from_result(hook(action, *key[1:]))
        if decision is AuthDecision.IGNORE and self.strict_ignore and action in DESTRUCTIVE_ACTIONS:
            warn("ignore_escalated", action=action_name(action), arg1=key[1], arg2=key[2])
            decision = AuthDecision.DENY
        if decision is not AuthDecision.ALLOW:
            debug("authorizer_decision", action=action_name(action), arg1=key[1], arg2=key[2],
                  decision=decision.name.lower())
        return decision


# --- Ready-made policy ------------------------------------------------------------

_WRITE_ACTIONS: Set[Action] = {
    Action.INSERT, Action.UPDATE, Action.DELETE,
    Action.CREATE_TABLE, Action.CREATE_INDEX, Action.CREATE_TRIGGER, Action.CREATE_VIEW,
    Action.CREATE_TEMP_TABLE, Action.CREATE_TEMP_INDEX, Action.CREATE_TEMP_TRIGGER,
    Action.CREATE_TEMP_VIEW, Action.CREATE_VTABLE,
    Action.DROP_TABLE, Action.DROP_INDEX, Action.DROP_TRIGGER, Action.DROP_VIEW,
    Action.DROP_TEMP_TABLE, Action.DROP_TEMP_INDEX, Action.DROP_TEMP_TRIGGER,
    Action.DROP_TEMP_VIEW, Action.DROP_VTABLE,
    Action.ALTER_TABLE, Action.REINDEX, Action.ANALYZE, Action.ATTACH, Action.DETACH,
}

# Actions whose table name arrives in arg2 rather than arg1.
_TABLE_IN_ARG2: Set[Action] = {
    Action.CREATE_INDEX, Action.CREATE_TEMP_INDEX, Action.DROP_INDEX, Action.DROP_TEMP_INDEX,
    Action.CREATE_TRIGGER, Action.CREATE_TEMP_TRIGGER, Action.DROP_TRIGGER,
    Action.DROP_TEMP_TRIGGER, Action.ALTER_TABLE,
}


@dataclass
class TablePolicy:
    """Table-level access policy usable as an authorizer hook.

    Rules:
      - Reads are open unless ``readable_tables`` is set; columns of other
        tables read as NULL (IGNORE) rather than failing the statement
      - Writes and schema changes need ``write_enabled``
      - Tables in ``protected_tables`` are never written
      - PRAGMAs that assign a value count as writes
    """
    write_enabled: bool = False
    protected_tables: Set[str] = field(default_factory=set)
    readable_tables: Optional[Set[str]] = None

    def can_read(self, table: Optional[str]) -> bool:
        if self.readable_tables is None or table is None:
            return True
        return table.lower() in {t.lower() for t in self.readable_tables}

    def can_write(self, table: Optional[str]) -> bool:
        if not self.write_enabled:
            return False
        if table is None:
            return True
        return table.lower() not in {t.lower() for t in self.protected_tables}

    def __call__(self, action: int, arg1: Optional[str], arg2: Optional[str],
                 db_name: Optional[str], trigger_name: Optional[str]) -> AuthDecision:
        if action == Action.READ:
            return AuthDecision.ALLOW if self.can_read(arg1) else AuthDecision.IGNORE
        if action == Action.PRAGMA:
            if arg2 is None or self.write_enabled:
                return AuthDecision.ALLOW
            return AuthDecision.DENY
        if action in _WRITE_ACTIONS:
            table = arg2 if action in _TABLE_IN_ARG2 else arg1
            return AuthDecision.ALLOW if self.can_write(table) else AuthDecision.DENY
        return AuthDecision.ALLOW
