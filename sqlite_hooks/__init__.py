"""sqlite-hooks: connection lifecycle and callback hooks for SQLite.

Single source of truth for the package version so that code, tests, and
scripts can import it without duplicating literals.
"""

PACKAGE_VERSION = "0.1.0"  # Keep in sync with pyproject version.

from .authorizer import Action, AuthDecision, TablePolicy  # noqa: E402
from .config import ConnectionConfig  # noqa: E402
from .connection import Connection, connect  # noqa: E402
from .errors import (  # noqa: E402
    ArityMismatchError,
    AuthorizationError,
    BusyError,
    ClosedError,
    ConnectionError,
    Error,
)
from .functions import AggregateFunction, Arity, ScalarFunction  # noqa: E402
from .statement import Statement  # noqa: E402

__all__ = [
    "PACKAGE_VERSION",
    "Action",
    "AuthDecision",
    "TablePolicy",
    "ConnectionConfig",
    "Connection",
    "connect",
    "Statement",
    "Arity",
    "ScalarFunction",
    "AggregateFunction",
    "Error",
    "ClosedError",
    "BusyError",
    "ConnectionError",
    "AuthorizationError",
    "ArityMismatchError",
]
