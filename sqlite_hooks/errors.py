"""Exception taxonomy for the connection layer.

Only lifecycle and authorization failures get their own types. Errors the
engine reports (syntax errors, constraint violations, interrupts) are
raised as the engine's own ``sqlite3.Error`` subclasses, unmodified.
"""
from __future__ import annotations
from typing import Optional


class Error(Exception):
    """Base class for every error raised by this package."""


class ClosedError(Error):
    """Operation attempted on a closed connection or finalized statement."""


class BusyError(Error):
    """Close attempted while prepared statements are still alive."""


class ConnectionError(Error):
    """The engine session could not be established."""


class AuthorizationError(Error):
    """The authorizer denied an action while a statement was compiled."""

    def __init__(self, message: str, action: Optional[int] = None, arg1: Optional[str] = None,
                 arg2: Optional[str] = None, db_name: Optional[str] = None,
                 trigger_name: Optional[str] = None):
        super().__init__(message)
        self.action = action
        self.arg1 = arg1
        self.arg2 = arg2
        self.db_name = db_name
        self.trigger_name = trigger_name


class ArityMismatchError(Error):
    """A SQL function was called with a number of arguments its handler does not take."""

    def __init__(self, name: str, expected: str, given: int):
        super().__init__(f"{name}() takes {expected} argument(s) but {given} were given")
        self.name = name
        self.expected = expected
        self.given = given


__all__ = [
    "Error",
    "ClosedError",
    "BusyError",
    "ConnectionError",
    "AuthorizationError",
    "ArityMismatchError",
]
