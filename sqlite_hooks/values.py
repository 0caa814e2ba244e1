"""Marshaling boundary between host values and SQL values.

The engine already converts INTEGER, REAL, TEXT, BLOB and NULL into
``int``, ``float``, ``str``, ``bytes`` and ``None`` on the way in, so only
values returned by user handlers need checking on the way out.
"""
from __future__ import annotations
from typing import Any

from .base import SqlValue

SQL_VALUE_TYPES = (int, float, str, bytes)
INT64_MIN = -(2 ** 63)
INT64_MAX = 2 ** 63 - 1


def to_sql_value(value: Any) -> SqlValue:
    """Convert a handler's return value into something the engine can store.

    ``bool`` becomes 0/1 and buffer types become ``bytes``. Integers
    outside the signed 64-bit range raise ``OverflowError``; anything else
    that is not a plain SQL value raises ``TypeError``.
    """
    if value is None:
        return None
    if isinstance(value, bool):
        return int(value)
    if isinstance(value, int) and not INT64_MIN <= value <= INT64_MAX:
        raise OverflowError(f"integer {value} does not fit in a 64-bit SQL INTEGER")
    if isinstance(value, SQL_VALUE_TYPES):
        return value
    if isinstance(value, (bytearray, memoryview)):
        return bytes(value)
    raise TypeError(f"cannot return {type(value).__name__} to SQL; "
                    f"expected int, float, str, bytes or None")
