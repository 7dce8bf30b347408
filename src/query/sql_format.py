"""
The only two routines allowed to put caller-controlled text into SQL.

  * ``format_value``      -- renders a literal (filter value, inserted cell)
  * ``quote_identifier``  -- renders a table or column name

Every SQL builder in this package goes through these; nothing else
concatenates user input into a statement.  Swapping to bound parameters
later means changing these two functions, not the call sites.
"""
from __future__ import annotations

import datetime
import decimal
import math
import re
from typing import Any

_UNSAFE_CHARS_RE = re.compile(r"[^a-zA-Z0-9_]")

_PG_IDENTIFIER_MAX = 63


def format_value(value: Any) -> str:
    """Render a Python value as a SQL literal.

    * ``None`` -> ``NULL``
    * ``bool`` -> ``TRUE`` / ``FALSE``
    * ``int`` / ``float`` / ``Decimal`` -> bare number (non-finite -> ``NULL``)
    * ``str`` -> single-quoted, embedded quotes doubled
    * ``date`` / ``datetime`` -> quoted ISO-8601 string

    Raises
    ------
    TypeError
        For any other type -- containers and arbitrary objects are never
        stringified into SQL.
    """
    if value is None:
        return "NULL"
    # bool before int: bool is an int subclass
    if isinstance(value, bool):
        return "TRUE" if value else "FALSE"
    if isinstance(value, int):
        return str(value)
    if isinstance(value, float):
        if not math.isfinite(value):
            return "NULL"
        return repr(value)
    if isinstance(value, decimal.Decimal):
        if not value.is_finite():
            return "NULL"
        return str(value)
    if isinstance(value, str):
        if "\x00" in value:
            raise ValueError("NUL byte is not allowed in SQL string literals")
        return "'" + value.replace("'", "''") + "'"
    if isinstance(value, (datetime.date, datetime.datetime)):
        return "'" + value.isoformat() + "'"
    raise TypeError(f"Cannot render value of type {type(value).__name__} as a SQL literal")


def quote_identifier(name: str) -> str:
    """Render a table/column name as a double-quoted identifier.

    Case is preserved so that uploaded headers such as ``Amount`` stay
    addressable.  Embedded double quotes are doubled.
    """
    if not isinstance(name, str) or not name.strip():
        raise ValueError(f"Invalid SQL identifier: {name!r}")
    if "\x00" in name:
        raise ValueError("NUL byte is not allowed in SQL identifiers")
    return '"' + name.replace('"', '""') + '"'


def sanitize_identifier(raw: str, max_length: int = _PG_IDENTIFIER_MAX) -> str:
    """Lowercase *raw* and replace every non ``[a-z0-9_]`` character with ``_``."""
    cleaned = _UNSAFE_CHARS_RE.sub("_", raw).lower()
    return cleaned[:max_length]


def physical_table_name(data_source_id: str, table_name: str) -> str:
    """Deterministic physical table name for a logical (data source, table) pair."""
    return sanitize_identifier(f"ds_{data_source_id[:8]}_{table_name}")
