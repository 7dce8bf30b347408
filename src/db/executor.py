"""
Read-only SQL executor.

All synthesized metric queries run through `execute_readonly`, which:
  1. Opens a READ ONLY transaction (Postgres-enforced)
  2. Enforces a per-query statement_timeout
  3. Converts Decimal/date/datetime to JSON-safe Python types
"""
from __future__ import annotations

import decimal
import datetime
from typing import Any

from sqlalchemy import text
from sqlalchemy.engine import Connection, CursorResult, Engine

from src.core.config import get_settings
from src.db.connection import readonly_connection
from src.core.logging import get_logger

logger = get_logger(__name__)


def _serialise_value(val: Any) -> Any:
    """Convert DB types to JSON-serialisable Python types."""
    if isinstance(val, decimal.Decimal):
        return float(val)
    if isinstance(val, (datetime.date, datetime.datetime)):
        return val.isoformat()
    if isinstance(val, datetime.timedelta):
        return str(val)
    return val


def run_statement(conn: Connection, sql: str, params: dict | None = None) -> CursorResult:
    """Execute *sql* on *conn*.

    Synthesized SQL carries its literals inline, so without *params* it is
    sent verbatim: no bind-parameter parsing of ":name", no DBAPI "%"
    interpolation.
    """
    if params:
        return conn.execute(text(sql), params)
    return conn.exec_driver_sql(sql, execution_options={"no_parameters": True})


def execute_readonly(
    sql: str,
    params: dict | None = None,
    timeout_ms: int | None = None,
    engine: Engine | None = None,
) -> list[dict[str, Any]]:
    """Execute a read-only SQL query and return rows as serialisable dicts."""
    timeout_ms = timeout_ms if timeout_ms is not None else get_settings().query_timeout_ms
    logger.info("Executing SQL (%d chars)", len(sql))

    with readonly_connection(engine) as conn:
        if conn.dialect.name == "postgresql":
            conn.execute(text(f"SET LOCAL statement_timeout = {int(timeout_ms)}"))

        result = run_statement(conn, sql, params)
        columns = list(result.keys())
        rows = [
            {col: _serialise_value(val) for col, val in zip(columns, row)}
            for row in result.fetchall()
        ]

    logger.info("Returned %d rows", len(rows))
    return rows
