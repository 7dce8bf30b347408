"""
DDL / DML rendering for dynamically-created data tables (Postgres dialect).

Every identifier goes through ``quote_identifier`` and every cell value
through ``format_value``.
"""
from __future__ import annotations

from typing import Any, Mapping, Sequence

from src.datasets.schema import ColumnDefinition, ColumnType
from src.query.sql_format import format_value, quote_identifier

SYNTHETIC_KEY = "id"

SQL_TYPES: dict[ColumnType, str] = {
    ColumnType.NUMBER: "DOUBLE PRECISION",
    ColumnType.BOOLEAN: "BOOLEAN",
    ColumnType.DATE: "TIMESTAMP",
    ColumnType.STRING: "TEXT",
}


def render_create_table(
    physical_name: str,
    columns: Sequence[ColumnDefinition],
    primary_key: Sequence[str] | None = None,
) -> str:
    """``CREATE TABLE IF NOT EXISTS`` with a synthetic ``id`` serial column.

    The serial is the primary key unless *primary_key* names a composite
    key, in which case it stays a plain auto-increment column.
    """
    if primary_key:
        lines = [f"{quote_identifier(SYNTHETIC_KEY)} BIGSERIAL"]
    else:
        lines = [f"{quote_identifier(SYNTHETIC_KEY)} BIGSERIAL PRIMARY KEY"]

    for col in columns:
        null_sql = "NULL" if col.nullable else "NOT NULL"
        lines.append(f"{quote_identifier(col.name)} {SQL_TYPES[col.type]} {null_sql}")

    if primary_key:
        keys = ", ".join(quote_identifier(k) for k in primary_key)
        lines.append(f"PRIMARY KEY ({keys})")

    body = ",\n    ".join(lines)
    return f"CREATE TABLE IF NOT EXISTS {quote_identifier(physical_name)} (\n    {body}\n)"


def render_insert(
    physical_name: str,
    column_names: Sequence[str],
    rows: Sequence[Mapping[str, Any]],
) -> str:
    """Multi-row ``INSERT ... VALUES`` for one batch; missing keys become NULL."""
    if not rows:
        raise ValueError("render_insert needs at least one row")
    cols = ", ".join(quote_identifier(c) for c in column_names)
    values = ",\n".join(
        "(" + ", ".join(format_value(row.get(c)) for c in column_names) + ")"
        for row in rows
    )
    return f"INSERT INTO {quote_identifier(physical_name)} ({cols})\nVALUES {values}"


def render_drop_table(physical_name: str) -> str:
    return f"DROP TABLE IF EXISTS {quote_identifier(physical_name)}"
