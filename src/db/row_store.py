"""
Row store -- the physical tables behind each logical DataTable.

``RowStore`` is the contract the table manager and metric service depend
on; ``SqlRowStore`` implements it on a SQLAlchemy engine.  Tests swap in
an in-memory fake.
"""
from __future__ import annotations

from typing import Any, Mapping, Protocol, Sequence

from sqlalchemy.engine import Engine

from src.datasets.schema import ColumnDefinition
from src.db.connection import get_engine, write_connection
from src.db.ddl import render_create_table, render_drop_table, render_insert
from src.db.executor import execute_readonly, run_statement
from src.core.logging import get_logger

logger = get_logger(__name__)


class RowStore(Protocol):
    def create_table(
        self,
        physical_name: str,
        columns: Sequence[ColumnDefinition],
        primary_key: Sequence[str] | None = None,
    ) -> None: ...

    def bulk_insert(
        self,
        physical_name: str,
        column_names: Sequence[str],
        rows: Sequence[Mapping[str, Any]],
    ) -> None: ...

    def query(self, sql: str) -> list[dict[str, Any]]: ...

    def drop_table(self, physical_name: str) -> None: ...


class SqlRowStore:
    """RowStore backed by a SQLAlchemy engine (Postgres in production)."""

    def __init__(self, engine: Engine | None = None, timeout_ms: int | None = None):
        self._engine = engine
        self._timeout_ms = timeout_ms

    @property
    def engine(self) -> Engine:
        if self._engine is None:
            self._engine = get_engine()
        return self._engine

    def create_table(
        self,
        physical_name: str,
        columns: Sequence[ColumnDefinition],
        primary_key: Sequence[str] | None = None,
    ) -> None:
        sql = render_create_table(physical_name, columns, primary_key)
        with write_connection(self.engine) as conn:
            run_statement(conn, sql)
        logger.info("Ensured physical table '%s' (%d columns)", physical_name, len(columns))

    def bulk_insert(
        self,
        physical_name: str,
        column_names: Sequence[str],
        rows: Sequence[Mapping[str, Any]],
    ) -> None:
        """Insert *rows* in one statement and one transaction."""
        if not rows:
            return
        sql = render_insert(physical_name, column_names, rows)
        with write_connection(self.engine) as conn:
            run_statement(conn, sql)
        logger.debug("Inserted %d row(s) into '%s'", len(rows), physical_name)

    def query(self, sql: str) -> list[dict[str, Any]]:
        return execute_readonly(sql, timeout_ms=self._timeout_ms, engine=self.engine)

    def drop_table(self, physical_name: str) -> None:
        with write_connection(self.engine) as conn:
            run_statement(conn, render_drop_table(physical_name))
        logger.info("Dropped physical table '%s'", physical_name)
