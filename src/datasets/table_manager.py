"""
Dynamic table manager -- one physical table per logical (data source, table).

Loads are written in sequential batches, each committed on its own.  A
failing batch leaves the earlier batches in place; there is no
whole-load transaction.  Row counts are bumped with an atomic SQL
increment so concurrent appends to one table don't lose updates.
"""
from __future__ import annotations

import datetime
import decimal
from dataclasses import dataclass, field
from typing import Any, Mapping, Sequence

from src.core.config import get_settings
from src.core.errors import (
    DataSourceNotFoundError,
    SchemaValidationError,
    TableNotFoundError,
    TableSchemaConflictError,
)
from src.datasets.inference import is_number, parse_date
from src.datasets.schema import ColumnDefinition, ColumnType, DataSourceSchema, DataTable
from src.db.metadata_store import MetadataStore
from src.db.row_store import RowStore
from src.query.builder import QuerySpec, build_query
from src.query.sql_format import physical_table_name
from src.core.logging import get_logger

logger = get_logger(__name__)

EXTRA_COLUMN_POLICIES = ("permissive", "strict")


@dataclass
class ValidationReport:
    """Outcome of checking rows against a schema."""
    errors: list[str] = field(default_factory=list)
    warnings: list[str] = field(default_factory=list)
    extra_columns: list[str] = field(default_factory=list)

    @property
    def is_valid(self) -> bool:
        return not self.errors


# ── Validation ──────────────────────────────────────────


def _type_matches(value: Any, col_type: ColumnType) -> bool:
    if col_type is ColumnType.NUMBER:
        return is_number(value)
    if col_type is ColumnType.BOOLEAN:
        return isinstance(value, bool)
    if col_type is ColumnType.DATE:
        return parse_date(value) is not None
    return isinstance(value, str)


def conform_value(value: Any, col_type: ColumnType) -> Any:
    """Convert *value* for a column of *col_type*; None when it cannot be stored there."""
    if value is None:
        return None
    if col_type is ColumnType.DATE:
        return parse_date(value)
    if col_type is ColumnType.STRING:
        if isinstance(value, str):
            return value
        if isinstance(value, (datetime.date, datetime.datetime)):
            return value.isoformat()
        if isinstance(value, (bool, int, float, decimal.Decimal)):
            return str(value)
        return None
    return value if _type_matches(value, col_type) else None


def _check_extra_columns(
    rows: Sequence[Mapping[str, Any]],
    schema: DataSourceSchema,
    extra_column_policy: str,
    report: ValidationReport,
) -> None:
    if extra_column_policy not in EXTRA_COLUMN_POLICIES:
        raise ValueError(f"Unknown extra column policy '{extra_column_policy}'")

    declared = set(schema.column_names)
    extras: dict[str, None] = {}
    for row in rows:
        for key in row:
            if key not in declared:
                extras.setdefault(key, None)
    report.extra_columns = list(extras)
    for col in report.extra_columns:
        msg = f"Unexpected column: {col}"
        if extra_column_policy == "strict":
            report.errors.append(msg)
        else:
            report.warnings.append(msg)


def validate_rows(
    rows: Sequence[Mapping[str, Any]],
    schema: DataSourceSchema,
    extra_column_policy: str = "permissive",
) -> ValidationReport:
    """Check every row against *schema*.

    Null or missing values in non-nullable columns and values whose runtime
    type does not match the column type are errors.  Columns absent from
    the schema are warnings under the ``permissive`` policy and errors
    under ``strict``.
    """
    report = ValidationReport()
    _check_extra_columns(rows, schema, extra_column_policy, report)

    for col in schema.columns:
        for i, row in enumerate(rows, start=1):
            value = row.get(col.name)
            if value is None:
                if not col.nullable:
                    report.errors.append(f"Null value in non-nullable column {col.name} at row {i}")
                continue
            if not _type_matches(value, col.type):
                report.errors.append(
                    f"Invalid type for column {col.name} at row {i}: expected {col.type.value}, "
                    f"got {type(value).__name__}"
                )

    return report


def check_rows_loadable(
    rows: Sequence[Mapping[str, Any]],
    schema: DataSourceSchema,
    extra_column_policy: str = "permissive",
) -> ValidationReport:
    """Check that *rows* can be loaded into a table of *schema*.

    Looser than :func:`validate_rows`: string columns take any scalar, and
    a value that cannot be stored in its column is loaded as NULL (a
    warning) unless the column is non-nullable (an error).
    """
    report = ValidationReport()
    _check_extra_columns(rows, schema, extra_column_policy, report)

    for col in schema.columns:
        for i, row in enumerate(rows, start=1):
            raw = row.get(col.name)
            if raw is None:
                if not col.nullable:
                    report.errors.append(f"Null value in non-nullable column {col.name} at row {i}")
                continue
            if conform_value(raw, col.type) is not None:
                continue
            if col.nullable:
                report.warnings.append(
                    f"Value for column {col.name} at row {i} is not a valid {col.type.value}; loaded as NULL"
                )
            else:
                report.errors.append(
                    f"Invalid type for column {col.name} at row {i}: expected {col.type.value}, "
                    f"got {type(raw).__name__}"
                )

    return report


def _coerce_row(row: Mapping[str, Any], columns: Sequence[ColumnDefinition]) -> dict[str, Any]:
    """Project *row* onto the schema, converting each cell for its column."""
    return {col.name: conform_value(row.get(col.name), col.type) for col in columns}


# ── Manager ─────────────────────────────────────────────


class DynamicTableManager:
    def __init__(
        self,
        row_store: RowStore,
        metadata_store: MetadataStore,
        batch_size: int | None = None,
        extra_column_policy: str | None = None,
    ):
        settings = get_settings()
        self.row_store = row_store
        self.metadata_store = metadata_store
        self.batch_size = batch_size or settings.insert_batch_size
        self.extra_column_policy = extra_column_policy or settings.extra_column_policy
        if self.extra_column_policy not in EXTRA_COLUMN_POLICIES:
            raise ValueError(f"Unknown extra column policy '{self.extra_column_policy}'")

    # ── Loading ────────────────────────────────────

    def create_table(
        self,
        data_source_id: str,
        table_name: str,
        schema: DataSourceSchema,
        rows: Sequence[Mapping[str, Any]],
    ) -> DataTable:
        """Create the physical table and load *rows* into it.

        Values that do not fit a nullable column are loaded as NULL.  When
        the table already exists with the same schema the rows are added to
        it; a different schema is rejected.

        Raises
        ------
        TableSchemaConflictError
            The table exists with another schema.
        SchemaValidationError
            A non-nullable column would receive NULL, or an extra column
            under the ``strict`` policy; nothing is inserted.
        """
        existing = self.metadata_store.get_data_table(data_source_id, table_name)
        if existing is not None and existing.schema_ != schema:
            raise TableSchemaConflictError(
                f"Data table '{table_name}' already exists with a different schema"
            )

        physical = existing.physical_name if existing else physical_table_name(data_source_id, table_name)
        report = check_rows_loadable(rows, schema, self.extra_column_policy)
        if report.warnings:
            logger.warning(
                "create_table(%s): %d warning(s), first: %s",
                physical, len(report.warnings), report.warnings[0],
            )
        if not report.is_valid:
            logger.warning("create_table(%s) rejected: %d error(s)", physical, len(report.errors))
            raise SchemaValidationError(report.errors)

        if existing is not None:
            if not rows:
                return existing
            self._insert(physical, schema, rows)
            updated = self.metadata_store.increment_row_count(existing.id, len(rows))
            logger.info("Table '%s' exists; added %d row(s) (row_count=%d)", physical, len(rows), updated.row_count)
            return updated

        self.row_store.create_table(physical, schema.columns, schema.primary_keys or None)

        if rows:
            self._insert(physical, schema, rows)

        table = self.metadata_store.upsert_data_table(
            data_source_id=data_source_id,
            table_name=table_name,
            physical_name=physical,
            schema=schema,
            row_count=len(rows),
        )
        logger.info("Created table '%s' -> '%s' with %d row(s)", table_name, physical, len(rows))
        return table

    def append_data(
        self,
        data_source_id: str,
        table_name: str,
        rows: Sequence[Mapping[str, Any]],
    ) -> DataTable:
        """Validate *rows* against the stored schema, insert them, bump the row count.

        Raises
        ------
        TableNotFoundError
            No DataTable for (data_source_id, table_name).
        SchemaValidationError
            Any row violates the schema; nothing is inserted.
        """
        table = self.metadata_store.get_data_table(data_source_id, table_name)
        if table is None:
            raise TableNotFoundError(f"Data table '{table_name}' not found for data source '{data_source_id}'")

        report = validate_rows(rows, table.schema_, self.extra_column_policy)
        for warning in report.warnings:
            logger.warning("append_data(%s): %s -- column not loaded", table.physical_name, warning)
        if not report.is_valid:
            logger.warning("append_data(%s) rejected: %d error(s)", table.physical_name, len(report.errors))
            raise SchemaValidationError(report.errors)

        if not rows:
            return table

        self._insert(table.physical_name, table.schema_, rows)
        updated = self.metadata_store.increment_row_count(table.id, len(rows))
        logger.info("Appended %d row(s) to '%s' (row_count=%d)", len(rows), table.physical_name, updated.row_count)
        return updated

    def _insert(
        self,
        physical_name: str,
        schema: DataSourceSchema,
        rows: Sequence[Mapping[str, Any]],
    ) -> None:
        column_names = schema.column_names
        for start in range(0, len(rows), self.batch_size):
            batch = [_coerce_row(r, schema.columns) for r in rows[start:start + self.batch_size]]
            self.row_store.bulk_insert(physical_name, column_names, batch)

    # ── Inspection / teardown ──────────────────────

    def preview(
        self,
        data_source_id: str,
        table_name: str,
        limit: int = 100,
        offset: int = 0,
        columns: Sequence[str] | None = None,
    ) -> list[dict[str, Any]]:
        """Return stored rows of a table (schema columns only)."""
        table = self.metadata_store.get_data_table(data_source_id, table_name)
        if table is None:
            raise TableNotFoundError(f"Data table '{table_name}' not found for data source '{data_source_id}'")
        spec = QuerySpec(
            select=list(columns or table.schema_.column_names),
            from_table=table.physical_name,
            order_by=[{"field": "id", "direction": "ASC"}],
            limit=limit,
            offset=offset,
        )
        return self.row_store.query(build_query(spec))

    def drop_data_source(self, data_source_id: str) -> None:
        """Drop every physical table of a data source, then delete its records."""
        if self.metadata_store.get_data_source(data_source_id) is None:
            raise DataSourceNotFoundError(f"Data source '{data_source_id}' not found")
        for table in self.metadata_store.list_data_tables(data_source_id):
            self.row_store.drop_table(table.physical_name)
        self.metadata_store.delete_data_source(data_source_id)
        logger.info("Deleted data source %s and its tables", data_source_id)
