"""
Metadata store -- CRUD for DataSource, DataTable and Metric records.

ORM rows never leave this module; callers get pydantic records.
"""
from __future__ import annotations

from contextlib import contextmanager
from typing import Any, Generator

from pydantic import TypeAdapter
from sqlalchemy import select, update
from sqlalchemy.engine import Engine
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session, sessionmaker

from src.core.errors import (
    DataSourceNotFoundError,
    MetricAlreadyExistsError,
    MetricNotFoundError,
    TableNotFoundError,
)
from src.datasets.schema import DataSource, DataSourceSchema, DataSourceType, DataTable
from src.db.connection import get_engine
from src.db.models import Base, DataSourceRow, DataTableRow, MetricRow
from src.metrics.models import Metric, MetricType, ParsedMetric
from src.core.logging import get_logger

logger = get_logger(__name__)

_parsed_adapter: TypeAdapter[ParsedMetric] = TypeAdapter(ParsedMetric)


# ── Row -> record conversion ────────────────────────────


def _to_data_source(row: DataSourceRow) -> DataSource:
    return DataSource(
        id=row.id,
        name=row.name,
        description=row.description,
        type=DataSourceType(row.type),
        is_active=row.is_active,
        created_at=row.created_at,
    )


def _to_data_table(row: DataTableRow) -> DataTable:
    return DataTable(
        id=row.id,
        data_source_id=row.data_source_id,
        table_name=row.table_name,
        display_name=row.display_name,
        physical_name=row.physical_name,
        schema=DataSourceSchema.model_validate(row.columns),
        row_count=row.row_count,
        created_at=row.created_at,
        updated_at=row.updated_at,
    )


def _to_metric(row: MetricRow) -> Metric:
    return Metric(
        id=row.id,
        name=row.name,
        display_name=row.display_name,
        description=row.description,
        type=MetricType(row.type),
        expression=row.expression,
        parsed_formula=_parsed_adapter.validate_python(row.parsed_formula),
        data_source_id=row.data_source_id,
        format=row.format,
        decimal_places=row.decimal_places,
        prefix=row.prefix,
        suffix=row.suffix,
        is_active=row.is_active,
        created_at=row.created_at,
    )


# ── Store ───────────────────────────────────────────────


class MetadataStore:
    """SQLAlchemy-backed persistence for metadata records."""

    def __init__(self, engine: Engine | None = None):
        self.engine = engine or get_engine()
        self._session_factory = sessionmaker(bind=self.engine, expire_on_commit=False)

    def create_all(self) -> None:
        """Create the metadata tables if they don't exist."""
        Base.metadata.create_all(self.engine)
        logger.info("Metadata tables ensured")

    @contextmanager
    def session(self) -> Generator[Session, None, None]:
        session = self._session_factory()
        try:
            yield session
            session.commit()
        except Exception:
            session.rollback()
            raise
        finally:
            session.close()

    # ── Data sources ───────────────────────────────

    def create_data_source(
        self,
        name: str,
        description: str | None = None,
        type: DataSourceType = DataSourceType.CSV,
    ) -> DataSource:
        """Create a data source; an existing source with the same name is returned as-is."""
        existing = self.get_data_source_by_name(name)
        if existing is not None:
            logger.info("Data source '%s' already exists -- reusing id=%s", name, existing.id)
            return existing
        with self.session() as s:
            row = DataSourceRow(name=name, description=description, type=DataSourceType(type).value)
            s.add(row)
            s.flush()
            return _to_data_source(row)

    def get_data_source(self, data_source_id: str) -> DataSource | None:
        with self.session() as s:
            row = s.get(DataSourceRow, data_source_id)
            return _to_data_source(row) if row else None

    def get_data_source_by_name(self, name: str) -> DataSource | None:
        with self.session() as s:
            row = s.scalars(select(DataSourceRow).where(DataSourceRow.name == name)).first()
            return _to_data_source(row) if row else None

    def list_data_sources(self, is_active: bool | None = None) -> list[DataSource]:
        with self.session() as s:
            stmt = select(DataSourceRow).order_by(DataSourceRow.created_at.desc())
            if is_active is not None:
                stmt = stmt.where(DataSourceRow.is_active == is_active)
            return [_to_data_source(r) for r in s.scalars(stmt)]

    def delete_data_source(self, data_source_id: str) -> None:
        with self.session() as s:
            row = s.get(DataSourceRow, data_source_id)
            if row is None:
                raise DataSourceNotFoundError(f"Data source '{data_source_id}' not found")
            s.delete(row)

    # ── Data tables ────────────────────────────────

    def get_data_table(self, data_source_id: str, table_name: str) -> DataTable | None:
        with self.session() as s:
            row = s.scalars(
                select(DataTableRow).where(
                    DataTableRow.data_source_id == data_source_id,
                    DataTableRow.table_name == table_name,
                )
            ).first()
            return _to_data_table(row) if row else None

    def list_data_tables(self, data_source_id: str) -> list[DataTable]:
        with self.session() as s:
            stmt = (
                select(DataTableRow)
                .where(DataTableRow.data_source_id == data_source_id)
                .order_by(DataTableRow.created_at, DataTableRow.id)
            )
            return [_to_data_table(r) for r in s.scalars(stmt)]

    def upsert_data_table(
        self,
        data_source_id: str,
        table_name: str,
        physical_name: str,
        schema: DataSourceSchema,
        row_count: int,
    ) -> DataTable:
        """Insert or update the DataTable keyed by (data_source_id, table_name)."""
        with self.session() as s:
            row = s.scalars(
                select(DataTableRow).where(
                    DataTableRow.data_source_id == data_source_id,
                    DataTableRow.table_name == table_name,
                )
            ).first()
            if row is None:
                row = DataTableRow(
                    data_source_id=data_source_id,
                    table_name=table_name,
                    display_name=table_name,
                    physical_name=physical_name,
                    columns=schema.model_dump(mode="json"),
                    row_count=row_count,
                )
                s.add(row)
            else:
                row.columns = schema.model_dump(mode="json")
                row.row_count = row_count
            s.flush()
            s.refresh(row)
            return _to_data_table(row)

    def increment_row_count(self, data_table_id: str, delta: int) -> DataTable:
        """Atomically add *delta* to the stored row count."""
        with self.session() as s:
            result = s.execute(
                update(DataTableRow)
                .where(DataTableRow.id == data_table_id)
                .values(row_count=DataTableRow.row_count + delta)
            )
            if result.rowcount == 0:
                raise TableNotFoundError(f"Data table '{data_table_id}' not found")
            row = s.get(DataTableRow, data_table_id, populate_existing=True)
            return _to_data_table(row)

    # ── Metrics ────────────────────────────────────

    def create_metric(self, values: dict[str, Any]) -> Metric:
        """Persist a metric; ``values['parsed_formula']`` must be JSON-ready."""
        try:
            with self.session() as s:
                row = MetricRow(**values)
                s.add(row)
                s.flush()
                return _to_metric(row)
        except IntegrityError as exc:
            raise MetricAlreadyExistsError(f"Metric '{values.get('name')}' already exists") from exc

    def get_metric(self, metric_id: str) -> Metric | None:
        with self.session() as s:
            row = s.get(MetricRow, metric_id)
            return _to_metric(row) if row else None

    def get_metric_by_name(self, name: str) -> Metric | None:
        with self.session() as s:
            row = s.scalars(select(MetricRow).where(MetricRow.name == name)).first()
            return _to_metric(row) if row else None

    def list_metrics(
        self,
        data_source_id: str | None = None,
        type: MetricType | None = None,
        is_active: bool | None = None,
    ) -> list[Metric]:
        with self.session() as s:
            stmt = select(MetricRow).order_by(MetricRow.created_at.desc())
            if data_source_id is not None:
                stmt = stmt.where(MetricRow.data_source_id == data_source_id)
            if type is not None:
                stmt = stmt.where(MetricRow.type == MetricType(type).value)
            if is_active is not None:
                stmt = stmt.where(MetricRow.is_active == is_active)
            return [_to_metric(r) for r in s.scalars(stmt)]

    def delete_metric(self, metric_id: str) -> None:
        with self.session() as s:
            row = s.get(MetricRow, metric_id)
            if row is None:
                raise MetricNotFoundError(f"Metric '{metric_id}' not found")
            s.delete(row)
