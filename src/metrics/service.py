"""
Metric service -- orchestrates load -> resolve table -> synthesize -> execute.

Authorization filters must already be merged into ``filters`` by the
caller, and result caching is the caller's concern too (see the API
layer).  The service holds no state beyond its two stores.
"""
from __future__ import annotations

from datetime import date, datetime
from typing import Any, Mapping, Sequence

from src.core.errors import (
    DataSourceNotFoundError,
    InvalidExpressionError,
    MetricAlreadyExistsError,
    MetricNotFoundError,
    NoTableError,
)
from src.core.utils import timer
from src.datasets.schema import DataTable
from src.db.metadata_store import MetadataStore
from src.db.row_store import RowStore
from src.metrics.compiler import ExpressionValidation, compile_expression, validate_expression
from src.metrics.models import METRIC_TYPE_FOR_KIND, Metric, MetricDefinition, MetricType
from src.query.builder import Granularity, OrderField, build_chart_query, build_time_series_query
from src.query.metric_sql import build_metric_sql
from src.core.logging import get_logger

logger = get_logger(__name__)


class MetricService:
    def __init__(self, metadata_store: MetadataStore, row_store: RowStore):
        self.metadata_store = metadata_store
        self.row_store = row_store

    # ── Definitions ────────────────────────────────

    def create_metric(self, definition: MetricDefinition) -> Metric:
        """Compile the expression and persist the metric with its compiled form."""
        parsed = compile_expression(definition.expression)
        derived_type = METRIC_TYPE_FOR_KIND[parsed.kind]
        if definition.type is not None and definition.type != derived_type:
            raise InvalidExpressionError(
                f"Metric type {definition.type.value} does not match expression "
                f"'{definition.expression}' (compiles to {derived_type.value})"
            )
        if self.metadata_store.get_metric_by_name(definition.name) is not None:
            raise MetricAlreadyExistsError(f"Metric '{definition.name}' already exists")
        if definition.data_source_id and self.metadata_store.get_data_source(definition.data_source_id) is None:
            raise DataSourceNotFoundError(f"Data source '{definition.data_source_id}' not found")

        metric = self.metadata_store.create_metric({
            **definition.model_dump(exclude={"type"}),
            "type": derived_type.value,
            "parsed_formula": parsed.model_dump(mode="json"),
        })
        logger.info("Created metric '%s' (%s) id=%s", metric.name, metric.type.value, metric.id)
        return metric

    def get_metric(self, metric_id: str) -> Metric:
        metric = self.metadata_store.get_metric(metric_id)
        if metric is None:
            raise MetricNotFoundError(f"Metric '{metric_id}' not found")
        return metric

    def list_metrics(
        self,
        data_source_id: str | None = None,
        type: MetricType | None = None,
        is_active: bool | None = None,
    ) -> list[Metric]:
        return self.metadata_store.list_metrics(data_source_id=data_source_id, type=type, is_active=is_active)

    def delete_metric(self, metric_id: str) -> None:
        self.metadata_store.delete_metric(metric_id)
        logger.info("Deleted metric id=%s", metric_id)

    @staticmethod
    def validate_expression(expression: str) -> ExpressionValidation:
        return validate_expression(expression)

    # ── Query synthesis ────────────────────────────

    def _table_for_source(self, data_source_id: str | None, label: str) -> DataTable:
        if not data_source_id:
            raise NoTableError(f"No data table found for {label}: it has no data source")
        tables = self.metadata_store.list_data_tables(data_source_id)
        if not tables:
            raise NoTableError(f"No data table found for {label}")
        return tables[0]

    def build_metric_query(
        self,
        metric_id: str,
        filters: Mapping[str, Any] | None = None,
        group_by: Sequence[str] | None = None,
        date_field: str | None = None,
    ) -> str:
        metric = self.get_metric(metric_id)
        table = self._table_for_source(metric.data_source_id, f"metric '{metric.name}'")
        return build_metric_sql(metric.parsed_formula, table.physical_name, filters, group_by, date_field)

    def execute_metric(
        self,
        metric_id: str,
        filters: Mapping[str, Any] | None = None,
        group_by: Sequence[str] | None = None,
        date_field: str | None = None,
    ) -> list[dict[str, Any]]:
        """Run a metric and return its result rows.

        Raises
        ------
        MetricNotFoundError
            Unknown metric id.
        NoTableError
            The metric's data source has no table.
        """
        sql = self.build_metric_query(metric_id, filters, group_by, date_field)
        with timer() as t:
            rows = self.row_store.query(sql)
        logger.info("execute_metric id=%s rows=%d elapsed_ms=%d", metric_id, len(rows), t["elapsed_ms"])
        return rows

    # ── Multi-metric queries ───────────────────────

    def _load_metrics(self, metric_ids: Sequence[str]) -> list[Metric]:
        metrics: list[Metric] = []
        for metric_id in metric_ids:
            metric = self.metadata_store.get_metric(metric_id)
            if metric is None:
                logger.warning("Skipping unknown metric id=%s", metric_id)
                continue
            metrics.append(metric)
        return metrics

    def execute_chart(
        self,
        data_source_id: str,
        metric_ids: Sequence[str],
        dimensions: Sequence[str],
        filters: Mapping[str, Any] | None = None,
        order_by: Sequence[OrderField] | None = None,
        limit: int | None = None,
    ) -> list[dict[str, Any]]:
        """Several metrics side by side, grouped by *dimensions*."""
        table = self._table_for_source(data_source_id, f"data source '{data_source_id}'")
        sql = build_chart_query(
            table.physical_name, self._load_metrics(metric_ids), dimensions,
            filters, order_by, limit,
        )
        return self.row_store.query(sql)

    def execute_time_series(
        self,
        data_source_id: str,
        metric_ids: Sequence[str],
        date_field: str,
        granularity: Granularity,
        start: date | datetime | None = None,
        end: date | datetime | None = None,
        filters: Mapping[str, Any] | None = None,
    ) -> list[dict[str, Any]]:
        """Metrics bucketed into *granularity* periods of *date_field*."""
        table = self._table_for_source(data_source_id, f"data source '{data_source_id}'")
        sql = build_time_series_query(
            table.physical_name, self._load_metrics(metric_ids), date_field,
            granularity, start, end, filters,
        )
        return self.row_store.query(sql)
