"""
Dimensional query builder -- QuerySpec -> SQL SELECT.

QuerySpec is the ephemeral description of one query (columns, table,
joins, filter tree, grouping, ordering, paging).  Chart and time-series
queries are expressed as QuerySpecs built from compiled metrics.
"""
from __future__ import annotations

from datetime import date, datetime
from typing import Any, Literal, Mapping, Sequence

from pydantic import BaseModel, Field

from src.core.errors import InvalidFilterError
from src.metrics.models import Metric, TimeIntelMetric
from src.query.filters import build_conditions, combine_conditions
from src.query.metric_sql import metric_select_expression
from src.query.sql_format import quote_identifier
from src.core.logging import get_logger

logger = get_logger(__name__)

Granularity = Literal["day", "week", "month", "quarter", "year"]


class SelectField(BaseModel):
    """A projected column (``raw=False``) or a pre-rendered SQL expression."""

    expr: str
    alias: str | None = None
    raw: bool = Field(False, description="expr is already-rendered SQL, not a column name")


class JoinClause(BaseModel):
    type: Literal["INNER", "LEFT", "RIGHT"] = "INNER"
    table: str
    on: list[tuple[str, str]] = Field(..., min_length=1, description="(left column, right column) pairs")


class OrderField(BaseModel):
    field: str
    direction: Literal["ASC", "DESC"] = "ASC"


class QuerySpec(BaseModel):
    select: list[str | SelectField]
    from_table: str
    joins: list[JoinClause] = Field(default_factory=list)
    where: dict[str, Any] | None = None
    group_by: list[str] = Field(default_factory=list)
    order_by: list[OrderField] = Field(default_factory=list)
    limit: int | None = Field(None, ge=0)
    offset: int | None = Field(None, ge=0)


def _render_select(item: str | SelectField) -> str:
    if isinstance(item, str):
        return quote_identifier(item)
    rendered = item.expr if item.raw else quote_identifier(item.expr)
    if item.alias:
        rendered += f" AS {quote_identifier(item.alias)}"
    return rendered


def _qualified(table: str, column: str) -> str:
    """``table.column`` when *column* is bare, else the explicit qualifier."""
    if "." in column:
        table, column = column.split(".", 1)
    return f"{quote_identifier(table)}.{quote_identifier(column)}"


def _render_join(join: JoinClause, from_table: str) -> str:
    on = " AND ".join(
        f"{_qualified(from_table, left)} = {_qualified(join.table, right)}"
        for left, right in join.on
    )
    return f"{join.type} JOIN {quote_identifier(join.table)} ON {on}"


def build_query(spec: QuerySpec) -> str:
    """Render a QuerySpec as a single-line SELECT statement."""
    if not spec.select:
        raise InvalidFilterError("Query must select at least one column")

    parts = [
        "SELECT " + ", ".join(_render_select(s) for s in spec.select),
        f"FROM {quote_identifier(spec.from_table)}",
    ]
    parts.extend(_render_join(j, spec.from_table) for j in spec.joins)

    conditions = build_conditions(spec.where)
    if conditions:
        parts.append(f"WHERE {conditions}")
    if spec.group_by:
        parts.append("GROUP BY " + ", ".join(quote_identifier(g) for g in spec.group_by))
    if spec.order_by:
        parts.append("ORDER BY " + ", ".join(
            f"{quote_identifier(o.field)} {o.direction}" for o in spec.order_by
        ))
    if spec.limit is not None:
        parts.append(f"LIMIT {int(spec.limit)}")
    if spec.offset:
        parts.append(f"OFFSET {int(spec.offset)}")

    return " ".join(parts)


# ── Multi-metric queries ────────────────────────────────


def _metric_fields(metrics: Sequence[Metric]) -> list[SelectField]:
    fields: list[SelectField] = []
    for metric in metrics:
        if isinstance(metric.parsed_formula, TimeIntelMetric):
            logger.warning("Skipping time-intelligence metric '%s' in multi-metric query", metric.name)
            continue
        fields.append(SelectField(
            expr=metric_select_expression(metric.parsed_formula),
            alias=metric.name,
            raw=True,
        ))
    return fields


def build_chart_query(
    table: str,
    metrics: Sequence[Metric],
    dimensions: Sequence[str],
    filters: Mapping[str, Any] | None = None,
    order_by: Sequence[OrderField] | None = None,
    limit: int | None = None,
) -> str:
    """Dimensions plus one aggregated column per metric, grouped by the dimensions."""
    spec = QuerySpec(
        select=[*dimensions, *_metric_fields(metrics)],
        from_table=table,
        where=dict(filters) if filters else None,
        group_by=list(dimensions),
        order_by=list(order_by or []),
        limit=limit,
    )
    return build_query(spec)


def build_time_series_query(
    table: str,
    metrics: Sequence[Metric],
    date_field: str,
    granularity: Granularity,
    start: date | datetime | None = None,
    end: date | datetime | None = None,
    filters: Mapping[str, Any] | None = None,
) -> str:
    """Metrics bucketed by ``DATE_TRUNC(granularity, date_field)`` as ``period``."""
    if granularity not in ("day", "week", "month", "quarter", "year"):
        raise InvalidFilterError(f"Unknown granularity '{granularity}'")

    date_col = quote_identifier(date_field)
    select: list[str | SelectField] = [
        SelectField(expr=f"DATE_TRUNC('{granularity}', {date_col})", alias="period", raw=True),
        *_metric_fields(metrics),
    ]

    range_filter: dict[str, Any] = {}
    if start is not None:
        range_filter["gte"] = start
    if end is not None:
        range_filter["lte"] = end
    conditions = combine_conditions(
        build_conditions(filters),
        build_conditions({date_field: range_filter}) if range_filter else "",
    )

    parts = [
        "SELECT " + ", ".join(_render_select(s) for s in select),
        f"FROM {quote_identifier(table)}",
    ]
    if conditions:
        parts.append(f"WHERE {conditions}")
    # ordinal: a source column named "period" would win over the output alias
    parts.append("GROUP BY 1 ORDER BY 1 ASC")
    return " ".join(parts)
