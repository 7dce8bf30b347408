"""
Metric SQL synthesis -- turns a compiled metric into a SELECT against its
physical table.

  aggregation  -> SELECT [groups, ]AGG("field") AS value FROM ...
  formula      -> SELECT [groups, ](<translated formula>) AS value FROM ...
  time_intel   -> one rendering rule per time function (see below)
"""
from __future__ import annotations

from typing import Any, Mapping, Sequence

from src.core.errors import (
    DateFieldRequiredError,
    InvalidExpressionError,
    UnsupportedTimeFunctionError,
)
from src.metrics.models import (
    AggregationMetric,
    FormulaMetric,
    ParsedMetric,
    TimeIntelMetric,
)
from src.metrics.nodes import NumberLiteral, TimeFunction, TimeIntelCall, contains_aggregate
from src.metrics.parser import parse_expression
from src.query.expressions import render_aggregated, render_sql, translate_formula
from src.query.filters import build_conditions, combine_conditions
from src.query.sql_format import quote_identifier
from src.core.logging import get_logger

logger = get_logger(__name__)

DEFAULT_ROLLING_WINDOW = 3

_PERIOD_TO_DATE = {
    TimeFunction.YTD: "year",
    TimeFunction.QTD: "quarter",
    TimeFunction.MTD: "month",
}


# ── Shared assembly ─────────────────────────────────────


def _assemble(
    select_parts: Sequence[str],
    table: str,
    conditions: str = "",
    group_by: Sequence[str] = (),
    order_by: Sequence[str] = (),
) -> str:
    parts = [f"SELECT {', '.join(select_parts)}", f"FROM {quote_identifier(table)}"]
    if conditions:
        parts.append(f"WHERE {conditions}")
    if group_by:
        parts.append(f"GROUP BY {', '.join(group_by)}")
    if order_by:
        parts.append(f"ORDER BY {', '.join(order_by)}")
    return " ".join(parts)


def _quoted(columns: Sequence[str] | None) -> list[str]:
    return [quote_identifier(c) for c in columns or []]


# ── Aggregation / formula ───────────────────────────────


def build_aggregation_query(
    parsed: AggregationMetric,
    table: str,
    filters: Mapping[str, Any] | None = None,
    group_by: Sequence[str] | None = None,
) -> str:
    groups = _quoted(group_by)
    value = f"{parsed.agg_func.value}({quote_identifier(parsed.field)}) AS value"
    return _assemble([*groups, value], table, build_conditions(filters), groups)


def build_formula_query(
    parsed: FormulaMetric,
    table: str,
    filters: Mapping[str, Any] | None = None,
    group_by: Sequence[str] | None = None,
) -> str:
    groups = _quoted(group_by)
    value = f"({translate_formula(parsed.formula)}) AS value"
    return _assemble([*groups, value], table, build_conditions(filters), groups)


# ── Time intelligence ───────────────────────────────────


def _time_intel_call(parsed: TimeIntelMetric) -> TimeIntelCall:
    node = parse_expression(f"{parsed.time_func.value}({parsed.formula})")
    if not isinstance(node, TimeIntelCall):
        raise InvalidExpressionError(f"Stored formula for {parsed.time_func.value} is not a single call")
    return node


def _rolling_window(call: TimeIntelCall) -> int:
    if len(call.args) >= 2:
        last = call.args[-1]
        if isinstance(last, NumberLiteral) and last.text.isdigit() and int(last.text) >= 1:
            return int(last.text)
    return DEFAULT_ROLLING_WINDOW


def _period_to_date_query(
    call: TimeIntelCall, period: str, table: str, date_col: str,
    filters: Mapping[str, Any] | None, group_by: Sequence[str] | None,
) -> str:
    groups = _quoted(group_by)
    value = f"{render_aggregated(call.args[0])} AS value"
    conditions = combine_conditions(
        f"{date_col} >= DATE_TRUNC('{period}', CURRENT_DATE)",
        build_conditions(filters),
    )
    return _assemble([*groups, value], table, conditions, groups)


def _period_over_period_query(
    func: TimeFunction, call: TimeIntelCall, table: str, date_col: str,
    filters: Mapping[str, Any] | None,
) -> str:
    if func is TimeFunction.YOY:
        current = f"EXTRACT(YEAR FROM {date_col}) = EXTRACT(YEAR FROM CURRENT_DATE)"
        previous = f"EXTRACT(YEAR FROM {date_col}) = EXTRACT(YEAR FROM CURRENT_DATE) - 1"
        change_col = "yoy_change"
    else:
        current = f"DATE_TRUNC('month', {date_col}) = DATE_TRUNC('month', CURRENT_DATE)"
        previous = (
            f"DATE_TRUNC('month', {date_col}) = "
            "DATE_TRUNC('month', CURRENT_DATE - INTERVAL '1 month')"
        )
        change_col = "mom_change"

    value = f"{render_aggregated(call.args[0])} AS value"
    caller = build_conditions(filters)
    current_sql = _assemble([value], table, combine_conditions(current, caller))
    previous_sql = _assemble([value], table, combine_conditions(previous, caller))

    return (
        "SELECT current_period.value AS value, "
        "previous_period.value AS previous_value, "
        "((current_period.value - previous_period.value) "
        "/ NULLIF(CAST(previous_period.value AS DOUBLE PRECISION), 0) * 100) "
        f"AS {change_col} "
        f"FROM ({current_sql}) AS current_period "
        f"CROSS JOIN ({previous_sql}) AS previous_period"
    )


def _rolling_query(
    func: TimeFunction, call: TimeIntelCall, table: str, date_col: str,
    filters: Mapping[str, Any] | None, group_by: Sequence[str] | None,
) -> str:
    window = _rolling_window(call)
    window_func = "AVG" if func is TimeFunction.ROLLING_AVERAGE else "SUM"
    inner = call.args[0]
    groups = _quoted(group_by)

    partition = f"PARTITION BY {', '.join(groups)} " if groups else ""
    over = (
        f"OVER ({partition}ORDER BY {date_col} "
        f"ROWS BETWEEN {window - 1} PRECEDING AND CURRENT ROW)"
    )
    value = f"{window_func}({render_sql(inner)}) {over} AS value"

    # An aggregated inner expression needs one row per date (and group)
    grouping = [*groups, date_col] if contains_aggregate(inner) else []
    return _assemble(
        [*groups, date_col, value], table, build_conditions(filters),
        grouping, [*groups, date_col],
    )


def build_time_intel_query(
    parsed: TimeIntelMetric,
    table: str,
    filters: Mapping[str, Any] | None = None,
    group_by: Sequence[str] | None = None,
    date_field: str | None = None,
) -> str:
    func = parsed.time_func
    supported = (*_PERIOD_TO_DATE, TimeFunction.YOY, TimeFunction.MOM,
                 TimeFunction.ROLLING_AVERAGE, TimeFunction.ROLLING_SUM)
    if func not in supported:
        raise UnsupportedTimeFunctionError(f"Unsupported time intelligence function: {func.value}")
    if not date_field:
        raise DateFieldRequiredError(f"A date field is required for {func.value}")

    call = _time_intel_call(parsed)
    date_col = quote_identifier(date_field)

    if func in _PERIOD_TO_DATE:
        return _period_to_date_query(call, _PERIOD_TO_DATE[func], table, date_col, filters, group_by)
    if func in (TimeFunction.YOY, TimeFunction.MOM):
        if group_by:
            logger.warning("%s ignores group_by=%s; returning a single comparison row", func.value, group_by)
        return _period_over_period_query(func, call, table, date_col, filters)
    return _rolling_query(func, call, table, date_col, filters, group_by)


# ── Dispatch ────────────────────────────────────────────


def build_metric_sql(
    parsed: ParsedMetric,
    table: str,
    filters: Mapping[str, Any] | None = None,
    group_by: Sequence[str] | None = None,
    date_field: str | None = None,
) -> str:
    """Synthesize the SQL for a compiled metric against *table*."""
    if isinstance(parsed, AggregationMetric):
        sql = build_aggregation_query(parsed, table, filters, group_by)
    elif isinstance(parsed, FormulaMetric):
        sql = build_formula_query(parsed, table, filters, group_by)
    else:
        sql = build_time_intel_query(parsed, table, filters, group_by, date_field)
    logger.info("Generated metric SQL: %s", sql)
    return sql


def metric_select_expression(parsed: ParsedMetric) -> str:
    """SQL expression for a metric inside a multi-metric SELECT (chart queries)."""
    if isinstance(parsed, AggregationMetric):
        return f"{parsed.agg_func.value}({quote_identifier(parsed.field)})"
    if isinstance(parsed, FormulaMetric):
        return f"({translate_formula(parsed.formula)})"
    raise UnsupportedTimeFunctionError(
        f"{parsed.time_func.value} metrics cannot be combined into a multi-metric query"
    )
