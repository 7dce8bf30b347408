"""
Unit tests -- SQL synthesis for compiled metrics.
"""
import pytest

from src.core.errors import DateFieldRequiredError, UnsupportedTimeFunctionError
from src.metrics.compiler import compile_expression
from src.metrics.models import AggregationMetric, FormulaMetric, TimeIntelMetric
from src.metrics.nodes import AggFunc, TimeFunction
from src.query.expressions import render_aggregated, translate_formula
from src.query.metric_sql import build_metric_sql, metric_select_expression
from src.metrics.parser import parse_expression

TABLE = "ds_1234abcd_sales"


# ── Aggregation ──────────────────────────────────────────

def test_aggregation_end_to_end():
    parsed = compile_expression("SUM(Amount)")
    sql = build_metric_sql(parsed, TABLE, {"region": "North"}, ["category"])
    assert sql == (
        'SELECT "category", SUM("Amount") AS value FROM "ds_1234abcd_sales" '
        "WHERE \"region\" = 'North' GROUP BY \"category\""
    )


def test_aggregation_without_filters_or_groups():
    sql = build_metric_sql(AggregationMetric(agg_func=AggFunc.COUNT, field="OrderId"), TABLE)
    assert sql == 'SELECT COUNT("OrderId") AS value FROM "ds_1234abcd_sales"'


def test_field_with_quote_cannot_break_out():
    sql = build_metric_sql(AggregationMetric(agg_func=AggFunc.SUM, field='x") FROM secrets --'), TABLE)
    assert 'SUM("x"") FROM secrets --")' in sql


# ── Formula ──────────────────────────────────────────────

def test_formula_query():
    parsed = compile_expression("SUM(Revenue) - SUM(Cost)")
    sql = build_metric_sql(parsed, TABLE, group_by=["region"])
    assert sql == (
        'SELECT "region", (SUM("Revenue") - SUM("Cost")) AS value '
        'FROM "ds_1234abcd_sales" GROUP BY "region"'
    )


def test_formula_keeps_grouping_of_operands():
    sql = translate_formula("(SUM(Revenue) - SUM(Cost)) / SUM(Revenue) * 100")
    assert sql == '((SUM("Revenue") - SUM("Cost")) / SUM("Revenue")) * 100'


def test_formula_functions_and_literals():
    assert translate_formula("ROUND(AVG(Price), 2)") == 'ROUND(AVG("Price"), 2)'
    assert translate_formula("COUNT(DISTINCT CustomerId)") == 'COUNT(DISTINCT "CustomerId")'
    assert translate_formula("-(a - b)") == '-("a" - "b")'


def test_hyphenated_header_aggregated_as_one_column():
    sql = build_metric_sql(compile_expression("SUM(Order-Amount)"), TABLE)
    assert sql == 'SELECT SUM("Order-Amount") AS value FROM "ds_1234abcd_sales"'
    assert translate_formula("SUM(Order-Amount) / SUM(Units)") == 'SUM("Order-Amount") / SUM("Units")'


def test_double_negation_never_renders_comment():
    assert "--" not in translate_formula("- -Revenue")


def test_render_aggregated_wraps_bare_expressions():
    assert render_aggregated(parse_expression("Revenue")) == 'SUM("Revenue")'
    assert render_aggregated(parse_expression("AVG(Revenue)")) == 'AVG("Revenue")'


# ── Period to date ───────────────────────────────────────

@pytest.mark.parametrize("func,period", [("YTD", "year"), ("QTD", "quarter"), ("MTD", "month")])
def test_period_to_date(func, period):
    parsed = compile_expression(f"{func}(SUM(Revenue))")
    sql = build_metric_sql(parsed, TABLE, {"region": "North"}, date_field="date")
    assert sql == (
        'SELECT SUM("Revenue") AS value FROM "ds_1234abcd_sales" '
        f"WHERE \"date\" >= DATE_TRUNC('{period}', CURRENT_DATE) AND \"region\" = 'North'"
    )


def test_period_to_date_wraps_bare_field_in_sum():
    parsed = TimeIntelMetric(time_func=TimeFunction.YTD, formula="Revenue", dependencies=["Revenue"])
    sql = build_metric_sql(parsed, TABLE, date_field="date")
    assert sql.startswith('SELECT SUM("Revenue") AS value')


def test_period_to_date_with_group_by():
    parsed = compile_expression("MTD(SUM(Revenue))")
    sql = build_metric_sql(parsed, TABLE, group_by=["region"], date_field="date")
    assert sql.startswith('SELECT "region", SUM("Revenue") AS value')
    assert sql.endswith('GROUP BY "region"')


# ── Period over period ───────────────────────────────────

def test_yoy_change_divides_safely():
    parsed = compile_expression("YOY(SUM(Revenue))")
    sql = build_metric_sql(parsed, TABLE, {"region": "North"}, date_field="date")
    assert "NULLIF(CAST(previous_period.value AS DOUBLE PRECISION), 0)" in sql
    assert "AS yoy_change" in sql
    assert "AS previous_value" in sql
    assert 'EXTRACT(YEAR FROM "date") = EXTRACT(YEAR FROM CURRENT_DATE) - 1' in sql
    assert "CROSS JOIN" in sql
    # filters apply to both periods
    assert sql.count("\"region\" = 'North'") == 2


def test_mom_uses_month_buckets():
    parsed = compile_expression("MOM(SUM(Revenue))")
    sql = build_metric_sql(parsed, TABLE, date_field="date")
    assert "AS mom_change" in sql
    assert "DATE_TRUNC('month', CURRENT_DATE - INTERVAL '1 month')" in sql


def test_yoy_ignores_group_by():
    parsed = compile_expression("YOY(SUM(Revenue))")
    sql = build_metric_sql(parsed, TABLE, group_by=["region"], date_field="date")
    assert "GROUP BY" not in sql
    assert '"region"' not in sql


# ── Rolling windows ──────────────────────────────────────

def test_rolling_average_end_to_end():
    parsed = compile_expression("RollingAverage(SUM(Revenue), 3)")
    sql = build_metric_sql(parsed, TABLE, date_field="date")
    assert sql == (
        'SELECT "date", AVG(SUM("Revenue")) OVER (ORDER BY "date" '
        'ROWS BETWEEN 2 PRECEDING AND CURRENT ROW) AS value '
        'FROM "ds_1234abcd_sales" GROUP BY "date" ORDER BY "date"'
    )


def test_rolling_sum_partitions_by_groups():
    parsed = compile_expression("RollingSum(Revenue, 7)")
    sql = build_metric_sql(parsed, TABLE, group_by=["region"], date_field="date")
    assert sql == (
        'SELECT "region", "date", SUM("Revenue") OVER (PARTITION BY "region" ORDER BY "date" '
        'ROWS BETWEEN 6 PRECEDING AND CURRENT ROW) AS value '
        'FROM "ds_1234abcd_sales" ORDER BY "region", "date"'
    )


def test_rolling_window_defaults_to_three():
    parsed = compile_expression("RollingAverage(SUM(Revenue))")
    sql = build_metric_sql(parsed, TABLE, date_field="date")
    assert "ROWS BETWEEN 2 PRECEDING AND CURRENT ROW" in sql


def test_rolling_window_ignores_non_integer():
    parsed = compile_expression("RollingAverage(SUM(Revenue), 2.5)")
    sql = build_metric_sql(parsed, TABLE, date_field="date")
    assert "ROWS BETWEEN 2 PRECEDING AND CURRENT ROW" in sql


# ── Errors ───────────────────────────────────────────────

def test_date_field_required():
    parsed = compile_expression("YTD(SUM(Revenue))")
    with pytest.raises(DateFieldRequiredError):
        build_metric_sql(parsed, TABLE)


@pytest.mark.parametrize("text", ["QOQ(SUM(Revenue))", "PreviousPeriod(SUM(Revenue))", "CAGR(SUM(Revenue))"])
def test_unsupported_time_functions(text):
    parsed = compile_expression(text)
    with pytest.raises(UnsupportedTimeFunctionError):
        build_metric_sql(parsed, TABLE, date_field="date")
    # reported before the missing date field
    with pytest.raises(UnsupportedTimeFunctionError):
        build_metric_sql(parsed, TABLE)


# ── Multi-metric select expressions ──────────────────────

def test_metric_select_expression():
    assert metric_select_expression(AggregationMetric(agg_func=AggFunc.MAX, field="Price")) == 'MAX("Price")'
    assert metric_select_expression(FormulaMetric(formula="SUM(a) / 2")) == '(SUM("a") / 2)'
    with pytest.raises(UnsupportedTimeFunctionError):
        metric_select_expression(compile_expression("YTD(SUM(Revenue))"))
