"""
Unit tests -- WHERE-clause builder for nested filter trees.
"""
import pytest

from src.core.errors import InvalidFilterError
from src.query.filters import (
    build_condition,
    build_conditions,
    build_where_clause,
    combine_conditions,
)


# ── Simple values ────────────────────────────────────────

def test_empty_tree_gives_no_clause():
    assert build_where_clause({}) == ""
    assert build_where_clause(None) == ""


def test_equality():
    assert build_where_clause({"region": "North"}) == "WHERE \"region\" = 'North'"


def test_null_is_null():
    assert build_conditions({"region": None}) == '"region" IS NULL'


def test_list_is_in():
    assert build_conditions({"region": ["North", "South"]}) == "\"region\" IN ('North', 'South')"


def test_top_level_keys_anded():
    sql = build_conditions({"region": "North", "year": 2024})
    assert sql == "\"region\" = 'North' AND \"year\" = 2024"


# ── Operators ────────────────────────────────────────────

@pytest.mark.parametrize("op,symbol", [("gt", ">"), ("gte", ">="), ("lt", "<"), ("lte", "<="), ("ne", "!=")])
def test_comparisons(op, symbol):
    assert build_condition("amount", op, 5) == f'"amount" {symbol} 5'


def test_range_object_renders_both_bounds():
    sql = build_conditions({"amount": {"gt": 5, "lte": 10}})
    assert sql == '"amount" > 5 AND "amount" <= 10'


def test_ne_null_is_not_null():
    assert build_condition("region", "ne", None) == '"region" IS NOT NULL'


def test_gt_null_rejected():
    with pytest.raises(InvalidFilterError):
        build_condition("amount", "gt", None)


def test_in_and_not_in():
    assert build_condition("code", "in", [1, 2]) == '"code" IN (1, 2)'
    assert build_condition("code", "notIn", ["a"]) == "\"code\" NOT IN ('a')"


def test_empty_in_lists_keep_truth_value():
    assert build_condition("code", "in", []) == "1 = 0"
    assert build_condition("code", "notIn", []) == "1 = 1"


def test_in_requires_list():
    with pytest.raises(InvalidFilterError):
        build_condition("code", "in", "abc")


def test_like_operators():
    assert build_condition("name", "contains", "ann") == "\"name\" LIKE '%ann%'"
    assert build_condition("name", "startsWith", "An") == "\"name\" LIKE 'An%'"
    assert build_condition("name", "endsWith", "na") == "\"name\" LIKE '%na'"


def test_like_wildcards_escaped():
    assert build_condition("code", "contains", "50%_off") == "\"code\" LIKE '%50\\%\\_off%'"


def test_unknown_operator_rejected():
    with pytest.raises(InvalidFilterError, match="between"):
        build_conditions({"amount": {"between": [1, 2]}})


def test_empty_operator_object_rejected():
    with pytest.raises(InvalidFilterError):
        build_conditions({"amount": {}})


# ── Connectives ──────────────────────────────────────────

def test_or_group_parenthesised():
    sql = build_conditions({"OR": [{"region": "North"}, {"region": "South"}]})
    assert sql == "(\"region\" = 'North' OR \"region\" = 'South')"


def test_nested_and_inside_or():
    sql = build_conditions({
        "OR": [
            {"region": "North", "channel": "store"},
            {"amount": {"gt": 100}},
        ]
    })
    assert sql == "((\"region\" = 'North' AND \"channel\" = 'store') OR \"amount\" > 100)"


def test_connective_with_field_is_anded():
    sql = build_conditions({"year": 2024, "OR": [{"a": 1}, {"b": 2}]})
    assert sql == '"year" = 2024 AND ("a" = 1 OR "b" = 2)'


def test_connective_requires_list():
    with pytest.raises(InvalidFilterError):
        build_conditions({"AND": {"a": 1}})


def test_injection_in_value_is_quoted():
    sql = build_conditions({"region": "North' OR '1'='1"})
    assert sql == "\"region\" = 'North'' OR ''1''=''1'"


def test_injection_in_field_is_quoted():
    sql = build_conditions({'region" = 1; --': "x"})
    assert sql.startswith('"region"" = 1; --" = ')


# ── combine_conditions ───────────────────────────────────

def test_combine_skips_blanks():
    assert combine_conditions("", '"a" = 1', "") == '"a" = 1'
    assert combine_conditions("", "") == ""


def test_combine_wraps_compound_parts():
    combined = combine_conditions('"d" >= 1', '"a" = 1 OR "b" = 2')
    assert combined == '"d" >= 1 AND ("a" = 1 OR "b" = 2)'


def test_grouped_subtree_not_wrapped_twice():
    sql = build_conditions({"AND": [{"OR": [{"a": 1}, {"b": 2}]}, {"c": 3}]})
    assert sql == '(("a" = 1 OR "b" = 2) AND "c" = 3)'


def test_combine_detects_partial_grouping():
    combined = combine_conditions('"d" = 1', '("a" = 1) OR ("b" = 2)')
    assert combined == '"d" = 1 AND (("a" = 1) OR ("b" = 2))'
