"""
Render metric-expression ASTs as SQL.

Field references become quoted identifiers and literals go through
``format_value``; the expression text itself is never spliced into SQL.
Bare names are treated as columns of the queried table -- a formula that
names another metric is not expanded into that metric's definition.
"""
from __future__ import annotations

from src.core.errors import InvalidExpressionError
from src.metrics.nodes import (
    Aggregate,
    AggFunc,
    BinaryOp,
    FunctionCall,
    Identifier,
    Node,
    NumberLiteral,
    Star,
    StringLiteral,
    TimeIntelCall,
    UnaryOp,
    contains_aggregate,
)
from src.metrics.parser import parse_expression
from src.query.sql_format import format_value, quote_identifier


def render_sql(node: Node) -> str:
    if isinstance(node, NumberLiteral):
        return node.text
    if isinstance(node, StringLiteral):
        return format_value(node.value)
    if isinstance(node, Identifier):
        return quote_identifier(node.name)
    if isinstance(node, Star):
        return "*"
    if isinstance(node, UnaryOp):
        operand = render_sql(node.operand)
        # parenthesise nested signs so "- -x" never renders as a "--" comment
        if isinstance(node.operand, (BinaryOp, UnaryOp)):
            operand = f"({operand})"
        return f"{node.op}{operand}"
    if isinstance(node, BinaryOp):
        return f"{_render_operand(node.left)} {node.op} {_render_operand(node.right)}"
    if isinstance(node, Aggregate):
        inner = render_sql(node.argument)
        if node.distinct:
            inner = f"DISTINCT {inner}"
        return f"{node.func.value}({inner})"
    if isinstance(node, FunctionCall):
        return f"{node.name.upper()}({', '.join(render_sql(a) for a in node.args)})"
    if isinstance(node, TimeIntelCall):
        raise InvalidExpressionError(
            f"{node.func.value}() cannot be rendered inside another expression"
        )
    raise TypeError(f"Unknown expression node {type(node).__name__}")


def _render_operand(node: Node) -> str:
    rendered = render_sql(node)
    if isinstance(node, BinaryOp):
        return f"({rendered})"
    return rendered


def translate_formula(formula: str) -> str:
    """Translate formula text such as ``SUM(Revenue) - SUM(Cost)`` to SQL."""
    return render_sql(parse_expression(formula))


def render_aggregated(node: Node, default: AggFunc = AggFunc.SUM) -> str:
    """Render *node*, wrapping it in *default* unless it already aggregates."""
    if contains_aggregate(node):
        return render_sql(node)
    return f"{default.value}({render_sql(node)})"
