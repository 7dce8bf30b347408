"""
Metric expression compiler -- expression text -> ParsedMetric.

Forms, checked in priority order:
  1. ``YTD(...)``, ``RollingAverage(SUM(x), 3)`` ... -> time_intel
  2. ``SUM(field)`` / AVG / COUNT / MIN / MAX       -> aggregation
  3. anything else                                 -> formula

The compiled form is produced once when a metric is created and stored
with it; queries are synthesized from the stored form.
"""
from __future__ import annotations

import re

from pydantic import BaseModel

from src.core.errors import InvalidExpressionError, MetricsLayerError
from src.metrics.models import (
    AggregationMetric,
    FormulaMetric,
    ParsedMetric,
    TimeIntelMetric,
)
from src.metrics.nodes import (
    TIME_FUNCS,
    Aggregate,
    Identifier,
    Node,
    TimeIntelCall,
    walk,
)
from src.metrics.parser import parse_expression
from src.core.logging import get_logger

logger = get_logger(__name__)

_LEADING_CALL_RE = re.compile(r"^([A-Za-z_][A-Za-z0-9_]*)\s*\(")


class ExpressionValidation(BaseModel):
    is_valid: bool
    errors: list[str]


def extract_dependencies(node: Node) -> list[str]:
    """Capitalised bare identifiers referenced by *node*, in first-seen order."""
    deps: list[str] = []
    for n in walk(node):
        if isinstance(n, Identifier) and n.name[:1].isupper() and n.name not in deps:
            deps.append(n.name)
    return deps


def _compile_time_intel(expr: str, node: Node, func_name: str) -> TimeIntelMetric:
    if not isinstance(node, TimeIntelCall):
        raise InvalidExpressionError(
            f"Invalid time intelligence function: the argument of {func_name}(...) "
            "must be enclosed by a single pair of parentheses spanning the whole expression"
        )
    for arg in node.args:
        if any(isinstance(n, TimeIntelCall) for n in walk(arg)):
            raise InvalidExpressionError("Time intelligence functions cannot be nested")
    deps: list[str] = []
    for arg in node.args:
        for dep in extract_dependencies(arg):
            if dep not in deps:
                deps.append(dep)
    return TimeIntelMetric(time_func=node.func, formula=node.args_text, dependencies=deps)


def compile_expression(expression: str) -> ParsedMetric:
    """Compile *expression* into its ParsedMetric form.

    Raises
    ------
    InvalidExpressionError
        Empty input, unbalanced parentheses, syntax errors, or a time
        function whose argument cannot be isolated.
    """
    node = parse_expression(expression)
    expr = expression.strip()

    leading = _LEADING_CALL_RE.match(expr)
    if leading and leading.group(1).upper() in TIME_FUNCS:
        parsed: ParsedMetric = _compile_time_intel(expr, node, leading.group(1))
    elif (
        isinstance(node, Aggregate)
        and not node.distinct
        and isinstance(node.argument, Identifier)
    ):
        parsed = AggregationMetric(agg_func=node.func, field=node.argument.name)
    else:
        if any(isinstance(n, TimeIntelCall) for n in walk(node)):
            raise InvalidExpressionError(
                "Time intelligence functions must wrap the entire expression"
            )
        parsed = FormulaMetric(formula=expr, dependencies=extract_dependencies(node))

    logger.debug("Compiled expression %r -> %s", expr, parsed.kind)
    return parsed


def validate_expression(expression: str) -> ExpressionValidation:
    """Compile *expression* and report diagnostics instead of raising."""
    errors: list[str] = []
    try:
        compile_expression(expression)
    except MetricsLayerError as exc:
        errors.extend(exc.errors)
    except Exception as exc:  # never raise from validation
        logger.warning("Unexpected failure validating expression %r: %s", expression, exc)
        errors.append(f"Invalid expression: {exc}")

    # Report parentheses even when the compile failed earlier for another reason
    depth = 0
    for char in expression or "":
        if char == "(":
            depth += 1
        elif char == ")":
            depth -= 1
            if depth < 0:
                break
    if depth != 0 and "Unbalanced parentheses" not in errors:
        errors.append("Unbalanced parentheses")

    return ExpressionValidation(is_valid=not errors, errors=errors)
