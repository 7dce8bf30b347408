"""
WHERE-clause builder for nested filter trees.

A filter tree is a mapping where each key is either a logical connective
(``AND`` / ``OR`` with a list of sub-trees) or a field name.  Field values:

  {"region": "North"}                        -> "region" = 'North'
  {"region": None}                           -> "region" IS NULL
  {"region": ["North", "South"]}             -> "region" IN ('North', 'South')
  {"amount": {"gt": 5, "lte": 10}}           -> "amount" > 5 AND "amount" <= 10
  {"OR": [{"a": 1}, {"b": {"contains": "x"}}]}

Top-level keys are ANDed together.
"""
from __future__ import annotations

from typing import Any, Callable, Mapping

from src.core.errors import InvalidFilterError
from src.query.sql_format import format_value, quote_identifier

CONNECTIVES = ("AND", "OR")

_COMPARISONS = {
    "gt": ">",
    "gte": ">=",
    "lt": "<",
    "lte": "<=",
    "ne": "!=",
}


def _escape_like(value: Any) -> str:
    text = str(value)
    return text.replace("\\", "\\\\").replace("%", "\\%").replace("_", "\\_")


def _render_in(column: str, values: Any, negate: bool) -> str:
    if not isinstance(values, (list, tuple, set)):
        raise InvalidFilterError(f"Operator '{'notIn' if negate else 'in'}' expects a list of values")
    if not values:
        # Empty IN () is a syntax error; keep the intended truth value
        return "1 = 1" if negate else "1 = 0"
    rendered = ", ".join(format_value(v) for v in values)
    keyword = "NOT IN" if negate else "IN"
    return f"{column} {keyword} ({rendered})"


def _render_like(pattern: Callable[[str], str]) -> Callable[[str, Any], str]:
    def render(column: str, value: Any) -> str:
        return f"{column} LIKE {format_value(pattern(_escape_like(value)))}"
    return render


_LIKE_OPERATORS = {
    "contains": _render_like(lambda v: f"%{v}%"),
    "startsWith": _render_like(lambda v: f"{v}%"),
    "endsWith": _render_like(lambda v: f"%{v}"),
}

OPERATORS = frozenset([*_COMPARISONS, "in", "notIn", *_LIKE_OPERATORS])


def build_condition(field: str, operator: str, value: Any) -> str:
    """Render one ``field <operator> value`` predicate."""
    column = quote_identifier(field)

    if operator in _COMPARISONS:
        if value is None:
            if operator == "ne":
                return f"{column} IS NOT NULL"
            raise InvalidFilterError(f"Operator '{operator}' cannot compare against null")
        return f"{column} {_COMPARISONS[operator]} {format_value(value)}"
    if operator == "in":
        return _render_in(column, value, negate=False)
    if operator == "notIn":
        return _render_in(column, value, negate=True)
    if operator in _LIKE_OPERATORS:
        return _LIKE_OPERATORS[operator](column, value)

    raise InvalidFilterError(
        f"Unknown filter operator '{operator}' on field '{field}'. "
        f"Allowed: {', '.join(sorted(OPERATORS))}"
    )


def _render_field(field: str, value: Any) -> list[str]:
    if value is None:
        return [f"{quote_identifier(field)} IS NULL"]
    if isinstance(value, Mapping):
        if not value:
            raise InvalidFilterError(f"Empty operator object for field '{field}'")
        return [build_condition(field, op, val) for op, val in value.items()]
    if isinstance(value, (list, tuple, set)):
        return [build_condition(field, "in", list(value))]
    return [f"{quote_identifier(field)} = {format_value(value)}"]


def build_conditions(tree: Mapping[str, Any] | None) -> str:
    """Render a filter tree to a boolean SQL expression (no ``WHERE`` keyword).

    Returns ``""`` for an empty tree.
    """
    if not tree:
        return ""
    if not isinstance(tree, Mapping):
        raise InvalidFilterError("Filter tree must be an object")

    conditions: list[str] = []
    for key, value in tree.items():
        if key in CONNECTIVES:
            if not isinstance(value, (list, tuple)):
                raise InvalidFilterError(f"'{key}' expects a list of filter objects")
            parts = []
            for sub in value:
                rendered = build_conditions(sub)
                if not rendered:
                    continue
                parts.append(f"({rendered})" if _is_compound(rendered) else rendered)
            if parts:
                conditions.append("(" + f" {key} ".join(parts) + ")")
        else:
            conditions.extend(_render_field(key, value))

    return " AND ".join(conditions)


def build_where_clause(tree: Mapping[str, Any] | None) -> str:
    """Return ``WHERE <conditions>`` or ``""`` when there is nothing to filter."""
    conditions = build_conditions(tree)
    return f"WHERE {conditions}" if conditions else ""


def combine_conditions(*parts: str) -> str:
    """AND together already-rendered condition strings, skipping blanks."""
    present = [p for p in parts if p]
    if not present:
        return ""
    if len(present) == 1:
        return present[0]
    return " AND ".join(f"({p})" if _is_compound(p) else p for p in present)


def _is_grouped(rendered: str) -> bool:
    """True when one pair of outer parentheses encloses the whole string."""
    if not (rendered.startswith("(") and rendered.endswith(")")):
        return False
    depth = 0
    quote = None
    for i, char in enumerate(rendered):
        if quote:
            if char == quote:
                quote = None
            continue
        if char in "'\"":
            quote = char
        elif char == "(":
            depth += 1
        elif char == ")":
            depth -= 1
            if depth == 0 and i != len(rendered) - 1:
                return False
    return True


def _is_compound(rendered: str) -> bool:
    if " AND " not in rendered and " OR " not in rendered:
        return False
    return not _is_grouped(rendered)
