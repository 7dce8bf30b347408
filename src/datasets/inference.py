"""
Schema inference -- derive column types and nullability from sample rows.

Classification per field, over its first 50 non-null sampled values:
  1. every value is a bool                      -> boolean
  2. every value is a finite number             -> number
  3. at least 80% parse as calendar dates       -> date
  4. otherwise                                  -> string

A column is nullable when a sampled row lacks it or holds null.  A date
column is also nullable when some sampled value does not parse, since that
value is loaded as NULL.
"""
from __future__ import annotations

import datetime
import decimal
import math
from typing import Any, Iterable, Mapping, Sequence

from src.core.config import get_settings
from src.core.errors import EmptySampleError
from src.datasets.schema import ColumnDefinition, ColumnType, DataSourceSchema
from src.core.logging import get_logger

logger = get_logger(__name__)

VALUES_PER_COLUMN = 50
DATE_RATIO_THRESHOLD = 0.8

_DATE_FORMATS = (
    "%Y/%m/%d",
    "%m/%d/%Y",
    "%d-%m-%Y",
    "%Y-%m-%d %H:%M:%S",
    "%m/%d/%Y %H:%M",
    "%b %d %Y",
    "%b %d, %Y",
    "%d %b %Y",
    "%B %d, %Y",
)


# ── Value predicates ────────────────────────────────────


def is_number(value: Any) -> bool:
    if isinstance(value, bool):
        return False
    if isinstance(value, int):
        return True
    if isinstance(value, float):
        return math.isfinite(value)
    if isinstance(value, decimal.Decimal):
        return value.is_finite()
    return False


def parse_date(value: Any) -> datetime.datetime | None:
    """Return *value* as a datetime when it is (or spells) a calendar date."""
    if isinstance(value, datetime.datetime):
        return value
    if isinstance(value, datetime.date):
        return datetime.datetime.combine(value, datetime.time())
    if not isinstance(value, str):
        return None
    text = value.strip()
    if not text:
        return None
    try:
        return datetime.datetime.fromisoformat(text.replace("Z", "+00:00"))
    except ValueError:
        pass
    for fmt in _DATE_FORMATS:
        try:
            return datetime.datetime.strptime(text, fmt)
        except ValueError:
            continue
    return None


def is_date(value: Any) -> bool:
    return parse_date(value) is not None


# ── Inference ───────────────────────────────────────────


def infer_column_type(values: Sequence[Any]) -> ColumnType:
    """Classify a column from its non-null values."""
    if not values:
        return ColumnType.STRING

    sample = values[:VALUES_PER_COLUMN]
    if all(isinstance(v, bool) for v in sample):
        return ColumnType.BOOLEAN
    if all(is_number(v) for v in sample):
        return ColumnType.NUMBER

    date_count = sum(1 for v in sample if is_date(v))
    if date_count / len(sample) >= DATE_RATIO_THRESHOLD:
        return ColumnType.DATE

    return ColumnType.STRING


def _has_unloadable(values: Sequence[Any], column_type: ColumnType) -> bool:
    """True when a date column holds sampled values that will load as NULL."""
    return column_type is ColumnType.DATE and not all(is_date(v) for v in values)


def _observed_fields(rows: Iterable[Mapping[str, Any]]) -> list[str]:
    fields: dict[str, None] = {}
    for row in rows:
        for key in row:
            fields.setdefault(key, None)
    return list(fields)


def infer_schema(rows: Sequence[Mapping[str, Any]], sample_size: int | None = None) -> DataSourceSchema:
    """Infer a DataSourceSchema from the first *sample_size* rows.

    Raises
    ------
    EmptySampleError
        If *rows* is empty.
    """
    if not rows:
        raise EmptySampleError("No data to infer schema from")

    limit = sample_size or get_settings().schema_sample_rows
    sample = list(rows[:limit])

    columns: list[ColumnDefinition] = []
    for name in _observed_fields(sample):
        values = [row.get(name) for row in sample]
        present = [v for v in values if v is not None]
        column_type = infer_column_type(present)
        columns.append(ColumnDefinition(
            name=name,
            type=column_type,
            nullable=len(present) < len(sample) or _has_unloadable(present, column_type),
        ))

    logger.info("Inferred schema with %d column(s) from %d sampled row(s)", len(columns), len(sample))
    return DataSourceSchema(columns=columns, primary_keys=[])
