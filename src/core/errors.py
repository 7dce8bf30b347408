"""
Error taxonomy for the metrics layer.

Every failure raised by the core derives from ``MetricsLayerError`` and
carries a ``status_code`` so the API layer can surface it without a lookup
table.  Errors that aggregate several problems (expression diagnostics,
schema violations) keep the full list on ``errors``.
"""
from __future__ import annotations


class MetricsLayerError(Exception):
    """Base class for all metrics-layer failures."""

    status_code: int = 400

    def __init__(self, message: str, errors: list[str] | None = None):
        super().__init__(message)
        self.message = message
        self.errors: list[str] = list(errors) if errors else [message]


# ── User-input errors (422) ─────────────────────────────


class InvalidExpressionError(MetricsLayerError):
    """Metric expression could not be compiled."""
    status_code = 422


class SchemaValidationError(MetricsLayerError):
    """Rows violate the declared table schema."""
    status_code = 422

    def __init__(self, errors: list[str]):
        summary = f"Data validation failed with {len(errors)} error(s): " + "; ".join(errors[:10])
        if len(errors) > 10:
            summary += f"; ... and {len(errors) - 10} more"
        super().__init__(summary, errors)


class InvalidFilterError(MetricsLayerError):
    """Filter tree uses an unknown operator or a malformed value."""
    status_code = 422


class DateFieldRequiredError(MetricsLayerError):
    """Time-intelligence metric executed without a date field."""
    status_code = 422


class UnsupportedTimeFunctionError(MetricsLayerError):
    """Compiled expression requests a time function with no SQL rendering."""
    status_code = 422


class EmptySampleError(MetricsLayerError):
    """Schema inference was given no rows."""
    status_code = 422


# ── Missing entities (404) ──────────────────────────────


class TableNotFoundError(MetricsLayerError):
    status_code = 404


class MetricNotFoundError(MetricsLayerError):
    status_code = 404


class NoTableError(MetricsLayerError):
    """The metric's data source has no physical table to query."""
    status_code = 404


class DataSourceNotFoundError(MetricsLayerError):
    status_code = 404


# ── Conflicts (409) ─────────────────────────────────────


class MetricAlreadyExistsError(MetricsLayerError):
    status_code = 409


class TableSchemaConflictError(MetricsLayerError):
    """A table already exists under the name with a different schema."""
    status_code = 409
