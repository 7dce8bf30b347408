"""
Metric records and the compiled (parsed) form of a metric expression.
"""
from __future__ import annotations

from datetime import datetime
from enum import Enum
from typing import Annotated, Literal, Union

from pydantic import BaseModel, Field

from src.metrics.nodes import AggFunc, TimeFunction


class MetricType(str, Enum):
    SIMPLE = "SIMPLE"
    CALCULATED = "CALCULATED"
    TIME_INTEL = "TIME_INTEL"


class AggregationMetric(BaseModel):
    kind: Literal["aggregation"] = "aggregation"
    agg_func: AggFunc
    field: str


class FormulaMetric(BaseModel):
    kind: Literal["formula"] = "formula"
    formula: str
    dependencies: list[str] = Field(default_factory=list)


class TimeIntelMetric(BaseModel):
    kind: Literal["time_intel"] = "time_intel"
    time_func: TimeFunction
    formula: str = Field(..., description="Raw argument text, e.g. 'SUM(Revenue), 3'")
    dependencies: list[str] = Field(default_factory=list)


ParsedMetric = Annotated[
    Union[AggregationMetric, FormulaMetric, TimeIntelMetric],
    Field(discriminator="kind"),
]

METRIC_TYPE_FOR_KIND: dict[str, MetricType] = {
    "aggregation": MetricType.SIMPLE,
    "formula": MetricType.CALCULATED,
    "time_intel": MetricType.TIME_INTEL,
}


class MetricDefinition(BaseModel):
    """Input for creating a metric."""

    name: str = Field(..., min_length=1, max_length=120)
    display_name: str = Field(..., min_length=1)
    description: str | None = None
    type: MetricType | None = Field(None, description="Derived from the expression when omitted")
    expression: str
    data_source_id: str | None = None
    format: str = "decimal"
    decimal_places: int = 2
    prefix: str | None = None
    suffix: str | None = None


class Metric(BaseModel):
    id: str
    name: str
    display_name: str
    description: str | None = None
    type: MetricType
    expression: str
    parsed_formula: ParsedMetric
    data_source_id: str | None = None
    format: str = "decimal"
    decimal_places: int = 2
    prefix: str | None = None
    suffix: str | None = None
    is_active: bool = True
    created_at: datetime | None = None
