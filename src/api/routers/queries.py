"""
/query -- multi-metric chart and time-series queries on one data source.
"""
from __future__ import annotations

from datetime import date, datetime
from typing import Any

from fastapi import APIRouter, Depends, Header
from pydantic import BaseModel, Field

from src.api.deps import get_data_filter_provider, get_metric_service
from src.governance.data_filters import DataFilterProvider
from src.metrics.service import MetricService
from src.query.builder import Granularity, OrderField

router = APIRouter()


class ChartRequest(BaseModel):
    data_source_id: str
    metric_ids: list[str] = Field(..., min_length=1)
    dimensions: list[str] = Field(default_factory=list)
    filters: dict[str, Any] = Field(default_factory=dict)
    order_by: list[OrderField] = Field(default_factory=list)
    limit: int | None = Field(None, ge=1)


class TimeSeriesRequest(BaseModel):
    data_source_id: str
    metric_ids: list[str] = Field(..., min_length=1)
    date_field: str
    granularity: Granularity = "month"
    start: date | datetime | None = None
    end: date | datetime | None = None
    filters: dict[str, Any] = Field(default_factory=dict)


class QueryResponse(BaseModel):
    rows: list[dict[str, Any]]
    row_count: int


@router.post("/chart", response_model=QueryResponse)
def chart_query(
    req: ChartRequest,
    x_user_id: str | None = Header(None, alias="X-User-Id"),
    service: MetricService = Depends(get_metric_service),
    provider: DataFilterProvider = Depends(get_data_filter_provider),
):
    filters = provider.merge_data_filters(x_user_id, req.filters)
    rows = service.execute_chart(
        req.data_source_id, req.metric_ids, req.dimensions,
        filters, req.order_by, req.limit,
    )
    return QueryResponse(rows=rows, row_count=len(rows))


@router.post("/time-series", response_model=QueryResponse)
def time_series_query(
    req: TimeSeriesRequest,
    x_user_id: str | None = Header(None, alias="X-User-Id"),
    service: MetricService = Depends(get_metric_service),
    provider: DataFilterProvider = Depends(get_data_filter_provider),
):
    filters = provider.merge_data_filters(x_user_id, req.filters)
    rows = service.execute_time_series(
        req.data_source_id, req.metric_ids, req.date_field, req.granularity,
        req.start, req.end, filters,
    )
    return QueryResponse(rows=rows, row_count=len(rows))
