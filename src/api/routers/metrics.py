"""
/metrics -- metric definitions, expression validation and execution.
"""
from __future__ import annotations

from typing import Any

from fastapi import APIRouter, Depends, Header, Response, status
from pydantic import BaseModel, Field

from src.api.deps import get_cache, get_data_filter_provider, get_metric_service
from src.core.utils import timer
from src.governance.data_filters import DataFilterProvider
from src.metrics.cache import QueryCache
from src.metrics.compiler import ExpressionValidation
from src.metrics.models import Metric, MetricDefinition, MetricType
from src.metrics.service import MetricService
from src.core.logging import get_logger

logger = get_logger(__name__)
router = APIRouter()


class ValidateRequest(BaseModel):
    expression: str


class ExecuteRequest(BaseModel):
    filters: dict[str, Any] = Field(default_factory=dict, description="Filter tree (AND/OR connectives allowed)")
    group_by: list[str] = Field(default_factory=list)
    date_field: str | None = Field(None, description="Required for time-intelligence metrics")


class ExecuteResponse(BaseModel):
    metric_id: str
    rows: list[dict[str, Any]]
    row_count: int
    cached: bool
    latency_ms: int


@router.post("", response_model=Metric, status_code=status.HTTP_201_CREATED)
def create_metric(definition: MetricDefinition, service: MetricService = Depends(get_metric_service)):
    return service.create_metric(definition)


@router.get("", response_model=list[Metric])
def list_metrics(
    data_source_id: str | None = None,
    type: MetricType | None = None,
    is_active: bool | None = None,
    service: MetricService = Depends(get_metric_service),
):
    return service.list_metrics(data_source_id=data_source_id, type=type, is_active=is_active)


@router.post("/validate", response_model=ExpressionValidation)
def validate_expression(req: ValidateRequest, service: MetricService = Depends(get_metric_service)):
    """Dry-run compile of an expression; never fails, errors are listed."""
    return service.validate_expression(req.expression)


@router.get("/{metric_id}", response_model=Metric)
def get_metric(metric_id: str, service: MetricService = Depends(get_metric_service)):
    return service.get_metric(metric_id)


@router.delete("/{metric_id}", status_code=status.HTTP_204_NO_CONTENT)
def delete_metric(
    metric_id: str,
    service: MetricService = Depends(get_metric_service),
    cache: QueryCache = Depends(get_cache),
):
    service.delete_metric(metric_id)
    cache.invalidate_tag(metric_id)
    return Response(status_code=status.HTTP_204_NO_CONTENT)


@router.post("/{metric_id}/execute", response_model=ExecuteResponse)
def execute_metric(
    metric_id: str,
    req: ExecuteRequest,
    x_user_id: str | None = Header(None, alias="X-User-Id"),
    service: MetricService = Depends(get_metric_service),
    provider: DataFilterProvider = Depends(get_data_filter_provider),
    cache: QueryCache = Depends(get_cache),
):
    """Run a metric for the calling user, with their row-level filters applied."""
    with timer() as t:
        filters = provider.merge_data_filters(x_user_id, req.filters)
        key = QueryCache.metric_key(metric_id, filters, req.group_by, req.date_field)
        rows = cache.get(key)
        cached = rows is not None
        if not cached:
            rows = service.execute_metric(metric_id, filters, req.group_by, req.date_field)
            metric = service.get_metric(metric_id)
            cache.put(key, rows, tags=(metric.id, metric.data_source_id))

    return ExecuteResponse(
        metric_id=metric_id,
        rows=rows,
        row_count=len(rows),
        cached=cached,
        latency_ms=t["elapsed_ms"],
    )
