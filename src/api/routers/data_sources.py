"""
/data-sources -- data sources, their tables, loads and previews.
"""
from __future__ import annotations

from typing import Any

from fastapi import APIRouter, Depends, Query, Response, status
from pydantic import BaseModel, Field

from src.api.deps import get_cache, get_metadata_store, get_table_manager
from src.core.errors import DataSourceNotFoundError
from src.datasets.inference import infer_schema
from src.datasets.schema import DataSource, DataSourceSchema, DataSourceType, DataTable
from src.datasets.table_manager import DynamicTableManager
from src.db.metadata_store import MetadataStore
from src.metrics.cache import QueryCache

router = APIRouter()


class DataSourceCreate(BaseModel):
    name: str = Field(..., min_length=1, max_length=255)
    description: str | None = None
    type: DataSourceType = DataSourceType.CSV


class TableCreate(BaseModel):
    table_name: str = Field(..., min_length=1)
    rows: list[dict[str, Any]] = Field(default_factory=list)
    schema_: DataSourceSchema | None = Field(
        None, alias="schema", description="Inferred from the rows when omitted",
    )

    model_config = {"populate_by_name": True}


class RowsPayload(BaseModel):
    rows: list[dict[str, Any]]


class PreviewResponse(BaseModel):
    table_name: str
    rows: list[dict[str, Any]]
    limit: int
    offset: int


def _require_source(store: MetadataStore, data_source_id: str) -> DataSource:
    source = store.get_data_source(data_source_id)
    if source is None:
        raise DataSourceNotFoundError(f"Data source '{data_source_id}' not found")
    return source


# ── Data sources ────────────────────────────────────────


@router.post("", response_model=DataSource, status_code=status.HTTP_201_CREATED)
def create_data_source(req: DataSourceCreate, store: MetadataStore = Depends(get_metadata_store)):
    return store.create_data_source(req.name, req.description, req.type)


@router.get("", response_model=list[DataSource])
def list_data_sources(is_active: bool | None = None, store: MetadataStore = Depends(get_metadata_store)):
    return store.list_data_sources(is_active=is_active)


@router.post("/infer-schema", response_model=DataSourceSchema)
def infer_schema_endpoint(req: RowsPayload):
    """Infer column types and nullability from sample rows."""
    return infer_schema(req.rows)


@router.get("/{data_source_id}", response_model=DataSource)
def get_data_source(data_source_id: str, store: MetadataStore = Depends(get_metadata_store)):
    return _require_source(store, data_source_id)


@router.delete("/{data_source_id}", status_code=status.HTTP_204_NO_CONTENT)
def delete_data_source(
    data_source_id: str,
    manager: DynamicTableManager = Depends(get_table_manager),
    cache: QueryCache = Depends(get_cache),
):
    manager.drop_data_source(data_source_id)
    cache.invalidate_tag(data_source_id)
    return Response(status_code=status.HTTP_204_NO_CONTENT)


# ── Tables ──────────────────────────────────────────────


@router.get("/{data_source_id}/tables", response_model=list[DataTable])
def list_tables(data_source_id: str, store: MetadataStore = Depends(get_metadata_store)):
    _require_source(store, data_source_id)
    return store.list_data_tables(data_source_id)


@router.post("/{data_source_id}/tables", response_model=DataTable, status_code=status.HTTP_201_CREATED)
def create_table(
    data_source_id: str,
    req: TableCreate,
    store: MetadataStore = Depends(get_metadata_store),
    manager: DynamicTableManager = Depends(get_table_manager),
    cache: QueryCache = Depends(get_cache),
):
    """Create a physical table for the data source and load the initial rows."""
    _require_source(store, data_source_id)
    schema = req.schema_ or infer_schema(req.rows)
    table = manager.create_table(data_source_id, req.table_name, schema, req.rows)
    cache.invalidate_tag(data_source_id)
    return table


@router.post("/{data_source_id}/tables/{table_name}/rows", response_model=DataTable)
def append_rows(
    data_source_id: str,
    table_name: str,
    req: RowsPayload,
    manager: DynamicTableManager = Depends(get_table_manager),
    cache: QueryCache = Depends(get_cache),
):
    table = manager.append_data(data_source_id, table_name, req.rows)
    cache.invalidate_tag(data_source_id)
    return table


@router.get("/{data_source_id}/tables/{table_name}/preview", response_model=PreviewResponse)
def preview_table(
    data_source_id: str,
    table_name: str,
    limit: int = Query(100, ge=1, le=1000),
    offset: int = Query(0, ge=0),
    manager: DynamicTableManager = Depends(get_table_manager),
):
    rows = manager.preview(data_source_id, table_name, limit=limit, offset=offset)
    return PreviewResponse(table_name=table_name, rows=rows, limit=limit, offset=offset)
