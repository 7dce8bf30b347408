"""
Dependency providers for the routers.

Stores are built once per process.  Tests replace them through
``app.dependency_overrides``; the service and table manager pick the
overrides up because they are resolved through ``Depends`` too.
"""
from __future__ import annotations

from functools import lru_cache

from fastapi import Depends

from src.core.config import get_settings
from src.datasets.table_manager import DynamicTableManager
from src.db.metadata_store import MetadataStore
from src.db.row_store import RowStore, SqlRowStore
from src.governance.data_filters import DataFilterProvider, load_data_filter_provider
from src.metrics.cache import QueryCache
from src.metrics.cache import get_cache as _get_cache
from src.metrics.service import MetricService


@lru_cache
def get_metadata_store() -> MetadataStore:
    store = MetadataStore()
    store.create_all()
    return store


@lru_cache
def get_row_store() -> RowStore:
    return SqlRowStore(timeout_ms=get_settings().query_timeout_ms)


def get_metric_service(
    metadata_store: MetadataStore = Depends(get_metadata_store),
    row_store: RowStore = Depends(get_row_store),
) -> MetricService:
    return MetricService(metadata_store, row_store)


def get_table_manager(
    metadata_store: MetadataStore = Depends(get_metadata_store),
    row_store: RowStore = Depends(get_row_store),
) -> DynamicTableManager:
    return DynamicTableManager(row_store, metadata_store)


def get_data_filter_provider() -> DataFilterProvider:
    return load_data_filter_provider()


def get_cache() -> QueryCache:
    return _get_cache()
