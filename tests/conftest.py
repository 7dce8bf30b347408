"""
Shared fixtures: an in-memory row store and a SQLite-backed metadata store.
"""
from __future__ import annotations

from typing import Any

import pytest
from sqlalchemy import create_engine
from sqlalchemy.pool import StaticPool

from src.db.metadata_store import MetadataStore


class FakeRowStore:
    """RowStore that keeps rows in memory and records every call.

    ``query`` returns whatever was queued in ``results`` (or ``[]``); the
    SQL it was asked to run is kept in ``queries``.
    """

    def __init__(self, fail_on_batch: int | None = None):
        self.tables: dict[str, dict[str, Any]] = {}
        self.rows: dict[str, list[dict[str, Any]]] = {}
        self.batches: list[tuple[str, int]] = []
        self.queries: list[str] = []
        self.results: list[list[dict[str, Any]]] = []
        self.dropped: list[str] = []
        self.fail_on_batch = fail_on_batch

    def create_table(self, physical_name, columns, primary_key=None):
        self.tables[physical_name] = {"columns": list(columns), "primary_key": primary_key}
        self.rows.setdefault(physical_name, [])

    def bulk_insert(self, physical_name, column_names, rows):
        if self.fail_on_batch is not None and len(self.batches) == self.fail_on_batch:
            raise RuntimeError("simulated insert failure")
        self.batches.append((physical_name, len(rows)))
        self.rows[physical_name].extend(
            {c: r.get(c) for c in column_names} for r in rows
        )

    def query(self, sql):
        self.queries.append(sql)
        return self.results.pop(0) if self.results else []

    def drop_table(self, physical_name):
        self.dropped.append(physical_name)
        self.tables.pop(physical_name, None)
        self.rows.pop(physical_name, None)


@pytest.fixture
def row_store() -> FakeRowStore:
    return FakeRowStore()


@pytest.fixture
def metadata_store() -> MetadataStore:
    engine = create_engine(
        "sqlite://",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    store = MetadataStore(engine)
    store.create_all()
    return store


@pytest.fixture
def row_store_factory():
    return FakeRowStore
