"""
Data source, table and column schema records.
"""
from __future__ import annotations

from datetime import datetime
from enum import Enum

from pydantic import BaseModel, Field, model_validator


class ColumnType(str, Enum):
    STRING = "string"
    NUMBER = "number"
    DATE = "date"
    BOOLEAN = "boolean"


class DataSourceType(str, Enum):
    CSV = "CSV"
    EXCEL = "EXCEL"
    JSON = "JSON"
    DATABASE = "DATABASE"
    API = "API"


class ColumnDefinition(BaseModel):
    name: str = Field(..., min_length=1)
    type: ColumnType
    nullable: bool = True
    is_primary_key: bool = False


class DataSourceSchema(BaseModel):
    """Ordered column list plus the declared primary-key set."""

    columns: list[ColumnDefinition]
    primary_keys: list[str] = Field(default_factory=list)

    @model_validator(mode="after")
    def _check_names(self) -> "DataSourceSchema":
        seen: set[str] = set()
        for col in self.columns:
            if col.name in seen:
                raise ValueError(f"Duplicate column name '{col.name}'")
            seen.add(col.name)
        unknown = [k for k in self.primary_keys if k not in seen]
        if unknown:
            raise ValueError(f"Primary key references unknown column(s): {', '.join(unknown)}")
        return self

    def column(self, name: str) -> ColumnDefinition | None:
        for col in self.columns:
            if col.name == name:
                return col
        return None

    @property
    def column_names(self) -> list[str]:
        return [c.name for c in self.columns]


class DataSource(BaseModel):
    id: str
    name: str
    description: str | None = None
    type: DataSourceType = DataSourceType.CSV
    is_active: bool = True
    created_at: datetime | None = None


class DataTable(BaseModel):
    """Maps a logical (data source, table name) pair to its physical table."""

    id: str
    data_source_id: str
    table_name: str
    display_name: str
    physical_name: str
    schema_: DataSourceSchema = Field(..., alias="schema")
    row_count: int = 0
    created_at: datetime | None = None
    updated_at: datetime | None = None

    model_config = {"populate_by_name": True}
