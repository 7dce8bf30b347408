"""
Unit tests -- schema inference and schema validation rules.
"""
import datetime
import decimal

import pytest
from pydantic import ValidationError

from src.core.errors import EmptySampleError
from src.datasets.inference import infer_column_type, infer_schema, is_number, parse_date
from src.datasets.schema import ColumnDefinition, ColumnType, DataSourceSchema


# ── Predicates ───────────────────────────────────────────

def test_is_number_excludes_bool_and_non_finite():
    assert is_number(3)
    assert is_number(2.5)
    assert is_number(decimal.Decimal("1.1"))
    assert not is_number(True)
    assert not is_number(float("nan"))
    assert not is_number("3")


@pytest.mark.parametrize("text", [
    "2024-03-01",
    "2024-03-01T10:15:00",
    "2024-03-01T10:15:00Z",
    "2024/03/01",
    "03/01/2024",
    "Mar 01 2024",
    "March 1, 2024",
])
def test_parse_date_formats(text):
    parsed = parse_date(text)
    assert parsed is not None
    assert (parsed.year, parsed.month) == (2024, 3)


def test_parse_date_rejects_non_dates():
    assert parse_date("North") is None
    assert parse_date("") is None
    assert parse_date(20240301) is None


def test_parse_date_passes_date_objects():
    assert parse_date(datetime.date(2024, 1, 2)) == datetime.datetime(2024, 1, 2)


# ── Column classification ────────────────────────────────

def test_column_types():
    assert infer_column_type([True, False]) is ColumnType.BOOLEAN
    assert infer_column_type([1, 2.5, 3]) is ColumnType.NUMBER
    assert infer_column_type(["2024-01-01", "2024-02-01"]) is ColumnType.DATE
    assert infer_column_type(["a", "b"]) is ColumnType.STRING
    assert infer_column_type([]) is ColumnType.STRING


def test_mixed_bool_and_number_is_string():
    assert infer_column_type([True, 1]) is ColumnType.STRING


def test_date_threshold_is_eighty_percent():
    four_of_five = ["2024-01-01", "2024-01-02", "2024-01-03", "2024-01-04", "n/a"]
    three_of_five = ["2024-01-01", "2024-01-02", "2024-01-03", "n/a", "n/a"]
    assert infer_column_type(four_of_five) is ColumnType.DATE
    assert infer_column_type(three_of_five) is ColumnType.STRING


def test_only_first_fifty_values_considered():
    values = [1] * 50 + ["text"]
    assert infer_column_type(values) is ColumnType.NUMBER


# ── infer_schema ─────────────────────────────────────────

def test_infer_schema_all_types():
    rows = [
        {"date": "2024-01-01", "region": "North", "Revenue": 100.0, "returned": False},
        {"date": "2024-01-02", "region": "South", "Revenue": 250, "returned": True},
    ]
    schema = infer_schema(rows)
    assert [(c.name, c.type) for c in schema.columns] == [
        ("date", ColumnType.DATE),
        ("region", ColumnType.STRING),
        ("Revenue", ColumnType.NUMBER),
        ("returned", ColumnType.BOOLEAN),
    ]
    assert all(not c.nullable for c in schema.columns)
    assert schema.primary_keys == []


def test_nullability_from_missing_and_none():
    rows = [
        {"a": 1, "b": "x"},
        {"a": None, "c": True},
    ]
    schema = infer_schema(rows)
    cols = {c.name: c for c in schema.columns}
    assert schema.column_names == ["a", "b", "c"]
    assert cols["a"].nullable and cols["a"].type is ColumnType.NUMBER
    assert cols["b"].nullable
    assert cols["c"].nullable and cols["c"].type is ColumnType.BOOLEAN


def test_all_null_column_is_nullable_string():
    schema = infer_schema([{"a": None}, {"a": None}])
    assert schema.columns[0].type is ColumnType.STRING
    assert schema.columns[0].nullable


def test_date_column_with_unparseable_values_is_nullable():
    rows = [{"d": f"2024-02-0{i}"} for i in range(1, 5)] + [{"d": "n/a"}]
    column = infer_schema(rows).columns[0]
    assert column.type is ColumnType.DATE
    assert column.nullable


def test_sample_size_limits_rows():
    rows = [{"a": 1}] * 3 + [{"a": "text", "late": 1}]
    schema = infer_schema(rows, sample_size=3)
    assert schema.column_names == ["a"]
    assert schema.columns[0].type is ColumnType.NUMBER


def test_empty_sample_rejected():
    with pytest.raises(EmptySampleError):
        infer_schema([])


# ── Schema validation ────────────────────────────────────

def test_duplicate_column_names_rejected():
    with pytest.raises(ValidationError, match="Duplicate column"):
        DataSourceSchema(columns=[
            ColumnDefinition(name="a", type=ColumnType.STRING),
            ColumnDefinition(name="a", type=ColumnType.NUMBER),
        ])


def test_primary_key_must_reference_column():
    with pytest.raises(ValidationError, match="unknown column"):
        DataSourceSchema(
            columns=[ColumnDefinition(name="a", type=ColumnType.STRING)],
            primary_keys=["b"],
        )


def test_schema_round_trips_through_json():
    schema = DataSourceSchema(
        columns=[ColumnDefinition(name="a", type=ColumnType.DATE, nullable=False, is_primary_key=True)],
        primary_keys=["a"],
    )
    assert DataSourceSchema.model_validate(schema.model_dump(mode="json")) == schema
