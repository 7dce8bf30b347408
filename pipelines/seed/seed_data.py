"""
Seed data generator -- creates a demo sales data source with metrics.

Generates:
  - ~5 000 sales rows over two years (regions, channels, departments, agents)
  - the ``demo_sales`` data source with one ``sales`` table (schema inferred)
  - a handful of SIMPLE / CALCULATED / TIME_INTEL metrics on it

Everything goes through the table manager and metric service, exactly as
an upload through the API would.  Re-running drops and recreates the
data source.
Run:  python -m pipelines.seed.seed_data
"""
from __future__ import annotations

import random
from datetime import date, timedelta

from faker import Faker

from src.core.errors import MetricAlreadyExistsError
from src.datasets.inference import infer_schema
from src.datasets.table_manager import DynamicTableManager
from src.db.metadata_store import MetadataStore
from src.db.row_store import SqlRowStore
from src.metrics.models import MetricDefinition
from src.metrics.service import MetricService

fake = Faker()
Faker.seed(42)
random.seed(42)

# ── Tunables ─────────────────────────────────────────────
NUM_ROWS = 5_000
NUM_AGENTS = 40
DATA_SOURCE_NAME = "demo_sales"
TABLE_NAME = "sales"

REGIONS = ["North", "South", "East", "West"]
CHANNELS = ["store", "online", "partner"]
CHANNEL_WEIGHTS = [0.45, 0.40, 0.15]
DEPARTMENTS = ["Retail", "Wholesale", "Enterprise"]
CATEGORIES = ["Electronics", "Clothing", "Home & Kitchen", "Books", "Sports", "Beauty", "Toys", "Grocery"]

DATE_START = date(2024, 1, 1)
DATE_END = date(2025, 12, 31)
DATE_RANGE_DAYS = (DATE_END - DATE_START).days

METRICS = [
    ("total_revenue", "Total Revenue", "SUM(Revenue)", "currency", "$"),
    ("avg_sale", "Average Sale", "AVG(Revenue)", "currency", "$"),
    ("units_sold", "Units Sold", "SUM(Units)", "number", None),
    ("sale_count", "Sale Count", "COUNT(*)", "number", None),
    ("gross_margin_pct", "Gross Margin %", "(SUM(Revenue) - SUM(Cost)) / SUM(Revenue) * 100", "percentage", None),
    ("revenue_ytd", "Revenue YTD", "YTD(SUM(Revenue))", "currency", "$"),
    ("revenue_yoy", "Revenue YoY", "YOY(SUM(Revenue))", "percentage", None),
    ("revenue_mom", "Revenue MoM", "MOM(SUM(Revenue))", "percentage", None),
    ("revenue_rolling_3", "Revenue 3-period Rolling Avg", "RollingAverage(SUM(Revenue), 3)", "currency", "$"),
]


# ── Generators ───────────────────────────────────────────

def gen_agents() -> list[dict]:
    return [
        {
            "agent": fake.name(),
            "agentCode": f"AG-{i:03d}",
            "region": random.choice(REGIONS),
            "department": random.choice(DEPARTMENTS),
        }
        for i in range(1, NUM_AGENTS + 1)
    ]


def gen_sales(agents: list[dict]) -> list[dict]:
    """Rows shaped like a parsed CSV upload: dates as ISO strings."""
    rows = []
    for _ in range(NUM_ROWS):
        agent = random.choice(agents)
        units = random.randint(1, 20)
        unit_price = round(random.uniform(5.0, 500.0), 2)
        revenue = round(units * unit_price, 2)
        rows.append({
            "date": (DATE_START + timedelta(days=random.randint(0, DATE_RANGE_DAYS))).isoformat(),
            "region": agent["region"],
            "department": agent["department"],
            "agent": agent["agent"],
            "agentCode": agent["agentCode"],
            "channel": random.choices(CHANNELS, weights=CHANNEL_WEIGHTS, k=1)[0],
            "category": random.choice(CATEGORIES),
            "Units": units,
            "Revenue": revenue,
            "Cost": round(revenue * random.uniform(0.4, 0.9), 2),
            "returned": random.random() < 0.05,
        })
    return rows


# ── Main ─────────────────────────────────────────────────

def main():
    print("═══ Seed Data Generator ═══")
    metadata_store = MetadataStore()
    metadata_store.create_all()
    row_store = SqlRowStore()
    manager = DynamicTableManager(row_store, metadata_store)
    service = MetricService(metadata_store, row_store)

    existing = metadata_store.get_data_source_by_name(DATA_SOURCE_NAME)
    if existing is not None:
        print(f"Dropping existing data source {DATA_SOURCE_NAME} …")
        for metric in service.list_metrics(data_source_id=existing.id):
            service.delete_metric(metric.id)
        manager.drop_data_source(existing.id)

    print("Generating data …")
    rows = gen_sales(gen_agents())
    schema = infer_schema(rows)
    print("  schema: " + ", ".join(f"{c.name}:{c.type.value}" for c in schema.columns))

    print("Loading …")
    source = metadata_store.create_data_source(DATA_SOURCE_NAME, "Generated demo sales")
    table = manager.create_table(source.id, TABLE_NAME, schema, rows)
    print(f"  ✓ {table.physical_name}: {table.row_count:,} rows")

    print("Registering metrics …")
    for name, display_name, expression, fmt, prefix in METRICS:
        try:
            metric = service.create_metric(MetricDefinition(
                name=name,
                display_name=display_name,
                expression=expression,
                data_source_id=source.id,
                format=fmt,
                prefix=prefix,
            ))
        except MetricAlreadyExistsError:
            print(f"  - {name}: already defined, skipped")
            continue
        print(f"  ✓ {metric.name} ({metric.type.value})")

    print(f"\nDone: seeded {len(rows):,} rows into {DATA_SOURCE_NAME}.{TABLE_NAME}.")


if __name__ == "__main__":
    main()
