import pytest
from sqlalchemy import Column, Integer, MetaData, Numeric, Table, Text, create_engine
from sqlalchemy.pool import StaticPool

from supplystack.ingest.models import Category, Material

metadata = MetaData()

materials = Table(
    "materials",
    metadata,
    Column("id", Integer, primary_key=True, autoincrement=True),
    Column("identifier", Text, nullable=False, unique=True),
    Column("name", Text, nullable=False),
    Column("description", Text, nullable=False, default=""),
    Column("price", Numeric(asdecimal=False)),
    Column("category", Text, nullable=False),
    Column("url", Text, nullable=False),
    Column("image_url", Text),
    Column("vendor_name", Text, nullable=False),
    Column("quantity", Integer),
    Column("unit", Text, nullable=False),
    Column("specifications", Text, nullable=False, default="{}"),
    Column("availability", Text, nullable=False),
    Column("source", Text, nullable=False),
    Column("last_synced", Text, nullable=False),
)

sync_status = Table(
    "sync_status",
    metadata,
    Column("id", Integer, primary_key=True, autoincrement=True),
    Column("sync_id", Text, nullable=False, unique=True),
    Column("status", Text, nullable=False),
    Column("source", Text, nullable=False),
    Column("category", Text),
    Column("started_at", Text, nullable=False),
    Column("completed_at", Text),
    Column("materials_count", Integer),
    Column("error_message", Text),
    Column("metadata", Text, nullable=False, default="{}"),
)

saved_searches = Table(
    "saved_searches",
    metadata,
    Column("id", Integer, primary_key=True, autoincrement=True),
    Column("user_id", Text, nullable=False),
    Column("search_query", Text, nullable=False),
    Column("filters", Text, nullable=False, default="{}"),
    Column("created_at", Text, nullable=False),
)

system_logs = Table(
    "system_logs",
    metadata,
    Column("id", Integer, primary_key=True, autoincrement=True),
    Column("event_type", Text, nullable=False),
    Column("details", Text, nullable=False, default="{}"),
    Column("user_id", Text),
    Column("created_at", Text, nullable=False),
)

user_preferences = Table(
    "user_preferences",
    metadata,
    Column("id", Integer, primary_key=True, autoincrement=True),
    Column("user_id", Text, nullable=False, unique=True),
    Column("preferences", Text, nullable=False, default="{}"),
    Column("updated_at", Text, nullable=False),
)

LUMBER = Category(
    slug="lumber",
    label="Lumber",
    query="lumber and composites",
    url="https://www.homedepot.com/b/Lumber-Composites/N-5yc1vZbqpg",
    unit="per board foot",
)
DRYWALL = Category(
    slug="drywall",
    label="Drywall",
    query="drywall panels",
    url="https://www.homedepot.com/b/Building-Materials-Drywall/N-5yc1vZar2d",
    unit="per sheet",
)


def make_material(identifier: str, name: str, **overrides) -> Material:
    values = {
        "identifier": identifier,
        "name": name,
        "category": "Lumber",
        "url": f"https://www.homedepot.com/p/{identifier}",
        "vendor_name": "Home Depot",
        "unit": "each",
        "availability": "in_stock",
        "last_synced": "2026-10-01T08:00:00Z",
        "source": "home_depot",
        "price": 9.99,
    }
    values.update(overrides)
    return Material(**values)


class FakeSource:
    """Stand-in extraction client returning canned records per category slug."""

    def __init__(self, records=None, errors=None, on_fetch=None):
        self.records = records or {}
        self.errors = errors or {}
        self.on_fetch = on_fetch
        self.calls = []
        self.closed = False

    async def fetch_category_materials(self, category, limit=10):
        self.calls.append(category.slug)
        if self.on_fetch is not None:
            self.on_fetch(category)
        if category.slug in self.errors:
            raise self.errors[category.slug]
        return list(self.records.get(category.slug, []))[:limit]

    async def close(self):
        self.closed = True


def product_records(slug: str, count: int) -> list[dict]:
    return [
        {
            "product_id": f"{slug}-{index}",
            "name": f"{slug.title()} product {index}",
            "price": 10 + index,
            "url": f"https://www.homedepot.com/p/{slug}-{index}/{100000 + index}",
            "stock": f"{index + 1} in stock",
        }
        for index in range(count)
    ]


@pytest.fixture()
def engine():
    engine = create_engine(
        "sqlite:///:memory:",
        future=True,
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    metadata.create_all(engine)
    yield engine
    engine.dispose()


@pytest.fixture()
def categories():
    return [LUMBER, DRYWALL]


@pytest.fixture()
def seeded_engine(engine):
    from supplystack.logic.materials import upsert_materials

    upsert_materials(
        engine,
        [
            make_material("100001", "80 Grit Sandpaper", category="Hardware", price=6.47, vendor_name="3M",
                          last_synced="2026-10-01T08:00:00Z"),
            make_material("100002", "Steel Beam", category="Hardware", price=189.0,
                          last_synced="2026-10-02T08:00:00Z"),
            make_material("100003", "2 in. x 4 in. Stud", description="Kiln dried pine stud", price=3.98,
                          last_synced="2026-10-03T08:00:00Z"),
            make_material("100004", "Cedar Fence Picket", price=2.5, availability="special_order",
                          last_synced="2026-10-04T08:00:00Z"),
        ],
    )
    return engine
