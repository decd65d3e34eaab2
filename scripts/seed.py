"""Apply the schema and seed the catalog with placeholder materials."""

from __future__ import annotations

from dotenv import load_dotenv

from supplystack.db.migrate import run_migrations
from supplystack.db.session import create_engine_from_env
from supplystack.ingest import load_categories
from supplystack.ingest.normalize import normalize
from supplystack.ingest.synthetic import synthetic_records
from supplystack.logic.materials import upsert_materials
from supplystack.utils.dates import utc_timestamp

ITEMS_PER_CATEGORY = 5


def main() -> None:
    load_dotenv()
    engine = create_engine_from_env()
    run_migrations(engine)
    synced_at = utc_timestamp()
    total = 0
    for category in load_categories():
        materials = [
            normalize(record, category, source="seed", synced_at=synced_at)
            for record in synthetic_records(category, ITEMS_PER_CATEGORY)
        ]
        total += upsert_materials(engine, materials)
    print(f"Seed complete: {total} materials")


if __name__ == "__main__":
    main()
