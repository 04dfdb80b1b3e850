"""Seed database with default categories and sample deals."""

from __future__ import annotations

from dotenv import load_dotenv
from sqlalchemy import text

from dealhub.db.migrate import run_migrations
from dealhub.db.session import create_engine_from_env
from dealhub.ingest import load_catalog
from dealhub.store.categories import CategoryStore
from dealhub.store.deals import DealStore


def seed(engine) -> int:
    catalog = load_catalog()
    with engine.begin() as conn:
        for category in catalog["categories"]:
            conn.execute(
                text(
                    """
                    INSERT INTO categories (name, description)
                    VALUES (:name, :description)
                    ON CONFLICT DO NOTHING
                    """
                ),
                category,
            )
    categories = CategoryStore(engine)
    deals = DealStore(engine)
    added = 0
    for item in catalog["deals"]:
        if deals.find_by_fuzzy_name(item["software_name"]):
            continue
        fields = {key: value for key, value in item.items() if key != "category"}
        fields["category_id"] = categories.find_or_create(item["category"])
        deals.create(fields)
        added += 1
    return added


def main() -> None:
    load_dotenv()
    engine = create_engine_from_env()
    run_migrations(engine)
    added = seed(engine)
    print(f"Seed complete ({added} deals added)")


if __name__ == "__main__":
    main()
