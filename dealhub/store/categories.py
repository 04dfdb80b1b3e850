"""Category persistence."""

from __future__ import annotations

import logging
from typing import Any

from sqlalchemy.engine import Engine
from sqlalchemy.sql import text

from dealhub.errors import NotFoundError, ValidationError
from dealhub.logic.slugs import compact_slug, derive_slug
from dealhub.store.base import read_scope, row_dicts, write_scope

logger = logging.getLogger(__name__)


def auto_description(name: str) -> str:
    return f"Auto-generated category for {name} software"


class CategoryStore:
    def __init__(self, engine: Engine) -> None:
        self.engine = engine

    def create(self, name: str, description: str | None = None) -> int:
        name = (name or "").strip()
        if not name:
            raise ValidationError("Category name is required")
        with write_scope(self.engine) as conn:
            result = conn.execute(
                text(
                    """
                    INSERT INTO categories (name, description)
                    VALUES (:name, :description)
                    RETURNING id
                    """
                ),
                {"name": name, "description": description},
            )
            return int(result.scalar_one())

    def find_or_create(self, name: str) -> int:
        """Return the id of the category named ``name`` (any case), creating it if needed.

        The insert and the read share one transaction and the unique index on
        LOWER(name) turns a concurrent duplicate into a no-op.
        """
        name = (name or "").strip()
        if not name:
            raise ValidationError("Category name is required")
        with write_scope(self.engine) as conn:
            inserted = conn.execute(
                text(
                    """
                    INSERT INTO categories (name, description)
                    VALUES (:name, :description)
                    ON CONFLICT DO NOTHING
                    """
                ),
                {"name": name, "description": auto_description(name)},
            )
            category_id = conn.execute(
                text("SELECT id FROM categories WHERE LOWER(name) = LOWER(:name) ORDER BY id LIMIT 1"),
                {"name": name},
            ).scalar_one()
        if inserted.rowcount:
            logger.info("Created new category: %s", name)
        return int(category_id)

    def get(self, category_id: int) -> dict[str, Any]:
        with read_scope(self.engine) as conn:
            row = conn.execute(
                text("SELECT id, name, description, created_at FROM categories WHERE id = :id"),
                {"id": category_id},
            ).mappings().first()
        if row is None:
            raise NotFoundError(f"Category {category_id} not found")
        return dict(row)

    def delete(self, category_id: int) -> None:
        # Deals keep pointing at the removed id.
        with write_scope(self.engine) as conn:
            result = conn.execute(text("DELETE FROM categories WHERE id = :id"), {"id": category_id})
        if not result.rowcount:
            raise NotFoundError(f"Category {category_id} not found")

    def list_all(self) -> list[dict[str, Any]]:
        with read_scope(self.engine) as conn:
            return row_dicts(
                conn.execute(text("SELECT id, name, description, created_at FROM categories ORDER BY name"))
            )

    def list_random_subset(self, n: int) -> list[dict[str, Any]]:
        with read_scope(self.engine) as conn:
            return row_dicts(
                conn.execute(
                    text("SELECT id, name, description, created_at FROM categories ORDER BY RANDOM() LIMIT :n"),
                    {"n": max(n, 0)},
                )
            )

    def find_by_slug(self, slug: str) -> dict[str, Any]:
        """Match either the hyphenated slug or the separator-free form."""
        wanted = slug.strip().lower()
        compact = compact_slug(wanted)
        for category in self.list_all():
            name = category["name"] or ""
            if derive_slug(name) == wanted or name.lower().replace(" ", "") == compact:
                return category
        raise NotFoundError(f"Category '{slug}' not found")

    def deals_for(self, category_id: int) -> list[dict[str, Any]]:
        with read_scope(self.engine) as conn:
            return row_dicts(
                conn.execute(
                    text(
                        """
                        SELECT id, software_name, discount, description, website_url, logo_url, time_limit
                        FROM deals
                        WHERE category_id = :id
                           OR id IN (SELECT deal_id FROM deal_categories WHERE category_id = :id)
                        ORDER BY software_name
                        """
                    ),
                    {"id": category_id},
                )
            )

    def count(self) -> int:
        with read_scope(self.engine) as conn:
            return int(conn.execute(text("SELECT COUNT(*) FROM categories")).scalar_one())
