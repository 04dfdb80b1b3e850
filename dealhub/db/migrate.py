"""Database migration helpers."""

from __future__ import annotations

import logging
import pathlib
import sys
from typing import Iterable

from dotenv import load_dotenv
from sqlalchemy import inspect, text
from sqlalchemy.engine import Connection, Engine
from sqlalchemy.exc import SQLAlchemyError

from dealhub.db.session import create_engine_from_env
from dealhub.logic.slugs import derive_slug

logger = logging.getLogger(__name__)

SCHEMA_PATH = pathlib.Path(__file__).with_name("schema.sql")

# Columns added after the first release of the deals table.
DEAL_COLUMNS = {
    "likes": "INTEGER DEFAULT 0",
    "about": "TEXT",
    "software_name_slug": "TEXT",
}
MAX_SECONDARY_CATEGORIES = 4


def run_migrations(engine: Engine) -> None:
    """Apply schema.sql and bring older deal tables forward."""
    statements = _load_statements(SCHEMA_PATH.read_text())
    with engine.begin() as conn:
        for stmt in statements:
            conn.execute(text(stmt))
        existing = {col["name"] for col in inspect(conn).get_columns("deals")}
        for name, ddl in DEAL_COLUMNS.items():
            if name not in existing:
                logger.info("Adding deals.%s", name)
                conn.execute(text(f"ALTER TABLE deals ADD COLUMN {name} {ddl}"))
        if "categories" in existing:
            _copy_legacy_categories(conn)
        _backfill_slugs(conn)


def _copy_legacy_categories(conn: Connection) -> None:
    """Move comma-joined secondary category ids into deal_categories.

    Copied values are cleared so a later run cannot bring back links the
    operator has since removed. Deals that already have links are skipped.
    """
    rows = conn.execute(
        text(
            """
            SELECT id, category_id, categories FROM deals
            WHERE categories IS NOT NULL AND categories != ''
              AND id NOT IN (SELECT deal_id FROM deal_categories)
            """
        )
    ).fetchall()
    copied = 0
    for deal_id, primary_id, raw in rows:
        ids = parse_id_list(raw)
        ids = [cid for cid in ids if cid != primary_id][:MAX_SECONDARY_CATEGORIES]
        for position, category_id in enumerate(ids, start=1):
            conn.execute(
                text(
                    """
                    INSERT INTO deal_categories (deal_id, category_id, position)
                    VALUES (:deal_id, :category_id, :position)
                    """
                ),
                {"deal_id": deal_id, "category_id": category_id, "position": position},
            )
            copied += 1
    conn.execute(text("UPDATE deals SET categories = NULL WHERE categories IS NOT NULL"))
    if copied:
        logger.info("Copied %s legacy category links", copied)


def _backfill_slugs(conn: Connection) -> None:
    rows = conn.execute(
        text("SELECT id, software_name FROM deals WHERE software_name_slug IS NULL")
    ).fetchall()
    for deal_id, name in rows:
        conn.execute(
            text("UPDATE deals SET software_name_slug = :slug WHERE id = :id"),
            {"slug": derive_slug(name or ""), "id": deal_id},
        )
    if rows:
        logger.info("Backfilled %s deal slugs", len(rows))


def parse_id_list(raw: str | None) -> list[int]:
    ids: list[int] = []
    for part in (raw or "").split(","):
        part = part.strip()
        if not part.isdigit():
            continue
        value = int(part)
        if value > 0 and value not in ids:
            ids.append(value)
    return ids


def _load_statements(sql: str) -> Iterable[str]:
    buffer: list[str] = []
    for line in sql.splitlines():
        stripped = line.strip()
        if not stripped:
            continue
        buffer.append(line)
        if stripped.endswith(";"):
            yield "\n".join(buffer)
            buffer.clear()
    if buffer:
        yield "\n".join(buffer)


def main() -> None:
    load_dotenv()
    logging.basicConfig(level=logging.INFO)
    engine = create_engine_from_env()
    try:
        run_migrations(engine)
    except SQLAlchemyError as exc:
        print(f"Migration failed: {exc}", file=sys.stderr)
        sys.exit(2)


if __name__ == "__main__":
    main()
