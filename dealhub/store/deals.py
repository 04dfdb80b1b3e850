"""Deal persistence: CRUD, slug lookup, counters and category links."""

from __future__ import annotations

from typing import Any, Iterable, Mapping, Sequence

from sqlalchemy.engine import Connection, Engine
from sqlalchemy.sql import text

from dealhub.db.migrate import parse_id_list
from dealhub.errors import NotFoundError, ValidationError
from dealhub.logic.slugs import derive_slug, fuzzy_term
from dealhub.store.base import read_scope, row_dicts, write_scope


MAX_CATEGORIES = 5
SEARCH_LIMIT = 12

# Fields an operator edits from the dashboard.
OPERATOR_FIELDS = (
    "software_name",
    "category_id",
    "logo_url",
    "website_url",
    "referral_link",
    "discount",
    "coupon_code",
    "time_limit",
    "description",
)
CREATE_FIELDS = OPERATOR_FIELDS + ("about", "is_active")
MERGE_FIELDS = ("discount", "description", "about", "coupon_code", "time_limit", "logo_url")

_SELECT_DEALS = """
    SELECT d.id, d.software_name, d.software_name_slug, d.category_id,
           d.logo_url, d.website_url, d.referral_link, d.discount,
           d.coupon_code, d.time_limit, d.description, d.about, d.is_active,
           d.clicks, d.likes, d.created_at, d.updated_at,
           c.name AS category_name
    FROM deals d
    LEFT JOIN categories c ON c.id = d.category_id
"""


class DealStore:
    def __init__(self, engine: Engine) -> None:
        self.engine = engine

    def create(self, fields: Mapping[str, Any]) -> int:
        _require(fields, "software_name", "discount")
        values = {name: fields.get(name) for name in CREATE_FIELDS}
        if values["is_active"] is None:
            values["is_active"] = True
        values["software_name_slug"] = derive_slug(values["software_name"])
        with write_scope(self.engine) as conn:
            result = conn.execute(
                text(
                    """
                    INSERT INTO deals (
                        software_name, software_name_slug, category_id, logo_url,
                        website_url, referral_link, discount, coupon_code,
                        time_limit, description, about, is_active, clicks, likes
                    ) VALUES (
                        :software_name, :software_name_slug, :category_id, :logo_url,
                        :website_url, :referral_link, :discount, :coupon_code,
                        :time_limit, :description, :about, :is_active, 0, 0
                    )
                    RETURNING id
                    """
                ),
                values,
            )
            deal_id = int(result.scalar_one())
            if "categories" in fields:
                _replace_links(conn, deal_id, values["category_id"], _as_ids(fields["categories"]))
        return deal_id

    def update(self, deal_id: int, fields: Mapping[str, Any]) -> None:
        """Operator overwrite: every editable field takes the given value, absent ones become NULL."""
        _require(fields, "software_name", "discount")
        values = {name: fields.get(name) for name in OPERATOR_FIELDS}
        values["software_name_slug"] = derive_slug(values["software_name"])
        values["id"] = deal_id
        with write_scope(self.engine) as conn:
            result = conn.execute(
                text(
                    """
                    UPDATE deals SET
                        software_name = :software_name,
                        software_name_slug = :software_name_slug,
                        category_id = :category_id,
                        logo_url = :logo_url,
                        website_url = :website_url,
                        referral_link = :referral_link,
                        discount = :discount,
                        coupon_code = :coupon_code,
                        time_limit = :time_limit,
                        description = :description,
                        updated_at = CURRENT_TIMESTAMP
                    WHERE id = :id
                    """
                ),
                values,
            )
            _ensure_changed(result, deal_id)
            if "categories" in fields:
                _replace_links(conn, deal_id, values["category_id"], _as_ids(fields["categories"]))
            else:
                _drop_primary_link(conn, deal_id, values["category_id"])

    def merge_update(self, deal_id: int, fields: Mapping[str, Any]) -> None:
        """Ingestion merge: only non-null incoming values replace stored ones."""
        values = {name: fields.get(name) for name in MERGE_FIELDS}
        values["id"] = deal_id
        with write_scope(self.engine) as conn:
            result = conn.execute(
                text(
                    """
                    UPDATE deals SET
                        discount = COALESCE(:discount, discount),
                        description = COALESCE(:description, description),
                        coupon_code = COALESCE(:coupon_code, coupon_code),
                        time_limit = COALESCE(:time_limit, time_limit),
                        about = CASE WHEN :about IS NOT NULL THEN :about ELSE about END,
                        logo_url = CASE WHEN :logo_url IS NOT NULL THEN :logo_url ELSE logo_url END,
                        updated_at = CURRENT_TIMESTAMP
                    WHERE id = :id
                    """
                ),
                values,
            )
            _ensure_changed(result, deal_id)

    def delete(self, deal_id: int) -> None:
        # Ledger and analytics rows are left in place.
        with write_scope(self.engine) as conn:
            result = conn.execute(text("DELETE FROM deals WHERE id = :id"), {"id": deal_id})
            _ensure_changed(result, deal_id)
            conn.execute(text("DELETE FROM deal_categories WHERE deal_id = :id"), {"id": deal_id})

    def get(self, deal_id: int) -> dict[str, Any]:
        with read_scope(self.engine) as conn:
            row = conn.execute(text(_SELECT_DEALS + " WHERE d.id = :id"), {"id": deal_id}).mappings().first()
            if row is None:
                raise NotFoundError(f"Deal {deal_id} not found")
            return _with_categories(conn, dict(row))

    def find_by_slug(self, slug: str) -> dict[str, Any]:
        """Return the first deal, by creation order, whose name derives to ``slug``."""
        wanted = slug.strip().lower()
        with read_scope(self.engine) as conn:
            found = conn.execute(
                text("SELECT MIN(id) FROM deals WHERE software_name_slug = :slug"),
                {"slug": wanted},
            ).scalar()
            # Rows written before the slug column existed are derived on the fly.
            legacy = conn.execute(
                text(
                    """
                    SELECT id, software_name FROM deals
                    WHERE software_name_slug IS NULL AND (:found IS NULL OR id < :found)
                    ORDER BY id
                    """
                ),
                {"found": found},
            ).fetchall()
            for deal_id, name in legacy:
                if derive_slug(name or "") == wanted:
                    found = deal_id
                    break
            if found is None:
                raise NotFoundError(f"Deal '{slug}' not found")
            row = conn.execute(text(_SELECT_DEALS + " WHERE d.id = :id"), {"id": found}).mappings().one()
            return _with_categories(conn, dict(row))

    def find_by_fuzzy_name(self, partial_name: str) -> dict[str, Any] | None:
        term = fuzzy_term(partial_name)
        if not term:
            return None
        with read_scope(self.engine) as conn:
            row = conn.execute(
                text(
                    """
                    SELECT id, software_name FROM deals
                    WHERE LOWER(REPLACE(software_name, ' ', '')) LIKE :pattern
                    ORDER BY id
                    LIMIT 1
                    """
                ),
                {"pattern": f"%{term}%"},
            ).mappings().first()
        return dict(row) if row else None

    def increment_clicks(self, deal_id: int) -> None:
        self._bump("clicks = clicks + 1", deal_id)

    def increment_likes(self, deal_id: int) -> None:
        self._bump("likes = likes + 1", deal_id)

    def decrement_likes(self, deal_id: int) -> None:
        self._bump("likes = MAX(0, likes - 1)", deal_id)

    def _bump(self, assignment: str, deal_id: int) -> None:
        with write_scope(self.engine) as conn:
            result = conn.execute(
                text(f"UPDATE deals SET {assignment} WHERE id = :id"), {"id": deal_id}
            )
            _ensure_changed(result, deal_id)

    def list_all(self, *, sort_by: str = "recent", limit: int | None = None) -> list[dict[str, Any]]:
        if sort_by == "likes":
            order = " ORDER BY d.likes DESC, d.id DESC"
        elif sort_by == "recent":
            order = " ORDER BY d.id DESC"
        else:
            raise ValidationError(f"Unknown sort order: {sort_by}")
        query = _SELECT_DEALS + order
        params: dict[str, Any] = {}
        if limit and limit > 0:
            query += " LIMIT :limit"
            params["limit"] = limit
        with read_scope(self.engine) as conn:
            return row_dicts(conn.execute(text(query), params))

    def search(self, term: str | None, category_name: str | None = None) -> list[dict[str, Any]]:
        if not term and not category_name:
            raise ValidationError("Search term or category is required")
        query = _SELECT_DEALS + " WHERE 1=1"
        params: dict[str, Any] = {"limit": SEARCH_LIMIT}
        if term:
            # instr() keeps the name match case-sensitive.
            query += " AND instr(d.software_name, :term) > 0"
            params["term"] = term
        if category_name:
            query += " AND c.name LIKE :category"
            params["category"] = f"%{category_name}%"
        query += " ORDER BY d.software_name ASC LIMIT :limit"
        with read_scope(self.engine) as conn:
            return row_dicts(conn.execute(text(query), params))

    def set_categories(self, deal_id: int, primary_id: int | None, secondary_ids: Iterable[int]) -> list[int]:
        """Point the deal at a primary category and replace its secondaries.

        Returns the secondary ids actually stored: the primary and repeats are
        dropped and the total (primary included) is capped at five.
        """
        with write_scope(self.engine) as conn:
            result = conn.execute(
                text(
                    """
                    UPDATE deals SET category_id = :category_id, updated_at = CURRENT_TIMESTAMP
                    WHERE id = :id
                    """
                ),
                {"category_id": primary_id, "id": deal_id},
            )
            _ensure_changed(result, deal_id)
            return _replace_links(conn, deal_id, primary_id, list(secondary_ids))

    def count(self) -> int:
        with read_scope(self.engine) as conn:
            return int(conn.execute(text("SELECT COUNT(*) FROM deals")).scalar_one())


def secondary_limit(primary_id: int | None) -> int:
    return MAX_CATEGORIES - 1 if primary_id is not None else MAX_CATEGORIES


def _replace_links(conn: Connection, deal_id: int, primary_id: int | None, secondary_ids: Sequence[int]) -> list[int]:
    kept: list[int] = []
    for category_id in secondary_ids:
        if category_id == primary_id or category_id in kept:
            continue
        kept.append(category_id)
    kept = kept[: secondary_limit(primary_id)]
    conn.execute(text("DELETE FROM deal_categories WHERE deal_id = :id"), {"id": deal_id})
    if kept:
        conn.execute(
            text(
                """
                INSERT INTO deal_categories (deal_id, category_id, position)
                VALUES (:deal_id, :category_id, :position)
                """
            ),
            [
                {"deal_id": deal_id, "category_id": category_id, "position": position}
                for position, category_id in enumerate(kept, start=1)
            ],
        )
    return kept


def _drop_primary_link(conn: Connection, deal_id: int, primary_id: int | None) -> None:
    if primary_id is None:
        return
    conn.execute(
        text("DELETE FROM deal_categories WHERE deal_id = :deal_id AND category_id = :category_id"),
        {"deal_id": deal_id, "category_id": primary_id},
    )


def _with_categories(conn: Connection, deal: dict[str, Any]) -> dict[str, Any]:
    """Attach the comma-joined secondary ids and the resolved category names."""
    links = conn.execute(
        text(
            """
            SELECT dc.category_id, c.name
            FROM deal_categories dc
            LEFT JOIN categories c ON c.id = dc.category_id
            WHERE dc.deal_id = :id
            ORDER BY dc.position, dc.category_id
            """
        ),
        {"id": deal["id"]},
    ).fetchall()
    deal["categories"] = ",".join(str(category_id) for category_id, _ in links)
    names = [deal["category_name"]] if deal.get("category_name") else []
    names.extend(name for _, name in links if name and name not in names)
    deal["all_categories"] = names
    return deal


def _require(fields: Mapping[str, Any], *names: str) -> None:
    missing = [name for name in names if not str(fields.get(name) or "").strip()]
    if missing:
        raise ValidationError(f"Missing required fields: {', '.join(missing)}")


def _as_ids(value: Any) -> list[int]:
    if value is None:
        return []
    if isinstance(value, str):
        return parse_id_list(value)
    return [int(item) for item in value]


def _ensure_changed(result, deal_id: int) -> None:
    if not result.rowcount:
        raise NotFoundError(f"Deal {deal_id} not found")
