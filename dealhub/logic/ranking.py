"""Related-deal ranking for a deal page."""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Iterable

from sqlalchemy import bindparam
from sqlalchemy.engine import Engine
from sqlalchemy.sql import text

from dealhub.errors import NotFoundError, ValidationError
from dealhub.store.base import read_scope, row_dicts
from dealhub.store.deals import DealStore

INITIAL_PAGE_SIZE = 6
PAGE_SIZE = 3


@dataclass(slots=True)
class RelatedPage:
    deals: list[dict[str, Any]]
    exclude_ids: set[int] = field(default_factory=set)
    exhausted: bool = False

    @property
    def ids(self) -> list[int]:
        return [deal["id"] for deal in self.deals]


# Paging excludes already-shown ids instead of using OFFSET, so like changes
# between requests cannot repeat or skip a deal.
_RELATED_QUERY = text(
    """
    SELECT d.id, d.software_name, d.software_name_slug, d.category_id,
           d.logo_url, d.website_url, d.referral_link, d.discount,
           d.coupon_code, d.time_limit, d.description, d.likes, d.clicks,
           COALESCE(rdl.likes, 0) AS contextual_likes
    FROM deals d
    LEFT JOIN related_deal_likes rdl
      ON rdl.related_deal_id = d.id AND rdl.source_deal_id = :source_id
    WHERE d.id NOT IN :exclude_ids
    ORDER BY contextual_likes DESC, d.likes DESC, d.id ASC
    LIMIT :limit
    """
).bindparams(bindparam("exclude_ids", expanding=True))


def related_deals(
    engine: Engine,
    source_id: int,
    exclude_ids: Iterable[int] = (),
    limit: int = PAGE_SIZE,
) -> RelatedPage:
    """Return up to ``limit`` other deals ranked for ``source_id``.

    Order: contextual likes for the pair, then global likes, then id. The
    returned page carries ``exclude_ids`` with its own ids folded in, ready
    for the next call; ``exhausted`` is set once fewer than ``limit`` rows
    come back.
    """
    if limit < 1:
        raise ValidationError("limit must be positive")
    excluded = {int(deal_id) for deal_id in exclude_ids}
    excluded.add(source_id)
    with read_scope(engine) as conn:
        exists = conn.execute(text("SELECT 1 FROM deals WHERE id = :id"), {"id": source_id}).first()
        if exists is None:
            raise NotFoundError(f"Deal {source_id} not found")
        rows = row_dicts(
            conn.execute(
                _RELATED_QUERY,
                {"source_id": source_id, "exclude_ids": sorted(excluded), "limit": limit},
            )
        )
    excluded.update(row["id"] for row in rows)
    return RelatedPage(deals=rows, exclude_ids=excluded, exhausted=len(rows) < limit)


def related_deals_by_slug(
    engine: Engine,
    slug: str,
    exclude_ids: Iterable[int] = (),
    limit: int = PAGE_SIZE,
) -> RelatedPage:
    deal = DealStore(engine).find_by_slug(slug)
    return related_deals(engine, deal["id"], exclude_ids, limit)
