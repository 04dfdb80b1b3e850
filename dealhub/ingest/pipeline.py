"""Applies extracted deal data to the stores."""

from __future__ import annotations

import logging
from typing import Sequence

from sqlalchemy.engine import Engine

from dealhub.ingest.models import IngestPayload, IngestResult
from dealhub.logic.slugs import derive_slug
from dealhub.store.categories import CategoryStore
from dealhub.store.deals import MAX_CATEGORIES, DealStore

logger = logging.getLogger(__name__)

DEFAULT_REFERRAL_BASE = "https://example.com/"


def limit_categories(categories: Sequence[str], primary: str | None) -> list[str]:
    """Return at most five category names with the primary one first."""
    ordered: list[str] = []
    seen: set[str] = set()
    for name in ([primary] if primary else []) + list(categories):
        name = (name or "").strip()
        if not name or name.lower() in seen:
            continue
        seen.add(name.lower())
        ordered.append(name)
    if len(ordered) > MAX_CATEGORIES:
        logger.info("Limited categories to %s maximum: %s", MAX_CATEGORIES, ", ".join(ordered[:MAX_CATEGORIES]))
    return ordered[:MAX_CATEGORIES]


class DealIngestor:
    def __init__(self, engine: Engine) -> None:
        self.engine = engine
        self.deals = DealStore(engine)
        self.categories = CategoryStore(engine)

    def apply(self, software_name: str, payload: IngestPayload) -> IngestResult:
        existing = self.deals.find_by_fuzzy_name(software_name)
        if existing:
            deal_id = existing["id"]
            self.deals.merge_update(deal_id, payload.deal_fields())
            result = IngestResult(deal_id=deal_id, software_name=existing["software_name"], created=False)
            logger.info("Updated existing deal %s (%s)", result.software_name, deal_id)
        else:
            fields = payload.deal_fields()
            fields["software_name"] = software_name
            fields["referral_link"] = DEFAULT_REFERRAL_BASE + derive_slug(software_name)
            if payload.primary_category:
                fields["category_id"] = self.categories.find_or_create(payload.primary_category)
            deal_id = self.deals.create(fields)
            result = IngestResult(deal_id=deal_id, software_name=software_name, created=True)
            logger.info("Added new deal %s (%s)", software_name, deal_id)
        if payload.categories or payload.primary_category:
            self.reconcile_categories(deal_id, payload.categories, payload.primary_category)
        return result

    def reconcile_categories(self, deal_id: int, categories: Sequence[str], primary: str | None) -> list[str]:
        names = limit_categories(categories, primary)
        if not names:
            return []
        ids = [self.categories.find_or_create(name) for name in names]
        # Without an explicit primary the first reported category leads.
        primary_id = ids[0]
        self.deals.set_categories(deal_id, primary_id, ids[1:])
        logger.info("Updated categories for deal %s: %s (primary: %s)", deal_id, ", ".join(names), names[0])
        return names
