"""FastAPI application exposing the deal and category stores to the dashboard."""

from __future__ import annotations

import logging
from functools import lru_cache
from typing import Any

from fastapi import Depends, FastAPI, Query, Request
from fastapi.responses import JSONResponse
from pydantic import BaseModel
from sqlalchemy.engine import Engine

from dealhub.db.session import create_engine_from_env
from dealhub.errors import ConflictError, DealHubError, NotFoundError, ValidationError
from dealhub.logic.ranking import PAGE_SIZE, related_deals_by_slug
from dealhub.store.analytics import AnalyticsRecorder
from dealhub.store.categories import CategoryStore
from dealhub.store.deals import DealStore
from dealhub.store.likes import LikeLedger

logger = logging.getLogger(__name__)

app = FastAPI(title="DealHub API")

SIDEBAR_CATEGORIES = 10
ERROR_STATUS = {
    NotFoundError: 404,
    ValidationError: 400,
    ConflictError: 409,
}


class DealIn(BaseModel):
    software_name: str | None = None
    category_id: int | None = None
    categories: list[int] | str | None = None
    logo_url: str | None = None
    website_url: str | None = None
    referral_link: str | None = None
    discount: str | None = None
    coupon_code: str | None = None
    time_limit: str | None = None
    description: str | None = None


class CategoryIn(BaseModel):
    name: str | None = None
    description: str | None = None


class RelatedLikeIn(BaseModel):
    sourceDealId: int | None = None
    relatedDealId: int | None = None


class AnalyticsIn(BaseModel):
    deal_id: int
    action: str
    ip_address: str | None = None
    user_agent: str | None = None


@lru_cache(maxsize=1)
def get_engine() -> Engine:
    return create_engine_from_env()


@app.exception_handler(DealHubError)
async def store_error_handler(request: Request, exc: DealHubError) -> JSONResponse:
    status = ERROR_STATUS.get(type(exc), 500)
    if status == 500:
        logger.error("Store failure on %s: %s", request.url.path, exc)
    return JSONResponse({"error": str(exc)}, status_code=status)


@app.get("/api/deals")
async def list_deals(
    sortBy: str = "recent",
    limit: int | None = None,
    engine: Engine = Depends(get_engine),
) -> dict[str, Any]:
    # The dashboard historically sends sortBy=id for newest-first.
    sort_by = "recent" if sortBy == "id" else sortBy
    return {"deals": DealStore(engine).list_all(sort_by=sort_by, limit=limit)}


@app.post("/api/deals")
async def create_deal(payload: DealIn, engine: Engine = Depends(get_engine)) -> dict[str, Any]:
    store = DealStore(engine)
    deal_id = store.create(payload.model_dump(exclude_unset=True))
    return {"success": True, "deal": {"id": deal_id, "software_name": payload.software_name, "discount": payload.discount}}


@app.put("/api/deals/{deal_id}")
async def update_deal(deal_id: int, payload: DealIn, engine: Engine = Depends(get_engine)) -> dict[str, Any]:
    DealStore(engine).update(deal_id, payload.model_dump(exclude_unset=True))
    return {"success": True}


@app.delete("/api/deals/{deal_id}")
async def delete_deal(deal_id: int, engine: Engine = Depends(get_engine)) -> dict[str, Any]:
    DealStore(engine).delete(deal_id)
    return {"success": True}


@app.get("/api/deal/{slug}")
async def deal_by_slug(slug: str, engine: Engine = Depends(get_engine)) -> dict[str, Any]:
    return {"deal": DealStore(engine).find_by_slug(slug)}


@app.get("/api/deal/{slug}/related")
async def related(
    slug: str,
    exclude: str | None = Query(None),
    limit: int = PAGE_SIZE,
    engine: Engine = Depends(get_engine),
) -> dict[str, Any]:
    page = related_deals_by_slug(engine, slug, _parse_ids(exclude), limit)
    return {"relatedDeals": page.deals, "exclude": sorted(page.exclude_ids), "exhausted": page.exhausted}


@app.post("/api/deal/{deal_id}/like")
async def like_deal(deal_id: int, engine: Engine = Depends(get_engine)) -> dict[str, Any]:
    store = DealStore(engine)
    store.increment_likes(deal_id)
    return {"message": "Like recorded", "likes": store.get(deal_id)["likes"]}


@app.post("/api/deal/{deal_id}/unlike")
async def unlike_deal(deal_id: int, engine: Engine = Depends(get_engine)) -> dict[str, Any]:
    store = DealStore(engine)
    store.decrement_likes(deal_id)
    return {"message": "Unlike recorded", "likes": store.get(deal_id)["likes"]}


@app.post("/api/related-like")
async def related_like(payload: RelatedLikeIn, engine: Engine = Depends(get_engine)) -> dict[str, Any]:
    source_id, related_id = _pair(payload)
    likes = LikeLedger(engine).like(source_id, related_id)
    return {"message": f"Liked successfully and saved. Total likes: {likes}", "likes": likes}


@app.post("/api/related-unlike")
async def related_unlike(payload: RelatedLikeIn, engine: Engine = Depends(get_engine)) -> dict[str, Any]:
    source_id, related_id = _pair(payload)
    LikeLedger(engine).unlike(source_id, related_id)
    return {"message": "Unliked successfully and removed."}


@app.get("/api/search")
async def search(
    q: str | None = None,
    category: str | None = None,
    engine: Engine = Depends(get_engine),
) -> dict[str, Any]:
    rows = DealStore(engine).search(q, category)
    return {"deals": rows, "count": len(rows), "searchTerm": q, "category": category}


@app.get("/api/categories")
async def sidebar_categories(engine: Engine = Depends(get_engine)) -> dict[str, Any]:
    return {"categories": CategoryStore(engine).list_random_subset(SIDEBAR_CATEGORIES)}


@app.get("/api/all-categories")
async def all_categories(engine: Engine = Depends(get_engine)) -> dict[str, Any]:
    return {"categories": CategoryStore(engine).list_all()}


@app.post("/api/categories")
async def create_category(payload: CategoryIn, engine: Engine = Depends(get_engine)) -> dict[str, Any]:
    category_id = CategoryStore(engine).create(payload.name or "", payload.description)
    return {"success": True, "category": {"id": category_id, "name": payload.name, "description": payload.description}}


@app.delete("/api/categories/{category_id}")
async def delete_category(category_id: int, engine: Engine = Depends(get_engine)) -> dict[str, Any]:
    CategoryStore(engine).delete(category_id)
    return {"success": True}


@app.get("/api/category/{slug}")
async def category_by_slug(slug: str, engine: Engine = Depends(get_engine)) -> dict[str, Any]:
    store = CategoryStore(engine)
    category = store.find_by_slug(slug)
    return {"category": category, "deals": store.deals_for(category["id"])}


@app.post("/api/analytics")
async def track(payload: AnalyticsIn, request: Request, engine: Engine = Depends(get_engine)) -> dict[str, Any]:
    AnalyticsRecorder(engine).record(
        payload.deal_id,
        payload.action,
        ip_address=payload.ip_address or (request.client.host if request.client else None),
        user_agent=payload.user_agent or request.headers.get("user-agent"),
    )
    return {"success": True}


@app.get("/api/analytics")
async def analytics(engine: Engine = Depends(get_engine)) -> dict[str, Any]:
    return {"analytics": AnalyticsRecorder(engine).recent()}


@app.get("/api/stats")
async def stats(engine: Engine = Depends(get_engine)) -> dict[str, Any]:
    return {"stats": AnalyticsRecorder(engine).stats()}


def _parse_ids(raw: str | None) -> list[int]:
    if not raw:
        return []
    try:
        return [int(part) for part in raw.split(",") if part.strip()]
    except ValueError as exc:
        raise ValidationError(f"Invalid exclude list: {raw}") from exc


def _pair(payload: RelatedLikeIn) -> tuple[int, int]:
    if not payload.sourceDealId or not payload.relatedDealId:
        raise ValidationError("Missing source or related deal ID.")
    return payload.sourceDealId, payload.relatedDealId
