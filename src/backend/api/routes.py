"""API route definitions."""

from __future__ import annotations

import asyncio
import uuid

from fastapi import APIRouter, Depends, HTTPException, Query, Request

from src.backend.sessions import SessionRegistry
from src.shared.logging import get_logger, set_search_query, set_session_id
from src.shared.models import (
    CatalogResponse,
    Category,
    FacetSelection,
    SortOrder,
)

logger = get_logger(__name__)

router = APIRouter()


def get_registry(request: Request) -> SessionRegistry:
    return request.app.state.sessions


@router.get("/health")
async def health_check() -> dict[str, str]:
    return {"status": "ok"}


@router.get("/catalog", response_model=CatalogResponse)
async def catalog(
    q: str = "",
    page: int = Query(default=1, ge=1),
    session_id: str | None = None,
    brand: list[str] = Query(default=[]),
    subcategory: list[str] = Query(default=[]),
    gender: list[str] = Query(default=[]),
    fragrance_family: list[str] = Query(default=[]),
    color: list[str] = Query(default=[]),
    in_stock: bool = False,
    min_price: float | None = Query(default=None, ge=0),
    max_price: float | None = Query(default=None, ge=0),
    sort: SortOrder = SortOrder.NEW_IN,
    registry: SessionRegistry = Depends(get_registry),
) -> CatalogResponse:
    session_id = session_id or uuid.uuid4().hex
    set_session_id(session_id)
    set_search_query(q.strip())

    is_new = session_id not in registry
    aggregator = registry.get(session_id)
    # Re-rendering the same page (e.g. a facet toggle) never refetches or retries
    if is_new or q.strip() != aggregator.query:
        await aggregator.set_query(q, page)
    elif page != aggregator.page:
        await aggregator.set_page(page)

    selection = FacetSelection(
        brand=brand,
        subcategory=subcategory,
        gender=gender,
        fragrance_family=fragrance_family,
        color=color,
        in_stock_only=in_stock,
        min_price=min_price,
        max_price=max_price,
    )
    view = aggregator.view(selection, sort)
    for failure in view.failures:
        logger.warning("Serving partial catalog: %s %s", failure.kind.value, failure.message)
    return CatalogResponse(session_id=session_id, view=view)


@router.post("/catalog/reload")
async def reload_catalog(
    category: str | None = None,
    registry: SessionRegistry = Depends(get_registry),
) -> dict[str, str]:
    if category:
        try:
            targets = [Category.parse(category)]
        except ValueError as exc:
            raise HTTPException(status_code=400, detail=str(exc)) from exc
    else:
        targets = list(registry.loaders)

    await asyncio.gather(*(registry.loaders[c].reload() for c in targets))
    return {c.slug: registry.loaders[c].status.value for c in targets}
