"""Unit tests for backend API routes."""

from __future__ import annotations

import pytest
from httpx import ASGITransport, AsyncClient

from src.backend.main import app
from src.backend.sessions import SessionRegistry
from src.catalog.category_cache import build_loaders
from src.shared.models import Category, Product


def _products(category: Category, n: int, brand: str) -> list[Product]:
    return [Product(id=f"{category.slug}-{i}", category=category, brand=brand) for i in range(n)]


@pytest.fixture
def catalog(fake_catalog):
    return fake_catalog(
        results={"nike": _products(Category.SNEAKER, 3, "Nike")},
        listings={
            Category.SNEAKER: _products(Category.SNEAKER, 10, "Nike"),
            Category.WATCH: _products(Category.WATCH, 10, "Rolex"),
        },
    )


@pytest.fixture
async def client(catalog):
    # The lifespan does not run under ASGITransport; install the registry directly
    app.state.sessions = SessionRegistry(catalog, build_loaders(catalog), max_sessions=4)
    transport = ASGITransport(app=app)
    async with AsyncClient(transport=transport, base_url="http://test") as ac:
        yield ac


@pytest.mark.asyncio
async def test_health_check(client: AsyncClient):
    response = await client.get("/api/health")
    assert response.status_code == 200
    assert response.json() == {"status": "ok"}


@pytest.mark.asyncio
async def test_browse_first_page(client: AsyncClient):
    response = await client.get("/api/catalog")

    assert response.status_code == 200
    data = response.json()
    assert data["session_id"]
    view = data["view"]
    assert view["mode"] == "browse"
    assert view["total_count"] == 20
    assert len(view["products"]) == 16
    assert view["has_more"] is True
    assert view["facets"]["brand"] == ["Nike", "Rolex"]


@pytest.mark.asyncio
async def test_browse_filter_by_brand(client: AsyncClient):
    response = await client.get("/api/catalog", params={"brand": ["Rolex"]})
    view = response.json()["view"]
    assert view["total_count"] == 10
    assert {p["brand"] for p in view["products"]} == {"Rolex"}


@pytest.mark.asyncio
async def test_search_reuses_session(client: AsyncClient, catalog):
    first = await client.get("/api/catalog", params={"q": "nike"})
    session_id = first.json()["session_id"]
    assert first.json()["view"]["mode"] == "search"
    assert len(first.json()["view"]["products"]) == 3

    again = await client.get("/api/catalog", params={"q": "nike", "session_id": session_id})
    assert again.json()["session_id"] == session_id
    assert [c for c in catalog.calls if c[0] != "list"] == [("count", "nike"), ("page", "nike", 0)]


@pytest.mark.asyncio
async def test_search_failure_is_reported_not_raised(client: AsyncClient, catalog):
    catalog.fail_count.add("nike")
    response = await client.get("/api/catalog", params={"q": "nike"})

    assert response.status_code == 200
    view = response.json()["view"]
    assert view["products"] == []
    assert view["has_more"] is False
    assert view["failures"][0]["kind"] == "count_lookup_failed"
    assert catalog.calls == [("count", "nike")]


@pytest.mark.asyncio
async def test_rerender_after_search_failure_does_not_retry(client: AsyncClient, catalog):
    catalog.fail_count.add("nike")
    first = await client.get("/api/catalog", params={"q": "nike"})
    session_id = first.json()["session_id"]

    again = await client.get(
        "/api/catalog", params={"q": "nike", "session_id": session_id, "page": 1, "brand": ["Nike"]},
    )

    assert again.json()["view"]["failures"][0]["kind"] == "count_lookup_failed"
    assert catalog.calls == [("count", "nike")]


@pytest.mark.asyncio
async def test_page_change_fetches_next_page(client: AsyncClient, fake_catalog):
    big = fake_catalog(results={"air": [Product(id=str(i), category=Category.SNEAKER) for i in range(150)]})
    app.state.sessions = SessionRegistry(big, build_loaders(big))
    first = await client.get("/api/catalog", params={"q": "air"})
    session_id = first.json()["session_id"]
    assert first.json()["view"]["has_more"] is True

    second = await client.get("/api/catalog", params={"q": "air", "session_id": session_id, "page": 2})

    assert len(second.json()["view"]["products"]) == 150
    assert second.json()["view"]["has_more"] is False
    assert big.page_offsets("air") == [0, 100]


@pytest.mark.asyncio
async def test_invalid_page_rejected(client: AsyncClient):
    response = await client.get("/api/catalog", params={"page": 0})
    assert response.status_code == 422


@pytest.mark.asyncio
async def test_reload_single_category(client: AsyncClient, catalog):
    response = await client.post("/api/catalog/reload", params={"category": "watches"})
    assert response.status_code == 200
    assert response.json() == {"watches": "ready"}
    assert catalog.calls == [("list", Category.WATCH)]


@pytest.mark.asyncio
async def test_reload_unknown_category(client: AsyncClient):
    response = await client.post("/api/catalog/reload", params={"category": "furniture"})
    assert response.status_code == 400


def test_registry_evicts_least_recently_used(catalog):
    registry = SessionRegistry(catalog, build_loaders(catalog), max_sessions=2)
    registry.get("a")
    registry.get("b")
    registry.get("a")
    registry.get("c")
    assert "a" in registry
    assert "b" not in registry
    assert len(registry) == 2
