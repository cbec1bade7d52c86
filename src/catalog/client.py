"""Async client for the remote catalog service.

Three operations are consumed: a per-category match count for a query, a
paginated free-text search, and a full listing of one category (served by
the catalog's GraphQL endpoint). Failures are raised as the
:mod:`src.catalog.errors` types; retrying is left to the caller.
"""

from __future__ import annotations

from typing import Any, Protocol

import httpx
from pydantic import ValidationError

from src.catalog.errors import CategoryLoadFailed, CountLookupFailed, PageFetchFailed
from src.shared.config import settings
from src.shared.logging import get_logger, get_tracer
from src.shared.models import Category, Product

logger = get_logger(__name__)
_tracer = get_tracer(__name__)

_COMMON_FIELDS = "id brand images sellerName sellerUrl"

_CATEGORY_FIELDS: dict[Category, str] = {
    Category.SNEAKER: "productName productLink sizePrices { size price } soldOut",
    Category.APPAREL: "productName productLink subcategory gender sizePrices { size price } inStock",
    Category.ACCESSORY: "productName productLink subcategory gender sizePrices { size price } inStock",
    Category.PERFUME: "title url fragranceFamily concentration subcategory variants { size price }",
    Category.WATCH: "name link color gender salePrice marketPrice",
}


def build_category_query(category: Category) -> str:
    """GraphQL document selecting the full listing of *category*."""
    fields = f"{_COMMON_FIELDS} {_CATEGORY_FIELDS[category]}"
    return f"query {category.value}Listing {{ {category.slug} {{ {fields} }} }}"


def total_count(counts: dict[Category, int]) -> int:
    return sum(counts.values())


def parse_products(records: Any, category: Category | None = None) -> list[Product]:
    """Validate raw records, skipping the ones that cannot be read.

    When *category* is given every record is tagged with it; otherwise the
    record's own ``type``/``category`` field decides.
    """
    if not isinstance(records, list):
        return []
    products: list[Product] = []
    for raw in records:
        if not isinstance(raw, dict):
            continue
        if category is not None:
            raw = {**raw, "category": category}
        try:
            products.append(Product.model_validate(raw))
        except ValidationError as exc:
            logger.warning(
                "Skipping unreadable catalog record id=%r: %d validation error(s)",
                raw.get("id"), exc.error_count(),
            )
    return products


def parse_counts(payload: Any) -> dict[Category, int]:
    counts: dict[Category, int] = {category: 0 for category in Category}
    if not isinstance(payload, dict):
        return counts
    for key, value in payload.items():
        try:
            category = Category.parse(key)
        except ValueError:
            logger.debug("Ignoring count for unknown category %r", key)
            continue
        try:
            counts[category] = max(int(value or 0), 0)
        except (TypeError, ValueError):
            counts[category] = 0
    return counts


class CatalogService(Protocol):
    async def search_count(self, query: str) -> dict[Category, int]: ...

    async def search_products(self, query: str, limit: int, offset: int) -> list[Product]: ...

    async def list_category(self, category: Category) -> list[Product]: ...


class CatalogClient:
    """httpx-backed :class:`CatalogService`.

    Pass ``http_client`` to reuse a connection pool (or a mock transport);
    otherwise the client owns one and closes it in :meth:`aclose`.
    """

    def __init__(
        self,
        base_url: str | None = None,
        graphql_url: str | None = None,
        *,
        timeout: float | None = None,
        http_client: httpx.AsyncClient | None = None,
    ) -> None:
        self.base_url = (base_url or settings.catalog_api_url).rstrip("/")
        self.graphql_url = graphql_url or settings.catalog_graphql_url
        self._owns_client = http_client is None
        self._http = http_client or httpx.AsyncClient(
            timeout=timeout if timeout is not None else settings.request_timeout,
            follow_redirects=True,
        )

    async def __aenter__(self) -> CatalogClient:
        return self

    async def __aexit__(self, *exc_info: object) -> None:
        await self.aclose()

    async def aclose(self) -> None:
        if self._owns_client:
            await self._http.aclose()

    async def search_count(self, query: str) -> dict[Category, int]:
        with _tracer.start_as_current_span(
            "catalog.search_count", attributes={"query": query},
        ) as span:
            try:
                response = await self._http.get(
                    f"{self.base_url}/api/search/counts", params={"q": query},
                )
                response.raise_for_status()
                payload = response.json()
            except (httpx.HTTPError, ValueError) as exc:
                span.set_attribute("exit_reason", type(exc).__name__)
                logger.warning("Count lookup failed for %r: %s", query, exc)
                raise CountLookupFailed(f"count lookup failed: {exc}") from exc

            counts = parse_counts(payload)
            span.set_attribute("total_count", total_count(counts))
            logger.debug("Count lookup for %r: %s", query, {c.slug: n for c, n in counts.items()})
            return counts

    async def search_products(self, query: str, limit: int, offset: int) -> list[Product]:
        with _tracer.start_as_current_span(
            "catalog.search_products",
            attributes={"query": query, "limit": limit, "offset": offset},
        ) as span:
            try:
                response = await self._http.get(
                    f"{self.base_url}/api/search",
                    params={"q": query, "limit": limit, "offset": offset},
                )
                response.raise_for_status()
                payload = response.json()
            except (httpx.HTTPError, ValueError) as exc:
                span.set_attribute("exit_reason", type(exc).__name__)
                logger.warning("Search page failed for %r at offset %d: %s", query, offset, exc)
                raise PageFetchFailed(f"page fetch failed: {exc}", offset=offset) from exc

            records = payload.get("products") if isinstance(payload, dict) else payload
            if not isinstance(records, list):
                span.set_attribute("exit_reason", "malformed_payload")
                logger.warning("Search page for %r at offset %d has no product list", query, offset)
                raise PageFetchFailed("page fetch failed: response has no product list", offset=offset)
            products = parse_products(records)
            span.set_attribute("result_count", len(products))
            logger.info("Fetched %d products for %r at offset %d", len(products), query, offset)
            return products

    async def list_category(self, category: Category) -> list[Product]:
        with _tracer.start_as_current_span(
            "catalog.list_category", attributes={"category": category.slug},
        ) as span:
            try:
                response = await self._http.post(
                    self.graphql_url, json={"query": build_category_query(category)},
                )
                response.raise_for_status()
                payload = response.json()
            except (httpx.HTTPError, ValueError) as exc:
                span.set_attribute("exit_reason", type(exc).__name__)
                logger.warning("Listing %s failed: %s", category.slug, exc)
                raise CategoryLoadFailed(f"{category.slug} listing failed: {exc}", category=category) from exc

            data = payload.get("data") if isinstance(payload, dict) else None
            if not isinstance(data, dict):
                errors = payload.get("errors") if isinstance(payload, dict) else None
                logger.warning("Listing %s returned no data: %s", category.slug, errors)
                raise CategoryLoadFailed(f"{category.slug} listing returned no data", category=category)

            products = parse_products(data.get(category.slug) or [], category=category)
            span.set_attribute("result_count", len(products))
            logger.info("Loaded %d %s", len(products), category.slug)
            return products
