"""Merges browse-mode category caches and the search session into one stream."""

from __future__ import annotations

import asyncio
from collections.abc import Mapping

from src.catalog.category_cache import CategoryCacheLoader
from src.catalog.facets import (
    build_facet_index,
    filter_products,
    paginate,
    price_bounds,
    sort_products,
)
from src.catalog.search_session import SearchSessionController
from src.shared.config import settings
from src.shared.logging import get_logger
from src.shared.models import (
    CacheStatus,
    CatalogMode,
    CatalogView,
    Category,
    FacetSelection,
    FetchFailure,
    Product,
    SortOrder,
)

logger = get_logger(__name__)


class CatalogAggregator:
    """Picks the active product source and renders filtered views of it.

    With a non-empty query the stream is the search session's visible
    window. Otherwise it is every cached category listing, in category
    order; a category that failed to load simply contributes nothing.
    """

    def __init__(
        self,
        loaders: Mapping[Category, CategoryCacheLoader],
        controller: SearchSessionController,
        *,
        browse_page_size: int | None = None,
    ) -> None:
        self._loaders = loaders
        self._controller = controller
        self.browse_page_size = browse_page_size or settings.browse_page_size
        self.page = 1

    @property
    def query(self) -> str:
        return self._controller.query

    @property
    def mode(self) -> CatalogMode:
        return CatalogMode.SEARCH if self.query else CatalogMode.BROWSE

    async def set_query(self, query: str, page: int = 1) -> None:
        """Switch query and open it at *page*.

        Entering browse mode retries categories that failed. A search that
        fails while starting is left failed; only a later page advance
        retries it.
        """
        if page < 1:
            raise ValueError(f"page must be >= 1, got {page}")
        await self._controller.set_query(query)
        self.page = 1
        if self.mode is CatalogMode.BROWSE:
            await self.load_categories(retry_failed=True)
        if page == 1:
            return
        if self.mode is CatalogMode.SEARCH and self._controller.session.failure is not None:
            self.page = self._controller.page = page
            return
        await self.set_page(page)

    async def set_page(self, page: int) -> None:
        if page < 1:
            raise ValueError(f"page must be >= 1, got {page}")
        self.page = page
        if self.mode is CatalogMode.SEARCH:
            await self._controller.set_page(page)
        else:
            await self.load_categories()

    async def load_categories(self, *, retry_failed: bool = False) -> None:
        """Load every category concurrently; one failure never blocks the rest."""
        pending = [
            loader.load()
            for loader in self._loaders.values()
            if loader.status is not CacheStatus.READY
            and (retry_failed or loader.status is not CacheStatus.FAILED)
        ]
        if pending:
            await asyncio.gather(*pending)

    def stream(self) -> list[Product]:
        if self.mode is CatalogMode.SEARCH:
            return self._controller.visible_items()
        products: list[Product] = []
        for category, loader in self._loaders.items():
            for product in loader.get_all():
                if product.category is not category:
                    product = product.model_copy(update={"category": category})
                products.append(product)
        return products

    def failures(self) -> list[FetchFailure]:
        if self.mode is CatalogMode.SEARCH:
            failure = self._controller.session.failure
            return [failure] if failure is not None else []
        return [loader.failure for loader in self._loaders.values() if loader.failure is not None]

    def view(
        self,
        selection: FacetSelection | None = None,
        sort: SortOrder = SortOrder.NEW_IN,
    ) -> CatalogView:
        """Filtered, sorted products plus everything needed to draw the controls."""
        selection = selection or FacetSelection()
        stream = self.stream()
        low, high = price_bounds(stream)
        matched = sort_products(filter_products(stream, selection), sort)

        if self.mode is CatalogMode.SEARCH:
            snapshot = self._controller.snapshot()
            products = matched
            total = snapshot.total_count
            has_more = snapshot.has_more
            is_loading = snapshot.is_loading
        else:
            products = paginate(matched, self.page, self.browse_page_size)
            total = len(matched)
            has_more = self.page * self.browse_page_size < total
            is_loading = any(loader.status is CacheStatus.LOADING for loader in self._loaders.values())

        logger.debug(
            "View mode=%s page=%d stream=%d matched=%d shown=%d",
            self.mode.value, self.page, len(stream), len(matched), len(products),
        )
        return CatalogView(
            mode=self.mode,
            query=self.query,
            page=self.page,
            products=products,
            total_count=total,
            has_more=has_more,
            is_loading=is_loading,
            facets=build_facet_index(stream),
            price_min=low,
            price_max=high,
            failures=self.failures(),
        )
