"""Process-lifetime cache of full category listings for browse mode."""

from __future__ import annotations

import asyncio

from src.catalog.client import CatalogService
from src.catalog.errors import CatalogError
from src.shared.logging import get_logger
from src.shared.models import CacheStatus, Category, FetchFailure, Product

logger = get_logger(__name__)


class CategoryCacheLoader:
    """Loads one category once and serves it from memory afterwards.

    Concurrent :meth:`load` calls share a single in-flight task. A failed
    load leaves the cache empty; the next explicit :meth:`load` or
    :meth:`reload` tries again.
    """

    def __init__(self, category: Category, service: CatalogService) -> None:
        self.category = category
        self._service = service
        self.status = CacheStatus.EMPTY
        self.failure: FetchFailure | None = None
        self._data: list[Product] = []
        self._task: asyncio.Task[list[Product]] | None = None

    def get_all(self) -> list[Product]:
        return list(self._data)

    async def load(self) -> list[Product]:
        if self.status is CacheStatus.READY:
            return self.get_all()
        task = self._task
        if self.status is not CacheStatus.LOADING or task is None:
            task = self._start()
        return await asyncio.shield(task)

    async def reload(self) -> list[Product]:
        """Discard the cached listing and fetch it again."""
        if self.status is CacheStatus.LOADING and self._task is not None:
            await asyncio.shield(self._task)
        logger.info("Reloading %s listing", self.category.slug)
        return await asyncio.shield(self._start())

    def _start(self) -> asyncio.Task[list[Product]]:
        self.status = CacheStatus.LOADING
        self.failure = None
        self._task = asyncio.create_task(self._fetch())
        return self._task

    async def _fetch(self) -> list[Product]:
        try:
            products = await self._service.list_category(self.category)
        except CatalogError as exc:
            self._data = []
            self.status = CacheStatus.FAILED
            self.failure = exc.to_failure()
            if self.failure.category is None:
                self.failure = self.failure.model_copy(update={"category": self.category})
            logger.warning("Category %s unavailable: %s", self.category.slug, exc)
            return []
        self._data = list(products)
        self.status = CacheStatus.READY
        logger.info("Cached %d %s", len(self._data), self.category.slug)
        return self.get_all()


def build_loaders(service: CatalogService) -> dict[Category, CategoryCacheLoader]:
    """One loader per category, in display order."""
    return {category: CategoryCacheLoader(category, service) for category in Category}
