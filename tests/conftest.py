"""Shared test configuration.

Provides an in-memory catalog service whose calls are recorded and can be
held back with :class:`asyncio.Event` gates, so tests can control the order
in which responses arrive.
"""

from __future__ import annotations

import asyncio
from collections.abc import Callable

import pytest

from src.catalog.errors import CategoryLoadFailed, CountLookupFailed, PageFetchFailed
from src.shared.models import Category, Product


class FakeCatalog:
    def __init__(
        self,
        results: dict[str, list[Product]] | None = None,
        listings: dict[Category, list[Product]] | None = None,
    ) -> None:
        self.results = results or {}
        self.listings = listings or {}
        self.counts: dict[str, dict[Category, int]] = {}
        self.fail_count: set[str] = set()
        self.fail_pages: set[tuple[str, int]] = set()
        self.fail_categories: set[Category] = set()
        self.calls: list[tuple] = []
        self._gates: dict[tuple, asyncio.Event] = {}

    def gate(self, *key: object) -> asyncio.Event:
        """Hold the call identified by *key* until the returned event is set."""
        event = asyncio.Event()
        self._gates[key] = event
        return event

    def page_offsets(self, query: str) -> list[int]:
        return [call[2] for call in self.calls if call[0] == "page" and call[1] == query]

    async def _wait(self, key: tuple) -> None:
        event = self._gates.get(key)
        if event is not None:
            await event.wait()

    async def search_count(self, query: str) -> dict[Category, int]:
        self.calls.append(("count", query))
        await self._wait(("count", query))
        if query in self.fail_count:
            raise CountLookupFailed("count service down")
        if query in self.counts:
            return dict(self.counts[query])
        counts = {category: 0 for category in Category}
        for product in self.results.get(query, []):
            counts[product.category] += 1
        return counts

    async def search_products(self, query: str, limit: int, offset: int) -> list[Product]:
        self.calls.append(("page", query, offset))
        await self._wait(("page", query, offset))
        if (query, offset) in self.fail_pages:
            raise PageFetchFailed("search service down", offset=offset)
        return list(self.results.get(query, [])[offset:offset + limit])

    async def list_category(self, category: Category) -> list[Product]:
        self.calls.append(("list", category))
        await self._wait(("list", category))
        if category in self.fail_categories:
            raise CategoryLoadFailed(f"{category.slug} unavailable", category=category)
        return list(self.listings.get(category, []))


@pytest.fixture
def fake_catalog() -> Callable[..., FakeCatalog]:
    return FakeCatalog


async def wait_until(predicate: Callable[[], bool], attempts: int = 200) -> None:
    """Yield to the event loop until *predicate* holds."""
    for _ in range(attempts):
        if predicate():
            return
        await asyncio.sleep(0)
    raise AssertionError("condition never became true")


@pytest.fixture
def until() -> Callable[..., object]:
    return wait_until
