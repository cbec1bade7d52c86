"""Facet index, facet filtering, sorting and paging over a product stream.

All functions are pure: they take the current stream and the user's
selection and return new lists, so the same call gives the same answer
whether it comes from a request handler or a test.
"""

from __future__ import annotations

from collections.abc import Iterable, Sequence

from src.catalog.pricing import is_priced, normalize_price
from src.shared.models import Facet, FacetSelection, Product, SortOrder


def build_facet_index(products: Iterable[Product]) -> dict[Facet, list[str]]:
    """Distinct non-empty values per facet, sorted, from a single scan."""
    seen: dict[Facet, set[str]] = {facet: set() for facet in Facet}
    for product in products:
        for facet in Facet:
            value = product.facet_value(facet)
            if value:
                seen[facet].add(value)
    return {facet: sorted(values) for facet, values in seen.items()}


def _passes_facets(product: Product, selection: FacetSelection) -> bool:
    for facet in Facet:
        chosen = selection.selected(facet)
        if not chosen:
            continue
        value = product.facet_value(facet)
        # A missing value cannot satisfy an active selection
        if value is None or value not in chosen:
            return False
    return True


def _passes_price(price: float, selection: FacetSelection) -> bool:
    if not selection.has_price_bounds:
        return True
    if not is_priced(price):
        return False
    if selection.min_price is not None and price < selection.min_price:
        return False
    if selection.max_price is not None and price > selection.max_price:
        return False
    return True


def filter_products(products: Iterable[Product], selection: FacetSelection) -> list[Product]:
    """Keep products matching every active facet (OR within a facet).

    ``in_stock_only`` drops items that are out of stock or whose stock
    state is unknown. Price bounds compare against the normalized price.
    """
    result: list[Product] = []
    for product in products:
        if not _passes_facets(product, selection):
            continue
        if selection.in_stock_only and product.available is not True:
            continue
        if selection.has_price_bounds and not _passes_price(normalize_price(product), selection):
            continue
        result.append(product)
    return result


def price_bounds(products: Iterable[Product]) -> tuple[float | None, float | None]:
    """Min and max normalized price over priced products, for a range control."""
    prices = [p for p in (normalize_price(product) for product in products) if is_priced(p)]
    if not prices:
        return None, None
    return min(prices), max(prices)


def sort_products(products: Sequence[Product], order: SortOrder = SortOrder.NEW_IN) -> list[Product]:
    """Sort by normalized price; ``NEW_IN`` keeps catalog order. Unpriced go last."""
    if order is SortOrder.NEW_IN:
        return list(products)
    descending = order is SortOrder.PRICE_DESC

    def _key(product: Product) -> tuple[bool, float]:
        price = normalize_price(product)
        if not is_priced(price):
            return (True, 0.0)
        return (False, -price if descending else price)

    return sorted(products, key=_key)


def paginate(products: Sequence[Product], page: int, page_size: int) -> list[Product]:
    """Slice one 1-based page out of *products*."""
    if page < 1:
        raise ValueError(f"page must be >= 1, got {page}")
    if page_size < 1:
        raise ValueError(f"page_size must be >= 1, got {page_size}")
    start = (page - 1) * page_size
    return list(products[start:start + page_size])
