"""Shared data models used across the application."""

from __future__ import annotations

from enum import Enum
from typing import Any

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator


class Category(str, Enum):
    SNEAKER = "Sneaker"
    APPAREL = "Apparel"
    ACCESSORY = "Accessory"
    PERFUME = "Perfume"
    WATCH = "Watch"

    @property
    def slug(self) -> str:
        """Collection name used by the catalog service."""
        return _CATEGORY_SLUGS[self]

    @classmethod
    def parse(cls, value: Category | str) -> Category:
        """Accept either the display name or the catalog slug, case-insensitively."""
        if isinstance(value, Category):
            return value
        text = str(value).strip().lower()
        for category in cls:
            if text in (category.value.lower(), category.slug):
                return category
        raise ValueError(f"Unknown category: {value!r}")


_CATEGORY_SLUGS: dict[Category, str] = {
    Category.SNEAKER: "sneakers",
    Category.APPAREL: "apparel",
    Category.ACCESSORY: "accessories",
    Category.PERFUME: "perfumes",
    Category.WATCH: "watches",
}


class Facet(str, Enum):
    BRAND = "brand"
    SUBCATEGORY = "subcategory"
    GENDER = "gender"
    FRAGRANCE_FAMILY = "fragrance_family"
    COLOR = "color"


class SortOrder(str, Enum):
    NEW_IN = "new_in"
    PRICE_ASC = "price_asc"
    PRICE_DESC = "price_desc"


# ---------------------------------------------------------------------------
# Catalog records
# ---------------------------------------------------------------------------

class SizePrice(BaseModel):
    model_config = ConfigDict(frozen=True)

    size: str | None = None
    price: float | str | None = None

    @field_validator("size", mode="before")
    @classmethod
    def _size_as_text(cls, value: Any) -> Any:
        return None if value is None else str(value)


class Variant(BaseModel):
    model_config = ConfigDict(frozen=True)

    size: str | None = None
    price: float | str | None = None

    @field_validator("size", mode="before")
    @classmethod
    def _size_as_text(cls, value: Any) -> Any:
        return None if value is None else str(value)


_NAME_KEYS = ("displayName", "display_name", "productName", "name", "title")
_LINK_KEYS = ("link", "productLink", "url")


class Product(BaseModel):
    """A catalog record as served, with prices left in their raw form.

    Accepts the catalog service's camelCase field names; the display name
    and product link are read from whichever per-category field carries them.
    """

    model_config = ConfigDict(frozen=True, populate_by_name=True, extra="ignore")

    id: str
    category: Category
    brand: str = ""
    display_name: str = ""
    images: list[str] = Field(default_factory=list)
    subcategory: str | None = None
    gender: str | None = None
    fragrance_family: str | None = Field(default=None, alias="fragranceFamily")
    color: str | None = None
    size_prices: list[SizePrice] = Field(default_factory=list, alias="sizePrices")
    variants: list[Variant] = Field(default_factory=list)
    sale_price: float | str | None = Field(default=None, alias="salePrice")
    market_price: float | str | None = Field(default=None, alias="marketPrice")
    in_stock: bool | None = Field(default=None, alias="inStock")
    sold_out: bool | None = Field(default=None, alias="soldOut")
    seller_name: str | None = Field(default=None, alias="sellerName")
    seller_url: str | None = Field(default=None, alias="sellerUrl")
    link: str | None = None

    @model_validator(mode="before")
    @classmethod
    def _from_wire(cls, data: Any) -> Any:
        if not isinstance(data, dict):
            return data
        data = dict(data)
        if "category" not in data and "type" in data:
            data["category"] = data.pop("type")
        if data.get("id") is not None:
            data["id"] = str(data["id"])
        if not data.get("display_name"):
            data["display_name"] = next((data[k] for k in _NAME_KEYS if data.get(k)), "")
        if not data.get("link"):
            data["link"] = next((data[k] for k in _LINK_KEYS if data.get(k)), None)
        for key in ("images", "sizePrices", "size_prices", "variants"):
            if key in data and data[key] is None:
                data[key] = []
        if data.get("brand") is None:
            data["brand"] = ""
        return data

    @field_validator("category", mode="before")
    @classmethod
    def _parse_category(cls, value: Any) -> Category:
        return Category.parse(value)

    @property
    def key(self) -> tuple[Category, str]:
        """Identity of the record; ids are only unique within a category."""
        return (self.category, self.id)

    @property
    def thumbnail(self) -> str | None:
        return self.images[0] if self.images else None

    @property
    def available(self) -> bool | None:
        """Stock state from ``inStock`` or ``soldOut``; None when neither is known."""
        if self.in_stock is not None:
            return self.in_stock
        if self.sold_out is not None:
            return not self.sold_out
        return None

    def facet_value(self, facet: Facet) -> str | None:
        value = getattr(self, facet.value)
        return value or None


class FacetSelection(BaseModel):
    """Selected filter values; an empty set leaves that facet unconstrained."""

    model_config = ConfigDict(frozen=True)

    brand: frozenset[str] = frozenset()
    subcategory: frozenset[str] = frozenset()
    gender: frozenset[str] = frozenset()
    fragrance_family: frozenset[str] = frozenset()
    color: frozenset[str] = frozenset()
    in_stock_only: bool = False
    min_price: float | None = None
    max_price: float | None = None

    def selected(self, facet: Facet) -> frozenset[str]:
        return getattr(self, facet.value)

    @property
    def has_price_bounds(self) -> bool:
        return self.min_price is not None or self.max_price is not None


# ---------------------------------------------------------------------------
# Engine state exposed to the display layer
# ---------------------------------------------------------------------------

class FailureKind(str, Enum):
    COUNT_LOOKUP_FAILED = "count_lookup_failed"
    PAGE_FETCH_FAILED = "page_fetch_failed"
    CATEGORY_LOAD_FAILED = "category_load_failed"


class FetchFailure(BaseModel):
    kind: FailureKind
    message: str = ""
    category: Category | None = None
    offset: int | None = None


class SessionState(str, Enum):
    IDLE = "idle"
    COUNT_PENDING = "count_pending"
    FIRST_PAGE_PENDING = "first_page_pending"
    READY = "ready"
    NEXT_PAGE_PENDING = "next_page_pending"
    EXHAUSTED = "exhausted"
    FAILED = "failed"


class CacheStatus(str, Enum):
    EMPTY = "empty"
    LOADING = "loading"
    READY = "ready"
    FAILED = "failed"


class SearchSnapshot(BaseModel):
    query: str
    state: SessionState
    page: int = 1
    items: list[Product] = Field(default_factory=list)
    loaded_count: int = 0
    total_count: int = 0
    has_more: bool = False
    is_loading: bool = False
    failure: FetchFailure | None = None


class CatalogMode(str, Enum):
    BROWSE = "browse"
    SEARCH = "search"


class CatalogView(BaseModel):
    """Everything the display layer needs to render one grid state."""

    mode: CatalogMode
    query: str = ""
    page: int = 1
    products: list[Product] = Field(default_factory=list)
    total_count: int = 0
    has_more: bool = False
    is_loading: bool = False
    facets: dict[Facet, list[str]] = Field(default_factory=dict)
    price_min: float | None = None
    price_max: float | None = None
    failures: list[FetchFailure] = Field(default_factory=list)


class CatalogResponse(BaseModel):
    session_id: str
    view: CatalogView
