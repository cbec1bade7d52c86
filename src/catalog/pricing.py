"""Comparable price extraction for heterogeneous catalog records.

Each category stores its price differently: size/price pairs for sneakers,
apparel and accessories, size variants for perfumes, and a sale/market
price pair quoted in AED for watches. Normalization happens at query time
so the stored record is never rewritten.
"""

from __future__ import annotations

import math
import re
from collections.abc import Iterable

from src.shared.models import Category, Product

UNPRICED = 0.0

AED_TO_DISPLAY_RATE = 24
WATCH_MARKUP = 1.10

_AED_PATTERN = re.compile(r"AED\s*([\d,]+\.?\d*)", re.IGNORECASE)


def _coerce_price(value: float | str | None) -> float | None:
    """Turn a raw price into a usable positive float, or None."""
    if value is None or isinstance(value, bool):
        return None
    if isinstance(value, str):
        text = value.strip().replace(",", "")
        if not text:
            return None
        try:
            number = float(text)
        except ValueError:
            return None
    else:
        number = float(value)
    if math.isnan(number) or math.isinf(number) or number <= 0:
        return None
    return number


def _min_price(values: Iterable[float | str | None]) -> float:
    prices = [p for p in (_coerce_price(v) for v in values) if p is not None]
    return min(prices) if prices else UNPRICED


def parse_aed(value: float | str | None) -> float:
    """Parse a watch price such as ``"AED5,800.00"``; 0 when unusable."""
    if isinstance(value, str):
        match = _AED_PATTERN.search(value)
        raw = match.group(1) if match else value
        number = _coerce_price(raw)
    else:
        number = _coerce_price(value)
    return number if number is not None else UNPRICED


def watch_display_price(value: float | str | None) -> float:
    """Convert an AED price to the display currency and add the markup."""
    raw = parse_aed(value)
    if raw <= 0:
        return UNPRICED
    return round(raw * AED_TO_DISPLAY_RATE * WATCH_MARKUP, 2)


def normalize_price(product: Product) -> float:
    """Return one comparable price for *product*, or ``UNPRICED`` (0.0)."""
    if product.category is Category.WATCH:
        return watch_display_price(product.sale_price or product.market_price)
    if product.category is Category.PERFUME:
        return _min_price(v.price for v in product.variants)
    return _min_price(sp.price for sp in product.size_prices)


def is_priced(price: float) -> bool:
    return price > 0
