"""Catalog service failures.

The remote client raises these; the engine components catch them at their
boundary and report a :class:`~src.shared.models.FetchFailure` instead.
"""

from __future__ import annotations

from src.shared.models import Category, FailureKind, FetchFailure


class CatalogError(Exception):
    """Base class for recoverable catalog service failures."""

    kind: FailureKind

    def to_failure(self) -> FetchFailure:
        return FetchFailure(kind=self.kind, message=str(self))


class CountLookupFailed(CatalogError):
    kind = FailureKind.COUNT_LOOKUP_FAILED


class PageFetchFailed(CatalogError):
    kind = FailureKind.PAGE_FETCH_FAILED

    def __init__(self, message: str, offset: int | None = None) -> None:
        super().__init__(message)
        self.offset = offset

    def to_failure(self) -> FetchFailure:
        return FetchFailure(kind=self.kind, message=str(self), offset=self.offset)


class CategoryLoadFailed(CatalogError):
    kind = FailureKind.CATEGORY_LOAD_FAILED

    def __init__(self, message: str, category: Category | None = None) -> None:
        super().__init__(message)
        self.category = category

    def to_failure(self) -> FetchFailure:
        return FetchFailure(kind=self.kind, message=str(self), category=self.category)
