"""Search session lifecycle: count lookup, first page, incremental pages.

One :class:`SearchSession` exists per active query. Changing the query
replaces the session wholesale; responses that arrive for a replaced
session are dropped on arrival. Within a session the loaded list only
grows, and each server offset is fetched at most once.

State machine::

    idle ─(query)→ count_pending → first_page_pending → ready ⇄ next_page_pending
                                                          └→ exhausted
    any pending state ─(error)→ failed ─(explicit page advance)→ retry
"""

from __future__ import annotations

import asyncio
import itertools
from dataclasses import dataclass, field

from src.catalog.client import CatalogService, total_count
from src.catalog.errors import CatalogError
from src.shared.config import settings
from src.shared.logging import get_logger, get_tracer, set_search_query
from src.shared.models import (
    Category,
    FetchFailure,
    Product,
    SearchSnapshot,
    SessionState,
)

logger = get_logger(__name__)
_tracer = get_tracer(__name__)

_PENDING_STATES = frozenset({
    SessionState.COUNT_PENDING,
    SessionState.FIRST_PAGE_PENDING,
    SessionState.NEXT_PAGE_PENDING,
})

_session_ids = itertools.count(1)


@dataclass(eq=False)
class SearchSession:
    """Loaded results for one query. Compared by identity."""

    query: str
    page_size: int
    state: SessionState = SessionState.IDLE
    session_no: int = field(default_factory=lambda: next(_session_ids))
    items: list[Product] = field(default_factory=list)
    total_count: int = 0
    count_known: bool = False
    # Number of records the server has returned so far; the next unread offset
    received: int = 0
    failure: FetchFailure | None = None
    seen: set[tuple[Category, str]] = field(default_factory=set, repr=False)
    inflight: dict[int, asyncio.Task[None]] = field(default_factory=dict, repr=False)
    bootstrap: asyncio.Task[None] | None = field(default=None, repr=False)

    @property
    def has_more(self) -> bool:
        return self.state is SessionState.READY

    @property
    def is_loading(self) -> bool:
        return self.state in _PENDING_STATES

    def is_covered(self, offset: int) -> bool:
        return offset < self.received

    def append(self, products: list[Product]) -> int:
        """Append unseen products, returning how many were new."""
        self.received += len(products)
        added = 0
        for product in products:
            if product.key in self.seen:
                continue
            self.seen.add(product.key)
            self.items.append(product)
            added += 1
        return added

    def fail(self, failure: FetchFailure) -> None:
        self.state = SessionState.FAILED
        self.failure = failure


class SearchSessionController:
    """Owns the current :class:`SearchSession` and drives its fetches."""

    def __init__(self, service: CatalogService, page_size: int | None = None) -> None:
        self._service = service
        self.page_size = page_size or settings.search_page_size
        self.session = SearchSession(query="", page_size=self.page_size)
        self.page = 1

    @property
    def query(self) -> str:
        return self.session.query

    def _is_current(self, session: SearchSession) -> bool:
        return session is self.session

    # ------------------------------------------------------------------
    # Public API
    # ------------------------------------------------------------------

    async def set_query(self, query: str) -> SearchSnapshot:
        """Switch to *query*, discarding the previous session entirely.

        An empty (or blank) query enters browse mode and performs no fetch.
        Re-submitting the active query is a no-op.
        """
        query = query.strip()
        if query == self.session.query:
            bootstrap = self.session.bootstrap
            if bootstrap is not None and not bootstrap.done():
                await asyncio.shield(bootstrap)
            return self.snapshot()

        previous = self.session
        session = SearchSession(query=query, page_size=self.page_size)
        self.session = session
        self.page = 1
        set_search_query(query)
        if previous.is_loading:
            logger.info(
                "Superseding session #%d (%r) while it was %s",
                previous.session_no, previous.query, previous.state.value,
            )

        if not query:
            logger.debug("Entered browse mode")
            return self.snapshot()

        await asyncio.shield(self._start_bootstrap(session))
        return self.snapshot()

    async def set_page(self, page: int) -> SearchSnapshot:
        """Advance the visible window to 1-based *page*.

        Pages whose start offset is already loaded are served from memory.
        Otherwise the missing pages are fetched in order, each offset once.
        A failed session is retried only when moving to an unloaded page
        after the failure was observed.
        """
        if page < 1:
            raise ValueError(f"page must be >= 1, got {page}")
        session = self.session
        self.page = page
        if session.state is SessionState.IDLE:
            return self.snapshot()

        # Only a failure seen before this call earns a retry
        was_failed = session.state is SessionState.FAILED
        if session.bootstrap is not None and not session.bootstrap.done():
            await asyncio.shield(session.bootstrap)
        if not self._is_current(session):
            return self.snapshot()

        offset = (page - 1) * self.page_size
        failure = session.failure
        if session.state is SessionState.FAILED and failure is not None:
            if not was_failed or session.is_covered(offset):
                return self.snapshot()
            logger.info("Retrying session #%d after %s", session.session_no, failure.kind.value)
            session.failure = None
            if not session.count_known:
                await asyncio.shield(self._start_bootstrap(session))
                if not self._is_current(session):
                    return self.snapshot()
            else:
                session.state = SessionState.READY

        await self._ensure_covered(session, offset)
        return self.snapshot()

    def visible_items(self) -> list[Product]:
        """Loaded items up to the end of the current page."""
        if not self.session.query:
            return []
        return self.session.items[: self.page * self.page_size]

    def snapshot(self) -> SearchSnapshot:
        session = self.session
        return SearchSnapshot(
            query=session.query,
            state=session.state,
            page=self.page,
            items=self.visible_items(),
            loaded_count=len(session.items),
            total_count=session.total_count,
            has_more=session.has_more,
            is_loading=session.is_loading,
            failure=session.failure,
        )

    # ------------------------------------------------------------------
    # Fetching
    # ------------------------------------------------------------------

    def _start_bootstrap(self, session: SearchSession) -> asyncio.Task[None]:
        session.state = SessionState.COUNT_PENDING
        session.bootstrap = asyncio.create_task(self._bootstrap(session))
        return session.bootstrap

    async def _bootstrap(self, session: SearchSession) -> None:
        with _tracer.start_as_current_span(
            "search_session.start",
            attributes={"query": session.query, "session_no": session.session_no},
        ) as span:
            try:
                counts = await self._service.search_count(session.query)
            except CatalogError as exc:
                if not self._is_current(session):
                    logger.debug("Dropping count failure for superseded session #%d", session.session_no)
                    return
                span.set_attribute("exit_reason", "count_lookup_failed")
                session.total_count = 0
                session.fail(exc.to_failure())
                return

            if not self._is_current(session):
                logger.debug("Dropping count for superseded session #%d", session.session_no)
                return

            session.total_count = total_count(counts)
            session.count_known = True
            session.state = SessionState.FIRST_PAGE_PENDING
            span.set_attribute("total_count", session.total_count)
            logger.info("Query %r matches %d products", session.query, session.total_count)

            await self._fetch_page(session, 0)
            span.set_attribute("state", session.state.value)

    async def _ensure_covered(self, session: SearchSession, offset: int) -> None:
        while self._is_current(session) and not session.is_covered(offset):
            if session.state in (SessionState.FAILED, SessionState.EXHAUSTED):
                return
            if offset >= session.total_count:
                logger.debug("Offset %d is past the %d advertised matches", offset, session.total_count)
                return

            next_offset = session.received
            task = session.inflight.get(next_offset)
            if task is None:
                session.state = SessionState.NEXT_PAGE_PENDING
                task = asyncio.create_task(self._fetch_page(session, next_offset))
                session.inflight[next_offset] = task
                task.add_done_callback(lambda _t, o=next_offset: session.inflight.pop(o, None))
            else:
                logger.debug("Joining in-flight fetch at offset %d", next_offset)
            await asyncio.shield(task)

    async def _fetch_page(self, session: SearchSession, offset: int) -> None:
        try:
            products = await self._service.search_products(session.query, self.page_size, offset)
        except CatalogError as exc:
            if not self._is_current(session):
                logger.debug("Dropping page failure for superseded session #%d", session.session_no)
                return
            if offset == 0:
                # Nothing usable was loaded: the next attempt starts with the count again
                session.total_count = 0
                session.count_known = False
            session.fail(exc.to_failure())
            return

        if not self._is_current(session):
            logger.debug(
                "Dropping %d products at offset %d for superseded session #%d",
                len(products), offset, session.session_no,
            )
            return

        received = len(products)
        added = session.append(products)
        if received == self.page_size and session.received < session.total_count:
            session.state = SessionState.READY
        else:
            session.state = SessionState.EXHAUSTED
        logger.info(
            "Offset %d: %d received, %d new, %d/%d loaded, has_more=%s",
            offset, received, added, len(session.items), session.total_count, session.has_more,
        )
