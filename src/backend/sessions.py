"""Per-visitor catalog state for the HTTP surface."""

from __future__ import annotations

from collections import OrderedDict
from collections.abc import Mapping

from src.catalog.aggregator import CatalogAggregator
from src.catalog.category_cache import CategoryCacheLoader
from src.catalog.client import CatalogService
from src.catalog.search_session import SearchSessionController
from src.shared.config import settings
from src.shared.logging import get_logger
from src.shared.models import Category

logger = get_logger(__name__)


class SessionRegistry:
    """Bounded LRU map of session ID to :class:`CatalogAggregator`.

    Every visitor gets its own search session; the category caches are
    shared by all of them.
    """

    def __init__(
        self,
        service: CatalogService,
        loaders: Mapping[Category, CategoryCacheLoader],
        max_sessions: int | None = None,
    ) -> None:
        self._service = service
        self.loaders = loaders
        self.max_sessions = max_sessions or settings.max_sessions
        self._sessions: OrderedDict[str, CatalogAggregator] = OrderedDict()

    def __len__(self) -> int:
        return len(self._sessions)

    def __contains__(self, session_id: object) -> bool:
        return session_id in self._sessions

    def get(self, session_id: str) -> CatalogAggregator:
        aggregator = self._sessions.get(session_id)
        if aggregator is not None:
            self._sessions.move_to_end(session_id)
            return aggregator

        aggregator = CatalogAggregator(self.loaders, SearchSessionController(self._service))
        self._sessions[session_id] = aggregator
        while len(self._sessions) > self.max_sessions:
            evicted, _ = self._sessions.popitem(last=False)
            logger.debug("Evicted catalog session %s", evicted)
        return aggregator
