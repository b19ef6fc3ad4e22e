"""In-process view of the streaming services known to the database."""

from __future__ import annotations

import logging

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from ..db_models import StreamingService

logger = logging.getLogger(__name__)


class StreamingServiceCache:
    """Set of streaming-service ids used to filter provider watch offers.

    The set is loaded when the application starts and reloaded before every
    scheduled batch, so services added to the table become visible without a
    restart.
    """

    def __init__(self, session_factory: async_sessionmaker[AsyncSession]):
        self._session_factory = session_factory
        self._ids: frozenset[int] = frozenset()
        self._loaded = False

    @property
    def ids(self) -> frozenset[int]:
        return self._ids

    @property
    def loaded(self) -> bool:
        return self._loaded

    def __contains__(self, service_id: object) -> bool:
        return service_id in self._ids

    async def load(self) -> frozenset[int]:
        """Replace the cached ids with the current table contents."""

        async with self._session_factory() as session:
            result = await session.execute(select(StreamingService.id))
            ids = frozenset(result.scalars().all())
        if ids != self._ids:
            logger.info("Loaded %d streaming services", len(ids))
        self._ids = ids
        self._loaded = True
        return ids

    async def ensure_loaded(self) -> frozenset[int]:
        if not self._loaded:
            return await self.load()
        return self._ids
