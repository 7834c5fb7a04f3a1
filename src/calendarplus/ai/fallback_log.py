"""Bounded history of backend fallbacks.

Kept in device settings under ``aiFallbackLog`` so the settings screen can
show why a request ended up on a later backend.
"""

from __future__ import annotations

import asyncio
import logging

from pydantic import ValidationError

from calendarplus.models import FallbackEvent
from calendarplus.settings.store import SettingsDocument

logger = logging.getLogger(__name__)

DEFAULT_LOG_LIMIT = 50
DEFAULT_QUERY_LIMIT = 20


class FallbackLog:
    """Append-only fallback history capped at ``limit`` entries.

    Args:
        store: Opened settings document to persist into (in-memory only when None)
        limit: Number of most recent events kept
        query_limit: Maximum number of events returned by :meth:`recent`
    """

    KEY = "aiFallbackLog"

    def __init__(
        self,
        store: SettingsDocument | None = None,
        limit: int = DEFAULT_LOG_LIMIT,
        query_limit: int = DEFAULT_QUERY_LIMIT,
    ) -> None:
        self._store = store
        self._limit = limit
        self._query_limit = query_limit
        self._events = self._load()
        # One write at a time; each writes the whole history
        self._persist_lock = asyncio.Lock()

    def _load(self) -> list[FallbackEvent]:
        if self._store is None:
            return []
        records = self._store.get(self.KEY)
        if not isinstance(records, list):
            return []

        events = []
        for record in records:
            try:
                events.append(FallbackEvent.model_validate(record))
            except ValidationError:
                logger.warning("Dropping malformed fallback log entry")
        return events[-self._limit :]

    async def append(self, event: FallbackEvent) -> None:
        """Record ``event``, dropping the oldest entries beyond the cap.

        The file write runs in a worker thread so concurrent generations
        keep running. A failed save is logged by the store and leaves the
        in-memory history intact.
        """
        self._events.append(event)
        del self._events[: -self._limit]
        if self._store is None:
            return

        async with self._persist_lock:
            records = [e.to_record() for e in self._events]
            await asyncio.to_thread(self._store.set, self.KEY, records)

    def recent(self, limit: int | None = None) -> list[FallbackEvent]:
        """Most recent events, oldest first.

        ``limit`` is clamped to ``[0, query_limit]``; None means ``query_limit``.
        """
        count = self._query_limit if limit is None else max(0, min(limit, self._query_limit))
        if count == 0:
            return []
        return list(self._events[-count:])

    def clear(self) -> None:
        self._events.clear()
        if self._store is not None:
            self._store.delete(self.KEY)

    def __len__(self) -> int:
        return len(self._events)
