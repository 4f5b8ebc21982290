from __future__ import annotations

import asyncio
import logging

from app.services.store import SqlStore

logger = logging.getLogger(__name__)


class UsageRecorder:
    """Append-only writer of usage events."""

    def __init__(self, store: SqlStore) -> None:
        self._store = store

    async def record(self, user_id: int, action: str) -> None:
        await asyncio.to_thread(self._store.insert_usage_event, user_id, action)
        logger.info("Recorded %s for user %s", action, user_id)


__all__ = ["UsageRecorder"]
