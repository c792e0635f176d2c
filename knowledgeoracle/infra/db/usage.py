"""Usage repository - MongoDB CRUD for token usage events."""

from __future__ import annotations

import asyncio
import logging

from knowledgeoracle.models.usage import UsageEvent

logger = logging.getLogger(__name__)


class UsageRepo:
    """Insert operations for usage events in MongoDB."""

    COLLECTION = "usage_events"

    def __init__(self, db) -> None:
        self._col = db[self.COLLECTION]

    async def insert(self, event: UsageEvent) -> UsageEvent:
        """Insert a new usage event. Returns event with assigned id."""
        doc = event.to_doc()
        doc.pop("_id", None)
        result = await self._col.insert_one(doc)
        return UsageEvent(
            id=str(result.inserted_id),
            source=event.source,
            model=event.model,
            input_tokens=event.input_tokens,
            output_tokens=event.output_tokens,
            session_id=event.session_id,
            timestamp=event.timestamp,
        )


class UsageRecorder:
    """Best-effort usage logging shared by the research and cascade services.

    Writes run as background tasks so a slow datastore never eats into the
    request budget. Call ``drain()`` to wait for outstanding writes.
    """

    def __init__(self, repo: UsageRepo | None = None) -> None:
        self._repo = repo
        self._pending: set[asyncio.Task] = set()

    def record(self, source: str, response, session_id: str = "") -> None:
        if not self._repo:
            return
        event = UsageEvent.from_response(source, response, session_id)
        task = asyncio.create_task(self._insert(event))
        self._pending.add(task)
        task.add_done_callback(self._pending.discard)

    async def _insert(self, event: UsageEvent) -> None:
        try:
            await self._repo.insert(event)
        except Exception:
            logger.debug("Failed to log %s usage", event.source, exc_info=True)

    async def drain(self) -> None:
        if self._pending:
            await asyncio.gather(*list(self._pending), return_exceptions=True)
