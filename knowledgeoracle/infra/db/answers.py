"""Answer repository - persisted question/answer records."""

from __future__ import annotations

import logging
from dataclasses import replace

from knowledgeoracle.models.answer import AnswerRecord

logger = logging.getLogger(__name__)


class AnswerRepo:
    COLLECTION = "answers"

    def __init__(self, db) -> None:
        self._col = db[self.COLLECTION]

    async def insert(self, record: AnswerRecord) -> AnswerRecord:
        """Insert a new answer record. Returns the record with assigned id."""
        doc = record.to_doc()
        doc.pop("_id", None)
        result = await self._col.insert_one(doc)
        return replace(record, id=str(result.inserted_id))

    async def list_by_session(self, session_id: str, limit: int = 20) -> list[AnswerRecord]:
        cursor = self._col.find({"session_id": session_id}).sort("created_at", -1).limit(limit)
        return [AnswerRecord.from_doc(doc) async for doc in cursor]
