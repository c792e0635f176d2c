"""Semantic chunk index - MongoDB $vectorSearch over study source chunks."""

from __future__ import annotations

import logging

from knowledgeoracle.models.knowledge import ChunkHit

logger = logging.getLogger(__name__)


class ChunkIndexRepo:
    """Vector search over pre-embedded chunks of study sources.

    Requires a vector search index named 'chunk_vector_index' on the
    'embedding' field (see ``migrations.create_vector_search_index``).
    """

    COLLECTION = "study_source_chunks"
    INDEX_NAME = "chunk_vector_index"

    def __init__(self, db) -> None:
        self._col = db[self.COLLECTION]

    async def search(
        self, vector: list[float], k: int, similarity_floor: float
    ) -> list[ChunkHit]:
        if not vector or k <= 0:
            return []
        pipeline: list[dict] = [
            {
                "$vectorSearch": {
                    "index": self.INDEX_NAME,
                    "path": "embedding",
                    "queryVector": vector,
                    "numCandidates": k * 10,
                    "limit": k,
                }
            },
            {"$addFields": {"score": {"$meta": "vectorSearchScore"}}},
            {"$match": {"score": {"$gte": similarity_floor}}},
            {"$project": {"embedding": 0}},
        ]
        hits = []
        async for doc in self._col.aggregate(pipeline):
            text = str(doc.get("text") or "").strip()
            if not text:
                continue
            hits.append(ChunkHit(
                source_id=str(doc.get("source_id", "")),
                chunk_text=text,
                similarity=float(doc.get("score", 0.0)),
                title=str(doc.get("title") or ""),
            ))
        logger.debug("Vector search returned %d chunks (floor %.2f)", len(hits), similarity_floor)
        return hits
