"""MongoDB index and vector search index creation."""

from __future__ import annotations

import logging

import pymongo

logger = logging.getLogger(__name__)


async def run_migrations(db) -> None:
    """Create the indexes the catalogs and answer log query by."""
    logger.info("Running MongoDB migrations...")

    # Study sources: visibility filter plus recency sort
    study_sources = db["study_sources"]
    await study_sources.create_index(
        [("user_id", pymongo.ASCENDING), ("created_at", pymongo.DESCENDING)]
    )
    await study_sources.create_index(
        [
            ("scope", pymongo.ASCENDING),
            ("published", pymongo.ASCENDING),
            ("created_at", pymongo.DESCENDING),
        ]
    )

    # Incident compendium
    content_imports = db["content_imports"]
    await content_imports.create_index(
        [
            ("status", pymongo.ASCENDING),
            ("final_approved.kind", pymongo.ASCENDING),
            ("created_at", pymongo.DESCENDING),
        ]
    )

    # Tagged discussions
    knowledge_base = db["knowledge_base"]
    await knowledge_base.create_index(
        [
            ("hashtags", pymongo.ASCENDING),
            ("is_solution", pymongo.DESCENDING),
            ("likes_count", pymongo.DESCENDING),
        ]
    )

    # Chunks
    chunks = db["study_source_chunks"]
    await chunks.create_index([("source_id", pymongo.ASCENDING)])

    # Answers
    answers = db["answers"]
    await answers.create_index(
        [("session_id", pymongo.ASCENDING), ("created_at", pymongo.DESCENDING)]
    )
    await answers.create_index(
        [("user_id", pymongo.ASCENDING), ("created_at", pymongo.DESCENDING)]
    )

    # Usage events
    usage_events = db["usage_events"]
    await usage_events.create_index(
        [("source", pymongo.ASCENDING), ("timestamp", pymongo.DESCENDING)]
    )
    await usage_events.create_index([("session_id", pymongo.ASCENDING)])

    logger.info("MongoDB migrations complete")


async def create_vector_search_index(db, dimensions: int = 1024) -> bool:
    """Create the vector search index for the chunk collection.

    NOTE: This requires MongoDB Atlas or a local deployment with
    mongot (Atlas Search). Returns False and logs instructions when the
    server rejects the createSearchIndexes command.
    """
    try:
        await db.command({
            "createSearchIndexes": "study_source_chunks",
            "indexes": [
                {
                    "name": "chunk_vector_index",
                    "type": "vectorSearch",
                    "definition": {
                        "fields": [
                            {
                                "type": "vector",
                                "path": "embedding",
                                "numDimensions": dimensions,
                                "similarity": "cosine",
                            },
                            {"type": "filter", "path": "source_id"},
                        ]
                    },
                }
            ],
        })
        logger.info("Vector search index created successfully")
        return True
    except Exception as e:
        logger.warning(
            "Could not create vector search index automatically: %s. "
            "You may need to create it manually via Atlas UI or mongosh.",
            e,
        )
        return False
