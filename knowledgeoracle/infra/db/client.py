"""Motor async MongoDB wrapper."""

from __future__ import annotations

import logging

import motor.motor_asyncio

logger = logging.getLogger(__name__)

# Catalog reads run inside a request deadline; fail fast when the server is gone.
DEFAULT_SERVER_SELECTION_MS = 2000


class MongoClient:
    """Motor client tuned for short, deadline-bound reads."""

    def __init__(
        self,
        uri: str = "mongodb://localhost:27017",
        database: str = "knowledgeoracle",
        server_selection_timeout_ms: int = DEFAULT_SERVER_SELECTION_MS,
    ):
        self._client = motor.motor_asyncio.AsyncIOMotorClient(
            uri,
            serverSelectionTimeoutMS=server_selection_timeout_ms,
            connectTimeoutMS=server_selection_timeout_ms,
        )
        self._db = self._client[database]
        logger.info("MongoDB client created for database %s", database)

    @property
    def db(self) -> motor.motor_asyncio.AsyncIOMotorDatabase:
        return self._db

    def close(self) -> None:
        self._client.close()
        logger.info("MongoDB client closed")

    async def ping(self) -> bool:
        """Check if MongoDB is reachable."""
        try:
            await self._client.admin.command("ping")
            return True
        except Exception:
            logger.warning("MongoDB ping failed")
            return False
