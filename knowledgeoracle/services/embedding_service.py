"""Embedding service: generates query embeddings via an /v1/embeddings endpoint."""

from __future__ import annotations

import logging

import httpx

from knowledgeoracle.config import EmbeddingsConfig

logger = logging.getLogger(__name__)


class EmbeddingService:
    """Generates text embeddings via an OpenAI-compatible /v1/embeddings endpoint."""

    def __init__(self, config: EmbeddingsConfig, client: httpx.AsyncClient | None = None) -> None:
        self._base_url = config.base_url.rstrip("/")
        self._model = config.model
        self._dimensions = config.dimensions
        headers = {"Authorization": f"Bearer {config.api_key}"} if config.api_key else {}
        self._client = client or httpx.AsyncClient(
            base_url=self._base_url,
            headers=headers,
            timeout=10.0,
        )
        self._available: bool | None = None

    @property
    def available(self) -> bool:
        return self._available is not False

    async def embed(self, texts: list[str], timeout: float = 10.0) -> list[list[float]]:
        """Generate embeddings for ``texts`` within ``timeout`` seconds.

        Returns an empty list (or fewer vectors than inputs) on failure.
        """
        if self._available is False or not texts or timeout <= 0:
            return []

        payload: dict = {"input": texts}
        if self._model:
            payload["model"] = self._model
        try:
            response = await self._client.post("/v1/embeddings", json=payload, timeout=timeout)
            response.raise_for_status()
            data = response.json()
            self._available = True
            return [item["embedding"] for item in data.get("data", []) if item.get("embedding")]
        except httpx.ConnectError:
            if self._available is not False:
                logger.warning(
                    "Embedding service unavailable at %s. "
                    "Semantic retrieval disabled for this process.",
                    self._base_url,
                )
            self._available = False
            return []
        except httpx.TimeoutException:
            logger.warning("Embedding request timed out after %.1fs", timeout)
            return []
        except (httpx.HTTPError, ValueError, KeyError) as e:
            logger.error("Embedding request failed: %s", e)
            return []

    async def close(self) -> None:
        await self._client.aclose()
