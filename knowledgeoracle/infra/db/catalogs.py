"""Keyword catalogs backed by MongoDB collections.

Each repo only lists candidates; scoring and ranking happen in the
retrieval service so every catalog is ranked the same way.
"""

from __future__ import annotations

import logging
import re

from knowledgeoracle.models.knowledge import CatalogCandidate
from knowledgeoracle.models.query import CatalogScope

logger = logging.getLogger(__name__)

_SCRIPT_RE = re.compile(r"<(script|style)[\s\S]*?</\1>", re.IGNORECASE)
_TAG_RE = re.compile(r"<[^>]+>")
_WS_RE = re.compile(r"\s+")


def strip_html(html: str) -> str:
    text = _SCRIPT_RE.sub(" ", html or "")
    text = _TAG_RE.sub(" ", text)
    return _WS_RE.sub(" ", text).strip()


def _join(*parts) -> str:
    return " ".join(str(p) for p in parts if p)


class StudySourceRepo:
    """Study materials: org-published documents plus the user's own."""

    COLLECTION = "study_sources"
    LIST_PROJECTION = {
        "title": 1, "summary": 1, "url": 1, "topic": 1, "category": 1, "created_at": 1,
    }

    def __init__(self, db) -> None:
        self._col = db[self.COLLECTION]

    @staticmethod
    def _visibility(scope: CatalogScope) -> dict:
        published = {"scope": "org", "published": True}
        if scope.user_id:
            return {"$or": [{"user_id": scope.user_id}, published]}
        return published

    async def list_candidates(self, scope: CatalogScope) -> list[CatalogCandidate]:
        cursor = (
            self._col.find(self._visibility(scope), self.LIST_PROJECTION)
            .sort("created_at", -1)
            .limit(scope.limit)
        )
        out = []
        async for doc in cursor:
            out.append(CatalogCandidate(
                id=str(doc["_id"]),
                searchable_text=_join(
                    doc.get("title"), doc.get("summary"), doc.get("topic"), doc.get("category"),
                ),
                payload={
                    "title": doc.get("title", ""),
                    "summary": doc.get("summary", ""),
                    "url": doc.get("url", ""),
                },
            ))
        return out

    async def fetch_full_texts(self, ids: list[str]) -> dict[str, str]:
        """Full text for the given source ids (only the top-ranked few are hydrated)."""
        if not ids:
            return {}
        cursor = self._col.find({"_id": {"$in": _object_ids(ids)}}, {"full_text": 1})
        texts: dict[str, str] = {}
        async for doc in cursor:
            text = str(doc.get("full_text") or "").strip()
            if text:
                texts[str(doc["_id"])] = text
        return texts

    async def find_by_id(self, source_id: str, scope: CatalogScope) -> CatalogCandidate | None:
        query = {"$and": [{"_id": _object_ids([source_id])[0]}, self._visibility(scope)]}
        doc = await self._col.find_one(query)
        if not doc:
            return None
        text = str(doc.get("full_text") or doc.get("summary") or doc.get("url") or "")
        return CatalogCandidate(
            id=str(doc["_id"]),
            searchable_text=text,
            payload={"title": doc.get("title", ""), "url": doc.get("url", "")},
        )


class IncidentCompendiumRepo:
    """Curated, final-approved incident reports."""

    COLLECTION = "content_imports"

    def __init__(self, db) -> None:
        self._col = db[self.COLLECTION]

    async def list_candidates(self, scope: CatalogScope) -> list[CatalogCandidate]:
        cursor = (
            self._col.find({"status": "FINAL_APPROVED", "final_approved.kind": "incident_report"})
            .sort("created_at", -1)
            .limit(scope.limit)
        )
        out = []
        async for doc in cursor:
            final = doc.get("final_approved") or {}
            cat = final.get("catalog") or final
            out.append(CatalogCandidate(
                id=str(doc["_id"]),
                searchable_text=_join(
                    cat.get("title"),
                    cat.get("summary"),
                    cat.get("asset_area"),
                    cat.get("asset_type"),
                    cat.get("asset_subtype"),
                    cat.get("failure_mode"),
                    cat.get("root_cause"),
                    *(cat.get("keywords") or []),
                    *(cat.get("learning_points") or []),
                ),
                payload=dict(cat),
            ))
        return out


class DiscussionRepo:
    """Tagged discussion excerpts (forum posts and knowledge-base entries)."""

    COLLECTION = "knowledge_base"
    MAX_ROWS = 120

    def __init__(self, db) -> None:
        self._col = db[self.COLLECTION]

    async def list_candidates(self, scope: CatalogScope) -> list[CatalogCandidate]:
        if not scope.tags:
            return []
        cursor = (
            self._col.find({"hashtags": {"$in": list(scope.tags)}})
            .sort([("is_solution", -1), ("likes_count", -1)])
            .limit(self.MAX_ROWS)
        )
        out = []
        async for doc in cursor:
            text = str(doc.get("content") or "").strip() or strip_html(str(doc.get("content_html") or ""))
            hashtags = list(doc.get("hashtags") or [])
            out.append(CatalogCandidate(
                id=str(doc["_id"]),
                searchable_text=_join(doc.get("title"), text, *hashtags),
                payload={
                    "title": doc.get("title", ""),
                    "text": text,
                    "hashtags": hashtags,
                    "source_type": doc.get("source_type", "forum"),
                    "is_solution": bool(doc.get("is_solution")),
                    "is_featured": bool(doc.get("is_featured")),
                    "likes_count": int(doc.get("likes_count") or 0),
                    "url": doc.get("url", ""),
                },
            ))
        return out


def _object_ids(ids: list[str]) -> list:
    """Convert hex ids to ObjectId, keeping anything else as-is."""
    from bson import ObjectId
    from bson.errors import InvalidId

    out = []
    for raw in ids:
        try:
            out.append(ObjectId(raw))
        except (InvalidId, TypeError):
            out.append(raw)
    return out
