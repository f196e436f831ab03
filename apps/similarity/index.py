"""
Similarity index for past incidents.

Completed incidents are upserted with their embedding and a small metadata
payload; new incidents search it for the closest prior reports of the same
category. Results below the configured minimum cosine score are dropped.

Backends:
- memory: process-local cosine index, for development and tests
- qdrant: Qdrant collection via qdrant-client
"""

from __future__ import annotations

import logging
import math
import threading
from abc import ABC, abstractmethod
from typing import Any

from django.conf import settings

from apps.orchestration.dtos import SimilarIncident

logger = logging.getLogger(__name__)


def _is_zero(vector: list[float]) -> bool:
    return not any(vector)


class SimilarityIndex(ABC):
    """Interface consumed by the pipeline."""

    name: str = "base"

    def __init__(self, min_score: float | None = None, top_k: int | None = None):
        self.min_score = (
            min_score
            if min_score is not None
            else float(getattr(settings, "SIMILARITY_MIN_SCORE", 0.7))
        )
        self.top_k = top_k if top_k is not None else int(getattr(settings, "SIMILARITY_TOP_K", 3))

    @abstractmethod
    def upsert(self, incident_id: str, vector: list[float], metadata: dict[str, Any]) -> None:
        raise NotImplementedError

    @abstractmethod
    def search(
        self,
        vector: list[float],
        k: int | None = None,
        filters: dict[str, Any] | None = None,
        exclude_ids: tuple[str, ...] | list[str] = (),
    ) -> list[SimilarIncident]:
        """Return at most ``k`` matches scoring at least ``min_score``, best first."""
        raise NotImplementedError


class InMemoryIndex(SimilarityIndex):
    """Brute-force cosine index held in process memory."""

    name = "memory"

    def __init__(self, **kwargs):
        super().__init__(**kwargs)
        self._points: dict[str, tuple[list[float], dict[str, Any]]] = {}
        self._lock = threading.Lock()

    def __len__(self):
        return len(self._points)

    def upsert(self, incident_id: str, vector: list[float], metadata: dict[str, Any]) -> None:
        with self._lock:
            self._points[str(incident_id)] = (list(vector), dict(metadata))

    def search(self, vector, k=None, filters=None, exclude_ids=()):
        if _is_zero(vector):
            return []
        limit = k or self.top_k
        excluded = {str(i) for i in exclude_ids}
        filters = filters or {}

        with self._lock:
            points = list(self._points.items())

        scored = []
        for point_id, (candidate, metadata) in points:
            if point_id in excluded:
                continue
            if any(metadata.get(key) != value for key, value in filters.items()):
                continue
            score = self._cosine(vector, candidate)
            if score >= self.min_score:
                scored.append(SimilarIncident(incident_id=point_id, score=round(score, 4), metadata=metadata))

        scored.sort(key=lambda match: match.score, reverse=True)
        return scored[:limit]

    def clear(self):
        with self._lock:
            self._points.clear()

    @staticmethod
    def _cosine(a: list[float], b: list[float]) -> float:
        if len(a) != len(b):
            return 0.0
        dot = sum(x * y for x, y in zip(a, b))
        norm = math.sqrt(sum(x * x for x in a)) * math.sqrt(sum(y * y for y in b))
        return dot / norm if norm else 0.0


class QdrantIndex(SimilarityIndex):
    """Index stored in a Qdrant collection (cosine distance)."""

    name = "qdrant"

    def __init__(
        self,
        url: str | None = None,
        api_key: str | None = None,
        collection: str | None = None,
        vector_size: int | None = None,
        client: Any = None,
        **kwargs,
    ):
        super().__init__(**kwargs)
        self.url = url or getattr(settings, "SIMILARITY_QDRANT_URL", "http://localhost:6333")
        self.api_key = api_key or getattr(settings, "SIMILARITY_QDRANT_API_KEY", "") or None
        self.collection = collection or getattr(settings, "SIMILARITY_QDRANT_COLLECTION", "incidents")
        self.vector_size = vector_size or int(getattr(settings, "SIMILARITY_VECTOR_SIZE", 768))
        self._client = client
        self._collection_ready = False

    @property
    def client(self):
        if self._client is None:
            from qdrant_client import QdrantClient

            self._client = QdrantClient(url=self.url, api_key=self.api_key)
        return self._client

    def _ensure_collection(self):
        if self._collection_ready:
            return
        from qdrant_client.models import Distance, VectorParams

        if not self.client.collection_exists(self.collection):
            self.client.create_collection(
                collection_name=self.collection,
                vectors_config=VectorParams(size=self.vector_size, distance=Distance.COSINE),
            )
            logger.info(f"Created Qdrant collection {self.collection}")
        self._collection_ready = True

    def upsert(self, incident_id: str, vector: list[float], metadata: dict[str, Any]) -> None:
        from qdrant_client.models import PointStruct

        self._ensure_collection()
        self.client.upsert(
            collection_name=self.collection,
            points=[PointStruct(id=str(incident_id), vector=list(vector), payload=metadata)],
        )

    def search(self, vector, k=None, filters=None, exclude_ids=()):
        from qdrant_client.models import FieldCondition, Filter, HasIdCondition, MatchValue

        if _is_zero(vector):
            return []
        self._ensure_collection()

        must = [
            FieldCondition(key=key, match=MatchValue(value=value))
            for key, value in (filters or {}).items()
        ]
        must_not = [HasIdCondition(has_id=[str(i) for i in exclude_ids])] if exclude_ids else []

        response = self.client.query_points(
            collection_name=self.collection,
            query=list(vector),
            limit=k or self.top_k,
            query_filter=Filter(must=must, must_not=must_not) if (must or must_not) else None,
            score_threshold=self.min_score,
            with_payload=True,
        )
        return [
            SimilarIncident(incident_id=str(point.id), score=round(point.score, 4), metadata=point.payload or {})
            for point in response.points
        ]


INDEXES: dict[str, type[SimilarityIndex]] = {
    "memory": InMemoryIndex,
    "qdrant": QdrantIndex,
}

_index: SimilarityIndex | None = None


def get_index() -> SimilarityIndex:
    """Return the process-wide index for SIMILARITY_BACKEND."""
    global _index
    if _index is None:
        name = getattr(settings, "SIMILARITY_BACKEND", "memory")
        if name not in INDEXES:
            raise KeyError(f"Unknown similarity backend: {name}. Available: {list(INDEXES.keys())}")
        _index = INDEXES[name]()
    return _index


def set_index(index: SimilarityIndex | None) -> None:
    """Replace the process-wide index (None resets it)."""
    global _index
    _index = index
