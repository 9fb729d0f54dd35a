from __future__ import annotations

import asyncio
import logging
import threading
from typing import Any, Iterable, List, Mapping, Protocol, Sequence

import httpx
import numpy as np

from shopchat.core.config import AppSettings
from shopchat.core.exceptions import AppError, UpstreamRequestError, VectorIndexUnavailableError
from shopchat.core.retry import RetryPolicy, call_with_retry
from shopchat.models.search import CollectionStatus, FieldCondition, FilterPredicate, IndexedVector, IndexHit

logger = logging.getLogger("shopchat.vector_index")

DEGRADED_STATUS = CollectionStatus(count=0, status="init")


class VectorIndexGateway(Protocol):
    async def ensure_collection(self, dimension: int) -> None:  # pragma: no cover - protocol definition
        ...

    async def upsert(self, points: Sequence[IndexedVector]) -> None:  # pragma: no cover - protocol definition
        ...

    async def search(
        self, vector: Sequence[float], predicate: FilterPredicate | None, limit: int
    ) -> List[IndexHit]:  # pragma: no cover - protocol definition
        ...

    async def delete_collection(self) -> None:  # pragma: no cover - protocol definition
        ...

    async def get_info(self) -> CollectionStatus:  # pragma: no cover - protocol definition
        ...


class QdrantVectorIndex:
    """Single-collection client for the Qdrant REST API."""

    def __init__(
        self,
        base_url: str,
        collection: str,
        *,
        api_key: str | None = None,
        timeout: float = 10.0,
        policy: RetryPolicy | None = None,
    ) -> None:
        self.base_url = base_url.rstrip("/")
        self.collection = collection
        self.timeout = timeout
        self._api_key = api_key
        self._policy = policy or RetryPolicy()

    @classmethod
    def from_settings(cls, settings: AppSettings) -> "QdrantVectorIndex":
        if not settings.qdrant_url:
            raise AppError("QDRANT_URL is not configured.")
        return cls(
            base_url=settings.qdrant_url,
            collection=settings.qdrant_collection,
            api_key=settings.qdrant_api_key,
            timeout=settings.vector_index_timeout_sec,
            policy=RetryPolicy(
                max_retries=settings.upstream_max_retries,
                backoff_sec=settings.upstream_backoff_sec,
            ),
        )

    @property
    def _collection_path(self) -> str:
        return f"/collections/{self.collection}"

    async def ensure_collection(self, dimension: int) -> None:
        response = await self._request(
            "PUT",
            self._collection_path,
            json={
                "vectors": {"size": dimension, "distance": "Cosine"},
                "optimizers_config": {"default_segment_number": 1},
            },
            allow_status=(409,),
        )
        created = response.status_code != 409
        logger.debug(
            "vector_index.ensure_collection",
            extra={"collection": self.collection, "dimension": dimension, "createdNew": created},
        )

    async def upsert(self, points: Sequence[IndexedVector]) -> None:
        if not points:
            return
        body = {
            "points": [
                {"id": point.nativeId, "vector": point.embedding, "payload": point.payload}
                for point in points
            ]
        }
        await self._request("PUT", f"{self._collection_path}/points", json=body, params={"wait": "true"})
        logger.debug("vector_index.upsert", extra={"collection": self.collection, "points": len(points)})

    async def search(
        self, vector: Sequence[float], predicate: FilterPredicate | None, limit: int
    ) -> List[IndexHit]:
        if limit <= 0:
            return []
        body: dict[str, Any] = {"vector": list(vector), "limit": limit, "with_payload": True}
        if predicate is not None:
            native = predicate.to_native()
            if native:
                body["filter"] = native
        response = await self._request("POST", f"{self._collection_path}/points/search", json=body)
        rows = _json_body(response).get("result") or []
        return [
            IndexHit(
                nativeId=row.get("id"),
                score=float(row.get("score", 0.0)),
                payload=row.get("payload") or {},
            )
            for row in rows
        ]

    async def delete_collection(self) -> None:
        await self._request("DELETE", self._collection_path, allow_status=(404,))
        logger.info("vector_index.delete_collection", extra={"collection": self.collection})

    async def get_info(self) -> CollectionStatus:
        try:
            response = await self._request("GET", self._collection_path)
            result = _json_body(response).get("result") or {}
            count = result.get("points_count")
            if count is None:
                count = result.get("vectors_count")
            return CollectionStatus(count=int(count or 0), status=str(result.get("status") or "unknown"))
        except Exception as exc:
            logger.warning(
                "vector_index.info_degraded",
                extra={"collection": self.collection, "error": repr(exc)},
            )
            return DEGRADED_STATUS.model_copy()

    async def _request(
        self,
        method: str,
        path: str,
        *,
        json: Mapping[str, Any] | None = None,
        params: Mapping[str, str] | None = None,
        allow_status: Iterable[int] = (),
    ) -> httpx.Response:
        allowed = set(allow_status)
        headers = {"api-key": self._api_key} if self._api_key else None

        async def _send() -> httpx.Response:
            async with httpx.AsyncClient(base_url=self.base_url, timeout=self.timeout, headers=headers) as client:
                response = await client.request(method, path, json=json, params=params)
            if response.status_code in allowed:
                return response
            response.raise_for_status()
            return response

        try:
            return await call_with_retry(_send, policy=self._policy, label="qdrant")
        except httpx.HTTPStatusError as exc:
            status = exc.response.status_code
            details = {"status": status, "path": path, "reason": _error_reason(exc.response)}
            if status >= 500:
                raise VectorIndexUnavailableError("Vector index is unavailable.", details=details) from exc
            raise UpstreamRequestError("Vector index rejected the request.", details=details) from exc
        except (httpx.TransportError, asyncio.TimeoutError) as exc:
            raise VectorIndexUnavailableError(
                "Vector index is unavailable.", details={"path": path, "reason": repr(exc)}
            ) from exc


def _json_body(response: httpx.Response) -> dict[str, Any]:
    try:
        payload = response.json()
    except ValueError as exc:
        raise UpstreamRequestError("Vector index response was not valid JSON.") from exc
    return payload if isinstance(payload, dict) else {}


def _error_reason(response: httpx.Response) -> str | None:
    try:
        payload = response.json()
    except ValueError:
        return response.text[:200] or None
    if isinstance(payload, dict):
        status = payload.get("status")
        if isinstance(status, dict):
            return status.get("error")
    return None


class InMemoryVectorIndex:
    """Process-local index with the same contract as :class:`QdrantVectorIndex`.

    Used for tests and offline runs. Points keep their first insertion
    position when overwritten, which makes equal scores tie-break stably.
    """

    def __init__(self) -> None:
        self._lock = threading.RLock()
        self._points: dict[int | str, IndexedVector] = {}
        self._dimension: int | None = None

    async def ensure_collection(self, dimension: int) -> None:
        if dimension <= 0:
            raise UpstreamRequestError("Vector dimension must be positive.", details={"dimension": dimension})
        with self._lock:
            if self._dimension is None:
                self._dimension = dimension

    async def upsert(self, points: Sequence[IndexedVector]) -> None:
        with self._lock:
            dimension = self._require_collection()
            for point in points:
                if len(point.embedding) != dimension:
                    raise UpstreamRequestError(
                        "Vector dimension mismatch.",
                        details={"expected": dimension, "received": len(point.embedding)},
                    )
            for point in points:
                self._points[point.nativeId] = point.model_copy(deep=True)

    async def search(
        self, vector: Sequence[float], predicate: FilterPredicate | None, limit: int
    ) -> List[IndexHit]:
        with self._lock:
            self._require_collection()
            candidates = [point for point in self._points.values() if _matches(point.payload, predicate)]
        if limit <= 0 or not candidates:
            return []

        query = np.asarray(vector, dtype=np.float64)
        matrix = np.asarray([point.embedding for point in candidates], dtype=np.float64)
        norms = np.linalg.norm(matrix, axis=1) * (np.linalg.norm(query) or 1.0)
        norms[norms == 0] = 1.0
        scores = (matrix @ query) / norms

        order = sorted(range(len(candidates)), key=lambda index: -scores[index])
        return [
            IndexHit(
                nativeId=candidates[index].nativeId,
                score=float(scores[index]),
                payload=dict(candidates[index].payload),
            )
            for index in order[:limit]
        ]

    async def delete_collection(self) -> None:
        with self._lock:
            self._points.clear()
            self._dimension = None

    async def get_info(self) -> CollectionStatus:
        with self._lock:
            if self._dimension is None:
                return DEGRADED_STATUS.model_copy()
            return CollectionStatus(count=len(self._points), status="green")

    def _require_collection(self) -> int:
        if self._dimension is None:
            raise UpstreamRequestError("Collection does not exist.", details={"status": 404})
        return self._dimension


def _matches(payload: Mapping[str, Any], predicate: FilterPredicate | None) -> bool:
    if predicate is None:
        return True
    if not all(_condition_holds(payload, condition) for condition in predicate.must):
        return False
    if predicate.should and not any(_condition_holds(payload, condition) for condition in predicate.should):
        return False
    return True


def _condition_holds(payload: Mapping[str, Any], condition: FieldCondition) -> bool:
    value = payload.get(condition.key)
    if condition.range is not None:
        if isinstance(value, bool) or not isinstance(value, (int, float)):
            return False
        if condition.range.gte is not None and value < condition.range.gte:
            return False
        if condition.range.lte is not None and value > condition.range.lte:
            return False
    if condition.match is not None:
        values = value if isinstance(value, list) else [value]
        if not any(candidate in values for candidate in condition.match.any):
            return False
    return True


def build_vector_index(settings: AppSettings) -> VectorIndexGateway:
    backend = (settings.vector_index_backend or "qdrant").lower()
    if backend == "qdrant":
        return QdrantVectorIndex.from_settings(settings)
    if backend == "memory":
        return InMemoryVectorIndex()
    raise AppError(f"Unsupported vector index backend: {settings.vector_index_backend}")
