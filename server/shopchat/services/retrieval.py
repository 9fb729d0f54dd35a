from __future__ import annotations

import asyncio
import logging
import time
from typing import Iterable, List

from pydantic import ValidationError

from shopchat.core.config import AppSettings
from shopchat.core.context import RequestContext
from shopchat.core.exceptions import AppError, CatalogValidationError, RetrievalError
from shopchat.gateways.embeddings import EmbeddingGateway
from shopchat.gateways.vector_index import VectorIndexGateway
from shopchat.models.catalog import CatalogEntry
from shopchat.models.search import CollectionStatus, IndexedVector, IndexHit, RetrievalHit, SearchFilter
from shopchat.services.filters import compile_filter
from shopchat.services.identifiers import find_collisions, to_native_id

logger = logging.getLogger("shopchat.retrieval")


class RetrievalService:
    """Filter-aware semantic search over the catalog's vector index.

    Results are always resolved from the ``externalId`` stored in each point's
    payload, so a hit can never name a product that was not ingested.
    """

    def __init__(
        self,
        embeddings: EmbeddingGateway,
        index: VectorIndexGateway,
        *,
        default_k: int = 5,
        max_k: int = 20,
        ingest_concurrency: int = 4,
    ) -> None:
        self._embeddings = embeddings
        self._index = index
        self.default_k = default_k
        self.max_k = max_k
        self._ingest_concurrency = ingest_concurrency
        self._collection_ready = False
        self._collection_lock = asyncio.Lock()

    @classmethod
    def from_settings(
        cls, settings: AppSettings, embeddings: EmbeddingGateway, index: VectorIndexGateway
    ) -> "RetrievalService":
        return cls(
            embeddings,
            index,
            default_k=settings.retrieval_default_k,
            max_k=settings.retrieval_max_k,
            ingest_concurrency=settings.ingest_concurrency,
        )

    async def _ensure_collection(self) -> None:
        if self._collection_ready:
            return
        async with self._collection_lock:
            if not self._collection_ready:
                await self._index.ensure_collection(self._embeddings.dimension)
                self._collection_ready = True

    async def search(
        self,
        query: str,
        search_filter: SearchFilter | None = None,
        k: int | None = None,
        context: RequestContext | None = None,
    ) -> List[RetrievalHit]:
        context = context or RequestContext.new("search")
        text = (query or "").strip()
        if not text:
            raise CatalogValidationError("Search query must not be empty.")
        limit = min(max(1, k or self.default_k), self.max_k)
        predicate = compile_filter(search_filter)

        started = time.perf_counter()
        logger.info(
            "retrieval.search.start",
            extra=context.log_extra(k=limit, filtered=predicate is not None),
        )
        try:
            await self._ensure_collection()
            vector = await self._embeddings.embed(text)
            raw_hits = await self._index.search(vector, predicate, limit)
        except AppError as exc:
            logger.error(
                "retrieval.search.error",
                extra=context.log_extra(errorType=exc.error_type, error=exc.message),
            )
            raise RetrievalError(
                "Product retrieval failed.",
                details={**exc.details, "upstream": exc.error_type},
            ) from exc

        hits = self._to_hits(raw_hits, context)
        logger.info(
            "retrieval.search.done",
            extra=context.log_extra(
                hits=len(hits), durationMs=round((time.perf_counter() - started) * 1000, 2)
            ),
        )
        return hits

    def _to_hits(self, raw_hits: Iterable[IndexHit], context: RequestContext) -> List[RetrievalHit]:
        hits: list[RetrievalHit] = []
        seen: set[str] = set()
        for raw in raw_hits:
            try:
                entry = CatalogEntry.model_validate(raw.payload)
            except ValidationError:
                logger.warning(
                    "retrieval.payload_invalid",
                    extra=context.log_extra(nativeId=raw.nativeId),
                )
                continue
            expected = to_native_id(entry.externalId)
            if raw.nativeId != expected:
                logger.warning(
                    "retrieval.native_id_mismatch",
                    extra=context.log_extra(
                        nativeId=raw.nativeId, expected=expected, externalId=entry.externalId
                    ),
                )
            if entry.externalId in seen:
                continue
            seen.add(entry.externalId)
            hits.append(RetrievalHit(entry=entry, score=raw.score))
        # sorted() is stable, so equal scores keep the index's order.
        return sorted(hits, key=lambda hit: -hit.score)

    async def index_entries(
        self, entries: Iterable[CatalogEntry], context: RequestContext | None = None
    ) -> int:
        context = context or RequestContext.new("ingest")
        latest: dict[str, CatalogEntry] = {}
        for entry in entries:
            latest.pop(entry.externalId, None)
            latest[entry.externalId] = entry
        if not latest:
            return 0

        for native_id, owners in find_collisions(latest).items():
            logger.warning(
                "retrieval.native_id_collision",
                extra=context.log_extra(nativeId=native_id, externalIds=owners),
            )

        batch = list(latest.values())
        await self._ensure_collection()
        vectors = await self._embeddings.embed_many(
            [entry.searchable for entry in batch], concurrency=self._ingest_concurrency
        )
        points = [
            IndexedVector(nativeId=to_native_id(entry.externalId), embedding=vector, payload=entry.to_payload())
            for entry, vector in zip(batch, vectors)
        ]
        await self._index.upsert(points)
        logger.info("retrieval.index_entries", extra=context.log_extra(points=len(points)))
        return len(points)

    async def collection_status(self) -> CollectionStatus:
        return await self._index.get_info()

    async def reset_index(self, context: RequestContext | None = None) -> None:
        context = context or RequestContext.new("reset")
        async with self._collection_lock:
            await self._index.delete_collection()
            self._collection_ready = False
        logger.info("retrieval.reset_index", extra=context.log_extra())
