from __future__ import annotations

import asyncio
import logging
import math
from collections import Counter
from typing import Any, List, Mapping, Sequence

from shopchat.core.context import RequestContext
from shopchat.core.exceptions import DuplicateEntryError, EntryNotFoundError
from shopchat.models.catalog import CatalogEntry, CatalogEntryUpdate, CatalogPage, IngestResult, Paging
from shopchat.models.search import CollectionStatus, RetrievalHit, SearchFilter
from shopchat.repositories.catalog import SqlCatalogStore
from shopchat.services.retrieval import RetrievalService

logger = logging.getLogger("shopchat.catalog")

REINDEX_PAGE_SIZE = 100


class CatalogService:
    """Keeps the catalog store and the vector index in step."""

    def __init__(self, store: SqlCatalogStore, retrieval: RetrievalService) -> None:
        self._store = store
        self._retrieval = retrieval

    async def ingest(
        self, entries: Sequence[CatalogEntry], context: RequestContext | None = None
    ) -> IngestResult:
        context = context or RequestContext.new("ingest")
        ids = [entry.externalId for entry in entries]
        repeated = sorted(external_id for external_id, count in Counter(ids).items() if count > 1)
        if repeated:
            raise DuplicateEntryError("Duplicate externalId in batch.", details={"externalIds": repeated})

        existing = await asyncio.to_thread(self._store.find_by_ids, ids)
        if existing:
            raise DuplicateEntryError(
                "Catalog entry already exists.",
                details={"externalIds": [entry.externalId for entry in existing]},
            )

        await asyncio.to_thread(self._store.create_many, entries)
        try:
            indexed = await self._retrieval.index_entries(entries, context)
        except Exception:
            # Withdraw rows that never reached the index.
            logger.error("catalog.ingest.index_failed", extra=context.log_extra(entries=len(ids)))
            await asyncio.to_thread(self._store.soft_delete_many, ids)
            raise
        logger.info("catalog.ingest", extra=context.log_extra(entries=len(ids), indexed=indexed))
        return IngestResult(indexed=indexed)

    async def update(
        self,
        external_id: str,
        changes: CatalogEntryUpdate | Mapping[str, Any],
        context: RequestContext | None = None,
    ) -> CatalogEntry:
        context = context or RequestContext.new("update")
        values = changes.changes() if isinstance(changes, CatalogEntryUpdate) else dict(changes)
        entry = await asyncio.to_thread(self._store.update, external_id, values)
        await self._retrieval.index_entries([entry], context)
        logger.info("catalog.update", extra=context.log_extra(externalId=external_id, fields=sorted(values)))
        return entry

    async def delete(self, external_id: str, context: RequestContext | None = None) -> None:
        context = context or RequestContext.new("delete")
        await asyncio.to_thread(self._store.soft_delete, external_id)
        logger.info("catalog.delete", extra=context.log_extra(externalId=external_id))

    async def get(self, external_id: str) -> CatalogEntry:
        entry = await asyncio.to_thread(self._store.find_by_id, external_id)
        if entry is None:
            raise EntryNotFoundError("Catalog entry not found.", details={"externalId": external_id})
        return entry

    async def list(self, page: int = 1, page_size: int = 20) -> CatalogPage:
        page = max(1, page)
        page_size = max(1, page_size)
        total = await asyncio.to_thread(self._store.count_active)
        items = await asyncio.to_thread(self._store.list_active, page_size, (page - 1) * page_size)
        return CatalogPage(
            items=items,
            paging=Paging(
                page=page,
                pageSize=page_size,
                total=total,
                totalPages=math.ceil(total / page_size) if total else 0,
            ),
        )

    async def search(
        self,
        query: str,
        search_filter: SearchFilter | None = None,
        k: int | None = None,
        context: RequestContext | None = None,
    ) -> List[RetrievalHit]:
        """Retrieval hits limited to entries that are still active in the store.

        Soft-deleted entries keep their points in the index, so the index is
        asked for more hits, up to ``max_k``, until ``k`` active ones are found
        or the index runs dry.
        """

        context = context or RequestContext.new("search")
        limit = min(max(1, k or self._retrieval.default_k), self._retrieval.max_k)
        fetch = limit
        while True:
            hits = await self._retrieval.search(query, search_filter, fetch, context)
            if not hits:
                return []
            active = {
                entry.externalId: entry
                for entry in await asyncio.to_thread(
                    self._store.find_by_ids, [hit.entry.externalId for hit in hits]
                )
            }
            kept = [
                RetrievalHit(entry=active[hit.entry.externalId], score=hit.score)
                for hit in hits
                if hit.entry.externalId in active
            ]
            dropped = len(hits) - len(kept)
            if dropped:
                logger.info("catalog.search.dropped_inactive", extra=context.log_extra(dropped=dropped, fetched=fetch))
            if len(kept) >= limit or len(hits) < fetch or fetch >= self._retrieval.max_k:
                return kept[:limit]
            fetch = min(self._retrieval.max_k, fetch + dropped)

    async def reindex(self, context: RequestContext | None = None) -> IngestResult:
        context = context or RequestContext.new("reindex")
        indexed = 0
        offset = 0
        while True:
            batch = await asyncio.to_thread(self._store.list_active, REINDEX_PAGE_SIZE, offset)
            if not batch:
                break
            indexed += await self._retrieval.index_entries(batch, context)
            offset += len(batch)
        logger.info("catalog.reindex", extra=context.log_extra(indexed=indexed))
        return IngestResult(indexed=indexed)

    async def collection_status(self) -> CollectionStatus:
        return await self._retrieval.collection_status()

    async def reset_index(self, context: RequestContext | None = None) -> None:
        await self._retrieval.reset_index(context)
