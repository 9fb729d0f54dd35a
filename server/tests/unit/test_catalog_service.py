from __future__ import annotations

import pytest

from shopchat.core.exceptions import DuplicateEntryError, EmbeddingUnavailableError, EntryNotFoundError
from shopchat.models.catalog import CatalogEntryUpdate
from shopchat.models.search import SearchFilter


@pytest.mark.asyncio
async def test_ingest_persists_and_indexes(catalog, store, index, entry_factory) -> None:
    result = await catalog.ingest([entry_factory("d001"), entry_factory("d002")])

    assert result.indexed == 2
    assert store.count_active() == 2
    assert (await catalog.collection_status()).count == 2


@pytest.mark.asyncio
async def test_ingest_rejects_duplicates_in_batch(catalog, store, entry_factory) -> None:
    with pytest.raises(DuplicateEntryError) as excinfo:
        await catalog.ingest([entry_factory("d001"), entry_factory("d001")])

    assert excinfo.value.details == {"externalIds": ["d001"]}
    assert store.count_active() == 0


@pytest.mark.asyncio
async def test_ingest_rejects_existing_entries(catalog, entry_factory) -> None:
    await catalog.ingest([entry_factory("d001")])

    with pytest.raises(DuplicateEntryError):
        await catalog.ingest([entry_factory("d001"), entry_factory("d002")])


@pytest.mark.asyncio
async def test_update_reindexes_entry(catalog, entry_factory) -> None:
    await catalog.ingest([entry_factory("d001")])

    await catalog.update("d001", CatalogEntryUpdate(colors=["đỏ"]))

    assert await catalog.search("đầm", SearchFilter(color="đen"), 5) == []
    hits = await catalog.search("đầm", SearchFilter(color="đỏ"), 5)
    assert [hit.entry.externalId for hit in hits] == ["d001"]


@pytest.mark.asyncio
async def test_update_missing_entry_raises(catalog) -> None:
    with pytest.raises(EntryNotFoundError):
        await catalog.update("missing", {"price": 1})


@pytest.mark.asyncio
async def test_deleted_entries_never_surface_in_search(catalog, entry_factory) -> None:
    await catalog.ingest([entry_factory("d001"), entry_factory("d002")])

    await catalog.delete("d001")

    hits = await catalog.search("đầm đen", None, 5)
    assert [hit.entry.externalId for hit in hits] == ["d002"]
    with pytest.raises(EntryNotFoundError):
        await catalog.get("d001")


@pytest.mark.asyncio
async def test_list_returns_paging(catalog, entry_factory) -> None:
    await catalog.ingest([entry_factory(f"e{number}") for number in range(5)])

    page = await catalog.list(page=2, page_size=2)

    assert [entry.externalId for entry in page.items] == ["e2", "e3"]
    assert page.paging.total == 5
    assert page.paging.totalPages == 3


@pytest.mark.asyncio
async def test_reindex_restores_index_after_reset(catalog, entry_factory) -> None:
    await catalog.ingest([entry_factory("d001"), entry_factory("d002")])
    await catalog.reset_index()
    assert await catalog.search("đầm", None, 5) == []

    result = await catalog.reindex()

    assert result.indexed == 2
    hits = await catalog.search("đầm", None, 5)
    assert {hit.entry.externalId for hit in hits} == {"d001", "d002"}


@pytest.mark.asyncio
async def test_failed_indexing_leaves_batch_retryable(catalog, store, embeddings, entry_factory, monkeypatch) -> None:
    original = embeddings.embed_many
    calls = {"count": 0}

    async def flaky_embed_many(texts, *, concurrency=4):
        calls["count"] += 1
        if calls["count"] == 1:
            raise EmbeddingUnavailableError("Embedding service is unavailable.")
        return await original(texts, concurrency=concurrency)

    monkeypatch.setattr(embeddings, "embed_many", flaky_embed_many)

    with pytest.raises(EmbeddingUnavailableError):
        await catalog.ingest([entry_factory("d001")])
    assert store.find_by_id("d001") is None

    result = await catalog.ingest([entry_factory("d001")])

    assert result.indexed == 1
    hits = await catalog.search("đầm đen", None, 5)
    assert [hit.entry.externalId for hit in hits] == ["d001"]


@pytest.mark.asyncio
async def test_search_fills_k_past_deleted_entries(catalog, entry_factory) -> None:
    await catalog.ingest([entry_factory(f"e{number}") for number in range(8)])
    ranked = [hit.entry.externalId for hit in await catalog.search("đầm đen", None, 8)]
    for external_id in ranked[:3]:
        await catalog.delete(external_id)

    hits = await catalog.search("đầm đen", None, 5)

    found = [hit.entry.externalId for hit in hits]
    assert len(found) == 5
    assert set(found) == set(ranked[3:])
