from __future__ import annotations

import pytest

from shopchat.core.exceptions import CatalogValidationError, RetrievalError, VectorIndexUnavailableError
from shopchat.models.search import IndexedVector, SearchFilter
from shopchat.services.identifiers import to_native_id
from shopchat.services.retrieval import RetrievalService


def catalog_entries(entry_factory):
    return [
        entry_factory("d001"),
        entry_factory(
            "d002",
            title="Đầm maxi hoa nhí",
            description="Đầm maxi voan hoa nhí đi biển, dáng suông.",
            price=450000,
            sizes=["M"],
            colors=["vàng"],
            tags=["dress", "đi biển", "voan"],
        ),
        entry_factory(
            "a001",
            title="Áo sơ mi trắng công sở",
            description="Áo sơ mi cotton trắng, form chuẩn đi làm.",
            price=280000,
            sizes=["S", "XL"],
            colors=["trắng"],
            tags=["shirt", "công sở", "cotton"],
        ),
        entry_factory(
            "g001",
            title="Giày cao gót đen",
            description="Giày cao gót 7cm da thật.",
            price=520000,
            sizes=["37", "38"],
            colors=["đen"],
            tags=["shoes", "da"],
        ),
    ]


class BrokenIndex:
    async def ensure_collection(self, dimension: int) -> None:
        return None

    async def search(self, vector, predicate, limit):
        raise VectorIndexUnavailableError("down", details={"status": 503})


@pytest.mark.asyncio
async def test_round_trip_finds_entry_with_color_filter(retrieval, entry_factory) -> None:
    await retrieval.index_entries(catalog_entries(entry_factory))

    hits = await retrieval.search("đầm đen công sở", SearchFilter(color="đen"), 5)

    ids = [hit.entry.externalId for hit in hits]
    assert "d001" in ids
    assert all("đen" in hit.entry.colors for hit in hits)


@pytest.mark.asyncio
async def test_results_only_contain_ingested_entries_in_score_order(retrieval, entry_factory) -> None:
    entries = catalog_entries(entry_factory)
    await retrieval.index_entries(entries)

    hits = await retrieval.search("áo đầm giày", None, 10)

    assert {hit.entry.externalId for hit in hits} <= {entry.externalId for entry in entries}
    scores = [hit.score for hit in hits]
    assert scores == sorted(scores, reverse=True)


@pytest.mark.asyncio
async def test_size_filter_narrows_results(retrieval, entry_factory) -> None:
    await retrieval.index_entries(catalog_entries(entry_factory))

    hits = await retrieval.search("đầm", SearchFilter(size="M"), 10)

    assert hits
    assert all("M" in hit.entry.sizes for hit in hits)
    assert "a001" not in {hit.entry.externalId for hit in hits}


@pytest.mark.asyncio
async def test_conflicting_price_filter_degrades_to_empty(retrieval, entry_factory) -> None:
    await retrieval.index_entries(catalog_entries(entry_factory))

    hits = await retrieval.search("đầm", SearchFilter(priceMin=500000, priceMax=300000), 5)

    assert hits == []


@pytest.mark.asyncio
async def test_repeated_searches_return_same_ids(retrieval, entry_factory) -> None:
    await retrieval.index_entries(catalog_entries(entry_factory))

    results = [
        [hit.entry.externalId for hit in await retrieval.search("đầm đen", None, 3)] for _ in range(5)
    ]

    assert all(result == results[0] for result in results)


@pytest.mark.asyncio
async def test_reingestion_is_idempotent(retrieval, index, entry_factory) -> None:
    entries = catalog_entries(entry_factory)
    await retrieval.index_entries(entries)
    first = await retrieval.search("đầm đen", None, 5)

    await retrieval.index_entries(entries)

    assert (await index.get_info()).count == len(entries)
    second = await retrieval.search("đầm đen", None, 5)
    assert [hit.entry.externalId for hit in second] == [hit.entry.externalId for hit in first]


@pytest.mark.asyncio
async def test_last_write_wins_within_batch(retrieval, index, entry_factory) -> None:
    indexed = await retrieval.index_entries(
        [entry_factory("d001", price=100000), entry_factory("d001", price=200000)]
    )

    hits = await retrieval.search("đầm đen", None, 5)

    assert indexed == 1
    assert [hit.entry.price for hit in hits] == [200000]


@pytest.mark.asyncio
async def test_colliding_ids_overwrite_each_other(retrieval, index, entry_factory) -> None:
    await retrieval.index_entries([entry_factory("Aa"), entry_factory("BB")])

    assert (await index.get_info()).count == 1


@pytest.mark.asyncio
async def test_hits_resolve_from_payload_and_skip_malformed(retrieval, index, embeddings, entry_factory) -> None:
    await retrieval.index_entries([entry_factory("d001")])
    vector = await embeddings.embed("đầm đen")
    stray = entry_factory("stray").to_payload()
    await index.upsert(
        [
            IndexedVector(nativeId=999, embedding=vector, payload=stray),
            IndexedVector(nativeId=1000, embedding=vector, payload={"title": "no id"}),
        ]
    )

    hits = await retrieval.search("đầm đen", None, 5)

    ids = [hit.entry.externalId for hit in hits]
    assert sorted(ids) == ["d001", "stray"]
    assert to_native_id("stray") != 999


@pytest.mark.asyncio
async def test_empty_query_is_rejected(retrieval) -> None:
    with pytest.raises(CatalogValidationError):
        await retrieval.search("   ")


@pytest.mark.asyncio
async def test_search_on_fresh_index_returns_nothing(retrieval) -> None:
    assert await retrieval.search("đầm") == []


@pytest.mark.asyncio
async def test_gateway_failures_become_retrieval_errors(embeddings) -> None:
    service = RetrievalService(embeddings, BrokenIndex())

    with pytest.raises(RetrievalError) as excinfo:
        await service.search("đầm")

    assert excinfo.value.details["upstream"] == "VECTOR_INDEX_UNAVAILABLE"
    assert excinfo.value.details["status"] == 503


@pytest.mark.asyncio
async def test_k_is_clamped_to_max(retrieval, entry_factory) -> None:
    entries = [entry_factory(f"e{number:03d}") for number in range(30)]
    await retrieval.index_entries(entries)

    hits = await retrieval.search("đầm", None, 100)

    assert len(hits) == retrieval.max_k


@pytest.mark.asyncio
async def test_reset_index_clears_collection(retrieval, index, entry_factory) -> None:
    await retrieval.index_entries([entry_factory()])

    await retrieval.reset_index()

    status = await retrieval.collection_status()
    assert status.count == 0
    assert status.status == "init"
    assert await retrieval.search("đầm") == []
