from __future__ import annotations

import pytest
from fastapi.testclient import TestClient

from shopchat.api.deps import get_catalog_service
from shopchat.core.exceptions import RetrievalError
from shopchat.main import create_app

D001 = {
    "externalId": "d001",
    "title": "Đầm đen ôm công sở",
    "description": "Đầm ôm dáng bút chì, chất liệu tuyết mưa.",
    "price": 590000,
    "sizes": ["S", "M", "L"],
    "colors": ["đen"],
    "tags": ["dress", "công sở"],
}
A001 = {
    "externalId": "a001",
    "title": "Áo sơ mi trắng công sở",
    "description": "Áo sơ mi cotton trắng.",
    "price": 280000,
    "sizes": ["XL"],
    "colors": ["trắng"],
}


@pytest.fixture()
def client(catalog) -> TestClient:
    app = create_app()
    app.dependency_overrides[get_catalog_service] = lambda: catalog
    return TestClient(app)


def ingest(client: TestClient, *items: dict) -> None:
    response = client.post("/products/ingest", json={"items": list(items)})
    assert response.status_code == 200, response.text


def test_ingest_and_search_round_trip(client: TestClient) -> None:
    ingest(client, D001, A001)

    response = client.post(
        "/products/search",
        json={"query": "đầm đen công sở", "filters": {"color": "đen"}, "k": 5},
    )

    assert response.status_code == 200
    payload = response.json()
    assert [hit["entry"]["externalId"] for hit in payload["hits"]] == ["d001"]
    assert payload["hits"][0]["score"] > 0


def test_get_search_accepts_filter_query_params(client: TestClient) -> None:
    ingest(client, D001, A001)

    response = client.get("/products/search", params={"query": "áo", "size": "XL"})

    assert response.status_code == 200
    assert [hit["entry"]["externalId"] for hit in response.json()["hits"]] == ["a001"]


def test_conflicting_price_filter_returns_empty_hits(client: TestClient) -> None:
    ingest(client, D001)

    response = client.post(
        "/products/search",
        json={"query": "đầm", "filters": {"price_min": 500000, "price_max": 300000}},
    )

    assert response.status_code == 200
    assert response.json()["hits"] == []


def test_ingest_rejects_missing_fields(client: TestClient) -> None:
    response = client.post("/products/ingest", json={"items": [{"externalId": "x", "title": "T"}]})

    assert response.status_code == 422


def test_duplicate_ingest_returns_conflict(client: TestClient) -> None:
    ingest(client, D001)

    response = client.post("/products/ingest", json={"items": [D001]})

    assert response.status_code == 409
    body = response.json()
    assert body["error"]["type"] == "DUPLICATE_ENTRY"
    assert body["error"]["traceId"]


def test_crud_lifecycle(client: TestClient) -> None:
    ingest(client, D001, A001)

    assert client.get("/products/d001").json()["title"] == "Đầm đen ôm công sở"

    patched = client.patch("/products/d001", json={"price": 490000})
    assert patched.status_code == 200
    assert patched.json()["price"] == 490000

    listing = client.get("/products", params={"page": 1, "pageSize": 1}).json()
    assert listing["paging"] == {"page": 1, "pageSize": 1, "total": 2, "totalPages": 2}

    assert client.delete("/products/d001").status_code == 204
    missing = client.get("/products/d001")
    assert missing.status_code == 404
    assert missing.json()["error"]["type"] == "NOT_FOUND"


def test_patch_rejects_unknown_fields(client: TestClient) -> None:
    ingest(client, D001)

    response = client.patch("/products/d001", json={"externalId": "other"})

    assert response.status_code == 422


def test_collection_info_reset_and_reindex(client: TestClient) -> None:
    ingest(client, D001, A001)
    assert client.get("/products/collection-info").json() == {"count": 2, "status": "green"}

    reset = client.delete("/products/collection")
    assert reset.json() == {"status": "deleted"}
    assert client.get("/products/collection-info").json() == {"count": 0, "status": "init"}

    reindexed = client.post("/products/reindex")
    assert reindexed.json() == {"indexed": 2}
    assert client.get("/products/collection-info").json()["count"] == 2


def test_retrieval_failure_is_reported_as_unavailable() -> None:
    class FailingCatalog:
        async def search(self, *args, **kwargs):
            raise RetrievalError("Product retrieval failed.", details={"upstream": "EMBEDDING_UNAVAILABLE"})

    app = create_app()
    app.dependency_overrides[get_catalog_service] = lambda: FailingCatalog()
    client = TestClient(app)

    response = client.get("/products/search", params={"query": "đầm"})

    assert response.status_code == 503
    assert response.json()["error"]["details"] == {"upstream": "EMBEDDING_UNAVAILABLE"}
