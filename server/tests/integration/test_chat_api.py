from __future__ import annotations

import asyncio
import base64

import pytest
from fastapi.testclient import TestClient

from shopchat.agents.chat_graph import ChatService
from shopchat.agents.greetings import GREETING_REPLIES
from shopchat.agents.prompts import APOLOGY_REPLY
from shopchat.api.deps import get_chat_service
from shopchat.core.exceptions import EmbeddingUnavailableError, RetrievalError, UpstreamRequestError
from shopchat.main import create_app


@pytest.fixture()
def chat_service(catalog, composer) -> ChatService:
    return ChatService(catalog, composer)


def create_client(service) -> TestClient:
    app = create_app()
    app.dependency_overrides[get_chat_service] = lambda: service
    return TestClient(app)


def test_chat_returns_grounded_reply_and_products(chat_service, catalog, chat_model, entry_factory) -> None:
    asyncio.run(catalog.ingest([entry_factory("d001")]))
    chat_model.queue("Dạ chị tham khảo Đầm đen ôm công sở ạ.")
    client = create_client(chat_service)

    response = client.post("/chat", json={"message": "đầm đen công sở", "filters": {"color": "đen"}})

    assert response.status_code == 200
    payload = response.json()
    assert payload["reply"] == "Dạ chị tham khảo Đầm đen ôm công sở ạ."
    assert [product["externalId"] for product in payload["products"]] == ["d001"]
    assert payload["error"] is None


def test_chat_greeting_shortcut(chat_service) -> None:
    client = create_client(chat_service)

    response = client.post("/chat", json={"message": "hello"})

    assert response.status_code == 200
    assert response.json()["reply"] in GREETING_REPLIES
    assert response.json()["products"] == []


def test_chat_accepts_data_uri_image(chat_service, chat_model) -> None:
    chat_model.queue("Áo thun trắng basic", "áo thun trắng", "Dạ hiện chưa có mẫu này ạ.")
    image = "data:image/png;base64," + base64.b64encode(b"png-bytes").decode("ascii")
    client = create_client(chat_service)

    response = client.post("/chat", json={"imageBase64": image})

    assert response.status_code == 200
    payload = response.json()
    assert payload["imageDescription"] == "Áo thun trắng basic"
    assert payload["reply"].endswith("*Mô tả ảnh: Áo thun trắng basic*")
    assert chat_model.images == [(b"png-bytes", "image/png")]


def test_chat_rejects_invalid_base64(chat_service) -> None:
    client = create_client(chat_service)

    response = client.post("/chat", json={"message": "tìm mẫu này", "imageBase64": "not base64!!"})

    assert response.status_code == 422
    assert response.json()["error"]["type"] == "VALIDATION_ERROR"


def test_chat_requires_message_or_image(chat_service) -> None:
    client = create_client(chat_service)

    assert client.post("/chat", json={"message": "   "}).status_code == 422


@pytest.mark.parametrize(
    "error",
    [
        RetrievalError("Product retrieval failed.", details={"upstream": "VECTOR_INDEX_UNAVAILABLE"}),
        EmbeddingUnavailableError("Embedding service is unavailable."),
    ],
)
def test_chat_degrades_to_apology_on_upstream_failure(error) -> None:
    class FailingChat:
        async def answer(self, *args, **kwargs):
            raise error

    client = create_client(FailingChat())

    response = client.post("/chat", json={"message": "đầm đen"})

    assert response.status_code == 200
    payload = response.json()
    assert payload["reply"] == APOLOGY_REPLY
    assert payload["products"] == []
    assert payload["error"]["type"] == error.error_type
    assert "unavailable" not in payload["reply"].lower()


def test_chat_degrades_when_chat_model_rejects_request(chat_service, chat_model) -> None:
    chat_model.queue(UpstreamRequestError("Chat model rejected the request.", details={"status": 429}))
    client = create_client(chat_service)

    response = client.post("/chat", json={"message": "đầm đen công sở"})

    assert response.status_code == 200
    payload = response.json()
    assert payload["reply"] == APOLOGY_REPLY
    assert payload["products"] == []
    assert payload["error"] == {"type": "UPSTREAM_REQUEST_ERROR", "message": APOLOGY_REPLY}
