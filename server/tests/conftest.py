from __future__ import annotations

import random
from pathlib import Path
from typing import Any

import pytest
from sqlalchemy.orm import sessionmaker

from shopchat.core.config import AppSettings
from shopchat.db.session import build_engine
from shopchat.gateways.chat_model import FakeChatModel
from shopchat.gateways.embeddings import HashingEmbeddings, LangChainEmbeddingGateway
from shopchat.gateways.vector_index import InMemoryVectorIndex
from shopchat.models.catalog import CatalogEntry
from shopchat.repositories.catalog import SqlCatalogStore
from shopchat.services.catalog import CatalogService
from shopchat.services.composer import GroundedResponseComposer
from shopchat.services.retrieval import RetrievalService

DIMENSION = 256


def make_entry(external_id: str = "d001", **overrides: Any) -> CatalogEntry:
    values: dict[str, Any] = {
        "externalId": external_id,
        "title": "Đầm đen ôm công sở",
        "description": "Đầm ôm dáng bút chì, chất liệu tuyết mưa, phù hợp đi làm.",
        "price": 590000,
        "sizes": ["S", "M", "L"],
        "colors": ["đen"],
        "stock": 5,
        "url": f"https://shop.example.com/products/{external_id}",
        "tags": ["dress", "công sở"],
    }
    values.update(overrides)
    return CatalogEntry.model_validate(values)


@pytest.fixture()
def settings(tmp_path: Path) -> AppSettings:
    return AppSettings(
        _env_file=None,
        embeddings_provider="fake",
        embedding_dimension=DIMENSION,
        vector_index_backend="memory",
        chat_model_provider="fake",
        catalog_db_url=f"sqlite:///{tmp_path / 'catalog.db'}",
        upstream_backoff_sec=0,
    )


@pytest.fixture()
def store(settings: AppSettings) -> SqlCatalogStore:
    engine = build_engine(settings.catalog_db_url)
    return SqlCatalogStore(sessionmaker(bind=engine, autoflush=False, autocommit=False))


@pytest.fixture()
def embeddings() -> LangChainEmbeddingGateway:
    return LangChainEmbeddingGateway(HashingEmbeddings(DIMENSION), dimension=DIMENSION, provider="fake")


@pytest.fixture()
def index() -> InMemoryVectorIndex:
    return InMemoryVectorIndex()


@pytest.fixture()
def retrieval(embeddings: LangChainEmbeddingGateway, index: InMemoryVectorIndex) -> RetrievalService:
    return RetrievalService(embeddings, index, default_k=5, max_k=20, ingest_concurrency=2)


@pytest.fixture()
def catalog(store: SqlCatalogStore, retrieval: RetrievalService) -> CatalogService:
    return CatalogService(store, retrieval)


@pytest.fixture()
def chat_model() -> FakeChatModel:
    return FakeChatModel()


@pytest.fixture()
def composer(chat_model: FakeChatModel) -> GroundedResponseComposer:
    return GroundedResponseComposer(chat_model, rng=random.Random(0))


@pytest.fixture()
def entry_factory():
    return make_entry
