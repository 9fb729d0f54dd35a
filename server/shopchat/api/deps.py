from __future__ import annotations

from dataclasses import dataclass
from functools import lru_cache

from fastapi import Request

from shopchat.agents.chat_graph import ChatService
from shopchat.core.config import AppSettings, get_settings
from shopchat.core.context import RequestContext, get_request_id
from shopchat.core.langfuse import get_langchain_callbacks
from shopchat.gateways.chat_model import build_chat_model
from shopchat.gateways.embeddings import build_embedding_gateway
from shopchat.gateways.vector_index import build_vector_index
from shopchat.repositories.catalog import SqlCatalogStore
from shopchat.services.catalog import CatalogService
from shopchat.services.composer import GroundedResponseComposer
from shopchat.services.retrieval import RetrievalService


@dataclass(frozen=True)
class ServiceContainer:
    catalog: CatalogService
    chat: ChatService


def build_container(settings: AppSettings, store: SqlCatalogStore | None = None) -> ServiceContainer:
    """Wire gateways and services for one process; providers are picked here only."""

    callbacks = get_langchain_callbacks(settings)
    retrieval = RetrievalService.from_settings(
        settings,
        build_embedding_gateway(settings),
        build_vector_index(settings),
    )
    catalog = CatalogService(store or SqlCatalogStore(), retrieval)
    composer = GroundedResponseComposer.from_settings(settings, build_chat_model(settings, callbacks))
    return ServiceContainer(catalog=catalog, chat=ChatService(catalog, composer, callbacks=callbacks))


@lru_cache
def get_container() -> ServiceContainer:
    return build_container(get_settings())


def get_catalog_service() -> CatalogService:
    return get_container().catalog


def get_chat_service() -> ChatService:
    return get_container().chat


def get_request_context(request: Request) -> RequestContext:
    correlation_id = get_request_id() or request.headers.get("x-request-id")
    if correlation_id:
        return RequestContext(correlation_id=correlation_id)
    return RequestContext.new()
