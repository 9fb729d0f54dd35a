from __future__ import annotations

from typing import List

from fastapi import APIRouter, Depends, Query, Response

from shopchat.api.deps import get_catalog_service, get_request_context
from shopchat.core.context import RequestContext
from shopchat.models.catalog import CatalogEntry, CatalogEntryUpdate, CatalogPage, IngestRequest, IngestResult
from shopchat.models.search import CollectionStatus, ResetResult, SearchFilter, SearchRequest, SearchResponse
from shopchat.services.catalog import CatalogService

router = APIRouter(prefix="/products", tags=["products"])


@router.get("/search", response_model=SearchResponse)
async def search_products(
    query: str = Query(..., min_length=1, description="Natural-language product query."),
    k: int | None = Query(None, ge=1, description="Number of hits to return."),
    priceMin: float | None = Query(None),
    priceMax: float | None = Query(None),
    size: str | None = Query(None),
    color: str | None = Query(None),
    category: str | None = Query(None),
    styleTags: List[str] | None = Query(None),
    materials: List[str] | None = Query(None),
    service: CatalogService = Depends(get_catalog_service),
    context: RequestContext = Depends(get_request_context),
) -> SearchResponse:
    search_filter = SearchFilter(
        priceMin=priceMin,
        priceMax=priceMax,
        size=size,
        color=color,
        category=category,
        styleTags=styleTags or [],
        materials=materials or [],
    )
    hits = await service.search(query, None if search_filter.is_empty() else search_filter, k, context)
    return SearchResponse(query=query, hits=hits)


@router.post("/search", response_model=SearchResponse)
async def search_products_post(
    request: SearchRequest,
    service: CatalogService = Depends(get_catalog_service),
    context: RequestContext = Depends(get_request_context),
) -> SearchResponse:
    hits = await service.search(request.query, request.filters, request.k, context)
    return SearchResponse(query=request.query, hits=hits)


@router.post("/ingest", response_model=IngestResult)
async def ingest_products(
    request: IngestRequest,
    service: CatalogService = Depends(get_catalog_service),
    context: RequestContext = Depends(get_request_context),
) -> IngestResult:
    return await service.ingest(request.items, context)


@router.post("/reindex", response_model=IngestResult)
async def reindex_products(
    service: CatalogService = Depends(get_catalog_service),
    context: RequestContext = Depends(get_request_context),
) -> IngestResult:
    return await service.reindex(context)


@router.get("/collection-info", response_model=CollectionStatus)
async def collection_info(service: CatalogService = Depends(get_catalog_service)) -> CollectionStatus:
    return await service.collection_status()


@router.delete("/collection", response_model=ResetResult)
async def reset_collection(
    service: CatalogService = Depends(get_catalog_service),
    context: RequestContext = Depends(get_request_context),
) -> ResetResult:
    await service.reset_index(context)
    return ResetResult()


@router.get("", response_model=CatalogPage)
async def list_products(
    page: int = Query(1, ge=1),
    pageSize: int = Query(20, ge=1, le=100),
    service: CatalogService = Depends(get_catalog_service),
) -> CatalogPage:
    return await service.list(page, pageSize)


@router.get("/{external_id}", response_model=CatalogEntry)
async def get_product(external_id: str, service: CatalogService = Depends(get_catalog_service)) -> CatalogEntry:
    return await service.get(external_id)


@router.patch("/{external_id}", response_model=CatalogEntry)
async def update_product(
    external_id: str,
    changes: CatalogEntryUpdate,
    service: CatalogService = Depends(get_catalog_service),
    context: RequestContext = Depends(get_request_context),
) -> CatalogEntry:
    return await service.update(external_id, changes, context)


@router.delete("/{external_id}", status_code=204)
async def delete_product(
    external_id: str,
    service: CatalogService = Depends(get_catalog_service),
    context: RequestContext = Depends(get_request_context),
) -> Response:
    await service.delete(external_id, context)
    return Response(status_code=204)
