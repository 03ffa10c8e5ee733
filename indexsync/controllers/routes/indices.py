"""Index definition CRUD, rebuild submission, stats, and substring search under /indices."""

from fastapi import APIRouter, Depends, HTTPException, Query, Response

from indexsync.container import Services
from indexsync.controllers.deps import get_services, http_error
from indexsync.controllers.schema.indices import (
    CreateIndexRequest,
    IndexListResponse,
    IndexResponse,
    IndicesForSourceResponse,
    RebuildRequest,
    RebuildResponse,
    UpdateIndexRequest,
)
from indexsync.controllers.schema.search import SearchRequest, SearchResponse
from indexsync.domain.errors import IndexSyncError
from indexsync.domain.models import CollectionStats, IndexStats, SourceBinding

router = APIRouter(prefix="/indices", tags=["indices"])


@router.get("", response_model=IndexListResponse)
async def list_indices(services: Services = Depends(get_services)) -> IndexListResponse:
    return IndexListResponse(indices=[IndexResponse.from_definition(d) for d in services.registry.list()])


@router.post("", response_model=IndexResponse, status_code=201)
async def create_index(body: CreateIndexRequest, services: Services = Depends(get_services)) -> IndexResponse:
    """Register a new index definition. 409 when the name is taken, 400 for malformed sources."""
    try:
        definition = await services.registry.create(
            body.name,
            body.target_index_name,
            [s.to_binding() for s in body.sources],
        )
    except IndexSyncError as e:
        raise http_error(e) from e
    except ValueError as e:
        raise HTTPException(status_code=400, detail=str(e)) from e
    return IndexResponse.from_definition(definition)


# Declared before /{name} so "by-source" is not taken for an index name
@router.get("/by-source", response_model=IndicesForSourceResponse)
async def indices_for_source(
    database: str = Query(..., min_length=1),
    collection: str = Query(..., min_length=1),
    services: Services = Depends(get_services),
) -> IndicesForSourceResponse:
    names = services.registry.find_indices_for_source(database, collection)
    return IndicesForSourceResponse(database=database, collection=collection, indices=sorted(names))


@router.get("/{name}", response_model=IndexResponse)
async def get_index(name: str, services: Services = Depends(get_services)) -> IndexResponse:
    try:
        return IndexResponse.from_definition(services.registry.get(name))
    except IndexSyncError as e:
        raise http_error(e) from e


@router.put("/{name}", response_model=IndexResponse)
async def update_index(
    name: str, body: UpdateIndexRequest, services: Services = Depends(get_services)
) -> IndexResponse:
    try:
        sources = None if body.sources is None else [s.to_binding() for s in body.sources]
        definition = await services.registry.update(name, target_index_name=body.target_index_name, sources=sources)
    except IndexSyncError as e:
        raise http_error(e) from e
    except ValueError as e:
        raise HTTPException(status_code=400, detail=str(e)) from e
    return IndexResponse.from_definition(definition)


@router.delete("/{name}", status_code=204)
async def delete_index(name: str, services: Services = Depends(get_services)) -> Response:
    """Remove the definition only; the target index and its documents are left in place."""
    try:
        await services.registry.delete(name)
    except IndexSyncError as e:
        raise http_error(e) from e
    return Response(status_code=204)


@router.post("/{name}/rebuild", response_model=RebuildResponse, status_code=202)
async def rebuild_index(
    name: str,
    body: RebuildRequest | None = None,
    services: Services = Depends(get_services),
) -> RebuildResponse:
    """
    Start an asynchronous rebuild and return its task id; poll GET /tasks/{task_id} for progress.
    409 when a rebuild of this index is already running.
    """
    body = body or RebuildRequest()
    try:
        scope = None
        if body.database is not None and body.collection is not None:
            scope = SourceBinding.of(body.database, body.collection)
        task_id = services.orchestrator.rebuild(name, scope=scope, max_docs=body.max_docs)
    except IndexSyncError as e:
        raise http_error(e) from e
    except ValueError as e:
        raise HTTPException(status_code=400, detail=str(e)) from e
    return RebuildResponse(task_id=task_id, index_name=name)


@router.get("/{name}/stats", response_model=IndexStats)
async def index_stats(name: str, services: Services = Depends(get_services)) -> IndexStats:
    try:
        return await services.stats.index_stats(name)
    except IndexSyncError as e:
        raise http_error(e) from e


@router.get("/{name}/stats/{database}/{collection}", response_model=CollectionStats)
async def collection_stats(
    name: str, database: str, collection: str, services: Services = Depends(get_services)
) -> CollectionStats:
    try:
        return await services.stats.collection_stats(name, database, collection)
    except IndexSyncError as e:
        raise http_error(e) from e


@router.post("/{name}/search", response_model=SearchResponse)
async def search_index(
    name: str, body: SearchRequest, services: Services = Depends(get_services)
) -> SearchResponse:
    """Literal substring match over keys and/or values of every stored document. Unranked."""
    try:
        hits = await services.search.search(
            name,
            body.query,
            search_in_keys=body.search_in_keys,
            search_in_values=body.search_in_values,
            case_sensitive=body.case_sensitive,
            all_occurrences=body.all_occurrences,
            limit=body.limit,
        )
    except IndexSyncError as e:
        raise http_error(e) from e
    return SearchResponse(index_name=name, query=body.query, total_hits=len(hits), hits=hits)
