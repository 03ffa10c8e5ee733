"""Source-side operations: detach a collection from every index, re-sync one document."""

from fastapi import APIRouter, Depends

from indexsync.container import Services
from indexsync.controllers.deps import get_services, http_error
from indexsync.controllers.schema.tasks import DetachSourceResponse, RefreshDocumentResponse
from indexsync.domain.errors import IndexSyncError

router = APIRouter(prefix="/sources", tags=["sources"])


@router.delete("/{database}/{collection}", response_model=DetachSourceResponse)
async def detach_source(
    database: str, collection: str, services: Services = Depends(get_services)
) -> DetachSourceResponse:
    """
    Remove the collection from every index definition. Its already indexed documents stay in each
    target until that index's next full rebuild completes without failures.
    """
    try:
        names = await services.registry.detach_source(database, collection)
    except IndexSyncError as e:
        raise http_error(e) from e
    return DetachSourceResponse(database=database, collection=collection, detached_from=names)


@router.post("/{database}/{collection}/documents/{doc_id}/refresh", response_model=RefreshDocumentResponse)
async def refresh_document(
    database: str, collection: str, doc_id: str, services: Services = Depends(get_services)
) -> RefreshDocumentResponse:
    try:
        names = await services.orchestrator.refresh_document(database, collection, doc_id)
    except IndexSyncError as e:
        raise http_error(e) from e
    return RefreshDocumentResponse(database=database, collection=collection, doc_id=doc_id, indices=names)
