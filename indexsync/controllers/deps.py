"""Request-scoped access to the service container and domain-error to HTTP mapping."""

from fastapi import HTTPException, Request

from indexsync.container import Services
from indexsync.domain.errors import (
    DuplicateNameError,
    IndexSyncError,
    InvalidSourceError,
    NotFoundError,
    RebuildInProgressError,
    RepositoryError,
)


def get_services(request: Request) -> Services:
    """Services built by the app lifespan and stored on app.state."""
    return request.app.state.services


def http_error(e: IndexSyncError) -> HTTPException:
    """Adapter failures become 503 without leaking driver details."""
    if isinstance(e, NotFoundError):
        return HTTPException(status_code=404, detail=e.message)
    if isinstance(e, (DuplicateNameError, RebuildInProgressError)):
        return HTTPException(status_code=409, detail=e.message)
    if isinstance(e, InvalidSourceError):
        return HTTPException(status_code=400, detail=e.message)
    if isinstance(e, RepositoryError):
        return HTTPException(status_code=503, detail="Storage temporarily unavailable")
    return HTTPException(status_code=500, detail="An internal error occurred.")
