"""Rebuild task progress and cancellation under /tasks."""

from fastapi import APIRouter, Depends

from indexsync.container import Services
from indexsync.controllers.deps import get_services, http_error
from indexsync.controllers.schema.tasks import TaskListResponse
from indexsync.domain.errors import IndexSyncError
from indexsync.domain.models import RebuildTask

router = APIRouter(prefix="/tasks", tags=["tasks"])


@router.get("", response_model=TaskListResponse)
async def list_tasks(index_name: str | None = None, services: Services = Depends(get_services)) -> TaskListResponse:
    return TaskListResponse(tasks=services.tracker.list_tasks(index_name))


@router.get("/{task_id}", response_model=RebuildTask)
async def get_task(task_id: str, services: Services = Depends(get_services)) -> RebuildTask:
    """404 for unknown ids and for finished tasks whose retention has expired."""
    try:
        return services.tracker.get_progress(task_id)
    except IndexSyncError as e:
        raise http_error(e) from e


@router.post("/{task_id}/cancel", response_model=RebuildTask)
async def cancel_task(task_id: str, services: Services = Depends(get_services)) -> RebuildTask:
    try:
        return services.orchestrator.cancel(task_id)
    except IndexSyncError as e:
        raise http_error(e) from e
