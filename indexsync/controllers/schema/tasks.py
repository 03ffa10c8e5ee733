"""Response schemas for /tasks and /sources."""

from pydantic import BaseModel, Field

from indexsync.domain.models import RebuildTask


class TaskListResponse(BaseModel):
    tasks: list[RebuildTask] = Field(default_factory=list)


class DetachSourceResponse(BaseModel):
    database: str
    collection: str
    detached_from: list[str] = Field(default_factory=list, description="Indices the source was removed from")


class RefreshDocumentResponse(BaseModel):
    database: str
    collection: str
    doc_id: str
    indices: list[str] = Field(default_factory=list, description="Indices the document was re-synced into")
