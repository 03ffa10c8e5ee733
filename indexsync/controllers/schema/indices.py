"""Request/response schemas for /indices."""

from datetime import datetime

from pydantic import BaseModel, Field, model_validator

from indexsync.domain.models import IndexDefinition, SourceBinding


class SourceBindingBody(BaseModel):
    database: str = Field(..., min_length=1, description="Source database name")
    collection: str = Field(..., min_length=1, description="Source collection name")

    def to_binding(self) -> SourceBinding:
        """Raises InvalidSourceError for names MongoDB would reject."""
        return SourceBinding.of(self.database, self.collection)


class CreateIndexRequest(BaseModel):
    name: str = Field(..., min_length=1, max_length=255, description="Unique index definition name")
    target_index_name: str = Field(..., min_length=1, max_length=255, description="Search engine index to write")
    sources: list[SourceBindingBody] = Field(default_factory=list, description="Monitored source collections")


class UpdateIndexRequest(BaseModel):
    target_index_name: str | None = Field(default=None, min_length=1, max_length=255)
    sources: list[SourceBindingBody] | None = Field(
        default=None, description="Replaces the whole binding list when provided"
    )

    @model_validator(mode="after")
    def validate_has_changes(self):
        if self.target_index_name is None and self.sources is None:
            raise ValueError("At least one of target_index_name or sources must be provided")
        return self


class IndexResponse(BaseModel):
    name: str
    target_index_name: str
    sources: list[SourceBindingBody]
    created_at: datetime
    updated_at: datetime

    @classmethod
    def from_definition(cls, definition: IndexDefinition) -> "IndexResponse":
        return cls(
            name=definition.name,
            target_index_name=definition.target_index_name,
            sources=[SourceBindingBody(database=s.database, collection=s.collection) for s in definition.sources],
            created_at=definition.created_at,
            updated_at=definition.updated_at,
        )


class IndexListResponse(BaseModel):
    indices: list[IndexResponse]


class IndicesForSourceResponse(BaseModel):
    database: str
    collection: str
    indices: list[str] = Field(default_factory=list, description="Names of indices monitoring the source")


class RebuildRequest(BaseModel):
    """Both database and collection restrict the rebuild to one source; neither rebuilds every source."""

    database: str | None = Field(default=None, min_length=1)
    collection: str | None = Field(default=None, min_length=1)
    max_docs: int | None = Field(default=None, ge=0, description="Stop after this many documents")

    @model_validator(mode="after")
    def validate_scope(self):
        if (self.database is None) != (self.collection is None):
            raise ValueError("database and collection must be provided together")
        return self


class RebuildResponse(BaseModel):
    task_id: str
    index_name: str
