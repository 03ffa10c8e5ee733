"""Core data model: index definitions, rebuild task snapshots, stats, and search results."""

from datetime import datetime
from enum import Enum
from typing import Any, Literal, NamedTuple

from pydantic import BaseModel, ConfigDict, Field, computed_field

from indexsync.domain.errors import InvalidSourceError

_FORBIDDEN_DATABASE_CHARS = set('/\\. "$\x00')


class SourceBinding(BaseModel):
    """A (database, collection) pair monitored by one or more index definitions."""

    model_config = ConfigDict(frozen=True)

    database: str
    collection: str

    @classmethod
    def of(cls, database: Any, collection: Any) -> "SourceBinding":
        """Validate raw input and build a binding. Raises InvalidSourceError when malformed."""
        if not isinstance(database, str) or not database.strip():
            raise InvalidSourceError(f"Invalid source database: {database!r}")
        if not isinstance(collection, str) or not collection.strip():
            raise InvalidSourceError(f"Invalid source collection: {collection!r}")
        if any(ch in _FORBIDDEN_DATABASE_CHARS for ch in database):
            raise InvalidSourceError(f"Invalid character in source database name: {database!r}")
        if "$" in collection or "\x00" in collection or collection.startswith("system."):
            raise InvalidSourceError(f"Invalid source collection name: {collection!r}")
        return cls(database=database, collection=collection)

    def __str__(self) -> str:
        return f"{self.database}.{self.collection}"


class IndexDefinition(BaseModel):
    """Named configuration binding a target search index to its source collections."""

    model_config = ConfigDict(frozen=True)

    name: str
    target_index_name: str
    sources: tuple[SourceBinding, ...] = ()
    created_at: datetime
    updated_at: datetime

    def has_source(self, binding: SourceBinding) -> bool:
        return binding in self.sources


class TaskStatus(str, Enum):
    PENDING = "pending"
    RUNNING = "running"
    COMPLETED = "completed"
    FAILED = "failed"


TERMINAL_STATUSES = frozenset({TaskStatus.COMPLETED, TaskStatus.FAILED})


class RebuildTask(BaseModel):
    """
    Immutable progress snapshot of one rebuild. Each progress update produces a new
    instance (model_copy), so a reader always holds a whole, consistent record.
    """

    model_config = ConfigDict(frozen=True)

    task_id: str
    index_name: str
    target_index_name: str | None = Field(default=None, description="Index the rebuild writes into")
    scope: SourceBinding | None = Field(default=None, description="None means all sources of the index")
    max_docs: int | None = None
    status: TaskStatus = TaskStatus.PENDING
    total_docs: int = 0
    processed_docs: int = 0
    indexed_docs: int = 0
    errors: tuple[str, ...] = ()
    cancel_requested: bool = False
    started_at: datetime
    finished_at: datetime | None = None

    @computed_field
    @property
    def remaining_docs(self) -> int:
        return max(self.total_docs - self.processed_docs, 0)

    @computed_field
    @property
    def duration_seconds(self) -> float | None:
        if self.finished_at is None:
            return None
        return (self.finished_at - self.started_at).total_seconds()

    @property
    def is_terminal(self) -> bool:
        return self.status in TERMINAL_STATUSES


class CollectionStats(BaseModel):
    database: str
    collection: str
    doc_count: int
    indexed_doc_count: int

    @computed_field
    @property
    def drift(self) -> int:
        return self.doc_count - self.indexed_doc_count


class IndexStats(BaseModel):
    """Source-vs-index document counts. Point-in-time samples; never cached."""

    index_name: str
    target_index_name: str
    total_source_docs_count: int
    indexed_docs_count: int
    per_source_stats: list[CollectionStats] = Field(default_factory=list)

    @computed_field
    @property
    def drift(self) -> int:
        return self.total_source_docs_count - self.indexed_docs_count


class IndexedDocument(BaseModel):
    """A flattened source document as stored in a target index."""

    model_config = ConfigDict(frozen=True)

    id: str
    fields: dict[str, str] = Field(default_factory=dict)
    provenance: SourceBinding
    rebuild_id: str | None = None


class SearchMatch(BaseModel):
    document_id: str
    match_in: Literal["key", "value"]
    field_key: str
    field_value: str
    start_index: int
    end_index: int


class SearchHit(BaseModel):
    document_id: str
    matches: list[SearchMatch]


class SourceDocument(NamedTuple):
    """One raw document from a source collection."""

    doc_id: str
    body: dict[str, Any]


class SourcePage(NamedTuple):
    documents: list[SourceDocument]
    next_token: Any = None


class IndexPage(NamedTuple):
    documents: list[IndexedDocument]
    next_token: Any = None


class BulkItemResult(NamedTuple):
    doc_id: str
    ok: bool
    error: str | None = None
