"""Request/response schemas for POST /indices/{name}/search."""

from pydantic import BaseModel, Field

from indexsync.domain.models import SearchHit


class SearchRequest(BaseModel):
    query: str = Field(..., description="Literal substring; an empty query matches nothing")
    search_in_keys: bool = Field(default=False, description="Match against flattened field paths")
    search_in_values: bool = Field(default=True, description="Match against field values")
    case_sensitive: bool = Field(default=True)
    all_occurrences: bool = Field(default=False, description="Report every occurrence instead of the first")
    limit: int | None = Field(default=None, ge=1, le=10000, description="Maximum number of hits")


class SearchResponse(BaseModel):
    index_name: str
    query: str
    total_hits: int = Field(..., ge=0)
    hits: list[SearchHit] = Field(default_factory=list)
