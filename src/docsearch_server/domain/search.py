"""Value objects for search results and the JSON payloads of the HTTP surface.

Result objects are immutable. Response models serialize with camelCase keys
(``totalHits``, ``highlightedTitle``) to match the public API.
"""

from __future__ import annotations

from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel

from docsearch_server.domain.model import CanonicalDocument


class SearchHit(BaseModel):
    """A single ranked hit read from an index snapshot."""

    model_config = ConfigDict(frozen=True)

    id: str
    title: str
    content: str
    category: str | None = None
    tags: list[str] = Field(default_factory=list)
    score: float
    highlighted_title: str | None = None
    highlighted_content: str | None = None


class SearchResults(BaseModel):
    """Hits plus the total match count for one search call."""

    model_config = ConfigDict(frozen=True)

    results: list[SearchHit]
    total_hits: int
    query: str


class _CamelModel(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


class DocumentRequest(_CamelModel):
    """Body of ``POST /documents`` and ``PUT /documents/{id}``."""

    title: str
    content: str
    category: str | None = None
    tags: list[str] = Field(default_factory=list)
    metadata: dict[str, str] = Field(default_factory=dict)


class SearchRequest(_CamelModel):
    """Body of ``POST /search``."""

    query: str
    category: str | None = None
    limit: int = Field(default=10, ge=1)
    highlight: bool = False


class DocumentResponse(_CamelModel):
    id: str
    title: str
    content: str
    category: str | None = None
    tags: list[str] = Field(default_factory=list)
    metadata: dict[str, str] = Field(default_factory=dict)
    created_at: str
    updated_at: str

    @classmethod
    def from_document(cls, document: CanonicalDocument) -> DocumentResponse:
        return cls(
            id=document.id,
            title=document.title,
            content=document.content,
            category=document.category,
            tags=list(document.tags),
            metadata=dict(document.metadata),
            created_at=document.created_at.isoformat(),
            updated_at=document.updated_at.isoformat(),
        )


class SearchHitResponse(_CamelModel):
    id: str
    title: str
    content: str
    category: str | None
    tags: list[str]
    score: float
    highlighted_title: str | None = None
    highlighted_content: str | None = None


class SearchResponse(_CamelModel):
    results: list[SearchHitResponse]
    total_hits: int
    query: str

    @classmethod
    def from_results(cls, results: SearchResults) -> SearchResponse:
        return cls(
            results=[SearchHitResponse(**hit.model_dump()) for hit in results.results],
            total_hits=results.total_hits,
            query=results.query,
        )
