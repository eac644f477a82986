"""Domain model - the canonical document and its partial update.

The canonical store owns these records. The search index only ever receives
them as read-only input and projects them into indexed fields.
"""

from __future__ import annotations

from datetime import datetime, timezone
import re
import secrets
from typing import Any

from pydantic import Field, field_validator
from pydantic.dataclasses import dataclass

from docsearch_server.domain.errors import InvalidIdentifier


DOCUMENT_ID_BYTES = 12
_DOCUMENT_ID_PATTERN = re.compile(r"^[0-9a-f]{24}$")


def new_document_id() -> str:
    """Return a fresh 24-character hex document id."""
    return secrets.token_hex(DOCUMENT_ID_BYTES)


def parse_document_id(raw_id: str) -> str:
    """Normalize and validate a document id.

    Raises:
        InvalidIdentifier: if ``raw_id`` is not a 24-character hex string.
    """
    if not isinstance(raw_id, str):
        raise InvalidIdentifier(str(raw_id))
    normalized = raw_id.strip().lower()
    if not _DOCUMENT_ID_PATTERN.match(normalized):
        raise InvalidIdentifier(raw_id)
    return normalized


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def _dedupe_tags(tags: list[str]) -> list[str]:
    seen: set[str] = set()
    ordered: list[str] = []
    for tag in tags:
        if tag in seen:
            continue
        seen.add(tag)
        ordered.append(tag)
    return ordered


@dataclass(frozen=True)
class CanonicalDocument:
    """Aggregate root stored in the canonical store.

    ``tags`` behaves as an ordered set: duplicates are dropped on construction
    and order carries no meaning for matching.
    """

    title: str
    content: str
    id: str = Field(default_factory=new_document_id)
    category: str | None = None
    tags: list[str] = Field(default_factory=list)
    metadata: dict[str, str] = Field(default_factory=dict)
    created_at: datetime = Field(default_factory=_utcnow)
    updated_at: datetime = Field(default_factory=_utcnow)

    @field_validator("id")
    @classmethod
    def _validate_id(cls, value: str) -> str:
        return parse_document_id(value)

    @field_validator("tags")
    @classmethod
    def _validate_tags(cls, value: list[str]) -> list[str]:
        return _dedupe_tags(value)

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "title": self.title,
            "content": self.content,
            "category": self.category,
            "tags": list(self.tags),
            "metadata": dict(self.metadata),
            "created_at": self.created_at.isoformat(),
            "updated_at": self.updated_at.isoformat(),
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> CanonicalDocument:
        return cls(
            id=data["id"],
            title=data["title"],
            content=data["content"],
            category=data.get("category"),
            tags=list(data.get("tags") or []),
            metadata=dict(data.get("metadata") or {}),
            created_at=data.get("created_at") or _utcnow(),
            updated_at=data.get("updated_at") or _utcnow(),
        )


@dataclass(frozen=True)
class DocumentPatch:
    """Partial update for a canonical document. ``None`` means "leave unchanged"."""

    title: str | None = None
    content: str | None = None
    category: str | None = None
    tags: list[str] | None = None
    metadata: dict[str, str] | None = None

    def apply(self, document: CanonicalDocument, *, now: datetime | None = None) -> CanonicalDocument:
        """Return a copy of ``document`` with the patched fields and a fresh ``updated_at``."""
        return CanonicalDocument(
            id=document.id,
            title=self.title if self.title is not None else document.title,
            content=self.content if self.content is not None else document.content,
            category=self.category if self.category is not None else document.category,
            tags=list(self.tags) if self.tags is not None else list(document.tags),
            metadata=dict(self.metadata) if self.metadata is not None else dict(document.metadata),
            created_at=document.created_at,
            updated_at=now or _utcnow(),
        )

    def is_empty(self) -> bool:
        return all(
            value is None for value in (self.title, self.content, self.category, self.tags, self.metadata)
        )
