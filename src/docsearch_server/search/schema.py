"""
Schema definition for the document index.

Defines field kinds and the schema structure the indexing pipeline projects
canonical documents into:
- TextField: Analyzed text fields (title, content, tags)
- KeywordField: Exact match fields (id, category)

Each field can have:
- stored: Whether the raw value is kept alongside the record
- indexed: Whether the field is searchable
- boost: Field-level weight used when a free-text term fans out across fields
- multi_valued: Whether the field accepts a list of values (tags)
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from collections.abc import Iterator
from dataclasses import dataclass
from enum import Enum
from typing import Any


# Positions inserted between two values of a multi-valued field so phrase
# matching never crosses a value boundary.
POSITION_INCREMENT_GAP = 100


class FieldType(str, Enum):
    """Types of fields supported in the schema."""

    TEXT = "text"
    KEYWORD = "keyword"


@dataclass(frozen=True)
class SchemaField(ABC):
    """Base class for all schema fields."""

    name: str
    stored: bool = True
    indexed: bool = True
    boost: float = 1.0
    multi_valued: bool = False

    @property
    @abstractmethod
    def field_type(self) -> FieldType:
        """Return the field type."""

    def to_dict(self) -> dict[str, Any]:
        """Serialize field definition to dict."""
        return {
            "name": self.name,
            "type": self.field_type.value,
            "stored": self.stored,
            "indexed": self.indexed,
            "boost": self.boost,
            "multi_valued": self.multi_valued,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> SchemaField:
        """Deserialize field definition from dict."""
        field_type = FieldType(data["type"])
        common = {
            "name": data["name"],
            "stored": data.get("stored", True),
            "indexed": data.get("indexed", True),
            "boost": data.get("boost", 1.0),
            "multi_valued": data.get("multi_valued", False),
        }

        if field_type == FieldType.TEXT:
            return TextField(**common, analyzer_name=data.get("analyzer_name"))
        if field_type == FieldType.KEYWORD:
            return KeywordField(**common)
        msg = f"Unknown field type: {field_type}"
        raise ValueError(msg)


@dataclass(frozen=True)
class TextField(SchemaField):
    """
    Analyzed text field for full-text search.

    Args:
        name: Field name (e.g., "title", "content")
        stored: Store raw value for retrieval (default: True)
        indexed: Index for searching (default: True)
        boost: Field weight in scoring (default: 1.0)
        multi_valued: Accept a list of values (default: False)
        analyzer_name: Name of analyzer to use (default: None = standard)
    """

    analyzer_name: str | None = None

    @property
    def field_type(self) -> FieldType:
        return FieldType.TEXT

    def to_dict(self) -> dict[str, Any]:
        data = super().to_dict()
        if self.analyzer_name:
            data["analyzer_name"] = self.analyzer_name
        return data


@dataclass(frozen=True)
class KeywordField(SchemaField):
    """
    Exact-match keyword field.

    The whole value is indexed as one term, case-sensitive. Used for the
    mutation key and for filters.
    """

    @property
    def field_type(self) -> FieldType:
        return FieldType.KEYWORD


@dataclass
class Schema:
    """
    Schema definition for a search index.

    Example:
        schema = Schema(
            fields=[
                KeywordField("id"),
                TextField("title", boost=3.0),
                TextField("content"),
            ],
            unique_field="id",
        )
    """

    fields: list[SchemaField]
    unique_field: str = "id"
    name: str = "default"

    def __post_init__(self) -> None:
        self._field_map: dict[str, SchemaField] = {f.name: f for f in self.fields}

        if self.unique_field not in self._field_map:
            msg = f"Unique field '{self.unique_field}' not found in schema"
            raise ValueError(msg)
        if not isinstance(self._field_map[self.unique_field], KeywordField):
            msg = f"Unique field '{self.unique_field}' must be a keyword field"
            raise ValueError(msg)

    def __getitem__(self, name: str) -> SchemaField:
        return self._field_map[name]

    def __contains__(self, name: str) -> bool:
        return name in self._field_map

    def __iter__(self) -> Iterator[SchemaField]:
        return iter(self.fields)

    def __len__(self) -> int:
        return len(self.fields)

    @property
    def text_fields(self) -> list[TextField]:
        """Return all indexed text fields in declaration order."""
        return [f for f in self.fields if isinstance(f, TextField) and f.indexed]

    def get_boost(self, field_name: str) -> float:
        """Get boost factor for a field."""
        if field_name in self._field_map:
            return self._field_map[field_name].boost
        return 1.0

    def to_dict(self) -> dict[str, Any]:
        """Serialize schema to dict."""
        return {
            "name": self.name,
            "unique_field": self.unique_field,
            "fields": [f.to_dict() for f in self.fields],
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> Schema:
        """Deserialize schema from dict."""
        fields = [SchemaField.from_dict(f) for f in data["fields"]]
        return cls(
            fields=fields,
            unique_field=data.get("unique_field", "id"),
            name=data.get("name", "default"),
        )

    def is_compatible_with(self, other: Schema) -> bool:
        """Return True when ``other`` indexes the same fields the same way.

        Boosts are query-time weights and may differ between runs.
        """
        if self.unique_field != other.unique_field:
            return False
        mine = {f.name: _structural(f) for f in self.fields}
        theirs = {f.name: _structural(f) for f in other.fields}
        return mine == theirs


def _structural(schema_field: SchemaField) -> dict[str, Any]:
    data = schema_field.to_dict()
    data.pop("boost", None)
    return data


def create_document_schema(
    *,
    title_boost: float = 3.0,
    tags_boost: float = 2.0,
    content_boost: float = 1.0,
) -> Schema:
    """
    Create the schema used for canonical documents.

    Fields:
    - id: Mutation key (keyword, stored)
    - title: Document title (text, boost=3.0)
    - content: Body text (text, boost=1.0)
    - tags: Tag values under one field (text, multi-valued, boost=2.0)
    - category: Filter-only exact match (keyword, never scored)
    """
    return Schema(
        name="documents",
        unique_field="id",
        fields=[
            KeywordField("id", boost=0.0),
            TextField("title", boost=title_boost),
            TextField("content", boost=content_boost),
            TextField("tags", boost=tags_boost, multi_valued=True),
            KeywordField("category", boost=0.0),
        ],
    )
