"""Data models for the indexer."""

from dataclasses import dataclass, field
from typing import Any


@dataclass
class Chunk:
    """A bounded unit of source text with its location."""

    content: str
    start_line: int  # 1-based, inclusive
    end_line: int  # 1-based, inclusive
    language: str
    file_path: str | None = None
    is_definition: bool = False
    has_overlap: bool = False  # Set once the overlap pass has prefixed this chunk


@dataclass
class Document:
    """A chunk persisted in a collection, keyed by id."""

    id: str
    vector: list[float]
    content: str
    relative_path: str
    start_line: int
    end_line: int
    file_extension: str
    is_definition: bool = False
    metadata: dict[str, Any] = field(default_factory=dict)


@dataclass
class Collection:
    """A named, dimension-fixed container of documents."""

    name: str
    dimension: int
    description: str = ""


@dataclass
class SearchResult:
    """A ranked document. The stored vector is never included."""

    id: str
    content: str
    relative_path: str
    start_line: int
    end_line: int
    file_extension: str
    is_definition: bool
    metadata: dict[str, Any]
    score: float
    vector_score: float = 0.0
    lexical_score: float = 0.0

    @property
    def language(self) -> str:
        return self.metadata.get("language", "text")
