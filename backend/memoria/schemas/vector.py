"""Pydantic schemas for vector documents and search payloads.

Classes:
    CodeMetadata: Descriptor of a code fragment, stored with camelCase keys.
    VectorDocument, SearchResult: Records read back from the vector store.
    EmbeddingProgress: Progress notification emitted during batch embedding.
    VectorExportMetadata, VectorExport: Portable dump of a whole collection.
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from typing import Optional

from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel

from memoria.utils.time import utcnow


class CodeMetadata(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)

    id: str
    file_path: str
    function_name: Optional[str] = None
    class_name: Optional[str] = None
    language: str
    complexity: float = 0.0
    line_count: int = 0
    last_modified: datetime = Field(default_factory=utcnow)

    def to_payload(self) -> dict:
        return self.model_dump(mode="json", by_alias=True)


class VectorDocument(BaseModel):
    id: str
    content: str
    embedding: list[float]
    metadata: CodeMetadata
    created: datetime
    updated: datetime


class SearchResult(BaseModel):
    id: str
    content: str
    metadata: CodeMetadata
    score: float


@dataclass(slots=True)
class EmbeddingProgress:
    processed: int
    total: int
    current_file: Optional[str] = None


class VectorExportMetadata(BaseModel):
    collection_name: str
    vector_size: int
    document_count: int
    exported_at: datetime = Field(default_factory=utcnow)


class VectorExport(BaseModel):
    documents: list[VectorDocument]
    metadata: VectorExportMetadata
