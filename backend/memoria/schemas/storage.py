"""Pydantic schemas for health, statistics and backup payloads.

Classes:
    BackendHealth, StorageHealth: Liveness of each backend and of the pair.
    RelationalStats, VectorStats, StorageStats: Record counts and index sizes.
    RelationalSnapshot: JSON-serializable export of every relational record.
    BackupManifest, RestoreSummary: Results of backup, restore and migration.
"""

from __future__ import annotations

from datetime import datetime
from typing import Any, Optional

from pydantic import BaseModel, Field

from memoria.utils.time import utcnow


class BackendHealth(BaseModel):
    healthy: bool
    message: Optional[str] = None
    latency: Optional[float] = Field(default=None, description="Probe round-trip in milliseconds.")


class StorageHealth(BaseModel):
    relational: BackendHealth
    vector: BackendHealth
    overall: bool


class RelationalStats(BaseModel):
    concepts: int = 0
    patterns: int = 0
    files: int = 0
    insights: int = 0


class VectorStats(BaseModel):
    documents: int = 0
    index_size: int = 0
    memory_usage: Optional[int] = None


class StorageStats(BaseModel):
    relational: RelationalStats
    vector: VectorStats
    last_updated: datetime = Field(default_factory=utcnow)


class RelationalSnapshot(BaseModel):
    semantic_concepts: list[dict[str, Any]] = Field(default_factory=list)
    developer_patterns: list[dict[str, Any]] = Field(default_factory=list)
    file_intelligence: list[dict[str, Any]] = Field(default_factory=list)
    ai_insights: list[dict[str, Any]] = Field(default_factory=list)
    schema_version: int = 0
    exported_at: datetime = Field(default_factory=utcnow)

    @property
    def record_count(self) -> int:
        return (
            len(self.semantic_concepts)
            + len(self.developer_patterns)
            + len(self.file_intelligence)
            + len(self.ai_insights)
        )


class BackupManifest(BaseModel):
    backup_id: str
    relational_backup: str
    vector_backup: str
    relational_records: int
    vector_documents: int
    created_at: datetime = Field(default_factory=utcnow)


class RestoreSummary(BaseModel):
    relational_records: int
    vector_documents: int
