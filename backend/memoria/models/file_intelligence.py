"""Per-file analysis summary ORM model.

Classes:
    FileIntelligence: Hash, concepts, patterns, complexity metrics and dependencies recorded for one file.
"""

from __future__ import annotations

from datetime import datetime

from sqlalchemy import Column
from sqlmodel import Field, SQLModel

from memoria.models.types import JSONVariant, UTCDateTime
from memoria.utils.time import utcnow


class FileIntelligence(SQLModel, table=True):
    __tablename__ = "file_intelligence"

    file_path: str = Field(primary_key=True)
    file_hash: str
    semantic_concepts: list[str] = Field(default_factory=list, sa_column=Column(JSONVariant))
    patterns_used: list[str] = Field(default_factory=list, sa_column=Column(JSONVariant))
    complexity_metrics: dict[str, float] = Field(default_factory=dict, sa_column=Column(JSONVariant))
    dependencies: list[str] = Field(default_factory=list, sa_column=Column(JSONVariant))
    last_analyzed: datetime = Field(default_factory=utcnow, sa_column=Column(UTCDateTime, nullable=False, index=True))
    created_at: datetime = Field(default_factory=utcnow, sa_column=Column(UTCDateTime, nullable=False))
