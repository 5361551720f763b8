"""Developer pattern ORM model."""

from __future__ import annotations

from datetime import datetime
from typing import Any

from sqlalchemy import Column
from sqlmodel import Field, SQLModel

from memoria.models.types import JSONVariant, UTCDateTime
from memoria.utils.time import utcnow


class DeveloperPattern(SQLModel, table=True):
    __tablename__ = "developer_patterns"

    pattern_id: str = Field(primary_key=True)
    pattern_type: str = Field(index=True)
    pattern_content: dict[str, Any] = Field(
        default_factory=dict, sa_column=Column(JSONVariant, nullable=False)
    )
    frequency: int = Field(default=0)
    contexts: list[str] = Field(default_factory=list, sa_column=Column(JSONVariant))
    examples: list[dict[str, Any]] = Field(default_factory=list, sa_column=Column(JSONVariant))
    confidence: float = Field(default=0.0, index=True)
    created_at: datetime = Field(default_factory=utcnow, sa_column=Column(UTCDateTime, nullable=False))
    last_seen: datetime = Field(default_factory=utcnow, sa_column=Column(UTCDateTime, nullable=False))
