"""Semantic concept ORM model.

Classes:
    SemanticConcept: A named concept (class, function, module role) discovered in a source file.
"""

from __future__ import annotations

from datetime import datetime
from typing import Any, Optional

from sqlalchemy import Column
from sqlmodel import Field, SQLModel

from memoria.models.types import JSONVariant, UTCDateTime
from memoria.utils.time import utcnow


class SemanticConcept(SQLModel, table=True):
    __tablename__ = "semantic_concepts"

    id: str = Field(primary_key=True)
    concept_name: str
    concept_type: str = Field(index=True)
    confidence_score: float = Field(default=0.0, index=True)
    relationships: dict[str, Any] = Field(default_factory=dict, sa_column=Column(JSONVariant))
    evolution_history: dict[str, Any] = Field(default_factory=dict, sa_column=Column(JSONVariant))
    file_path: Optional[str] = Field(default=None, index=True)
    line_range: dict[str, int] = Field(
        default_factory=lambda: {"start": 0, "end": 0}, sa_column=Column(JSONVariant)
    )
    created_at: datetime = Field(default_factory=utcnow, sa_column=Column(UTCDateTime, nullable=False))
    updated_at: datetime = Field(default_factory=utcnow, sa_column=Column(UTCDateTime, nullable=False))
