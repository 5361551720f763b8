"""AI insight ORM model.

Classes:
    ValidationStatus: Review states an insight moves through.
    AIInsight: A prediction or recommendation emitted by an analysis agent.
"""

from __future__ import annotations

from datetime import datetime
from typing import Any, Optional

from sqlalchemy import Column
from sqlmodel import Field, SQLModel

from memoria.models.types import JSONVariant, UTCDateTime
from memoria.utils.time import utcnow


class ValidationStatus:
    PENDING = "pending"
    VALIDATED = "validated"
    REJECTED = "rejected"


class AIInsight(SQLModel, table=True):
    __tablename__ = "ai_insights"

    insight_id: str = Field(primary_key=True)
    insight_type: str = Field(index=True)
    insight_content: dict[str, Any] = Field(
        default_factory=dict, sa_column=Column(JSONVariant, nullable=False)
    )
    confidence_score: float = Field(default=0.0, index=True)
    source_agent: Optional[str] = None
    validation_status: str = Field(default=ValidationStatus.PENDING)
    impact_prediction: dict[str, Any] = Field(default_factory=dict, sa_column=Column(JSONVariant))
    created_at: datetime = Field(default_factory=utcnow, sa_column=Column(UTCDateTime, nullable=False))
