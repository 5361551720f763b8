"""Schema migration ledger model."""

from __future__ import annotations

from datetime import datetime

from sqlalchemy import Column
from sqlmodel import Field, SQLModel

from memoria.models.types import UTCDateTime
from memoria.utils.time import utcnow


class Migration(SQLModel, table=True):
    __tablename__ = "migrations"

    version: int = Field(primary_key=True, sa_column_kwargs={"autoincrement": False})
    name: str
    applied_at: datetime = Field(default_factory=utcnow, sa_column=Column(UTCDateTime, nullable=False))
