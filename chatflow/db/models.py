from __future__ import annotations

from datetime import datetime, timezone

from sqlalchemy import JSON, Column, DateTime
from sqlmodel import Field, SQLModel


def _now() -> datetime:
    return datetime.now(timezone.utc)


class DraftRecord(SQLModel, table=True):
    """A document or transfer draft owned by a chat user."""

    __tablename__ = "drafts"

    id: str = Field(primary_key=True)
    number: str = Field(index=True)
    kind: str = Field(index=True)
    user_id: str = Field(index=True)
    status: str = Field(default="draft")
    fields: dict = Field(default_factory=dict, sa_column=Column(JSON))
    revision: int = 0
    created_at: datetime = Field(
        default_factory=_now, sa_column=Column(DateTime(timezone=True))
    )
    updated_at: datetime = Field(
        default_factory=_now, sa_column=Column(DateTime(timezone=True))
    )
