"""SQLModel ORM tables for the task store."""

from __future__ import annotations

from datetime import datetime

from sqlalchemy import Column, DateTime, Index, Text
from sqlmodel import Field, SQLModel


class Task(SQLModel, table=True):
    __tablename__ = "tasks"  # type: ignore[bad-override]
    __table_args__ = (Index("idx_tasks_status_updated", "status", "updated_at"),)

    id: int | None = Field(default=None, primary_key=True)
    function_name: str = Field(index=True)
    payload: str = Field(sa_column=Column(Text, nullable=False))
    status: str
    retry_count: int = Field(default=0)
    created_at: datetime = Field(sa_column=Column(DateTime(timezone=True), nullable=False))
    updated_at: datetime = Field(sa_column=Column(DateTime(timezone=True), nullable=False))
    completed_at: datetime | None = Field(default=None, sa_column=Column(DateTime(timezone=True)))
    # Claim expiry on SQLite, which cannot hold row locks across the handler.
    leased_until: datetime | None = Field(default=None, sa_column=Column(DateTime(timezone=True)))
