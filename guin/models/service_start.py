from __future__ import annotations

from datetime import datetime, timezone
from typing import Optional

from sqlmodel import Field, SQLModel


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


class ServiceStart(SQLModel, table=True):
    """
    One row per process start.

    Written once during configuration, so a fresh database proves the
    connection and migration both worked.
    """

    __tablename__ = "service_start"

    id: Optional[int] = Field(default=None, primary_key=True)
    service_name: str = Field(default="", index=True)
    port: int
    started_at: datetime = Field(default_factory=utcnow, index=True)
