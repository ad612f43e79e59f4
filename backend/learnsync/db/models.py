"""ORM models backing the database persistence mode."""

from __future__ import annotations

import uuid
from datetime import datetime, timezone

from sqlalchemy import Boolean, DateTime, Index, Integer, String
from sqlalchemy.orm import Mapped, mapped_column
from sqlalchemy.types import JSON

from .base import Base, TimestampMixin

JSONType = JSON


class UserRecordModel(TimestampMixin, Base):
    __tablename__ = "user_records"
    __table_args__ = (Index("ix_user_records_identity", "identity", unique=True),)

    id: Mapped[str] = mapped_column(
        String(36), primary_key=True, default=lambda: str(uuid.uuid4())
    )
    identity: Mapped[str] = mapped_column(String(320), nullable=False)
    sign_in_count: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    total_enrollment_count: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    enrolled_courses: Mapped[dict[str, dict]] = mapped_column(JSONType, default=dict, nullable=False)
    bundle_history: Mapped[list[str]] = mapped_column(JSONType, default=list, nullable=False)
    bundle_sync_pending: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)
    recent_sign_in_ids: Mapped[list[str]] = mapped_column(JSONType, default=list, nullable=False)
    last_updated: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=lambda: datetime.now(timezone.utc), nullable=False
    )


__all__ = ["UserRecordModel"]
