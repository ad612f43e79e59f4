"""Database-backed user record repository."""

from __future__ import annotations

from datetime import datetime, timezone
from typing import List

from sqlalchemy import delete, select
from sqlalchemy.orm import Session

from ..db.models import UserRecordModel
from ..user_state import EnrolledCourse, UserRecord, require_identity


class UserRecordRepository:
    """Row-per-identity persistence used when the JSON snapshot is disabled."""

    def _find(self, session: Session, identity: str, *, for_update: bool = False) -> UserRecordModel | None:
        stmt = select(UserRecordModel).where(UserRecordModel.identity == require_identity(identity))
        if for_update:
            stmt = stmt.with_for_update()
        return session.execute(stmt).scalar_one_or_none()

    def get(self, session: Session, identity: str, *, for_update: bool = False) -> UserRecord | None:
        model = self._find(session, identity, for_update=for_update)
        if model is None:
            return None
        return self._to_domain(model)

    def upsert(self, session: Session, record: UserRecord) -> UserRecord:
        model = self._find(session, record.identity, for_update=True)
        if model is None:
            model = UserRecordModel(identity=record.identity)
            session.add(model)
        # Counters and lists only move forward, whatever the caller passed in.
        courses = dict(model.enrolled_courses or {})
        for course_id, course in record.enrolled_courses.items():
            courses.setdefault(course_id, course.model_dump(mode="json"))
        model.enrolled_courses = courses
        model.total_enrollment_count = len(courses)
        if record.sign_in_count >= (model.sign_in_count or 0):
            model.recent_sign_in_ids = list(record.recent_sign_in_ids)
        model.sign_in_count = max(model.sign_in_count or 0, record.sign_in_count)
        history = list(model.bundle_history or [])
        if len(record.bundle_history) >= len(history):
            history = list(record.bundle_history)
        model.bundle_history = history
        model.bundle_sync_pending = record.bundle_sync_pending
        model.last_updated = datetime.now(timezone.utc)
        session.flush()
        return self._to_domain(model)

    def delete(self, session: Session, identity: str) -> bool:
        result = session.execute(
            delete(UserRecordModel).where(UserRecordModel.identity == require_identity(identity))
        )
        return bool(result.rowcount)

    def identities(self, session: Session) -> List[str]:
        stmt = select(UserRecordModel.identity).order_by(UserRecordModel.identity)
        return list(session.execute(stmt).scalars().all())

    @staticmethod
    def _to_domain(model: UserRecordModel) -> UserRecord:
        courses = {
            course_id: EnrolledCourse.model_validate(payload)
            for course_id, payload in (model.enrolled_courses or {}).items()
        }
        last_updated = model.last_updated
        if last_updated is not None and last_updated.tzinfo is None:
            last_updated = last_updated.replace(tzinfo=timezone.utc)
        return UserRecord(
            identity=model.identity,
            sign_in_count=model.sign_in_count or 0,
            enrolled_courses=courses,
            total_enrollment_count=model.total_enrollment_count or 0,
            bundle_history=list(model.bundle_history or []),
            bundle_sync_pending=bool(model.bundle_sync_pending),
            recent_sign_in_ids=list(model.recent_sign_in_ids or []),
            last_updated=last_updated or datetime.now(timezone.utc),
        )


user_records = UserRecordRepository()

__all__ = ["UserRecordRepository", "user_records"]
