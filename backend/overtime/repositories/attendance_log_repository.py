from datetime import datetime
from typing import Any

from sqlalchemy import or_
from sqlalchemy.orm import Session

from overtime.models.attendance_log import AttendanceLog


class AttendanceLogRepository:
    def __init__(self, db: Session):
        self.db = db

    def create(
        self,
        owner_id: str,
        check_in: datetime,
        check_out: datetime | None,
        source: str,
        verified: bool = False,
        metadata: dict[str, Any] | None = None,
    ) -> AttendanceLog:
        log = AttendanceLog(
            owner_id=owner_id,
            check_in=check_in,
            check_out=check_out,
            source=source,
            verified=verified,
            metadata_=metadata,
        )
        self.db.add(log)
        self.db.flush()
        return log

    def has_verified_overlap(self, owner_id: str, start_at: datetime, end_at: datetime) -> bool:
        """Whether a verified shift of ``owner_id`` intersects [start_at, end_at]."""
        return (
            self.db.query(AttendanceLog.id)
            .filter(
                AttendanceLog.owner_id == owner_id,
                AttendanceLog.verified.is_(True),
                AttendanceLog.check_in <= end_at,
                or_(AttendanceLog.check_out.is_(None), AttendanceLog.check_out >= start_at),
            )
            .first()
            is not None
        )
