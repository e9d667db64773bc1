"""AttendanceLog model: clock-in/clock-out records fed by the time clock."""

from sqlalchemy import JSON, Boolean, Column, DateTime, Index, String, func

from overtime.core.database import Base
from overtime.models.shared import UUIDType, generate_uuid


class AttendanceLog(Base):
    """One shift as recorded by an attendance source.

    Only ``verified`` rows count as evidence for overtime. An open shift has
    no ``check_out`` yet.
    """

    __tablename__ = "attendance_logs"
    __table_args__ = (Index("ix_attendance_logs_owner_check_in", "owner_id", "check_in"),)

    id = Column(UUIDType, primary_key=True, default=generate_uuid)
    owner_id = Column(String(255), nullable=False)
    check_in = Column(DateTime(timezone=True), nullable=False)
    check_out = Column(DateTime(timezone=True), nullable=True)
    source = Column(String(50), nullable=False)
    verified = Column(Boolean, nullable=False, default=False)
    metadata_ = Column("metadata", JSON, nullable=True)
    created_at = Column(DateTime(timezone=True), server_default=func.now())
