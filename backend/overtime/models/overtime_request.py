"""OvertimeRequest model: one overtime window claimed by one employee."""

from enum import Enum

from sqlalchemy import (
    DDL,
    Boolean,
    CheckConstraint,
    Column,
    DateTime,
    Float,
    Index,
    Integer,
    String,
    Text,
    event,
    func,
)
from sqlalchemy.orm import relationship

from overtime.core.database import Base
from overtime.models.shared import UUIDType, generate_uuid


class RequestStatus(str, Enum):
    DRAFT = "draft"
    SUBMITTED = "submitted"
    PENDING = "pending"
    APPROVED = "approved"
    REJECTED = "rejected"
    EXPIRED = "expired"
    CANCELED = "canceled"


TERMINAL_STATUSES = frozenset(
    {
        RequestStatus.APPROVED.value,
        RequestStatus.REJECTED.value,
        RequestStatus.EXPIRED.value,
        RequestStatus.CANCELED.value,
    }
)

# Terminal statuses that give the window back to the owner
RELEASED_STATUSES = (
    RequestStatus.REJECTED.value,
    RequestStatus.CANCELED.value,
    RequestStatus.EXPIRED.value,
)

# Statuses that hold a window and count against daily/weekly caps
LIVE_STATUSES = (
    RequestStatus.DRAFT.value,
    RequestStatus.SUBMITTED.value,
    RequestStatus.PENDING.value,
    RequestStatus.APPROVED.value,
)

OVERLAP_CONSTRAINT_NAME = "ex_overtime_requests_owner_window"


class OvertimeRequest(Base):
    """OvertimeRequest model.

    ``row_version`` is the SQLAlchemy version counter: every UPDATE bumps it by
    one and is guarded by ``WHERE row_version = <loaded value>``, so a lost
    update surfaces as ``StaleDataError`` instead of silently overwriting.
    """

    __tablename__ = "overtime_requests"
    __table_args__ = (
        CheckConstraint("end_at > start_at", name="ck_overtime_requests_window"),
        Index("ix_overtime_requests_owner_window", "owner_id", "start_at", "end_at"),
        Index("ix_overtime_requests_owner_status", "owner_id", "status"),
    )

    id = Column(UUIDType, primary_key=True, default=generate_uuid)
    owner_id = Column(String(255), nullable=False, index=True)
    department_id = Column(UUIDType, nullable=True, index=True)
    start_at = Column(DateTime(timezone=True), nullable=False)
    end_at = Column(DateTime(timezone=True), nullable=False)
    duration_minutes = Column(Integer, nullable=False)
    reason = Column(Text, nullable=True)
    status = Column(String(20), nullable=False, default=RequestStatus.DRAFT.value, index=True)
    current_level = Column(Integer, nullable=False, default=0)
    max_level = Column(Integer, nullable=False, default=0)
    # Pay rate applied to the window: night shift or holiday, holiday wins
    is_night_shift = Column(Boolean, nullable=False, default=False)
    is_holiday = Column(Boolean, nullable=False, default=False)
    pay_multiplier = Column(Float, nullable=False, default=1.0)
    row_version = Column(Integer, nullable=False)
    is_active = Column(Boolean, nullable=False, default=True)
    submitted_at = Column(DateTime(timezone=True), nullable=True)
    created_by = Column(String(255), nullable=True)
    created_at = Column(DateTime(timezone=True), server_default=func.now(), index=True)
    updated_at = Column(DateTime(timezone=True), server_default=func.now(), onupdate=func.now())
    deleted_at = Column(DateTime(timezone=True), nullable=True)

    steps = relationship(
        "ApprovalStep",
        back_populates="request",
        order_by="ApprovalStep.step_order",
        lazy="selectin",
    )

    __mapper_args__ = {"version_id_col": row_version}

    @property
    def is_terminal(self) -> bool:
        return str(self.status) in TERMINAL_STATUSES


# The store-level overlap guard. Exclusion constraints are PostgreSQL-only;
# other dialects rely on the locked pre-check in the interval store.
event.listen(
    OvertimeRequest.__table__,
    "before_create",
    DDL("CREATE EXTENSION IF NOT EXISTS btree_gist").execute_if(dialect="postgresql"),
)
event.listen(
    OvertimeRequest.__table__,
    "after_create",
    DDL(
        f"ALTER TABLE overtime_requests ADD CONSTRAINT {OVERLAP_CONSTRAINT_NAME} "
        "EXCLUDE USING gist (owner_id WITH =, tstzrange(start_at, end_at, '[]') WITH &&) "
        "WHERE (is_active AND status NOT IN ('rejected', 'canceled', 'expired'))"
    ).execute_if(dialect="postgresql"),
)
