"""ApprovalStep model: one ordered stage of a request's approval chain."""

from dataclasses import dataclass
from enum import Enum

from sqlalchemy import (
    Boolean,
    Column,
    DateTime,
    ForeignKey,
    Index,
    Integer,
    String,
    Text,
    UniqueConstraint,
    func,
)
from sqlalchemy.orm import relationship

from overtime.core.database import Base
from overtime.models.shared import UUIDType, generate_uuid


class StepStatus(str, Enum):
    PENDING = "pending"
    APPROVED = "approved"
    REJECTED = "rejected"
    SKIPPED = "skipped"


class ApproverKind(str, Enum):
    USER = "user"
    ROLE = "role"


@dataclass(frozen=True)
class FixedApprover:
    """Step bound to one specific user."""

    user_id: str

    @property
    def kind(self) -> ApproverKind:
        return ApproverKind.USER

    @property
    def value(self) -> str:
        return self.user_id

    def matches(self, actor_id: str, role: str) -> bool:
        return actor_id == self.user_id


@dataclass(frozen=True)
class RoleApprover:
    """Step decidable by anyone holding ``role``."""

    role: str

    @property
    def kind(self) -> ApproverKind:
        return ApproverKind.ROLE

    @property
    def value(self) -> str:
        return self.role

    def matches(self, actor_id: str, role: str) -> bool:
        return role.lower() == self.role.lower()


Approver = FixedApprover | RoleApprover


def approver_from_columns(kind: str, value: str) -> Approver:
    if kind == ApproverKind.USER.value:
        return FixedApprover(user_id=value)
    if kind == ApproverKind.ROLE.value:
        return RoleApprover(role=value.lower())
    raise ValueError(f"Unknown approver kind: {kind!r}")


class ApprovalStep(Base):
    __tablename__ = "approval_steps"
    __table_args__ = (
        UniqueConstraint("request_id", "step_order", name="uq_approval_steps_request_order"),
        Index("ix_approval_steps_status_due_at", "status", "due_at"),
    )

    id = Column(UUIDType, primary_key=True, default=generate_uuid)
    request_id = Column(
        UUIDType,
        ForeignKey("overtime_requests.id", ondelete="RESTRICT"),
        nullable=False,
        index=True,
    )
    step_order = Column(Integer, nullable=False)
    approver_kind = Column(String(10), nullable=False)
    approver_value = Column(String(255), nullable=False)
    status = Column(String(20), nullable=False, default=StepStatus.PENDING.value)
    escalate_after_minutes = Column(Integer, nullable=True)
    activated_at = Column(DateTime(timezone=True), nullable=True)
    due_at = Column(DateTime(timezone=True), nullable=True)
    decided_by = Column(String(255), nullable=True)
    decision_at = Column(DateTime(timezone=True), nullable=True)
    comment = Column(Text, nullable=True)
    row_version = Column(Integer, nullable=False)
    is_active = Column(Boolean, nullable=False, default=True)
    created_at = Column(DateTime(timezone=True), server_default=func.now())

    request = relationship("OvertimeRequest", back_populates="steps")

    __mapper_args__ = {"version_id_col": row_version}

    @property
    def approver(self) -> Approver:
        return approver_from_columns(str(self.approver_kind), str(self.approver_value))

    @property
    def is_decided(self) -> bool:
        return self.status != StepStatus.PENDING.value
