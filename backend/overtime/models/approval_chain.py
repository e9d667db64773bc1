"""Department approval chain templates."""

from sqlalchemy import Column, DateTime, ForeignKey, Integer, String, UniqueConstraint, func
from sqlalchemy.orm import relationship

from overtime.core.database import Base
from overtime.models.shared import UUIDType, generate_uuid


class ApprovalChain(Base):
    __tablename__ = "approval_chains"

    id = Column(UUIDType, primary_key=True, default=generate_uuid)
    department_id = Column(UUIDType, nullable=True, unique=True, index=True)
    name = Column(String(255), nullable=False)
    created_at = Column(DateTime(timezone=True), server_default=func.now())

    steps = relationship(
        "ApprovalChainStep",
        back_populates="chain",
        order_by="ApprovalChainStep.step_order",
        lazy="selectin",
    )


class ApprovalChainStep(Base):
    __tablename__ = "approval_chain_steps"
    __table_args__ = (
        UniqueConstraint("chain_id", "step_order", name="uq_approval_chain_steps_order"),
    )

    id = Column(UUIDType, primary_key=True, default=generate_uuid)
    chain_id = Column(
        UUIDType,
        ForeignKey("approval_chains.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    step_order = Column(Integer, nullable=False)
    approver_kind = Column(String(10), nullable=False)
    approver_value = Column(String(255), nullable=False)
    escalate_after_minutes = Column(Integer, nullable=True)

    chain = relationship("ApprovalChain", back_populates="steps")
