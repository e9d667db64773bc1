"""AuditEntry model: hash-chained, append-only record of entity state changes."""

from sqlalchemy import JSON, Column, DateTime, Index, Integer, String, UniqueConstraint, func

from overtime.core.database import Base
from overtime.models.shared import UUIDType, generate_uuid


class AuditAction:
    CREATE = "create"
    APPROVE = "approve"
    REJECT = "reject"
    ADVANCE = "advance"
    CANCEL = "cancel"
    SUBMIT = "submit"
    DEACTIVATE = "deactivate"
    EXPIRE = "expire"
    ESCALATE = "escalate"
    ACTIVATE = "activate"


class AuditEntry(Base):
    """AuditEntry model.

    ``sequence`` orders entries of one entity. The unique constraint on
    (entity_table, entity_id, sequence) rejects a second writer that read the
    same chain head, so the chain can never fork.
    """

    __tablename__ = "audit_entries"
    __table_args__ = (
        UniqueConstraint(
            "entity_table", "entity_id", "sequence", name="uq_audit_entries_entity_sequence"
        ),
        Index("ix_audit_entries_entity", "entity_table", "entity_id"),
    )

    id = Column(UUIDType, primary_key=True, default=generate_uuid)
    entity_table = Column(String(50), nullable=False)
    entity_id = Column(UUIDType, nullable=False)
    sequence = Column(Integer, nullable=False)
    action = Column(String(50), nullable=False, index=True)
    actor_id = Column(String(255), nullable=True)
    performed_at = Column(DateTime(timezone=True), server_default=func.now())
    diff = Column(JSON, nullable=False, default=dict)
    content_hash = Column(String(64), nullable=False)
    previous_hash = Column(String(64), nullable=True)
