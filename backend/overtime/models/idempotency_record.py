"""IdempotencyRecord model for at-most-once execution of retried calls."""

from sqlalchemy import JSON, Column, DateTime, Integer, String, func

from overtime.core.database import Base
from overtime.models.shared import UUIDType, generate_uuid


class IdempotencyRecord(Base):
    """Stores the outcome of an operation keyed by a client-supplied token.

    A row with ``consumed_at`` unset is a placeholder for a call still in
    flight. The unique index on ``idempotency_key`` is what lets exactly one
    caller insert the placeholder.
    """

    __tablename__ = "idempotency_records"

    id = Column(UUIDType, primary_key=True, default=generate_uuid)
    idempotency_key = Column(String(255), nullable=False, unique=True, index=True)
    owner_id = Column(String(255), nullable=False, index=True)
    request_method = Column(String(10), nullable=False)
    request_path = Column(String(500), nullable=False)
    request_hash = Column(String(64), nullable=True)
    response_status = Column(Integer, nullable=True)
    response_body = Column(JSON, nullable=True)
    created_at = Column(DateTime(timezone=True), server_default=func.now())
    consumed_at = Column(DateTime(timezone=True), nullable=True)
    expires_at = Column(DateTime(timezone=True), nullable=False, index=True)

    @property
    def is_completed(self) -> bool:
        return self.consumed_at is not None
