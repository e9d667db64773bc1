from sqlalchemy import JSON, Column, DateTime, String, func

from overtime.core.database import Base
from overtime.models.shared import UUIDType, generate_uuid


class PolicyConfig(Base):
    __tablename__ = "policy_configs"

    id = Column(UUIDType, primary_key=True, default=generate_uuid)
    key = Column(String(100), nullable=False, unique=True, index=True)
    value = Column(JSON, nullable=False)
    effective_from = Column(DateTime(timezone=True), server_default=func.now())
    created_at = Column(DateTime(timezone=True), server_default=func.now())
    updated_at = Column(DateTime(timezone=True), server_default=func.now(), onupdate=func.now())
