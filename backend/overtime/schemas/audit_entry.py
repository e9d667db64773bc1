"""Pydantic schemas for AuditEntry."""

from datetime import datetime
from typing import Any
from uuid import UUID

from pydantic import BaseModel


class AuditEntryResponse(BaseModel):
    id: UUID
    entity_table: str
    entity_id: UUID
    sequence: int
    action: str
    actor_id: str | None
    diff: dict[str, Any]
    content_hash: str
    previous_hash: str | None

    model_config = {"from_attributes": True}

    performed_at: datetime | None = None


class ChainVerificationResponse(BaseModel):
    entity_table: str
    entity_id: UUID
    valid: bool
    checked: int
    broken_at: UUID | None = None
    reason: str | None = None
