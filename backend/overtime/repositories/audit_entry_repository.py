"""Repository for AuditEntry rows."""

from __future__ import annotations

from typing import Any
from uuid import UUID

from sqlalchemy.orm import Session

from overtime.models.audit_entry import AuditEntry
from overtime.models.shared import generate_uuid


class AuditEntryRepository:
    def __init__(self, db: Session):
        self.db = db

    def create(
        self,
        *,
        entity_table: str,
        entity_id: UUID,
        sequence: int,
        action: str,
        actor_id: str | None,
        diff: dict[str, Any],
        content_hash: str,
        previous_hash: str | None,
    ) -> AuditEntry:
        entry = AuditEntry(
            id=generate_uuid(),
            entity_table=entity_table,
            entity_id=entity_id,
            sequence=sequence,
            action=action,
            actor_id=actor_id,
            diff=diff,
            content_hash=content_hash,
            previous_hash=previous_hash,
        )
        self.db.add(entry)
        self.db.flush()
        return entry

    def get_head(self, entity_table: str, entity_id: UUID) -> AuditEntry | None:
        """Most recent entry of an entity's chain, by sequence."""
        return (
            self.db.query(AuditEntry)
            .filter(AuditEntry.entity_table == entity_table, AuditEntry.entity_id == entity_id)
            .order_by(AuditEntry.sequence.desc())
            .first()
        )

    def get_chain(
        self,
        entity_table: str,
        entity_id: UUID,
        skip: int = 0,
        limit: int | None = None,
    ) -> list[AuditEntry]:
        query = (
            self.db.query(AuditEntry)
            .filter(AuditEntry.entity_table == entity_table, AuditEntry.entity_id == entity_id)
            .order_by(AuditEntry.sequence.asc())
            .offset(skip)
        )
        if limit is not None:
            query = query.limit(limit)
        return query.all()
