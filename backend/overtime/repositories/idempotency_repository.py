"""Repository for IdempotencyRecord rows."""

from datetime import datetime
from typing import Any

from sqlalchemy.orm import Session

from overtime.models.idempotency_record import IdempotencyRecord
from overtime.models.shared import generate_uuid


class IdempotencyRepository:
    def __init__(self, db: Session):
        self.db = db

    def get_by_key(self, idempotency_key: str) -> IdempotencyRecord | None:
        return (
            self.db.query(IdempotencyRecord)
            .filter(IdempotencyRecord.idempotency_key == idempotency_key)
            .first()
        )

    def create(
        self,
        *,
        idempotency_key: str,
        owner_id: str,
        request_method: str,
        request_path: str,
        expires_at: datetime,
        request_hash: str | None = None,
    ) -> IdempotencyRecord:
        record = IdempotencyRecord(
            id=generate_uuid(),
            idempotency_key=idempotency_key,
            owner_id=owner_id,
            request_method=request_method,
            request_path=request_path,
            request_hash=request_hash,
            expires_at=expires_at,
        )
        self.db.add(record)
        self.db.flush()
        return record

    def complete(
        self,
        record: IdempotencyRecord,
        response_status: int,
        response_body: dict[str, Any],
        consumed_at: datetime,
    ) -> IdempotencyRecord:
        record.response_status = response_status  # type: ignore[assignment]
        record.response_body = response_body  # type: ignore[assignment]
        record.consumed_at = consumed_at  # type: ignore[assignment]
        self.db.flush()
        return record

    def delete(self, record: IdempotencyRecord) -> None:
        self.db.delete(record)
        self.db.flush()

    def lock_expired(self, now: datetime, limit: int) -> list[IdempotencyRecord]:
        """Records past their TTL, completed or abandoned.

        The TTL is hours while a gated call is bounded by the transaction
        timeout, so a placeholder still unfinished at expiry belongs to a
        call that died after claiming the key.
        """
        return (
            self.db.query(IdempotencyRecord)
            .filter(IdempotencyRecord.expires_at < now)
            .order_by(IdempotencyRecord.expires_at)
            .limit(limit)
            .with_for_update(skip_locked=True)
            .all()
        )
