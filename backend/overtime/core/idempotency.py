"""Idempotency gate for retried client calls.

A client sends the same ``Idempotency-Key`` on every retry of one logical
call. The first call inserts a placeholder record (the unique index on the key
lets exactly one caller win), runs the operation and stores its response in
the operation's own transaction. Later calls with the key get the stored
response back without the operation running again. A call arriving while the
placeholder is still in flight waits for it to complete and then replays the
result; it only gets a 409 when the wait runs out.
"""

import hashlib
import logging
import time
from collections.abc import Callable
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Any

from fastapi import Request
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.orm import Session

from overtime.core.config import settings
from overtime.core.errors import IdempotencyKeyConflict, ValidationError
from overtime.models.idempotency_record import IdempotencyRecord
from overtime.models.shared import ensure_utc, utc_now
from overtime.repositories.idempotency_repository import IdempotencyRepository
from overtime.services.audit_chain import canonical_json

logger = logging.getLogger(__name__)

IDEMPOTENCY_HEADER = "Idempotency-Key"
MAX_KEY_LENGTH = 255

POLL_INITIAL_SECONDS = 0.05
POLL_MAX_SECONDS = 0.5

# Called by the gated operation, inside its transaction, with the response body
Complete = Callable[[dict[str, Any]], None]


@dataclass
class IdempotentResult:
    """Outcome of a gated call. ``duplicate`` is True when served from the record."""

    duplicate: bool
    result: dict[str, Any]
    status_code: int = 200


def hash_request_body(payload: Any) -> str:
    return hashlib.sha256(canonical_json(payload).encode("utf-8")).hexdigest()


def get_idempotency_key(request: Request) -> str:
    """Read and sanity-check the required ``Idempotency-Key`` header."""
    key = request.headers.get(IDEMPOTENCY_HEADER)
    if key is None:
        raise ValidationError(
            f"Missing {IDEMPOTENCY_HEADER} header",
            {"header": IDEMPOTENCY_HEADER},
        )
    key = key.strip()
    if not key or len(key) > MAX_KEY_LENGTH:
        raise ValidationError(
            f"{IDEMPOTENCY_HEADER} must be 1-{MAX_KEY_LENGTH} characters",
            {"header": IDEMPOTENCY_HEADER},
        )
    return key


class IdempotencyGate:
    def __init__(self, db: Session, ttl_hours: int, wait_seconds: float | None = None):
        self.db = db
        self.repo = IdempotencyRepository(db)
        self.ttl = timedelta(hours=ttl_hours)
        if wait_seconds is None:
            wait_seconds = settings.IDEMPOTENCY_WAIT_SECONDS
        self.wait_seconds = wait_seconds

    def execute(
        self,
        key: str,
        owner_id: str,
        method: str,
        path: str,
        fn: Callable[[Complete], dict[str, Any]],
        request_hash: str | None = None,
        status_code: int = 200,
    ) -> IdempotentResult:
        """Run ``fn`` at most once for ``key``.

        ``fn`` receives a ``complete`` callback and must call it with the
        response body before committing its work, so the response and the
        mutation land in one transaction. If ``fn`` returns without calling
        it, the gate stores the returned body itself. If ``fn`` raises, the
        placeholder is released so a corrected retry can run, and the error
        propagates unchanged.
        """
        now = utc_now()
        existing = self.repo.get_by_key(key)
        if existing is not None:
            served = self._resolve(existing, owner_id, method, path, request_hash, now)
            if served is not None:
                return served

        claimed = self._claim(key, owner_id, method, path, request_hash, now)
        if isinstance(claimed, IdempotentResult):
            return claimed

        def complete(body: dict[str, Any]) -> None:
            self.repo.complete(claimed, status_code, body, utc_now())

        try:
            result = fn(complete)
        except Exception:
            self._release(claimed)
            raise

        if not claimed.is_completed:
            self.repo.complete(claimed, status_code, result, utc_now())
            self.db.commit()
        logger.info("Idempotency key %s completed for owner %s", key, owner_id)
        return IdempotentResult(duplicate=False, result=result, status_code=status_code)

    def _resolve(
        self,
        record: IdempotencyRecord,
        owner_id: str,
        method: str,
        path: str,
        request_hash: str | None,
        now: datetime,
    ) -> IdempotentResult | None:
        """Response to serve for an existing record; ``None`` when the key is free to claim."""
        expired = ensure_utc(record.expires_at) < now  # type: ignore[arg-type]
        if record.is_completed and expired:
            self._discard_expired(record, now)
            return None
        self._check_reuse(record, owner_id, method, path, request_hash)
        if record.is_completed:
            return self._replay(record)
        return self._await_completion(str(record.idempotency_key))

    @staticmethod
    def _check_reuse(
        record: IdempotencyRecord,
        owner_id: str,
        method: str,
        path: str,
        request_hash: str | None,
    ) -> None:
        if record.owner_id != owner_id:
            raise IdempotencyKeyConflict(
                "Idempotency key was issued by another caller",
                {"reason": "owner_mismatch"},
            )
        if record.request_method != method or record.request_path != path:
            raise IdempotencyKeyConflict(
                "Idempotency key was used for a different operation",
                {
                    "reason": "operation_mismatch",
                    "original_operation": f"{record.request_method} {record.request_path}",
                },
            )
        if request_hash is not None and record.request_hash not in (None, request_hash):
            raise IdempotencyKeyConflict(
                "Idempotency key was used with a different request body",
                {"reason": "payload_mismatch"},
            )

    @staticmethod
    def _replay(record: IdempotencyRecord) -> IdempotentResult:
        return IdempotentResult(
            duplicate=True,
            result=dict(record.response_body or {}),  # type: ignore[arg-type]
            status_code=int(record.response_status or 200),  # type: ignore[arg-type]
        )

    def _await_completion(self, key: str) -> IdempotentResult | None:
        """Poll an in-flight placeholder with backoff until its owner finishes.

        Returns the stored response, or ``None`` when the placeholder was
        released because the first call failed.
        """
        delay = POLL_INITIAL_SECONDS
        waited = 0.0
        while waited < self.wait_seconds:
            # End the read transaction so the owner's commit becomes visible
            self.db.rollback()
            time.sleep(delay)
            waited += delay
            delay = min(delay * 2, POLL_MAX_SECONDS)
            record = self.repo.get_by_key(key)
            if record is None:
                return None
            if record.is_completed:
                logger.info("Idempotency key %s completed after %.2fs wait", key, waited)
                return self._replay(record)
        raise IdempotencyKeyConflict(
            "A request with this idempotency key is still in progress",
            {"reason": "in_flight", "waited_seconds": round(waited, 2)},
        )

    def _discard_expired(self, record: IdempotencyRecord, now: datetime) -> None:
        # Conditional delete: a concurrent caller may already have replaced it
        self.db.query(IdempotencyRecord).filter(
            IdempotencyRecord.id == record.id,
            IdempotencyRecord.consumed_at.isnot(None),
            IdempotencyRecord.expires_at < now,
        ).delete(synchronize_session=False)
        self.db.commit()

    def _claim(
        self,
        key: str,
        owner_id: str,
        method: str,
        path: str,
        request_hash: str | None,
        now: datetime,
    ) -> IdempotencyRecord | IdempotentResult:
        try:
            record = self.repo.create(
                idempotency_key=key,
                owner_id=owner_id,
                request_method=method,
                request_path=path,
                request_hash=request_hash,
                expires_at=now + self.ttl,
            )
            self.db.commit()
            return record
        except IntegrityError:
            self.db.rollback()

        # Lost the insert race: serve or reject based on the winner's record
        winner = self.repo.get_by_key(key)
        served = None
        if winner is not None:
            served = self._resolve(winner, owner_id, method, path, request_hash, now)
        if served is None:
            raise IdempotencyKeyConflict(
                "Idempotency key is being replaced, retry the request",
                {"reason": "in_flight"},
            )
        return served

    def _release(self, record: IdempotencyRecord) -> None:
        try:
            # Drop whatever the failed operation left in the session first
            self.db.rollback()
            self.db.query(IdempotencyRecord).filter(
                IdempotencyRecord.id == record.id,
                IdempotencyRecord.consumed_at.is_(None),
            ).delete(synchronize_session=False)
            self.db.commit()
        except SQLAlchemyError:
            self.db.rollback()
            logger.exception(
                "Failed to release idempotency key %s; it stays in flight until purged",
                record.idempotency_key,
            )
