"""Hash-chained audit trail for overtime requests and approval steps.

Each entity (``entity_table``, ``entity_id``) has its own chain. An entry's
``content_hash`` is the SHA-256 of the canonical JSON of
``{action, actor, diff, previous_hash}`` and its ``previous_hash`` is the
``content_hash`` of the entry before it, so rewriting any stored entry breaks
every link after it.

The recorder only flushes. It must be called inside the transaction that
performs the audited change: a rollback removes the entry together with the
change, and the head read happens under the same snapshot as the write.
"""

import hashlib
import json
import logging
from dataclasses import dataclass
from typing import Any
from uuid import UUID

from sqlalchemy.orm import Session

from overtime.models.audit_entry import AuditEntry
from overtime.repositories.audit_entry_repository import AuditEntryRepository

logger = logging.getLogger(__name__)


def canonical_json(payload: Any) -> str:
    return json.dumps(
        payload, sort_keys=True, separators=(",", ":"), default=str, ensure_ascii=False
    )


def normalize_diff(diff: dict[str, Any] | None) -> dict[str, Any]:
    """Round-trip through canonical JSON so the stored diff hashes the same after reload."""
    return json.loads(canonical_json(diff or {}))  # type: ignore[no-any-return]


def compute_content_hash(
    action: str,
    actor_id: str | None,
    diff: dict[str, Any],
    previous_hash: str | None,
) -> str:
    payload = {
        "action": action,
        "actor": actor_id,
        "diff": diff,
        "previous_hash": previous_hash,
    }
    return hashlib.sha256(canonical_json(payload).encode("utf-8")).hexdigest()


@dataclass
class ChainVerification:
    valid: bool
    checked: int
    broken_at: UUID | None = None
    reason: str | None = None


class AuditChainRecorder:
    """Appends and verifies hash-chained audit entries."""

    def __init__(self, db: Session):
        self.db = db
        self.repo = AuditEntryRepository(db)

    def append(
        self,
        entity_table: str,
        entity_id: UUID,
        action: str,
        actor_id: str | None,
        diff: dict[str, Any] | None = None,
    ) -> AuditEntry:
        head = self.repo.get_head(entity_table, entity_id)
        previous_hash = str(head.content_hash) if head is not None else None
        sequence = int(head.sequence) + 1 if head is not None else 1
        normalized = normalize_diff(diff)
        content_hash = compute_content_hash(action, actor_id, normalized, previous_hash)
        return self.repo.create(
            entity_table=entity_table,
            entity_id=entity_id,
            sequence=sequence,
            action=action,
            actor_id=actor_id,
            diff=normalized,
            content_hash=content_hash,
            previous_hash=previous_hash,
        )

    def log_status_change(
        self,
        entity_table: str,
        entity_id: UUID,
        action: str,
        actor_id: str | None,
        old_status: str,
        new_status: str,
        **extra: Any,
    ) -> AuditEntry:
        diff: dict[str, Any] = {"status": {"old": old_status, "new": new_status}}
        diff.update(extra)
        return self.append(entity_table, entity_id, action, actor_id, diff)

    def history(
        self, entity_table: str, entity_id: UUID, skip: int = 0, limit: int = 100
    ) -> list[AuditEntry]:
        return self.repo.get_chain(entity_table, entity_id, skip=skip, limit=limit)

    def verify_chain(self, entity_table: str, entity_id: UUID) -> ChainVerification:
        """Walk the chain in sequence order and check every hash and link."""
        previous_hash: str | None = None
        checked = 0
        for expected_sequence, entry in enumerate(
            self.repo.get_chain(entity_table, entity_id), start=1
        ):
            entry_id = UUID(str(entry.id))
            if int(entry.sequence) != expected_sequence:
                return self._broken(entity_table, entity_id, entry_id, checked, "sequence_gap")
            if entry.previous_hash != previous_hash:
                return self._broken(entity_table, entity_id, entry_id, checked, "link_mismatch")
            recomputed = compute_content_hash(
                str(entry.action),
                entry.actor_id,  # type: ignore[arg-type]
                entry.diff,  # type: ignore[arg-type]
                entry.previous_hash,  # type: ignore[arg-type]
            )
            if recomputed != entry.content_hash:
                return self._broken(entity_table, entity_id, entry_id, checked, "hash_mismatch")
            previous_hash = str(entry.content_hash)
            checked += 1
        return ChainVerification(valid=True, checked=checked)

    @staticmethod
    def _broken(
        entity_table: str, entity_id: UUID, entry_id: UUID, checked: int, reason: str
    ) -> ChainVerification:
        logger.warning(
            "Audit chain for %s/%s broken at entry %s (%s)",
            entity_table,
            entity_id,
            entry_id,
            reason,
        )
        return ChainVerification(valid=False, checked=checked, broken_at=entry_id, reason=reason)
