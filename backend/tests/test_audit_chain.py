"""Tests for the hash-chained audit recorder."""

import uuid

import pytest
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from overtime.models.audit_entry import AuditAction, AuditEntry
from overtime.services.audit_chain import (
    AuditChainRecorder,
    canonical_json,
    compute_content_hash,
    normalize_diff,
)

TABLE = "overtime_requests"


@pytest.fixture
def recorder(db_session: Session) -> AuditChainRecorder:
    return AuditChainRecorder(db_session)


def _append_three(recorder: AuditChainRecorder, entity_id: uuid.UUID) -> list[AuditEntry]:
    entries = [
        recorder.append(TABLE, entity_id, AuditAction.CREATE, "emp-1", {"status": "submitted"}),
        recorder.append(
            TABLE,
            entity_id,
            AuditAction.ADVANCE,
            "sup-1",
            {"status": {"old": "submitted", "new": "pending"}},
        ),
        recorder.append(
            TABLE,
            entity_id,
            AuditAction.APPROVE,
            "mgr-1",
            {"status": {"old": "pending", "new": "approved"}},
        ),
    ]
    recorder.db.commit()
    return entries


class TestCanonicalJson:
    def test_key_order_does_not_matter(self):
        assert canonical_json({"b": 1, "a": 2}) == canonical_json({"a": 2, "b": 1})

    def test_compact_separators(self):
        assert canonical_json({"a": [1, 2]}) == '{"a":[1,2]}'

    def test_normalize_diff_stringifies_unknown_types(self):
        entity_id = uuid.uuid4()
        assert normalize_diff({"id": entity_id}) == {"id": str(entity_id)}

    def test_normalize_none(self):
        assert normalize_diff(None) == {}

    def test_hash_depends_on_previous_hash(self):
        first = compute_content_hash("create", "emp-1", {}, None)
        second = compute_content_hash("create", "emp-1", {}, first)
        assert first != second
        assert len(first) == 64


class TestAppend:
    def test_first_entry_starts_chain(self, recorder):
        entity_id = uuid.uuid4()
        entry = recorder.append(TABLE, entity_id, AuditAction.CREATE, "emp-1", {"x": 1})
        recorder.db.commit()

        assert entry.sequence == 1
        assert entry.previous_hash is None
        assert entry.content_hash == compute_content_hash("create", "emp-1", {"x": 1}, None)

    def test_entries_link_to_previous(self, recorder):
        entity_id = uuid.uuid4()
        entries = _append_three(recorder, entity_id)

        assert [e.sequence for e in entries] == [1, 2, 3]
        assert entries[1].previous_hash == entries[0].content_hash
        assert entries[2].previous_hash == entries[1].content_hash

    def test_chains_are_per_entity(self, recorder):
        first_id, second_id = uuid.uuid4(), uuid.uuid4()
        recorder.append(TABLE, first_id, AuditAction.CREATE, "emp-1", {})
        entry = recorder.append(TABLE, second_id, AuditAction.CREATE, "emp-1", {})
        recorder.db.commit()

        assert entry.sequence == 1
        assert entry.previous_hash is None

    def test_log_status_change_records_old_and_new(self, recorder):
        entity_id = uuid.uuid4()
        entry = recorder.log_status_change(
            TABLE, entity_id, AuditAction.CANCEL, "emp-1", "pending", "canceled", reason="x"
        )
        recorder.db.commit()

        assert entry.diff == {"status": {"old": "pending", "new": "canceled"}, "reason": "x"}

    def test_duplicate_sequence_is_rejected(self, recorder, db_session):
        entity_id = uuid.uuid4()
        head = recorder.append(TABLE, entity_id, AuditAction.CREATE, "emp-1", {})
        db_session.commit()

        # A second writer that read the same (empty) head would reuse sequence 1
        db_session.add(
            AuditEntry(
                entity_table=TABLE,
                entity_id=entity_id,
                sequence=1,
                action=AuditAction.CREATE,
                actor_id="emp-2",
                diff={},
                content_hash=head.content_hash,
            )
        )
        with pytest.raises(IntegrityError):
            db_session.commit()
        db_session.rollback()

    def test_rollback_discards_entry(self, recorder, db_session):
        entity_id = uuid.uuid4()
        recorder.append(TABLE, entity_id, AuditAction.CREATE, "emp-1", {})
        db_session.rollback()

        assert recorder.history(TABLE, entity_id) == []


class TestVerifyChain:
    def test_valid_chain(self, recorder):
        entity_id = uuid.uuid4()
        _append_three(recorder, entity_id)

        result = recorder.verify_chain(TABLE, entity_id)

        assert result.valid is True
        assert result.checked == 3
        assert result.broken_at is None

    def test_empty_chain_is_valid(self, recorder):
        result = recorder.verify_chain(TABLE, uuid.uuid4())
        assert result.valid is True
        assert result.checked == 0

    def test_tampered_diff_is_detected(self, recorder, db_session):
        entity_id = uuid.uuid4()
        entries = _append_three(recorder, entity_id)

        tampered = db_session.query(AuditEntry).filter(AuditEntry.id == entries[1].id).one()
        tampered.diff = {"status": {"old": "submitted", "new": "rejected"}}
        db_session.commit()

        result = recorder.verify_chain(TABLE, entity_id)

        assert result.valid is False
        assert result.broken_at == entries[1].id
        assert result.reason == "hash_mismatch"
        assert result.checked == 1

    def test_tampered_actor_is_detected(self, recorder, db_session):
        entity_id = uuid.uuid4()
        entries = _append_three(recorder, entity_id)

        tampered = db_session.query(AuditEntry).filter(AuditEntry.id == entries[0].id).one()
        tampered.actor_id = "intruder"
        db_session.commit()

        result = recorder.verify_chain(TABLE, entity_id)

        assert result.valid is False
        assert result.broken_at == entries[0].id

    def test_rehashed_entry_breaks_next_link(self, recorder, db_session):
        entity_id = uuid.uuid4()
        entries = _append_three(recorder, entity_id)

        # Rewrite entry 2 and recompute its own hash: entry 3 no longer links to it
        tampered = db_session.query(AuditEntry).filter(AuditEntry.id == entries[1].id).one()
        tampered.diff = {"forged": True}
        tampered.content_hash = compute_content_hash(
            str(tampered.action), tampered.actor_id, {"forged": True}, tampered.previous_hash
        )
        db_session.commit()

        result = recorder.verify_chain(TABLE, entity_id)

        assert result.valid is False
        assert result.broken_at == entries[2].id
        assert result.reason == "link_mismatch"
        assert result.checked == 2

    def test_deleted_entry_is_detected(self, recorder, db_session):
        entity_id = uuid.uuid4()
        entries = _append_three(recorder, entity_id)

        db_session.query(AuditEntry).filter(AuditEntry.id == entries[1].id).delete()
        db_session.commit()

        result = recorder.verify_chain(TABLE, entity_id)

        assert result.valid is False
        assert result.broken_at == entries[2].id
        assert result.reason == "sequence_gap"


class TestHistory:
    def test_history_in_sequence_order(self, recorder):
        entity_id = uuid.uuid4()
        _append_three(recorder, entity_id)

        history = recorder.history(TABLE, entity_id)

        assert [e.action for e in history] == ["create", "advance", "approve"]

    def test_history_pagination(self, recorder):
        entity_id = uuid.uuid4()
        _append_three(recorder, entity_id)

        page = recorder.history(TABLE, entity_id, skip=1, limit=1)

        assert len(page) == 1
        assert page[0].sequence == 2
