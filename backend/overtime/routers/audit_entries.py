"""Audit trail API endpoints."""

from uuid import UUID

from fastapi import APIRouter, Depends, Query
from sqlalchemy.orm import Session

from overtime.core.auth import Actor, get_current_actor
from overtime.core.database import get_db
from overtime.core.errors import NotFoundError
from overtime.models.audit_entry import AuditEntry
from overtime.schemas.audit_entry import AuditEntryResponse, ChainVerificationResponse
from overtime.services.approval_state_machine import REQUESTS_TABLE, STEPS_TABLE
from overtime.services.audit_chain import AuditChainRecorder

router = APIRouter()

AUDITED_TABLES = (REQUESTS_TABLE, STEPS_TABLE)


def _check_table(entity_table: str) -> None:
    if entity_table not in AUDITED_TABLES:
        raise NotFoundError("Audited table", {"entity_table": entity_table})


@router.get(
    "/{entity_table}/{entity_id}",
    response_model=list[AuditEntryResponse],
    summary="List audit entries for an entity",
    responses={
        401: {"description": "Unauthorized – invalid or missing access token"},
        404: {"description": "Unknown audited table"},
    },
)
async def list_audit_entries(
    entity_table: str,
    entity_id: UUID,
    skip: int = Query(default=0, ge=0),
    limit: int = Query(default=100, ge=1, le=1000),
    db: Session = Depends(get_db),
    actor: Actor = Depends(get_current_actor),
) -> list[AuditEntry]:
    """Entries of one entity's chain, oldest first."""
    _check_table(entity_table)
    return AuditChainRecorder(db).history(entity_table, entity_id, skip=skip, limit=limit)


@router.get(
    "/{entity_table}/{entity_id}/verify",
    response_model=ChainVerificationResponse,
    summary="Verify an entity's audit chain",
    responses={
        401: {"description": "Unauthorized – invalid or missing access token"},
        404: {"description": "Unknown audited table"},
    },
)
async def verify_audit_chain(
    entity_table: str,
    entity_id: UUID,
    db: Session = Depends(get_db),
    actor: Actor = Depends(get_current_actor),
) -> ChainVerificationResponse:
    """Recompute every hash and link of the chain."""
    _check_table(entity_table)
    verification = AuditChainRecorder(db).verify_chain(entity_table, entity_id)
    return ChainVerificationResponse(
        entity_table=entity_table,
        entity_id=entity_id,
        valid=verification.valid,
        checked=verification.checked,
        broken_at=verification.broken_at,
        reason=verification.reason,
    )
