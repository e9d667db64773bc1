"""Overtime request API endpoints."""

from uuid import UUID

from fastapi import APIRouter, Depends, Request, Response
from fastapi.responses import JSONResponse
from sqlalchemy.orm import Session

from overtime.core.auth import Actor, get_current_actor
from overtime.core.database import get_db
from overtime.core.idempotency import get_idempotency_key
from overtime.models.overtime_request import OvertimeRequest
from overtime.schemas.overtime_request import (
    ApprovalDecisionRequest,
    ApprovalStepResponse,
    CancelRequest,
    DecisionResponse,
    OvertimeRequestCreate,
    OvertimeRequestResponse,
    SubmitDraftRequest,
)
from overtime.services.approval_state_machine import ApprovalStateMachine
from overtime.services.request_lifecycle import RequestLifecycleService

router = APIRouter()

_ERROR_RESPONSES = {
    400: {"description": "Malformed window or reason, missing or malformed Idempotency-Key"},
    401: {"description": "Unauthorized – invalid or missing access token"},
    403: {"description": "Actor may not perform this action"},
    404: {"description": "Overtime request not found"},
    409: {"description": "Overlapping window, stale row version or closed chain"},
    422: {"description": "Business rule violation"},
}


@router.post(
    "/",
    response_model=OvertimeRequestResponse,
    status_code=201,
    summary="Submit overtime request",
    responses={
        200: {"description": "Replay of an earlier call with the same Idempotency-Key"},
        **_ERROR_RESPONSES,
    },
)
def submit_overtime_request(
    data: OvertimeRequestCreate,
    request: Request,
    db: Session = Depends(get_db),
    actor: Actor = Depends(get_current_actor),
) -> JSONResponse:
    """Submit an overtime window for approval.

    The ``Idempotency-Key`` header is required. Retries with the same key
    return the first response instead of creating a second request; a retry
    arriving while the first call is still running waits for its result.
    Declared sync so that wait runs in the threadpool.
    """
    key = get_idempotency_key(request)
    outcome = RequestLifecycleService(db).submit_idempotent(
        actor, data.start_at, data.end_at, data.reason, key
    )
    headers = {"Idempotent-Replayed": "true"} if outcome.duplicate else {}
    return JSONResponse(content=outcome.result, status_code=outcome.status_code, headers=headers)


@router.post(
    "/drafts",
    response_model=OvertimeRequestResponse,
    status_code=201,
    summary="Save overtime draft",
    responses=_ERROR_RESPONSES,
)
async def save_overtime_draft(
    data: OvertimeRequestCreate,
    db: Session = Depends(get_db),
    actor: Actor = Depends(get_current_actor),
) -> OvertimeRequest:
    """Hold a window as a draft without starting approval."""
    return RequestLifecycleService(db).save_draft(actor, data.start_at, data.end_at, data.reason)


@router.post(
    "/{request_id}/submit",
    response_model=OvertimeRequestResponse,
    summary="Submit overtime draft",
    responses=_ERROR_RESPONSES,
)
async def submit_overtime_draft(
    request_id: UUID,
    data: SubmitDraftRequest | None = None,
    db: Session = Depends(get_db),
    actor: Actor = Depends(get_current_actor),
) -> OvertimeRequest:
    return RequestLifecycleService(db).submit_draft(
        actor, request_id, data.row_version if data else None
    )


@router.get(
    "/{request_id}",
    response_model=OvertimeRequestResponse,
    summary="Get overtime request",
    responses={
        401: {"description": "Unauthorized – invalid or missing access token"},
        404: {"description": "Overtime request not found"},
    },
)
async def get_overtime_request(
    request_id: UUID,
    db: Session = Depends(get_db),
    actor: Actor = Depends(get_current_actor),
) -> OvertimeRequest:
    return RequestLifecycleService(db).get(request_id)


@router.post(
    "/{request_id}/approvals",
    response_model=DecisionResponse,
    summary="Approve or reject the active step",
    responses=_ERROR_RESPONSES,
)
async def decide_overtime_request(
    request_id: UUID,
    data: ApprovalDecisionRequest,
    db: Session = Depends(get_db),
    actor: Actor = Depends(get_current_actor),
) -> DecisionResponse:
    result = ApprovalStateMachine(db).decide(
        actor,
        request_id,
        data.step_order,
        data.decision,
        comment=data.comment,
        expected_row_version=data.row_version,
    )
    return DecisionResponse(
        request=OvertimeRequestResponse.model_validate(result.request),
        step=ApprovalStepResponse.model_validate(result.step),
        is_final=result.is_final,
    )


@router.post(
    "/{request_id}/cancel",
    response_model=OvertimeRequestResponse,
    summary="Cancel overtime request",
    responses=_ERROR_RESPONSES,
)
async def cancel_overtime_request(
    request_id: UUID,
    data: CancelRequest | None = None,
    db: Session = Depends(get_db),
    actor: Actor = Depends(get_current_actor),
) -> OvertimeRequest:
    """Withdraw a request that has not reached a final status."""
    return ApprovalStateMachine(db).cancel(
        actor,
        request_id,
        expected_row_version=data.row_version if data else None,
        reason=data.reason if data else None,
    )


@router.delete(
    "/{request_id}",
    status_code=204,
    summary="Delete overtime request",
    responses=_ERROR_RESPONSES,
)
async def delete_overtime_request(
    request_id: UUID,
    row_version: int | None = None,
    db: Session = Depends(get_db),
    actor: Actor = Depends(get_current_actor),
) -> Response:
    """Soft-delete a draft or a finished request."""
    ApprovalStateMachine(db).deactivate(actor, request_id, expected_row_version=row_version)
    return Response(status_code=204)
