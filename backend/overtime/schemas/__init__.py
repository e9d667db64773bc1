from overtime.schemas.audit_entry import AuditEntryResponse, ChainVerificationResponse
from overtime.schemas.overtime_request import (
    ApprovalDecisionRequest,
    ApprovalStepResponse,
    CancelRequest,
    DecisionResponse,
    OvertimeRequestCreate,
    OvertimeRequestResponse,
    SubmitDraftRequest,
)

__all__ = [
    "ApprovalDecisionRequest",
    "ApprovalStepResponse",
    "AuditEntryResponse",
    "CancelRequest",
    "ChainVerificationResponse",
    "DecisionResponse",
    "OvertimeRequestCreate",
    "OvertimeRequestResponse",
    "SubmitDraftRequest",
]
