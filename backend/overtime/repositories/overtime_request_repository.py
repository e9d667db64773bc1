from datetime import datetime
from uuid import UUID

from sqlalchemy import func
from sqlalchemy.orm import Query, Session

from overtime.models.approval_step import ApprovalStep, StepStatus
from overtime.models.overtime_request import LIVE_STATUSES, OvertimeRequest, RequestStatus


class OvertimeRequestRepository:
    """Data access for overtime requests.

    Methods only flush; the calling service owns the transaction.
    """

    def __init__(self, db: Session):
        self.db = db

    def get_by_id(self, request_id: UUID) -> OvertimeRequest | None:
        return self.db.query(OvertimeRequest).filter(OvertimeRequest.id == request_id).first()

    def get_for_update(self, request_id: UUID, skip_locked: bool = False) -> OvertimeRequest | None:
        """Load and row-lock a request.

        With ``skip_locked`` a row held by another transaction comes back as
        ``None`` instead of blocking.
        """
        return (
            self.db.query(OvertimeRequest)
            .filter(OvertimeRequest.id == request_id)
            .with_for_update(skip_locked=skip_locked)
            .first()
        )

    def lock_overlapping(
        self,
        owner_id: str,
        start_at: datetime,
        end_at: datetime,
        exclude_id: UUID | None = None,
    ) -> list[OvertimeRequest]:
        """Lock live requests of ``owner_id`` whose window intersects [start_at, end_at].

        Closed-interval test: windows that only touch at an endpoint overlap.
        Rows locked by other transactions are skipped, not waited on.
        """
        query = self.db.query(OvertimeRequest).filter(
            OvertimeRequest.owner_id == owner_id,
            OvertimeRequest.is_active.is_(True),
            OvertimeRequest.status.in_(LIVE_STATUSES),
            OvertimeRequest.start_at <= end_at,
            OvertimeRequest.end_at >= start_at,
        )
        if exclude_id is not None:
            query = query.filter(OvertimeRequest.id != exclude_id)
        return query.order_by(OvertimeRequest.start_at).with_for_update(skip_locked=True).all()

    def sum_live_minutes(
        self,
        owner_id: str,
        range_start: datetime,
        range_end: datetime,
        exclude_id: UUID | None = None,
    ) -> int:
        """Total minutes of live requests whose start falls in [range_start, range_end)."""
        query = self.db.query(func.coalesce(func.sum(OvertimeRequest.duration_minutes), 0)).filter(
            OvertimeRequest.owner_id == owner_id,
            OvertimeRequest.is_active.is_(True),
            OvertimeRequest.status.in_(LIVE_STATUSES),
            OvertimeRequest.start_at >= range_start,
            OvertimeRequest.start_at < range_end,
        )
        if exclude_id is not None:
            query = query.filter(OvertimeRequest.id != exclude_id)
        return int(query.scalar() or 0)

    def add(self, request: OvertimeRequest) -> OvertimeRequest:
        self.db.add(request)
        self.db.flush()
        return request

    def lock_stale_drafts(self, created_before: datetime, limit: int) -> list[OvertimeRequest]:
        return (
            self.db.query(OvertimeRequest)
            .filter(
                OvertimeRequest.status == RequestStatus.DRAFT.value,
                OvertimeRequest.is_active.is_(True),
                OvertimeRequest.created_at < created_before,
            )
            .order_by(OvertimeRequest.created_at)
            .limit(limit)
            .with_for_update(skip_locked=True)
            .all()
        )

    def overdue_approvals_query(self, now: datetime) -> Query:
        """Requests whose active step passed ``due_at``, locked request rows first.

        Only the request rows are locked here (``FOR UPDATE OF overtime_requests
        SKIP LOCKED``); callers lock the steps afterwards, the same order user
        decisions take, so a sweep never holds a step a decision is waiting on.
        """
        return (
            self.db.query(OvertimeRequest)
            .join(ApprovalStep, ApprovalStep.request_id == OvertimeRequest.id)
            .filter(
                OvertimeRequest.is_active.is_(True),
                OvertimeRequest.status.in_(
                    (RequestStatus.SUBMITTED.value, RequestStatus.PENDING.value)
                ),
                ApprovalStep.is_active.is_(True),
                ApprovalStep.status == StepStatus.PENDING.value,
                ApprovalStep.due_at.isnot(None),
                ApprovalStep.due_at < now,
            )
            .order_by(ApprovalStep.due_at)
            .with_for_update(of=OvertimeRequest, skip_locked=True)
        )

    def lock_with_overdue_step(self, now: datetime, limit: int) -> list[OvertimeRequest]:
        return self.overdue_approvals_query(now).limit(limit).all()
