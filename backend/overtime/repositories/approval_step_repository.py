from uuid import UUID

from sqlalchemy.orm import Session

from overtime.models.approval_step import ApprovalStep


class ApprovalStepRepository:
    def __init__(self, db: Session):
        self.db = db

    def list_for_request(self, request_id: UUID, lock: bool = False) -> list[ApprovalStep]:
        query = (
            self.db.query(ApprovalStep)
            .filter(ApprovalStep.request_id == request_id, ApprovalStep.is_active.is_(True))
            .order_by(ApprovalStep.step_order)
        )
        if lock:
            query = query.with_for_update()
        return query.all()

    def add_all(self, steps: list[ApprovalStep]) -> list[ApprovalStep]:
        self.db.add_all(steps)
        self.db.flush()
        return steps

