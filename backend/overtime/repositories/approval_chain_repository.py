from uuid import UUID

from sqlalchemy.orm import Session

from overtime.models.approval_chain import ApprovalChain, ApprovalChainStep


class ApprovalChainRepository:
    def __init__(self, db: Session):
        self.db = db

    def get_by_department(self, department_id: UUID) -> ApprovalChain | None:
        return (
            self.db.query(ApprovalChain)
            .filter(ApprovalChain.department_id == department_id)
            .first()
        )

    def create(
        self,
        name: str,
        department_id: UUID | None,
        steps: list[dict[str, object]],
    ) -> ApprovalChain:
        chain = ApprovalChain(name=name, department_id=department_id)
        self.db.add(chain)
        self.db.flush()
        for step in steps:
            self.db.add(ApprovalChainStep(chain_id=chain.id, **step))
        self.db.commit()
        self.db.refresh(chain)
        return chain
