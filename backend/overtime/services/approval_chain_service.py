"""Resolve which approval chain a new request gets."""

import logging
from dataclasses import dataclass
from uuid import UUID

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from overtime.core.config import settings
from overtime.core.errors import OvertimeError
from overtime.models.approval_chain import ApprovalChain
from overtime.models.approval_step import Approver, RoleApprover, approver_from_columns
from overtime.repositories.approval_chain_repository import ApprovalChainRepository

logger = logging.getLogger(__name__)


class ChainSource:
    DEPARTMENT = "department"
    DEFAULT = "default"


@dataclass(frozen=True)
class StepTemplate:
    step_order: int
    approver: Approver
    escalate_after_minutes: int | None = None


@dataclass(frozen=True)
class ResolvedChain:
    steps: tuple[StepTemplate, ...]
    source: str
    fallback_reason: str | None = None


class ApprovalChainService:
    """Looks up a department's chain and falls back to the fixed default.

    The fallback is deterministic: whenever the department has no chain, the
    chain has no steps, a step template is malformed, or the lookup itself
    fails, the request gets ``settings.DEFAULT_APPROVAL_ROLES`` as role-bound
    steps in order. The reason is returned so callers can record it.
    """

    def __init__(self, db: Session):
        self.db = db
        self.repo = ApprovalChainRepository(db)

    @staticmethod
    def default_chain(reason: str) -> ResolvedChain:
        roles = settings.default_approval_roles
        if not roles:
            # A chain without steps could never be decided or escalated
            raise OvertimeError(
                "No default approval roles are configured",
                {"setting": "DEFAULT_APPROVAL_ROLES"},
                code="CONFIGURATION_ERROR",
            )
        steps = tuple(
            StepTemplate(step_order=index, approver=RoleApprover(role=role))
            for index, role in enumerate(roles, start=1)
        )
        return ResolvedChain(steps=steps, source=ChainSource.DEFAULT, fallback_reason=reason)

    @staticmethod
    def _templates(chain: ApprovalChain) -> tuple[StepTemplate, ...]:
        ordered = sorted(chain.steps, key=lambda s: int(s.step_order))
        # Renumber so the request's steps are always 1..N
        return tuple(
            StepTemplate(
                step_order=index,
                approver=approver_from_columns(str(step.approver_kind), str(step.approver_value)),
                escalate_after_minutes=step.escalate_after_minutes,  # type: ignore[arg-type]
            )
            for index, step in enumerate(ordered, start=1)
        )

    def resolve(self, department_id: UUID | None) -> ResolvedChain:
        if department_id is None:
            return self.default_chain("no_department")

        # A failed lookup must not poison the caller's transaction
        try:
            with self.db.begin_nested():
                chain = self.repo.get_by_department(department_id)
                templates = self._templates(chain) if chain is not None else ()
        except SQLAlchemyError:
            logger.exception(
                "Approval chain lookup failed for department %s, using default chain",
                department_id,
            )
            return self.default_chain("lookup_failed")
        except ValueError as exc:
            logger.warning(
                "Approval chain for department %s is malformed (%s), using default chain",
                department_id,
                exc,
            )
            return self.default_chain("invalid_chain")

        if chain is None:
            return self.default_chain("no_chain")
        if not templates:
            logger.warning("Approval chain %s has no steps, using default chain", chain.id)
            return self.default_chain("empty_chain")
        return ResolvedChain(steps=templates, source=ChainSource.DEPARTMENT)
