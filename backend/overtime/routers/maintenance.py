"""Admin triggers for the maintenance sweeps.

The sweeps run on the worker's cron schedule; these endpoints enqueue an
immediate pass.
"""

from collections.abc import Awaitable, Callable

from arq.jobs import Job
from fastapi import APIRouter, Depends

from overtime.core.auth import Actor, get_current_actor
from overtime.core.config import settings
from overtime.core.errors import AuthorizationError, NotFoundError
from overtime.tasks import (
    enqueue_escalate_stalled_approvals,
    enqueue_expire_drafts,
    enqueue_purge_idempotency_records,
)

router = APIRouter()

SWEEPS: dict[str, Callable[[], Awaitable[Job]]] = {
    "expire-drafts": enqueue_expire_drafts,
    "escalate-approvals": enqueue_escalate_stalled_approvals,
    "purge-idempotency-records": enqueue_purge_idempotency_records,
}


def require_maintenance_role(actor: Actor = Depends(get_current_actor)) -> Actor:
    if actor.role != settings.MAINTENANCE_ROLE.lower():
        raise AuthorizationError(
            "Maintenance sweeps are restricted",
            {"required_role": settings.MAINTENANCE_ROLE},
        )
    return actor


@router.post(
    "/{sweep}",
    status_code=202,
    summary="Enqueue maintenance sweep",
    description="Enqueue an immediate pass of one maintenance sweep.",
    responses={
        401: {"description": "Unauthorized – invalid or missing access token"},
        403: {"description": "Actor may not trigger maintenance sweeps"},
        404: {"description": "Unknown sweep"},
    },
)
async def enqueue_sweep(
    sweep: str,
    actor: Actor = Depends(require_maintenance_role),
) -> dict[str, str]:
    enqueue = SWEEPS.get(sweep)
    if enqueue is None:
        raise NotFoundError("Maintenance sweep", {"sweep": sweep, "available": sorted(SWEEPS)})
    job = await enqueue()
    return {"job_id": job.job_id, "sweep": sweep}
