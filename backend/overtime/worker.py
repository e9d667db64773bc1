import logging
from typing import Any

from arq import cron

from overtime.core.database import SessionLocal
from overtime.services.maintenance_sweeper import MaintenanceSweeper
from overtime.tasks import redis_settings

logger = logging.getLogger(__name__)


async def expire_drafts_task(ctx: dict[str, Any]) -> dict[str, int]:
    """Background task: expire drafts older than the draft expiration policy.

    Runs hourly.
    """
    db = SessionLocal()
    try:
        result = MaintenanceSweeper(db).expire_drafts()
        if result.processed > 0:
            logger.info("Expired %d stale drafts", result.processed)
        return result.to_dict()
    finally:
        db.close()


async def escalate_stalled_approvals_task(ctx: dict[str, Any]) -> dict[str, int]:
    """Background task: skip approval steps whose escalation deadline passed.

    The next step in the chain becomes active; a request with no steps left
    expires. Runs every 5 minutes.
    """
    db = SessionLocal()
    try:
        result = MaintenanceSweeper(db).escalate_stalled_steps()
        if result.processed > 0:
            logger.info("Escalated %d stalled approval steps", result.processed)
        return result.to_dict()
    finally:
        db.close()


async def purge_idempotency_records_task(ctx: dict[str, Any]) -> dict[str, int]:
    """Background task: delete completed idempotency records past their TTL."""
    db = SessionLocal()
    try:
        result = MaintenanceSweeper(db).purge_idempotency_records()
        if result.processed > 0:
            logger.info("Purged %d idempotency records", result.processed)
        return result.to_dict()
    finally:
        db.close()


class WorkerSettings:
    functions = [
        expire_drafts_task,
        escalate_stalled_approvals_task,
        purge_idempotency_records_task,
    ]
    cron_jobs = [
        cron(expire_drafts_task, minute={0}),  # hourly
        cron(
            escalate_stalled_approvals_task,
            minute={0, 5, 10, 15, 20, 25, 30, 35, 40, 45, 50, 55},
        ),
        cron(purge_idempotency_records_task, minute={30}),  # hourly, offset from drafts
    ]
    redis_settings = redis_settings
