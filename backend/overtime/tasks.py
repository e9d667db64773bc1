from typing import Any

from arq import create_pool
from arq.connections import ArqRedis, RedisSettings
from arq.jobs import Job

from overtime.core.config import settings

# Redis connection settings
redis_settings = RedisSettings.from_dsn(settings.REDIS_URL)


async def get_redis_pool() -> ArqRedis:
    """Get or create Redis pool for arq"""
    return await create_pool(redis_settings)


async def enqueue_task(task_name: str, *args: Any, **kwargs: Any) -> Job:
    """
    Enqueue a task to the arq worker.

    Args:
        task_name: Name of the task function
        *args: Positional arguments for the task
        **kwargs: Keyword arguments for the task

    Returns:
        Job object from arq
    """
    pool = await get_redis_pool()
    try:
        job = await pool.enqueue_job(task_name, *args, **kwargs)
        return job  # type: ignore[return-value]
    finally:
        await pool.close()


# ===== Maintenance sweeps (normally run by cron, enqueue for an immediate pass) =====
async def enqueue_expire_drafts() -> Job:
    return await enqueue_task("expire_drafts_task")


async def enqueue_escalate_stalled_approvals() -> Job:
    return await enqueue_task("escalate_stalled_approvals_task")


async def enqueue_purge_idempotency_records() -> Job:
    return await enqueue_task("purge_idempotency_records_task")
