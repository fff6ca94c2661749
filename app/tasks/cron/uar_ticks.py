import asyncio
import json
import threading
from typing import Any, Awaitable, Callable, Dict, Optional

from app.celery import celery
from app.tasks.context import PicStagingArea, WorkerContext, worker_context
from app.tasks.cron.notification_pusher import run_notification_pusher
from app.tasks.cron.uar_daily_reminder import run_uar_daily_reminder
from app.tasks.cron.uar_pic_sync import run_uar_pic_sync
from app.tasks.cron.uar_task_creator import run_uar_task_creation
from app.tasks.scheduler import OUTCOME_FAILED, Cadence, TickScheduler
from app.utils.context import get_request_id, new_tick_id, set_request_id
from app.utils.logging import get_logger

Worker = Callable[[WorkerContext], Awaitable[Dict[str, Any]]]


def with_worker_context(
    worker: Worker,
    job: str,
    staging: Optional[PicStagingArea] = None,
    context_factory=worker_context,
) -> Callable[[], Awaitable[Dict[str, Any]]]:
    """
    Adapt a worker into a zero-argument tick handler.

    Each invocation gets its own WorkerContext (and database session) and
    reports its outcome on the monitoring side channel.
    """

    async def handler() -> Dict[str, Any]:
        request_id = get_request_id() or new_tick_id(job)
        with context_factory(request_id, job, staging=staging) as context:
            try:
                result = await worker(context)
            except Exception as e:
                context.monitor.emit(job, "FAILED", f"{job} failed: {str(e)}")
                raise
            else:
                context.monitor.emit(
                    job,
                    "SUCCESS" if result.get("success", True) else "PARTIAL",
                    f"{job} completed",
                    json.dumps(result, default=str),
                )
            finally:
                await context.monitor.drain()
        return result

    handler.__name__ = job
    return handler


def build_uar_scheduler(context_factory=worker_context) -> TickScheduler:
    scheduler = TickScheduler()
    staging = PicStagingArea()

    scheduler.on_tick(
        Cadence.MINUTE,
        with_worker_context(run_uar_task_creation, "uar_task_creation", context_factory=context_factory),
        name="uar_task_creation",
    )
    scheduler.on_tick(
        Cadence.MINUTE,
        with_worker_context(run_uar_pic_sync, "uar_pic_sync", staging=staging, context_factory=context_factory),
        name="uar_pic_sync",
    )
    scheduler.on_tick(
        Cadence.MINUTE,
        with_worker_context(run_notification_pusher, "notification_pusher", context_factory=context_factory),
        name="notification_pusher",
    )
    scheduler.on_tick(
        Cadence.DAILY,
        with_worker_context(run_uar_daily_reminder, "uar_daily_reminder", context_factory=context_factory),
        name="uar_daily_reminder",
    )
    return scheduler


_scheduler: Optional[TickScheduler] = None
_scheduler_lock = threading.Lock()


def get_uar_scheduler() -> TickScheduler:
    """The worker process's scheduler; its overlap guard spans every tick this process runs."""
    global _scheduler
    # Tick threads may ask for it at the same time on a fresh worker
    with _scheduler_lock:
        if _scheduler is None:
            _scheduler = build_uar_scheduler()
        return _scheduler


@celery.task(bind=True)
def uar_minute_tick_task(self, request_id: str):
    """
    Minute tick: task creation, UAR PIC sync and notification dispatch.

    Args:
        request_id: Request ID prefix from the beat entry
    """
    return asyncio.run(_async_fire_tick(Cadence.MINUTE, request_id))


@celery.task(bind=True)
def uar_daily_tick_task(self, request_id: str):
    """
    Daily tick: reminder escalation for pending System-Owner tasks.

    Args:
        request_id: Request ID prefix from the beat entry
    """
    return asyncio.run(_async_fire_tick(Cadence.DAILY, request_id))


async def _async_fire_tick(cadence: Cadence, request_id: str) -> Dict[str, Any]:
    tick_id = new_tick_id(request_id)
    set_request_id(tick_id)
    logger = get_logger(tick_id)

    logger.info(f"Firing {cadence.value} tick")
    outcomes = await get_uar_scheduler().fire(cadence)
    logger.info(f"{cadence.value} tick finished: {outcomes}")

    return {
        "success": OUTCOME_FAILED not in outcomes.values(),
        "cadence": cadence.value,
        "outcomes": outcomes,
        "request_id": tick_id,
    }
