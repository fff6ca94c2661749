from typing import Any, Dict

from app.schemas.notification_schemas import NotificationCandidateCreate
from app.services.notifications.queue_service import NotificationQueueService
from app.services.notifications.reminder import next_reminder_code
from app.tasks.context import WorkerContext


async def run_uar_daily_reminder(context: WorkerContext) -> Dict[str, Any]:
    """
    Queue the next reminder for every System-Owner task still pending
    after 1 to 7 days.
    """
    log = context.log
    log.info("Running Daily UAR Reminder Worker...")

    rows = await context.repository.list_pending_reminder_rows(
        context.clock.today(), context.clock.zone
    )
    log.info(f"Found {len(rows)} pending tasks to check for reminders.")

    queue = NotificationQueueService(context.repository, log)
    reminders_queued = 0
    failed = 0

    for row in rows:
        try:
            code = next_reminder_code(row.days_pending, row.last_reminder_code)
            if code is None:
                continue

            if not row.approver_noreg:
                log.warning(
                    f"No approver found for APPLICATION_ID: {row.application_id}. "
                    f"Skipping {code} for {row.request_id}."
                )
                continue

            inserted = await queue.queue_notification(
                NotificationCandidateCreate(
                    request_id=row.request_id,
                    item_code=code,
                    approver_id=row.approver_noreg,
                    due_date=None,
                ),
                check_duplicates=True,
            )
            if inserted:
                reminders_queued += 1
        except Exception as e:
            log.opt(exception=e).error(
                f"Failed to queue reminder for {row.request_id}. Continuing..."
            )
            failed += 1

    log.info(f"Queued {reminders_queued} new reminders.")

    return {
        "success": failed == 0,
        "checked": len(rows),
        "reminders_queued": reminders_queued,
        "failed": failed,
    }
