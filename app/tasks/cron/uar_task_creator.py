from typing import Any, Dict, List, Optional, Tuple

from app.db.models import (
    AccessMapping,
    ApprovalStatus,
    Employee,
    UarSystemOwnerTask,
)
from app.models.uar_models import EligibleApplication
from app.services.notifications.queue_service import NotificationQueueService
from app.services.notifications.reminder import build_uar_id
from app.tasks.context import WorkerContext

SYSTEM_USER = "system.UarSOWorker"


async def run_uar_task_creation(context: WorkerContext) -> Dict[str, Any]:
    """
    Turn pending access mappings of today's scheduled applications into
    System-Owner review tasks.

    A failure for one application is logged and the loop moves on. A failure
    to list the eligible applications propagates to the caller.
    """
    log = context.log
    log.info("Checking for UAR schedule jobs...")

    applications = await context.repository.list_eligible_applications(
        context.clock.today()
    )
    log.info(f"Found {len(applications)} running schedules.")

    queue = NotificationQueueService(context.repository, log)
    tasks_created = 0
    notifications_queued = 0
    failed_applications: List[str] = []

    for application in applications:
        try:
            created, queued = await create_tasks_for_application(
                context, application, queue
            )
            tasks_created += created
            notifications_queued += queued
        except Exception as e:
            log.opt(exception=e).error(
                f"Failed to process schedule {application.application_id}. Continuing..."
            )
            failed_applications.append(application.application_id)

    log.info(
        f"Processed {tasks_created} total UAR System Owner tasks "
        f"for {len(applications)} applications"
    )

    return {
        "success": not failed_applications,
        "applications": len(applications),
        "tasks_created": tasks_created,
        "notifications_queued": notifications_queued,
        "failed_applications": failed_applications,
    }


async def create_tasks_for_application(
    context: WorkerContext,
    application: EligibleApplication,
    queue: NotificationQueueService,
) -> Tuple[int, int]:
    """Returns (tasks created, UAR_CREATED notifications queued)."""
    repository = context.repository
    log = context.log
    application_id = application.application_id

    mappings = await repository.list_pending_access_mappings(application_id)
    if not mappings:
        log.debug(f"No pending access mappings found for {application_id}.")
        return 0, 0

    today = context.clock.today()
    noregs = sorted({mapping.noreg for mapping in mappings if mapping.noreg})
    employees = await repository.find_employees_by_noreg(noregs, as_of=today)

    uar_period = today.strftime("%Y%m")
    uar_id = build_uar_id(uar_period, application_id)
    created_at = context.clock.naive_utc_now()

    seen_keys = await repository.find_existing_task_keys(uar_id, application_id)
    tasks: List[UarSystemOwnerTask] = []
    for mapping in mappings:
        key = (mapping.username, mapping.role_id)
        if key in seen_keys:
            log.debug(
                f"Task {uar_id}/{mapping.username}/{mapping.role_id} already exists, skipping"
            )
            continue
        seen_keys.add(key)
        employee = employees.get(mapping.noreg) if mapping.noreg else None
        tasks.append(_build_review_task(mapping, employee, uar_period, uar_id, created_at))

    # Tasks and the mapping flip land together; only the rows read above are flipped
    with repository.transaction():
        inserted = await repository.insert_review_tasks(tasks)
        consumed = await repository.mark_mappings_consumed(
            application_id,
            [mapping.id for mapping in mappings],
            changed_by=SYSTEM_USER,
            changed_at=created_at,
        )

    log.info(
        f"Created {inserted} new UAR tasks for {application_id} "
        f"({consumed} mappings consumed)."
    )

    queued = 0
    if inserted:
        queued = await queue.trigger_initial_notifications(tasks)

    return inserted, queued


def _build_review_task(
    mapping: AccessMapping,
    employee: Optional[Employee],
    uar_period: str,
    uar_id: str,
    created_at,
) -> UarSystemOwnerTask:
    full_name = " ".join(
        part for part in (mapping.first_name, mapping.last_name) if part
    )
    return UarSystemOwnerTask(
        uar_period=uar_period,
        uar_id=uar_id,
        username=mapping.username,
        noreg=mapping.noreg,
        name=full_name or None,
        position_name=employee.position_name if employee else None,
        division_id=employee.division_id if employee else None,
        department_id=employee.department_id if employee else None,
        section_id=employee.section_id if employee else None,
        company_cd=mapping.company_cd,
        application_id=mapping.application_id,
        role_id=mapping.role_id,
        reviewer_noreg=None,
        reviewer_name=None,
        review_status=None,
        so_approval_status=ApprovalStatus.PENDING,
        created_by=SYSTEM_USER,
        created_at=created_at,
    )
