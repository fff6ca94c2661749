from collections import defaultdict
from typing import Dict, List, Optional, Sequence

from app.db.models import UarSystemOwnerTask
from app.providers.uar_repository import UarRepository
from app.schemas.notification_schemas import NotificationCandidateCreate
from app.services.notifications.reminder import (
    ITEM_CODE_COMPLETED,
    ITEM_CODE_CREATED,
    build_request_id,
)
from app.utils.errors import NotFoundError
from app.utils.logging import get_logger


class NotificationQueueService:
    """Writes notification candidates for the dispatch worker to pick up."""

    def __init__(self, repository: UarRepository, log=None):
        self.repository = repository
        self.log = log or get_logger()

    async def queue_notification(
        self, candidate: NotificationCandidateCreate, check_duplicates: bool = True
    ) -> bool:
        """
        Queue one notification as a PENDING candidate.

        With ``check_duplicates`` the call is a no-op when the same
        (request_id, item_code) was already sent, or is still waiting in
        the queue.

        Returns:
            True when a candidate was inserted
        """
        with self.repository.transaction():
            if check_duplicates:
                sent = await self.repository.find_notification_history(
                    candidate.request_id, candidate.item_code
                )
                if sent is not None:
                    self.log.warning(
                        f"Notification already sent for {candidate.request_id} "
                        f"with code {candidate.item_code}. Skipping."
                    )
                    return False

                queued = await self.repository.find_open_candidate(
                    candidate.request_id, candidate.item_code
                )
                if queued is not None:
                    self.log.warning(
                        f"Notification for {candidate.request_id} with code "
                        f"{candidate.item_code} is already queued (candidate {queued.id}). Skipping."
                    )
                    return False

            await self.repository.insert_notification_candidate(candidate)

        self.log.debug(f"Queued {candidate.item_code} for {candidate.request_id}")
        return True

    async def trigger_initial_notifications(
        self, tasks: Sequence[UarSystemOwnerTask]
    ) -> int:
        """Queue one UAR_CREATED per new task, addressed to its application's System Owner."""
        if not tasks:
            return 0

        self.log.info(f"Triggering initial notifications for {len(tasks)} tasks...")

        tasks_by_application: Dict[str, List[UarSystemOwnerTask]] = defaultdict(list)
        for task in tasks:
            if task.application_id:
                tasks_by_application[task.application_id].append(task)

        owners = await self.repository.find_system_owners(list(tasks_by_application))

        queued = 0
        for application_id, application_tasks in tasks_by_application.items():
            approver_noreg = owners.get(application_id)
            if not approver_noreg:
                self.log.warning(
                    f"No approver found for APPLICATION_ID: {application_id}. "
                    f"Skipping {len(application_tasks)} notification(s)."
                )
                continue

            for task in application_tasks:
                inserted = await self.queue_notification(
                    NotificationCandidateCreate(
                        request_id=build_request_id(task.uar_id, task.username, task.role_id),
                        item_code=ITEM_CODE_CREATED,
                        approver_id=approver_noreg,
                        due_date=None,
                    ),
                    check_duplicates=True,
                )
                if inserted:
                    queued += 1

        return queued

    async def queue_completion_notification(
        self, uar_id: str, username: str, role_id: str
    ) -> bool:
        """
        Queue UAR_COMPLETED for a review task once it has been approved or rejected.

        Completion is a one-shot event raised by the approval action, so it
        is queued without the duplicate check.
        """
        task = await self.repository.find_review_task(uar_id, username, role_id)
        if task is None:
            raise NotFoundError(
                f"Review task not found for {uar_id}/{username}/{role_id}",
                error_code="UAR_TASK_NOT_FOUND",
            )

        owners = await self.repository.find_system_owners([task.application_id])
        approver_noreg: Optional[str] = owners.get(task.application_id) or task.so_approval_by
        if not approver_noreg:
            self.log.warning(
                f"No approver found for APPLICATION_ID: {task.application_id}. "
                "Skipping completion notification."
            )
            return False

        return await self.queue_notification(
            NotificationCandidateCreate(
                request_id=build_request_id(uar_id, username, role_id),
                item_code=ITEM_CODE_COMPLETED,
                approver_id=approver_noreg,
                due_date=None,
            ),
            check_duplicates=False,
        )

    async def requeue_failed_candidates(self, ids: Sequence[int]) -> int:
        """Move FAILED candidates back to PENDING; other statuses are left untouched."""
        with self.repository.transaction():
            requeued = await self.repository.requeue_failed_candidates(ids)

        self.log.info(f"Requeued {requeued} of {len(ids)} requested candidates")
        return requeued
