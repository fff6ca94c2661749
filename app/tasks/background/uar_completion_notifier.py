import asyncio

from app.celery import celery
from app.db.session import get_sync_session
from app.providers.uar_repository import SqlAlchemyUarRepository
from app.services.notifications.queue_service import NotificationQueueService
from app.utils.errors import NotFoundError
from app.utils.logging import get_logger


@celery.task(bind=True, max_retries=3, default_retry_delay=60)
def queue_uar_completion_notification_task(
    self, request_id: str, uar_id: str, username: str, role_id: str
):
    """
    Queue the UAR_COMPLETED notification for a review task after its
    approval action.

    Args:
        request_id: The request ID from the approving HTTP request
        uar_id: UAR id of the review task
        username: Username the access grant belongs to
        role_id: Role of the access grant
    """
    try:
        return asyncio.run(
            _async_queue_completion(request_id, uar_id, username, role_id)
        )
    except NotFoundError:
        raise
    except Exception as e:
        raise self.retry(exc=e)


async def _async_queue_completion(
    request_id: str, uar_id: str, username: str, role_id: str
):
    logger = get_logger(request_id, job="uar_completion_notification")

    for db_session in get_sync_session():
        service = NotificationQueueService(SqlAlchemyUarRepository(db_session), logger)
        try:
            queued = await service.queue_completion_notification(
                uar_id, username, role_id
            )
        except NotFoundError as e:
            logger.warning(f"Completion notification not queued: {e.message}")
            raise

        logger.info(
            f"Completion notification for {uar_id}{username}{role_id} "
            f"{'queued' if queued else 'skipped'}"
        )
        return {
            "success": True,
            "queued": queued,
            "request_id": request_id,
        }
