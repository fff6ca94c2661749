from typing import Annotated, Optional
from fastapi import APIRouter, Depends, Request, Query
from sqlalchemy.orm import Session

from app.db.models import CandidateStatus
from app.db.session import get_sync_session
from app.providers.uar_repository import SqlAlchemyUarRepository
from app.schemas.notification_schemas import (
    NotificationCandidateResponse,
    RequeueCandidatesRequest,
)
from app.services.notifications.queue_service import NotificationQueueService
from app.utils.responses import ResponseBuilder
from app.utils.logging import get_logger

notifications_router = APIRouter()
logger = get_logger()


@notifications_router.get("")
async def list_notification_candidates(
    request: Request,
    db: Annotated[Session, Depends(get_sync_session)],
    status: Optional[CandidateStatus] = Query(
        default=None, description="Only candidates in this status"
    ),
    page: int = Query(default=1, ge=1, description="Page number"),
    per_page: int = Query(default=20, ge=1, le=100, description="Items per page"),
):
    """
    List notification candidates, newest first.

    Operators use this to find FAILED candidates before requeueing them.
    """
    repository = SqlAlchemyUarRepository(db)
    candidates, total = await repository.list_candidates(status, page, per_page)

    data = [
        NotificationCandidateResponse.model_validate(candidate).model_dump(by_alias=True)
        for candidate in candidates
    ]

    return ResponseBuilder.paginated(
        request=request,
        data=data,
        page=page,
        per_page=per_page,
        total=total,
        message=f"Retrieved {len(data)} notification candidates",
    )


@notifications_router.post("/requeue")
async def requeue_notification_candidates(
    request: Request,
    body: RequeueCandidatesRequest,
    db: Annotated[Session, Depends(get_sync_session)],
):
    """
    Move FAILED candidates back to PENDING so the dispatch worker sends them again.

    Ids that are not FAILED are ignored.
    """
    service = NotificationQueueService(SqlAlchemyUarRepository(db), logger)
    requeued = await service.requeue_failed_candidates(body.ids)

    return ResponseBuilder.success(
        request=request,
        data={"requested": len(set(body.ids)), "requeued": requeued},
        message=f"Requeued {requeued} notification candidates",
    )
