from datetime import datetime
from typing import List, Optional

from pydantic import Field

from app.db.models import CandidateStatus
from app.schemas.camel_base_model import CamelCaseBaseModel


class NotificationCandidateCreate(CamelCaseBaseModel):
    """A notification waiting to be queued."""

    request_id: str = Field(..., max_length=100)
    item_code: str = Field(..., max_length=50)
    approver_id: str = Field(..., max_length=50)
    due_date: Optional[datetime] = None
    link_detail: Optional[str] = None


class WorkflowPayload(CamelCaseBaseModel):
    """Body posted to the external workflow endpoint."""

    recipient_email: str
    recipient_teams_id: Optional[str] = None
    cc_email: str = ""
    email_subject: str = ""
    email_body_code: str = ""
    teams_subject: str = ""
    teams_body_code: str = ""
    item_code: str
    request_id: str
    due_date: str = "null"
    task_count: int = 1


class NotificationCandidateResponse(CamelCaseBaseModel):
    id: int
    request_id: str
    item_code: str
    approver_id: str
    due_date: Optional[datetime] = None
    link_detail: Optional[str] = None
    status: CandidateStatus
    attempts: int = 0
    next_attempt_at: Optional[datetime] = None
    last_error: Optional[str] = None
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None


class RequeueCandidatesRequest(CamelCaseBaseModel):
    ids: List[int] = Field(..., min_length=1, max_length=500)
