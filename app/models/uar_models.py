from datetime import date, datetime
from typing import Optional
from pydantic import BaseModel


class EligibleApplication(BaseModel):
    application_id: str
    application_name: Optional[str] = None
    noreg_system_owner: Optional[str] = None
    schedule_id: int


class SyncSchedule(BaseModel):
    id: int
    application_id: str
    schedule_sync_start_dt: date
    schedule_sync_end_dt: date


class PendingReminderRow(BaseModel):
    """A pending review task together with what the reminder driver needs to escalate it."""

    task_id: int
    uar_id: str
    username: str
    role_id: str
    application_id: str
    created_at: datetime
    days_pending: int
    approver_noreg: Optional[str] = None
    last_reminder_code: Optional[str] = None

    @property
    def request_id(self) -> str:
        return f"{self.uar_id}{self.username}{self.role_id}"


class RecipientContact(BaseModel):
    email: Optional[str] = None
    teams_id: Optional[str] = None
    name: Optional[str] = None


class WorkflowResponse(BaseModel):
    ok: bool
    status: int
    body: str = ""
