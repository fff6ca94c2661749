from abc import ABC, abstractmethod
from contextlib import contextmanager
from datetime import date, datetime, timedelta
from typing import Dict, Iterator, List, Optional, Sequence, Set, Tuple
from zoneinfo import ZoneInfo

from sqlalchemy import select, update, func, or_
from sqlalchemy.orm import Session

from app.db.models import (
    AccessMapping,
    Application,
    ApprovalStatus,
    BatchRunReport,
    CandidateStatus,
    Employee,
    NotificationCandidate,
    NotificationHistory,
    NotificationTemplate,
    ScheduleStatus,
    SystemConfig,
    TemplateChannel,
    UarPic,
    UarProcessStatus,
    UarSchedule,
    UarSystemOwnerTask,
)
from app.models.uar_models import (
    EligibleApplication,
    PendingReminderRow,
    RecipientContact,
    SyncSchedule,
)
from app.schemas.notification_schemas import NotificationCandidateCreate
from app.services.notifications.reminder import REMINDER_PREFIX, MAX_REMINDER_DAY
from app.utils.datetime_utils import (
    in_day_window,
    local_date_of,
    local_midnight_as_naive_utc,
    naive_utc_now,
)

# Item codes routed to the division PIC directory instead of the employee directory
PIC_ITEM_CODE_PREFIX = "PIC_"

# Keeps IN (...) lists under the SQL Server parameter limit
IN_CLAUSE_CHUNK = 500


def _chunks(values: Sequence, size: int = IN_CLAUSE_CHUNK) -> Iterator[Sequence]:
    for start in range(0, len(values), size):
        yield values[start : start + size]


class UarRepository(ABC):
    """Persistence operations the UAR batch workers depend on."""

    @contextmanager
    @abstractmethod
    def transaction(self):
        """Unit of work: commit on success, roll back and re-raise on error."""

    # Schedules
    @abstractmethod
    async def list_eligible_applications(self, today: date) -> List[EligibleApplication]: ...

    @abstractmethod
    async def list_eligible_sync_schedules(self, today: date) -> List[SyncSchedule]: ...

    # Access mappings and review tasks
    @abstractmethod
    async def list_pending_access_mappings(self, application_id: str) -> List[AccessMapping]: ...

    @abstractmethod
    async def mark_mappings_consumed(
        self,
        application_id: str,
        mapping_ids: Optional[Sequence[int]] = None,
        changed_by: Optional[str] = None,
        changed_at: Optional[datetime] = None,
    ) -> int: ...

    @abstractmethod
    async def find_employees_by_noreg(
        self, noregs: Sequence[str], as_of: date
    ) -> Dict[str, Employee]: ...

    @abstractmethod
    async def find_existing_task_keys(
        self, uar_id: str, application_id: str
    ) -> Set[Tuple[str, str]]: ...

    @abstractmethod
    async def insert_review_tasks(self, tasks: Sequence[UarSystemOwnerTask]) -> int: ...

    @abstractmethod
    async def find_system_owners(
        self, application_ids: Sequence[str]
    ) -> Dict[str, Optional[str]]: ...

    @abstractmethod
    async def find_review_task(
        self, uar_id: str, username: str, role_id: str
    ) -> Optional[UarSystemOwnerTask]: ...

    @abstractmethod
    async def list_pending_reminder_rows(
        self, today: date, zone: ZoneInfo
    ) -> List[PendingReminderRow]: ...

    # Notification queue
    @abstractmethod
    async def find_notification_history(
        self, request_id: str, item_code: str
    ) -> Optional[NotificationHistory]: ...

    @abstractmethod
    async def find_open_candidate(
        self, request_id: str, item_code: str
    ) -> Optional[NotificationCandidate]: ...

    @abstractmethod
    async def insert_notification_candidate(
        self, candidate: NotificationCandidateCreate
    ) -> NotificationCandidate: ...

    @abstractmethod
    async def claim_pending_candidates(
        self, batch_size: int, now: datetime
    ) -> List[NotificationCandidate]: ...

    @abstractmethod
    async def resolve_recipient(
        self, item_code: str, approver_id: str, as_of: date
    ) -> Optional[RecipientContact]: ...

    @abstractmethod
    async def resolve_template(
        self, item_code: str, locale: str, channel: TemplateChannel
    ) -> Optional[NotificationTemplate]: ...

    @abstractmethod
    async def get_system_config(
        self, system_type: str, system_cd: str, as_of: date
    ) -> Optional[str]: ...

    @abstractmethod
    async def insert_notification_history(self, row: NotificationHistory) -> None: ...

    @abstractmethod
    async def set_candidate_status(
        self,
        candidate_id: int,
        status: CandidateStatus,
        attempts: Optional[int] = None,
        next_attempt_at: Optional[datetime] = None,
        last_error: Optional[str] = None,
    ) -> None: ...

    @abstractmethod
    async def list_candidates(
        self, status: Optional[CandidateStatus], page: int, per_page: int
    ) -> Tuple[List[NotificationCandidate], int]: ...

    @abstractmethod
    async def requeue_failed_candidates(self, ids: Sequence[int]) -> int: ...

    # UAR PIC directory
    @abstractmethod
    async def list_existing_pic_ids(self, ids: Sequence[int]) -> Set[int]: ...

    @abstractmethod
    async def insert_uar_pics(self, pics: Sequence[UarPic]) -> int: ...

    # Monitoring
    @abstractmethod
    async def insert_batch_report(self, report: BatchRunReport) -> None: ...


class SqlAlchemyUarRepository(UarRepository):
    """
    UarRepository over a synchronous SQLAlchemy session.

    Write methods only flush; callers group them with ``transaction()`` so
    related writes commit or roll back together.
    """

    def __init__(self, db_session: Session):
        self.db = db_session
        self._in_transaction = False

    @contextmanager
    def transaction(self):
        # Nested use joins the outer unit of work
        if self._in_transaction:
            yield self
            return

        self._in_transaction = True
        try:
            yield self
            self.db.commit()
        except Exception:
            self.db.rollback()
            raise
        finally:
            self._in_transaction = False

    # Schedules

    async def list_eligible_applications(self, today: date) -> List[EligibleApplication]:
        result = self.db.execute(
            select(UarSchedule, Application)
            .join(Application, Application.application_id == UarSchedule.application_id)
            .where(
                UarSchedule.schedule_uar_dt == today,
                UarSchedule.schedule_status == ScheduleStatus.ACTIVE,
                Application.is_active.is_(True),
            )
            .order_by(UarSchedule.id)
        )

        eligible: Dict[str, EligibleApplication] = {}
        for schedule, application in result.all():
            if application.application_id in eligible:
                continue
            eligible[application.application_id] = EligibleApplication(
                application_id=application.application_id,
                application_name=application.application_name,
                noreg_system_owner=application.noreg_system_owner,
                schedule_id=schedule.id,
            )
        return list(eligible.values())

    async def list_eligible_sync_schedules(self, today: date) -> List[SyncSchedule]:
        result = self.db.execute(
            select(UarSchedule)
            .where(UarSchedule.schedule_status == ScheduleStatus.ACTIVE)
            .order_by(UarSchedule.id)
        )
        return [
            SyncSchedule(
                id=schedule.id,
                application_id=schedule.application_id,
                schedule_sync_start_dt=schedule.schedule_sync_start_dt,
                schedule_sync_end_dt=schedule.schedule_sync_end_dt,
            )
            for schedule in result.scalars().all()
            if in_day_window(
                today, schedule.schedule_sync_start_dt, schedule.schedule_sync_end_dt
            )
        ]

    # Access mappings and review tasks

    async def list_pending_access_mappings(self, application_id: str) -> List[AccessMapping]:
        result = self.db.execute(
            select(AccessMapping)
            .where(
                AccessMapping.application_id == application_id,
                AccessMapping.uar_process_status == UarProcessStatus.PENDING,
            )
            .order_by(AccessMapping.id)
        )
        return list(result.scalars().all())

    async def mark_mappings_consumed(
        self,
        application_id: str,
        mapping_ids: Optional[Sequence[int]] = None,
        changed_by: Optional[str] = None,
        changed_at: Optional[datetime] = None,
    ) -> int:
        values = {
            "uar_process_status": UarProcessStatus.CONSUMED,
            "changed_by": changed_by,
            "changed_at": changed_at or naive_utc_now(),
        }
        base = update(AccessMapping).where(
            AccessMapping.application_id == application_id,
            AccessMapping.uar_process_status == UarProcessStatus.PENDING,
        )

        if mapping_ids is None:
            result = self.db.execute(
                base.values(**values).execution_options(synchronize_session=False)
            )
            return result.rowcount

        updated = 0
        for chunk in _chunks(list(mapping_ids)):
            result = self.db.execute(
                base.where(AccessMapping.id.in_(chunk))
                .values(**values)
                .execution_options(synchronize_session=False)
            )
            updated += result.rowcount
        return updated

    async def find_employees_by_noreg(
        self, noregs: Sequence[str], as_of: date
    ) -> Dict[str, Employee]:
        employees: Dict[str, Employee] = {}
        for chunk in _chunks(sorted(set(noregs))):
            result = self.db.execute(
                select(Employee)
                .where(
                    Employee.noreg.in_(chunk),
                    Employee.valid_from <= as_of,
                    Employee.valid_to >= as_of,
                )
                .order_by(Employee.noreg, Employee.valid_to.desc(), Employee.id.desc())
            )
            for employee in result.scalars().all():
                # Latest valid_to wins
                employees.setdefault(employee.noreg, employee)
        return employees

    async def find_existing_task_keys(
        self, uar_id: str, application_id: str
    ) -> Set[Tuple[str, str]]:
        result = self.db.execute(
            select(UarSystemOwnerTask.username, UarSystemOwnerTask.role_id).where(
                UarSystemOwnerTask.uar_id == uar_id,
                UarSystemOwnerTask.application_id == application_id,
            )
        )
        return {(username, role_id) for username, role_id in result.all()}

    async def insert_review_tasks(self, tasks: Sequence[UarSystemOwnerTask]) -> int:
        if not tasks:
            return 0
        self.db.add_all(tasks)
        self.db.flush()
        return len(tasks)

    async def find_system_owners(
        self, application_ids: Sequence[str]
    ) -> Dict[str, Optional[str]]:
        owners: Dict[str, Optional[str]] = {}
        for chunk in _chunks(sorted(set(application_ids))):
            result = self.db.execute(
                select(Application.application_id, Application.noreg_system_owner).where(
                    Application.application_id.in_(chunk)
                )
            )
            owners.update({app_id: owner for app_id, owner in result.all()})
        return owners

    async def find_review_task(
        self, uar_id: str, username: str, role_id: str
    ) -> Optional[UarSystemOwnerTask]:
        result = self.db.execute(
            select(UarSystemOwnerTask)
            .where(
                UarSystemOwnerTask.uar_id == uar_id,
                UarSystemOwnerTask.username == username,
                UarSystemOwnerTask.role_id == role_id,
            )
            .order_by(UarSystemOwnerTask.id)
        )
        return result.scalars().first()

    async def list_pending_reminder_rows(
        self, today: date, zone: ZoneInfo
    ) -> List[PendingReminderRow]:
        """
        Pending System-Owner tasks aged 1..7 business days, each with its
        application's owner and the latest reminder already sent for it.
        """
        window_start = local_midnight_as_naive_utc(
            today - timedelta(days=MAX_REMINDER_DAY), zone
        )
        window_end = local_midnight_as_naive_utc(today, zone)

        result = self.db.execute(
            select(UarSystemOwnerTask, Application.noreg_system_owner)
            .outerjoin(
                Application,
                Application.application_id == UarSystemOwnerTask.application_id,
            )
            .where(
                UarSystemOwnerTask.so_approval_status == ApprovalStatus.PENDING,
                UarSystemOwnerTask.created_at >= window_start,
                UarSystemOwnerTask.created_at < window_end,
            )
            .order_by(UarSystemOwnerTask.id)
        )

        rows: List[PendingReminderRow] = []
        for task, owner in result.all():
            rows.append(
                PendingReminderRow(
                    task_id=task.id,
                    uar_id=task.uar_id,
                    username=task.username,
                    role_id=task.role_id,
                    application_id=task.application_id,
                    created_at=task.created_at,
                    days_pending=(today - local_date_of(task.created_at, zone)).days,
                    approver_noreg=owner,
                )
            )

        last_codes = await self._latest_reminder_codes([row.request_id for row in rows])
        for row in rows:
            row.last_reminder_code = last_codes.get(row.request_id)
        return rows

    async def _latest_reminder_codes(self, request_ids: Sequence[str]) -> Dict[str, str]:
        latest: Dict[str, str] = {}
        for chunk in _chunks(sorted(set(request_ids))):
            result = self.db.execute(
                select(NotificationHistory.request_id, NotificationHistory.item_code)
                .where(
                    NotificationHistory.request_id.in_(chunk),
                    NotificationHistory.item_code.like(f"{REMINDER_PREFIX}%"),
                )
                .order_by(NotificationHistory.sent_at.desc(), NotificationHistory.id.desc())
            )
            for request_id, item_code in result.all():
                latest.setdefault(request_id, item_code)
        return latest

    # Notification queue

    async def find_notification_history(
        self, request_id: str, item_code: str
    ) -> Optional[NotificationHistory]:
        result = self.db.execute(
            select(NotificationHistory)
            .where(
                NotificationHistory.request_id == request_id,
                NotificationHistory.item_code == item_code,
            )
            .limit(1)
        )
        return result.scalars().first()

    async def find_open_candidate(
        self, request_id: str, item_code: str
    ) -> Optional[NotificationCandidate]:
        result = self.db.execute(
            select(NotificationCandidate)
            .where(
                NotificationCandidate.request_id == request_id,
                NotificationCandidate.item_code == item_code,
                NotificationCandidate.status.in_(
                    [CandidateStatus.PENDING, CandidateStatus.PROCESSING]
                ),
            )
            .limit(1)
        )
        return result.scalars().first()

    async def insert_notification_candidate(
        self, candidate: NotificationCandidateCreate
    ) -> NotificationCandidate:
        row = NotificationCandidate(
            request_id=candidate.request_id,
            item_code=candidate.item_code,
            approver_id=candidate.approver_id,
            due_date=candidate.due_date,
            link_detail=candidate.link_detail,
            status=CandidateStatus.PENDING,
            attempts=0,
        )
        self.db.add(row)
        self.db.flush()
        return row

    async def claim_pending_candidates(
        self, batch_size: int, now: datetime
    ) -> List[NotificationCandidate]:
        """
        Flip up to ``batch_size`` due PENDING candidates to PROCESSING.

        Each row is flipped with its own ``WHERE status = PENDING`` update, so
        a row taken by an overlapping run in between is not returned here.
        """
        result = self.db.execute(
            select(NotificationCandidate.id)
            .where(
                NotificationCandidate.status == CandidateStatus.PENDING,
                or_(
                    NotificationCandidate.next_attempt_at.is_(None),
                    NotificationCandidate.next_attempt_at <= now,
                ),
            )
            .order_by(NotificationCandidate.created_at, NotificationCandidate.id)
            .limit(batch_size)
        )
        candidate_ids = list(result.scalars().all())

        claimed_ids = []
        for candidate_id in candidate_ids:
            flipped = self.db.execute(
                update(NotificationCandidate)
                .where(
                    NotificationCandidate.id == candidate_id,
                    NotificationCandidate.status == CandidateStatus.PENDING,
                )
                .values(status=CandidateStatus.PROCESSING, updated_at=now)
                .execution_options(synchronize_session=False)
            )
            if flipped.rowcount == 1:
                claimed_ids.append(candidate_id)

        if not claimed_ids:
            return []

        claimed = self.db.execute(
            select(NotificationCandidate)
            .where(NotificationCandidate.id.in_(claimed_ids))
            .order_by(NotificationCandidate.created_at, NotificationCandidate.id)
            .execution_options(populate_existing=True)
        )
        return list(claimed.scalars().all())

    async def resolve_recipient(
        self, item_code: str, approver_id: str, as_of: date
    ) -> Optional[RecipientContact]:
        if item_code.startswith(PIC_ITEM_CODE_PREFIX):
            try:
                division_id = int(approver_id)
            except (TypeError, ValueError):
                return None
            result = self.db.execute(
                select(UarPic)
                .where(UarPic.division_id == division_id)
                .order_by(UarPic.id)
            )
            pic = result.scalars().first()
            if pic is None:
                return None
            return RecipientContact(email=pic.mail, teams_id=pic.mail, name=pic.pic_name)

        result = self.db.execute(
            select(Employee)
            .where(Employee.noreg == approver_id)
            .order_by(Employee.valid_to.desc(), Employee.id.desc())
        )
        employee = result.scalars().first()
        if employee is None:
            return None
        return RecipientContact(
            email=employee.mail, teams_id=employee.mail, name=employee.name
        )

    async def resolve_template(
        self, item_code: str, locale: str, channel: TemplateChannel
    ) -> Optional[NotificationTemplate]:
        result = self.db.execute(
            select(NotificationTemplate).where(
                NotificationTemplate.item_code == item_code,
                NotificationTemplate.locale == locale,
                NotificationTemplate.channel == channel,
                NotificationTemplate.is_active.is_(True),
            )
        )
        return result.scalars().first()

    async def get_system_config(
        self, system_type: str, system_cd: str, as_of: date
    ) -> Optional[str]:
        result = self.db.execute(
            select(SystemConfig.value_text)
            .where(
                SystemConfig.system_type == system_type,
                SystemConfig.system_cd == system_cd,
                SystemConfig.valid_from <= as_of,
                SystemConfig.valid_to >= as_of,
            )
            .order_by(SystemConfig.valid_to.desc())
        )
        return result.scalars().first()

    async def insert_notification_history(self, row: NotificationHistory) -> None:
        self.db.add(row)
        self.db.flush()

    async def set_candidate_status(
        self,
        candidate_id: int,
        status: CandidateStatus,
        attempts: Optional[int] = None,
        next_attempt_at: Optional[datetime] = None,
        last_error: Optional[str] = None,
    ) -> None:
        values = {
            "status": status,
            "next_attempt_at": next_attempt_at,
            "updated_at": naive_utc_now(),
        }
        if attempts is not None:
            values["attempts"] = attempts
        if last_error is not None:
            values["last_error"] = last_error[:4000]

        self.db.execute(
            update(NotificationCandidate)
            .where(NotificationCandidate.id == candidate_id)
            .values(**values)
            .execution_options(synchronize_session=False)
        )
        self.db.flush()

    async def list_candidates(
        self, status: Optional[CandidateStatus], page: int, per_page: int
    ) -> Tuple[List[NotificationCandidate], int]:
        query = select(NotificationCandidate)
        count_query = select(func.count(NotificationCandidate.id))
        if status is not None:
            query = query.where(NotificationCandidate.status == status)
            count_query = count_query.where(NotificationCandidate.status == status)

        total = self.db.execute(count_query).scalar_one()
        result = self.db.execute(
            query.order_by(NotificationCandidate.id.desc())
            .offset((page - 1) * per_page)
            .limit(per_page)
        )
        return list(result.scalars().all()), total

    async def requeue_failed_candidates(self, ids: Sequence[int]) -> int:
        requeued = 0
        for chunk in _chunks(sorted(set(ids))):
            result = self.db.execute(
                update(NotificationCandidate)
                .where(
                    NotificationCandidate.id.in_(chunk),
                    NotificationCandidate.status == CandidateStatus.FAILED,
                )
                .values(
                    status=CandidateStatus.PENDING,
                    attempts=0,
                    next_attempt_at=None,
                    updated_at=naive_utc_now(),
                )
                .execution_options(synchronize_session=False)
            )
            requeued += result.rowcount
        self.db.flush()
        return requeued

    # UAR PIC directory

    async def list_existing_pic_ids(self, ids: Sequence[int]) -> Set[int]:
        existing: Set[int] = set()
        for chunk in _chunks(sorted(set(ids))):
            result = self.db.execute(select(UarPic.id).where(UarPic.id.in_(chunk)))
            existing.update(result.scalars().all())
        return existing

    async def insert_uar_pics(self, pics: Sequence[UarPic]) -> int:
        if not pics:
            return 0
        self.db.add_all(pics)
        self.db.flush()
        return len(pics)

    # Monitoring

    async def insert_batch_report(self, report: BatchRunReport) -> None:
        self.db.add(report)
        self.db.flush()
