import pytest
from datetime import date, datetime
from typing import Generator, List, Optional

from loguru import logger
from sqlalchemy import create_engine, select
from sqlalchemy.orm import Session, sessionmaker
from sqlalchemy.pool import StaticPool

from app.db.models import (
    AccessMapping,
    Application,
    ApprovalStatus,
    Base,
    CandidateStatus,
    Employee,
    NotificationCandidate,
    NotificationHistory,
    ScheduleStatus,
    UarPic,
    UarSchedule,
    UarSystemOwnerTask,
)
from app.db.seeds.notification_templates_seed import seed_notification_templates
from app.providers.uar_repository import SqlAlchemyUarRepository
from app.tasks.context import PipelineOptions, WorkerContext
from app.utils.datetime_utils import FixedClock
from app.utils.logging import get_logger


# Test database setup
TEST_DATABASE_URL = "sqlite://"

# 2025-01-15 10:00 in Jakarta, 03:00 UTC
TODAY = date(2025, 1, 15)
NOW_LOCAL = datetime(2025, 1, 15, 10, 0)
NOW_UTC_NAIVE = datetime(2025, 1, 15, 3, 0)

WORKFLOW_URL = "http://workflow.test/flow"


@pytest.fixture
def test_engine():
    """Fresh in-memory database per test."""
    engine = create_engine(
        TEST_DATABASE_URL,
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
        echo=False,
    )
    Base.metadata.create_all(engine)
    yield engine
    engine.dispose()


@pytest.fixture
def db_session(test_engine) -> Generator[Session, None, None]:
    session_maker = sessionmaker(bind=test_engine, class_=Session, expire_on_commit=False)
    session = session_maker()
    yield session
    session.rollback()
    session.close()


@pytest.fixture
def repository(db_session: Session) -> SqlAlchemyUarRepository:
    return SqlAlchemyUarRepository(db_session)


@pytest.fixture
def clock() -> FixedClock:
    return FixedClock(NOW_LOCAL, "Asia/Jakarta")


@pytest.fixture
def options() -> PipelineOptions:
    return PipelineOptions(
        workflow_url=WORKFLOW_URL,
        default_cc="uar-admin@example.com",
        sync_delay_seconds=0.0,
        source_timeout_seconds=2.0,
    )


@pytest.fixture
def make_context(repository, clock, options):
    """Build a WorkerContext around the test database; keyword arguments override fields."""

    def _make(**overrides) -> WorkerContext:
        fields = {
            "repository": repository,
            "log": get_logger("test"),
            "clock": clock,
            "options": options,
        }
        fields.update(overrides)
        return WorkerContext(**fields)

    return _make


@pytest.fixture
def caplog_loguru():
    """Messages logged through loguru while the test runs."""
    messages: List[str] = []
    handler_id = logger.add(lambda message: messages.append(message.record["message"]), level="DEBUG")
    yield messages
    logger.remove(handler_id)


@pytest.fixture
def templates(db_session: Session):
    """EMAIL and TEAMS templates for every UAR item code."""
    seed_notification_templates(db_session)
    db_session.commit()


class UarFactory:
    """Inserts rows for tests and reads them back fresh."""

    def __init__(self, db_session: Session):
        self.db = db_session

    def _save(self, row):
        self.db.add(row)
        self.db.commit()
        return row

    def application(
        self,
        application_id: str = "APP1",
        owner: Optional[str] = "OWNER01",
        uar_date: Optional[date] = TODAY,
        sync_start: date = date(2000, 1, 10),
        sync_end: date = date(2000, 1, 20),
        schedule_status: ScheduleStatus = ScheduleStatus.ACTIVE,
    ) -> Application:
        application = self._save(
            Application(
                application_id=application_id,
                application_name=f"{application_id} system",
                noreg_system_owner=owner,
                is_active=True,
            )
        )
        if uar_date is not None:
            self.schedule(application_id, uar_date, sync_start, sync_end, schedule_status)
        return application

    def schedule(
        self,
        application_id: str,
        uar_date: date,
        sync_start: date,
        sync_end: date,
        status: ScheduleStatus = ScheduleStatus.ACTIVE,
    ) -> UarSchedule:
        return self._save(
            UarSchedule(
                application_id=application_id,
                schedule_uar_dt=uar_date,
                schedule_sync_start_dt=sync_start,
                schedule_sync_end_dt=sync_end,
                schedule_status=status,
            )
        )

    def employee(
        self,
        noreg: str,
        mail: Optional[str] = None,
        valid_from: date = date(2020, 1, 1),
        valid_to: date = date(9999, 12, 31),
        **fields,
    ) -> Employee:
        return self._save(
            Employee(
                noreg=noreg,
                name=fields.pop("name", f"Employee {noreg}"),
                mail=mail if mail is not None else f"{noreg.lower()}@example.com",
                valid_from=valid_from,
                valid_to=valid_to,
                **fields,
            )
        )

    def mapping(
        self,
        application_id: str,
        username: str,
        noreg: Optional[str],
        role_id: str = "ROLE_A",
        **fields,
    ) -> AccessMapping:
        return self._save(
            AccessMapping(
                application_id=application_id,
                username=username,
                noreg=noreg,
                role_id=role_id,
                first_name=fields.pop("first_name", username.upper()),
                last_name=fields.pop("last_name", "User"),
                company_cd=fields.pop("company_cd", 1),
                **fields,
            )
        )

    def review_task(
        self,
        uar_id: str,
        username: str,
        role_id: str = "ROLE_A",
        application_id: str = "APP1",
        created_at: datetime = NOW_UTC_NAIVE,
        status: ApprovalStatus = ApprovalStatus.PENDING,
    ) -> UarSystemOwnerTask:
        return self._save(
            UarSystemOwnerTask(
                uar_period="202501",
                uar_id=uar_id,
                username=username,
                application_id=application_id,
                role_id=role_id,
                so_approval_status=status,
                created_by="test",
                created_at=created_at,
            )
        )

    def candidate(
        self,
        request_id: str,
        item_code: str = "UAR_CREATED",
        approver_id: str = "OWNER01",
        status: CandidateStatus = CandidateStatus.PENDING,
        **fields,
    ) -> NotificationCandidate:
        return self._save(
            NotificationCandidate(
                request_id=request_id,
                item_code=item_code,
                approver_id=approver_id,
                status=status,
                attempts=fields.pop("attempts", 0),
                **fields,
            )
        )

    def history(
        self,
        request_id: str,
        item_code: str,
        sent_at: datetime = NOW_UTC_NAIVE,
    ) -> NotificationHistory:
        return self._save(
            NotificationHistory(
                request_id=request_id,
                item_code=item_code,
                channel="EMAIL_TEAMS_PA",
                system="SAR_DB_WORKER",
                recipient="OWNER01",
                status="SENT_TO_PA",
                sent_at=sent_at,
                created_by="test",
            )
        )

    def pic(self, pic_id: int, division_id: int, mail: str, name: str = "PIC") -> UarPic:
        return self._save(
            UarPic(
                id=pic_id,
                pic_name=name,
                division_id=division_id,
                mail=mail,
                created_by="test",
            )
        )

    def all(self, model) -> List:
        """Every row of ``model``, reloaded from the database."""
        self.db.expire_all()
        return list(self.db.execute(select(model).order_by(model.id)).scalars().all())


@pytest.fixture
def factory(db_session: Session) -> UarFactory:
    return UarFactory(db_session)
