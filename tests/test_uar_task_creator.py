import pytest
from datetime import date

from app.db.models import (
    AccessMapping,
    ApprovalStatus,
    NotificationCandidate,
    ScheduleStatus,
    UarProcessStatus,
    UarSystemOwnerTask,
)
from app.providers.uar_repository import SqlAlchemyUarRepository
from app.tasks.cron.uar_task_creator import SYSTEM_USER, run_uar_task_creation


class FlakyRepository(SqlAlchemyUarRepository):
    """Fails for one application only."""

    def __init__(self, db_session, failing_application_id):
        super().__init__(db_session)
        self.failing_application_id = failing_application_id

    async def list_pending_access_mappings(self, application_id):
        if application_id == self.failing_application_id:
            raise RuntimeError("mapping store unavailable")
        return await super().list_pending_access_mappings(application_id)


class BrokenScheduleRepository(SqlAlchemyUarRepository):
    async def list_eligible_applications(self, today):
        raise RuntimeError("schedule store unavailable")


@pytest.fixture
def app1_with_three_mappings(factory):
    factory.application("APP1", owner="OWNER01")
    for index in (1, 2, 3):
        factory.employee(f"E00{index}", position_name=f"Position {index}", division_id=10 + index)
        factory.mapping("APP1", f"user{index}", f"E00{index}")


class TestRunUarTaskCreation:
    @pytest.mark.asyncio
    async def test_end_to_end_three_mappings(self, make_context, factory, app1_with_three_mappings):
        result = await run_uar_task_creation(make_context())

        assert result["success"] is True
        assert result["tasks_created"] == 3
        assert result["notifications_queued"] == 3

        tasks = factory.all(UarSystemOwnerTask)
        assert len(tasks) == 3
        assert {task.uar_id for task in tasks} == {"UAR_2501_APP1"}
        assert {task.uar_period for task in tasks} == {"202501"}
        assert all(task.so_approval_status == ApprovalStatus.PENDING for task in tasks)
        assert all(task.created_by == SYSTEM_USER for task in tasks)

        mappings = factory.all(AccessMapping)
        assert all(m.uar_process_status == UarProcessStatus.CONSUMED for m in mappings)
        assert all(m.changed_by == SYSTEM_USER for m in mappings)

        candidates = factory.all(NotificationCandidate)
        assert len(candidates) == 3
        assert {c.item_code for c in candidates} == {"UAR_CREATED"}
        assert {c.approver_id for c in candidates} == {"OWNER01"}
        assert {c.request_id for c in candidates} == {
            "UAR_2501_APP1user1ROLE_A",
            "UAR_2501_APP1user2ROLE_A",
            "UAR_2501_APP1user3ROLE_A",
        }

    @pytest.mark.asyncio
    async def test_tasks_are_enriched_from_employee(self, make_context, factory, app1_with_three_mappings):
        await run_uar_task_creation(make_context())

        task = next(t for t in factory.all(UarSystemOwnerTask) if t.username == "user2")
        assert task.noreg == "E002"
        assert task.name == "USER2 User"
        assert task.position_name == "Position 2"
        assert task.division_id == 12
        assert task.company_cd == 1

    @pytest.mark.asyncio
    async def test_second_run_creates_nothing(self, make_context, factory, app1_with_three_mappings):
        await run_uar_task_creation(make_context())
        result = await run_uar_task_creation(make_context())

        assert result["tasks_created"] == 0
        assert len(factory.all(UarSystemOwnerTask)) == 3
        assert len(factory.all(NotificationCandidate)) == 3

    @pytest.mark.asyncio
    async def test_missing_employee_leaves_fields_empty(self, make_context, factory):
        factory.application("APP1")
        factory.mapping("APP1", "ghost", "E404")
        factory.mapping("APP1", "service", None)

        result = await run_uar_task_creation(make_context())

        assert result["tasks_created"] == 2
        for task in factory.all(UarSystemOwnerTask):
            assert task.position_name is None
            assert task.division_id is None

    @pytest.mark.asyncio
    async def test_latest_valid_employee_record_wins(self, make_context, factory):
        factory.application("APP1")
        factory.employee("E001", position_name="Old", valid_to=date(2025, 6, 30))
        factory.employee("E001", position_name="New", valid_to=date(2026, 6, 30))
        factory.employee("E001", position_name="Expired", valid_to=date(2024, 12, 31))
        factory.mapping("APP1", "user1", "E001")

        await run_uar_task_creation(make_context())

        assert factory.all(UarSystemOwnerTask)[0].position_name == "New"

    @pytest.mark.asyncio
    async def test_existing_task_key_is_not_duplicated(self, make_context, factory):
        factory.application("APP1")
        factory.review_task("UAR_2501_APP1", "user1", application_id="APP1")
        factory.mapping("APP1", "user1", None)
        factory.mapping("APP1", "user2", None)

        result = await run_uar_task_creation(make_context())

        assert result["tasks_created"] == 1
        assert len(factory.all(UarSystemOwnerTask)) == 2
        assert all(
            m.uar_process_status == UarProcessStatus.CONSUMED for m in factory.all(AccessMapping)
        )

    @pytest.mark.asyncio
    async def test_only_today_and_active_schedules(self, make_context, factory):
        factory.application("TODAY")
        factory.application("TOMORROW", uar_date=date(2025, 1, 16))
        factory.application("PAUSED", schedule_status=ScheduleStatus.INACTIVE)
        for application_id in ("TODAY", "TOMORROW", "PAUSED"):
            factory.mapping(application_id, "user1", None)

        result = await run_uar_task_creation(make_context())

        assert result["applications"] == 1
        assert {t.application_id for t in factory.all(UarSystemOwnerTask)} == {"TODAY"}

    @pytest.mark.asyncio
    async def test_application_without_mappings_is_skipped(self, make_context, factory):
        factory.application("APP1")

        result = await run_uar_task_creation(make_context())

        assert result["success"] is True
        assert result["tasks_created"] == 0

    @pytest.mark.asyncio
    async def test_one_failing_application_does_not_stop_others(self, make_context, factory, db_session):
        factory.application("APP_BAD")
        factory.application("APP_OK")
        factory.mapping("APP_BAD", "user1", None)
        factory.mapping("APP_OK", "user1", None)

        context = make_context(repository=FlakyRepository(db_session, "APP_BAD"))
        result = await run_uar_task_creation(context)

        assert result["success"] is False
        assert result["failed_applications"] == ["APP_BAD"]
        assert {t.application_id for t in factory.all(UarSystemOwnerTask)} == {"APP_OK"}
        pending = [
            m for m in factory.all(AccessMapping)
            if m.uar_process_status == UarProcessStatus.PENDING
        ]
        assert [m.application_id for m in pending] == ["APP_BAD"]

    @pytest.mark.asyncio
    async def test_failure_listing_applications_propagates(self, make_context, db_session):
        context = make_context(repository=BrokenScheduleRepository(db_session))

        with pytest.raises(RuntimeError):
            await run_uar_task_creation(context)
