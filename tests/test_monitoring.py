import pytest

from app.db.models import BatchRunReport
from app.services.monitoring import MESSAGE_MAX_LENGTH, MonitoringPublisher, repository_sink


class TestMonitoringPublisher:
    @pytest.mark.asyncio
    async def test_report_is_stored(self, repository, factory):
        publisher = MonitoringPublisher(repository_sink(repository))

        publisher.emit("uar_task_creation", "SUCCESS", "uar_task_creation completed", '{"tasks_created": 3}')
        await publisher.drain()

        reports = factory.all(BatchRunReport)
        assert len(reports) == 1
        assert reports[0].job_name == "uar_task_creation"
        assert reports[0].status == "SUCCESS"
        assert reports[0].details == '{"tasks_created": 3}'

    @pytest.mark.asyncio
    async def test_emit_does_not_wait_for_the_sink(self):
        written = []

        async def sink(report):
            written.append(report)

        publisher = MonitoringPublisher(sink)
        publisher.emit("job", "SUCCESS", "done")

        assert written == []
        assert publisher.pending_count == 1

        await publisher.drain()
        assert len(written) == 1
        assert publisher.pending_count == 0

    @pytest.mark.asyncio
    async def test_sink_failure_is_swallowed(self):
        async def broken_sink(report):
            raise RuntimeError("monitoring store down")

        publisher = MonitoringPublisher(broken_sink)
        publisher.emit("job", "FAILED", "boom")

        await publisher.drain()

    @pytest.mark.asyncio
    async def test_long_message_is_truncated(self):
        written = []

        async def sink(report):
            written.append(report)

        publisher = MonitoringPublisher(sink)
        publisher.emit("job", "FAILED", "x" * (MESSAGE_MAX_LENGTH + 100))
        await publisher.drain()

        assert len(written[0].message) == MESSAGE_MAX_LENGTH

    def test_emit_without_event_loop_is_dropped(self):
        written = []

        async def sink(report):
            written.append(report)

        publisher = MonitoringPublisher(sink)
        publisher.emit("job", "SUCCESS", "done")

        assert publisher.pending_count == 0
        assert written == []
