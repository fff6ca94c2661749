import asyncio
import json
import threading
import time
from contextlib import contextmanager

import pytest

from app.tasks.cron import uar_ticks
from app.tasks.cron.uar_ticks import build_uar_scheduler, get_uar_scheduler, with_worker_context
from app.tasks.scheduler import (
    OUTCOME_FAILED,
    OUTCOME_OK,
    OUTCOME_SKIPPED,
    Cadence,
    TickScheduler,
)
from app.services.monitoring import MonitoringPublisher


class TestTickScheduler:
    @pytest.mark.asyncio
    async def test_handlers_run_concurrently(self):
        scheduler = TickScheduler()
        started = []
        release = asyncio.Event()

        async def slow():
            started.append("slow")
            await release.wait()

        async def fast():
            started.append("fast")
            release.set()

        scheduler.on_tick(Cadence.MINUTE, slow)
        scheduler.on_tick(Cadence.MINUTE, fast)

        outcomes = await asyncio.wait_for(scheduler.fire(Cadence.MINUTE), timeout=2)

        assert outcomes == {"slow": OUTCOME_OK, "fast": OUTCOME_OK}
        assert sorted(started) == ["fast", "slow"]

    @pytest.mark.asyncio
    async def test_failing_handler_does_not_affect_others(self):
        scheduler = TickScheduler()
        calls = []

        async def broken():
            raise RuntimeError("boom")

        async def healthy():
            calls.append("healthy")

        scheduler.on_tick(Cadence.MINUTE, broken)
        scheduler.on_tick(Cadence.MINUTE, healthy)

        outcomes = await scheduler.fire(Cadence.MINUTE)

        assert outcomes == {"broken": OUTCOME_FAILED, "healthy": OUTCOME_OK}
        assert calls == ["healthy"]

    @pytest.mark.asyncio
    async def test_exclusive_handler_is_skipped_while_running(self):
        scheduler = TickScheduler()
        started = asyncio.Event()
        release = asyncio.Event()
        runs = []

        async def long_running():
            runs.append("run")
            started.set()
            await release.wait()

        scheduler.on_tick(Cadence.MINUTE, long_running, name="long_running")

        first = asyncio.create_task(scheduler.fire(Cadence.MINUTE))
        await asyncio.wait_for(started.wait(), timeout=2)
        assert scheduler.is_running("long_running")

        second = await scheduler.fire(Cadence.MINUTE)
        release.set()
        first_outcomes = await first

        assert second == {"long_running": OUTCOME_SKIPPED}
        assert first_outcomes == {"long_running": OUTCOME_OK}
        assert runs == ["run"]
        assert not scheduler.is_running("long_running")

    @pytest.mark.asyncio
    async def test_non_exclusive_handler_may_overlap(self):
        scheduler = TickScheduler()
        release = asyncio.Event()
        runs = []

        async def overlapping():
            runs.append("run")
            await release.wait()

        scheduler.on_tick(Cadence.MINUTE, overlapping, exclusive=False)

        first = asyncio.create_task(scheduler.fire(Cadence.MINUTE))
        second = asyncio.create_task(scheduler.fire(Cadence.MINUTE))
        while len(runs) < 2:
            await asyncio.sleep(0.01)
        release.set()

        assert await first == {"overlapping": OUTCOME_OK}
        assert await second == {"overlapping": OUTCOME_OK}
        assert runs == ["run", "run"]

    @pytest.mark.asyncio
    async def test_guard_is_released_after_failure(self):
        scheduler = TickScheduler()

        async def broken():
            raise RuntimeError("boom")

        scheduler.on_tick(Cadence.DAILY, broken)

        assert await scheduler.fire(Cadence.DAILY) == {"broken": OUTCOME_FAILED}
        assert await scheduler.fire(Cadence.DAILY) == {"broken": OUTCOME_FAILED}

    @pytest.mark.asyncio
    async def test_cadences_are_independent(self):
        scheduler = TickScheduler()
        calls = []

        async def minute():
            calls.append("minute")

        scheduler.on_tick(Cadence.MINUTE, minute)

        assert await scheduler.fire(Cadence.DAILY) == {}
        assert calls == []

    def test_duplicate_registration_is_rejected(self):
        scheduler = TickScheduler()

        async def handler():
            return None

        scheduler.on_tick(Cadence.MINUTE, handler)
        with pytest.raises(ValueError):
            scheduler.on_tick(Cadence.MINUTE, handler)

        # The same name on another cadence is fine
        scheduler.on_tick(Cadence.DAILY, handler)
        assert scheduler.handler_names(Cadence.DAILY) == ["handler"]


class RecordingSink:
    def __init__(self):
        self.reports = []

    async def __call__(self, report):
        self.reports.append(report)


@pytest.fixture
def sink():
    return RecordingSink()


@pytest.fixture
def fake_context_factory(make_context, sink):
    opened = []

    @contextmanager
    def factory(request_id, job, staging=None):
        context = make_context(monitor=MonitoringPublisher(sink))
        if staging is not None:
            context.staging = staging
        opened.append((request_id, job))
        yield context

    factory.opened = opened
    return factory


class TestWithWorkerContext:
    @pytest.mark.asyncio
    async def test_success_is_reported(self, fake_context_factory, sink):
        async def worker(context):
            return {"success": True, "processed": 2}

        handler = with_worker_context(worker, "demo_job", context_factory=fake_context_factory)
        result = await handler()

        assert result == {"success": True, "processed": 2}
        assert handler.__name__ == "demo_job"
        assert len(sink.reports) == 1
        report = sink.reports[0]
        assert report.job_name == "demo_job"
        assert report.status == "SUCCESS"
        assert json.loads(report.details)["processed"] == 2
        assert fake_context_factory.opened[0][1] == "demo_job"

    @pytest.mark.asyncio
    async def test_partial_failure_is_reported(self, fake_context_factory, sink):
        async def worker(context):
            return {"success": False}

        await with_worker_context(worker, "demo_job", context_factory=fake_context_factory)()

        assert sink.reports[0].status == "PARTIAL"

    @pytest.mark.asyncio
    async def test_exception_is_reported_and_reraised(self, fake_context_factory, sink):
        async def worker(context):
            raise RuntimeError("database went away")

        handler = with_worker_context(worker, "demo_job", context_factory=fake_context_factory)
        with pytest.raises(RuntimeError):
            await handler()

        assert sink.reports[0].status == "FAILED"
        assert "database went away" in sink.reports[0].message

    @pytest.mark.asyncio
    async def test_each_invocation_opens_its_own_context(self, fake_context_factory):
        async def worker(context):
            return {"success": True}

        handler = with_worker_context(worker, "demo_job", context_factory=fake_context_factory)
        await handler()
        await handler()

        assert len(fake_context_factory.opened) == 2


class TestBuildUarScheduler:
    def test_registers_the_pipeline(self, fake_context_factory):
        scheduler = build_uar_scheduler(context_factory=fake_context_factory)

        assert scheduler.handler_names(Cadence.MINUTE) == [
            "uar_task_creation",
            "uar_pic_sync",
            "notification_pusher",
        ]
        assert scheduler.handler_names(Cadence.DAILY) == ["uar_daily_reminder"]

    @pytest.mark.asyncio
    async def test_minute_tick_runs_every_worker(self, fake_context_factory, sink):
        scheduler = build_uar_scheduler(context_factory=fake_context_factory)

        outcomes = await scheduler.fire(Cadence.MINUTE)

        assert outcomes == {
            "uar_task_creation": OUTCOME_OK,
            "uar_pic_sync": OUTCOME_OK,
            "notification_pusher": OUTCOME_OK,
        }
        assert sorted(report.job_name for report in sink.reports) == [
            "notification_pusher",
            "uar_pic_sync",
            "uar_task_creation",
        ]

    @pytest.mark.asyncio
    async def test_missing_workflow_url_is_reported_as_failure(self, fake_context_factory, sink, options):
        options.workflow_url = ""
        scheduler = build_uar_scheduler(context_factory=fake_context_factory)

        outcomes = await scheduler.fire(Cadence.MINUTE)

        assert outcomes["notification_pusher"] == OUTCOME_FAILED
        assert outcomes["uar_task_creation"] == OUTCOME_OK
        report = next(r for r in sink.reports if r.job_name == "notification_pusher")
        assert report.status == "FAILED"
        assert "PA_FLOW_URL" in report.message


class TestGetUarScheduler:
    def test_concurrent_first_calls_share_one_scheduler(self, monkeypatch):
        builds = []

        def slow_build():
            builds.append(1)
            time.sleep(0.05)
            return TickScheduler()

        monkeypatch.setattr(uar_ticks, "_scheduler", None)
        monkeypatch.setattr(uar_ticks, "build_uar_scheduler", slow_build)

        barrier = threading.Barrier(8)
        results = []

        def tick_thread():
            barrier.wait()
            results.append(get_uar_scheduler())

        threads = [threading.Thread(target=tick_thread) for _ in range(8)]
        for thread in threads:
            thread.start()
        for thread in threads:
            thread.join(timeout=5)

        assert len(builds) == 1
        assert len(results) == 8
        assert all(scheduler is results[0] for scheduler in results)
