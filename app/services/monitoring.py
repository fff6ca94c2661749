import asyncio
from typing import Awaitable, Callable, Optional, Set

from app.db.models import BatchRunReport
from app.providers.uar_repository import UarRepository
from app.utils.datetime_utils import naive_utc_now
from app.utils.logging import get_logger

ReportSink = Callable[[BatchRunReport], Awaitable[None]]

MESSAGE_MAX_LENGTH = 500


def repository_sink(repository: UarRepository) -> ReportSink:
    """Sink that stores each report as a batch_run_reports row."""

    async def _store(report: BatchRunReport) -> None:
        with repository.transaction():
            await repository.insert_batch_report(report)

    return _store


class MonitoringPublisher:
    """
    Best-effort side channel for batch run reports.

    ``emit`` never blocks the caller and never raises; a failed write is
    logged and dropped. ``drain`` waits for reports still in flight.
    """

    def __init__(self, sink: ReportSink, log=None):
        self._sink = sink
        self.log = log or get_logger()
        self._pending: Set[asyncio.Task] = set()

    def emit(
        self,
        job_name: str,
        status: str,
        message: str,
        details: Optional[str] = None,
    ) -> None:
        report = BatchRunReport(
            job_name=job_name,
            run_at=naive_utc_now(),
            status=status,
            message=message[:MESSAGE_MAX_LENGTH],
            details=details,
        )

        try:
            loop = asyncio.get_running_loop()
        except RuntimeError:
            self.log.warning(f"No running event loop, dropping {job_name} report")
            return

        task = loop.create_task(self._publish(report))
        self._pending.add(task)
        task.add_done_callback(self._pending.discard)

    async def _publish(self, report: BatchRunReport) -> None:
        try:
            await self._sink(report)
        except Exception as e:
            self.log.opt(exception=e).warning(
                f"Failed to publish {report.job_name} report: {str(e)}"
            )

    async def drain(self) -> None:
        if self._pending:
            await asyncio.gather(*list(self._pending))

    @property
    def pending_count(self) -> int:
        return len(self._pending)
