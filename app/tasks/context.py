from contextlib import contextmanager
from dataclasses import dataclass, field
from typing import Any, Callable, Iterator, List, Optional

from sqlalchemy.orm import Session

from app.config.settings import Settings, settings
from app.db.session import SessionLocal
from app.providers.pic_sources import PicSource, build_pic_sources
from app.providers.uar_repository import SqlAlchemyUarRepository, UarRepository
from app.providers.workflow_client import WorkflowClient
from app.schemas.uar_pic_schemas import UarPicRecord
from app.services.monitoring import MonitoringPublisher, repository_sink
from app.utils.datetime_utils import Clock, SystemClock
from app.utils.logging import get_logger


class PicStagingArea:
    """Process-local scratch list for one create-only sync run."""

    def __init__(self):
        self._records: List[UarPicRecord] = []

    def clear(self) -> None:
        self._records = []

    def stage(self, records: List[UarPicRecord]) -> None:
        self._records.extend(records)

    @property
    def records(self) -> List[UarPicRecord]:
        return list(self._records)

    def __len__(self) -> int:
        return len(self._records)


@dataclass
class PipelineOptions:
    batch_size: int = 50
    max_attempts: int = 1
    retry_base_seconds: int = 60
    retry_max_seconds: int = 600
    template_locale: str = "en-US"
    workflow_url: str = ""
    default_cc: str = ""
    source_timeout_seconds: float = 30.0
    sync_delay_seconds: float = 0.3

    @classmethod
    def from_settings(cls, config: Settings) -> "PipelineOptions":
        return cls(
            batch_size=config.NOTIFICATION_BATCH_SIZE,
            max_attempts=config.NOTIFICATION_MAX_ATTEMPTS,
            retry_base_seconds=config.NOTIFICATION_RETRY_BASE_SECONDS,
            retry_max_seconds=config.NOTIFICATION_RETRY_MAX_SECONDS,
            template_locale=config.NOTIFICATION_TEMPLATE_LOCALE,
            workflow_url=config.WORKFLOW_URL,
            default_cc=config.DEFAULT_CC_EMAIL,
            source_timeout_seconds=config.UAR_PIC_SOURCE_TIMEOUT_SECONDS,
            sync_delay_seconds=config.UAR_SYNC_SCHEDULE_DELAY_SECONDS,
        )


@dataclass
class WorkerContext:
    """Everything a batch worker touches, passed in explicitly."""

    repository: UarRepository
    log: Any
    clock: Clock
    pic_sources: List[PicSource] = field(default_factory=list)
    workflow_client: WorkflowClient = field(default_factory=WorkflowClient)
    staging: PicStagingArea = field(default_factory=PicStagingArea)
    monitor: Optional[MonitoringPublisher] = None
    options: PipelineOptions = field(default_factory=PipelineOptions)


@contextmanager
def worker_context(
    request_id: str,
    job: str,
    staging: Optional[PicStagingArea] = None,
    session_factory: Callable[[], Session] = SessionLocal,
    config: Settings = settings,
) -> Iterator[WorkerContext]:
    """
    Open a database session and wire up a WorkerContext for one handler run.

    The session is rolled back if the handler raises and always closed.
    """
    db_session = session_factory()
    try:
        repository = SqlAlchemyUarRepository(db_session)
        log = get_logger(request_id, job=job)
        yield WorkerContext(
            repository=repository,
            log=log,
            clock=SystemClock(config.TIMEZONE),
            pic_sources=build_pic_sources(config),
            workflow_client=WorkflowClient(timeout=config.WORKFLOW_TIMEOUT_SECONDS),
            staging=staging if staging is not None else PicStagingArea(),
            monitor=MonitoringPublisher(repository_sink(repository), log=log),
            options=PipelineOptions.from_settings(config),
        )
    except Exception:
        db_session.rollback()
        raise
    finally:
        db_session.close()
