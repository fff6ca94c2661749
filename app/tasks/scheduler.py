import asyncio
import enum
import threading
from dataclasses import dataclass
from typing import Awaitable, Callable, Dict, List, Optional, Set

from app.utils.logging import get_logger

TickHandler = Callable[[], Awaitable[object]]

OUTCOME_OK = "ok"
OUTCOME_FAILED = "failed"
OUTCOME_SKIPPED = "skipped"


class Cadence(enum.Enum):
    MINUTE = "minute"
    DAILY = "daily"


@dataclass
class _Registration:
    name: str
    handler: TickHandler
    exclusive: bool


class TickScheduler:
    """
    Fans a tick out to every handler registered for its cadence.

    Handlers run as independent asyncio tasks, so a slow one never holds
    up the others. An exception from a handler is logged and reported as
    a ``failed`` outcome; it never leaves ``fire``. An exclusive handler
    that is still running from an earlier tick is skipped.
    """

    def __init__(self, log=None):
        self.log = log or get_logger()
        self._handlers: Dict[Cadence, List[_Registration]] = {
            cadence: [] for cadence in Cadence
        }
        self._running: Set[str] = set()
        # Ticks may be fired from several worker threads at once
        self._running_lock = threading.Lock()

    def on_tick(
        self,
        cadence: Cadence,
        handler: TickHandler,
        name: Optional[str] = None,
        exclusive: bool = True,
    ) -> None:
        handler_name = name or getattr(handler, "__name__", repr(handler))
        if any(reg.name == handler_name for reg in self._handlers[cadence]):
            raise ValueError(
                f"Handler '{handler_name}' is already registered for {cadence.value}"
            )
        self._handlers[cadence].append(
            _Registration(name=handler_name, handler=handler, exclusive=exclusive)
        )

    def handler_names(self, cadence: Cadence) -> List[str]:
        return [reg.name for reg in self._handlers[cadence]]

    def is_running(self, name: str) -> bool:
        with self._running_lock:
            return name in self._running

    async def fire(self, cadence: Cadence) -> Dict[str, str]:
        registrations = list(self._handlers[cadence])
        if not registrations:
            self.log.debug(f"No handlers registered for {cadence.value} tick")
            return {}

        outcomes = await asyncio.gather(
            *(self._run_guarded(reg) for reg in registrations)
        )
        return {reg.name: outcome for reg, outcome in zip(registrations, outcomes)}

    async def _run_guarded(self, registration: _Registration) -> str:
        if registration.exclusive and not self._try_acquire(registration.name):
            self.log.warning(
                f"Skipping {registration.name}: previous run is still in progress"
            )
            return OUTCOME_SKIPPED

        try:
            await registration.handler()
            return OUTCOME_OK
        except Exception as e:
            self.log.opt(exception=e).error(
                f"Tick handler {registration.name} failed: {str(e)}"
            )
            return OUTCOME_FAILED
        finally:
            if registration.exclusive:
                self._release(registration.name)

    def _try_acquire(self, name: str) -> bool:
        with self._running_lock:
            if name in self._running:
                return False
            self._running.add(name)
            return True

    def _release(self, name: str) -> None:
        with self._running_lock:
            self._running.discard(name)
