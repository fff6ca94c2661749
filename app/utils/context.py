import uuid
from contextvars import ContextVar
from typing import Optional

request_id_context: ContextVar[Optional[str]] = ContextVar("request_id", default=None)


def get_request_id() -> Optional[str]:
    """Get the current request or tick ID from context."""
    return request_id_context.get()


def set_request_id(request_id: str) -> None:
    """Set the request or tick ID in context."""
    request_id_context.set(request_id)


def new_tick_id(prefix: str) -> str:
    """Build a correlation ID for one scheduler tick, e.g. ``uar_minute_tick_cron-1a2b3c4d``."""
    return f"{prefix}-{uuid.uuid4().hex[:8]}"
