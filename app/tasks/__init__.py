from .background import *
from .cron import *

__all__ = [
    # Background Tasks
    "queue_uar_completion_notification_task",
    # Scheduled/Cron Tasks
    "uar_minute_tick_task",
    "uar_daily_tick_task",
]
