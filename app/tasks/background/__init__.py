from .uar_completion_notifier import queue_uar_completion_notification_task

__all__ = [
    "queue_uar_completion_notification_task",
]
