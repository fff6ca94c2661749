from .reminder import next_reminder_code, build_uar_id, build_request_id

__all__ = [
    "next_reminder_code",
    "build_uar_id",
    "build_request_id",
]
