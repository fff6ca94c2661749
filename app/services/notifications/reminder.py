from typing import List, Optional

ITEM_CODE_CREATED = "UAR_CREATED"
ITEM_CODE_COMPLETED = "UAR_COMPLETED"
REMINDER_PREFIX = "UAR_REMINDER_"
MAX_REMINDER_DAY = 7

# UAR_REMINDER_1 .. UAR_REMINDER_7
REMINDER_CODES: List[str] = [
    f"{REMINDER_PREFIX}{day}" for day in range(1, MAX_REMINDER_DAY + 1)
]

ITEM_CODES: List[str] = [ITEM_CODE_CREATED, ITEM_CODE_COMPLETED, *REMINDER_CODES]

UAR_ID_MAX_LENGTH = 20


def reminder_code_for_day(day: int) -> Optional[str]:
    if 1 <= day <= MAX_REMINDER_DAY:
        return REMINDER_CODES[day - 1]
    return None


def next_reminder_code(
    days_pending: int, last_reminder_code: Optional[str]
) -> Optional[str]:
    """
    Decide which reminder, if any, is due for a task pending ``days_pending`` days.

    The chain only moves one step at a time: day 1 starts it when nothing has
    been sent, and day N continues it only when the last reminder sent was
    day N-1. A skipped day stalls the chain for that task.

    Args:
        days_pending: Whole local days since the task was created
        last_reminder_code: Latest UAR_REMINDER_* code sent for the task, if any

    Returns:
        The reminder item code to queue, or None
    """
    code = reminder_code_for_day(days_pending)
    if code is None:
        return None

    if days_pending == 1:
        return code if last_reminder_code is None else None

    if last_reminder_code == reminder_code_for_day(days_pending - 1):
        return code

    return None


def build_uar_id(uar_period: str, application_id: str) -> str:
    """
    UAR id for an application and a YYYYMM period, e.g. ``UAR_2501_APP1``.

    Truncated to the column width, so very long application ids collide
    on their prefix.
    """
    return f"UAR_{uar_period[2:]}_{application_id}"[:UAR_ID_MAX_LENGTH]


def build_request_id(uar_id: str, username: str, role_id: str) -> str:
    """Request id shared by every notification about one review task."""
    return f"{uar_id}{username}{role_id}"
