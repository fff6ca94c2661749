from .uar_ticks import uar_minute_tick_task, uar_daily_tick_task

__all__ = [
    "uar_minute_tick_task",
    "uar_daily_tick_task",
]
