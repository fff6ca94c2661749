from celery.schedules import crontab
from .settings import settings

# Basic Celery Configuration
broker_url = f"redis://:{settings.REDIS_PASSWORD}@{settings.REDIS_HOST}:{settings.REDIS_PORT}/{settings.REDIS_DB}"
result_backend = f"redis://:{settings.REDIS_PASSWORD}@{settings.REDIS_HOST}:{settings.REDIS_PORT}/{settings.REDIS_DB}"

# Task Discovery
include = ["app.tasks"]

# Timezone Configuration
timezone = settings.TIMEZONE
enable_utc = True

# Task Result Configuration
result_expires = 3600

# Task Serialization
task_serializer = "json"
accept_content = ["json"]
result_serializer = "json"

# Task Execution Configuration
task_track_started = True
task_time_limit = 30 * 60  # 30 minutes
task_soft_time_limit = 25 * 60  # 25 minutes

# Worker Configuration
worker_prefetch_multiplier = 1
worker_max_tasks_per_child = 1000

# Ticks are never redelivered: a missed tick is simply picked up by the next one
task_acks_late = False
task_default_retry_delay = 60  # 60 seconds
task_max_retries = 3

# Tick tasks run on their own queue; the worker for it uses the threads pool so
# the scheduler's overlap guard is shared between concurrent ticks.
task_routes = {
    "app.tasks.cron.uar_ticks.*": {"queue": "uar_ticks"},
}

# All scheduled tasks use the business timezone
beat_schedule = {
    # Task creation, PIC sync and notification dispatch - every minute
    "uar-minute-tick": {
        "task": "app.tasks.cron.uar_ticks.uar_minute_tick_task",
        "schedule": crontab(minute="*"),
        "args": ("uar_minute_tick_cron",),
    },
    # Reminder escalation - once a day
    "uar-daily-tick": {
        "task": "app.tasks.cron.uar_ticks.uar_daily_tick_task",
        "schedule": crontab(
            hour=settings.UAR_DAILY_TICK_HOUR, minute=settings.UAR_DAILY_TICK_MINUTE
        ),
        "args": ("uar_daily_tick_cron",),
    },
}

# Default Queue
task_default_queue = "uar_batch"

# Beat Scheduler Configuration
beat_schedule_filename = "tmp/celerybeat-schedule"
