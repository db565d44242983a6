from .settings import settings

# Basic Celery Configuration
broker_url = f"redis://:{settings.REDIS_PASSWORD}@{settings.REDIS_HOST}:{settings.REDIS_PORT}/{settings.REDIS_DB}"
result_backend = f"redis://:{settings.REDIS_PASSWORD}@{settings.REDIS_HOST}:{settings.REDIS_PORT}/{settings.REDIS_DB}"

# Task Discovery
include = ["crm_reminders.tasks"]

# Timezone Configuration
# Reminder decisions are computed per user zone, beat only needs UTC ticks
timezone = "UTC"
enable_utc = True

# Task Result Configuration
result_expires = 3600

# Task Serialization
task_serializer = "json"
accept_content = ["json"]
result_serializer = "json"

# Task Execution Configuration
task_track_started = True
task_time_limit = 5 * 60  # 5 minutes
task_soft_time_limit = 4 * 60  # 4 minutes

# Worker Configuration
worker_prefetch_multiplier = 1
worker_max_tasks_per_child = 1000

# A missed tick is picked up by the next one, so a cycle is never retried
task_acks_late = False
task_max_retries = 0

beat_schedule = {
    # Reminder + daily digest cycle
    "reminder-cycle": {
        "task": "crm_reminders.tasks.cron.reminder_cycle.run_reminder_cycle_task",
        "schedule": float(settings.REMINDER_INTERVAL_SECONDS),
        "args": ("reminder_cycle_cron",),
        # Drop ticks that queued up while the worker was down
        "options": {"expires": float(settings.REMINDER_INTERVAL_SECONDS)},
    },
}

# Default Queue
task_default_queue = "reminders"

# Beat Scheduler Configuration
beat_schedule_filename = "tmp/celerybeat-schedule"
