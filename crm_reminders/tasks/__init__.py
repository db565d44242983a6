from .cron import *

__all__ = [
    # Scheduled/Cron Tasks
    "run_reminder_cycle_task",
]
