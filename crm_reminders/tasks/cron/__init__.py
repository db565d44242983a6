from .reminder_cycle import run_reminder_cycle_task

__all__ = [
    "run_reminder_cycle_task",
]
