from datetime import date, datetime
from typing import Optional, Tuple

from crm_reminders.schemas.reminder_schemas import FollowUpTask, UserReminderProfile
from crm_reminders.utils.timezone import add_days, time_to_minutes, zoned_parts

MINUTES_PER_DAY = 24 * 60


def compute_trigger(
    scheduled_date: date, scheduled_time: str, lead_minutes: int
) -> Optional[Tuple[date, int]]:
    """
    Local (date, minutes since midnight) at which the reminder becomes due.

    A lead time reaching before midnight moves the trigger to the previous day.
    Returns None when `scheduled_time` is malformed.
    """
    scheduled_minutes = time_to_minutes(scheduled_time)
    if scheduled_minutes is None:
        return None

    trigger_date = scheduled_date
    trigger_minutes = scheduled_minutes - lead_minutes
    # Lead minutes are clamped to one day, so a single wrap is enough
    if trigger_minutes < 0:
        trigger_minutes += MINUTES_PER_DAY
        trigger_date = add_days(scheduled_date, -1)
    return trigger_date, trigger_minutes


def should_fire_now(
    task: FollowUpTask, profile: UserReminderProfile, now: datetime
) -> bool:
    """Whether the reminder for `task` is due at `now` in the owner's local time."""
    if not profile.reminder_enabled:
        return False

    trigger = compute_trigger(
        task.scheduled_date, task.scheduled_time, profile.reminder_lead_minutes
    )
    if trigger is None:
        return False

    now_local = zoned_parts(now, profile.timezone)
    return trigger <= (now_local.date, now_local.minutes)
