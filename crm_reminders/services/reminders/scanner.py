from datetime import date, datetime, timedelta
from typing import List

from crm_reminders.schemas.reminder_schemas import FollowUpTask
from crm_reminders.services.reminders.store import ReminderStore
from crm_reminders.utils.datetime_utils import to_utc


def scan_horizon(now: datetime, horizon_days: int) -> date:
    """
    Last scheduled date worth scanning.

    Computed on the UTC calendar; any zone is at most one day off UTC, which the
    horizon absorbs as long as it is at least one day.
    """
    return (to_utc(now) + timedelta(days=horizon_days)).date()


def scan_candidates(
    store: ReminderStore, now: datetime, horizon_days: int
) -> List[FollowUpTask]:
    """
    Pending, never-notified follow-ups scheduled up to the horizon.

    No lower bound: a reminder missed during downtime still surfaces on the next
    cycle. Order is unspecified.
    """
    return store.list_due_follow_ups(scan_horizon(now, horizon_days))
