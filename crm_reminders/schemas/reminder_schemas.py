import math
import uuid
from datetime import date, datetime
from typing import Any, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator

from crm_reminders.config.settings import settings
from crm_reminders.utils.timezone import resolve_zone


def normalize_lead_minutes(value: Any) -> int:
    """
    Coerce a stored lead-time preference into whole minutes within [0, 1440].

    Missing or non-numeric values fall back to the configured default.
    """
    if isinstance(value, bool):
        return settings.DEFAULT_REMINDER_LEAD_MINUTES
    try:
        parsed = float(value)
    except (TypeError, ValueError):
        return settings.DEFAULT_REMINDER_LEAD_MINUTES
    if not math.isfinite(parsed):
        return settings.DEFAULT_REMINDER_LEAD_MINUTES
    # Half-up like the settings UI, not banker's rounding
    rounded = math.floor(parsed + 0.5)
    return max(0, min(1440, rounded))


class FollowUpTask(BaseModel):
    """A pending follow-up as seen by the reminder core."""

    model_config = ConfigDict(frozen=True)

    id: uuid.UUID
    lead_id: uuid.UUID
    user_id: uuid.UUID
    scheduled_date: date
    # Kept as the raw "HH:MM" string; malformed values must reach the policy
    # evaluator, which treats them as "do not fire"
    scheduled_time: str
    note: Optional[str] = None
    completed: bool = False
    notified: bool = False
    notification_claimed_at: Optional[datetime] = None
    notified_at: Optional[datetime] = None


class UserReminderProfile(BaseModel):
    """Reminder preferences of one user, with safe defaults for absent fields."""

    model_config = ConfigDict(frozen=True)

    user_id: uuid.UUID
    email: Optional[str] = None
    timezone: str = Field(default_factory=lambda: settings.DEFAULT_TIMEZONE)
    reminder_enabled: bool = True
    reminder_lead_minutes: int = Field(
        default_factory=lambda: settings.DEFAULT_REMINDER_LEAD_MINUTES
    )
    daily_summary_enabled: bool = True
    daily_summary_time: Optional[str] = None

    @field_validator("timezone", mode="before")
    @classmethod
    def _resolve_timezone(cls, value: Any) -> str:
        return resolve_zone(value, settings.DEFAULT_TIMEZONE)

    @field_validator("reminder_lead_minutes", mode="before")
    @classmethod
    def _clamp_lead_minutes(cls, value: Any) -> int:
        return normalize_lead_minutes(value)

    @field_validator("reminder_enabled", "daily_summary_enabled", mode="before")
    @classmethod
    def _default_enabled(cls, value: Any) -> bool:
        # Only an explicit False disables; NULL columns keep reminders on
        return value is not False

    @classmethod
    def defaults_for(
        cls, user_id: uuid.UUID, email: Optional[str] = None
    ) -> "UserReminderProfile":
        return cls(user_id=user_id, email=email)


class LeadContact(BaseModel):
    model_config = ConfigDict(frozen=True)

    id: uuid.UUID
    name: str
    phone_number: Optional[str] = None


class DigestItem(BaseModel):
    """One pending follow-up line in a daily digest."""

    model_config = ConfigDict(frozen=True)

    follow_up_id: uuid.UUID
    lead_name: str
    scheduled_date: date
    scheduled_time: str


class ReminderPassResult(BaseModel):
    candidates: int = 0
    due: int = 0
    claimed: int = 0
    skipped_claimed_elsewhere: int = 0
    sent: int = 0
    failed: int = 0
    errors: int = 0
    legacy_mode: bool = False


class CycleReport(BaseModel):
    success: bool
    reminders: ReminderPassResult = Field(default_factory=ReminderPassResult)
    digests_sent: int = 0
    digest_errors: int = 0
    error: Optional[str] = None
    started_at: datetime
    finished_at: Optional[datetime] = None
