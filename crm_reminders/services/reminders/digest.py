import re
import threading
import uuid
from abc import ABC, abstractmethod
from datetime import datetime
from typing import Dict, Optional

from sqlalchemy import select
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.orm import Session

from crm_reminders.config.settings import settings
from crm_reminders.db.models import DigestLog
from crm_reminders.schemas.reminder_schemas import UserReminderProfile
from crm_reminders.services.email.email_service import EmailService
from crm_reminders.services.email.templates import render_digest_email
from crm_reminders.services.reminders.store import ReminderStore
from crm_reminders.utils.errors import DatabaseError
from crm_reminders.utils.logging import get_logger
from crm_reminders.utils.timezone import time_to_minutes, zoned_parts

logger = get_logger()

MINUTES_PER_DAY = 24 * 60
_SUMMARY_TIME_PATTERN = re.compile(r"^(\d{1,2}):(\d{2})$")


class DigestDedupStore(ABC):
    """Remembers the last local date a digest went out, per user."""

    @abstractmethod
    def last_sent(self, user_id: uuid.UUID) -> Optional[str]:
        pass

    @abstractmethod
    def record_sent(self, user_id: uuid.UUID, local_date: str) -> None:
        pass


class InMemoryDigestDedupStore(DigestDedupStore):
    """
    Process-local dedup map.

    Lost on restart (a restart may repeat today's digest) and not shared between
    worker processes; multi-instance deployments should use the database store.
    """

    def __init__(self):
        self._sent: Dict[uuid.UUID, str] = {}
        self._lock = threading.Lock()

    def last_sent(self, user_id: uuid.UUID) -> Optional[str]:
        with self._lock:
            return self._sent.get(user_id)

    def record_sent(self, user_id: uuid.UUID, local_date: str) -> None:
        with self._lock:
            self._sent[user_id] = local_date

    def clear(self) -> None:
        with self._lock:
            self._sent.clear()


class DatabaseDigestDedupStore(DigestDedupStore):
    """Durable dedup in `digest_logs`, one row per user and local date."""

    def __init__(self, db_session: Session):
        self.db = db_session

    def last_sent(self, user_id: uuid.UUID) -> Optional[str]:
        try:
            return self.db.execute(
                select(DigestLog.local_date)
                .where(DigestLog.user_id == user_id)
                .order_by(DigestLog.local_date.desc())
                .limit(1)
            ).scalar_one_or_none()
        except SQLAlchemyError as e:
            self.db.rollback()
            raise DatabaseError(
                f"Failed to read digest log: {e}", error_code="DIGEST_LOG_READ_FAILED"
            ) from e

    def record_sent(self, user_id: uuid.UUID, local_date: str) -> None:
        try:
            self.db.add(DigestLog(user_id=user_id, local_date=local_date))
            self.db.commit()
        except IntegrityError:
            # Another worker recorded the same day first
            self.db.rollback()
        except SQLAlchemyError as e:
            self.db.rollback()
            raise DatabaseError(
                f"Failed to write digest log: {e}", error_code="DIGEST_LOG_WRITE_FAILED"
            ) from e


_process_dedup_store = InMemoryDigestDedupStore()


def get_digest_dedup_store(db_session: Session) -> DigestDedupStore:
    if settings.DIGEST_DEDUP_BACKEND == "database":
        return DatabaseDigestDedupStore(db_session)
    return _process_dedup_store


def normalize_summary_time(value: Optional[str], default: str = "08:00") -> str:
    raw = value.strip() if isinstance(value, str) else ""
    match = _SUMMARY_TIME_PATTERN.match(raw)
    if not match:
        return default
    hour, minute = int(match.group(1)), int(match.group(2))
    if hour > 23 or minute > 59:
        return default
    return f"{hour:02d}:{minute:02d}"


def is_within_summary_window(local_minutes: int, summary_time: str, window_minutes: int) -> bool:
    """Inclusive window [summary_time, summary_time + window], wrapping past midnight."""
    start = time_to_minutes(summary_time)
    if start is None:
        return False
    end = start + window_minutes
    if end < MINUTES_PER_DAY:
        return start <= local_minutes <= end
    return local_minutes >= start or local_minutes <= end % MINUTES_PER_DAY


class DigestScheduler:
    """Sends each user at most one morning summary per local calendar day."""

    def __init__(
        self,
        store: ReminderStore,
        email_service: EmailService,
        dedup_store: DigestDedupStore,
        default_summary_time: str = "08:00",
        window_minutes: int = 5,
        frontend_url: str = "",
    ):
        self.store = store
        self.email_service = email_service
        self.dedup_store = dedup_store
        self.default_summary_time = normalize_summary_time(default_summary_time)
        self.window_minutes = window_minutes
        self.frontend_url = frontend_url

    async def maybe_send_digest(
        self, user_id: uuid.UUID, profile: UserReminderProfile, now: datetime
    ) -> bool:
        if not profile.reminder_enabled or not profile.daily_summary_enabled:
            return False
        if not profile.email:
            return False

        local = zoned_parts(now, profile.timezone)
        summary_time = normalize_summary_time(
            profile.daily_summary_time, self.default_summary_time
        )
        if not is_within_summary_window(local.minutes, summary_time, self.window_minutes):
            return False

        today = local.date_string
        if self.dedup_store.last_sent(user_id) == today:
            return False

        items = self.store.list_pending_tasks_for_digest(user_id, local.date)
        if not items:
            return False

        overdue = [item for item in items if item.scheduled_date < local.date]
        due_today = [item for item in items if item.scheduled_date == local.date]

        message = render_digest_email(today, overdue, due_today, self.frontend_url)
        if not await self.email_service.send_email(profile.email, message):
            return False

        self.dedup_store.record_sent(user_id, today)
        logger.info(
            f"Daily digest sent to user {user_id} for {today} "
            f"({len(overdue)} overdue, {len(due_today)} today)"
        )
        return True
