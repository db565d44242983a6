import uuid
from abc import ABC, abstractmethod
from datetime import date, datetime, timedelta
from typing import Dict, Iterable, List, NoReturn, Optional, Sequence

from sqlalchemy import and_, or_, select, update, inspect
from sqlalchemy.exc import DBAPIError, SQLAlchemyError
from sqlalchemy.orm import Session

from crm_reminders.db.models import FollowUp, Lead, Profile, User
from crm_reminders.schemas.reminder_schemas import (
    DigestItem,
    FollowUpTask,
    LeadContact,
    UserReminderProfile,
)
from crm_reminders.services.reminders.claims import (
    claim_expiry_cutoff,
    claim_transition,
    notified_transition,
    release_transition,
)
from crm_reminders.utils.datetime_utils import to_naive_utc
from crm_reminders.utils.errors import DatabaseError
from crm_reminders.utils.logging import get_logger

logger = get_logger()

# Profile column sets, widest first; older schemas lack the later additions
_PROFILE_COLUMN_TIERS = (
    (
        Profile.timezone,
        Profile.reminder_enabled,
        Profile.reminder_lead_minutes,
        Profile.daily_summary_enabled,
        Profile.daily_summary_time,
    ),
    (Profile.timezone, Profile.reminder_enabled, Profile.reminder_lead_minutes),
    (Profile.timezone,),
)


def _is_missing_column_error(error: DBAPIError) -> bool:
    message = str(error.orig or error).lower()
    return (
        "does not exist" in message
        or "no such column" in message
        or "unknown column" in message
        or "invalid column name" in message
    )


class ReminderStore(ABC):
    """Data access consumed by the reminder core."""

    @abstractmethod
    def list_due_follow_ups(self, horizon_date: date) -> List[FollowUpTask]:
        """Not completed, not notified, scheduled on or before `horizon_date`."""

    @abstractmethod
    def conditional_claim(
        self, follow_up_id: uuid.UUID, now: datetime, ttl: timedelta
    ) -> bool:
        """Atomically claim an unnotified task whose claim is absent or expired."""

    @abstractmethod
    def finalize_notified(
        self, follow_up_id: uuid.UUID, now: datetime, clear_claim: bool
    ) -> None:
        pass

    @abstractmethod
    def release_claim(self, follow_up_id: uuid.UUID) -> None:
        pass

    @abstractmethod
    def get_user_profiles(
        self, user_ids: Iterable[uuid.UUID]
    ) -> Dict[uuid.UUID, UserReminderProfile]:
        """Profiles keyed by user id; users without a profile row get defaults."""

    @abstractmethod
    def list_leads_by_ids(
        self, lead_ids: Iterable[uuid.UUID]
    ) -> Dict[uuid.UUID, LeadContact]:
        pass

    @abstractmethod
    def list_pending_tasks_for_digest(
        self, user_id: uuid.UUID, today: date
    ) -> List[DigestItem]:
        pass

    @abstractmethod
    def list_users_with_pending_tasks(self) -> List[uuid.UUID]:
        pass

    def get_user_profile(self, user_id: uuid.UUID) -> UserReminderProfile:
        return self.get_user_profiles([user_id])[user_id]


class SqlAlchemyReminderStore(ReminderStore):
    """ReminderStore backed by the follow_ups / profiles / leads tables."""

    def __init__(self, db_session: Session, claim_columns: Optional[bool] = None):
        self.db = db_session
        self._claim_columns = claim_columns

    @property
    def has_claim_columns(self) -> bool:
        """Whether follow_ups carries notification_claimed_at / notified_at."""
        if self._claim_columns is None:
            self._claim_columns = supports_notification_claiming(self.db)
        return self._claim_columns

    def _fail(self, action: str, error: SQLAlchemyError, error_code: str) -> NoReturn:
        self.db.rollback()
        raise DatabaseError(f"Failed to {action}: {error}", error_code=error_code) from error

    def list_due_follow_ups(self, horizon_date: date) -> List[FollowUpTask]:
        columns = [
            FollowUp.id,
            FollowUp.lead_id,
            FollowUp.user_id,
            FollowUp.follow_up_date,
            FollowUp.follow_up_time,
            FollowUp.note,
            FollowUp.completed,
            FollowUp.notified,
        ]
        try:
            # Explicit columns: the claim columns may not exist on a legacy schema
            if self.has_claim_columns:
                columns += [FollowUp.notification_claimed_at, FollowUp.notified_at]
            rows = self.db.execute(
                select(*columns).where(
                    and_(
                        FollowUp.completed.is_(False),
                        FollowUp.notified.is_(False),
                        FollowUp.follow_up_date <= horizon_date,
                    )
                )
            ).all()
        except SQLAlchemyError as e:
            self._fail("list due follow-ups", e, "FOLLOW_UP_SCAN_FAILED")

        return [
            FollowUpTask(
                id=row.id,
                lead_id=row.lead_id,
                user_id=row.user_id,
                scheduled_date=row.follow_up_date,
                scheduled_time=row.follow_up_time or "",
                note=row.note,
                completed=bool(row.completed),
                notified=bool(row.notified),
                notification_claimed_at=getattr(row, "notification_claimed_at", None),
                notified_at=getattr(row, "notified_at", None),
            )
            for row in rows
        ]

    def conditional_claim(
        self, follow_up_id: uuid.UUID, now: datetime, ttl: timedelta
    ) -> bool:
        cutoff = to_naive_utc(claim_expiry_cutoff(now, ttl))
        try:
            result = self.db.execute(
                update(FollowUp)
                .where(
                    and_(
                        FollowUp.id == follow_up_id,
                        FollowUp.notified.is_(False),
                        or_(
                            FollowUp.notification_claimed_at.is_(None),
                            FollowUp.notification_claimed_at < cutoff,
                        ),
                    )
                )
                .values(**claim_transition(to_naive_utc(now)))
                .execution_options(synchronize_session=False)
            )
            self.db.commit()
        except SQLAlchemyError as e:
            self._fail("claim follow-up", e, "CLAIM_FAILED")
        return result.rowcount == 1

    def finalize_notified(
        self, follow_up_id: uuid.UUID, now: datetime, clear_claim: bool
    ) -> None:
        try:
            # A stale claim left behind must go with the flag or the
            # notified/claimed check constraint rejects the write
            clear_claim = clear_claim or self.has_claim_columns
            self.db.execute(
                update(FollowUp)
                .where(FollowUp.id == follow_up_id)
                .values(**notified_transition(to_naive_utc(now), clear_claim))
                .execution_options(synchronize_session=False)
            )
            self.db.commit()
        except SQLAlchemyError as e:
            self._fail("mark follow-up notified", e, "FINALIZE_FAILED")

    def release_claim(self, follow_up_id: uuid.UUID) -> None:
        try:
            self.db.execute(
                update(FollowUp)
                .where(
                    and_(FollowUp.id == follow_up_id, FollowUp.notified.is_(False))
                )
                .values(**release_transition())
                .execution_options(synchronize_session=False)
            )
            self.db.commit()
        except SQLAlchemyError as e:
            self._fail("release follow-up claim", e, "RELEASE_FAILED")

    def get_user_profiles(
        self, user_ids: Iterable[uuid.UUID]
    ) -> Dict[uuid.UUID, UserReminderProfile]:
        ids = list(dict.fromkeys(user_ids))
        if not ids:
            return {}

        emails = self._get_user_emails(ids)
        rows = self._select_profile_rows(ids)

        profiles: Dict[uuid.UUID, UserReminderProfile] = {}
        for user_id in ids:
            row = rows.get(user_id)
            if row is None:
                profiles[user_id] = UserReminderProfile.defaults_for(
                    user_id, emails.get(user_id)
                )
                continue
            fields = {k: v for k, v in row.items() if v is not None}
            profiles[user_id] = UserReminderProfile(
                user_id=user_id, email=emails.get(user_id), **fields
            )
        return profiles

    def _get_user_emails(self, ids: Sequence[uuid.UUID]) -> Dict[uuid.UUID, Optional[str]]:
        try:
            rows = self.db.execute(select(User.id, User.email).where(User.id.in_(ids)))
        except SQLAlchemyError as e:
            self._fail("load user emails", e, "USER_LOOKUP_FAILED")
        return {row.id: row.email for row in rows}

    def _select_profile_rows(self, ids: Sequence[uuid.UUID]) -> Dict[uuid.UUID, dict]:
        last_error: Optional[SQLAlchemyError] = None
        for columns in _PROFILE_COLUMN_TIERS:
            try:
                rows = self.db.execute(
                    select(Profile.id, *columns).where(Profile.id.in_(ids))
                ).all()
            except DBAPIError as e:
                self.db.rollback()
                if not _is_missing_column_error(e):
                    self._fail("load profiles", e, "PROFILE_LOOKUP_FAILED")
                logger.warning(
                    f"Profile columns missing, retrying with fewer columns: {e.orig}"
                )
                last_error = e
                continue
            except SQLAlchemyError as e:
                self._fail("load profiles", e, "PROFILE_LOOKUP_FAILED")
            return {row.id: {col.key: getattr(row, col.key) for col in columns} for row in rows}

        raise DatabaseError(
            f"Failed to load profiles: {last_error}", error_code="PROFILE_LOOKUP_FAILED"
        )

    def list_leads_by_ids(
        self, lead_ids: Iterable[uuid.UUID]
    ) -> Dict[uuid.UUID, LeadContact]:
        ids = list(dict.fromkeys(lead_ids))
        if not ids:
            return {}
        try:
            rows = self.db.execute(
                select(Lead.id, Lead.name, Lead.phone_number).where(Lead.id.in_(ids))
            ).all()
        except SQLAlchemyError as e:
            self._fail("load leads", e, "LEAD_LOOKUP_FAILED")
        return {
            row.id: LeadContact(id=row.id, name=row.name, phone_number=row.phone_number)
            for row in rows
        }

    def list_pending_tasks_for_digest(
        self, user_id: uuid.UUID, today: date
    ) -> List[DigestItem]:
        try:
            rows = self.db.execute(
                select(
                    FollowUp.id,
                    FollowUp.follow_up_date,
                    FollowUp.follow_up_time,
                    Lead.name,
                )
                .join(Lead, Lead.id == FollowUp.lead_id)
                .where(
                    and_(
                        FollowUp.user_id == user_id,
                        FollowUp.completed.is_(False),
                        FollowUp.follow_up_date <= today,
                    )
                )
                .order_by(FollowUp.follow_up_date, FollowUp.follow_up_time)
            ).all()
        except SQLAlchemyError as e:
            self._fail("load digest follow-ups", e, "DIGEST_LOOKUP_FAILED")
        return [
            DigestItem(
                follow_up_id=row.id,
                lead_name=row.name or "Lead",
                scheduled_date=row.follow_up_date,
                scheduled_time=row.follow_up_time or "",
            )
            for row in rows
        ]

    def list_users_with_pending_tasks(self) -> List[uuid.UUID]:
        try:
            rows = self.db.execute(
                select(FollowUp.user_id)
                .where(FollowUp.completed.is_(False))
                .distinct()
            ).all()
        except SQLAlchemyError as e:
            self._fail("list users with pending follow-ups", e, "USER_SCAN_FAILED")
        return [row.user_id for row in rows]


def supports_notification_claiming(db_session: Session) -> bool:
    """Whether the follow_ups table carries the claim column."""
    columns = inspect(db_session.get_bind()).get_columns(FollowUp.__tablename__)
    return any(column["name"] == "notification_claimed_at" for column in columns)


def get_reminder_store(db_session: Session) -> ReminderStore:
    return SqlAlchemyReminderStore(db_session)
