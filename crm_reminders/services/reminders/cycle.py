from datetime import datetime, timedelta
from typing import Any, Dict, Optional, Tuple

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from crm_reminders.config.settings import settings
from crm_reminders.schemas.reminder_schemas import (
    CycleReport,
    FollowUpTask,
    LeadContact,
    ReminderPassResult,
    UserReminderProfile,
)
from crm_reminders.services.email.email_service import EmailService, get_email_service
from crm_reminders.services.reminders.claims import ClaimCoordinator, NotificationState
from crm_reminders.services.reminders.digest import DigestScheduler, get_digest_dedup_store
from crm_reminders.services.reminders.notifier import ReminderNotifier
from crm_reminders.services.reminders.policy import should_fire_now
from crm_reminders.services.reminders.scanner import scan_candidates
from crm_reminders.services.reminders.store import (
    ReminderStore,
    get_reminder_store,
    supports_notification_claiming,
)
from crm_reminders.utils.datetime_utils import utc_now
from crm_reminders.utils.logging import get_logger

logger = get_logger()

_claim_support: Optional[bool] = None


def resolve_claim_support(db_session: Session) -> bool:
    """
    Decide once per process whether follow-ups can be claimed.

    REMINDER_SUPPORTS_CLAIMING=True skips the schema check. Otherwise the
    follow_ups table is inspected for the claim column, and a column that exists
    is always used: forcing legacy mode on a migrated table would leave stale
    claims that block the notified write. A failed inspection is not cached and
    falls back to the setting (support unless it is explicitly False).
    """
    global _claim_support
    if _claim_support is not None:
        return _claim_support

    override = settings.REMINDER_SUPPORTS_CLAIMING
    if override is True:
        _claim_support = True
    else:
        try:
            has_column = supports_notification_claiming(db_session)
        except SQLAlchemyError as e:
            logger.error(f"Could not inspect follow_ups schema for claim support: {e}")
            return override is not False
        if override is False and has_column:
            logger.warning(
                "REMINDER_SUPPORTS_CLAIMING=false ignored: follow_ups has "
                "notification_claimed_at, keeping claims on"
            )
        _claim_support = has_column

    logger.info(f"Reminder claim support resolved: supports_claiming={_claim_support}")
    return _claim_support


def reset_claim_support() -> None:
    global _claim_support
    _claim_support = None


class ReminderCycle:
    """One scheduler tick: per-task reminders, then the daily digest pass."""

    def __init__(
        self,
        store: ReminderStore,
        claims: ClaimCoordinator,
        notifier: ReminderNotifier,
        digest_scheduler: DigestScheduler,
        horizon_days: int = 2,
    ):
        self.store = store
        self.claims = claims
        self.notifier = notifier
        self.digest_scheduler = digest_scheduler
        self.horizon_days = horizon_days

    async def run_cycle(self, now: Optional[datetime] = None) -> CycleReport:
        now = now or utc_now()
        report = CycleReport(success=True, started_at=now)

        try:
            report.reminders = await self.check_and_send_reminders(now)
        except Exception as e:
            logger.opt(exception=e).error(f"Reminder pass aborted: {e}")
            report.success = False
            report.error = str(e)

        try:
            report.digests_sent, report.digest_errors = await self.send_daily_digests(now)
        except Exception as e:
            logger.opt(exception=e).error(f"Digest pass aborted: {e}")
            report.success = False
            report.error = report.error or str(e)

        report.finished_at = utc_now()
        return report

    async def check_and_send_reminders(self, now: datetime) -> ReminderPassResult:
        """Raises only when the candidates (or their owners and leads) cannot be loaded."""
        result = ReminderPassResult(legacy_mode=self.claims.legacy_mode)

        candidates = scan_candidates(self.store, now, self.horizon_days)
        result.candidates = len(candidates)
        if not candidates:
            return result

        profiles = self.store.get_user_profiles({task.user_id for task in candidates})
        leads = self.store.list_leads_by_ids({task.lead_id for task in candidates})

        for task in candidates:
            try:
                await self._process_task(task, profiles, leads, now, result)
            except Exception as e:
                result.errors += 1
                logger.opt(exception=e).error(f"Error processing follow-up {task.id}: {e}")

        logger.info(
            f"Reminder pass complete: {result.candidates} candidates, {result.due} due, "
            f"{result.sent} sent, {result.failed} failed, "
            f"{result.skipped_claimed_elsewhere} claimed elsewhere, {result.errors} errors"
        )
        return result

    async def _process_task(
        self,
        task: FollowUpTask,
        profiles: Dict[Any, UserReminderProfile],
        leads: Dict[Any, LeadContact],
        now: datetime,
        result: ReminderPassResult,
    ) -> None:
        profile = profiles.get(task.user_id) or UserReminderProfile.defaults_for(task.user_id)
        if not should_fire_now(task, profile, now):
            return
        result.due += 1

        if not profile.email:
            logger.info(f"No email found for user {task.user_id}")
            return
        lead = leads.get(task.lead_id)
        if lead is None:
            return

        if self.claims.state_of(task, now) is not NotificationState.UNCLAIMED:
            # Live lease seen by the scan; skip the write that would lose anyway
            result.skipped_claimed_elsewhere += 1
            return

        claim = self.claims.try_claim(task.id, now)
        if not claim.claimed:
            result.skipped_claimed_elsewhere += 1
            return
        result.claimed += 1

        delivered = await self.notifier.notify_and_finalize(
            task, profile, lead, now, claim.legacy_mode
        )
        if delivered:
            result.sent += 1
        else:
            result.failed += 1

    async def send_daily_digests(self, now: datetime) -> Tuple[int, int]:
        user_ids = self.store.list_users_with_pending_tasks()
        if not user_ids:
            return 0, 0

        profiles = self.store.get_user_profiles(user_ids)
        sent = errors = 0
        for user_id in user_ids:
            try:
                if await self.digest_scheduler.maybe_send_digest(
                    user_id, profiles[user_id], now
                ):
                    sent += 1
            except Exception as e:
                errors += 1
                logger.opt(exception=e).error(f"Daily digest failed for user {user_id}: {e}")
        return sent, errors


def build_reminder_cycle(
    db_session: Session, email_service: Optional[EmailService] = None
) -> ReminderCycle:
    store = get_reminder_store(db_session)
    email_service = email_service or get_email_service()
    claims = ClaimCoordinator(
        store,
        supports_claiming=resolve_claim_support(db_session),
        claim_ttl=timedelta(minutes=settings.REMINDER_CLAIM_TTL_MINUTES),
    )
    return ReminderCycle(
        store=store,
        claims=claims,
        notifier=ReminderNotifier(store, email_service, claims, settings.FRONTEND_URL),
        digest_scheduler=DigestScheduler(
            store,
            email_service,
            get_digest_dedup_store(db_session),
            default_summary_time=settings.DIGEST_DEFAULT_TIME,
            window_minutes=settings.DIGEST_WINDOW_MINUTES,
            frontend_url=settings.FRONTEND_URL,
        ),
        horizon_days=settings.REMINDER_HORIZON_DAYS,
    )


async def run_reminder_cycle(
    db_session: Session,
    request_id: str,
    now: Optional[datetime] = None,
    email_service: Optional[EmailService] = None,
) -> Dict[str, Any]:
    """Run one full cycle and summarize it as a plain result dict."""
    logger.info("Reminder cycle started")
    cycle = build_reminder_cycle(db_session, email_service)
    report = await cycle.run_cycle(now)

    result = {
        "success": report.success,
        "candidates": report.reminders.candidates,
        "reminders_sent": report.reminders.sent,
        "reminders_failed": report.reminders.failed,
        "reminder_errors": report.reminders.errors,
        "claimed_elsewhere": report.reminders.skipped_claimed_elsewhere,
        "legacy_mode": report.reminders.legacy_mode,
        "digests_sent": report.digests_sent,
        "digest_errors": report.digest_errors,
        "request_id": request_id,
    }
    if report.error:
        result["error"] = report.error
    logger.info(f"Reminder cycle finished: success={report.success}")
    return result
