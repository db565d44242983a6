from datetime import datetime

from crm_reminders.schemas.reminder_schemas import (
    FollowUpTask,
    LeadContact,
    UserReminderProfile,
)
from crm_reminders.services.email.email_service import EmailService
from crm_reminders.services.email.templates import render_reminder_email
from crm_reminders.services.reminders.claims import ClaimCoordinator
from crm_reminders.services.reminders.store import ReminderStore
from crm_reminders.utils.errors import DatabaseError
from crm_reminders.utils.logging import get_logger

logger = get_logger()


class ReminderNotifier:
    """Sends one follow-up reminder and records the outcome on the task."""

    def __init__(
        self,
        store: ReminderStore,
        email_service: EmailService,
        claims: ClaimCoordinator,
        frontend_url: str = "",
    ):
        self.store = store
        self.email_service = email_service
        self.claims = claims
        self.frontend_url = frontend_url

    async def notify_and_finalize(
        self,
        task: FollowUpTask,
        profile: UserReminderProfile,
        lead: LeadContact,
        now: datetime,
        legacy_mode: bool,
    ) -> bool:
        """
        Send the reminder for a claimed task.

        On success the task is marked notified (and its claim cleared outside
        legacy mode). On any send failure the claim is released so the next
        cycle retries, and the task stays unnotified.
        """
        if not profile.email:
            logger.warning(f"No email for user {task.user_id}; releasing {task.id}")
            self.claims.release(task.id)
            return False

        message = render_reminder_email(task, lead, self.frontend_url)
        try:
            delivered = await self.email_service.send_email(profile.email, message)
        except Exception as e:
            logger.error(
                f"Reminder transport raised for follow-up {task.id}: "
                f"{e.__class__.__name__}: {e}"
            )
            delivered = False

        if not delivered:
            if not legacy_mode:
                self.claims.release(task.id)
            return False

        try:
            self.store.finalize_notified(task.id, now, clear_claim=not legacy_mode)
        except DatabaseError as e:
            # Already sent; a later cycle may send it again once the claim expires
            logger.error(f"Sent reminder for {task.id} but could not mark it notified: {e.message}")

        logger.info(f"Reminder sent for follow-up {task.id} (lead {lead.name})")
        return True
