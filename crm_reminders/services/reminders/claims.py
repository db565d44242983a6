"""
Notification claims on follow-up rows.

A follow-up moves through three states:

    UNCLAIMED --claim--> CLAIMED --notified--> NOTIFIED
        ^                   |
        +----release--------+   (send failed, or the lease expired)

The claim is a lease stored in ``notification_claimed_at``. A lease older than the
claim TTL reads as UNCLAIMED, so a dispatcher that crashed mid-send blocks retries
for at most one TTL. All cross-process exclusion goes through the store's single
conditional UPDATE; nothing here is shared in memory between processes.
"""

import enum
import uuid
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import TYPE_CHECKING, Any, Dict, Optional

from crm_reminders.schemas.reminder_schemas import FollowUpTask
from crm_reminders.utils.datetime_utils import to_utc
from crm_reminders.utils.errors import DatabaseError
from crm_reminders.utils.logging import get_logger

if TYPE_CHECKING:
    from crm_reminders.services.reminders.store import ReminderStore

logger = get_logger()


class NotificationState(enum.Enum):
    UNCLAIMED = "unclaimed"
    CLAIMED = "claimed"
    NOTIFIED = "notified"


@dataclass(frozen=True)
class ClaimResult:
    claimed: bool
    legacy_mode: bool


def claim_expiry_cutoff(now: datetime, ttl: timedelta) -> datetime:
    """Claims taken before this instant have expired."""
    return now - ttl


def notification_state(
    notified: bool,
    claimed_at: Optional[datetime],
    now: datetime,
    ttl: timedelta,
) -> NotificationState:
    if notified:
        return NotificationState.NOTIFIED
    if claimed_at is None:
        return NotificationState.UNCLAIMED
    if to_utc(claimed_at) < to_utc(claim_expiry_cutoff(now, ttl)):
        return NotificationState.UNCLAIMED
    return NotificationState.CLAIMED


def claim_transition(now: datetime) -> Dict[str, Any]:
    """UNCLAIMED -> CLAIMED."""
    return {"notification_claimed_at": now}


def release_transition() -> Dict[str, Any]:
    """CLAIMED -> UNCLAIMED, so the next cycle can retry without waiting out the TTL."""
    return {"notification_claimed_at": None}


def notified_transition(now: datetime, clear_claim: bool) -> Dict[str, Any]:
    """
    CLAIMED (or, in legacy mode, UNCLAIMED) -> NOTIFIED.

    Legacy schemas predate both claim columns, so only the flag is written there.
    """
    updates: Dict[str, Any] = {"notified": True}
    if clear_claim:
        updates["notified_at"] = now
        updates["notification_claimed_at"] = None
    return updates


class ClaimCoordinator:
    """
    Grants at most one live claim per follow-up across all dispatchers.

    When the store has no claim column (`supports_claiming=False`) every claim
    succeeds in legacy mode and overlapping dispatchers may both send.
    """

    _legacy_warning_logged = False

    def __init__(
        self,
        store: "ReminderStore",
        supports_claiming: bool,
        claim_ttl: timedelta,
    ):
        self.store = store
        self.supports_claiming = supports_claiming
        self.claim_ttl = claim_ttl

    @property
    def legacy_mode(self) -> bool:
        return not self.supports_claiming

    def state_of(self, task: FollowUpTask, now: datetime) -> NotificationState:
        """State of a scanned task as of `now`; without claim columns nothing reads as CLAIMED."""
        claimed_at = task.notification_claimed_at if self.supports_claiming else None
        return notification_state(task.notified, claimed_at, now, self.claim_ttl)

    def try_claim(self, follow_up_id: uuid.UUID, now: datetime) -> ClaimResult:
        if not self.supports_claiming:
            self._warn_legacy_once()
            return ClaimResult(claimed=True, legacy_mode=True)

        try:
            claimed = self.store.conditional_claim(follow_up_id, now, self.claim_ttl)
        except DatabaseError as e:
            logger.error(f"Claim failed for follow-up {follow_up_id}: {e.message}")
            return ClaimResult(claimed=False, legacy_mode=False)

        if not claimed:
            logger.debug(f"Follow-up {follow_up_id} is claimed by another dispatcher")
        return ClaimResult(claimed=claimed, legacy_mode=False)

    def release(self, follow_up_id: uuid.UUID) -> None:
        if not self.supports_claiming:
            return
        try:
            self.store.release_claim(follow_up_id)
        except DatabaseError as e:
            # The lease still expires after one TTL
            logger.error(f"Releasing claim on {follow_up_id} failed: {e.message}")

    @classmethod
    def _warn_legacy_once(cls) -> None:
        if cls._legacy_warning_logged:
            return
        cls._legacy_warning_logged = True
        logger.warning(
            "notification_claimed_at column missing; reminder locking disabled "
            "until the migration is applied"
        )
