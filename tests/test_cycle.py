"""
Tests for the full reminder cycle: scan, policy, claim, notify, digest.
"""

import uuid
from datetime import date, datetime, timedelta, timezone
from unittest.mock import AsyncMock, Mock

import pytest
from sqlalchemy.exc import OperationalError

from crm_reminders.config.settings import settings
from crm_reminders.db.models import FollowUp
from crm_reminders.schemas.reminder_schemas import (
    FollowUpTask,
    LeadContact,
    UserReminderProfile,
)
from crm_reminders.services.reminders import cycle as cycle_module
from crm_reminders.services.reminders.claims import ClaimCoordinator
from crm_reminders.services.reminders.cycle import ReminderCycle, run_reminder_cycle
from crm_reminders.services.reminders.digest import DigestScheduler, InMemoryDigestDedupStore
from crm_reminders.services.reminders.notifier import ReminderNotifier
from crm_reminders.services.reminders.store import SqlAlchemyReminderStore
from crm_reminders.utils.errors import DatabaseError

# 08:56 in Africa/Harare
NOW = datetime(2026, 2, 5, 6, 56, tzinfo=timezone.utc)
TTL = timedelta(minutes=15)


def _cycle(store, email_service, supports_claiming=True) -> ReminderCycle:
    claims = ClaimCoordinator(store, supports_claiming, TTL)
    return ReminderCycle(
        store=store,
        claims=claims,
        notifier=ReminderNotifier(store, email_service, claims),
        digest_scheduler=DigestScheduler(store, email_service, InMemoryDigestDedupStore()),
        horizon_days=2,
    )


def _task(user_id=None) -> FollowUpTask:
    return FollowUpTask(
        id=uuid.uuid4(),
        lead_id=uuid.uuid4(),
        user_id=user_id or uuid.uuid4(),
        scheduled_date=date(2026, 2, 5),
        scheduled_time="08:00",
    )


class TestReminderPass:
    @pytest.mark.asyncio
    async def test_only_due_tasks_are_sent(
        self, db_session, sample_lead, make_follow_up, fake_email_service
    ):
        due = make_follow_up(sample_lead, follow_up_time="09:00")
        later = make_follow_up(sample_lead, follow_up_time="10:00")
        store = SqlAlchemyReminderStore(db_session)

        result = await _cycle(store, fake_email_service).check_and_send_reminders(NOW)

        assert result.candidates == 2
        assert result.due == 1
        assert result.sent == 1
        db_session.expire_all()
        assert db_session.get(FollowUp, due.id).notified is True
        assert db_session.get(FollowUp, later.id).notified is False

    @pytest.mark.asyncio
    async def test_notified_task_is_not_sent_twice(
        self, db_session, sample_lead, make_follow_up, fake_email_service
    ):
        make_follow_up(sample_lead, follow_up_time="09:00")
        cycle = _cycle(SqlAlchemyReminderStore(db_session), fake_email_service)

        await cycle.check_and_send_reminders(NOW)
        second = await cycle.check_and_send_reminders(NOW + timedelta(minutes=1))

        assert second.candidates == 0
        assert fake_email_service.send_email.await_count == 1

    @pytest.mark.asyncio
    async def test_task_claimed_elsewhere_is_skipped(
        self, db_session, sample_lead, make_follow_up, fake_email_service
    ):
        make_follow_up(
            sample_lead,
            notification_claimed_at=(NOW - timedelta(minutes=2)).replace(tzinfo=None),
        )

        result = await _cycle(SqlAlchemyReminderStore(db_session), fake_email_service).check_and_send_reminders(NOW)

        assert result.skipped_claimed_elsewhere == 1
        fake_email_service.send_email.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_overlapping_dispatchers_send_once(
        self, db_session, sample_lead, make_follow_up, fake_email_service
    ):
        make_follow_up(sample_lead)
        store = SqlAlchemyReminderStore(db_session)
        first, second = _cycle(store, fake_email_service), _cycle(store, fake_email_service)

        results = [
            await first.check_and_send_reminders(NOW),
            await second.check_and_send_reminders(NOW),
        ]

        assert sum(result.sent for result in results) == 1
        assert fake_email_service.send_email.await_count == 1

    @pytest.mark.asyncio
    async def test_failed_send_is_retried_next_cycle(
        self, db_session, sample_lead, make_follow_up, failing_email_service, fake_email_service
    ):
        follow_up = make_follow_up(sample_lead)
        store = SqlAlchemyReminderStore(db_session)

        failed = await _cycle(store, failing_email_service).check_and_send_reminders(NOW)
        retried = await _cycle(store, fake_email_service).check_and_send_reminders(NOW + timedelta(minutes=1))

        assert failed.failed == 1
        assert retried.sent == 1
        db_session.expire_all()
        assert db_session.get(FollowUp, follow_up.id).notified is True

    @pytest.mark.asyncio
    async def test_user_without_email_is_skipped(
        self, db_session, make_user, make_lead, make_follow_up, fake_email_service
    ):
        follow_up = make_follow_up(make_lead(make_user(email=None)))

        result = await _cycle(SqlAlchemyReminderStore(db_session), fake_email_service).check_and_send_reminders(NOW)

        assert result.claimed == 0
        fake_email_service.send_email.assert_not_awaited()
        db_session.expire_all()
        assert db_session.get(FollowUp, follow_up.id).notification_claimed_at is None

    @pytest.mark.asyncio
    async def test_legacy_mode_sends_without_claims(
        self, db_session, sample_lead, make_follow_up, fake_email_service
    ):
        follow_up = make_follow_up(sample_lead)

        result = await _cycle(
            SqlAlchemyReminderStore(db_session), fake_email_service, supports_claiming=False
        ).check_and_send_reminders(NOW)

        assert result.legacy_mode is True
        assert result.sent == 1
        db_session.expire_all()
        stored = db_session.get(FollowUp, follow_up.id)
        assert stored.notified is True
        assert stored.notification_claimed_at is None

    @pytest.mark.asyncio
    async def test_forced_legacy_mode_clears_stale_claim_and_sends_once(
        self, db_session, sample_lead, make_follow_up, fake_email_service
    ):
        follow_up = make_follow_up(
            sample_lead,
            notification_claimed_at=(NOW - timedelta(hours=1)).replace(tzinfo=None),
        )
        cycle = _cycle(SqlAlchemyReminderStore(db_session), fake_email_service, supports_claiming=False)

        for minutes in (0, 1, 2):
            await cycle.check_and_send_reminders(NOW + timedelta(minutes=minutes))

        assert fake_email_service.send_email.await_count == 1
        db_session.expire_all()
        stored = db_session.get(FollowUp, follow_up.id)
        assert stored.notified is True
        assert stored.notified_at is not None
        assert stored.notification_claimed_at is None

    @pytest.mark.asyncio
    async def test_live_claim_from_scan_skips_the_claim_write(
        self, db_session, sample_lead, make_follow_up, fake_email_service
    ):
        make_follow_up(
            sample_lead,
            notification_claimed_at=(NOW - timedelta(minutes=5)).replace(tzinfo=None),
        )
        store = SqlAlchemyReminderStore(db_session)
        store.conditional_claim = Mock(wraps=store.conditional_claim)

        result = await _cycle(store, fake_email_service).check_and_send_reminders(NOW)

        assert result.skipped_claimed_elsewhere == 1
        assert result.claimed == 0
        store.conditional_claim.assert_not_called()
        fake_email_service.send_email.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_expired_claim_from_scan_is_reclaimed(
        self, db_session, sample_lead, make_follow_up, fake_email_service
    ):
        make_follow_up(
            sample_lead,
            notification_claimed_at=(NOW - timedelta(minutes=30)).replace(tzinfo=None),
        )

        result = await _cycle(SqlAlchemyReminderStore(db_session), fake_email_service).check_and_send_reminders(NOW)

        assert result.claimed == 1
        assert result.sent == 1

    @pytest.mark.asyncio
    async def test_one_bad_task_does_not_stop_the_pass(self, fake_email_service):
        user_id = uuid.uuid4()
        broken, healthy = _task(user_id), _task(user_id)
        store = Mock()
        store.list_due_follow_ups.return_value = [broken, healthy]
        store.get_user_profiles.return_value = {
            user_id: UserReminderProfile(user_id=user_id, email="owner@example.com")
        }
        store.list_leads_by_ids.return_value = {
            task.lead_id: LeadContact(id=task.lead_id, name="Lead")
            for task in (broken, healthy)
        }
        store.conditional_claim.side_effect = [RuntimeError("deadlock"), True]

        result = await _cycle(store, fake_email_service).check_and_send_reminders(NOW)

        assert result.errors == 1
        assert result.sent == 1


class TestRunCycle:
    @pytest.mark.asyncio
    async def test_scan_failure_still_runs_digest_pass(self, fake_email_service):
        store = Mock()
        store.list_due_follow_ups.side_effect = DatabaseError("connection lost")
        store.list_users_with_pending_tasks.return_value = []

        report = await _cycle(store, fake_email_service).run_cycle(NOW)

        assert report.success is False
        assert "connection lost" in report.error
        store.list_users_with_pending_tasks.assert_called_once()

    @pytest.mark.asyncio
    async def test_digest_failure_for_one_user_is_isolated(self, fake_email_service):
        first, second = uuid.uuid4(), uuid.uuid4()
        store = Mock()
        store.list_due_follow_ups.return_value = []
        store.list_users_with_pending_tasks.return_value = [first, second]
        store.get_user_profiles.return_value = {
            first: UserReminderProfile(user_id=first, email="a@example.com"),
            second: UserReminderProfile(user_id=second, email="b@example.com"),
        }
        cycle = _cycle(store, fake_email_service)
        cycle.digest_scheduler = Mock()
        cycle.digest_scheduler.maybe_send_digest = AsyncMock(side_effect=[RuntimeError("boom"), True])

        report = await cycle.run_cycle(NOW)

        assert report.success is True
        assert report.digests_sent == 1
        assert report.digest_errors == 1

    @pytest.mark.asyncio
    async def test_run_reminder_cycle_summary(
        self, db_session, sample_lead, make_follow_up, fake_email_service
    ):
        make_follow_up(sample_lead)

        result = await run_reminder_cycle(
            db_session, "test_request_id", now=NOW, email_service=fake_email_service
        )

        assert result["success"] is True
        assert result["candidates"] == 1
        assert result["reminders_sent"] == 1
        assert result["legacy_mode"] is False
        assert result["request_id"] == "test_request_id"

    @pytest.mark.asyncio
    async def test_morning_cycle_sends_digest(
        self, db_session, sample_lead, make_follow_up, fake_email_service
    ):
        make_follow_up(sample_lead, follow_up_date=date(2026, 2, 4), notified=True)
        morning = datetime(2026, 2, 5, 6, 0, tzinfo=timezone.utc)

        first = await run_reminder_cycle(db_session, "r1", now=morning, email_service=fake_email_service)
        second = await run_reminder_cycle(
            db_session, "r2", now=morning + timedelta(minutes=1), email_service=fake_email_service
        )

        assert first["digests_sent"] == 1
        assert second["digests_sent"] == 0


class TestClaimSupportResolution:
    def test_schema_check_is_cached(self, db_session, monkeypatch):
        monkeypatch.setattr(settings, "REMINDER_SUPPORTS_CLAIMING", None)
        has_column = Mock(return_value=True)
        monkeypatch.setattr(cycle_module, "supports_notification_claiming", has_column)

        assert cycle_module.resolve_claim_support(db_session) is True
        assert cycle_module.resolve_claim_support(db_session) is True
        has_column.assert_called_once()

    def test_forced_support_skips_schema_check(self, db_session, monkeypatch):
        monkeypatch.setattr(settings, "REMINDER_SUPPORTS_CLAIMING", True)
        has_column = Mock()
        monkeypatch.setattr(cycle_module, "supports_notification_claiming", has_column)

        assert cycle_module.resolve_claim_support(db_session) is True
        has_column.assert_not_called()

    def test_forced_legacy_applies_without_claim_column(self, db_session, monkeypatch):
        monkeypatch.setattr(settings, "REMINDER_SUPPORTS_CLAIMING", False)
        monkeypatch.setattr(cycle_module, "supports_notification_claiming", Mock(return_value=False))

        assert cycle_module.resolve_claim_support(db_session) is False

    def test_forced_legacy_is_ignored_when_claim_column_exists(self, db_session, monkeypatch):
        monkeypatch.setattr(settings, "REMINDER_SUPPORTS_CLAIMING", False)

        assert cycle_module.resolve_claim_support(db_session) is True

    def test_failed_schema_check_is_not_cached(self, db_session, monkeypatch):
        monkeypatch.setattr(settings, "REMINDER_SUPPORTS_CLAIMING", None)
        has_column = Mock(side_effect=[OperationalError("inspect", {}, Exception("down")), False])
        monkeypatch.setattr(cycle_module, "supports_notification_claiming", has_column)

        assert cycle_module.resolve_claim_support(db_session) is True
        assert cycle_module.resolve_claim_support(db_session) is False
        assert has_column.call_count == 2

    @pytest.mark.asyncio
    async def test_forced_legacy_on_migrated_schema_keeps_claiming(
        self, db_session, sample_lead, make_follow_up, fake_email_service, monkeypatch
    ):
        monkeypatch.setattr(settings, "REMINDER_SUPPORTS_CLAIMING", False)
        follow_up = make_follow_up(
            sample_lead,
            notification_claimed_at=(NOW - timedelta(hours=1)).replace(tzinfo=None),
        )

        first = await run_reminder_cycle(db_session, "r1", now=NOW, email_service=fake_email_service)
        second = await run_reminder_cycle(
            db_session, "r2", now=NOW + timedelta(minutes=1), email_service=fake_email_service
        )

        assert first["legacy_mode"] is False
        assert first["reminders_sent"] == 1
        assert second["candidates"] == 0
        assert fake_email_service.send_email.await_count == 1
        db_session.expire_all()
        stored = db_session.get(FollowUp, follow_up.id)
        assert stored.notified is True
        assert stored.notification_claimed_at is None
