"""
Tests for the Celery reminder cycle task.
"""

from datetime import datetime, timezone
from unittest.mock import AsyncMock, patch

import pytest

from crm_reminders.tasks.cron.reminder_cycle import _async_run_reminder_cycle
from crm_reminders.utils.context import get_request_id


class TestReminderCycleTask:
    @pytest.mark.asyncio
    @patch("crm_reminders.tasks.cron.reminder_cycle.get_sync_session")
    @patch("crm_reminders.tasks.cron.reminder_cycle.run_reminder_cycle", new_callable=AsyncMock)
    async def test_runs_cycle_with_session(self, mock_run, mock_get_session, db_session):
        mock_get_session.return_value = iter([db_session])
        mock_run.return_value = {
            "success": True,
            "reminders_sent": 2,
            "digests_sent": 1,
            "request_id": "reminder_cycle_cron",
        }

        result = await _async_run_reminder_cycle("reminder_cycle_cron")

        assert result["success"] is True
        mock_run.assert_awaited_once_with(db_session, "reminder_cycle_cron")

    @pytest.mark.asyncio
    @patch("crm_reminders.tasks.cron.reminder_cycle.get_sync_session")
    @patch("crm_reminders.tasks.cron.reminder_cycle.run_reminder_cycle", new_callable=AsyncMock)
    async def test_request_id_is_scoped_to_the_cycle(self, mock_run, mock_get_session, db_session):
        seen = {}

        async def capture(session, request_id):
            seen["request_id"] = get_request_id()
            return {"success": True, "reminders_sent": 0, "digests_sent": 0, "request_id": request_id}

        mock_get_session.return_value = iter([db_session])
        mock_run.side_effect = capture

        await _async_run_reminder_cycle("cycle-42")

        assert seen["request_id"] == "cycle-42"
        assert get_request_id() is None

    @pytest.mark.asyncio
    @patch("crm_reminders.tasks.cron.reminder_cycle.get_sync_session")
    @patch("crm_reminders.tasks.cron.reminder_cycle.run_reminder_cycle", new_callable=AsyncMock)
    async def test_unexpected_error_is_reported(self, mock_run, mock_get_session, db_session):
        mock_get_session.return_value = iter([db_session])
        mock_run.side_effect = RuntimeError("Database connection failed")

        result = await _async_run_reminder_cycle("reminder_cycle_cron")

        assert result["success"] is False
        assert "Database connection failed" in result["error"]
        assert result["request_id"] == "reminder_cycle_cron"

    @pytest.mark.asyncio
    @patch("crm_reminders.tasks.cron.reminder_cycle.get_sync_session")
    async def test_end_to_end_against_database(
        self, mock_get_session, db_session, sample_lead, make_follow_up, fake_email_service
    ):
        make_follow_up(sample_lead)
        mock_get_session.return_value = iter([db_session])
        now = datetime(2026, 2, 5, 6, 56, tzinfo=timezone.utc)

        with patch(
            "crm_reminders.services.reminders.cycle.get_email_service",
            return_value=fake_email_service,
        ), patch("crm_reminders.services.reminders.cycle.utc_now", return_value=now):
            result = await _async_run_reminder_cycle("reminder_cycle_cron")

        assert result["success"] is True
        assert result["reminders_sent"] == 1
        fake_email_service.send_email.assert_awaited_once()
