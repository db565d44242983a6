"""
Tests for the HTTP cron trigger and health endpoint.
"""

from unittest.mock import AsyncMock, patch

import pytest
from fastapi.testclient import TestClient

from crm_reminders.config.settings import settings
from crm_reminders.db.session import get_sync_session
from crm_reminders.main import app

CYCLE_RESULT = {
    "success": True,
    "candidates": 3,
    "reminders_sent": 1,
    "digests_sent": 0,
    "request_id": "abc",
}


@pytest.fixture
def client(db_session, monkeypatch):
    monkeypatch.setattr(settings, "CRON_SECRET", "s3cret")
    app.dependency_overrides[get_sync_session] = lambda: db_session
    yield TestClient(app)
    app.dependency_overrides.clear()


class TestCronAuthentication:
    def test_missing_secret_is_rejected(self, client):
        response = client.get("/cron/reminders")

        assert response.status_code == 401
        body = response.json()
        assert body["success"] is False
        assert body["meta"]["error_code"] == "UNAUTHORIZED"

    def test_wrong_secret_is_rejected(self, client):
        response = client.get("/cron/reminders", headers={"Authorization": "Bearer nope"})

        assert response.status_code == 401

    def test_empty_configured_secret_rejects_everything(self, client, monkeypatch):
        monkeypatch.setattr(settings, "CRON_SECRET", "")

        response = client.get("/cron/reminders", params={"secret": ""})

        assert response.status_code == 401


class TestCronTrigger:
    @patch("crm_reminders.routers.cron.run_reminder_cycle", new_callable=AsyncMock)
    def test_bearer_secret_runs_cycle(self, mock_run, client, db_session):
        mock_run.return_value = CYCLE_RESULT

        response = client.get("/cron/reminders", headers={"Authorization": "Bearer s3cret"})

        assert response.status_code == 200
        body = response.json()
        assert body["success"] is True
        assert body["data"]["reminders_sent"] == 1
        assert body["requestId"] == response.headers["X-Request-ID"]
        session, request_id = mock_run.await_args.args
        assert session is db_session
        assert request_id == response.headers["X-Request-ID"]

    @patch("crm_reminders.routers.cron.run_reminder_cycle", new_callable=AsyncMock)
    def test_query_secret_and_post(self, mock_run, client):
        mock_run.return_value = CYCLE_RESULT

        response = client.post("/cron/reminders", params={"secret": "s3cret"})

        assert response.status_code == 200
        mock_run.assert_awaited_once()

    @patch("crm_reminders.routers.cron.run_reminder_cycle", new_callable=AsyncMock)
    def test_failed_cycle_returns_500(self, mock_run, client):
        mock_run.return_value = {"success": False, "error": "db down", "request_id": "abc"}

        response = client.get("/cron/reminders", params={"secret": "s3cret"})

        assert response.status_code == 500
        body = response.json()
        assert body["success"] is False
        assert body["meta"]["error_code"] == "REMINDER_CYCLE_FAILED"
        assert body["data"]["error"] == "db down"


def test_health_check(client):
    response = client.get("/shared/health/")

    assert response.status_code == 200
    assert response.json()["data"]["status"] == "healthy"
