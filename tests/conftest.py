import uuid
from datetime import date
from typing import Generator, Optional
from unittest.mock import AsyncMock, Mock

import pytest
from sqlalchemy import create_engine
from sqlalchemy.orm import Session, sessionmaker
from sqlalchemy.pool import StaticPool

from crm_reminders.db.models import Base, FollowUp, Lead, Profile, User
from crm_reminders.services.reminders import cycle as cycle_module
from crm_reminders.services.reminders.digest import _process_dedup_store


# Test database setup
TEST_DATABASE_URL = "sqlite:///:memory:"


@pytest.fixture
def test_engine():
    """Create a fresh in-memory database per test."""
    engine = create_engine(
        TEST_DATABASE_URL,
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
        echo=False,
    )
    Base.metadata.create_all(engine)
    yield engine
    engine.dispose()


@pytest.fixture
def db_session(test_engine) -> Generator[Session, None, None]:
    """Create a database session for each test."""
    session_maker = sessionmaker(bind=test_engine, class_=Session, expire_on_commit=False)
    session = session_maker()
    try:
        yield session
    finally:
        session.rollback()
        session.close()


@pytest.fixture(autouse=True)
def reset_process_state():
    """Forget process-wide caches between tests."""
    cycle_module.reset_claim_support()
    _process_dedup_store.clear()
    yield
    cycle_module.reset_claim_support()
    _process_dedup_store.clear()


@pytest.fixture
def mock_celery_task():
    """Mock bound Celery task."""
    mock_task = Mock()
    mock_task.request.retries = 0
    mock_task.max_retries = 0
    return mock_task


@pytest.fixture
def fake_email_service():
    """Email service whose send_email succeeds and records calls."""
    service = Mock()
    service.send_email = AsyncMock(return_value=True)
    return service


@pytest.fixture
def failing_email_service():
    service = Mock()
    service.send_email = AsyncMock(return_value=False)
    return service


# Test data factories
@pytest.fixture
def make_user(db_session: Session):
    def _make_user(
        email: Optional[str] = "owner@example.com",
        with_profile: bool = True,
        **profile_fields,
    ) -> User:
        user = User(id=uuid.uuid4(), email=email)
        db_session.add(user)
        if with_profile:
            fields = {"timezone": "Africa/Harare", "reminder_lead_minutes": 5}
            fields.update(profile_fields)
            db_session.add(Profile(id=user.id, **fields))
        db_session.commit()
        return user

    return _make_user


@pytest.fixture
def make_lead(db_session: Session):
    def _make_lead(user: User, name: str = "Tendai", phone_number: Optional[str] = "+263 77 123 4567") -> Lead:
        lead = Lead(id=uuid.uuid4(), user_id=user.id, name=name, phone_number=phone_number)
        db_session.add(lead)
        db_session.commit()
        return lead

    return _make_lead


@pytest.fixture
def make_follow_up(db_session: Session):
    def _make_follow_up(
        lead: Lead,
        follow_up_date: date = date(2026, 2, 5),
        follow_up_time: str = "09:00",
        **fields,
    ) -> FollowUp:
        follow_up = FollowUp(
            id=uuid.uuid4(),
            lead_id=lead.id,
            user_id=lead.user_id,
            follow_up_date=follow_up_date,
            follow_up_time=follow_up_time,
            **fields,
        )
        db_session.add(follow_up)
        db_session.commit()
        return follow_up

    return _make_follow_up


@pytest.fixture
def sample_user(make_user) -> User:
    return make_user()


@pytest.fixture
def sample_lead(make_lead, sample_user: User) -> Lead:
    return make_lead(sample_user)
