from typing import List, Optional
from datetime import datetime, date
import uuid
from sqlalchemy import (
    String,
    Boolean,
    Integer,
    Text,
    ForeignKey,
    Index,
    func,
    UniqueConstraint,
    CheckConstraint,
    DateTime,
    Date,
    Uuid,
)
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column, relationship


class Base(DeclarativeBase):
    pass


# Base model with common audit fields
class AuditMixin:
    """Mixin for common audit fields"""

    created_at: Mapped[datetime] = mapped_column(
        DateTime, server_default=func.now(), nullable=False
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime, server_default=func.now(), onupdate=func.now()
    )


# Models
class User(Base, AuditMixin):
    """Account row; owned by the auth layer, read here for the email address."""

    __tablename__ = "users"

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    email: Mapped[Optional[str]] = mapped_column(String(320))  # RFC 5321 max length

    # Relationships
    profile: Mapped[Optional["Profile"]] = relationship(
        back_populates="user", cascade="all, delete-orphan"
    )


class Profile(Base, AuditMixin):
    __tablename__ = "profiles"

    id: Mapped[uuid.UUID] = mapped_column(
        Uuid, ForeignKey("users.id", ondelete="CASCADE"), primary_key=True
    )
    full_name: Mapped[Optional[str]] = mapped_column(String(200))
    business_name: Mapped[Optional[str]] = mapped_column(String(200))
    timezone: Mapped[Optional[str]] = mapped_column(String(64))
    # Nullable so rows created before the reminder settings existed read as defaults
    reminder_enabled: Mapped[Optional[bool]] = mapped_column(Boolean)
    reminder_lead_minutes: Mapped[Optional[int]] = mapped_column(Integer)
    daily_summary_enabled: Mapped[Optional[bool]] = mapped_column(Boolean)
    daily_summary_time: Mapped[Optional[str]] = mapped_column(String(5))

    # Relationships
    user: Mapped["User"] = relationship(back_populates="profile")


class Lead(Base, AuditMixin):
    __tablename__ = "leads"

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    user_id: Mapped[uuid.UUID] = mapped_column(
        Uuid, ForeignKey("users.id", ondelete="CASCADE"), nullable=False
    )
    name: Mapped[str] = mapped_column(String(200), nullable=False)
    phone_number: Mapped[Optional[str]] = mapped_column(String(32))

    # Relationships
    follow_ups: Mapped[List["FollowUp"]] = relationship(
        back_populates="lead", cascade="all, delete-orphan"
    )

    # Constraints
    __table_args__ = (Index("idx_leads_user_id", "user_id"),)


class FollowUp(Base, AuditMixin):
    __tablename__ = "follow_ups"

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    lead_id: Mapped[uuid.UUID] = mapped_column(
        Uuid, ForeignKey("leads.id", ondelete="CASCADE"), nullable=False
    )
    user_id: Mapped[uuid.UUID] = mapped_column(
        Uuid, ForeignKey("users.id", ondelete="CASCADE"), nullable=False
    )
    # Calendar date and wall-clock time in the owning user's zone
    follow_up_date: Mapped[date] = mapped_column(Date, nullable=False)
    follow_up_time: Mapped[str] = mapped_column(String(8), nullable=False)
    note: Mapped[Optional[str]] = mapped_column(Text)
    completed: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)
    notified: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)
    # Naive UTC lease timestamp; NULL when unclaimed
    notification_claimed_at: Mapped[Optional[datetime]] = mapped_column(DateTime)
    notified_at: Mapped[Optional[datetime]] = mapped_column(DateTime)

    # Relationships
    lead: Mapped["Lead"] = relationship(back_populates="follow_ups")

    # Constraints
    __table_args__ = (
        CheckConstraint(
            "NOT (notified AND notification_claimed_at IS NOT NULL)",
            name="ck_follow_ups_notified_unclaimed",
        ),
        Index(
            "idx_follow_ups_pending",
            "completed",
            "notified",
            "follow_up_date",
        ),
        Index("idx_follow_ups_user_date", "user_id", "follow_up_date"),
    )


class DigestLog(Base):
    """Durable per-user, per-local-day record of sent digests."""

    __tablename__ = "digest_logs"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    user_id: Mapped[uuid.UUID] = mapped_column(Uuid, nullable=False)
    local_date: Mapped[str] = mapped_column(String(10), nullable=False)
    sent_at: Mapped[datetime] = mapped_column(
        DateTime, server_default=func.now(), nullable=False
    )

    # Constraints
    __table_args__ = (
        UniqueConstraint("user_id", "local_date", name="uq_digest_logs_user_date"),
        Index("idx_digest_logs_user_sent", "user_id", "sent_at"),
    )
