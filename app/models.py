from __future__ import annotations

import uuid
from datetime import datetime, timezone
from typing import List, Optional

import sqlalchemy as sa
from sqlalchemy import CheckConstraint, ForeignKey, Index
from sqlalchemy.dialects import postgresql as pg
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column
from sqlalchemy.types import TypeDecorator


class UTCDateTime(TypeDecorator):
    """timestamptz on Postgres; naive-UTC text on SQLite. Always returns aware UTC."""

    impl = sa.DateTime(timezone=True)
    cache_ok = True

    def process_bind_param(self, value, dialect):
        if value is None:
            return value
        if value.tzinfo is None:
            value = value.replace(tzinfo=timezone.utc)
        value = value.astimezone(timezone.utc)
        if dialect.name == "sqlite":
            # SQLite compares timestamps as text, so keep one canonical form
            return value.replace(tzinfo=None)
        return value

    def process_result_value(self, value, dialect):
        if value is None:
            return value
        if value.tzinfo is None:
            return value.replace(tzinfo=timezone.utc)
        return value.astimezone(timezone.utc)


JSONType = sa.JSON().with_variant(pg.JSONB(), "postgresql")
EmailType = sa.Text().with_variant(pg.CITEXT(), "postgresql")


# ---------- Base & naming ----------
class Base(DeclarativeBase):
    # Keep index/constraint names stable for cleaner migrations
    metadata = sa.MetaData(
        naming_convention={
            "ix": "ix_%(column_0_label)s",
            "uq": "uq_%(table_name)s_%(column_0_name)s",
            "ck": "ck_%(table_name)s_%(constraint_name)s",
            "fk": "fk_%(table_name)s_%(column_0_name)s_%(referred_table_name)s",
            "pk": "pk_%(table_name)s",
        }
    )


# ---------- VERIFICATION CODES (code ledger) ----------
class VerificationCode(Base):
    __tablename__ = "verification_codes"

    id: Mapped[uuid.UUID] = mapped_column(sa.Uuid, primary_key=True, default=uuid.uuid4)
    email: Mapped[str] = mapped_column(EmailType, nullable=False)  # lowercased + trimmed
    code: Mapped[str] = mapped_column(sa.Text, nullable=False)
    action_type: Mapped[str] = mapped_column(sa.Text, nullable=False)
    action_data: Mapped[dict] = mapped_column(JSONType, nullable=False)

    expires_at: Mapped[datetime] = mapped_column(UTCDateTime, nullable=False)
    used_at: Mapped[Optional[datetime]] = mapped_column(UTCDateTime, nullable=True)
    created_at: Mapped[datetime] = mapped_column(
        UTCDateTime, nullable=False, default=lambda: datetime.now(timezone.utc)
    )

    __table_args__ = (
        CheckConstraint(
            "action_type in ('submission','update','deletion_request',"
            "'update_deletion_request','status_change_request','preference_change')",
            name="verification_codes_action_type",
        ),
        Index("ix_verification_codes_email", "email"),
        Index("ix_verification_codes_expires_at", "expires_at"),
    )


# ---------- ITEMS (long-lived records that receive reminders) ----------
class Item(Base):
    __tablename__ = "items"

    id: Mapped[uuid.UUID] = mapped_column(sa.Uuid, primary_key=True, default=uuid.uuid4)
    title: Mapped[str] = mapped_column(sa.Text, nullable=False)
    prayer_for: Mapped[Optional[str]] = mapped_column(sa.Text, nullable=True)
    requester: Mapped[Optional[str]] = mapped_column(sa.Text, nullable=True)
    is_anonymous: Mapped[bool] = mapped_column(sa.Boolean, nullable=False, default=False, server_default=sa.false())
    email: Mapped[Optional[str]] = mapped_column(EmailType, nullable=True)

    status: Mapped[str] = mapped_column(
        sa.Text,
        nullable=False,
        default="current",
        server_default=sa.text("'current'"),
    )  # 'current' | 'ongoing' | 'answered' | 'closed'
    approval_status: Mapped[str] = mapped_column(
        sa.Text,
        nullable=False,
        default="pending",
        server_default=sa.text("'pending'"),
    )  # 'pending' | 'approved' | 'denied'

    created_at: Mapped[datetime] = mapped_column(
        UTCDateTime, nullable=False, default=lambda: datetime.now(timezone.utc)
    )
    last_reminder_sent_at: Mapped[Optional[datetime]] = mapped_column(UTCDateTime, nullable=True)

    __table_args__ = (
        CheckConstraint("status in ('current','ongoing','answered','closed')", name="items_status"),
        CheckConstraint("approval_status in ('pending','approved','denied')", name="items_approval_status"),
        Index("ix_items_status_approval", "status", "approval_status"),
    )


class ItemUpdate(Base):
    __tablename__ = "item_updates"

    id: Mapped[uuid.UUID] = mapped_column(sa.Uuid, primary_key=True, default=uuid.uuid4)
    item_id: Mapped[uuid.UUID] = mapped_column(sa.Uuid, ForeignKey("items.id", ondelete="CASCADE"), nullable=False)
    content: Mapped[str] = mapped_column(sa.Text, nullable=False)
    created_at: Mapped[datetime] = mapped_column(
        UTCDateTime, nullable=False, default=lambda: datetime.now(timezone.utc)
    )

    __table_args__ = (
        Index("ix_item_updates_item_created", "item_id", "created_at"),
    )


# ---------- ADMIN SETTINGS (single row, id = 1) ----------
class AdminSettingsRow(Base):
    __tablename__ = "admin_settings"

    id: Mapped[int] = mapped_column(sa.Integer, primary_key=True, default=1)
    distribution_policy: Mapped[str] = mapped_column(
        sa.Text, nullable=False, default="admin_only", server_default=sa.text("'admin_only'")
    )  # 'admin_only' | 'all_subscribers'
    notification_emails: Mapped[List[str]] = mapped_column(JSONType, nullable=False, default=list)
    reminder_interval_days: Mapped[int] = mapped_column(
        sa.Integer, nullable=False, default=0, server_default=sa.text("0")
    )
    verification_code_length: Mapped[int] = mapped_column(
        sa.Integer, nullable=False, default=6, server_default=sa.text("6")
    )
    updated_at: Mapped[datetime] = mapped_column(
        UTCDateTime, nullable=False, default=lambda: datetime.now(timezone.utc)
    )

    __table_args__ = (
        CheckConstraint("id = 1", name="admin_settings_singleton"),
        CheckConstraint(
            "distribution_policy in ('admin_only','all_subscribers')", name="admin_settings_distribution"
        ),
        CheckConstraint("verification_code_length between 4 and 10", name="admin_settings_code_length"),
    )
