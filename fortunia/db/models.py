"""SQLAlchemy ORM models for Fortunia.

Defines all database tables using SQLAlchemy 2.x declarative patterns.
Column types are kept portable (generic Uuid, timezone-aware timestamps
normalized to UTC) so the same metadata runs on PostgreSQL in production
and SQLite in the test suite.

Principal ids are stored as text: registered users use their auth UUID,
guests use the device identifier held by the client.
"""

from datetime import UTC, date, datetime
from enum import Enum as PyEnum
from uuid import UUID, uuid4

from sqlalchemy import (
    Boolean,
    CheckConstraint,
    Date,
    DateTime,
    Index,
    Integer,
    Text,
    TypeDecorator,
    Uuid,
)
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column

from fortunia.services.clock import utc_now


class UTCDateTime(TypeDecorator):
    """Timezone-aware timestamp that always round-trips as UTC.

    Backends without native timezone support (SQLite) return naive values;
    those are interpreted as UTC.
    """

    impl = DateTime(timezone=True)
    cache_ok = True

    def process_bind_param(self, value: datetime | None, dialect) -> datetime | None:
        if value is None:
            return None
        if value.tzinfo is None:
            raise ValueError("naive datetime bound to a UTC column")
        return value.astimezone(UTC)

    def process_result_value(self, value: datetime | None, dialect) -> datetime | None:
        if value is None:
            return None
        if value.tzinfo is None:
            return value.replace(tzinfo=UTC)
        return value.astimezone(UTC)


class Base(DeclarativeBase):
    """Base class for all ORM models."""

    pass


# =============================================================================
# Enums
# =============================================================================


class SubscriptionStatus(str, PyEnum):
    """Store-reported subscription lifecycle states."""

    active = "active"
    expired = "expired"
    cancelled = "cancelled"


class SubscriptionEnvironment(str, PyEnum):
    """App store environment a transaction was made in."""

    sandbox = "sandbox"
    production = "production"


# =============================================================================
# Models
# =============================================================================


class UserProfile(Base):
    """Birth details collected during onboarding.

    The id matches the Supabase auth user ID (sub claim), or the device id
    of a guest whose id is a UUID.
    """

    __tablename__ = "user_profiles"

    id: Mapped[UUID] = mapped_column(Uuid, primary_key=True)
    birth_date: Mapped[date | None] = mapped_column(Date, nullable=True)
    birth_time: Mapped[str | None] = mapped_column(Text, nullable=True)
    birth_city: Mapped[str | None] = mapped_column(Text, nullable=True)
    birth_country: Mapped[str | None] = mapped_column(Text, nullable=True)
    created_at: Mapped[datetime] = mapped_column(UTCDateTime, default=utc_now, nullable=False)


class QuotaLedger(Base):
    """Per-principal daily quota counter.

    quota_used counts consumption on quota_date (UTC). A row whose
    quota_date is in the past is read as zero used; the next consume
    rolls it over in the same conditional UPDATE that increments it.
    """

    __tablename__ = "quota_ledger"

    principal_id: Mapped[str] = mapped_column(Text, primary_key=True)
    quota_date: Mapped[date] = mapped_column(Date, nullable=False)
    quota_used: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    quota_limit: Mapped[int] = mapped_column(Integer, nullable=False)
    total_consumed: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    updated_at: Mapped[datetime] = mapped_column(UTCDateTime, default=utc_now, nullable=False)

    __table_args__ = (
        CheckConstraint("quota_used >= 0", name="ck_quota_ledger_used_non_negative"),
        CheckConstraint("quota_limit >= 0", name="ck_quota_ledger_limit_non_negative"),
    )


class Subscription(Base):
    """In-app purchase subscription state, one row per store transaction."""

    __tablename__ = "subscriptions"

    id: Mapped[UUID] = mapped_column(Uuid, primary_key=True, default=uuid4)
    principal_id: Mapped[str] = mapped_column(Text, nullable=False)
    product_id: Mapped[str] = mapped_column(Text, nullable=False)
    status: Mapped[str] = mapped_column(Text, nullable=False)
    expires_at: Mapped[datetime] = mapped_column(UTCDateTime, nullable=False)
    transaction_id: Mapped[str] = mapped_column(Text, nullable=False, unique=True)
    purchase_date: Mapped[datetime] = mapped_column(UTCDateTime, nullable=False)
    environment: Mapped[str] = mapped_column(Text, nullable=False)
    created_at: Mapped[datetime] = mapped_column(UTCDateTime, default=utc_now, nullable=False)
    updated_at: Mapped[datetime] = mapped_column(UTCDateTime, default=utc_now, nullable=False)

    __table_args__ = (
        CheckConstraint(
            "status IN ('active', 'expired', 'cancelled')",
            name="ck_subscriptions_status",
        ),
        CheckConstraint(
            "environment IN ('sandbox', 'production')",
            name="ck_subscriptions_environment",
        ),
        Index("ix_subscriptions_principal_expires", "principal_id", "expires_at"),
    )


class Reading(Base):
    """A completed fortune reading.

    Immutable after creation except share_card_url, which a later
    share-card step may fill in and the retention sweep may clear.
    """

    __tablename__ = "readings"

    id: Mapped[UUID] = mapped_column(Uuid, primary_key=True, default=uuid4)
    principal_id: Mapped[str] = mapped_column(Text, nullable=False)
    reading_type: Mapped[str] = mapped_column(Text, nullable=False)
    cultural_origin: Mapped[str] = mapped_column(Text, nullable=False)
    image_url: Mapped[str | None] = mapped_column(Text, nullable=True)
    result_text: Mapped[str] = mapped_column(Text, nullable=False)
    share_card_url: Mapped[str | None] = mapped_column(Text, nullable=True)
    is_premium_at_time: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    created_at: Mapped[datetime] = mapped_column(UTCDateTime, default=utc_now, nullable=False)

    __table_args__ = (
        CheckConstraint(
            "reading_type IN ('face', 'palm', 'tarot', 'coffee')",
            name="ck_readings_reading_type",
        ),
        Index("ix_readings_principal_id", "principal_id"),
        Index("ix_readings_created_at", "created_at"),
    )
