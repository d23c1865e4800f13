"""
Database Models - SQLAlchemy ORM models with strict typing.

NO DICTIONARIES - All columns use Mapped[] type annotations.
"""

from datetime import UTC, datetime
from typing import Any
from uuid import UUID, uuid4

from sqlalchemy import (
    Boolean,
    CheckConstraint,
    DateTime,
    ForeignKey,
    Index,
    Integer,
    String,
    TypeDecorator,
    UniqueConstraint,
    Uuid,
    text,
)
from sqlalchemy import Enum as SQLEnum
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column

from companion_accounts.models.api import Character, SubscriptionStatus


class Base(DeclarativeBase):
    """Base class for all ORM models."""

    pass


def utc_now() -> datetime:
    """Get current UTC timestamp."""
    return datetime.now(UTC)


class UTCDateTime(TypeDecorator[datetime]):
    """
    Timezone-aware timestamp on every backend.

    PostgreSQL returns aware values already; SQLite drops tzinfo, so values
    read back without one are re-tagged as UTC.
    """

    impl = DateTime(timezone=True)
    cache_ok = True

    def process_bind_param(self, value: datetime | None, dialect: Any) -> datetime | None:
        if value is not None and value.tzinfo is not None:
            return value.astimezone(UTC)
        return value

    def process_result_value(self, value: datetime | None, dialect: Any) -> datetime | None:
        if value is not None and value.tzinfo is None:
            return value.replace(tzinfo=UTC)
        return value


def _character_column() -> SQLEnum:
    return SQLEnum(
        Character,
        name="character",
        native_enum=False,
        length=20,
        values_callable=lambda x: [e.value for e in x],
    )


class Account(Base):
    """
    ORM model for accounts table.

    Identity anchor: one row per normalized email.
    """

    __tablename__ = "accounts"

    id: Mapped[UUID] = mapped_column(Uuid, primary_key=True, default=uuid4)

    # Identity fields
    email: Mapped[str] = mapped_column(String(320), nullable=False)
    stripe_customer_id: Mapped[str | None] = mapped_column(String(255), nullable=True)

    # Status
    subscription_status: Mapped[SubscriptionStatus] = mapped_column(
        SQLEnum(
            SubscriptionStatus,
            name="subscription_status",
            native_enum=False,
            length=20,
            values_callable=lambda x: [e.value for e in x],
        ),
        nullable=False,
        default=SubscriptionStatus.TRIAL,
    )

    # Audit timestamps
    created_at: Mapped[datetime] = mapped_column(UTCDateTime, nullable=False, default=utc_now)
    updated_at: Mapped[datetime] = mapped_column(
        UTCDateTime, nullable=False, default=utc_now, onupdate=utc_now
    )

    __table_args__ = (
        UniqueConstraint("email", name="uq_accounts_email"),
        UniqueConstraint("stripe_customer_id", name="uq_accounts_stripe_customer"),
        Index("idx_accounts_subscription_status", "subscription_status"),
    )

    def __repr__(self) -> str:
        """String representation for debugging."""
        return f"<Account(id={self.id}, email={self.email}, status={self.subscription_status})>"


class AccountCharacter(Base):
    """
    ORM model for account_characters table.

    One row per character granted to an account.
    """

    __tablename__ = "account_characters"

    id: Mapped[UUID] = mapped_column(Uuid, primary_key=True, default=uuid4)
    account_id: Mapped[UUID] = mapped_column(
        Uuid, ForeignKey("accounts.id", ondelete="CASCADE"), nullable=False
    )
    character: Mapped[Character] = mapped_column(_character_column(), nullable=False)
    added_at: Mapped[datetime] = mapped_column(UTCDateTime, nullable=False, default=utc_now)

    __table_args__ = (
        UniqueConstraint("account_id", "character", name="uq_account_character"),
        Index("idx_account_characters_account_id", "account_id"),
    )


class TelegramLink(Base):
    """
    ORM model for telegram_links table.

    Binds a chat id to an account in the context of one character.
    """

    __tablename__ = "telegram_links"

    id: Mapped[UUID] = mapped_column(Uuid, primary_key=True, default=uuid4)
    chat_id: Mapped[str] = mapped_column(String(255), nullable=False)
    account_id: Mapped[UUID] = mapped_column(
        Uuid, ForeignKey("accounts.id", ondelete="CASCADE"), nullable=False
    )
    character: Mapped[Character] = mapped_column(_character_column(), nullable=False)
    linked_at: Mapped[datetime] = mapped_column(UTCDateTime, nullable=False, default=utc_now)

    __table_args__ = (
        UniqueConstraint("chat_id", "character", name="uq_telegram_link_chat_character"),
        Index("idx_telegram_links_chat_id", "chat_id"),
        Index("idx_telegram_links_account_id", "account_id"),
    )


class PendingLink(Base):
    """
    ORM model for pending_links table.

    In-flight magic-link request; single-use, expires after the configured TTL.
    """

    __tablename__ = "pending_links"

    id: Mapped[UUID] = mapped_column(Uuid, primary_key=True, default=uuid4)
    email: Mapped[str] = mapped_column(String(320), nullable=False)
    chat_id: Mapped[str] = mapped_column(String(255), nullable=False)
    character: Mapped[Character] = mapped_column(_character_column(), nullable=False)
    first_name: Mapped[str | None] = mapped_column(String(255), nullable=True)
    token: Mapped[str] = mapped_column(String(64), nullable=False)
    expires_at: Mapped[datetime] = mapped_column(UTCDateTime, nullable=False)
    created_at: Mapped[datetime] = mapped_column(UTCDateTime, nullable=False, default=utc_now)

    __table_args__ = (
        UniqueConstraint("token", name="uq_pending_links_token"),
        UniqueConstraint("chat_id", "character", name="uq_pending_link_chat_character"),
        Index("idx_pending_links_expires_at", "expires_at"),
    )


class Trial(Base):
    """
    ORM model for trials table.

    Metered free messages per (chat, character).
    """

    __tablename__ = "trials"

    id: Mapped[UUID] = mapped_column(Uuid, primary_key=True, default=uuid4)
    chat_id: Mapped[str] = mapped_column(String(255), nullable=False)
    character: Mapped[Character] = mapped_column(_character_column(), nullable=False)
    messages_remaining: Mapped[int] = mapped_column(Integer, nullable=False)
    trial_exhausted_at: Mapped[datetime | None] = mapped_column(UTCDateTime, nullable=True)
    bump_given: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    created_at: Mapped[datetime] = mapped_column(UTCDateTime, nullable=False, default=utc_now)

    __table_args__ = (
        CheckConstraint("messages_remaining >= 0", name="ck_trial_messages_non_negative"),
        UniqueConstraint("chat_id", "character", name="uq_trial_chat_character"),
        Index(
            "idx_trials_exhausted",
            "trial_exhausted_at",
            postgresql_where=text("messages_remaining = 0"),
        ),
    )

    def __repr__(self) -> str:
        """String representation for debugging."""
        return (
            f"<Trial(chat_id={self.chat_id}, character={self.character}, "
            f"remaining={self.messages_remaining}, bump_given={self.bump_given})>"
        )


class Subscription(Base):
    """
    ORM model for subscriptions table.

    One row per payment-provider subscription; keyed by the provider's id.
    """

    __tablename__ = "subscriptions"

    id: Mapped[UUID] = mapped_column(Uuid, primary_key=True, default=uuid4)
    account_id: Mapped[UUID] = mapped_column(
        Uuid, ForeignKey("accounts.id", ondelete="CASCADE"), nullable=False
    )
    stripe_subscription_id: Mapped[str] = mapped_column(String(255), nullable=False)
    tier: Mapped[int] = mapped_column(Integer, nullable=False)
    status: Mapped[str] = mapped_column(String(50), nullable=False)
    current_period_start: Mapped[datetime | None] = mapped_column(UTCDateTime, nullable=True)
    current_period_end: Mapped[datetime | None] = mapped_column(UTCDateTime, nullable=True)
    created_at: Mapped[datetime] = mapped_column(UTCDateTime, nullable=False, default=utc_now)

    __table_args__ = (
        CheckConstraint("tier > 0", name="ck_subscription_tier_positive"),
        UniqueConstraint("stripe_subscription_id", name="uq_subscriptions_stripe_id"),
        Index("idx_subscriptions_account_created", "account_id", "created_at"),
    )
