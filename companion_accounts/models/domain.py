"""
Domain Models - Internal business logic models using dataclasses.

NO DICTIONARIES - All data structures are strongly typed immutable dataclasses.
"""

from dataclasses import dataclass, field
from datetime import datetime
from uuid import UUID

from companion_accounts.models.api import AccessReason, Character, SubscriptionStatus


@dataclass(frozen=True)
class AccountData:
    """Immutable account data snapshot."""

    account_id: UUID
    email: str
    stripe_customer_id: str | None
    subscription_status: SubscriptionStatus
    created_at: datetime
    updated_at: datetime


@dataclass(frozen=True)
class TrialData:
    """Immutable trial state for one (chat, character) pair."""

    trial_id: UUID
    chat_id: str
    character: Character
    messages_remaining: int
    trial_exhausted_at: datetime | None
    bump_given: bool
    created_at: datetime

    def __post_init__(self) -> None:
        """Validate trial invariants."""
        if self.messages_remaining < 0:
            raise ValueError(f"Trial messages cannot be negative: {self.messages_remaining}")


@dataclass(frozen=True)
class TrialStatus:
    """Trial report for the chat-side check endpoint."""

    has_trial_remaining: bool
    messages_remaining: int
    is_new_trial: bool


@dataclass(frozen=True)
class PendingLinkData:
    """Immutable in-flight magic-link request."""

    pending_id: UUID
    email: str
    chat_id: str
    character: Character
    token: str
    first_name: str | None
    expires_at: datetime
    created_at: datetime


@dataclass(frozen=True)
class LinkIntent:
    """What a verified magic-link token authorises: email + chat + character."""

    email: str
    chat_id: str
    character: Character
    first_name: str | None


@dataclass(frozen=True)
class SubscriptionData:
    """Immutable subscription record."""

    subscription_id: UUID
    account_id: UUID
    stripe_subscription_id: str
    tier: int
    status: str
    current_period_start: datetime | None
    current_period_end: datetime | None
    created_at: datetime


@dataclass(frozen=True)
class AccessDecision:
    """Authoritative access decision for one chat + character."""

    has_access: bool
    reason: AccessReason
    trial_remaining: int | None = None
    account_id: UUID | None = None
    email: str | None = None


@dataclass(frozen=True)
class AccessSummary:
    """Account-centric view for a chat id."""

    has_account: bool
    account_id: UUID | None = None
    email: str | None = None
    subscription_status: SubscriptionStatus | None = None
    characters: tuple[Character, ...] = field(default_factory=tuple)


@dataclass(frozen=True)
class SubscriptionSummary:
    """Latest subscription plus granted characters for an account."""

    subscription: SubscriptionData | None
    characters: tuple[Character, ...]


@dataclass(frozen=True)
class ReactivationResult:
    """Outcome of one trial reactivation sweep."""

    selected: int
    bumped: int
    skipped: int
    failed: int
