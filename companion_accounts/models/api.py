"""
API Models - Pydantic models for request/response validation.

NO DICTIONARIES - All data structures are strongly typed.
Wire format is camelCase; Python attributes stay snake_case.
"""

from datetime import datetime
from enum import Enum
from uuid import UUID

from pydantic import BaseModel, ConfigDict, Field, field_validator
from pydantic.alias_generators import to_camel


class Character(str, Enum):
    """Closed catalogue of companion characters."""

    SADIE = "sadie"
    COLE = "cole"
    NORA = "nora"
    ELLIOTT = "elliott"
    CLARA = "clara"
    SEAN = "sean"


class SubscriptionStatus(str, Enum):
    """Account-level subscription status."""

    TRIAL = "trial"
    ACTIVE = "active"
    PAST_DUE = "past_due"
    CANCELED = "canceled"

    @classmethod
    def from_provider(cls, provider_status: str) -> "SubscriptionStatus":
        """Map a payment-provider subscription status onto an account status."""
        if provider_status == "active":
            return cls.ACTIVE
        if provider_status == "past_due":
            return cls.PAST_DUE
        return cls.CANCELED


class AccessReason(str, Enum):
    """Why access was granted or denied."""

    SUBSCRIBED = "subscribed"
    TRIAL = "trial"
    NO_ACCESS = "no_access"
    TRIAL_EXPIRED = "trial_expired"


class CamelModel(BaseModel):
    """Base model serialising to camelCase and accepting either casing on input."""

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


# ============================================================================
# Access Models
# ============================================================================


class AccessCheckResponse(CamelModel):
    """GET /access/{chatId}/{character} response."""

    has_access: bool
    reason: AccessReason
    trial_remaining: int | None = None
    account_id: UUID | None = None
    email: str | None = None


class AccessSummaryResponse(CamelModel):
    """GET /access/{chatId} response."""

    has_account: bool
    account_id: UUID | None = None
    email: str | None = None
    subscription_status: SubscriptionStatus | None = Field(None, alias="subscription_status")
    characters: list[Character] = Field(default_factory=list)


# ============================================================================
# Trial Models
# ============================================================================


class TrialRequest(CamelModel):
    """POST /trial/check and /trial/decrement request body."""

    chat_id: str = Field(..., min_length=1, max_length=255)
    character: Character


class TrialCheckResponse(CamelModel):
    """POST /trial/check response."""

    has_trial_remaining: bool
    messages_remaining: int
    is_new_trial: bool


class TrialDecrementResponse(CamelModel):
    """POST /trial/decrement response."""

    success: bool = True
    messages_remaining: int
    trial_expired: bool


# ============================================================================
# Magic Link Models
# ============================================================================


class InitiateLinkRequest(CamelModel):
    """POST /link/initiate request body."""

    email: str = Field(..., min_length=1, max_length=255)
    chat_id: str = Field(..., min_length=1, max_length=255)
    character: Character
    first_name: str | None = Field(None, max_length=255)


class InitiateLinkResponse(CamelModel):
    """POST /link/initiate response."""

    success: bool
    message: str
    token: str | None = None


class VerifyLinkResponse(CamelModel):
    """GET /link/verify/{token} response."""

    valid: bool
    email: str | None = None
    chat_id: str | None = None
    character: Character | None = None
    first_name: str | None = None
    error: str | None = None


class CompleteLinkRequest(CamelModel):
    """POST /link/complete request body."""

    token: str = Field(..., min_length=1)
    characters: list[Character] = Field(..., min_length=1)
    stripe_customer_id: str | None = Field(None, max_length=255)


class CompleteLinkResponse(CamelModel):
    """POST /link/complete response."""

    success: bool = True
    account_id: UUID
    message: str = "Account linked successfully!"


# ============================================================================
# Subscription Models
# ============================================================================


class PricingTierResponse(CamelModel):
    """One row of the pricing table."""

    price: int
    name: str


class PricingResponse(CamelModel):
    """GET /subscription/pricing response."""

    pricing: dict[int, PricingTierResponse]
    currency: str
    interval: str = "month"


class CreateCheckoutRequest(CamelModel):
    """POST /subscription/create-checkout request body."""

    token: str = Field(..., min_length=1)
    tier: int = Field(..., gt=0)
    characters: list[Character] = Field(..., min_length=1)
    success_url: str | None = None
    cancel_url: str | None = None

    @field_validator("characters")
    @classmethod
    def validate_distinct(cls, v: list[Character]) -> list[Character]:
        """Characters in one checkout must be distinct."""
        if len(set(v)) != len(v):
            raise ValueError("characters must not contain duplicates")
        return v


class CreateCheckoutResponse(CamelModel):
    """POST /subscription/create-checkout response."""

    session_id: str
    url: str


class WebhookAckResponse(CamelModel):
    """POST /subscription/webhook response."""

    received: bool = True


class SubscriptionRecordResponse(BaseModel):
    """Subscription row as exposed to clients (snake_case, mirrors the table)."""

    id: UUID
    account_id: UUID
    stripe_subscription_id: str
    tier: int
    status: str
    current_period_start: datetime | None = None
    current_period_end: datetime | None = None
    created_at: datetime


class SubscriptionDetailResponse(CamelModel):
    """GET /subscription/{accountId} response."""

    subscription: SubscriptionRecordResponse | None = None
    characters: list[Character] = Field(default_factory=list)


# ============================================================================
# Service Models
# ============================================================================


class HealthResponse(BaseModel):
    """GET /health response."""

    status: str
    service: str
    version: str


class ErrorResponse(BaseModel):
    """Error body returned for 4xx/5xx responses."""

    error: str
