"""
Payment Provider Protocol - Provider-agnostic interface.

NO DICTIONARIES - All data uses strongly typed models.
"""

from dataclasses import dataclass, field
from datetime import datetime
from typing import Protocol

from companion_accounts.models.api import Character


@dataclass(frozen=True)
class CheckoutRequest:
    """
    Provider-agnostic subscription checkout request.

    Everything the payment page needs plus the metadata that must come back
    on the completion event.
    """

    email: str
    tier: int
    tier_name: str
    price_minor: int
    currency: str
    interval: str
    characters: tuple[Character, ...]
    chat_id: str
    character: Character
    token: str
    success_url: str
    cancel_url: str


@dataclass(frozen=True)
class CheckoutSession:
    """Created checkout session."""

    session_id: str
    url: str


@dataclass(frozen=True)
class PaymentEvent:
    """
    Provider-agnostic subscription lifecycle event.

    Only the fields relevant to ``event_type`` are populated.
    """

    event_id: str
    event_type: str
    subscription_id: str | None = None
    customer_id: str | None = None
    email: str | None = None
    status: str | None = None
    tier: int = 0
    characters: tuple[Character, ...] = field(default_factory=tuple)
    chat_id: str | None = None
    character: Character | None = None
    token: str | None = None
    current_period_start: datetime | None = None
    current_period_end: datetime | None = None


class PaymentProvider(Protocol):
    """
    Payment provider protocol.

    The reconciler only ever sees PaymentEvent, so swapping providers means
    implementing this interface and nothing else.
    """

    async def create_checkout_session(self, request: CheckoutRequest) -> CheckoutSession:
        """
        Create a hosted subscription checkout.

        Raises:
            PaymentProviderError: If the provider call fails
        """
        ...

    async def verify_webhook(self, payload: bytes, signature: str) -> PaymentEvent:
        """
        Authenticate and parse a webhook delivery.

        Raises:
            WebhookVerificationError: Bad or missing signature, stale timestamp,
                or unparseable payload
        """
        ...
