"""
Checkout Service - turns a verified magic link into a payment session.
"""

from collections.abc import Sequence

from structlog import get_logger

from companion_accounts.exceptions import PaymentProviderError, ValidationError
from companion_accounts.models.api import Character
from companion_accounts.observability.logging import token_prefix
from companion_accounts.observability.metrics import metrics
from companion_accounts.services.magic_link import MagicLinkService
from companion_accounts.services.payment_provider import (
    CheckoutRequest,
    CheckoutSession,
    PaymentProvider,
)
from companion_accounts.services.pricing import BILLING_INTERVAL, get_tier

logger = get_logger(__name__)


class CheckoutService:
    """Validates a plan selection and opens a provider checkout for it."""

    def __init__(
        self,
        magic_links: MagicLinkService,
        provider: PaymentProvider,
        currency: str,
        success_url: str,
        cancel_url: str,
    ) -> None:
        self.magic_links = magic_links
        self.provider = provider
        self.currency = currency
        self.success_url = success_url
        self.cancel_url = cancel_url

    async def create_checkout(
        self,
        token: str,
        tier: int,
        characters: Sequence[Character],
        success_url: str | None = None,
        cancel_url: str | None = None,
    ) -> CheckoutSession:
        """
        Open a subscription checkout for the link's email.

        The token is only peeked here; it is consumed when the checkout
        completes.

        Raises:
            ValidationError: Unknown tier, or character count not equal to tier
            TokenNotFoundError / TokenExpiredError: As for verify()
            PaymentProviderError: The provider call failed
        """
        pricing = get_tier(tier)
        selected = tuple(dict.fromkeys(characters))
        if len(selected) != len(characters):
            raise ValidationError("Characters must not repeat")
        if len(selected) != tier:
            raise ValidationError(f"Tier {tier} requires exactly {tier} characters")

        intent = await self.magic_links.verify(token)

        request = CheckoutRequest(
            email=intent.email,
            tier=pricing.tier,
            tier_name=pricing.name,
            price_minor=pricing.price_minor,
            currency=self.currency,
            interval=BILLING_INTERVAL,
            characters=selected,
            chat_id=intent.chat_id,
            character=intent.character,
            token=token,
            success_url=success_url or self.success_url,
            cancel_url=cancel_url or self.cancel_url,
        )

        try:
            session = await self.provider.create_checkout_session(request)
        except PaymentProviderError:
            metrics.checkout_sessions_total.labels(tier=str(tier), success="False").inc()
            raise

        metrics.checkout_sessions_total.labels(tier=str(tier), success="True").inc()
        logger.info(
            "checkout_created",
            session_id=session.session_id,
            tier=tier,
            chat_id=intent.chat_id,
            token=token_prefix(token),
        )
        return session
