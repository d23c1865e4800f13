"""
Stripe Payment Provider Implementation.

Checkout sessions are created through the Stripe SDK; webhooks are
authenticated with the SDK's signature check and then parsed from plain JSON
into provider-agnostic PaymentEvent records.
"""

import json
from datetime import UTC, datetime
from typing import Any

import stripe
from structlog import get_logger

from companion_accounts.exceptions import PaymentProviderError, WebhookVerificationError
from companion_accounts.models.api import Character
from companion_accounts.services.payment_provider import (
    CheckoutRequest,
    CheckoutSession,
    PaymentEvent,
)

logger = get_logger(__name__)


def _timestamp(value: Any) -> datetime | None:
    if value is None:
        return None
    try:
        return datetime.fromtimestamp(int(value), UTC)
    except (TypeError, ValueError, OverflowError):
        return None


def _dig(obj: Any, *path: str | int) -> Any:
    """Walk nested dicts/lists, returning None at the first missing step."""
    for step in path:
        if isinstance(step, int):
            if not isinstance(obj, list) or len(obj) <= step:
                return None
        elif not isinstance(obj, dict):
            return None
        obj = obj[step] if isinstance(step, int) else obj.get(step)
        if obj is None:
            return None
    return obj


def _id_of(value: Any) -> str | None:
    """Stripe fields may hold an id string or an expanded object."""
    if isinstance(value, dict):
        value = value.get("id")
    return str(value) if value else None


def _parse_characters(raw: Any) -> tuple[Character, ...]:
    if not raw:
        return ()
    parsed: list[Character] = []
    for name in str(raw).split(","):
        name = name.strip().lower()
        if not name:
            continue
        try:
            character = Character(name)
        except ValueError:
            logger.warning("webhook_unknown_character", character=name)
            continue
        if character not in parsed:
            parsed.append(character)
    return tuple(parsed)


def _parse_character(raw: Any) -> Character | None:
    if not raw:
        return None
    try:
        return Character(str(raw).strip().lower())
    except ValueError:
        logger.warning("webhook_unknown_character", character=raw)
        return None


def _parse_tier(raw: Any) -> int:
    try:
        return max(int(raw), 0)
    except (TypeError, ValueError):
        return 0


def _checkout_metadata(request: CheckoutRequest) -> dict[str, str]:
    return {
        "email": request.email,
        "tier": str(request.tier),
        "characters": ",".join(c.value for c in request.characters),
        "chat_id": request.chat_id,
        "character": request.character.value,
        "token": request.token,
    }


def parse_event(event: dict[str, Any]) -> PaymentEvent:
    """
    Translate a Stripe event into a PaymentEvent.

    Unknown event types come back with only id and type set.
    """
    event_id = str(event.get("id") or "")
    event_type = str(event.get("type") or "")
    obj = _dig(event, "data", "object") or {}
    metadata = obj.get("metadata") or {}

    if event_type == "checkout.session.completed":
        return PaymentEvent(
            event_id=event_id,
            event_type=event_type,
            subscription_id=_id_of(obj.get("subscription")),
            customer_id=_id_of(obj.get("customer")),
            email=metadata.get("email")
            or obj.get("customer_email")
            or _dig(obj, "customer_details", "email"),
            status="active",
            tier=_parse_tier(metadata.get("tier")),
            characters=_parse_characters(metadata.get("characters")),
            chat_id=metadata.get("chat_id") or None,
            character=_parse_character(metadata.get("character")),
            token=metadata.get("token") or None,
        )

    if event_type.startswith("customer.subscription."):
        # Period bounds moved from the subscription onto its items in newer API versions.
        start = obj.get("current_period_start") or _dig(
            obj, "items", "data", 0, "current_period_start"
        )
        end = obj.get("current_period_end") or _dig(obj, "items", "data", 0, "current_period_end")
        return PaymentEvent(
            event_id=event_id,
            event_type=event_type,
            subscription_id=_id_of(obj.get("id")),
            customer_id=_id_of(obj.get("customer")),
            status=obj.get("status"),
            tier=_parse_tier(metadata.get("tier")),
            characters=_parse_characters(metadata.get("characters")),
            current_period_start=_timestamp(start),
            current_period_end=_timestamp(end),
        )

    if event_type.startswith("invoice."):
        subscription_id = _id_of(obj.get("subscription")) or _id_of(
            _dig(obj, "parent", "subscription_details", "subscription")
        )
        return PaymentEvent(
            event_id=event_id,
            event_type=event_type,
            subscription_id=subscription_id,
            customer_id=_id_of(obj.get("customer")),
            email=obj.get("customer_email"),
            current_period_start=_timestamp(_dig(obj, "lines", "data", 0, "period", "start")),
            current_period_end=_timestamp(_dig(obj, "lines", "data", 0, "period", "end")),
        )

    return PaymentEvent(event_id=event_id, event_type=event_type)


class StripeProvider:
    """
    Stripe payment provider implementation.

    Implements the PaymentProvider protocol for Stripe.
    """

    def __init__(self, api_key: str, webhook_secret: str, tolerance_seconds: int = 300) -> None:
        """
        Initialize Stripe provider.

        Args:
            api_key: Stripe secret API key
            webhook_secret: Stripe webhook signing secret
            tolerance_seconds: Maximum accepted age of a webhook timestamp
        """
        self.api_key = api_key
        self.webhook_secret = webhook_secret
        self.tolerance_seconds = tolerance_seconds
        stripe.api_key = api_key

    async def create_checkout_session(self, request: CheckoutRequest) -> CheckoutSession:
        """
        Create a Stripe Checkout Session in subscription mode.

        The tier price is sent inline as recurring price_data. The same
        metadata is put on the session and on the subscription it creates, so
        both checkout and subscription events can be reconciled.

        Raises:
            PaymentProviderError: If Stripe API call fails
        """
        metadata = _checkout_metadata(request)
        try:
            logger.info(
                "creating_stripe_checkout_session",
                tier=request.tier,
                chat_id=request.chat_id,
                character=request.character.value,
            )

            session = stripe.checkout.Session.create(
                mode="subscription",
                customer_email=request.email,
                client_reference_id=request.chat_id,
                line_items=[
                    {
                        "price_data": {
                            "currency": request.currency.lower(),
                            "unit_amount": request.price_minor,
                            "recurring": {"interval": request.interval},
                            "product_data": {"name": request.tier_name},
                        },
                        "quantity": 1,
                    }
                ],
                success_url=request.success_url,
                cancel_url=request.cancel_url,
                metadata=metadata,
                subscription_data={"metadata": metadata},
            )

            logger.info("stripe_checkout_session_created", session_id=session.id)

            if not session.url:
                raise PaymentProviderError(f"Checkout session {session.id} has no URL")
            return CheckoutSession(session_id=session.id, url=session.url)

        except stripe.StripeError as exc:
            logger.error(
                "stripe_checkout_session_failed",
                error=str(exc),
                error_type=type(exc).__name__,
            )
            raise PaymentProviderError(f"Stripe checkout failed: {exc}") from exc

    async def verify_webhook(self, payload: bytes, signature: str) -> PaymentEvent:
        """
        Verify and parse Stripe webhook event.

        The Stripe-Signature header carries ``t=<unix ts>,v1=<hex hmac>``; the
        HMAC-SHA256 of ``"{t}.{body}"`` under the signing secret must match and
        ``t`` must be within the tolerance window.

        Raises:
            WebhookVerificationError: If signature verification fails
        """
        if not signature:
            logger.warning("stripe_webhook_missing_signature")
            raise WebhookVerificationError("Missing signature")

        try:
            body = payload.decode("utf-8")
        except UnicodeDecodeError as exc:
            raise WebhookVerificationError("Payload is not valid UTF-8") from exc

        try:
            stripe.WebhookSignature.verify_header(
                body, signature, self.webhook_secret, tolerance=self.tolerance_seconds
            )
        except stripe.SignatureVerificationError as exc:
            logger.warning("stripe_webhook_signature_invalid", error=str(exc))
            raise WebhookVerificationError("Invalid signature") from exc

        try:
            event = json.loads(body)
        except json.JSONDecodeError as exc:
            logger.warning("stripe_webhook_invalid_json", error=str(exc))
            raise WebhookVerificationError("Invalid payload") from exc
        if not isinstance(event, dict):
            raise WebhookVerificationError("Invalid payload")

        parsed = parse_event(event)
        logger.info(
            "stripe_webhook_verified",
            event_id=parsed.event_id,
            event_type=parsed.event_type,
        )
        return parsed
