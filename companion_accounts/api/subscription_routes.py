"""
Subscription API routes - pricing, checkout, payment webhooks, subscription lookup.
"""

from uuid import UUID

from fastapi import APIRouter, Depends, HTTPException, Request, status
from structlog import get_logger

from companion_accounts.api.dependencies import (
    get_checkout_service,
    get_payment_provider,
    get_read_only_resolver,
    get_reconciler,
)
from companion_accounts.api.routes import EXPIRED_LINK_MESSAGE, INVALID_LINK_MESSAGE
from companion_accounts.config import settings
from companion_accounts.exceptions import (
    PaymentProviderError,
    TokenExpiredError,
    TokenNotFoundError,
    ValidationError,
    WebhookVerificationError,
)
from companion_accounts.models.api import (
    CreateCheckoutRequest,
    CreateCheckoutResponse,
    PricingResponse,
    PricingTierResponse,
    SubscriptionDetailResponse,
    SubscriptionRecordResponse,
    WebhookAckResponse,
)
from companion_accounts.observability.metrics import metrics
from companion_accounts.services.checkout import CheckoutService
from companion_accounts.services.entitlements import EntitlementResolver
from companion_accounts.services.payment_provider import PaymentProvider
from companion_accounts.services.pricing import BILLING_INTERVAL, PRICING_TIERS
from companion_accounts.services.reconciler import PaymentReconciler

logger = get_logger(__name__)
router = APIRouter(prefix="/subscription", tags=["subscription"])


@router.get("/pricing", response_model=PricingResponse)
async def get_pricing() -> PricingResponse:
    return PricingResponse(
        pricing={
            tier.tier: PricingTierResponse(price=tier.price_minor, name=tier.name)
            for tier in PRICING_TIERS.values()
        },
        currency=settings.currency,
        interval=BILLING_INTERVAL,
    )


@router.post("/create-checkout", response_model=CreateCheckoutResponse)
@router.post("/checkout", response_model=CreateCheckoutResponse, include_in_schema=False)
async def create_checkout(
    request: CreateCheckoutRequest,
    checkout: CheckoutService = Depends(get_checkout_service),
) -> CreateCheckoutResponse:
    """
    Open a payment checkout for a verified magic link.

    The link's email, chat and character travel in the session metadata and
    come back on checkout.session.completed.
    """
    try:
        session = await checkout.create_checkout(
            token=request.token,
            tier=request.tier,
            characters=request.characters,
            success_url=request.success_url,
            cancel_url=request.cancel_url,
        )
    except ValidationError as exc:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=exc.message) from exc
    except TokenNotFoundError as exc:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST, detail=INVALID_LINK_MESSAGE
        ) from exc
    except TokenExpiredError as exc:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST, detail=EXPIRED_LINK_MESSAGE
        ) from exc
    except PaymentProviderError as exc:
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail="Failed to create checkout session",
        ) from exc

    return CreateCheckoutResponse(session_id=session.session_id, url=session.url)


@router.post("/webhook", response_model=WebhookAckResponse)
async def payment_webhook(
    request: Request,
    provider: PaymentProvider = Depends(get_payment_provider),
    reconciler: PaymentReconciler = Depends(get_reconciler),
) -> WebhookAckResponse:
    """
    Payment provider event intake.

    The signature is checked before anything else; a rejected delivery
    changes no state. Processing failures return 500 so the provider retries.
    """
    payload = await request.body()
    signature = request.headers.get("stripe-signature", "")

    try:
        event = await provider.verify_webhook(payload, signature)
    except WebhookVerificationError as exc:
        metrics.record_webhook_event("unknown", "rejected")
        logger.warning("payment_webhook_rejected", error=exc.message)
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=exc.message) from exc

    try:
        await reconciler.apply(event)
    except Exception as exc:
        metrics.record_webhook_event(event.event_type, "failed")
        metrics.record_error(type(exc).__name__, "payment_webhook")
        logger.error(
            "payment_webhook_processing_failed",
            event_id=event.event_id,
            event_type=event.event_type,
            error=str(exc),
            exc_info=True,
        )
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail="Webhook processing failed",
        ) from exc

    return WebhookAckResponse(received=True)


@router.get("/{account_id}", response_model=SubscriptionDetailResponse)
async def get_subscription(
    account_id: str,
    resolver: EntitlementResolver = Depends(get_read_only_resolver),
) -> SubscriptionDetailResponse:
    """Latest subscription and granted characters; empty for unknown accounts."""
    try:
        parsed_id = UUID(account_id)
    except ValueError:
        return SubscriptionDetailResponse(subscription=None, characters=[])

    summary = await resolver.subscription_summary(parsed_id)
    record = None
    if summary.subscription is not None:
        sub = summary.subscription
        record = SubscriptionRecordResponse(
            id=sub.subscription_id,
            account_id=sub.account_id,
            stripe_subscription_id=sub.stripe_subscription_id,
            tier=sub.tier,
            status=sub.status,
            current_period_start=sub.current_period_start,
            current_period_end=sub.current_period_end,
            created_at=sub.created_at,
        )
    return SubscriptionDetailResponse(subscription=record, characters=list(summary.characters))
