"""
FastAPI Dependencies - service wiring.

Process-wide collaborators (catalogue, outbound clients, payment provider,
notification dispatcher) are built once; request-scoped services are built
per request around the write session. Tests swap any of them through
app.dependency_overrides.
"""

from datetime import timedelta
from functools import lru_cache

from fastapi import Depends
from sqlalchemy.ext.asyncio import AsyncSession

from companion_accounts.config import settings
from companion_accounts.db.session import get_read_db, get_write_db
from companion_accounts.services.character_catalog import CharacterCatalogue
from companion_accounts.services.checkout import CheckoutService
from companion_accounts.services.email_sender import EmailSender
from companion_accounts.services.entitlements import EntitlementResolver
from companion_accounts.services.identity_store import IdentityStore
from companion_accounts.services.magic_link import MagicLinkService
from companion_accounts.services.notifier import CharacterBackendNotifier, NotificationDispatcher
from companion_accounts.services.payment_provider import PaymentProvider
from companion_accounts.services.reconciler import PaymentReconciler
from companion_accounts.services.stripe_provider import StripeProvider
from companion_accounts.services.trial_meter import TrialMeter

# ============================================================================
# Process-wide collaborators
# ============================================================================


@lru_cache
def get_catalogue() -> CharacterCatalogue:
    return CharacterCatalogue.from_settings(settings)


@lru_cache
def get_email_sender() -> EmailSender:
    return EmailSender(
        api_key=settings.resend_api_key,
        from_domain=settings.email_from_domain,
        timeout_seconds=settings.outbound_timeout_seconds,
        link_ttl_hours=settings.pending_link_ttl_hours,
    )


@lru_cache
def get_backend_notifier() -> CharacterBackendNotifier:
    return CharacterBackendNotifier(
        get_catalogue(), timeout_seconds=settings.outbound_timeout_seconds
    )


@lru_cache
def get_dispatcher() -> NotificationDispatcher:
    return NotificationDispatcher(timeout_seconds=settings.outbound_timeout_seconds)


@lru_cache
def get_payment_provider() -> PaymentProvider:
    return StripeProvider(
        api_key=settings.stripe_api_key,
        webhook_secret=settings.stripe_webhook_secret,
        tolerance_seconds=settings.stripe_webhook_tolerance_seconds,
    )


# ============================================================================
# Request-scoped services
# ============================================================================


async def get_identity_store(db: AsyncSession = Depends(get_write_db)) -> IdentityStore:
    return IdentityStore(db)


async def get_trial_meter(store: IdentityStore = Depends(get_identity_store)) -> TrialMeter:
    return TrialMeter(store, allowance=settings.trial_message_allowance)


async def get_entitlement_resolver(
    store: IdentityStore = Depends(get_identity_store),
    trial_meter: TrialMeter = Depends(get_trial_meter),
) -> EntitlementResolver:
    return EntitlementResolver(store, trial_meter)


async def get_read_only_resolver(db: AsyncSession = Depends(get_read_db)) -> EntitlementResolver:
    """Resolver over the replica; only for lookups that never create trials."""
    store = IdentityStore(db)
    return EntitlementResolver(store, TrialMeter(store, allowance=settings.trial_message_allowance))


async def get_magic_link_service(
    store: IdentityStore = Depends(get_identity_store),
    email_sender: EmailSender = Depends(get_email_sender),
    backend_notifier: CharacterBackendNotifier = Depends(get_backend_notifier),
    dispatcher: NotificationDispatcher = Depends(get_dispatcher),
    catalogue: CharacterCatalogue = Depends(get_catalogue),
) -> MagicLinkService:
    return MagicLinkService(
        store=store,
        email_sender=email_sender,
        backend_notifier=backend_notifier,
        dispatcher=dispatcher,
        catalogue=catalogue,
        link_base_url=settings.magic_link_base_url,
        ttl=timedelta(hours=settings.pending_link_ttl_hours),
    )


async def get_reconciler(
    store: IdentityStore = Depends(get_identity_store),
    backend_notifier: CharacterBackendNotifier = Depends(get_backend_notifier),
    dispatcher: NotificationDispatcher = Depends(get_dispatcher),
) -> PaymentReconciler:
    return PaymentReconciler(store, backend_notifier, dispatcher)


async def get_checkout_service(
    magic_links: MagicLinkService = Depends(get_magic_link_service),
    provider: PaymentProvider = Depends(get_payment_provider),
) -> CheckoutService:
    return CheckoutService(
        magic_links=magic_links,
        provider=provider,
        currency=settings.currency,
        success_url=settings.checkout_success_url,
        cancel_url=settings.checkout_cancel_url,
    )
