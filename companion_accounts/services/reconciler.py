"""
Payment Event Reconciler - applies subscription lifecycle events to the store.

Every handler is idempotent under at-least-once delivery: replaying an event
converges on the same rows. Events that reference unknown subscriptions are
logged and dropped.
"""

from datetime import datetime
from uuid import UUID

from structlog import get_logger

from companion_accounts.exceptions import ValidationError
from companion_accounts.models.api import Character, SubscriptionStatus
from companion_accounts.observability.logging import token_prefix
from companion_accounts.observability.metrics import metrics
from companion_accounts.observability.tracing import trace_operation
from companion_accounts.services.identity_store import IdentityStore
from companion_accounts.services.magic_link import normalize_email
from companion_accounts.services.notifier import CharacterBackendNotifier, NotificationDispatcher
from companion_accounts.services.payment_provider import PaymentEvent

logger = get_logger(__name__)

CHECKOUT_COMPLETED = "checkout.session.completed"
SUBSCRIPTION_CREATED = "customer.subscription.created"
SUBSCRIPTION_UPDATED = "customer.subscription.updated"
SUBSCRIPTION_DELETED = "customer.subscription.deleted"
INVOICE_PAID = "invoice.paid"
INVOICE_PAYMENT_SUCCEEDED = "invoice.payment_succeeded"
INVOICE_PAYMENT_FAILED = "invoice.payment_failed"


class PaymentReconciler:
    """State machine over payment lifecycle events."""

    def __init__(
        self,
        store: IdentityStore,
        backend_notifier: CharacterBackendNotifier,
        dispatcher: NotificationDispatcher,
    ) -> None:
        self.store = store
        self.backend_notifier = backend_notifier
        self.dispatcher = dispatcher

    async def apply(self, event: PaymentEvent) -> bool:
        """
        Dispatch one event to its handler.

        Returns False for event types this service does not act on; those are
        still acknowledged to the provider.
        """
        with trace_operation("payment_event", event_type=event.event_type, event_id=event.event_id):
            if event.event_type == CHECKOUT_COMPLETED:
                await self.on_checkout_completed(event)
            elif event.event_type in (SUBSCRIPTION_CREATED, SUBSCRIPTION_UPDATED):
                await self.on_subscription_upsert(
                    event.subscription_id,
                    event.status,
                    event.current_period_start,
                    event.current_period_end,
                )
            elif event.event_type == SUBSCRIPTION_DELETED:
                await self.on_subscription_deleted(event.subscription_id)
            elif event.event_type in (INVOICE_PAID, INVOICE_PAYMENT_SUCCEEDED):
                await self.on_invoice_paid(event.subscription_id, event.current_period_end)
            elif event.event_type == INVOICE_PAYMENT_FAILED:
                await self.on_invoice_payment_failed(event.subscription_id)
            else:
                metrics.record_webhook_event(event.event_type, "ignored")
                logger.info("payment_event_ignored", event_id=event.event_id, event_type=event.event_type)
                return False

        metrics.record_webhook_event(event.event_type, "handled")
        return True

    async def on_checkout_completed(self, event: PaymentEvent) -> None:
        """
        Finalize a paid checkout.

        Resolves the account by email, records the subscription (upserted on
        its external id), activates the account, grants the purchased
        characters and links the originating chat. A magic-link token carried
        in the metadata is left in place so a later direct completion of the
        same link still succeeds; the expiry sweep retires it otherwise.
        """
        if not event.email:
            logger.warning("checkout_completed_without_email", event_id=event.event_id)
            return
        try:
            email = normalize_email(event.email)
        except ValidationError:
            logger.warning("checkout_completed_invalid_email", event_id=event.event_id)
            return

        characters: tuple[Character, ...] = event.characters
        if not characters and event.character is not None:
            characters = (event.character,)

        account, created = await self.store.get_or_create_account(
            email, stripe_customer_id=event.customer_id
        )

        if event.subscription_id:
            await self.store.upsert_subscription(
                account_id=account.account_id,
                stripe_subscription_id=event.subscription_id,
                tier=event.tier or max(len(characters), 1),
                status="active",
                current_period_start=event.current_period_start,
                current_period_end=event.current_period_end,
            )
        await self.store.set_account_status(account.account_id, SubscriptionStatus.ACTIVE)
        await self.store.grant_characters(account.account_id, characters)

        chat_id, character = event.chat_id, event.character
        if chat_id and character is not None:
            await self.store.link_chat(chat_id, character, account.account_id)
        await self.store.commit()
        if created:
            metrics.accounts_created_total.inc()

        logger.info(
            "checkout_completed",
            event_id=event.event_id,
            account_id=str(account.account_id),
            subscription_id=event.subscription_id,
            characters=[c.value for c in characters],
            chat_id=event.chat_id,
            account_created=created,
            token=token_prefix(event.token) if event.token else None,
        )

        if chat_id and character is not None:
            self._notify_activation(character, chat_id, account.account_id, account.email)

    def _notify_activation(
        self, character: Character, chat_id: str, account_id: UUID, email: str
    ) -> None:
        self.dispatcher.dispatch(
            "character_backend",
            lambda: self.backend_notifier.activate(character, chat_id, account_id, email),
        )

    async def on_subscription_upsert(
        self,
        subscription_id: str | None,
        status: str | None,
        period_start: datetime | None,
        period_end: datetime | None,
    ) -> None:
        """Refresh a known subscription and map its status onto the account."""
        if not subscription_id or not status:
            logger.warning("subscription_event_incomplete", subscription_id=subscription_id)
            return

        subscription = await self.store.update_subscription(
            subscription_id,
            status=status,
            current_period_start=period_start,
            current_period_end=period_end,
        )
        if subscription is None:
            logger.info("subscription_event_unmatched", subscription_id=subscription_id)
            return

        account_status = SubscriptionStatus.from_provider(status)
        await self.store.set_account_status(subscription.account_id, account_status)
        await self.store.commit()
        logger.info(
            "subscription_updated",
            subscription_id=subscription_id,
            status=status,
            account_id=str(subscription.account_id),
            account_status=account_status.value,
        )

    async def on_subscription_deleted(self, subscription_id: str | None) -> None:
        if not subscription_id:
            return

        subscription = await self.store.update_subscription(subscription_id, status="canceled")
        if subscription is None:
            logger.info("subscription_event_unmatched", subscription_id=subscription_id)
            return

        await self.store.set_account_status(subscription.account_id, SubscriptionStatus.CANCELED)
        await self.store.commit()
        logger.info(
            "subscription_canceled",
            subscription_id=subscription_id,
            account_id=str(subscription.account_id),
        )

    async def on_invoice_paid(self, subscription_id: str | None, period_end: datetime | None) -> None:
        """Extend the billing period; a paid invoice also clears past_due."""
        if not subscription_id:
            logger.info("invoice_without_subscription")
            return

        subscription = await self.store.update_subscription(
            subscription_id, status="active", current_period_end=period_end
        )
        if subscription is None:
            logger.info("subscription_event_unmatched", subscription_id=subscription_id)
            return

        await self.store.set_account_status(subscription.account_id, SubscriptionStatus.ACTIVE)
        await self.store.commit()
        logger.info(
            "invoice_paid",
            subscription_id=subscription_id,
            current_period_end=period_end.isoformat() if period_end else None,
        )

    async def on_invoice_payment_failed(self, subscription_id: str | None) -> None:
        if not subscription_id:
            logger.info("invoice_without_subscription")
            return

        subscription = await self.store.get_subscription(subscription_id)
        if subscription is None:
            logger.info("subscription_event_unmatched", subscription_id=subscription_id)
            return

        await self.store.set_account_status(subscription.account_id, SubscriptionStatus.PAST_DUE)
        await self.store.commit()
        logger.warning(
            "invoice_payment_failed",
            subscription_id=subscription_id,
            account_id=str(subscription.account_id),
        )
