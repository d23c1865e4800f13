"""
Magic-Link Token Flow - single-use email tokens binding email + chat + character.

A token is issued by initiate(), may be peeked any number of times with
verify(), and is consumed exactly once by complete() (or by a checkout
completion that carries it).
"""

import re
import secrets
from collections.abc import Sequence
from datetime import UTC, datetime, timedelta
from uuid import UUID

from structlog import get_logger

from companion_accounts.exceptions import (
    TokenExpiredError,
    TokenNotFoundError,
    ValidationError,
)
from companion_accounts.models.api import Character, SubscriptionStatus
from companion_accounts.models.domain import LinkIntent, PendingLinkData
from companion_accounts.observability.logging import token_prefix
from companion_accounts.observability.metrics import metrics
from companion_accounts.services.character_catalog import CharacterCatalogue
from companion_accounts.services.email_sender import EmailSender
from companion_accounts.services.identity_store import IdentityStore
from companion_accounts.services.notifier import CharacterBackendNotifier, NotificationDispatcher

logger = get_logger(__name__)

EMAIL_PATTERN = re.compile(r"^[^\s@]+@[^\s@]+\.[^\s@]+$")
TOKEN_BYTES = 32


def _utc_now() -> datetime:
    """Get current UTC timestamp."""
    return datetime.now(UTC)


def normalize_email(email: str) -> str:
    """
    Lowercase and trim an email address, rejecting malformed input.

    Raises:
        ValidationError: If the result is not shaped like an address
    """
    normalized = (email or "").strip().lower()
    if not EMAIL_PATTERN.match(normalized):
        raise ValidationError("Invalid email format")
    return normalized


def generate_token() -> str:
    """64 hex characters from 32 bytes of CSPRNG output."""
    return secrets.token_hex(TOKEN_BYTES)


class MagicLinkService:
    """Issues, verifies and redeems magic-link tokens."""

    def __init__(
        self,
        store: IdentityStore,
        email_sender: EmailSender,
        backend_notifier: CharacterBackendNotifier,
        dispatcher: NotificationDispatcher,
        catalogue: CharacterCatalogue,
        link_base_url: str,
        ttl: timedelta = timedelta(hours=24),
    ) -> None:
        self.store = store
        self.email_sender = email_sender
        self.backend_notifier = backend_notifier
        self.dispatcher = dispatcher
        self.catalogue = catalogue
        self.link_base_url = link_base_url.rstrip("/")
        self.ttl = ttl

    def link_for(self, token: str) -> str:
        return f"{self.link_base_url}/{token}"

    async def initiate(
        self,
        email: str,
        chat_id: str,
        character: Character,
        first_name: str | None = None,
    ) -> str:
        """
        Start a magic-link request and email the link.

        The pending link is committed before the email is sent, so a delivery
        failure leaves it in place; a retry supersedes it.

        Returns:
            The issued token

        Raises:
            ValidationError: Malformed email or missing chat id
            DeliveryError: The email could not be sent
        """
        normalized = normalize_email(email)
        if not chat_id or not chat_id.strip():
            raise ValidationError("Missing required field: chatId")

        now = _utc_now()
        purged = await self.store.purge_expired_links(now)
        if purged:
            logger.info("expired_links_purged", count=purged)

        token = generate_token()
        await self.store.replace_pending_link(
            email=normalized,
            chat_id=chat_id,
            character=character,
            token=token,
            expires_at=now + self.ttl,
            first_name=first_name or None,
        )
        await self.store.commit()
        logger.info(
            "magic_link_created",
            chat_id=chat_id,
            character=character.value,
            token=token_prefix(token),
        )

        try:
            await self.email_sender.send_magic_link(
                to=normalized,
                profile=self.catalogue[character],
                link=self.link_for(token),
                first_name=first_name or None,
            )
        except Exception:
            metrics.links_initiated_total.labels(character=character.value, delivered="False").inc()
            raise

        metrics.links_initiated_total.labels(character=character.value, delivered="True").inc()
        return token

    async def _load(self, token: str) -> PendingLinkData:
        if not token:
            raise ValidationError("Missing token")
        pending = await self.store.get_pending_link(token)
        if pending is None:
            raise TokenNotFoundError(token)
        return pending

    async def verify(self, token: str) -> LinkIntent:
        """
        Peek at a pending link without consuming it.

        An expired link is deleted as a side effect, so a second verify of the
        same token reports it as not found.

        Raises:
            TokenNotFoundError: Unknown or already consumed token
            TokenExpiredError: Token is at or past its expiry
        """
        try:
            pending = await self._load(token)
        except TokenNotFoundError:
            metrics.links_verified_total.labels(outcome="not_found").inc()
            raise

        if _utc_now() >= pending.expires_at:
            await self.store.delete_pending_link(token)
            await self.store.commit()
            metrics.links_verified_total.labels(outcome="expired").inc()
            logger.info("magic_link_expired", token=token_prefix(token), chat_id=pending.chat_id)
            raise TokenExpiredError(token, pending.expires_at)

        metrics.links_verified_total.labels(outcome="valid").inc()
        return LinkIntent(
            email=pending.email,
            chat_id=pending.chat_id,
            character=pending.character,
            first_name=pending.first_name,
        )

    async def complete(
        self,
        token: str,
        characters: Sequence[Character],
        stripe_customer_id: str | None = None,
    ) -> UUID:
        """
        Redeem a token: resolve the account, link the chat, grant characters.

        Expiry is not re-checked here; a payment may already have been taken
        against a link that expired in the meantime.

        Raises:
            ValidationError: No characters given
            TokenNotFoundError: Unknown or already consumed token
        """
        if not characters:
            raise ValidationError("Missing required fields")
        pending = await self._load(token)

        account, created = await self.store.get_or_create_account(
            pending.email, stripe_customer_id=stripe_customer_id
        )
        await self.store.link_chat(pending.chat_id, pending.character, account.account_id)
        await self.store.grant_characters(account.account_id, characters)
        await self.store.set_account_status(account.account_id, SubscriptionStatus.ACTIVE)
        await self.store.delete_pending_link(token)
        await self.store.commit()

        if created:
            metrics.accounts_created_total.inc()
        metrics.links_completed_total.labels(character=pending.character.value).inc()
        logger.info(
            "magic_link_completed",
            token=token_prefix(token),
            account_id=str(account.account_id),
            chat_id=pending.chat_id,
            character=pending.character.value,
            characters=[c.value for c in characters],
            account_created=created,
        )

        self.notify_activation(pending.character, pending.chat_id, account.account_id, account.email)
        return account.account_id

    def notify_activation(
        self, character: Character, chat_id: str, account_id: UUID, email: str
    ) -> None:
        """Queue the best-effort activation callback to the character backend."""
        self.dispatcher.dispatch(
            "character_backend",
            lambda: self.backend_notifier.activate(character, chat_id, account_id, email),
        )

    async def purge_expired(self) -> int:
        purged = await self.store.purge_expired_links(_utc_now())
        await self.store.commit()
        logger.info("expired_links_purged", count=purged)
        return purged
