"""
Identity Store - durable records behind linking, trials and entitlements.

NO DICTIONARIES - Every read returns an immutable domain dataclass.

All natural-key writes go through one primitive, ``_upsert``: an INSERT with
ON CONFLICT on the composite key that either replaces the listed columns or
does nothing. ChatLink supersede, idempotent character grants, pending link
replacement and subscription upserts are all instances of it.
"""

from collections.abc import Iterable, Sequence
from datetime import datetime
from typing import Any
from uuid import UUID

from sqlalchemy import case, delete, literal, select, update
from sqlalchemy.dialects import postgresql, sqlite
from sqlalchemy.ext.asyncio import AsyncSession
from structlog import get_logger

from companion_accounts.db.models import (
    Account,
    AccountCharacter,
    Base,
    PendingLink,
    Subscription,
    TelegramLink,
    Trial,
    UTCDateTime,
    utc_now,
)
from companion_accounts.exceptions import UnsupportedDialectError, WriteVerificationError
from companion_accounts.models.api import Character, SubscriptionStatus
from companion_accounts.models.domain import (
    AccountData,
    PendingLinkData,
    SubscriptionData,
    TrialData,
)

logger = get_logger(__name__)


def _account_to_data(account: Account) -> AccountData:
    return AccountData(
        account_id=account.id,
        email=account.email,
        stripe_customer_id=account.stripe_customer_id,
        subscription_status=SubscriptionStatus(account.subscription_status),
        created_at=account.created_at,
        updated_at=account.updated_at,
    )


def _trial_to_data(trial: Trial) -> TrialData:
    return TrialData(
        trial_id=trial.id,
        chat_id=trial.chat_id,
        character=Character(trial.character),
        messages_remaining=trial.messages_remaining,
        trial_exhausted_at=trial.trial_exhausted_at,
        bump_given=trial.bump_given,
        created_at=trial.created_at,
    )


def _pending_to_data(pending: PendingLink) -> PendingLinkData:
    return PendingLinkData(
        pending_id=pending.id,
        email=pending.email,
        chat_id=pending.chat_id,
        character=Character(pending.character),
        token=pending.token,
        first_name=pending.first_name,
        expires_at=pending.expires_at,
        created_at=pending.created_at,
    )


def _subscription_to_data(subscription: Subscription) -> SubscriptionData:
    return SubscriptionData(
        subscription_id=subscription.id,
        account_id=subscription.account_id,
        stripe_subscription_id=subscription.stripe_subscription_id,
        tier=subscription.tier,
        status=subscription.status,
        current_period_start=subscription.current_period_start,
        current_period_end=subscription.current_period_end,
        created_at=subscription.created_at,
    )


class IdentityStore:
    """
    Repository over accounts, grants, chat links, pending links, trials and
    subscriptions.

    Methods flush but never commit; the calling service owns the transaction
    and calls commit() once its operation is complete.
    """

    def __init__(self, session: AsyncSession) -> None:
        """Initialize identity store with database session."""
        self.session = session

    async def commit(self) -> None:
        await self.session.commit()

    async def rollback(self) -> None:
        await self.session.rollback()

    # ========================================================================
    # Upsert primitive
    # ========================================================================

    async def _upsert(
        self,
        model: type[Base],
        values: dict[str, Any],
        conflict_keys: Sequence[str],
        replace: Sequence[str] = (),
    ) -> int:
        """
        Insert a row keyed by a natural composite key.

        On conflict, overwrite the ``replace`` columns with the new values, or
        leave the existing row alone when ``replace`` is empty. Returns the
        driver rowcount (1 when a row was inserted or replaced).
        """
        dialect = self.session.get_bind().dialect.name
        if dialect == "postgresql":
            stmt = postgresql.insert(model).values(**values)
        elif dialect == "sqlite":
            stmt = sqlite.insert(model).values(**values)
        else:
            raise UnsupportedDialectError(dialect)

        if replace:
            stmt = stmt.on_conflict_do_update(
                index_elements=list(conflict_keys),
                set_={column: stmt.excluded[column] for column in replace},
            )
        else:
            stmt = stmt.on_conflict_do_nothing(index_elements=list(conflict_keys))

        result = await self.session.execute(stmt)
        await self.session.flush()
        return int(result.rowcount or 0)  # type: ignore[attr-defined]

    async def _fetch_one(self, stmt: Any) -> Any:
        """Execute a select, refreshing any instance already in the identity map."""
        result = await self.session.execute(stmt.execution_options(populate_existing=True))
        return result.scalars().first()

    # ========================================================================
    # Accounts
    # ========================================================================

    async def get_account(self, account_id: UUID) -> AccountData | None:
        account = await self._fetch_one(select(Account).where(Account.id == account_id))
        return _account_to_data(account) if account else None

    async def get_account_by_email(self, email: str) -> AccountData | None:
        account = await self._fetch_one(select(Account).where(Account.email == email))
        return _account_to_data(account) if account else None

    async def get_account_by_customer(self, stripe_customer_id: str) -> AccountData | None:
        account = await self._fetch_one(
            select(Account).where(Account.stripe_customer_id == stripe_customer_id)
        )
        return _account_to_data(account) if account else None

    async def get_or_create_account(
        self, email: str, stripe_customer_id: str | None = None
    ) -> tuple[AccountData, bool]:
        """
        Resolve the account for a normalized email, creating it if absent.

        A customer id is attached only when the account has none and no other
        account already holds it.

        Returns:
            (account, created)
        """
        inserted = await self._upsert(
            Account,
            {"email": email, "subscription_status": SubscriptionStatus.TRIAL},
            conflict_keys=("email",),
        )
        account = await self.get_account_by_email(email)
        if account is None:
            raise WriteVerificationError(f"Account missing after upsert for {email}")

        if stripe_customer_id and account.stripe_customer_id is None:
            holder = await self.get_account_by_customer(stripe_customer_id)
            if holder is None:
                await self.session.execute(
                    update(Account)
                    .where(Account.id == account.account_id, Account.stripe_customer_id.is_(None))
                    .values(stripe_customer_id=stripe_customer_id)
                    .execution_options(synchronize_session=False)
                )
                await self.session.flush()
                refreshed = await self.get_account(account.account_id)
                if refreshed is None:
                    raise WriteVerificationError(f"Account vanished while attaching customer: {email}")
                account = refreshed
            elif holder.account_id != account.account_id:
                logger.warning(
                    "stripe_customer_already_attached",
                    stripe_customer_id=stripe_customer_id,
                    holder_account_id=str(holder.account_id),
                    account_id=str(account.account_id),
                )

        return account, inserted == 1

    async def set_account_status(self, account_id: UUID, status: SubscriptionStatus) -> None:
        await self.session.execute(
            update(Account)
            .where(Account.id == account_id)
            .values(subscription_status=status)
            .execution_options(synchronize_session=False)
        )
        await self.session.flush()

    async def account_for_chat(self, chat_id: str) -> AccountData | None:
        """Account most recently linked to this chat, across all characters."""
        account = await self._fetch_one(
            select(Account)
            .join(TelegramLink, TelegramLink.account_id == Account.id)
            .where(TelegramLink.chat_id == chat_id)
            .order_by(TelegramLink.linked_at.desc())
            .limit(1)
        )
        return _account_to_data(account) if account else None

    # ========================================================================
    # Character grants and chat links
    # ========================================================================

    async def grant_characters(self, account_id: UUID, characters: Iterable[Character]) -> None:
        """Grant each character; re-granting is a no-op."""
        for character in dict.fromkeys(characters):
            await self._upsert(
                AccountCharacter,
                {"account_id": account_id, "character": character, "added_at": utc_now()},
                conflict_keys=("account_id", "character"),
            )

    async def list_characters(self, account_id: UUID) -> tuple[Character, ...]:
        result = await self.session.execute(
            select(AccountCharacter.character)
            .where(AccountCharacter.account_id == account_id)
            .order_by(AccountCharacter.added_at, AccountCharacter.character)
        )
        return tuple(Character(c) for c in result.scalars().all())

    async def has_character(self, account_id: UUID, character: Character) -> bool:
        result = await self.session.execute(
            select(AccountCharacter.id).where(
                AccountCharacter.account_id == account_id,
                AccountCharacter.character == character,
            )
        )
        return result.first() is not None

    async def link_chat(self, chat_id: str, character: Character, account_id: UUID) -> None:
        """Bind (chat, character) to an account, superseding any prior link."""
        await self._upsert(
            TelegramLink,
            {
                "chat_id": chat_id,
                "character": character,
                "account_id": account_id,
                "linked_at": utc_now(),
            },
            conflict_keys=("chat_id", "character"),
            replace=("account_id", "linked_at"),
        )

    # ========================================================================
    # Pending links
    # ========================================================================

    async def replace_pending_link(
        self,
        email: str,
        chat_id: str,
        character: Character,
        token: str,
        expires_at: datetime,
        first_name: str | None = None,
    ) -> PendingLinkData:
        """Store a pending link, superseding any earlier one for (chat, character)."""
        await self._upsert(
            PendingLink,
            {
                "email": email,
                "chat_id": chat_id,
                "character": character,
                "token": token,
                "first_name": first_name,
                "expires_at": expires_at,
                "created_at": utc_now(),
            },
            conflict_keys=("chat_id", "character"),
            replace=("email", "token", "first_name", "expires_at", "created_at"),
        )
        pending = await self.get_pending_link(token)
        if pending is None:
            raise WriteVerificationError(f"Pending link missing after write for chat {chat_id}")
        return pending

    async def get_pending_link(self, token: str) -> PendingLinkData | None:
        pending = await self._fetch_one(select(PendingLink).where(PendingLink.token == token))
        return _pending_to_data(pending) if pending else None

    async def delete_pending_link(self, token: str) -> bool:
        result = await self.session.execute(
            delete(PendingLink)
            .where(PendingLink.token == token)
            .execution_options(synchronize_session=False)
        )
        await self.session.flush()
        return bool(result.rowcount)  # type: ignore[attr-defined]

    async def purge_expired_links(self, now: datetime) -> int:
        result = await self.session.execute(
            delete(PendingLink)
            .where(PendingLink.expires_at <= now)
            .execution_options(synchronize_session=False)
        )
        await self.session.flush()
        return int(result.rowcount or 0)  # type: ignore[attr-defined]

    # ========================================================================
    # Trials
    # ========================================================================

    async def get_trial(self, chat_id: str, character: Character) -> TrialData | None:
        trial = await self._fetch_one(
            select(Trial).where(Trial.chat_id == chat_id, Trial.character == character)
        )
        return _trial_to_data(trial) if trial else None

    async def ensure_trial(
        self, chat_id: str, character: Character, allowance: int
    ) -> tuple[TrialData, bool]:
        """
        Return the trial for (chat, character), creating it with the full allowance.

        Returns:
            (trial, created)
        """
        existing = await self.get_trial(chat_id, character)
        if existing is not None:
            return existing, False

        inserted = await self._upsert(
            Trial,
            {
                "chat_id": chat_id,
                "character": character,
                "messages_remaining": allowance,
                "bump_given": False,
                "created_at": utc_now(),
            },
            conflict_keys=("chat_id", "character"),
        )
        trial = await self.get_trial(chat_id, character)
        if trial is None:
            raise WriteVerificationError(f"Trial missing after insert for chat {chat_id}")
        return trial, inserted == 1

    async def decrement_trial(self, chat_id: str, character: Character, now: datetime) -> int:
        """
        Consume one message if any remain.

        The WHERE clause carries the floor, so concurrent decrements can never
        push the counter below zero. The exhaustion timestamp is set by the
        same statement that takes the counter from 1 to 0.
        """
        await self.session.execute(
            update(Trial)
            .where(
                Trial.chat_id == chat_id,
                Trial.character == character,
                Trial.messages_remaining > 0,
            )
            .values(
                messages_remaining=Trial.messages_remaining - 1,
                trial_exhausted_at=case(
                    (Trial.messages_remaining == 1, literal(now, UTCDateTime())),
                    else_=Trial.trial_exhausted_at,
                ),
            )
            .execution_options(synchronize_session=False)
        )
        await self.session.flush()
        trial = await self.get_trial(chat_id, character)
        return trial.messages_remaining if trial else 0

    async def find_reactivatable_trials(self, exhausted_before: datetime) -> list[TrialData]:
        result = await self.session.execute(
            select(Trial)
            .where(
                Trial.messages_remaining == 0,
                Trial.bump_given.is_(False),
                Trial.trial_exhausted_at.is_not(None),
                Trial.trial_exhausted_at < exhausted_before,
            )
            .order_by(Trial.trial_exhausted_at)
            .execution_options(populate_existing=True)
        )
        return [_trial_to_data(t) for t in result.scalars().all()]

    async def apply_trial_bump(self, trial_id: UUID, top_up: int) -> bool:
        """Top up an exhausted trial once. Returns False if it was already bumped."""
        result = await self.session.execute(
            update(Trial)
            .where(Trial.id == trial_id, Trial.bump_given.is_(False))
            .values(messages_remaining=top_up, bump_given=True)
            .execution_options(synchronize_session=False)
        )
        await self.session.flush()
        return bool(result.rowcount)  # type: ignore[attr-defined]

    # ========================================================================
    # Subscriptions
    # ========================================================================

    async def upsert_subscription(
        self,
        account_id: UUID,
        stripe_subscription_id: str,
        tier: int,
        status: str,
        current_period_start: datetime | None = None,
        current_period_end: datetime | None = None,
    ) -> SubscriptionData:
        """Insert or refresh the subscription keyed by its external id."""
        await self._upsert(
            Subscription,
            {
                "account_id": account_id,
                "stripe_subscription_id": stripe_subscription_id,
                "tier": tier,
                "status": status,
                "current_period_start": current_period_start,
                "current_period_end": current_period_end,
                "created_at": utc_now(),
            },
            conflict_keys=("stripe_subscription_id",),
            replace=("account_id", "tier", "status", "current_period_start", "current_period_end"),
        )
        subscription = await self.get_subscription(stripe_subscription_id)
        if subscription is None:
            raise WriteVerificationError(f"Subscription missing after upsert: {stripe_subscription_id}")
        return subscription

    async def get_subscription(self, stripe_subscription_id: str) -> SubscriptionData | None:
        """Most recently created subscription with this external id."""
        subscription = await self._fetch_one(
            select(Subscription)
            .where(Subscription.stripe_subscription_id == stripe_subscription_id)
            .order_by(Subscription.created_at.desc())
            .limit(1)
        )
        return _subscription_to_data(subscription) if subscription else None

    async def update_subscription(
        self,
        stripe_subscription_id: str,
        status: str | None = None,
        current_period_start: datetime | None = None,
        current_period_end: datetime | None = None,
    ) -> SubscriptionData | None:
        """
        Apply the given fields to an existing subscription.

        Fields left as None are not touched. Returns None when no
        subscription matches.
        """
        existing = await self.get_subscription(stripe_subscription_id)
        if existing is None:
            return None

        values: dict[str, Any] = {}
        if status is not None:
            values["status"] = status
        if current_period_start is not None:
            values["current_period_start"] = current_period_start
        if current_period_end is not None:
            values["current_period_end"] = current_period_end

        if values:
            await self.session.execute(
                update(Subscription)
                .where(Subscription.id == existing.subscription_id)
                .values(**values)
                .execution_options(synchronize_session=False)
            )
            await self.session.flush()
        return await self.get_subscription(stripe_subscription_id)

    async def latest_subscription(self, account_id: UUID) -> SubscriptionData | None:
        subscription = await self._fetch_one(
            select(Subscription)
            .where(Subscription.account_id == account_id)
            .order_by(Subscription.created_at.desc())
            .limit(1)
        )
        return _subscription_to_data(subscription) if subscription else None
