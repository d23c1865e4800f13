"""
Entitlement Resolver - the authoritative access decision per chat + character.
"""

import time
from uuid import UUID

from structlog import get_logger

from companion_accounts.models.api import AccessReason, Character, SubscriptionStatus
from companion_accounts.models.domain import AccessDecision, AccessSummary, SubscriptionSummary
from companion_accounts.observability.metrics import metrics
from companion_accounts.services.identity_store import IdentityStore
from companion_accounts.services.trial_meter import TrialMeter

logger = get_logger(__name__)


class EntitlementResolver:
    """Derives access from account status, character grants and trials."""

    def __init__(self, store: IdentityStore, trial_meter: TrialMeter) -> None:
        self.store = store
        self.trial_meter = trial_meter

    async def check_access(self, chat_id: str, character: Character) -> AccessDecision:
        """
        Decide whether this chat may talk to this character.

        Order of precedence:
        1. Active account holding the character: granted, subscribed
        2. Active account without it: denied, no_access
        3. Otherwise the trial decides (created on first check): trial or trial_expired

        The linked account is looked up by chat id alone. Its id and email are
        attached to the decision whenever known, including denials. The trial
        counter is never spent here.
        """
        start = time.perf_counter()
        account = await self.store.account_for_chat(chat_id)
        account_id = account.account_id if account else None
        email = account.email if account else None

        if account is not None and account.subscription_status == SubscriptionStatus.ACTIVE:
            if await self.store.has_character(account.account_id, character):
                decision = AccessDecision(
                    has_access=True,
                    reason=AccessReason.SUBSCRIBED,
                    account_id=account_id,
                    email=email,
                )
            else:
                decision = AccessDecision(
                    has_access=False,
                    reason=AccessReason.NO_ACCESS,
                    account_id=account_id,
                    email=email,
                )
        else:
            trial = await self.trial_meter.ensure(chat_id, character)
            if trial.messages_remaining > 0:
                decision = AccessDecision(
                    has_access=True,
                    reason=AccessReason.TRIAL,
                    trial_remaining=trial.messages_remaining,
                    account_id=account_id,
                    email=email,
                )
            else:
                decision = AccessDecision(
                    has_access=False,
                    reason=AccessReason.TRIAL_EXPIRED,
                    trial_remaining=0,
                    account_id=account_id,
                    email=email,
                )

        metrics.record_access_check(
            decision.has_access,
            decision.reason.value,
            character.value,
            time.perf_counter() - start,
        )
        logger.info(
            "access_checked",
            chat_id=chat_id,
            character=character.value,
            has_access=decision.has_access,
            reason=decision.reason.value,
            trial_remaining=decision.trial_remaining,
        )
        return decision

    async def list_access(self, chat_id: str) -> AccessSummary:
        """Account-centric view; an unlinked chat yields has_account=False."""
        account = await self.store.account_for_chat(chat_id)
        if account is None:
            return AccessSummary(has_account=False)

        characters = await self.store.list_characters(account.account_id)
        return AccessSummary(
            has_account=True,
            account_id=account.account_id,
            email=account.email,
            subscription_status=account.subscription_status,
            characters=characters,
        )

    async def subscription_summary(self, account_id: UUID) -> SubscriptionSummary:
        """Latest subscription by creation time plus granted characters."""
        subscription = await self.store.latest_subscription(account_id)
        characters = await self.store.list_characters(account_id)
        return SubscriptionSummary(subscription=subscription, characters=characters)
