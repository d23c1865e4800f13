"""
Trial Meter - per (chat, character) free message budget.

Checking a trial never spends a message; only consume() does.
"""

from datetime import UTC, datetime, timedelta

from structlog import get_logger

from companion_accounts.models.api import Character
from companion_accounts.models.domain import ReactivationResult, TrialData, TrialStatus
from companion_accounts.observability.metrics import metrics
from companion_accounts.services.character_catalog import CharacterCatalogue
from companion_accounts.services.identity_store import IdentityStore
from companion_accounts.services.notifier import ChatMessenger

logger = get_logger(__name__)


def _utc_now() -> datetime:
    """Get current UTC timestamp."""
    return datetime.now(UTC)


class TrialMeter:
    """Trial bookkeeping on top of the identity store."""

    def __init__(self, store: IdentityStore, allowance: int) -> None:
        """
        Args:
            store: Identity store bound to the request session
            allowance: Messages a new trial starts with
        """
        self.store = store
        self.allowance = allowance

    async def ensure(self, chat_id: str, character: Character) -> TrialData:
        """Return the trial for the pair, creating it with the full allowance."""
        trial, created = await self.store.ensure_trial(chat_id, character, self.allowance)
        if created:
            await self.store.commit()
            metrics.trials_started_total.labels(character=character.value).inc()
            logger.info(
                "trial_started",
                chat_id=chat_id,
                character=character.value,
                messages_remaining=trial.messages_remaining,
            )
        return trial

    async def check(self, chat_id: str, character: Character) -> TrialStatus:
        trial = await self.ensure(chat_id, character)
        return TrialStatus(
            has_trial_remaining=trial.messages_remaining > 0,
            messages_remaining=trial.messages_remaining,
            is_new_trial=trial.messages_remaining == self.allowance,
        )

    async def consume(self, chat_id: str, character: Character) -> int:
        """
        Spend one trial message.

        Returns the remaining count after the decrement; 0 when the trial was
        already exhausted, in which case nothing changes.
        """
        await self.ensure(chat_id, character)
        remaining = await self.store.decrement_trial(chat_id, character, _utc_now())
        await self.store.commit()

        metrics.record_trial_decrement(character.value, exhausted=remaining == 0)
        logger.info(
            "trial_decremented",
            chat_id=chat_id,
            character=character.value,
            messages_remaining=remaining,
        )
        return remaining

    async def reactivate_exhausted(
        self,
        threshold_age: timedelta,
        top_up: int,
        messenger: ChatMessenger,
        catalogue: CharacterCatalogue,
        now: datetime | None = None,
    ) -> ReactivationResult:
        """
        Re-engage trials exhausted longer than ``threshold_age`` ago, once each.

        For every candidate the character's bump message is sent first; the
        trial is topped up and marked bumped only after delivery succeeds, so
        a failed send is retried by the next sweep. Characters without a bot
        token are skipped.
        """
        cutoff = (now or _utc_now()) - threshold_age
        candidates = await self.store.find_reactivatable_trials(cutoff)
        logger.info("trial_bump_candidates", count=len(candidates), cutoff=cutoff.isoformat())

        bumped = skipped = failed = 0
        for trial in candidates:
            profile = catalogue[trial.character]
            if not profile.bot_token:
                skipped += 1
                metrics.record_trial_bump(trial.character.value, "skipped")
                logger.warning(
                    "trial_bump_no_bot_token",
                    chat_id=trial.chat_id,
                    character=trial.character.value,
                )
                continue

            delivered = await messenger.send(profile.bot_token, trial.chat_id, profile.bump_message)
            if not delivered:
                failed += 1
                metrics.record_trial_bump(trial.character.value, "failed")
                logger.warning(
                    "trial_bump_delivery_failed",
                    chat_id=trial.chat_id,
                    character=trial.character.value,
                )
                continue

            if await self.store.apply_trial_bump(trial.trial_id, top_up):
                await self.store.commit()
                bumped += 1
                metrics.record_trial_bump(trial.character.value, "bumped")
                logger.info(
                    "trial_bumped",
                    chat_id=trial.chat_id,
                    character=trial.character.value,
                    messages_remaining=top_up,
                )
            else:
                skipped += 1
                metrics.record_trial_bump(trial.character.value, "skipped")

        return ReactivationResult(
            selected=len(candidates), bumped=bumped, skipped=skipped, failed=failed
        )
