"""
Tests for TrialMeter.

Runs against the in-memory database so the conditional decrement is real SQL.
"""

import asyncio
from datetime import timedelta
from unittest.mock import AsyncMock

from conftest import TRIAL_ALLOWANCE, utc_now
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from companion_accounts.models.api import Character
from companion_accounts.services.character_catalog import CharacterCatalogue
from companion_accounts.services.identity_store import IdentityStore
from companion_accounts.services.notifier import ChatMessenger
from companion_accounts.services.trial_meter import TrialMeter


async def _exhaust(store: IdentityStore, chat_id: str, character: Character, hours_ago: int) -> None:
    """Create a trial and run it to zero with the exhaustion stamped in the past."""
    await store.ensure_trial(chat_id, character, TRIAL_ALLOWANCE)
    when = utc_now() - timedelta(hours=hours_ago)
    for _ in range(TRIAL_ALLOWANCE):
        await store.decrement_trial(chat_id, character, when)
    await store.commit()


def _messenger(delivered: bool = True) -> AsyncMock:
    messenger = AsyncMock(spec=ChatMessenger)
    messenger.send = AsyncMock(return_value=delivered)
    return messenger


class TestEnsure:
    """Tests for trial creation."""

    async def test_creates_with_full_allowance(self, trial_meter: TrialMeter):
        """First sight of a pair creates a trial with the full allowance."""
        trial = await trial_meter.ensure("123", Character.COLE)

        assert trial.messages_remaining == TRIAL_ALLOWANCE
        assert trial.bump_given is False
        assert trial.trial_exhausted_at is None

    async def test_is_idempotent(self, trial_meter: TrialMeter):
        """Repeated ensure returns the same trial."""
        first = await trial_meter.ensure("123", Character.COLE)
        second = await trial_meter.ensure("123", Character.COLE)

        assert first.trial_id == second.trial_id

    async def test_trials_are_per_character(self, trial_meter: TrialMeter):
        """Each character gets its own trial for the same chat."""
        cole = await trial_meter.ensure("123", Character.COLE)
        nora = await trial_meter.ensure("123", Character.NORA)

        assert cole.trial_id != nora.trial_id


class TestCheck:
    """Tests for the non-spending trial report."""

    async def test_new_trial(self, trial_meter: TrialMeter):
        status = await trial_meter.check("123", Character.SADIE)

        assert status.has_trial_remaining is True
        assert status.messages_remaining == TRIAL_ALLOWANCE
        assert status.is_new_trial is True

    async def test_check_never_spends(self, trial_meter: TrialMeter):
        """Checking many times leaves the counter untouched."""
        for _ in range(5):
            status = await trial_meter.check("123", Character.SADIE)

        assert status.messages_remaining == TRIAL_ALLOWANCE

    async def test_not_new_after_consume(self, trial_meter: TrialMeter):
        await trial_meter.consume("123", Character.SADIE)
        status = await trial_meter.check("123", Character.SADIE)

        assert status.is_new_trial is False
        assert status.messages_remaining == TRIAL_ALLOWANCE - 1


class TestConsume:
    """Tests for the conditional decrement."""

    async def test_floors_at_zero(self, trial_meter: TrialMeter):
        """30 consumes against 25 messages: zero from the 25th call on, never negative."""
        results = [await trial_meter.consume("123", Character.COLE) for _ in range(30)]

        assert results[:TRIAL_ALLOWANCE] == list(range(TRIAL_ALLOWANCE - 1, -1, -1))
        assert results[TRIAL_ALLOWANCE:] == [0] * 5
        assert all(r >= 0 for r in results)

    async def test_is_monotonic(self, trial_meter: TrialMeter):
        results = [await trial_meter.consume("123", Character.COLE) for _ in range(30)]

        assert all(a >= b for a, b in zip(results, results[1:]))

    async def test_sets_exhausted_at_on_last_message(
        self, trial_meter: TrialMeter, store: IdentityStore
    ):
        for _ in range(TRIAL_ALLOWANCE - 1):
            await trial_meter.consume("123", Character.COLE)
        trial = await store.get_trial("123", Character.COLE)
        assert trial is not None
        assert trial.trial_exhausted_at is None

        await trial_meter.consume("123", Character.COLE)
        trial = await store.get_trial("123", Character.COLE)
        assert trial is not None
        assert trial.messages_remaining == 0
        assert trial.trial_exhausted_at is not None

    async def test_exhausted_at_not_moved_by_extra_consumes(
        self, trial_meter: TrialMeter, store: IdentityStore
    ):
        for _ in range(TRIAL_ALLOWANCE):
            await trial_meter.consume("123", Character.COLE)
        first = await store.get_trial("123", Character.COLE)

        await trial_meter.consume("123", Character.COLE)
        second = await store.get_trial("123", Character.COLE)

        assert first is not None and second is not None
        assert second.trial_exhausted_at == first.trial_exhausted_at

    async def test_consume_creates_missing_trial(self, trial_meter: TrialMeter):
        """Decrementing an unseen pair starts its trial first."""
        remaining = await trial_meter.consume("999", Character.CLARA)

        assert remaining == TRIAL_ALLOWANCE - 1


class TestConcurrentConsume:
    """Racing decrements on separate sessions for the same pair."""

    async def test_floors_at_zero_under_gather(
        self,
        session_factory: async_sessionmaker[AsyncSession],
        trial_meter: TrialMeter,
        store: IdentityStore,
    ):
        await trial_meter.ensure("123", Character.COLE)

        async def consume_once() -> int:
            async with session_factory() as session:
                meter = TrialMeter(IdentityStore(session), allowance=TRIAL_ALLOWANCE)
                return await meter.consume("123", Character.COLE)

        results = await asyncio.gather(*(consume_once() for _ in range(TRIAL_ALLOWANCE + 10)))

        assert all(remaining >= 0 for remaining in results)
        assert results.count(0) >= 10
        trial = await store.get_trial("123", Character.COLE)
        assert trial is not None
        assert trial.messages_remaining == 0
        assert trial.trial_exhausted_at is not None


class TestReactivateExhausted:
    """Tests for the once-per-trial bump sweep."""

    async def test_bumps_old_exhausted_trial(
        self, trial_meter: TrialMeter, store: IdentityStore, catalogue: CharacterCatalogue
    ):
        """Exhausted 25h ago, bump not given: topped up to 10 and marked."""
        await _exhaust(store, "123", Character.COLE, hours_ago=25)
        messenger = _messenger()

        result = await trial_meter.reactivate_exhausted(
            threshold_age=timedelta(hours=24),
            top_up=10,
            messenger=messenger,
            catalogue=catalogue,
        )

        assert result.selected == 1
        assert result.bumped == 1
        trial = await store.get_trial("123", Character.COLE)
        assert trial is not None
        assert trial.messages_remaining == 10
        assert trial.bump_given is True
        messenger.send.assert_awaited_once_with(
            "111:cole-token", "123", catalogue[Character.COLE].bump_message
        )

    async def test_second_sweep_does_not_reselect(
        self, trial_meter: TrialMeter, store: IdentityStore, catalogue: CharacterCatalogue
    ):
        await _exhaust(store, "123", Character.COLE, hours_ago=25)
        messenger = _messenger()
        await trial_meter.reactivate_exhausted(timedelta(hours=24), 10, messenger, catalogue)

        result = await trial_meter.reactivate_exhausted(
            timedelta(hours=24), 10, messenger, catalogue
        )

        assert result.selected == 0
        assert messenger.send.await_count == 1

    async def test_bump_is_given_only_once(
        self, trial_meter: TrialMeter, store: IdentityStore, catalogue: CharacterCatalogue
    ):
        """A bumped trial that runs dry again is never bumped a second time."""
        await _exhaust(store, "123", Character.COLE, hours_ago=25)
        messenger = _messenger()
        await trial_meter.reactivate_exhausted(timedelta(hours=24), 10, messenger, catalogue)

        old = utc_now() - timedelta(hours=48)
        for _ in range(10):
            await store.decrement_trial("123", Character.COLE, old)
        await store.commit()

        result = await trial_meter.reactivate_exhausted(
            timedelta(hours=24), 10, messenger, catalogue
        )

        assert result.selected == 0

    async def test_recent_exhaustion_not_selected(
        self, trial_meter: TrialMeter, store: IdentityStore, catalogue: CharacterCatalogue
    ):
        await _exhaust(store, "123", Character.COLE, hours_ago=2)

        result = await trial_meter.reactivate_exhausted(
            timedelta(hours=24), 10, _messenger(), catalogue
        )

        assert result.selected == 0

    async def test_failed_delivery_leaves_trial_for_next_sweep(
        self, trial_meter: TrialMeter, store: IdentityStore, catalogue: CharacterCatalogue
    ):
        await _exhaust(store, "123", Character.COLE, hours_ago=25)

        result = await trial_meter.reactivate_exhausted(
            timedelta(hours=24), 10, _messenger(delivered=False), catalogue
        )

        assert result.failed == 1
        assert result.bumped == 0
        trial = await store.get_trial("123", Character.COLE)
        assert trial is not None
        assert trial.messages_remaining == 0
        assert trial.bump_given is False

    async def test_character_without_bot_token_is_skipped(
        self, trial_meter: TrialMeter, store: IdentityStore, catalogue: CharacterCatalogue
    ):
        """Nora has no bot token configured in the test catalogue."""
        await _exhaust(store, "123", Character.NORA, hours_ago=25)
        messenger = _messenger()

        result = await trial_meter.reactivate_exhausted(
            timedelta(hours=24), 10, messenger, catalogue
        )

        assert result.skipped == 1
        messenger.send.assert_not_awaited()
        trial = await store.get_trial("123", Character.NORA)
        assert trial is not None
        assert trial.bump_given is False
