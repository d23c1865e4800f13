"""
Hypothesis Property-Based Tests.

Trial metering invariants run against a fresh in-memory database per example;
parsing and normalization invariants are pure.
"""

import asyncio

from hypothesis import given, settings
from hypothesis import strategies as st
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.pool import StaticPool

from companion_accounts.db.models import Base
from companion_accounts.exceptions import ValidationError
from companion_accounts.models.api import Character, SubscriptionStatus
from companion_accounts.services.identity_store import IdentityStore
from companion_accounts.services.magic_link import normalize_email
from companion_accounts.services.stripe_provider import _parse_characters
from companion_accounts.services.trial_meter import TrialMeter

# ============================================================================
# Hypothesis Strategies
# ============================================================================

characters = st.sampled_from(list(Character))
allowances = st.integers(min_value=1, max_value=30)
consume_counts = st.integers(min_value=0, max_value=40)
local_parts = st.text(
    alphabet=st.characters(categories=("Ll", "Lu", "Nd")), min_size=1, max_size=20
)
domains = st.sampled_from(["example.com", "Mail.Example.org", "b.co"])


async def _consume_n(allowance: int, character: Character, n: int) -> list[int]:
    engine = create_async_engine(
        "sqlite+aiosqlite://",
        poolclass=StaticPool,
        connect_args={"check_same_thread": False},
    )
    try:
        async with engine.begin() as conn:
            await conn.run_sync(Base.metadata.create_all)
        factory = async_sessionmaker(engine, class_=AsyncSession, expire_on_commit=False)
        async with factory() as session:
            meter = TrialMeter(IdentityStore(session), allowance=allowance)
            return [await meter.consume("123", character) for _ in range(n)]
    finally:
        await engine.dispose()


class TestTrialProperties:
    """Trial counter invariants."""

    @given(allowance=allowances, character=characters, n=consume_counts)
    @settings(max_examples=25, deadline=None)
    def test_remaining_is_allowance_minus_consumed_floored(
        self, allowance: int, character: Character, n: int
    ):
        results = asyncio.run(_consume_n(allowance, character, n))

        assert results == [max(allowance - i, 0) for i in range(1, n + 1)]

    @given(allowance=allowances, n=consume_counts)
    @settings(max_examples=15, deadline=None)
    def test_never_negative_and_non_increasing(self, allowance: int, n: int):
        results = asyncio.run(_consume_n(allowance, Character.COLE, n))

        assert all(r >= 0 for r in results)
        assert all(a >= b for a, b in zip(results, results[1:]))


class TestEmailProperties:
    @given(local=local_parts, domain=domains, padding=st.sampled_from(["", " ", "  \t"]))
    def test_normalize_is_idempotent(self, local: str, domain: str, padding: str):
        normalized = normalize_email(f"{padding}{local}@{domain}{padding}")

        assert normalized == normalized.strip().lower()
        assert normalize_email(normalized) == normalized

    @given(text=st.text(alphabet=st.characters(exclude_characters="@"), max_size=40))
    def test_without_at_sign_rejected(self, text: str):
        try:
            normalize_email(text)
        except ValidationError:
            return
        raise AssertionError(f"accepted {text!r}")


class TestCharacterListProperties:
    @given(
        picked=st.lists(characters, max_size=10),
        upper=st.booleans(),
        spaced=st.booleans(),
    )
    def test_round_trips_distinct_in_order(
        self, picked: list[Character], upper: bool, spaced: bool
    ):
        names = [c.value.upper() if upper else c.value for c in picked]
        raw = (", " if spaced else ",").join(names)

        parsed = _parse_characters(raw)

        assert parsed == tuple(dict.fromkeys(picked))


class TestStatusMapping:
    @given(status=st.text(max_size=30))
    def test_anything_unrecognised_is_canceled(self, status: str):
        mapped = SubscriptionStatus.from_provider(status)

        if status == "active":
            assert mapped == SubscriptionStatus.ACTIVE
        elif status == "past_due":
            assert mapped == SubscriptionStatus.PAST_DUE
        else:
            assert mapped == SubscriptionStatus.CANCELED
