"""
Tests for CheckoutService.
"""

from unittest.mock import AsyncMock

import pytest

from companion_accounts.exceptions import (
    PaymentProviderError,
    TokenNotFoundError,
    ValidationError,
)
from companion_accounts.models.api import Character
from companion_accounts.services.checkout import CheckoutService
from companion_accounts.services.magic_link import MagicLinkService, generate_token
from companion_accounts.services.payment_provider import CheckoutSession


@pytest.fixture
def provider() -> AsyncMock:
    provider = AsyncMock()
    provider.create_checkout_session = AsyncMock(
        return_value=CheckoutSession(session_id="cs_1", url="https://pay.test/cs_1")
    )
    return provider


@pytest.fixture
def checkout(magic_links: MagicLinkService, provider: AsyncMock) -> CheckoutService:
    return CheckoutService(
        magic_links=magic_links,
        provider=provider,
        currency="usd",
        success_url="https://companions.test/welcome",
        cancel_url="https://companions.test/pricing",
    )


class TestCreateCheckout:
    """Tests for CheckoutService.create_checkout."""

    async def test_builds_request_from_link(
        self, checkout: CheckoutService, magic_links: MagicLinkService, provider: AsyncMock
    ):
        token = await magic_links.initiate("a@b.com", "123", Character.COLE)

        session = await checkout.create_checkout(token, 2, [Character.COLE, Character.NORA])

        assert session.session_id == "cs_1"
        request = provider.create_checkout_session.await_args.args[0]
        assert request.email == "a@b.com"
        assert request.tier == 2
        assert request.tier_name == "2 Characters"
        assert request.price_minor == 3499
        assert request.currency == "usd"
        assert request.interval == "month"
        assert request.characters == (Character.COLE, Character.NORA)
        assert request.chat_id == "123"
        assert request.character == Character.COLE
        assert request.token == token
        assert request.success_url == "https://companions.test/welcome"

    async def test_url_overrides(
        self, checkout: CheckoutService, magic_links: MagicLinkService, provider: AsyncMock
    ):
        token = await magic_links.initiate("a@b.com", "123", Character.COLE)

        await checkout.create_checkout(
            token,
            1,
            [Character.COLE],
            success_url="https://other.test/ok",
            cancel_url="https://other.test/cancel",
        )

        request = provider.create_checkout_session.await_args.args[0]
        assert request.success_url == "https://other.test/ok"
        assert request.cancel_url == "https://other.test/cancel"

    async def test_does_not_consume_link(
        self, checkout: CheckoutService, magic_links: MagicLinkService
    ):
        token = await magic_links.initiate("a@b.com", "123", Character.COLE)

        await checkout.create_checkout(token, 1, [Character.COLE])

        await magic_links.verify(token)

    async def test_unknown_tier(self, checkout: CheckoutService, provider: AsyncMock):
        with pytest.raises(ValidationError, match="Invalid tier: 5"):
            await checkout.create_checkout(generate_token(), 5, [Character.COLE] * 5)

        provider.create_checkout_session.assert_not_awaited()

    async def test_count_must_match_tier(self, checkout: CheckoutService):
        with pytest.raises(ValidationError, match="requires exactly 4"):
            await checkout.create_checkout(generate_token(), 4, [Character.COLE, Character.NORA])

    async def test_duplicates_rejected(self, checkout: CheckoutService):
        with pytest.raises(ValidationError, match="must not repeat"):
            await checkout.create_checkout(generate_token(), 2, [Character.COLE, Character.COLE])

    async def test_unknown_token(self, checkout: CheckoutService, provider: AsyncMock):
        with pytest.raises(TokenNotFoundError):
            await checkout.create_checkout(generate_token(), 1, [Character.COLE])

        provider.create_checkout_session.assert_not_awaited()

    async def test_provider_error_propagates(
        self, checkout: CheckoutService, magic_links: MagicLinkService, provider: AsyncMock
    ):
        provider.create_checkout_session.side_effect = PaymentProviderError("stripe down")
        token = await magic_links.initiate("a@b.com", "123", Character.COLE)

        with pytest.raises(PaymentProviderError):
            await checkout.create_checkout(token, 1, [Character.COLE])
