"""
Tests for exception classes.

Covers the hierarchy and the messages routes rely on.
"""

from datetime import UTC, datetime
from uuid import uuid4

import pytest

from companion_accounts.exceptions import (
    AccountNotFoundError,
    AccountsError,
    DeliveryError,
    NotFoundError,
    PaymentProviderError,
    SubscriptionNotFoundError,
    TokenExpiredError,
    TokenNotFoundError,
    UnsupportedDialectError,
    ValidationError,
    WebhookVerificationError,
    WriteVerificationError,
)

TOKEN = "abcdef0123456789" * 4


class TestAccountsError:
    def test_is_exception(self):
        assert issubclass(AccountsError, Exception)

    @pytest.mark.parametrize(
        "exc",
        [
            ValidationError("bad"),
            TokenNotFoundError(TOKEN),
            TokenExpiredError(TOKEN, datetime(2026, 10, 19, tzinfo=UTC)),
            DeliveryError("email", "down"),
            PaymentProviderError("down"),
            WebhookVerificationError("bad"),
            WriteVerificationError("gone"),
            UnsupportedDialectError("mysql"),
        ],
    )
    def test_all_are_accounts_errors(self, exc: Exception):
        assert isinstance(exc, AccountsError)


class TestValidationError:
    def test_message_is_kept_verbatim(self):
        exc = ValidationError("Invalid email format")

        assert exc.message == "Invalid email format"
        assert str(exc) == "Invalid email format"


class TestNotFoundErrors:
    def test_token_not_found_hides_full_token(self):
        exc = TokenNotFoundError(TOKEN)

        assert isinstance(exc, NotFoundError)
        assert exc.token_prefix == TOKEN[:8]
        assert TOKEN not in str(exc)

    def test_account_not_found(self):
        account_id = uuid4()
        exc = AccountNotFoundError(account_id)

        assert isinstance(exc, NotFoundError)
        assert str(account_id) in str(exc)

    def test_subscription_not_found(self):
        exc = SubscriptionNotFoundError("sub_1")

        assert isinstance(exc, NotFoundError)
        assert exc.external_subscription_id == "sub_1"


class TestTokenExpiredError:
    def test_attributes(self):
        expires_at = datetime(2026, 10, 19, 12, 0, tzinfo=UTC)
        exc = TokenExpiredError(TOKEN, expires_at)

        assert exc.expires_at == expires_at
        assert TOKEN not in str(exc)
        assert "2026-10-19T12:00:00+00:00" in str(exc)

    def test_is_not_a_not_found(self):
        assert not issubclass(TokenExpiredError, NotFoundError)


class TestDeliveryError:
    def test_attributes(self):
        exc = DeliveryError("email", "Resend returned 500")

        assert exc.channel == "email"
        assert exc.message == "Resend returned 500"
        assert "email delivery failed" in str(exc)


class TestProviderErrors:
    def test_payment_provider_error(self):
        exc = PaymentProviderError("card declined")

        assert exc.message == "card declined"
        assert "Payment provider error" in str(exc)

    def test_webhook_verification_error(self):
        exc = WebhookVerificationError("Invalid signature")

        assert exc.message == "Invalid signature"
        assert "Webhook verification error" in str(exc)


class TestUnsupportedDialectError:
    def test_attributes(self):
        exc = UnsupportedDialectError("mysql")

        assert exc.dialect == "mysql"
        assert str(exc) == "Upsert not supported on dialect: mysql"
