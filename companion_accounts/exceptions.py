"""
Exception Classes - Strongly typed exception hierarchy.

NO DICTIONARIES - All exceptions have typed attributes.
"""

from datetime import datetime
from uuid import UUID


class AccountsError(Exception):
    """Base exception for all account linking and entitlement errors."""

    pass


class ValidationError(AccountsError):
    """Raised when input is malformed or required fields are missing."""

    def __init__(self, message: str) -> None:
        self.message = message
        super().__init__(message)


class NotFoundError(AccountsError):
    """Raised when a referenced record does not exist."""

    pass


class TokenNotFoundError(NotFoundError):
    """Raised when a magic-link token has no pending link."""

    def __init__(self, token: str) -> None:
        self.token_prefix = token[:8]
        super().__init__(f"Pending link not found for token {self.token_prefix}...")


class AccountNotFoundError(NotFoundError):
    """Raised when an account doesn't exist."""

    def __init__(self, account_id: UUID | str) -> None:
        self.account_id = account_id
        super().__init__(f"Account not found: {account_id}")


class SubscriptionNotFoundError(NotFoundError):
    """Raised when no subscription matches an external subscription id."""

    def __init__(self, external_subscription_id: str) -> None:
        self.external_subscription_id = external_subscription_id
        super().__init__(f"Subscription not found: {external_subscription_id}")


class TokenExpiredError(AccountsError):
    """Raised when a magic-link token is past its expiry."""

    def __init__(self, token: str, expires_at: datetime) -> None:
        self.token_prefix = token[:8]
        self.expires_at = expires_at
        super().__init__(
            f"Pending link {self.token_prefix}... expired at {expires_at.isoformat()}"
        )


class DeliveryError(AccountsError):
    """Raised when a best-effort outbound delivery (email, message, callback) fails."""

    def __init__(self, channel: str, message: str) -> None:
        self.channel = channel
        self.message = message
        super().__init__(f"{channel} delivery failed: {message}")


class PaymentProviderError(AccountsError):
    """Raised when payment provider operation fails."""

    def __init__(self, message: str) -> None:
        self.message = message
        super().__init__(f"Payment provider error: {message}")


class WebhookVerificationError(AccountsError):
    """Raised when webhook signature or freshness verification fails."""

    def __init__(self, message: str) -> None:
        self.message = message
        super().__init__(f"Webhook verification error: {message}")


class WriteVerificationError(AccountsError):
    """Raised when database write verification fails."""

    def __init__(self, message: str) -> None:
        self.message = message
        super().__init__(f"Write verification failed: {message}")


class UnsupportedDialectError(AccountsError):
    """Raised when the store is bound to a database without native upserts."""

    def __init__(self, dialect: str) -> None:
        self.dialect = dialect
        super().__init__(f"Upsert not supported on dialect: {dialect}")
