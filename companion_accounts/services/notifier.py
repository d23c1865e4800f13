"""
Best-effort outbound notifications.

Telegram delivery for trial bumps, character backend activation callbacks,
and a dispatcher that runs such calls as timed background tasks so they
never hold up the operation that triggered them.
"""

import asyncio
from collections.abc import Awaitable, Callable
from uuid import UUID

import httpx
from structlog import get_logger

from companion_accounts.models.api import Character
from companion_accounts.observability.metrics import metrics
from companion_accounts.services.character_catalog import CharacterCatalogue

logger = get_logger(__name__)


class ChatMessenger:
    """Telegram Bot API client. send() reports failure, it never raises."""

    API_BASE = "https://api.telegram.org"

    def __init__(self, timeout_seconds: float = 10.0, http_client: httpx.AsyncClient | None = None):
        self.timeout_seconds = timeout_seconds
        self._http_client = http_client

    @property
    def http_client(self) -> httpx.AsyncClient:
        """Get HTTP client."""
        if self._http_client is None:
            self._http_client = httpx.AsyncClient(timeout=self.timeout_seconds)
        return self._http_client

    async def send(self, bot_token: str, chat_id: str, text: str) -> bool:
        try:
            response = await self.http_client.post(
                f"{self.API_BASE}/bot{bot_token}/sendMessage",
                json={"chat_id": chat_id, "text": text},
                timeout=self.timeout_seconds,
            )
            response.raise_for_status()
        except httpx.HTTPStatusError as e:
            logger.warning("telegram_send_rejected", chat_id=chat_id, status=e.response.status_code)
            metrics.record_notification("telegram", success=False)
            return False
        except httpx.HTTPError as e:
            logger.warning("telegram_send_error", chat_id=chat_id, error=str(e))
            metrics.record_notification("telegram", success=False)
            return False

        metrics.record_notification("telegram", success=True)
        return True

    async def close(self) -> None:
        """Close HTTP client."""
        if self._http_client:
            await self._http_client.aclose()


class CharacterBackendNotifier:
    """Tells a character's chat backend that a chat has been activated."""

    def __init__(
        self,
        catalogue: CharacterCatalogue,
        timeout_seconds: float = 10.0,
        http_client: httpx.AsyncClient | None = None,
    ):
        self.catalogue = catalogue
        self.timeout_seconds = timeout_seconds
        self._http_client = http_client

    @property
    def http_client(self) -> httpx.AsyncClient:
        """Get HTTP client."""
        if self._http_client is None:
            self._http_client = httpx.AsyncClient(timeout=self.timeout_seconds)
        return self._http_client

    async def activate(self, character: Character, chat_id: str, account_id: UUID, email: str) -> None:
        """
        POST {backend_url}/billing/activate.

        Skipped when the character has no backend configured. Transport errors
        and non-2xx responses propagate to the dispatcher, which logs them.
        """
        profile = self.catalogue[character]
        if not profile.backend_url:
            logger.info("character_backend_not_configured", character=character.value)
            return

        response = await self.http_client.post(
            f"{profile.backend_url.rstrip('/')}/billing/activate",
            json={"chat_id": chat_id, "account_id": str(account_id), "email": email},
            timeout=self.timeout_seconds,
        )
        response.raise_for_status()
        logger.info(
            "character_backend_activated",
            character=character.value,
            chat_id=chat_id,
            account_id=str(account_id),
        )

    async def close(self) -> None:
        """Close HTTP client."""
        if self._http_client:
            await self._http_client.aclose()


class NotificationDispatcher:
    """
    Fire-and-forget runner for best-effort outbound calls.

    Each call runs as its own task under a timeout. Failures and timeouts are
    logged and counted; they never reach the caller.
    """

    def __init__(self, timeout_seconds: float = 10.0) -> None:
        self.timeout_seconds = timeout_seconds
        self._tasks: set[asyncio.Task[None]] = set()

    def dispatch(self, channel: str, factory: Callable[[], Awaitable[None]]) -> asyncio.Task[None]:
        task = asyncio.create_task(self._run(channel, factory))
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)
        return task

    async def _run(self, channel: str, factory: Callable[[], Awaitable[None]]) -> None:
        try:
            await asyncio.wait_for(factory(), timeout=self.timeout_seconds)
        except asyncio.TimeoutError:
            metrics.record_notification(channel, success=False)
            logger.warning("notification_timed_out", channel=channel, timeout=self.timeout_seconds)
        except Exception as e:
            metrics.record_notification(channel, success=False)
            logger.warning(
                "notification_failed",
                channel=channel,
                error=str(e),
                error_type=type(e).__name__,
            )
        else:
            metrics.record_notification(channel, success=True)

    @property
    def pending(self) -> int:
        return len(self._tasks)

    async def drain(self) -> None:
        """Wait for every outstanding notification to finish."""
        while self._tasks:
            await asyncio.gather(*list(self._tasks), return_exceptions=True)
