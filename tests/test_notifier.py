"""
Tests for outbound notifications: Telegram, character backends, dispatcher.
"""

import asyncio
import json
from uuid import uuid4

import httpx
import pytest

from companion_accounts.models.api import Character
from companion_accounts.services.character_catalog import CharacterCatalogue
from companion_accounts.services.notifier import (
    CharacterBackendNotifier,
    ChatMessenger,
    NotificationDispatcher,
)


def _client(handler) -> httpx.AsyncClient:
    return httpx.AsyncClient(transport=httpx.MockTransport(handler))


class TestChatMessenger:
    """Tests for ChatMessenger.send."""

    async def test_posts_to_bot_api(self):
        seen: list[httpx.Request] = []

        def handler(request: httpx.Request) -> httpx.Response:
            seen.append(request)
            return httpx.Response(200, json={"ok": True})

        messenger = ChatMessenger(http_client=_client(handler))

        delivered = await messenger.send("111:token", "123", "hello")

        assert delivered is True
        assert str(seen[0].url) == "https://api.telegram.org/bot111:token/sendMessage"
        assert json.loads(seen[0].content) == {"chat_id": "123", "text": "hello"}

    async def test_rejection_returns_false(self):
        messenger = ChatMessenger(
            http_client=_client(lambda request: httpx.Response(403, json={"ok": False}))
        )

        assert await messenger.send("111:token", "123", "hello") is False

    async def test_transport_error_returns_false(self):
        def handler(request: httpx.Request) -> httpx.Response:
            raise httpx.ConnectError("connection refused", request=request)

        messenger = ChatMessenger(http_client=_client(handler))

        assert await messenger.send("111:token", "123", "hello") is False


class TestCharacterBackendNotifier:
    """Tests for CharacterBackendNotifier.activate."""

    async def test_posts_activation(self, catalogue: CharacterCatalogue):
        seen: list[httpx.Request] = []

        def handler(request: httpx.Request) -> httpx.Response:
            seen.append(request)
            return httpx.Response(200, json={"ok": True})

        notifier = CharacterBackendNotifier(catalogue, http_client=_client(handler))
        account_id = uuid4()

        await notifier.activate(Character.COLE, "123", account_id, "a@b.com")

        assert str(seen[0].url) == "http://cole.test/billing/activate"
        assert json.loads(seen[0].content) == {
            "chat_id": "123",
            "account_id": str(account_id),
            "email": "a@b.com",
        }

    async def test_unconfigured_backend_is_skipped(self, catalogue: CharacterCatalogue):
        seen: list[httpx.Request] = []

        def handler(request: httpx.Request) -> httpx.Response:
            seen.append(request)
            return httpx.Response(200)

        notifier = CharacterBackendNotifier(catalogue, http_client=_client(handler))

        await notifier.activate(Character.NORA, "123", uuid4(), "a@b.com")

        assert seen == []

    async def test_error_status_raises(self, catalogue: CharacterCatalogue):
        notifier = CharacterBackendNotifier(
            catalogue, http_client=_client(lambda request: httpx.Response(500))
        )

        with pytest.raises(httpx.HTTPStatusError):
            await notifier.activate(Character.COLE, "123", uuid4(), "a@b.com")


class TestNotificationDispatcher:
    """Tests for fire-and-forget dispatch."""

    async def test_runs_task(self):
        dispatcher = NotificationDispatcher(timeout_seconds=1.0)
        calls: list[str] = []

        async def notify() -> None:
            calls.append("sent")

        dispatcher.dispatch("test", notify)
        await dispatcher.drain()

        assert calls == ["sent"]
        assert dispatcher.pending == 0

    async def test_failure_is_contained(self):
        dispatcher = NotificationDispatcher(timeout_seconds=1.0)

        async def notify() -> None:
            raise RuntimeError("backend down")

        task = dispatcher.dispatch("test", notify)
        await dispatcher.drain()

        assert task.done()
        assert task.exception() is None

    async def test_timeout_is_contained(self):
        dispatcher = NotificationDispatcher(timeout_seconds=0.01)

        async def notify() -> None:
            await asyncio.sleep(5)

        task = dispatcher.dispatch("test", notify)
        await dispatcher.drain()

        assert task.done()
        assert task.exception() is None

    async def test_dispatch_does_not_block_caller(self):
        dispatcher = NotificationDispatcher(timeout_seconds=1.0)
        release = asyncio.Event()

        async def notify() -> None:
            await release.wait()

        dispatcher.dispatch("test", notify)

        assert dispatcher.pending == 1
        release.set()
        await dispatcher.drain()
        assert dispatcher.pending == 0
