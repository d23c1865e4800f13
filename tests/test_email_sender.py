"""
Tests for EmailSender (Resend).
"""

import json

import httpx
import pytest

from companion_accounts.exceptions import DeliveryError
from companion_accounts.models.api import Character
from companion_accounts.services.character_catalog import CharacterCatalogue
from companion_accounts.services.email_sender import EmailSender, greeting_for

LINK = "https://companions.test/magic/abc123"


def _sender(handler) -> EmailSender:
    return EmailSender(
        api_key="re_test_key",
        from_domain="companions.test",
        http_client=httpx.AsyncClient(transport=httpx.MockTransport(handler)),
    )


class TestGreeting:
    def test_with_name(self):
        assert greeting_for("Sam") == "hey Sam!"

    def test_without_name(self):
        assert greeting_for(None) == "hey there!"


class TestSendMagicLink:
    """Tests for EmailSender.send_magic_link."""

    async def test_sends_from_character(self, catalogue: CharacterCatalogue):
        seen: list[httpx.Request] = []

        def handler(request: httpx.Request) -> httpx.Response:
            seen.append(request)
            return httpx.Response(200, json={"id": "email_1"})

        await _sender(handler).send_magic_link(
            to="a@b.com", profile=catalogue[Character.COLE], link=LINK, first_name="Sam"
        )

        request = seen[0]
        assert str(request.url) == EmailSender.API_URL
        assert request.headers["authorization"] == "Bearer re_test_key"
        body = json.loads(request.content)
        assert body["from"] == "Cole Mercer <no-reply@companions.test>"
        assert body["to"] == ["a@b.com"]
        assert body["subject"] == "hey Sam! your link to keep chatting"
        assert LINK in body["html"]
        assert "24 hours" in body["html"]

    async def test_html_is_escaped(self, catalogue: CharacterCatalogue):
        seen: list[httpx.Request] = []

        def handler(request: httpx.Request) -> httpx.Response:
            seen.append(request)
            return httpx.Response(200, json={"id": "email_1"})

        await _sender(handler).send_magic_link(
            to="a@b.com",
            profile=catalogue[Character.COLE],
            link=LINK,
            first_name="<script>",
        )

        html = json.loads(seen[0].content)["html"]
        assert "<script>" not in html
        assert "&lt;script&gt;" in html

    async def test_rejection_raises_delivery_error(self, catalogue: CharacterCatalogue):
        sender = _sender(lambda request: httpx.Response(422, json={"message": "bad"}))

        with pytest.raises(DeliveryError) as exc_info:
            await sender.send_magic_link("a@b.com", catalogue[Character.COLE], LINK)

        assert exc_info.value.channel == "email"

    async def test_transport_error_raises_delivery_error(self, catalogue: CharacterCatalogue):
        def handler(request: httpx.Request) -> httpx.Response:
            raise httpx.ConnectTimeout("timed out", request=request)

        with pytest.raises(DeliveryError):
            await _sender(handler).send_magic_link("a@b.com", catalogue[Character.COLE], LINK)
