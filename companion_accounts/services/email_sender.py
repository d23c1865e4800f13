"""
Magic-link email delivery via the Resend HTTP API.
"""

from html import escape

import httpx
from structlog import get_logger

from companion_accounts.exceptions import DeliveryError
from companion_accounts.observability.metrics import metrics
from companion_accounts.services.character_catalog import CharacterProfile

logger = get_logger(__name__)

_EMAIL_TEMPLATE = """<!DOCTYPE html>
<html>
<head>
  <meta charset="utf-8">
  <meta name="viewport" content="width=device-width, initial-scale=1.0">
</head>
<body style="font-family: -apple-system, BlinkMacSystemFont, 'Segoe UI', Roboto, sans-serif; line-height: 1.6; color: #333; max-width: 500px; margin: 0 auto; padding: 40px 20px;">
  <h1 style="font-size: 24px; font-weight: 600; color: #1a1a1a; margin-bottom: 24px;">{greeting}</h1>
  <p style="font-size: 16px; color: #4a4a4a; margin-bottom: 16px;">
    it's {name} - you clicked through! i'm so glad you want to keep talking.
  </p>
  <p style="font-size: 16px; color: #4a4a4a; margin-bottom: 32px;">
    click the button below to pick your plan and we can get back to it:
  </p>
  <a href="{link}" style="display: inline-block; background: #7c3aed; color: white; font-size: 16px; font-weight: 600; padding: 14px 32px; border-radius: 8px; text-decoration: none;">
    Choose Your Plan
  </a>
  <p style="font-size: 14px; color: #888; margin-top: 32px;">
    this link expires in {ttl_hours} hours. if you didn't request this, you can ignore it.
  </p>
  <p style="font-size: 14px; color: #888; margin-top: 24px;">
    {name}<br>
    <span style="color: #aaa;">{domain}</span>
  </p>
</body>
</html>"""


def greeting_for(first_name: str | None) -> str:
    return f"hey {first_name}!" if first_name else "hey there!"


class EmailSender:
    """Resend email client."""

    API_URL = "https://api.resend.com/emails"

    def __init__(
        self,
        api_key: str,
        from_domain: str,
        timeout_seconds: float = 10.0,
        link_ttl_hours: int = 24,
        http_client: httpx.AsyncClient | None = None,
    ):
        self.api_key = api_key
        self.from_domain = from_domain
        self.timeout_seconds = timeout_seconds
        self.link_ttl_hours = link_ttl_hours
        self._http_client = http_client

    @property
    def http_client(self) -> httpx.AsyncClient:
        """Get HTTP client."""
        if self._http_client is None:
            self._http_client = httpx.AsyncClient(timeout=self.timeout_seconds)
        return self._http_client

    async def send_magic_link(
        self,
        to: str,
        profile: CharacterProfile,
        link: str,
        first_name: str | None = None,
    ) -> None:
        """
        Send the magic-link email from the character's persona.

        Raises:
            DeliveryError: On transport failure or a non-2xx response
        """
        greeting = greeting_for(first_name)
        body = {
            "from": f"{profile.display_name} <no-reply@{self.from_domain}>",
            "to": [to],
            "subject": f"{greeting} your link to keep chatting",
            "html": _EMAIL_TEMPLATE.format(
                greeting=escape(greeting),
                name=escape(profile.display_name),
                domain=escape(profile.domain),
                link=escape(link, quote=True),
                ttl_hours=self.link_ttl_hours,
            ),
        }

        try:
            response = await self.http_client.post(
                self.API_URL,
                json=body,
                headers={"Authorization": f"Bearer {self.api_key}"},
                timeout=self.timeout_seconds,
            )
            response.raise_for_status()
        except httpx.HTTPStatusError as e:
            metrics.record_notification("email", success=False)
            logger.error(
                "magic_link_email_rejected",
                status=e.response.status_code,
                text=e.response.text[:500],
                character=profile.character.value,
            )
            raise DeliveryError("email", f"Resend returned {e.response.status_code}") from e
        except httpx.HTTPError as e:
            metrics.record_notification("email", success=False)
            logger.error(
                "magic_link_email_error",
                error=str(e),
                error_type=type(e).__name__,
                character=profile.character.value,
            )
            raise DeliveryError("email", str(e) or type(e).__name__) from e

        metrics.record_notification("email", success=True)
        logger.info("magic_link_email_sent", character=profile.character.value)

    async def close(self) -> None:
        """Close HTTP client."""
        if self._http_client:
            await self._http_client.aclose()
