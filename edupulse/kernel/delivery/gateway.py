"""
Email delivery for account links.

The identity service only knows the DeliveryGateway protocol. The HTTP
adapter talks to a Resend-style JSON email API; the logging adapter is used
when no API key is configured.
"""

from typing import Optional, Protocol

import httpx

from edupulse.config import Settings
from edupulse.kernel.errors import DeliveryError
from edupulse.logging_config import get_logger

logger = get_logger(__name__)


class DeliveryGateway(Protocol):
    """Sends links that embed a raw single-use token."""

    async def send_verification_link(self, email: str, link: str) -> None: ...

    async def send_password_reset_link(self, email: str, link: str) -> None: ...


def _verification_html(link: str) -> str:
    return (
        "<h2>Welcome to EduPulse</h2>"
        "<p>Please confirm your email address to activate your account.</p>"
        f'<p><a href="{link}">Verify email</a></p>'
        "<p>This link expires in 24 hours.</p>"
    )


def _reset_html(link: str) -> str:
    return (
        "<h2>Reset your EduPulse password</h2>"
        "<p>We received a request to reset your password.</p>"
        f'<p><a href="{link}">Choose a new password</a></p>'
        "<p>This link expires in 1 hour. If you did not ask for this, ignore this email.</p>"
    )


class HttpEmailGateway:
    """Deliver email through an HTTP API using a bearer API key."""

    def __init__(
        self,
        api_url: str,
        api_key: str,
        sender: str,
        timeout_seconds: float = 10.0,
        client: Optional[httpx.AsyncClient] = None,
    ):
        self.api_url = api_url
        self.sender = sender
        self._client = client or httpx.AsyncClient(
            timeout=httpx.Timeout(timeout_seconds),
            headers={"Authorization": f"Bearer {api_key}"},
        )

    async def _send(self, to: str, subject: str, html: str, text: str) -> None:
        try:
            response = await self._client.post(
                self.api_url,
                json={
                    "from": self.sender,
                    "to": [to],
                    "subject": subject,
                    "html": html,
                    "text": text,
                },
            )
        except httpx.HTTPError as exc:
            raise DeliveryError(f"Email API request failed: {type(exc).__name__}") from exc

        if response.is_error:
            raise DeliveryError(f"Email API returned {response.status_code}")

    async def send_verification_link(self, email: str, link: str) -> None:
        await self._send(
            email,
            "Verify your EduPulse account",
            _verification_html(link),
            f"Verify your email address: {link}",
        )

    async def send_password_reset_link(self, email: str, link: str) -> None:
        await self._send(
            email,
            "Reset your EduPulse password",
            _reset_html(link),
            f"Reset your password: {link}",
        )

    async def aclose(self) -> None:
        await self._client.aclose()


class LoggingDeliveryGateway:
    """Development stand-in: records the send in the log instead of emailing."""

    def __init__(self, log_links: bool = False):
        self.log_links = log_links

    async def _log(self, kind: str, email: str, link: str) -> None:
        logger.warning(
            "Email delivery not configured; %s email not sent",
            kind,
            extra={"recipient": email},
        )
        if self.log_links:
            logger.info("Undelivered %s link: %s", kind, link)

    async def send_verification_link(self, email: str, link: str) -> None:
        await self._log("verification", email, link)

    async def send_password_reset_link(self, email: str, link: str) -> None:
        await self._log("password reset", email, link)


def build_delivery_gateway(settings: Settings) -> DeliveryGateway:
    """Pick the gateway for the configured environment."""
    if settings.email_api_key:
        return HttpEmailGateway(
            api_url=settings.email_api_url,
            api_key=settings.email_api_key,
            sender=settings.email_from,
            timeout_seconds=settings.delivery_timeout_seconds,
        )
    return LoggingDeliveryGateway(log_links=settings.is_development)
