import httpx
from typing import Optional
import logging

from backoffice.core.config import Settings, settings as default_settings
from backoffice.core.exceptions import ExternalProviderFailure

logger = logging.getLogger(__name__)


class EmailClient:
    """Delivers transactional email through the mail function ({to, subject, html})"""

    def __init__(self, settings: Settings, http: Optional[httpx.AsyncClient] = None):
        self.settings = settings
        self.http = http or httpx.AsyncClient(timeout=httpx.Timeout(settings.provider_timeout_seconds))

    @classmethod
    def from_settings(cls, settings: Optional[Settings] = None) -> "EmailClient":
        return cls(settings or default_settings)

    async def __aenter__(self) -> "EmailClient":
        return self

    async def __aexit__(self, *exc_info) -> None:
        await self.aclose()

    async def aclose(self) -> None:
        await self.http.aclose()

    async def send(self, to: str, subject: str, html: str) -> None:
        if not self.settings.email_function_url:
            raise ExternalProviderFailure("email", "EMAIL_FUNCTION_URL is not configured")

        try:
            response = await self.http.post(
                self.settings.email_function_url,
                json={"to": to, "subject": subject, "html": html},
                headers={"x-cron-key": self.settings.cron_invoke_key},
            )
        except httpx.HTTPError as exc:
            raise ExternalProviderFailure("email", f"send to {to} failed: {exc}") from exc

        if response.status_code >= 400:
            raise ExternalProviderFailure(
                "email", f"send to {to} failed: {response.text[:500]}", response.status_code
            )
        logger.info(f"Email '{subject}' sent to {to}")


def booking_pass_email(business_name: str, redeem_url: str, ttl_hours: int) -> str:
    return (
        "<p>Thanks for your purchase! Here is your booking link.</p>"
        f'<p><a href="{redeem_url}"><strong>Click here to book your session</strong></a></p>'
        f"<p>This link can be used <strong>once</strong> and expires in <strong>{ttl_hours} hours</strong>.</p>"
        f"<p>{business_name}</p>"
    )


def waiver_link_email(business_name: str, signing_url: str, attendee_name: Optional[str] = None) -> str:
    who = f" for {attendee_name}" if attendee_name else ""
    return (
        f"<p>Please sign your waiver{who} before your session.</p>"
        f'<p><a href="{signing_url}"><strong>Sign the waiver</strong></a></p>'
        f"<p>{business_name}</p>"
    )


async def get_email_client():
    """FastAPI dependency: one client per request scope"""
    async with EmailClient.from_settings() as client:
        yield client
