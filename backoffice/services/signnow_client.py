import httpx
from typing import Any, Dict, Optional
import logging

from backoffice.core.config import Settings, settings as default_settings
from backoffice.core.exceptions import ExternalProviderFailure

logger = logging.getLogger(__name__)


class SignNowClient:
    """
    Thin async client for the SignNow REST API.

    Authenticates with a pre-issued bearer token, or exchanges the configured
    username/password for one (OAuth password grant) on first use.
    """

    def __init__(self, settings: Settings, http: Optional[httpx.AsyncClient] = None):
        self.settings = settings
        self.http = http or httpx.AsyncClient(
            base_url=settings.signnow_api_base.rstrip("/"),
            timeout=httpx.Timeout(settings.provider_timeout_seconds),
        )
        self._access_token: Optional[str] = settings.signnow_bearer_token or None

    @classmethod
    def from_settings(cls, settings: Optional[Settings] = None) -> "SignNowClient":
        return cls(settings or default_settings)

    async def __aenter__(self) -> "SignNowClient":
        return self

    async def __aexit__(self, *exc_info) -> None:
        await self.aclose()

    async def aclose(self) -> None:
        await self.http.aclose()

    async def _get_access_token(self) -> str:
        if self._access_token:
            return self._access_token

        if not (self.settings.signnow_basic_auth and self.settings.signnow_username and self.settings.signnow_password):
            raise ExternalProviderFailure(
                "signnow",
                "Missing SignNow auth. Provide SIGNNOW_BEARER_TOKEN or "
                "SIGNNOW_BASIC_AUTH + SIGNNOW_USERNAME + SIGNNOW_PASSWORD.",
            )

        try:
            response = await self.http.post(
                "/oauth2/token",
                data={
                    "grant_type": "password",
                    "username": self.settings.signnow_username,
                    "password": self.settings.signnow_password,
                },
                headers={
                    "Authorization": f"Basic {self.settings.signnow_basic_auth}",
                    "Accept": "application/json",
                },
            )
        except httpx.HTTPError as exc:
            raise ExternalProviderFailure("signnow", f"token request failed: {exc}") from exc

        if response.status_code >= 400:
            raise ExternalProviderFailure(
                "signnow", f"token request failed: {response.text[:500]}", response.status_code
            )

        token = self._json(response).get("access_token")
        if not token:
            raise ExternalProviderFailure("signnow", "token response missing access_token")
        self._access_token = token
        return token

    def _json(self, response: httpx.Response) -> Dict[str, Any]:
        try:
            body = response.json() if response.content else {}
        except ValueError:
            return {}
        return body if isinstance(body, dict) else {"data": body}

    async def _request(self, method: str, path: str, *, json: Optional[Dict[str, Any]] = None) -> Dict[str, Any]:
        token = await self._get_access_token()
        try:
            response = await self.http.request(
                method,
                path,
                json=json,
                headers={
                    "Authorization": f"Bearer {token}",
                    "Accept": "application/json",
                },
            )
        except httpx.TimeoutException as exc:
            raise ExternalProviderFailure("signnow", f"{method} {path} timed out") from exc
        except httpx.HTTPError as exc:
            raise ExternalProviderFailure("signnow", f"{method} {path} failed: {exc}") from exc

        body = self._json(response)
        if response.status_code >= 400:
            detail = body.get("error") or body.get("message") or response.text[:500] or "Unknown error"
            raise ExternalProviderFailure(
                "signnow", f"{method} {path} failed ({response.status_code}): {detail}", response.status_code
            )
        return body

    async def copy_template(self, template_id: str, document_name: Optional[str] = None) -> str:
        """Create a document from the waiver template; returns the new document id"""
        payload = {"name": document_name} if document_name else {}
        out = await self._request("POST", f"/template/{template_id}/copy", json=payload)
        data = out.get("data") if isinstance(out.get("data"), dict) else {}
        document_id = out.get("id") or out.get("document_id") or data.get("id") or data.get("document_id")
        if not document_id:
            raise ExternalProviderFailure("signnow", f"template copy did not return a document id: {out}")
        return document_id

    async def send_invite(
        self,
        document_id: str,
        *,
        to_email: str,
        subject: str,
        message: str,
        from_email: Optional[str] = None,
        role_name: Optional[str] = None,
        expiration_days: Optional[int] = None,
    ) -> Dict[str, Any]:
        payload = {
            "from": from_email or self.settings.signnow_from_email,
            "subject": subject,
            "message": message,
            "expiration_days": expiration_days or self.settings.signnow_invite_expiration_days,
            "to": [
                {
                    "email": to_email,
                    "role": role_name or self.settings.signnow_waiver_role_name,
                    "order": 1,
                }
            ],
        }
        return await self._request("POST", f"/document/{document_id}/invite", json=payload)

    async def get_document(self, document_id: str) -> Dict[str, Any]:
        return await self._request("GET", f"/document/{document_id}")

    async def create_signing_link(self, document_id: str) -> str:
        """Shareable signing URL for an existing document (no new invite)"""
        out = await self._request("POST", "/link", json={"document_id": document_id})
        url = out.get("url_no_signup") or out.get("url")
        if not url:
            raise ExternalProviderFailure("signnow", f"link response missing url for document {document_id}")
        return url


async def get_signnow_client():
    """FastAPI dependency: one client per request scope"""
    async with SignNowClient.from_settings() as client:
        yield client
