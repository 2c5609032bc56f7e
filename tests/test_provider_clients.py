import httpx
import pytest
import respx

from backoffice.core.config import Settings
from backoffice.core.exceptions import ExternalProviderFailure
from backoffice.services.email_service import EmailClient
from backoffice.services.signnow_client import SignNowClient

API = "https://api.signnow.com"


def signnow_settings(**overrides) -> Settings:
    values = {
        "signnow_api_base": API,
        "signnow_bearer_token": "",
        "signnow_basic_auth": "",
        "signnow_username": "",
        "signnow_password": "",
        "signnow_from_email": "studio@example.com",
    }
    values.update(overrides)
    return Settings(**values)


@respx.mock
async def test_copy_template_with_bearer_token():
    route = respx.post(f"{API}/template/tmpl_waiver/copy").respond(200, json={"id": "doc_9"})

    async with SignNowClient(signnow_settings(signnow_bearer_token="static-token")) as client:
        document_id = await client.copy_template("tmpl_waiver", document_name="Waiver 2026 - Alex")

    assert document_id == "doc_9"
    request = route.calls.last.request
    assert request.headers["Authorization"] == "Bearer static-token"
    assert b"Waiver 2026 - Alex" in request.content


@respx.mock
async def test_password_grant_token_is_fetched_once():
    token_route = respx.post(f"{API}/oauth2/token").respond(200, json={"access_token": "oauth-token"})
    doc_route = respx.get(f"{API}/document/doc_1").respond(200, json={"id": "doc_1", "status": "pending"})

    settings = signnow_settings(
        signnow_basic_auth="YmFzaWM=", signnow_username="ops@example.com", signnow_password="secret"
    )
    async with SignNowClient(settings) as client:
        await client.get_document("doc_1")
        doc = await client.get_document("doc_1")

    assert doc["status"] == "pending"
    assert token_route.call_count == 1
    assert token_route.calls.last.request.headers["Authorization"] == "Basic YmFzaWM="
    assert doc_route.calls.last.request.headers["Authorization"] == "Bearer oauth-token"


async def test_missing_credentials_fail_before_any_request():
    async with SignNowClient(signnow_settings()) as client:
        with pytest.raises(ExternalProviderFailure) as exc_info:
            await client.get_document("doc_1")
    assert "SIGNNOW_BEARER_TOKEN" in str(exc_info.value)


@respx.mock
async def test_error_responses_become_provider_failures():
    respx.get(f"{API}/document/missing").respond(404, json={"error": "document not found"})

    async with SignNowClient(signnow_settings(signnow_bearer_token="t")) as client:
        with pytest.raises(ExternalProviderFailure) as exc_info:
            await client.get_document("missing")

    assert exc_info.value.status_code == 404
    assert "document not found" in str(exc_info.value)


@respx.mock
async def test_timeouts_become_provider_failures():
    respx.get(f"{API}/document/slow").mock(side_effect=httpx.ConnectTimeout("timed out"))

    async with SignNowClient(signnow_settings(signnow_bearer_token="t")) as client:
        with pytest.raises(ExternalProviderFailure) as exc_info:
            await client.get_document("slow")
    assert "timed out" in str(exc_info.value)


@respx.mock
async def test_invite_and_signing_link():
    invite_route = respx.post(f"{API}/document/doc_1/invite").respond(200, json={"status": "success"})
    respx.post(f"{API}/link").respond(200, json={"url": "https://a", "url_no_signup": "https://b"})

    async with SignNowClient(signnow_settings(signnow_bearer_token="t")) as client:
        await client.send_invite("doc_1", to_email="alex@example.com", subject="Waiver", message="Please sign")
        url = await client.create_signing_link("doc_1")

    assert url == "https://b"
    body = invite_route.calls.last.request.content
    assert b'"role": "Participant"' in body or b'"role":"Participant"' in body
    assert b"studio@example.com" in body


@respx.mock
async def test_email_client_posts_message():
    route = respx.post("https://mail.example.com/send").respond(200, json={"ok": True})
    settings = Settings(email_function_url="https://mail.example.com/send", cron_invoke_key="cron-key")

    async with EmailClient(settings) as client:
        await client.send("alex@example.com", "Your booking link", "<p>hi</p>")

    request = route.calls.last.request
    assert request.headers["x-cron-key"] == "cron-key"
    assert b"alex@example.com" in request.content


@respx.mock
async def test_email_client_failures():
    respx.post("https://mail.example.com/send").respond(500, text="boom")

    async with EmailClient(Settings(email_function_url="https://mail.example.com/send")) as client:
        with pytest.raises(ExternalProviderFailure) as exc_info:
            await client.send("alex@example.com", "s", "h")
    assert exc_info.value.status_code == 500

    async with EmailClient(Settings(email_function_url="")) as client:
        with pytest.raises(ExternalProviderFailure):
            await client.send("alex@example.com", "s", "h")
