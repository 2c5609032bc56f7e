from fastapi import APIRouter, Depends, HTTPException, Request, status
from sqlalchemy.ext.asyncio import AsyncSession
import hmac
import json
import logging

from backoffice.core.config import settings
from backoffice.core.database import get_db
from backoffice.schemas.webhooks import WebhookOutcome, WebhookResponse
from backoffice.services.calendly_service import verify_signature, parse_invitee_event
from backoffice.services.redemption_service import redemption_service
from backoffice.services.signnow_client import SignNowClient, get_signnow_client
from backoffice.services.email_service import EmailClient, get_email_client

logger = logging.getLogger(__name__)

router = APIRouter()


def _authenticate(request: Request, payload: bytes) -> None:
    """Signature when a signing key is configured, otherwise the shared token query param"""
    if settings.calendly_signing_key:
        header = request.headers.get("calendly-webhook-signature")
        if verify_signature(payload, header, settings.calendly_signing_key):
            return
    elif settings.calendly_webhook_token:
        token = request.query_params.get("token") or ""
        if hmac.compare_digest(token, settings.calendly_webhook_token):
            return
    raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Unauthorized")


@router.get("")
async def calendly_webhook_alive():
    return {"ok": True, "route": "calendly-webhook"}


@router.post("", response_model=WebhookResponse)
async def calendly_webhook(
    request: Request,
    db: AsyncSession = Depends(get_db),
    signnow: SignNowClient = Depends(get_signnow_client),
    email_client: EmailClient = Depends(get_email_client),
):
    """
    Handle Calendly invitee events. Anything past authentication and parsing is
    acknowledged with 200 so Calendly does not retry business outcomes.
    """
    payload = await request.body()
    _authenticate(request, payload)

    try:
        body = json.loads(payload)
    except ValueError:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="Invalid JSON")

    invitee = parse_invitee_event(body)
    if invitee.event_type == "invitee.created":
        result = await redemption_service.handle_invitee_created(
            db, invitee, signnow=signnow, email_client=email_client
        )
    elif invitee.event_type == "invitee.canceled":
        result = await redemption_service.handle_invitee_canceled(db, invitee)
    else:
        logger.info(f"Calendly event {invitee.event_type} ignored")
        result = {"outcome": WebhookOutcome.IGNORED, "detail": invitee.event_type}

    return WebhookResponse(**result)
