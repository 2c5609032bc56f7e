from fastapi import APIRouter, Depends, HTTPException, Request, status
from sqlalchemy.ext.asyncio import AsyncSession
import logging

from backoffice.core.database import get_db
from backoffice.core.exceptions import InvalidInput, ExternalProviderFailure
from backoffice.schemas.webhooks import WebhookResponse
from backoffice.services.stripe_service import stripe_service
from backoffice.services.payment_service import payment_service
from backoffice.services.email_service import EmailClient, get_email_client

logger = logging.getLogger(__name__)

router = APIRouter()


@router.post("", response_model=WebhookResponse)
async def stripe_webhook(
    request: Request,
    db: AsyncSession = Depends(get_db),
    email_client: EmailClient = Depends(get_email_client),
):
    """
    Handle Stripe payment events.
    Unverifiable or unusable events get a 400; provider failures a 502 so Stripe retries.
    """
    payload = await request.body()
    signature = request.headers.get("stripe-signature")

    try:
        event = stripe_service.construct_event(payload, signature)
        result = await payment_service.process_event(db, event, email_client=email_client)
    except InvalidInput as e:
        logger.warning(f"Stripe webhook rejected: {e}")
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(e))
    except ExternalProviderFailure as e:
        logger.error(f"Stripe webhook provider failure: {e}")
        raise HTTPException(status_code=status.HTTP_502_BAD_GATEWAY, detail=str(e))

    return WebhookResponse(**result)
