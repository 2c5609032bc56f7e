from sqlalchemy.ext.asyncio import AsyncSession
from typing import Any, Dict, Optional
import logging

from backoffice.core.config import settings
from backoffice.core.exceptions import InvalidInput
from backoffice.crud import member_crud
from backoffice.schemas.webhooks import WebhookOutcome
from backoffice.services.event_intake import event_intake_service
from backoffice.services.stripe_service import stripe_service
from backoffice.services.ledger_service import ledger_service
from backoffice.services.booking_pass_service import booking_pass_service
from backoffice.services.email_service import EmailClient, booking_pass_email
from backoffice.core.exceptions import ExternalProviderFailure

logger = logging.getLogger(__name__)


class PaymentService:
    """
    Applies verified Stripe events: claim, member, grant and booking pass in one
    transaction; the booking link email goes out after commit.
    """

    async def process_event(
        self,
        db: AsyncSession,
        event: Dict[str, Any],
        *,
        email_client: Optional[EmailClient] = None,
    ) -> Dict[str, Any]:
        event_id = event.get("id")
        event_type = event.get("type")
        if not event_id:
            raise InvalidInput("Stripe event without id")

        if await event_intake_service.is_processed(db, event_id):
            logger.info(f"Stripe event {event_id} already processed")
            return {"outcome": WebhookOutcome.ALREADY_PROCESSED}

        # Provider reads happen before any write; a failure here leaves the
        # event unclaimed so Stripe's retry can complete it
        grant = stripe_service.resolve_grant(event)

        raw_token = None
        try:
            if not await event_intake_service.claim(db, "stripe", event_id, event_type, commit=False):
                await db.rollback()
                return {"outcome": WebhookOutcome.ALREADY_PROCESSED}

            if grant is None:
                await db.commit()
                logger.info(f"Stripe event {event_id} ({event_type}) recorded, nothing to grant")
                return {"outcome": WebhookOutcome.IGNORED, "detail": event_type}

            # invoice.paid and invoice.payment_succeeded describe the same payment
            source_key = f"source:{grant.reason}"
            if not await event_intake_service.claim(db, "stripe", source_key, "payment_source", commit=False):
                await db.commit()
                logger.info(f"Stripe event {event_id}: {grant.reason} already credited")
                return {"outcome": WebhookOutcome.ALREADY_PROCESSED, "detail": grant.reason}

            member = await member_crud.get_or_create_by_email(db, grant.email, commit=False)
            await member_crud.fill_phone(db, member.id, grant.phone, commit=False)
            entry = await ledger_service.grant(db, member.id, grant.credits, grant.reason, commit=False)

            if grant.mint_pass:
                raw_token = await booking_pass_service.mint(
                    db,
                    grant.email,
                    stripe_session_id=grant.stripe_session_id,
                    member_id=member.id,
                    commit=False,
                )
            member_id, entry_id = member.id, entry.id
            await db.commit()
        except Exception:
            await db.rollback()
            raise

        logger.info(f"Stripe event {event_id}: granted {grant.credits} credit(s) to {grant.email}")

        email_sent = False
        if raw_token and email_client is not None:
            email_sent = await self.send_booking_link(email_client, grant.email, raw_token)

        return {
            "outcome": WebhookOutcome.PROCESSED,
            "data": {
                "member_id": str(member_id),
                "ledger_entry_id": str(entry_id),
                "credits": grant.credits,
                "booking_pass_minted": raw_token is not None,
                "email_sent": email_sent,
            },
        }

    async def send_booking_link(self, email_client: EmailClient, email: str, raw_token: str) -> bool:
        """Deliver the booking link; failures are logged and left to the operator resend"""
        html = booking_pass_email(
            settings.business_name,
            booking_pass_service.redeem_url(raw_token),
            settings.booking_pass_ttl_hours,
        )
        try:
            await email_client.send(email, f"Your booking link - {settings.business_name}", html)
            return True
        except ExternalProviderFailure as e:
            logger.error(f"Booking link email to {email} failed: {e}")
            return False


payment_service = PaymentService()
