from sqlalchemy.ext.asyncio import AsyncSession
from typing import Any, Dict, Optional
import logging

from backoffice.crud import member_crud, booking_crud, booking_issue_crud
from backoffice.core.exceptions import InsufficientCredits
from backoffice.schemas.webhooks import CalendlyInvitee, WebhookOutcome
from backoffice.services.ledger_service import ledger_service
from backoffice.services.booking_pass_service import booking_pass_service
from backoffice.services.waiver_service import waiver_service
from backoffice.services.calendly_service import split_name
from backoffice.services.signnow_client import SignNowClient
from backoffice.services.email_service import EmailClient

logger = logging.getLogger(__name__)


class RedemptionService:
    """
    Turns Calendly bookings into ledger redemptions.

    A booking is recorded and its credit redeemed in one transaction keyed on the
    invitee URI, so duplicate deliveries cannot double-charge. Insufficient
    credits become an operator issue, never a webhook failure.
    """

    async def handle_invitee_created(
        self,
        db: AsyncSession,
        invitee: CalendlyInvitee,
        *,
        signnow: Optional[SignNowClient] = None,
        email_client: Optional[EmailClient] = None,
    ) -> Dict[str, Any]:
        missing = invitee.missing_for_created()
        if missing:
            logger.warning(f"Calendly invitee.created ignored, missing {missing}")
            return {"outcome": WebhookOutcome.IGNORED, "detail": f"missing_{missing}"}

        booking_pass = await booking_pass_service.resolve_for_booking(db, invitee.pass_token)
        reason = f"Calendly booking ({invitee.invitee_uri})"
        member_id = None
        try:
            # The pass identifies the purchaser when someone else attends on their credits.
            # It is bound in this transaction so it can pay for one booking only.
            if booking_pass is not None and not await booking_pass_service.consume_for_booking(
                db, booking_pass, invitee.invitee_uri, commit=False
            ):
                booking_pass = None
            purchaser_email = booking_pass.email if booking_pass else invitee.email

            member = await member_crud.get_by_email(db, purchaser_email)
            member_id = member.id if member else None

            booking_id = await booking_crud.insert_if_new(db, {
                "invitee_uri": invitee.invitee_uri,
                "event_uri": invitee.event_uri,
                "invitee_email": invitee.email,
                "invitee_name": invitee.name,
                "purchaser_email": purchaser_email,
                "member_id": member_id,
                "booking_pass_id": booking_pass.id if booking_pass else None,
                "event_start_at": invitee.start_time,
                "event_end_at": invitee.end_time,
            })
            if booking_id is None:
                await db.rollback()
                logger.info(f"Calendly booking {invitee.invitee_uri} already processed")
                return {"outcome": WebhookOutcome.ALREADY_PROCESSED}

            if member is None:
                raise InsufficientCredits(member_id=None, requested=1, balance=0)

            entry_id = await ledger_service.redeem(db, member.id, 1, reason, commit=False)
            await booking_crud.set_redeem_entry(db, booking_id, entry_id)
            await db.commit()
        except InsufficientCredits as e:
            await db.rollback()
            await self._record_issue(db, invitee, member_id, e)
            return {"outcome": WebhookOutcome.INSUFFICIENT_CREDITS, "detail": str(e)}
        except Exception:
            await db.rollback()
            raise

        logger.info(f"Redeemed 1 credit from {purchaser_email} for {invitee.invitee_uri} (attendee {invitee.email})")

        attendee_is_purchaser = invitee.email == purchaser_email
        if attendee_is_purchaser:
            first_name, last_name = split_name(invitee)
            await member_crud.fill_names(db, member.id, first_name, last_name)

        waiver = None
        if signnow is not None and email_client is not None:
            waiver = await self._dispatch_waiver(
                db, signnow, email_client, invitee, purchaser_email, member, attendee_is_purchaser
            )

        return {
            "outcome": WebhookOutcome.REDEEMED,
            "data": {
                "booking_id": str(booking_id),
                "ledger_entry_id": str(entry_id),
                "purchaser_email": purchaser_email,
                "invitee_email": invitee.email,
                "booking_pass_used": booking_pass is not None,
                "waiver": waiver,
            },
        }

    async def _record_issue(
        self,
        db: AsyncSession,
        invitee: CalendlyInvitee,
        member_id,
        error: InsufficientCredits,
    ) -> None:
        await booking_issue_crud.upsert(db, {
            "invitee_uri": invitee.invitee_uri,
            "event_uri": invitee.event_uri,
            "invitee_email": invitee.email,
            "invitee_name": invitee.name,
            "member_id": member_id,
            "event_start_at": invitee.start_time,
            "event_end_at": invitee.end_time,
            "error_code": InsufficientCredits.error_code,
            "error_message": str(error),
        })
        logger.warning(f"Booking issue recorded for {invitee.invitee_uri} ({invitee.email}): {error}")

    async def _dispatch_waiver(
        self,
        db: AsyncSession,
        signnow: SignNowClient,
        email_client: EmailClient,
        invitee: CalendlyInvitee,
        purchaser_email: str,
        member,
        attendee_is_purchaser: bool,
    ) -> Optional[Dict[str, Any]]:
        """Best effort: the redemption is already committed and stays that way"""
        try:
            if attendee_is_purchaser:
                return await waiver_service.send(
                    db, signnow, email_client,
                    recipient_email=purchaser_email,
                    member_id=member.id,
                    recipient_name=member.full_name or invitee.name,
                )
            # Guest booked on someone else's credits: one document per attendee, sent to the purchaser
            return await waiver_service.send(
                db, signnow, email_client,
                recipient_email=purchaser_email,
                member_id=member.id,
                recipient_name=member.full_name,
                attendee_name=invitee.name or invitee.email,
                invitee_uri=invitee.invitee_uri,
            )
        except Exception as e:
            await db.rollback()
            logger.error(f"Waiver dispatch failed for {invitee.invitee_uri} ({purchaser_email}): {e}")
            return {"action": "failed", "error": str(e)[:500]}

    async def handle_invitee_canceled(self, db: AsyncSession, invitee: CalendlyInvitee) -> Dict[str, Any]:
        if not invitee.invitee_uri:
            logger.warning("Calendly invitee.canceled ignored, missing invitee uri")
            return {"outcome": WebhookOutcome.IGNORED, "detail": "missing_invitee_uri"}

        try:
            booking = await booking_crud.cancel(db, invitee.invitee_uri)
            if booking is None or booking.member_id is None:
                await db.commit()
                logger.info(f"Calendly cancellation for {invitee.invitee_uri} matched no active booking")
                return {"outcome": WebhookOutcome.NOT_FOUND}

            entry = await ledger_service.refund(
                db, booking.member_id, 1, f"Calendly cancellation ({invitee.invitee_uri})", commit=False
            )
            await booking_crud.set_refund_entry(db, booking.id, entry.id)
            member_id, refund_id = booking.member_id, entry.id
            await db.commit()
        except Exception:
            await db.rollback()
            raise

        logger.info(f"Refunded 1 credit to member {member_id} for canceled {invitee.invitee_uri}")
        return {
            "outcome": WebhookOutcome.CANCELED,
            "data": {"member_id": str(member_id), "ledger_entry_id": str(refund_id)},
        }


redemption_service = RedemptionService()
