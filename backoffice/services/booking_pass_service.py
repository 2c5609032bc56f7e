from sqlalchemy.ext.asyncio import AsyncSession
from typing import Optional
from urllib.parse import urlencode
from uuid import UUID
from datetime import timedelta
import hashlib
import secrets
import base64
import logging

from backoffice.core.config import settings
from backoffice.crud import booking_pass_crud
from backoffice.models.booking_pass import BookingPass
from backoffice.core.exceptions import (
    InvalidInput,
    BookingPassNotFound,
    BookingPassAlreadyUsed,
    BookingPassExpired,
)
from backoffice.utils.utils import normalize_email, utcnow

logger = logging.getLogger(__name__)


class BookingPassService:
    """
    Single-use booking links. The raw token is only ever returned to the caller
    that minted it; storage holds a salted SHA-256 digest.

    A pass has two consumption points: the link click (used_at) and the Calendly
    booking it is spent on (redeemed_invitee_uri). The click only opens the
    scheduler, so a clicked pass can still attribute the booking that follows.
    """

    def generate_token(self) -> str:
        return base64.urlsafe_b64encode(secrets.token_bytes(32)).rstrip(b"=").decode("ascii")

    def hash_token(self, raw_token: str) -> str:
        return hashlib.sha256(f"{settings.booking_pass_salt}:{raw_token}".encode("utf-8")).hexdigest()

    def is_expired(self, booking_pass: BookingPass) -> bool:
        return booking_pass.expires_at <= utcnow()

    async def mint(
        self,
        db: AsyncSession,
        email: str,
        *,
        stripe_session_id: Optional[str] = None,
        member_id: Optional[UUID] = None,
        ttl_hours: Optional[int] = None,
        commit: bool = True,
    ) -> Optional[str]:
        """
        Issue a new pass for the email, revoking any pass it already has that
        is not yet bound to a booking (including clicked ones).
        Returns the raw token, or None when a pass was already minted for this
        Stripe session.
        """
        email = normalize_email(email)
        if not email:
            raise InvalidInput("email is required")

        if stripe_session_id and await booking_pass_crud.get_by_stripe_session(db, stripe_session_id):
            logger.info(f"Booking pass already minted for session {stripe_session_id}")
            return None

        now = utcnow()
        revoked = await booking_pass_crud.revoke_live(db, email, now)
        if revoked:
            logger.info(f"Revoked {revoked} live booking pass(es) for {email}")

        raw_token = self.generate_token()
        hours = ttl_hours if ttl_hours is not None else settings.booking_pass_ttl_hours
        await booking_pass_crud.create(
            db,
            obj_in={
                "token_hash": self.hash_token(raw_token),
                "email": email,
                "member_id": member_id,
                "stripe_session_id": stripe_session_id,
                "expires_at": now + timedelta(hours=hours),
                "created_at": now,
            },
            commit=commit,
        )
        return raw_token

    async def redeem(self, db: AsyncSession, raw_token: str) -> BookingPass:
        """Link click: consume the pass exactly once"""
        raw_token = (raw_token or "").strip()
        if not raw_token:
            raise InvalidInput("Missing token")

        booking_pass = await booking_pass_crud.get_by_hash(db, self.hash_token(raw_token))
        if booking_pass is None:
            raise BookingPassNotFound("Invalid booking link")
        if booking_pass.used_at is not None:
            raise BookingPassAlreadyUsed("This booking link has already been used.")
        if self.is_expired(booking_pass):
            raise BookingPassExpired("This booking link has expired.")

        if not await booking_pass_crud.mark_used(db, booking_pass.id, utcnow()):
            await db.rollback()
            raise BookingPassAlreadyUsed("This booking link has already been used.")
        await db.commit()
        await db.refresh(booking_pass)
        return booking_pass

    def scheduler_url(self, booking_pass: BookingPass, raw_token: str) -> str:
        """Scheduler link with the email prefilled and the pass carried in utm_content"""
        base = settings.calendly_booking_url
        separator = "&" if "?" in base else "?"
        return f"{base}{separator}{urlencode({'email': booking_pass.email, 'utm_content': raw_token})}"

    def redeem_url(self, raw_token: str) -> str:
        return f"{settings.public_api_url.rstrip('/')}/api/booking-pass/redeem?{urlencode({'token': raw_token})}"

    async def resolve_for_booking(self, db: AsyncSession, raw_token: Optional[str]) -> Optional[BookingPass]:
        """A pass that may still attribute a Calendly booking, or None"""
        raw_token = (raw_token or "").strip()
        if not raw_token:
            return None
        booking_pass = await booking_pass_crud.get_by_hash(db, self.hash_token(raw_token))
        if booking_pass is None:
            return None
        if booking_pass.revoked_at is not None or booking_pass.redeemed_invitee_uri is not None:
            return None
        if self.is_expired(booking_pass):
            return None
        return booking_pass

    async def consume_for_booking(
        self,
        db: AsyncSession,
        booking_pass: BookingPass,
        invitee_uri: str,
        *,
        commit: bool = True,
    ) -> bool:
        """
        Bind the pass to one booking. False when another booking already holds
        it or it was revoked in the meantime; with commit=False the bind is
        undone if the caller's transaction rolls back.
        """
        bound = await booking_pass_crud.bind_to_booking(db, booking_pass.id, invitee_uri, utcnow())
        if commit:
            await db.commit()
        if not bound:
            logger.warning(f"Booking pass {booking_pass.id} no longer available for {invitee_uri}")
        return bound


booking_pass_service = BookingPassService()
