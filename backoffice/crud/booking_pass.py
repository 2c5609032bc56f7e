from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy import select, update, and_
from typing import List, Optional
from uuid import UUID
from datetime import datetime

from backoffice.crud.base import CRUDBase
from backoffice.models.booking_pass import BookingPass
from backoffice.utils.utils import normalize_email
from pydantic import BaseModel


class BookingPassCreate(BaseModel):
    token_hash: str
    email: str
    member_id: Optional[UUID] = None
    stripe_session_id: Optional[str] = None
    expires_at: datetime


class CRUDBookingPass(CRUDBase[BookingPass, BookingPassCreate, BaseModel]):
    async def get_by_hash(self, db: AsyncSession, token_hash: str) -> Optional[BookingPass]:
        result = await db.execute(select(self.model).where(self.model.token_hash == token_hash))
        return result.scalar_one_or_none()

    async def get_by_stripe_session(self, db: AsyncSession, stripe_session_id: str) -> Optional[BookingPass]:
        result = await db.execute(
            select(self.model).where(self.model.stripe_session_id == stripe_session_id)
        )
        return result.scalar_one_or_none()

    async def list_for_email(self, db: AsyncSession, email: str, *, limit: int = 50) -> List[BookingPass]:
        result = await db.execute(
            select(self.model)
            .where(self.model.email == normalize_email(email))
            .order_by(self.model.created_at.desc())
            .limit(limit)
        )
        return list(result.scalars().all())

    async def latest_by_email(self, db: AsyncSession) -> dict:
        """Most recent pass per email (overview)"""
        result = await db.execute(select(self.model).order_by(self.model.created_at.desc()))
        latest = {}
        for booking_pass in result.scalars().all():
            latest.setdefault(booking_pass.email, booking_pass)
        return latest

    async def revoke_live(self, db: AsyncSession, email: str, now: datetime) -> int:
        """
        Revoke every pass for the email that could still pay for a booking,
        clicked or not. Passes already bound to a booking keep their history.
        """
        email = normalize_email(email)
        result = await db.execute(
            update(self.model)
            .where(and_(
                self.model.email == email,
                self.model.revoked_at.is_(None),
                self.model.redeemed_invitee_uri.is_(None),
            ))
            .values(revoked_at=now)
        )
        await db.execute(
            update(self.model)
            .where(and_(self.model.email == email, self.model.used_at.is_(None)))
            .values(used_at=now)
        )
        return result.rowcount

    async def mark_used(self, db: AsyncSession, pass_id: UUID, now: datetime) -> bool:
        """Conditional consumption; False when another request got there first"""
        result = await db.execute(
            update(self.model)
            .where(and_(self.model.id == pass_id, self.model.used_at.is_(None)))
            .values(used_at=now)
        )
        return result.rowcount == 1

    async def bind_to_booking(self, db: AsyncSession, pass_id: UUID, invitee_uri: str, now: datetime) -> bool:
        result = await db.execute(
            update(self.model)
            .where(and_(
                self.model.id == pass_id,
                self.model.redeemed_invitee_uri.is_(None),
                self.model.revoked_at.is_(None),
            ))
            .values(redeemed_invitee_uri=invitee_uri)
        )
        if result.rowcount != 1:
            return False
        await db.execute(
            update(self.model)
            .where(and_(self.model.id == pass_id, self.model.used_at.is_(None)))
            .values(used_at=now)
        )
        return True


booking_pass_crud = CRUDBookingPass(BookingPass)
