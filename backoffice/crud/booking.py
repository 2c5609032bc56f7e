from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy import select, update, and_
from typing import Any, Dict, List, Optional
from uuid import UUID

from backoffice.crud.base import CRUDBase, dialect_insert
from backoffice.models.booking import Booking, BookingStatus
from backoffice.utils.utils import utcnow
from pydantic import BaseModel


class BookingCreate(BaseModel):
    invitee_uri: str
    event_uri: Optional[str] = None
    invitee_email: str
    purchaser_email: str


class CRUDBooking(CRUDBase[Booking, BookingCreate, BaseModel]):
    async def get_by_invitee_uri(self, db: AsyncSession, invitee_uri: str) -> Optional[Booking]:
        result = await db.execute(select(self.model).where(self.model.invitee_uri == invitee_uri))
        return result.scalar_one_or_none()

    async def insert_if_new(self, db: AsyncSession, values: Dict[str, Any]) -> Optional[UUID]:
        """Insert keyed on invitee_uri; None when the invitee was already recorded"""
        now = utcnow()
        values = {"status": BookingStatus.BOOKED, "created_at": now, "updated_at": now, **values}
        stmt = (
            dialect_insert(db, self.model)
            .values(**values)
            .on_conflict_do_nothing(index_elements=["invitee_uri"])
            .returning(self.model.id)
        )
        result = await db.execute(stmt)
        return result.scalar_one_or_none()

    async def set_redeem_entry(self, db: AsyncSession, booking_id: UUID, entry_id: UUID) -> None:
        await db.execute(
            update(self.model).where(self.model.id == booking_id).values(redeem_entry_id=entry_id)
        )

    async def cancel(self, db: AsyncSession, invitee_uri: str) -> Optional[Booking]:
        """
        Conditional booked -> canceled transition. Returns the booking when this
        call performed the transition, None otherwise (unknown or already canceled).
        """
        now = utcnow()
        result = await db.execute(
            update(self.model)
            .where(and_(self.model.invitee_uri == invitee_uri, self.model.status == BookingStatus.BOOKED))
            .values(status=BookingStatus.CANCELED, canceled_at=now, updated_at=now)
        )
        if result.rowcount != 1:
            return None
        return await self.get_by_invitee_uri(db, invitee_uri)

    async def set_refund_entry(self, db: AsyncSession, booking_id: UUID, entry_id: UUID) -> None:
        await db.execute(
            update(self.model).where(self.model.id == booking_id).values(refund_entry_id=entry_id)
        )

    async def list_for_member(self, db: AsyncSession, member_id: UUID, *, limit: int = 100) -> List[Booking]:
        result = await db.execute(
            select(self.model)
            .where(self.model.member_id == member_id)
            .order_by(self.model.created_at.desc())
            .limit(limit)
        )
        return list(result.scalars().all())


booking_crud = CRUDBooking(Booking)
