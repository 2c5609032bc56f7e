from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy import select, insert, literal, case, func, and_
from typing import Dict, List, Optional
from uuid import UUID
import uuid

from backoffice.crud.base import CRUDBase
from backoffice.models.ledger_entry import LedgerEntry, LedgerEntryType
from backoffice.models.member import Member
from backoffice.utils.utils import utcnow
from pydantic import BaseModel


def signed_quantity_expr():
    return case(
        (LedgerEntry.entry_type == LedgerEntryType.REDEEM, -LedgerEntry.quantity),
        else_=LedgerEntry.quantity,
    )


class LedgerEntryCreate(BaseModel):
    member_id: UUID
    entry_type: LedgerEntryType
    quantity: int
    reason: Optional[str] = None
    created_by: Optional[UUID] = None


class CRUDLedger(CRUDBase[LedgerEntry, LedgerEntryCreate, BaseModel]):
    async def lock_member(self, db: AsyncSession, member_id: UUID) -> bool:
        """Take the member row lock that serializes all ledger mutations for that member"""
        result = await db.execute(
            select(Member.id).where(Member.id == member_id).with_for_update()
        )
        return result.scalar_one_or_none() is not None

    def balance_subquery(self, member_id: UUID):
        return (
            select(func.coalesce(func.sum(signed_quantity_expr()), 0))
            .where(LedgerEntry.member_id == member_id)
            .correlate(None)
            .scalar_subquery()
        )

    async def balance(self, db: AsyncSession, member_id: UUID) -> int:
        result = await db.execute(select(self.balance_subquery(member_id)))
        return int(result.scalar() or 0)

    async def balances(self, db: AsyncSession) -> Dict[UUID, int]:
        result = await db.execute(
            select(LedgerEntry.member_id, func.sum(signed_quantity_expr()))
            .group_by(LedgerEntry.member_id)
        )
        return {row[0]: int(row[1] or 0) for row in result.all()}

    async def purchase_counts(self, db: AsyncSession) -> Dict[UUID, int]:
        """Number of Stripe-sourced grants per member"""
        result = await db.execute(
            select(LedgerEntry.member_id, func.count())
            .where(and_(
                LedgerEntry.entry_type == LedgerEntryType.GRANT,
                LedgerEntry.reason.like("Stripe%"),
            ))
            .group_by(LedgerEntry.member_id)
        )
        return {row[0]: int(row[1]) for row in result.all()}

    async def last_activity(self, db: AsyncSession) -> Dict[UUID, object]:
        result = await db.execute(
            select(LedgerEntry.member_id, func.max(LedgerEntry.created_at))
            .group_by(LedgerEntry.member_id)
        )
        return {row[0]: row[1] for row in result.all()}

    async def history(self, db: AsyncSession, member_id: UUID, *, limit: int = 200) -> List[LedgerEntry]:
        result = await db.execute(
            select(self.model)
            .where(self.model.member_id == member_id)
            .order_by(self.model.created_at.desc())
            .limit(limit)
        )
        return list(result.scalars().all())

    async def append(
        self,
        db: AsyncSession,
        *,
        member_id: UUID,
        entry_type: LedgerEntryType,
        quantity: int,
        reason: Optional[str],
        created_by: Optional[UUID] = None,
    ) -> LedgerEntry:
        """Unconditional insert (grants and refunds)"""
        entry = LedgerEntry(
            id=uuid.uuid4(),
            member_id=member_id,
            entry_type=entry_type,
            quantity=quantity,
            reason=reason,
            created_by=created_by,
            created_at=utcnow(),
        )
        db.add(entry)
        await db.flush()
        return entry

    async def append_if_covered(
        self,
        db: AsyncSession,
        *,
        member_id: UUID,
        quantity: int,
        reason: Optional[str],
        created_by: Optional[UUID] = None,
    ) -> Optional[UUID]:
        """
        Insert a redeem row only when the current balance covers it, as one
        INSERT ... SELECT ... WHERE balance >= quantity. Returns the new entry id,
        or None when nothing was inserted.
        """
        entry_id = uuid.uuid4()
        columns = LedgerEntry.__table__.c
        source = select(
            literal(entry_id, columns.id.type),
            literal(member_id, columns.member_id.type),
            literal(LedgerEntryType.REDEEM, columns.entry_type.type),
            literal(quantity, columns.quantity.type),
            literal(reason, columns.reason.type),
            literal(created_by, columns.created_by.type),
            literal(utcnow(), columns.created_at.type),
        ).where(self.balance_subquery(member_id) >= quantity)

        stmt = insert(LedgerEntry.__table__).from_select(
            ["id", "member_id", "entry_type", "quantity", "reason", "created_by", "created_at"],
            source,
        ).returning(columns.id)
        result = await db.execute(stmt)
        return result.scalar_one_or_none()


ledger_crud = CRUDLedger(LedgerEntry)
