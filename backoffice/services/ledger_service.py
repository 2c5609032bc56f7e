from sqlalchemy.ext.asyncio import AsyncSession
from typing import List, Optional
from uuid import UUID
import logging

from backoffice.crud import ledger_crud
from backoffice.models.ledger_entry import LedgerEntry, LedgerEntryType
from backoffice.core.exceptions import InvalidInput, InsufficientCredits

logger = logging.getLogger(__name__)


class LedgerService:
    """
    Append-only credit ledger. The balance is always derived from the entries;
    every mutation holds the member row lock for the rest of the transaction.

    Methods take ``commit`` so callers can compose a ledger write with other
    writes (event claim, booking insert) in a single transaction.
    """

    def _validate(self, quantity: int) -> None:
        if not isinstance(quantity, int) or isinstance(quantity, bool) or quantity <= 0:
            raise InvalidInput("quantity must be a positive integer")

    async def _lock(self, db: AsyncSession, member_id: UUID) -> None:
        if not await ledger_crud.lock_member(db, member_id):
            raise InvalidInput(f"Unknown member {member_id}")

    async def grant(
        self,
        db: AsyncSession,
        member_id: UUID,
        quantity: int,
        reason: Optional[str],
        *,
        created_by: Optional[UUID] = None,
        commit: bool = True,
    ) -> LedgerEntry:
        self._validate(quantity)
        await self._lock(db, member_id)
        entry = await ledger_crud.append(
            db,
            member_id=member_id,
            entry_type=LedgerEntryType.GRANT,
            quantity=quantity,
            reason=reason,
            created_by=created_by,
        )
        if commit:
            await db.commit()
        logger.info(f"Granted {quantity} credit(s) to member {member_id}: {reason}")
        return entry

    async def refund(
        self,
        db: AsyncSession,
        member_id: UUID,
        quantity: int,
        reason: Optional[str],
        *,
        created_by: Optional[UUID] = None,
        commit: bool = True,
    ) -> LedgerEntry:
        self._validate(quantity)
        await self._lock(db, member_id)
        entry = await ledger_crud.append(
            db,
            member_id=member_id,
            entry_type=LedgerEntryType.REFUND,
            quantity=quantity,
            reason=reason,
            created_by=created_by,
        )
        if commit:
            await db.commit()
        logger.info(f"Refunded {quantity} credit(s) to member {member_id}: {reason}")
        return entry

    async def redeem(
        self,
        db: AsyncSession,
        member_id: UUID,
        quantity: int,
        reason: Optional[str],
        *,
        created_by: Optional[UUID] = None,
        commit: bool = True,
    ) -> UUID:
        """
        Spend credits. The check and the insert are one statement under the
        member lock, so concurrent redemptions can never take the balance below
        zero. Raises InsufficientCredits and writes nothing when not covered.
        """
        self._validate(quantity)
        await self._lock(db, member_id)
        entry_id = await ledger_crud.append_if_covered(
            db,
            member_id=member_id,
            quantity=quantity,
            reason=reason,
            created_by=created_by,
        )
        if entry_id is None:
            balance = await ledger_crud.balance(db, member_id)
            logger.info(f"Redeem of {quantity} refused for member {member_id}: balance {balance}")
            raise InsufficientCredits(member_id=member_id, requested=quantity, balance=balance)
        if commit:
            await db.commit()
        logger.info(f"Redeemed {quantity} credit(s) for member {member_id}: {reason}")
        return entry_id

    async def balance(self, db: AsyncSession, member_id: UUID) -> int:
        return await ledger_crud.balance(db, member_id)

    async def history(self, db: AsyncSession, member_id: UUID) -> List[LedgerEntry]:
        return await ledger_crud.history(db, member_id)


ledger_service = LedgerService()
