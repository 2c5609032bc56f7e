from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy import select, update, and_, or_
from typing import Optional
from uuid import UUID

from backoffice.crud.base import CRUDBase, dialect_insert
from backoffice.models.member import Member
from backoffice.core.exceptions import InvalidInput
from backoffice.utils.utils import normalize_email, utcnow
from pydantic import BaseModel


class MemberCreate(BaseModel):
    email: str
    first_name: Optional[str] = None
    last_name: Optional[str] = None
    phone: Optional[str] = None


class CRUDMember(CRUDBase[Member, MemberCreate, BaseModel]):
    async def get_by_email(self, db: AsyncSession, email: str) -> Optional[Member]:
        result = await db.execute(
            select(self.model).where(self.model.email == normalize_email(email))
        )
        return result.scalar_one_or_none()

    async def get_or_create_by_email(self, db: AsyncSession, email: str, *, commit: bool = True) -> Member:
        """
        Race-free get-or-create keyed on the normalized email.
        Concurrent callers converge on the same row through the unique index.
        """
        email = normalize_email(email)
        if not email:
            raise InvalidInput("email is required")

        now = utcnow()
        stmt = dialect_insert(db, self.model).values(
            email=email, is_admin=False, created_at=now, updated_at=now
        ).on_conflict_do_nothing(index_elements=["email"])
        await db.execute(stmt)
        if commit:
            await db.commit()

        member = await self.get_by_email(db, email)
        if member is None:
            raise InvalidInput(f"Member for {email} could not be created")
        return member

    async def link_user_id(self, db: AsyncSession, member: Member, user_id: str) -> Member:
        if member.user_id == user_id:
            return member
        await db.execute(
            update(self.model)
            .where(and_(self.model.id == member.id, self.model.user_id.is_(None)))
            .values(user_id=user_id, updated_at=utcnow())
        )
        await db.commit()
        await db.refresh(member)
        return member

    async def fill_names(
        self,
        db: AsyncSession,
        member_id: UUID,
        first_name: Optional[str],
        last_name: Optional[str],
        *,
        commit: bool = True,
    ) -> None:
        """Set names only where they are still empty; never overwrite operator edits"""
        first_name = (first_name or "").strip() or None
        last_name = (last_name or "").strip() or None
        if first_name:
            await db.execute(
                update(self.model)
                .where(and_(
                    self.model.id == member_id,
                    or_(self.model.first_name.is_(None), self.model.first_name == ""),
                ))
                .values(first_name=first_name, updated_at=utcnow())
            )
        if last_name:
            await db.execute(
                update(self.model)
                .where(and_(
                    self.model.id == member_id,
                    or_(self.model.last_name.is_(None), self.model.last_name == ""),
                ))
                .values(last_name=last_name, updated_at=utcnow())
            )
        await self._finish(db, commit)

    async def fill_phone(self, db: AsyncSession, member_id: UUID, phone: Optional[str], *, commit: bool = True) -> None:
        phone = (phone or "").strip() or None
        if not phone:
            return
        await db.execute(
            update(self.model)
            .where(and_(
                self.model.id == member_id,
                or_(self.model.phone.is_(None), self.model.phone == ""),
            ))
            .values(phone=phone, updated_at=utcnow())
        )
        await self._finish(db, commit)


member_crud = CRUDMember(Member)
