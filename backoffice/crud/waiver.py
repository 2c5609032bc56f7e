from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy import select, update, and_, func
from typing import Dict, List, Optional
from uuid import UUID
from datetime import datetime

from backoffice.crud.base import CRUDBase, dialect_insert
from backoffice.models.waiver import Waiver, WaiverStatus, WaiverSyncRun, WaiverSyncStatus
from backoffice.utils.utils import normalize_email, utcnow
from pydantic import BaseModel


class WaiverCreate(BaseModel):
    recipient_email: str
    waiver_year: int
    member_id: Optional[UUID] = None


class CRUDWaiver(CRUDBase[Waiver, WaiverCreate, BaseModel]):
    async def get_annual(self, db: AsyncSession, recipient_email: str, waiver_year: int) -> Optional[Waiver]:
        result = await db.execute(
            select(self.model).where(and_(
                self.model.recipient_email == normalize_email(recipient_email),
                self.model.waiver_year == waiver_year,
                self.model.calendly_invitee_uri.is_(None),
            )).execution_options(populate_existing=True)
        )
        return result.scalar_one_or_none()

    async def get_by_invitee_uri(self, db: AsyncSession, invitee_uri: str) -> Optional[Waiver]:
        result = await db.execute(
            select(self.model)
            .where(self.model.calendly_invitee_uri == invitee_uri)
            .execution_options(populate_existing=True)
        )
        return result.scalar_one_or_none()

    async def find(
        self,
        db: AsyncSession,
        *,
        recipient_email: str,
        waiver_year: int,
        invitee_uri: Optional[str] = None,
    ) -> Optional[Waiver]:
        if invitee_uri:
            return await self.get_by_invitee_uri(db, invitee_uri)
        return await self.get_annual(db, recipient_email, waiver_year)

    async def upsert_sent(
        self,
        db: AsyncSession,
        *,
        recipient_email: str,
        waiver_year: int,
        external_document_id: str,
        member_id: Optional[UUID] = None,
        recipient_name: Optional[str] = None,
        attendee_name: Optional[str] = None,
        invitee_uri: Optional[str] = None,
        external_provider: str = "signnow",
    ) -> Optional[Waiver]:
        """
        Record a sent waiver on its natural key. An existing external document id
        is never replaced and a signed row is never moved back to sent.
        """
        now = utcnow()
        insert_stmt = dialect_insert(db, self.model).values(
            member_id=member_id,
            recipient_email=normalize_email(recipient_email),
            recipient_name=recipient_name,
            attendee_name=attendee_name,
            waiver_year=waiver_year,
            calendly_invitee_uri=invitee_uri,
            status=WaiverStatus.SENT,
            external_provider=external_provider,
            external_document_id=external_document_id,
            sent_at=now,
            created_at=now,
            updated_at=now,
        )
        refreshed = {
            "external_document_id": func.coalesce(self.model.external_document_id, insert_stmt.excluded.external_document_id),
            "member_id": func.coalesce(self.model.member_id, insert_stmt.excluded.member_id),
            "recipient_name": func.coalesce(self.model.recipient_name, insert_stmt.excluded.recipient_name),
            "sent_at": func.coalesce(self.model.sent_at, insert_stmt.excluded.sent_at),
            "updated_at": insert_stmt.excluded.updated_at,
        }
        if invitee_uri:
            stmt = insert_stmt.on_conflict_do_update(
                index_elements=["calendly_invitee_uri"],
                set_=refreshed,
                where=self.model.status != WaiverStatus.SIGNED,
            )
        else:
            stmt = insert_stmt.on_conflict_do_update(
                index_elements=["recipient_email", "waiver_year"],
                index_where=self.model.calendly_invitee_uri.is_(None),
                set_=refreshed,
                where=self.model.status != WaiverStatus.SIGNED,
            )
        await db.execute(stmt)
        await db.commit()
        return await self.find(db, recipient_email=recipient_email, waiver_year=waiver_year, invitee_uri=invitee_uri)

    async def mark_signed(self, db: AsyncSession, waiver_id: UUID, signed_at: datetime) -> bool:
        """sent -> signed only; signed is terminal"""
        result = await db.execute(
            update(self.model)
            .where(and_(self.model.id == waiver_id, self.model.status == WaiverStatus.SENT))
            .values(status=WaiverStatus.SIGNED, signed_at=signed_at, updated_at=utcnow())
        )
        await db.commit()
        return result.rowcount == 1

    async def insert_signed(
        self,
        db: AsyncSession,
        *,
        recipient_email: str,
        waiver_year: int,
        member_id: Optional[UUID],
        signed_at: datetime,
        external_document_id: Optional[str] = None,
    ) -> None:
        """Operator records a waiver signed outside the provider flow"""
        now = utcnow()
        stmt = dialect_insert(db, self.model).values(
            member_id=member_id,
            recipient_email=normalize_email(recipient_email),
            waiver_year=waiver_year,
            status=WaiverStatus.SIGNED,
            external_provider="signnow",
            external_document_id=external_document_id,
            signed_at=signed_at,
            created_at=now,
            updated_at=now,
        ).on_conflict_do_nothing(
            index_elements=["recipient_email", "waiver_year"],
            index_where=self.model.calendly_invitee_uri.is_(None),
        )
        await db.execute(stmt)
        await db.commit()

    async def list_pending(
        self,
        db: AsyncSession,
        *,
        waiver_year: Optional[int] = None,
        member_id: Optional[UUID] = None,
        limit: int = 500,
    ) -> List[Waiver]:
        """Sent waivers with a provider document, oldest first"""
        conditions = [self.model.status == WaiverStatus.SENT, self.model.external_document_id.isnot(None)]
        if waiver_year is not None:
            conditions.append(self.model.waiver_year == waiver_year)
        if member_id is not None:
            conditions.append(self.model.member_id == member_id)
        result = await db.execute(
            select(self.model).where(and_(*conditions)).order_by(self.model.sent_at.asc()).limit(limit)
        )
        return list(result.scalars().all())

    async def list_for_member(self, db: AsyncSession, member_id: UUID, *, email: Optional[str] = None) -> List[Waiver]:
        conditions = self.model.member_id == member_id
        if email:
            conditions = conditions | (self.model.recipient_email == normalize_email(email))
        result = await db.execute(
            select(self.model).where(conditions).order_by(self.model.waiver_year.desc(), self.model.created_at.desc())
        )
        return list(result.scalars().all())

    async def annual_status_by_email(self, db: AsyncSession, waiver_year: int) -> Dict[str, WaiverStatus]:
        result = await db.execute(
            select(self.model.recipient_email, self.model.status).where(and_(
                self.model.waiver_year == waiver_year,
                self.model.calendly_invitee_uri.is_(None),
            ))
        )
        return {row[0]: row[1] for row in result.all()}


class CRUDWaiverSyncRun(CRUDBase[WaiverSyncRun, BaseModel, BaseModel]):
    async def start(self, db: AsyncSession, waiver_year: Optional[int]) -> WaiverSyncRun:
        return await self.create(
            db,
            obj_in={"waiver_year": waiver_year, "started_at": utcnow(), "status": WaiverSyncStatus.RUNNING},
        )

    async def finish(
        self,
        db: AsyncSession,
        run: WaiverSyncRun,
        *,
        status: WaiverSyncStatus,
        scanned: int,
        updated: int,
        already_signed: int,
        errors: list,
    ) -> WaiverSyncRun:
        return await self.update(
            db,
            db_obj=run,
            obj_in={
                "status": status,
                "finished_at": utcnow(),
                "scanned": scanned,
                "updated": updated,
                "already_signed": already_signed,
                "errors": errors or None,
            },
        )


waiver_crud = CRUDWaiver(Waiver)
waiver_sync_run_crud = CRUDWaiverSyncRun(WaiverSyncRun)
