from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy import select, func
from typing import Any, Dict, List, Optional, Tuple
from uuid import UUID

from backoffice.crud.base import CRUDBase, dialect_insert
from backoffice.models.booking_issue import BookingIssue, BookingIssueHistory, IssueResolution
from backoffice.utils.utils import utcnow
from pydantic import BaseModel

# Resolutions that close an issue and stamp resolved_at
CLOSED_RESOLUTIONS = {
    IssueResolution.CONTACTED_CUSTOMER,
    IssueResolution.SENT_PAY_LINK,
    IssueResolution.CANCELED,
    IssueResolution.RESOLVED_OTHER,
}


class BookingIssueCreate(BaseModel):
    invitee_uri: str
    error_code: str


class CRUDBookingIssue(CRUDBase[BookingIssue, BookingIssueCreate, BaseModel]):
    async def get_by_invitee_uri(self, db: AsyncSession, invitee_uri: str) -> Optional[BookingIssue]:
        result = await db.execute(select(self.model).where(self.model.invitee_uri == invitee_uri))
        return result.scalar_one_or_none()

    async def upsert(self, db: AsyncSession, values: Dict[str, Any]) -> None:
        """
        Record a failed booking keyed on invitee_uri. A replay refreshes the
        error details but never touches an operator's resolution.
        """
        now = utcnow()
        values = {"resolution_status": IssueResolution.OPEN, "created_at": now, "updated_at": now, **values}
        insert_stmt = dialect_insert(db, self.model).values(**values)
        refreshed = {
            key: insert_stmt.excluded[key]
            for key in ("event_uri", "invitee_email", "invitee_name", "member_id",
                        "event_start_at", "event_end_at", "error_code", "error_message", "updated_at")
            if key in values
        }
        stmt = insert_stmt.on_conflict_do_update(index_elements=["invitee_uri"], set_=refreshed)
        await db.execute(stmt)
        await db.commit()

    async def list_issues(
        self,
        db: AsyncSession,
        *,
        status: Optional[IssueResolution] = None,
        member_id: Optional[UUID] = None,
        skip: int = 0,
        limit: int = 100,
    ) -> Tuple[List[BookingIssue], int]:
        filters = {}
        if status is not None:
            filters["resolution_status"] = status
        if member_id is not None:
            filters["member_id"] = member_id
        return await self.get_multi(db, skip=skip, limit=limit, filters=filters)

    async def open_counts(self, db: AsyncSession) -> Dict[UUID, int]:
        result = await db.execute(
            select(self.model.member_id, func.count())
            .where(self.model.resolution_status == IssueResolution.OPEN)
            .group_by(self.model.member_id)
        )
        return {row[0]: int(row[1]) for row in result.all() if row[0] is not None}

    async def set_resolution(
        self,
        db: AsyncSession,
        *,
        issue: BookingIssue,
        status: IssueResolution,
        note: Optional[str],
        changed_by: Optional[UUID],
    ) -> BookingIssue:
        """Update the resolution and append the audit row in the same transaction"""
        history = BookingIssueHistory(
            issue_id=issue.id,
            changed_at=utcnow(),
            changed_by=changed_by,
            old_status=issue.resolution_status,
            new_status=status,
            old_note=issue.resolution_note,
            new_note=note,
        )
        db.add(history)

        issue.resolution_status = status
        issue.resolution_note = note
        issue.updated_at = utcnow()
        if status in CLOSED_RESOLUTIONS:
            issue.resolved_at = utcnow()
            issue.resolved_by = changed_by
        else:
            issue.resolved_at = None
            issue.resolved_by = None

        db.add(issue)
        await db.commit()
        await db.refresh(issue)
        return issue

    async def history(self, db: AsyncSession, issue_id: UUID) -> List[BookingIssueHistory]:
        result = await db.execute(
            select(BookingIssueHistory)
            .where(BookingIssueHistory.issue_id == issue_id)
            .order_by(BookingIssueHistory.changed_at.desc())
        )
        return list(result.scalars().all())


booking_issue_crud = CRUDBookingIssue(BookingIssue)
