from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy import select
from typing import Any, Dict, List, Optional
from uuid import UUID
from datetime import datetime, timedelta
import logging

from backoffice.crud import (
    member_crud,
    ledger_crud,
    booking_pass_crud,
    booking_crud,
    booking_issue_crud,
    waiver_crud,
)
from backoffice.models.member import Member
from backoffice.models.booking_pass import BookingPass
from backoffice.models.waiver import WaiverStatus
from backoffice.core.exceptions import InvalidInput
from backoffice.services.booking_pass_service import booking_pass_service
from backoffice.services.ledger_service import ledger_service
from backoffice.services.payment_service import payment_service
from backoffice.services.email_service import EmailClient
from backoffice.services.waiver_service import current_waiver_year
from backoffice.utils.utils import normalize_email, utcnow

logger = logging.getLogger(__name__)

INACTIVITY_WINDOW = timedelta(days=30)

TRIAGE_FLAGS = (
    "credits_no_active_pass",
    "pass_expired",
    "waiver_missing",
    "waiver_sent",
    "no_recent_activity_30d",
    "negative_balance",
)


def pass_state(booking_pass: Optional[BookingPass], now: datetime) -> str:
    if booking_pass is None:
        return "none"
    if booking_pass.used_at is not None:
        return "consumed"
    if booking_pass.expires_at < now:
        return "expired"
    return "active"


def hours_until(moment: Optional[datetime], now: datetime) -> Optional[float]:
    if moment is None:
        return None
    return round((moment - now).total_seconds() / 3600, 2)


def triage_flags(
    *,
    balance: int,
    state: str,
    waiver_status: str,
    last_activity_at: Optional[datetime],
    now: datetime,
) -> Dict[str, bool]:
    return {
        "negative_balance": balance < 0,
        "credits_no_active_pass": balance > 0 and state != "active",
        "pass_expired": state == "expired",
        "waiver_missing": waiver_status == "missing",
        "waiver_sent": waiver_status == "sent",
        "no_recent_activity_30d": last_activity_at is None or last_activity_at < now - INACTIVITY_WINDOW,
    }


class AdminService:
    """Read models and operator actions behind the admin console"""

    async def overview(self, db: AsyncSession, *, year: Optional[int] = None) -> Dict[str, Any]:
        now = utcnow()
        year = year or current_waiver_year()

        members = list((await db.execute(select(Member))).scalars().all())
        balances = await ledger_crud.balances(db)
        purchases = await ledger_crud.purchase_counts(db)
        last_activity = await ledger_crud.last_activity(db)
        latest_pass = await booking_pass_crud.latest_by_email(db)
        waiver_status = await waiver_crud.annual_status_by_email(db, year)
        open_issues = await booking_issue_crud.open_counts(db)

        rows = []
        for member in members:
            balance = balances.get(member.id, 0)
            booking_pass = latest_pass.get(member.email)
            state = pass_state(booking_pass, now)
            status = waiver_status.get(member.email)
            waiver = status.value if status is not None else "missing"
            last_at = last_activity.get(member.id)
            rows.append({
                "member_id": str(member.id),
                "email": member.email,
                "full_name": member.full_name,
                "phone": member.phone,
                "is_admin": member.is_admin,
                "member_created_at": member.created_at,
                "balance": balance,
                "purchases_count": purchases.get(member.id, 0),
                "waiver_status": waiver,
                "last_activity_at": last_at,
                "pass_state": state,
                "pass_expires_in_hours": hours_until(booking_pass.expires_at, now) if booking_pass else None,
                "open_issues": open_issues.get(member.id, 0),
                "flags": triage_flags(
                    balance=balance,
                    state=state,
                    waiver_status=waiver,
                    last_activity_at=last_at,
                    now=now,
                ),
            })

        # most recent activity first, then newest members
        rows.sort(
            key=lambda row: (row["last_activity_at"] or datetime.min, row["member_created_at"] or datetime.min),
            reverse=True,
        )

        stats = {
            "member_count": len(rows),
            "total_credits": sum(row["balance"] for row in rows),
            "members_with_zero": sum(1 for row in rows if row["balance"] == 0),
            "members_with_positive": sum(1 for row in rows if row["balance"] > 0),
            "open_issues": sum(open_issues.values()),
            "waiver_year": year,
            "triage": {flag: sum(1 for row in rows if row["flags"][flag]) for flag in TRIAGE_FLAGS},
        }
        return {"stats": stats, "rows": rows}

    async def member_detail(self, db: AsyncSession, member_id: UUID) -> Dict[str, Any]:
        member = await member_crud.get(db, member_id)
        issues, _ = await booking_issue_crud.list_issues(db, member_id=member.id, limit=100)
        return {
            "member": member,
            "balance": await ledger_service.balance(db, member.id),
            "ledger": await ledger_service.history(db, member.id),
            "booking_passes": await booking_pass_crud.list_for_email(db, member.email),
            "waivers": await waiver_crud.list_for_member(db, member.id, email=member.email),
            "bookings": await booking_crud.list_for_member(db, member.id),
            "issues": issues,
        }

    async def resolve_member(
        self,
        db: AsyncSession,
        *,
        member_id: Optional[UUID] = None,
        email: Optional[str] = None,
    ) -> Optional[Member]:
        if member_id is not None:
            return await member_crud.get(db, member_id, raise_if_not_found=False)
        if email:
            return await member_crud.get_by_email(db, email)
        raise InvalidInput("member_id or email is required")

    async def send_booking_pass(
        self,
        db: AsyncSession,
        email_client: EmailClient,
        *,
        email: str,
    ) -> Dict[str, Any]:
        """Operator resend: a fresh pass for a member who still has a credit to spend"""
        email = normalize_email(email)
        if not email:
            raise InvalidInput("email is required")
        member = await member_crud.get_by_email(db, email)
        if member is None:
            raise InvalidInput("No member found for this email. Create member / add credit first.")
        balance = await ledger_service.balance(db, member.id)
        if balance < 1:
            raise InvalidInput("Insufficient credits. Add +1 credit first, then send booking link.")

        raw_token = await booking_pass_service.mint(db, email, member_id=member.id)
        email_sent = await payment_service.send_booking_link(email_client, email, raw_token)
        logger.info(f"Booking link re-issued to {email} (balance {balance}, emailed={email_sent})")
        return {"ok": True, "email": email, "balance": balance, "email_sent": email_sent}


admin_service = AdminService()
