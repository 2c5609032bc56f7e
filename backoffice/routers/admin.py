from fastapi import APIRouter, Depends, Query
from sqlalchemy.ext.asyncio import AsyncSession
from typing import List, Optional
from uuid import UUID
from pydantic import BaseModel, EmailStr
import logging

from backoffice.core.auth import require_admin
from backoffice.core.database import get_db
from backoffice.core.exceptions import handle_domain_errors, NotFoundError, ValidationError, ConflictError
from backoffice.crud import member_crud, booking_issue_crud
from backoffice.models.member import Member
from backoffice.models.booking_issue import IssueResolution
from backoffice.schemas.member import (
    MemberResponse,
    LedgerEntryResponse,
    BookingPassResponse,
    BookingResponse,
    CreditChangeRequest,
    CreditChangeResponse,
)
from backoffice.schemas.waiver import (
    WaiverResponse,
    WaiverMemberRequest,
    WaiverMarkSignedRequest,
    WaiverSyncRequest,
    WaiverCheckResponse,
    WaiverSyncResponse,
    WaiverActionResponse,
)
from backoffice.schemas.issue import (
    BookingIssueResponse,
    BookingIssueListResponse,
    BookingIssueUpdate,
    BookingIssueHistoryResponse,
)
from backoffice.services.admin_service import admin_service
from backoffice.services.ledger_service import ledger_service
from backoffice.services.waiver_service import waiver_service
from backoffice.services.signnow_client import SignNowClient, get_signnow_client
from backoffice.services.email_service import EmailClient, get_email_client

logger = logging.getLogger(__name__)

router = APIRouter()


class BookingPassSendRequest(BaseModel):
    email: EmailStr


# Overview & members

@router.get("/overview")
@handle_domain_errors
async def get_overview(
    year: Optional[int] = Query(None, ge=2000, le=2100),
    db: AsyncSession = Depends(get_db),
    admin: Member = Depends(require_admin),
):
    """Member rows with balance, pass state, waiver status and triage flags"""
    return await admin_service.overview(db, year=year)


@router.get("/members/{member_id}")
@handle_domain_errors
async def get_member_detail(
    member_id: UUID,
    db: AsyncSession = Depends(get_db),
    admin: Member = Depends(require_admin),
):
    detail = await admin_service.member_detail(db, member_id)
    return {
        "member": MemberResponse.model_validate(detail["member"]),
        "balance": detail["balance"],
        "ledger": [LedgerEntryResponse.model_validate(entry) for entry in detail["ledger"]],
        "booking_passes": [BookingPassResponse.model_validate(p) for p in detail["booking_passes"]],
        "waivers": [WaiverResponse.model_validate(w) for w in detail["waivers"]],
        "bookings": [BookingResponse.model_validate(b) for b in detail["bookings"]],
        "issues": [BookingIssueResponse.model_validate(i) for i in detail["issues"]],
    }


# Credits

@router.post("/credits/grant", response_model=CreditChangeResponse)
@handle_domain_errors
async def grant_credits(
    request: CreditChangeRequest,
    db: AsyncSession = Depends(get_db),
    admin: Member = Depends(require_admin),
):
    """Manual grant; an unknown email creates the member"""
    if request.member_id is not None:
        member = await member_crud.get(db, request.member_id)
    elif request.email:
        member = await member_crud.get_or_create_by_email(db, request.email)
    else:
        raise ValidationError("member_id or email is required")

    member_id = member.id
    entry = await ledger_service.grant(
        db, member_id, request.quantity, request.reason or "Manual grant", created_by=admin.id
    )
    return CreditChangeResponse(
        member_id=member_id,
        ledger_entry_id=entry.id,
        balance=await ledger_service.balance(db, member_id),
    )


@router.post("/credits/redeem", response_model=CreditChangeResponse)
@handle_domain_errors
async def redeem_credits(
    request: CreditChangeRequest,
    db: AsyncSession = Depends(get_db),
    admin: Member = Depends(require_admin),
):
    """Manual redemption; refused with 409 when the balance does not cover it"""
    member = await admin_service.resolve_member(db, member_id=request.member_id, email=request.email)
    if member is None:
        raise NotFoundError("Member")

    member_id = member.id
    entry_id = await ledger_service.redeem(
        db, member_id, request.quantity, request.reason or "Manual redeem", created_by=admin.id
    )
    return CreditChangeResponse(
        member_id=member_id,
        ledger_entry_id=entry_id,
        balance=await ledger_service.balance(db, member_id),
    )


@router.post("/booking-pass/send")
@handle_domain_errors
async def send_booking_pass(
    request: BookingPassSendRequest,
    db: AsyncSession = Depends(get_db),
    email_client: EmailClient = Depends(get_email_client),
    admin: Member = Depends(require_admin),
):
    return await admin_service.send_booking_pass(db, email_client, email=request.email)


# Waivers

@router.post("/waiver/mark-sent", response_model=WaiverActionResponse)
@handle_domain_errors
async def mark_waiver_sent(
    request: WaiverMemberRequest,
    db: AsyncSession = Depends(get_db),
    signnow: SignNowClient = Depends(get_signnow_client),
    email_client: EmailClient = Depends(get_email_client),
    admin: Member = Depends(require_admin),
):
    """Send (or re-send) the member's annual waiver"""
    result = await waiver_service.send_for_member(db, signnow, email_client, request.member_id, year=request.year)
    return WaiverActionResponse(**result)


@router.post("/waiver/mark-signed", response_model=WaiverActionResponse)
@handle_domain_errors
async def mark_waiver_signed(
    request: WaiverMarkSignedRequest,
    db: AsyncSession = Depends(get_db),
    admin: Member = Depends(require_admin),
):
    result = await waiver_service.mark_signed(
        db,
        request.member_id,
        recipient_email=request.recipient_email,
        recipient_name=request.recipient_name,
        year=request.year,
    )
    return WaiverActionResponse(action="signed", **result)


@router.post("/waiver/check", response_model=WaiverCheckResponse)
@handle_domain_errors
async def check_waivers(
    request: WaiverMemberRequest,
    db: AsyncSession = Depends(get_db),
    signnow: SignNowClient = Depends(get_signnow_client),
    admin: Member = Depends(require_admin),
):
    """Poll SignNow for one member's sent waivers"""
    return await waiver_service.check(db, signnow, member_id=request.member_id, year=request.year)


@router.post("/waiver/sync", response_model=WaiverSyncResponse)
@handle_domain_errors
async def sync_waivers(
    request: WaiverSyncRequest,
    db: AsyncSession = Depends(get_db),
    signnow: SignNowClient = Depends(get_signnow_client),
    admin: Member = Depends(require_admin),
):
    return await waiver_service.reconcile(db, signnow, year=request.year, member_id=request.member_id)


@router.post("/waiver/remind", response_model=WaiverActionResponse)
@handle_domain_errors
async def remind_waivers(
    request: WaiverMemberRequest,
    db: AsyncSession = Depends(get_db),
    signnow: SignNowClient = Depends(get_signnow_client),
    email_client: EmailClient = Depends(get_email_client),
    admin: Member = Depends(require_admin),
):
    result = await waiver_service.remind(db, signnow, email_client, request.member_id, year=request.year)
    if not result["ok"]:
        raise ConflictError("No unsigned waivers for this member.")
    return WaiverActionResponse(action="reminded", **result)


@router.get("/waiver/debug-doc")
@handle_domain_errors
async def debug_waiver_document(
    document_id: str = Query(..., min_length=1),
    signnow: SignNowClient = Depends(get_signnow_client),
    admin: Member = Depends(require_admin),
):
    """Raw completion signals of a SignNow document, for diagnosing the poller"""
    return await waiver_service.inspect_document(signnow, document_id)


# Booking issues

@router.get("/issues", response_model=BookingIssueListResponse)
@handle_domain_errors
async def list_issues(
    resolution_status: Optional[IssueResolution] = Query(None),
    member_id: Optional[UUID] = Query(None),
    skip: int = Query(0, ge=0),
    limit: int = Query(100, ge=1, le=500),
    db: AsyncSession = Depends(get_db),
    admin: Member = Depends(require_admin),
):
    issues, total = await booking_issue_crud.list_issues(
        db, status=resolution_status, member_id=member_id, skip=skip, limit=limit
    )
    return BookingIssueListResponse(
        issues=[BookingIssueResponse.model_validate(issue) for issue in issues],
        total=total,
    )


@router.patch("/issues/{issue_id}", response_model=BookingIssueResponse)
@handle_domain_errors
async def update_issue(
    issue_id: UUID,
    update: BookingIssueUpdate,
    db: AsyncSession = Depends(get_db),
    admin: Member = Depends(require_admin),
):
    """Record an operator resolution; every change is kept in the issue history"""
    issue = await booking_issue_crud.get(db, issue_id)
    issue = await booking_issue_crud.set_resolution(
        db,
        issue=issue,
        status=update.resolution_status,
        note=update.resolution_note,
        changed_by=admin.id,
    )
    logger.info(f"Booking issue {issue_id} set to {update.resolution_status.value} by {admin.email}")
    return issue


@router.get("/issues/{issue_id}/history", response_model=List[BookingIssueHistoryResponse])
@handle_domain_errors
async def get_issue_history(
    issue_id: UUID,
    db: AsyncSession = Depends(get_db),
    admin: Member = Depends(require_admin),
):
    await booking_issue_crud.get(db, issue_id)
    return await booking_issue_crud.history(db, issue_id)
