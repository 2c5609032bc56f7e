from typing import Optional, List
from pydantic import BaseModel, Field
from uuid import UUID
from datetime import datetime

from backoffice.models.waiver import WaiverStatus, WaiverSyncStatus


class WaiverResponse(BaseModel):
    id: UUID
    member_id: Optional[UUID] = None
    recipient_email: str
    recipient_name: Optional[str] = None
    attendee_name: Optional[str] = None
    waiver_year: int
    calendly_invitee_uri: Optional[str] = None
    status: WaiverStatus
    external_provider: str
    external_document_id: Optional[str] = None
    sent_at: Optional[datetime] = None
    signed_at: Optional[datetime] = None

    class Config:
        from_attributes = True


class WaiverMemberRequest(BaseModel):
    member_id: UUID
    year: Optional[int] = Field(None, ge=2000, le=2100)


class WaiverMarkSignedRequest(WaiverMemberRequest):
    recipient_email: Optional[str] = None
    recipient_name: Optional[str] = None


class WaiverSyncRequest(BaseModel):
    year: Optional[int] = Field(None, ge=2000, le=2100)
    member_id: Optional[UUID] = None


class WaiverSyncError(BaseModel):
    waiver_id: Optional[str] = None
    external_document_id: Optional[str] = None
    message: str


class WaiverCheckResponse(BaseModel):
    member_id: Optional[str] = None
    total_candidates: int
    checked: int
    marked_signed: int
    errors: List[WaiverSyncError] = []


class WaiverSyncResponse(BaseModel):
    run_id: str
    status: WaiverSyncStatus
    scanned: int
    updated: int
    already_signed: int
    errors: List[WaiverSyncError] = []


class WaiverActionResponse(BaseModel):
    ok: bool = True
    action: Optional[str] = None
    waiver_id: Optional[str] = None
    document_id: Optional[str] = None
    pending_count: Optional[int] = None

