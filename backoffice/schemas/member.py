from typing import Optional, List
from pydantic import BaseModel, EmailStr, Field
from uuid import UUID
from datetime import datetime

from backoffice.models.ledger_entry import LedgerEntryType
from backoffice.models.booking import BookingStatus


class MemberBase(BaseModel):
    email: str
    first_name: Optional[str] = None
    last_name: Optional[str] = None
    phone: Optional[str] = None


class MemberResponse(MemberBase):
    id: UUID
    user_id: Optional[str] = None
    is_admin: bool = False
    created_at: datetime
    updated_at: datetime

    class Config:
        from_attributes = True


class LedgerEntryResponse(BaseModel):
    id: UUID
    member_id: UUID
    entry_type: LedgerEntryType
    quantity: int
    reason: Optional[str] = None
    created_by: Optional[UUID] = None
    created_at: datetime

    class Config:
        from_attributes = True


class CreditChangeRequest(BaseModel):
    """Operator grant/redeem; identify the member by id or email"""
    member_id: Optional[UUID] = None
    email: Optional[EmailStr] = None
    quantity: int = Field(1, gt=0, description="Number of credits")
    reason: Optional[str] = Field(None, max_length=500)


class CreditChangeResponse(BaseModel):
    ok: bool = True
    member_id: UUID
    ledger_entry_id: UUID
    balance: int


class BookingPassResponse(BaseModel):
    id: UUID
    email: str
    member_id: Optional[UUID] = None
    stripe_session_id: Optional[str] = None
    expires_at: datetime
    used_at: Optional[datetime] = None
    revoked_at: Optional[datetime] = None
    redeemed_invitee_uri: Optional[str] = None
    created_at: datetime

    class Config:
        from_attributes = True


class BookingResponse(BaseModel):
    id: UUID
    invitee_uri: str
    event_uri: Optional[str] = None
    invitee_email: str
    invitee_name: Optional[str] = None
    purchaser_email: str
    member_id: Optional[UUID] = None
    event_start_at: Optional[datetime] = None
    event_end_at: Optional[datetime] = None
    status: BookingStatus
    canceled_at: Optional[datetime] = None
    created_at: datetime

    class Config:
        from_attributes = True


class MeResponse(BaseModel):
    member: MemberResponse
    balance: int
    waiver_status: str
    waiver_year: int
    booking_passes: List[BookingPassResponse] = []
