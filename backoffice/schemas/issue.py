from typing import Optional, List
from pydantic import BaseModel, Field
from uuid import UUID
from datetime import datetime

from backoffice.models.booking_issue import IssueResolution


class BookingIssueResponse(BaseModel):
    id: UUID
    invitee_uri: str
    event_uri: Optional[str] = None
    invitee_email: Optional[str] = None
    invitee_name: Optional[str] = None
    member_id: Optional[UUID] = None
    event_start_at: Optional[datetime] = None
    event_end_at: Optional[datetime] = None
    error_code: str
    error_message: Optional[str] = None
    resolution_status: IssueResolution
    resolution_note: Optional[str] = None
    resolved_at: Optional[datetime] = None
    resolved_by: Optional[UUID] = None
    created_at: datetime
    updated_at: datetime

    class Config:
        from_attributes = True


class BookingIssueListResponse(BaseModel):
    issues: List[BookingIssueResponse]
    total: int


class BookingIssueUpdate(BaseModel):
    resolution_status: IssueResolution
    resolution_note: Optional[str] = Field(None, max_length=2000)


class BookingIssueHistoryResponse(BaseModel):
    id: UUID
    issue_id: UUID
    changed_at: datetime
    changed_by: Optional[UUID] = None
    old_status: Optional[IssueResolution] = None
    new_status: IssueResolution
    old_note: Optional[str] = None
    new_note: Optional[str] = None

    class Config:
        from_attributes = True
