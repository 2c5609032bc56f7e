from sqlalchemy import Column, String, Text, DateTime, ForeignKey, Uuid, func, Enum as SQLEnum
import uuid
import enum
from .base import Base, TimestampMixin


class IssueResolution(str, enum.Enum):
    OPEN = "open"
    CONTACTED_CUSTOMER = "contacted_customer"
    SENT_PAY_LINK = "sent_pay_link"
    CANCELED = "canceled"
    RESOLVED_OTHER = "resolved_other"


class BookingIssue(Base, TimestampMixin):
    """A booking that arrived without enough credits; worked by an operator"""
    __tablename__ = "calendly_booking_issues"

    id = Column(Uuid(as_uuid=True), primary_key=True, default=uuid.uuid4, index=True)
    invitee_uri = Column(String(500), nullable=False, unique=True, index=True)
    event_uri = Column(String(500), nullable=True)
    invitee_email = Column(String(320), nullable=True, index=True)
    invitee_name = Column(String(255), nullable=True)
    member_id = Column(Uuid(as_uuid=True), ForeignKey("members.id"), nullable=True, index=True)
    event_start_at = Column(DateTime, nullable=True)
    event_end_at = Column(DateTime, nullable=True)
    error_code = Column(String(64), nullable=False)
    error_message = Column(Text, nullable=True)
    resolution_status = Column(SQLEnum(IssueResolution), default=IssueResolution.OPEN, nullable=False, index=True)
    resolution_note = Column(Text, nullable=True)
    resolved_at = Column(DateTime, nullable=True)
    resolved_by = Column(Uuid(as_uuid=True), nullable=True)


class BookingIssueHistory(Base):
    """Append-only audit of resolution changes"""
    __tablename__ = "calendly_booking_issue_history"

    id = Column(Uuid(as_uuid=True), primary_key=True, default=uuid.uuid4, index=True)
    issue_id = Column(Uuid(as_uuid=True), ForeignKey("calendly_booking_issues.id"), nullable=False, index=True)
    changed_at = Column(DateTime, default=func.now(), nullable=False)
    changed_by = Column(Uuid(as_uuid=True), nullable=True)
    old_status = Column(SQLEnum(IssueResolution), nullable=True)
    new_status = Column(SQLEnum(IssueResolution), nullable=False)
    old_note = Column(Text, nullable=True)
    new_note = Column(Text, nullable=True)
