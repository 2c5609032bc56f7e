from sqlalchemy import Column, String, Integer, DateTime, ForeignKey, Index, Uuid, JSON, func, text, Enum as SQLEnum
import uuid
import enum
from .base import Base, TimestampMixin


class WaiverStatus(str, enum.Enum):
    # "missing" is represented by the absence of a row
    SENT = "sent"
    SIGNED = "signed"


class WaiverSyncStatus(str, enum.Enum):
    RUNNING = "running"
    COMPLETED = "completed"
    COMPLETED_WITH_ERRORS = "completed_with_errors"
    FAILED = "failed"


class Waiver(Base, TimestampMixin):
    """
    E-signature waiver. Annual waivers are keyed on (recipient_email, waiver_year);
    per-attendee waivers (booked on someone else's credits) are keyed on the
    Calendly invitee URI.
    """
    __tablename__ = "waivers"
    __table_args__ = (
        Index(
            "uq_waivers_recipient_year",
            "recipient_email",
            "waiver_year",
            unique=True,
            postgresql_where=text("calendly_invitee_uri IS NULL"),
            sqlite_where=text("calendly_invitee_uri IS NULL"),
        ),
    )

    id = Column(Uuid(as_uuid=True), primary_key=True, default=uuid.uuid4, index=True)
    member_id = Column(Uuid(as_uuid=True), ForeignKey("members.id"), nullable=True, index=True)
    recipient_email = Column(String(320), nullable=False, index=True)
    recipient_name = Column(String(255), nullable=True)
    attendee_name = Column(String(255), nullable=True)
    waiver_year = Column(Integer, nullable=False)
    calendly_invitee_uri = Column(String(500), nullable=True, unique=True)
    status = Column(SQLEnum(WaiverStatus), default=WaiverStatus.SENT, nullable=False, index=True)
    external_provider = Column(String(50), nullable=False, default="signnow")
    external_document_id = Column(String(255), nullable=True, index=True)
    sent_at = Column(DateTime, nullable=True)
    signed_at = Column(DateTime, nullable=True)


class WaiverSyncRun(Base):
    """One execution of the periodic waiver reconciliation"""
    __tablename__ = "waiver_sync_runs"

    id = Column(Uuid(as_uuid=True), primary_key=True, default=uuid.uuid4, index=True)
    waiver_year = Column(Integer, nullable=True)
    started_at = Column(DateTime, default=func.now(), nullable=False)
    finished_at = Column(DateTime, nullable=True)
    status = Column(SQLEnum(WaiverSyncStatus), default=WaiverSyncStatus.RUNNING, nullable=False)
    scanned = Column(Integer, default=0, nullable=False)
    updated = Column(Integer, default=0, nullable=False)
    already_signed = Column(Integer, default=0, nullable=False)
    errors = Column(JSON, nullable=True)
