from sqlalchemy import Column, String, DateTime, ForeignKey, Index, Uuid, Enum as SQLEnum, text
import uuid
import enum
from .base import Base, TimestampMixin


class BookingStatus(str, enum.Enum):
    BOOKED = "booked"
    CANCELED = "canceled"


class Booking(Base, TimestampMixin):
    """A Calendly invitee that consumed one credit. The invitee URI is the dedup key."""
    __tablename__ = "bookings"
    __table_args__ = (
        # A booking pass pays for at most one booking
        Index(
            "uq_bookings_booking_pass_id",
            "booking_pass_id",
            unique=True,
            postgresql_where=text("booking_pass_id IS NOT NULL"),
            sqlite_where=text("booking_pass_id IS NOT NULL"),
        ),
    )

    id = Column(Uuid(as_uuid=True), primary_key=True, default=uuid.uuid4, index=True)
    invitee_uri = Column(String(500), nullable=False, unique=True, index=True)
    event_uri = Column(String(500), nullable=True)
    # The person attending
    invitee_email = Column(String(320), nullable=False, index=True)
    invitee_name = Column(String(255), nullable=True)
    # The identity whose credits were spent (pass email when a pass was used)
    purchaser_email = Column(String(320), nullable=False, index=True)
    member_id = Column(Uuid(as_uuid=True), ForeignKey("members.id"), nullable=True, index=True)
    booking_pass_id = Column(Uuid(as_uuid=True), ForeignKey("booking_passes.id"), nullable=True)
    event_start_at = Column(DateTime, nullable=True)
    event_end_at = Column(DateTime, nullable=True)
    status = Column(SQLEnum(BookingStatus), default=BookingStatus.BOOKED, nullable=False)
    redeem_entry_id = Column(Uuid(as_uuid=True), ForeignKey("credits_ledger.id"), nullable=True)
    refund_entry_id = Column(Uuid(as_uuid=True), ForeignKey("credits_ledger.id"), nullable=True)
    canceled_at = Column(DateTime, nullable=True)
