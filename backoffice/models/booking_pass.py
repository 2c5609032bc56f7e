from sqlalchemy import Column, String, DateTime, ForeignKey, Index, Uuid, func, text
import uuid
from .base import Base


class BookingPass(Base):
    """
    Single-use booking link credential. Only the salted hash of the token is
    stored; the raw token lives in the email and in Calendly's utm_content.

    used_at marks the link click (or revocation); redeemed_invitee_uri marks the
    Calendly booking the pass was spent on.
    """
    __tablename__ = "booking_passes"
    __table_args__ = (
        # At most one unused pass per email
        Index(
            "uq_booking_passes_email_unused",
            "email",
            unique=True,
            postgresql_where=text("used_at IS NULL"),
            sqlite_where=text("used_at IS NULL"),
        ),
    )

    id = Column(Uuid(as_uuid=True), primary_key=True, default=uuid.uuid4, index=True)
    token_hash = Column(String(64), nullable=False, unique=True, index=True)
    email = Column(String(320), nullable=False, index=True)
    member_id = Column(Uuid(as_uuid=True), ForeignKey("members.id"), nullable=True, index=True)
    stripe_session_id = Column(String(255), nullable=True, unique=True)
    expires_at = Column(DateTime, nullable=False)
    used_at = Column(DateTime, nullable=True)
    revoked_at = Column(DateTime, nullable=True)
    redeemed_invitee_uri = Column(String(500), nullable=True, unique=True)
    created_at = Column(DateTime, default=func.now(), nullable=False)
