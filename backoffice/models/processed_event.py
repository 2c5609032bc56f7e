from sqlalchemy import Column, String, DateTime, Uuid, func
import uuid
from .base import Base


class ProcessedEvent(Base):
    """One row per external provider event id; the unique key is the dedup"""
    __tablename__ = "processed_events"

    id = Column(Uuid(as_uuid=True), primary_key=True, default=uuid.uuid4, index=True)
    # Provider event id for idempotency
    event_id = Column(String(255), nullable=False, unique=True, index=True)
    provider = Column(String(50), nullable=False, default="stripe")
    event_type = Column(String(100), nullable=True)
    processed_at = Column(DateTime, default=func.now(), nullable=False)
