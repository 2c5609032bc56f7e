from sqlalchemy import Column, String, Boolean, Uuid
import uuid
from .base import Base, TimestampMixin


class Member(Base, TimestampMixin):
    """Identity anchor; created on first payment or first signup, never deleted"""
    __tablename__ = "members"

    id = Column(Uuid(as_uuid=True), primary_key=True, default=uuid.uuid4, index=True)
    # Always stored trimmed + lowercased
    email = Column(String(320), nullable=False, unique=True, index=True)
    # Supabase auth user id, linked on first authenticated request
    user_id = Column(String(64), nullable=True, unique=True, index=True)
    first_name = Column(String(120), nullable=True)
    last_name = Column(String(120), nullable=True)
    phone = Column(String(40), nullable=True)
    is_admin = Column(Boolean, default=False, nullable=False)

    @property
    def full_name(self):
        name = f"{(self.first_name or '').strip()} {(self.last_name or '').strip()}".strip()
        return name or None
