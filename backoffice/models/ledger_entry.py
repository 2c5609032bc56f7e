from sqlalchemy import Column, String, Integer, DateTime, ForeignKey, CheckConstraint, Index, Uuid, func, Enum as SQLEnum
import uuid
import enum
from .base import Base


class LedgerEntryType(str, enum.Enum):
    GRANT = "grant"
    REDEEM = "redeem"
    REFUND = "refund"


class LedgerEntry(Base):
    """Immutable credit-affecting fact. Rows are only ever inserted."""
    __tablename__ = "credits_ledger"
    __table_args__ = (
        CheckConstraint("quantity > 0", name="ck_credits_ledger_quantity_positive"),
        Index("ix_credits_ledger_member_created", "member_id", "created_at"),
    )

    id = Column(Uuid(as_uuid=True), primary_key=True, default=uuid.uuid4, index=True)
    member_id = Column(Uuid(as_uuid=True), ForeignKey("members.id"), nullable=False, index=True)
    entry_type = Column(SQLEnum(LedgerEntryType), nullable=False)
    quantity = Column(Integer, nullable=False)
    # Provider-sourced grants embed the provider session/invoice id here
    reason = Column(String(500), nullable=True)
    created_at = Column(DateTime, default=func.now(), nullable=False)
    # Operator member id; null means the system
    created_by = Column(Uuid(as_uuid=True), nullable=True)

    @property
    def signed_quantity(self) -> int:
        if self.entry_type == LedgerEntryType.REDEEM:
            return -self.quantity
        return self.quantity
