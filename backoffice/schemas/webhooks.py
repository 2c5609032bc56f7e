from pydantic import BaseModel
from typing import Optional, Dict, Any
from datetime import datetime
from enum import Enum


class WebhookOutcome(str, Enum):
    PROCESSED = "processed"
    ALREADY_PROCESSED = "already_processed"
    IGNORED = "ignored"
    REDEEMED = "redeemed"
    INSUFFICIENT_CREDITS = "insufficient_credits"
    CANCELED = "canceled"
    NOT_FOUND = "not_found"


class CalendlyInvitee(BaseModel):
    """The fields of a Calendly invitee webhook the redemption protocol depends on"""
    event_type: Optional[str] = None
    email: Optional[str] = None
    name: Optional[str] = None
    first_name: Optional[str] = None
    last_name: Optional[str] = None
    invitee_uri: Optional[str] = None
    event_uri: Optional[str] = None
    start_time: Optional[datetime] = None
    end_time: Optional[datetime] = None
    # Booking pass token carried through the scheduling link's utm_content
    pass_token: Optional[str] = None

    def missing_for_created(self) -> Optional[str]:
        for field in ("email", "event_uri", "invitee_uri", "start_time"):
            if not getattr(self, field):
                return field
        return None


class WebhookResponse(BaseModel):
    ok: bool = True
    outcome: WebhookOutcome
    detail: Optional[str] = None
    data: Optional[Dict[str, Any]] = None


class StripeGrant(BaseModel):
    """Credits a Stripe payment event should grant, resolved before any write"""
    source_id: str
    email: str
    credits: int
    reason: str
    phone: Optional[str] = None
    mint_pass: bool = True
    stripe_session_id: Optional[str] = None
