from typing import Any, Dict, Optional
import hashlib
import hmac
import time
import logging

from backoffice.schemas.webhooks import CalendlyInvitee
from backoffice.utils.utils import normalize_email, parse_timestamp

logger = logging.getLogger(__name__)

# Calendly signs "<t>.<raw body>"; deliveries older than this are rejected
SIGNATURE_TOLERANCE_SECONDS = 180


def verify_signature(
    payload: bytes,
    header: Optional[str],
    signing_key: str,
    *,
    tolerance: int = SIGNATURE_TOLERANCE_SECONDS,
    now: Optional[float] = None,
) -> bool:
    """Check a `Calendly-Webhook-Signature: t=<ts>,v1=<hex>` header"""
    if not header or not signing_key:
        return False

    parts = {}
    for item in header.split(","):
        key, _, value = item.strip().partition("=")
        if key and value:
            parts[key] = value

    timestamp = parts.get("t")
    signature = parts.get("v1")
    if not timestamp or not signature or not timestamp.isdigit():
        return False

    current = now if now is not None else time.time()
    if abs(current - int(timestamp)) > tolerance:
        logger.warning("Calendly signature timestamp outside tolerance")
        return False

    signed = f"{timestamp}.".encode("utf-8") + payload
    expected = hmac.new(signing_key.encode("utf-8"), signed, hashlib.sha256).hexdigest()
    return hmac.compare_digest(expected, signature)


def _first(*values: Any) -> Any:
    for value in values:
        if value not in (None, ""):
            return value
    return None


def _dict(value: Any) -> Dict[str, Any]:
    return value if isinstance(value, dict) else {}


def parse_invitee_event(body: Any) -> CalendlyInvitee:
    """
    Tolerant extraction from the Calendly webhook body. Missing fields come back
    as None; callers decide whether the event is actionable.
    """
    body = _dict(body)
    payload = _dict(body.get("payload"))
    scheduled_event = _dict(payload.get("scheduled_event"))
    event = _dict(payload.get("event"))
    invitee = _dict(payload.get("invitee"))
    tracking = _dict(payload.get("tracking"))

    email = _first(payload.get("email"), payload.get("email_address"), invitee.get("email"), body.get("inviteeEmail"))
    token = _first(tracking.get("utm_content"), tracking.get("utmContent"))

    return CalendlyInvitee(
        event_type=_first(body.get("event"), body.get("event_type"), body.get("eventType")),
        email=normalize_email(email) or None,
        name=_first(payload.get("name"), invitee.get("name")),
        first_name=_first(payload.get("first_name"), invitee.get("first_name")),
        last_name=_first(payload.get("last_name"), invitee.get("last_name")),
        invitee_uri=_first(payload.get("uri"), invitee.get("uri")),
        event_uri=_first(scheduled_event.get("uri"), event.get("uri")),
        start_time=parse_timestamp(_first(
            scheduled_event.get("start_time"), scheduled_event.get("startTime"), event.get("start_time")
        )),
        end_time=parse_timestamp(_first(
            scheduled_event.get("end_time"), scheduled_event.get("endTime"), event.get("end_time")
        )),
        pass_token=str(token).strip() if token else None,
    )


def split_name(invitee: CalendlyInvitee):
    """(first, last) from explicit fields, else from the full name"""
    if invitee.first_name or invitee.last_name:
        return invitee.first_name, invitee.last_name
    parts = (invitee.name or "").strip().split(None, 1)
    if not parts:
        return None, None
    return parts[0], parts[1] if len(parts) > 1 else None
