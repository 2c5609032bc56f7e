"""
Completion detection for SignNow documents.

SignNow payloads vary by account and API version, so completion is decided by
an ordered list of strategies. Each strategy is a predicate over the normalized
document; they are tried in priority order and the first match marks the
document signed.
"""
from datetime import datetime
import re
from typing import Any, Callable, Dict, List, Optional, Tuple

from backoffice.utils.utils import parse_timestamp, utcnow

DONE_STATUSES = ("fulfilled", "completed", "signed")
TOKEN_SPLIT = re.compile(r"[^a-z]+")


def normalize_document(doc: Any) -> Dict[str, Any]:
    """Merge a `data` wrapper into the top level (the wrapper's keys win)"""
    if not isinstance(doc, dict):
        return {}
    data = doc.get("data")
    if isinstance(data, dict):
        merged = dict(doc)
        merged.update(data)
        return merged
    return doc


def _status(value: Any) -> str:
    return str(value or "").strip().lower()


def _is_done(value: Any) -> bool:
    return _status(value) in DONE_STATUSES


def _list(doc: Dict[str, Any], key: str) -> List[Dict[str, Any]]:
    value = doc.get(key)
    if not isinstance(value, list):
        return []
    return [item for item in value if isinstance(item, dict)]


def field_invite_status(doc: Dict[str, Any]) -> bool:
    invites = _list(doc, "field_invites")
    return bool(invites) and all(_is_done(invite.get("status")) for invite in invites)


def completion_flags(doc: Dict[str, Any]) -> bool:
    return doc.get("is_completed") is True or doc.get("completed") is True


def signer_arrays(doc: Dict[str, Any]) -> bool:
    roles = _list(doc, "roles")
    if roles and all(
        role.get("pending") is False or _is_done(role.get("status") or role.get("signing_status"))
        for role in roles
    ):
        return True
    # signatures[].status is often null even on completed documents, so any
    # finished signature counts
    return any(_is_done(signature.get("status")) for signature in _list(doc, "signatures"))


def status_strings(doc: Dict[str, Any]) -> bool:
    for key in ("status", "document_status", "signing_status", "state"):
        tokens = set(TOKEN_SPLIT.split(_status(doc.get(key))))
        # "unsigned" is its own token; "not_signed" is negated
        if tokens & set(DONE_STATUSES) and "not" not in tokens:
            return True
    return False


COMPLETION_STRATEGIES: List[Tuple[str, Callable[[Dict[str, Any]], bool]]] = [
    ("field_invites", field_invite_status),
    ("completion_flags", completion_flags),
    ("signer_arrays", signer_arrays),
    ("status_strings", status_strings),
]


def matched_strategy(doc: Any) -> Optional[str]:
    """Name of the first strategy that reports the document as signed"""
    normalized = normalize_document(doc)
    for name, strategy in COMPLETION_STRATEGIES:
        if strategy(normalized):
            return name
    return None


def is_document_signed(doc: Any) -> bool:
    return matched_strategy(doc) is not None


def extract_signed_at(doc: Any) -> datetime:
    """Best completion timestamp: invites, then roles, then the document; default now"""
    normalized = normalize_document(doc)

    candidates: List[Any] = []
    for invite in _list(normalized, "field_invites"):
        candidates.extend([invite.get("updated"), invite.get("signed_at"), invite.get("completed_at")])
    for role in _list(normalized, "roles"):
        candidates.extend([role.get("signed_at"), role.get("updated")])
    candidates.extend([normalized.get("completed_at"), normalized.get("signed_at"), normalized.get("updated")])

    for candidate in candidates:
        parsed = parse_timestamp(candidate)
        if parsed is not None:
            return parsed
    return utcnow()


def summarize_document(document_id: str, doc: Any) -> Dict[str, Any]:
    """Operator-facing digest of a provider document"""
    normalized = normalize_document(doc)
    return {
        "document_id": document_id,
        "top_level_status": normalized.get("status"),
        "document_status": normalized.get("document_status"),
        "signing_status": normalized.get("signing_status"),
        "is_completed": normalized.get("is_completed"),
        "field_invites": [
            {
                "id": invite.get("id"),
                "email": invite.get("email"),
                "status": invite.get("status"),
                "role": invite.get("role"),
            }
            for invite in _list(normalized, "field_invites")
        ] or None,
        "signatures": [
            {"email": signature.get("email"), "status": signature.get("status")}
            for signature in _list(normalized, "signatures")
        ] or None,
        "updated": normalized.get("updated"),
        "created": normalized.get("created"),
        "looks_signed": is_document_signed(doc),
        "matched_strategy": matched_strategy(doc),
    }
