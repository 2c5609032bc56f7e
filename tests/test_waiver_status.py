from datetime import datetime, timedelta

import pytest

from backoffice.services.waiver_status import (
    extract_signed_at,
    is_document_signed,
    matched_strategy,
    summarize_document,
)
from backoffice.utils.utils import utcnow


@pytest.mark.parametrize("doc, strategy", [
    ({"field_invites": [{"status": "fulfilled"}, {"status": "Completed"}]}, "field_invites"),
    ({"data": {"is_completed": True}}, "completion_flags"),
    ({"completed": True}, "completion_flags"),
    ({"roles": [{"pending": False}, {"signing_status": "signed"}]}, "signer_arrays"),
    ({"signatures": [{"status": None}, {"status": "signed"}]}, "signer_arrays"),
    ({"status": "Completed"}, "status_strings"),
    ({"document_status": "document_signed"}, "status_strings"),
    ({"data": {"state": "fulfilled"}}, "status_strings"),
])
def test_signed_documents(doc, strategy):
    assert is_document_signed(doc) is True
    assert matched_strategy(doc) == strategy


@pytest.mark.parametrize("doc", [
    {},
    None,
    "not a document",
    {"status": "unsigned"},
    {"status": "not_signed"},
    {"signing_status": "pending"},
    {"field_invites": [{"status": "fulfilled"}, {"status": "pending"}]},
    {"field_invites": []},
    {"roles": [{"pending": True}]},
    {"signatures": [{"status": None}]},
    {"is_completed": "true"},
])
def test_unsigned_documents(doc):
    assert is_document_signed(doc) is False


def test_invites_take_priority_over_status_strings():
    doc = {"status": "signed", "field_invites": [{"status": "fulfilled"}]}
    assert matched_strategy(doc) == "field_invites"


def test_signed_at_prefers_invite_timestamps():
    doc = {
        "updated": "2026-05-01T00:00:00Z",
        "field_invites": [{"status": "fulfilled", "updated": "1772359200"}],
    }
    assert extract_signed_at(doc) == datetime(2026, 3, 1, 10, 0, 0)


def test_signed_at_falls_back_to_document_then_now():
    assert extract_signed_at({"data": {"completed_at": "2026-04-02T08:30:00+02:00"}}) == datetime(2026, 4, 2, 6, 30)

    before = utcnow()
    fallback = extract_signed_at({"updated": "garbage"})
    assert before - timedelta(seconds=1) <= fallback <= utcnow() + timedelta(seconds=1)


def test_summary_for_operators():
    doc = {
        "data": {
            "status": "pending",
            "field_invites": [{"id": "fi_1", "email": "alex@example.com", "status": "fulfilled", "role": "Participant"}],
        },
        "created": 1772000000,
    }
    summary = summarize_document("doc_1", doc)

    assert summary["document_id"] == "doc_1"
    assert summary["top_level_status"] == "pending"
    assert summary["field_invites"][0]["email"] == "alex@example.com"
    assert summary["signatures"] is None
    assert summary["looks_signed"] is True
    assert summary["matched_strategy"] == "field_invites"
