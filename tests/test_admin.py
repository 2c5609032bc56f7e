import uuid
from datetime import timedelta

from sqlalchemy import select

from backoffice.crud import booking_issue_crud, member_crud
from backoffice.models import LedgerEntry
from backoffice.services.admin_service import pass_state, triage_flags
from backoffice.services.booking_pass_service import booking_pass_service
from backoffice.services.ledger_service import ledger_service
from backoffice.utils.utils import utcnow


async def add_issue(db, invitee_id="INV1", member_id=None):
    await booking_issue_crud.upsert(db, {
        "invitee_uri": f"https://api.calendly.com/scheduled_events/EV1/invitees/{invitee_id}",
        "invitee_email": "alex@example.com",
        "member_id": member_id,
        "error_code": "INSUFFICIENT_CREDITS",
        "error_message": "INSUFFICIENT_CREDITS: requested 1, balance 0",
    })
    issue = await booking_issue_crud.get_by_invitee_uri(
        db, f"https://api.calendly.com/scheduled_events/EV1/invitees/{invitee_id}"
    )
    return issue.id


async def test_overview_rows_and_triage(client, db, make_member, admin_member):
    alex = await make_member("alex@example.com", credits=2)
    await booking_pass_service.mint(db, "alex@example.com", member_id=alex.id)
    jo = await make_member("jo@example.com")
    await add_issue(db, member_id=jo.id)

    response = await client.get("/api/admin/overview")
    assert response.status_code == 200
    body = response.json()

    stats = body["stats"]
    assert stats["member_count"] == 3
    assert stats["total_credits"] == 2
    assert stats["members_with_positive"] == 1
    assert stats["members_with_zero"] == 2
    assert stats["open_issues"] == 1

    rows = {row["email"]: row for row in body["rows"]}
    assert body["rows"][0]["email"] == "alex@example.com"
    assert rows["alex@example.com"]["balance"] == 2
    assert rows["alex@example.com"]["pass_state"] == "active"
    assert rows["alex@example.com"]["flags"]["credits_no_active_pass"] is False
    assert rows["alex@example.com"]["flags"]["waiver_missing"] is True
    assert rows["jo@example.com"]["open_issues"] == 1
    assert rows["jo@example.com"]["pass_state"] == "none"
    assert rows["jo@example.com"]["flags"]["no_recent_activity_30d"] is True
    assert stats["triage"]["waiver_missing"] == 3


def test_pass_state_and_flags():
    now = utcnow()

    class Pass:
        used_at = None
        expires_at = now - timedelta(days=1)

    assert pass_state(None, now) == "none"
    assert pass_state(Pass(), now) == "expired"

    flags = triage_flags(balance=3, state="expired", waiver_status="sent", last_activity_at=now, now=now)
    assert flags["credits_no_active_pass"] is True
    assert flags["pass_expired"] is True
    assert flags["waiver_sent"] is True
    assert flags["no_recent_activity_30d"] is False


async def test_member_detail(client, make_member):
    alex = await make_member("alex@example.com", credits=3)

    response = await client.get(f"/api/admin/members/{alex.id}")
    assert response.status_code == 200
    body = response.json()
    assert body["member"]["email"] == "alex@example.com"
    assert body["balance"] == 3
    assert body["ledger"][0]["entry_type"] == "grant"

    missing = await client.get(f"/api/admin/members/{uuid.uuid4()}")
    assert missing.status_code == 404


async def test_grant_by_email_creates_member_and_records_operator(client, session_factory, admin_member):
    response = await client.post("/api/admin/credits/grant", json={"email": "New@Example.com", "quantity": 2})
    assert response.status_code == 200
    body = response.json()
    assert body["balance"] == 2

    async with session_factory() as db:
        member = await member_crud.get_by_email(db, "new@example.com")
        entry = (await db.execute(select(LedgerEntry).where(LedgerEntry.member_id == member.id))).scalars().one()
        assert entry.created_by == admin_member.id
        assert entry.reason == "Manual grant"


async def test_grant_validation(client):
    nobody = await client.post("/api/admin/credits/grant", json={"quantity": 1})
    zero = await client.post("/api/admin/credits/grant", json={"email": "alex@example.com", "quantity": 0})

    assert nobody.status_code == 400
    assert zero.status_code == 422


async def test_redeem_refuses_overdraw(client, make_member, session_factory):
    alex = await make_member("alex@example.com", credits=1)
    alex_id = alex.id

    over = await client.post("/api/admin/credits/redeem", json={"member_id": str(alex_id), "quantity": 2})
    ok = await client.post("/api/admin/credits/redeem", json={"email": "alex@example.com", "reason": "No-show"})
    unknown = await client.post("/api/admin/credits/redeem", json={"email": "ghost@example.com"})

    assert over.status_code == 409
    assert "INSUFFICIENT_CREDITS" in over.json()["detail"]
    assert ok.status_code == 200
    assert ok.json()["balance"] == 0
    assert unknown.status_code == 404

    async with session_factory() as db:
        assert await ledger_service.balance(db, alex_id) == 0


async def test_send_booking_pass(client, make_member, email_client):
    await make_member("jo@example.com")
    await make_member("alex@example.com", credits=1)

    unknown = await client.post("/api/admin/booking-pass/send", json={"email": "ghost@example.com"})
    broke = await client.post("/api/admin/booking-pass/send", json={"email": "jo@example.com"})
    ok = await client.post("/api/admin/booking-pass/send", json={"email": "alex@example.com"})

    assert unknown.status_code == 400
    assert unknown.json()["detail"].startswith("No member found")
    assert broke.status_code == 400
    assert broke.json()["detail"].startswith("Insufficient credits")
    assert ok.status_code == 200
    assert ok.json() == {"ok": True, "email": "alex@example.com", "balance": 1, "email_sent": True}
    assert email_client.sent[0]["to"] == "alex@example.com"


async def test_waiver_actions(client, make_member, signnow, email_client):
    alex = await make_member("alex@example.com")
    member_id = str(alex.id)

    none_pending = await client.post("/api/admin/waiver/remind", json={"member_id": member_id})
    assert none_pending.status_code == 409

    sent = await client.post("/api/admin/waiver/mark-sent", json={"member_id": member_id})
    assert sent.json()["action"] == "sent"
    assert sent.json()["document_id"] == "doc_1"

    reminded = await client.post("/api/admin/waiver/remind", json={"member_id": member_id})
    assert reminded.status_code == 200
    assert reminded.json()["pending_count"] == 1

    signnow.sign("doc_1")
    checked = await client.post("/api/admin/waiver/check", json={"member_id": member_id})
    assert checked.json()["marked_signed"] == 1

    debug = await client.get("/api/admin/waiver/debug-doc", params={"document_id": "doc_1"})
    assert debug.json()["looks_signed"] is True

    resent = await client.post("/api/admin/waiver/mark-sent", json={"member_id": member_id})
    assert resent.json()["action"] == "already_signed"


async def test_waiver_sync_and_manual_sign(client, make_member, signnow):
    alex = await make_member("alex@example.com")
    jo = await make_member("jo@example.com")
    await client.post("/api/admin/waiver/mark-sent", json={"member_id": str(alex.id)})
    signnow.failing_documents.add("doc_1")

    manual = await client.post("/api/admin/waiver/mark-signed", json={"member_id": str(jo.id)})
    assert manual.json()["ok"] is True
    assert manual.json()["action"] == "signed"

    sync = await client.post("/api/admin/waiver/sync", json={})
    body = sync.json()
    assert body["status"] == "completed_with_errors"
    assert body["errors"][0]["external_document_id"] == "doc_1"


async def test_issue_resolution_is_audited(client, db, admin_member):
    issue_id = await add_issue(db)

    listed = await client.get("/api/admin/issues", params={"resolution_status": "open"})
    assert listed.json()["total"] == 1

    contacted = await client.patch(
        f"/api/admin/issues/{issue_id}",
        json={"resolution_status": "contacted_customer", "resolution_note": "Texted about a top-up"},
    )
    assert contacted.status_code == 200
    assert contacted.json()["resolved_at"] is not None
    assert contacted.json()["resolved_by"] == str(admin_member.id)

    reopened = await client.patch(f"/api/admin/issues/{issue_id}", json={"resolution_status": "open"})
    assert reopened.json()["resolved_at"] is None

    history = await client.get(f"/api/admin/issues/{issue_id}/history")
    entries = history.json()
    assert len(entries) == 2
    assert {(entry["old_status"], entry["new_status"]) for entry in entries} == {
        ("open", "contacted_customer"),
        ("contacted_customer", "open"),
    }

    still_open = await client.get("/api/admin/issues", params={"resolution_status": "open"})
    assert still_open.json()["total"] == 1

    missing = await client.get(f"/api/admin/issues/{uuid.uuid4()}/history")
    assert missing.status_code == 404


async def test_replayed_issue_keeps_operator_resolution(client, db):
    issue_id = await add_issue(db)
    await client.patch(f"/api/admin/issues/{issue_id}", json={"resolution_status": "sent_pay_link"})

    await add_issue(db)

    listed = await client.get("/api/admin/issues")
    assert listed.json()["issues"][0]["resolution_status"] == "sent_pay_link"
