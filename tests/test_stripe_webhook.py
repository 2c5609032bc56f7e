import hashlib
import hmac
import json
import time

import pytest
import stripe
from sqlalchemy import func, select

from backoffice.core.config import settings
from backoffice.core.exceptions import ExternalProviderFailure
from backoffice.crud import member_crud
from backoffice.models import BookingPass, LedgerEntry, ProcessedEvent
from backoffice.services.ledger_service import ledger_service
from backoffice.services.stripe_service import stripe_service

WEBHOOK_SECRET = "whsec_test_backoffice"


def signed(event: dict):
    payload = json.dumps(event)
    timestamp = int(time.time())
    signature = hmac.new(
        WEBHOOK_SECRET.encode("utf-8"),
        f"{timestamp}.{payload}".encode("utf-8"),
        hashlib.sha256,
    ).hexdigest()
    return payload, {"stripe-signature": f"t={timestamp},v1={signature}", "content-type": "application/json"}


def checkout_event(event_id="evt_checkout_1", session_id="cs_test_1", credits="4", email="Alex@Example.com"):
    return {
        "id": event_id,
        "type": "checkout.session.completed",
        "data": {
            "object": {
                "id": session_id,
                "mode": "payment",
                "payment_status": "paid",
                "metadata": {"credits": credits} if credits is not None else {},
                "customer_details": {"email": email, "phone": "+15550100"},
            }
        },
    }


def invoice_event(event_id, event_type="invoice.paid", invoice_id="in_test_1"):
    return {
        "id": event_id,
        "type": event_type,
        "data": {"object": {"id": invoice_id, "customer_email": "sub@example.com"}},
    }


async def post_event(client, event):
    payload, headers = signed(event)
    return await client.post("/api/webhooks/stripe", content=payload, headers=headers)


async def test_checkout_grants_credits_and_sends_booking_link(client, session_factory, email_client):
    response = await post_event(client, checkout_event())

    assert response.status_code == 200
    body = response.json()
    assert body["outcome"] == "processed"
    assert body["data"]["credits"] == 4
    assert body["data"]["booking_pass_minted"] is True
    assert body["data"]["email_sent"] is True

    async with session_factory() as db:
        member = await member_crud.get_by_email(db, "alex@example.com")
        assert member.phone == "+15550100"
        assert await ledger_service.balance(db, member.id) == 4
        passes = (await db.execute(select(BookingPass))).scalars().all()
        assert len(passes) == 1
        assert passes[0].stripe_session_id == "cs_test_1"

    assert len(email_client.sent) == 1
    assert email_client.sent[0]["to"] == "alex@example.com"
    assert "/api/booking-pass/redeem?token=" in email_client.sent[0]["html"]


async def test_replayed_event_is_credited_once(client, session_factory, email_client):
    first = await post_event(client, checkout_event())
    second = await post_event(client, checkout_event())

    assert first.json()["outcome"] == "processed"
    assert second.status_code == 200
    assert second.json()["outcome"] == "already_processed"

    async with session_factory() as db:
        member = await member_crud.get_by_email(db, "alex@example.com")
        assert await ledger_service.balance(db, member.id) == 4
    assert len(email_client.sent) == 1


async def test_bad_signature_is_rejected_without_writes(client, session_factory):
    payload, headers = signed(checkout_event())
    headers["stripe-signature"] = headers["stripe-signature"][:-4] + "0000"

    response = await client.post("/api/webhooks/stripe", content=payload, headers=headers)
    assert response.status_code == 400

    missing = await client.post("/api/webhooks/stripe", content=payload)
    assert missing.status_code == 400

    async with session_factory() as db:
        count = (await db.execute(select(func.count()).select_from(ProcessedEvent))).scalar()
        assert count == 0


async def test_email_failure_does_not_undo_the_grant(client, session_factory, email_client):
    email_client.fail = True

    response = await post_event(client, checkout_event())
    assert response.status_code == 200
    assert response.json()["data"]["email_sent"] is False

    async with session_factory() as db:
        member = await member_crud.get_by_email(db, "alex@example.com")
        assert await ledger_service.balance(db, member.id) == 4


async def test_checkout_without_credits_is_recorded_and_ignored(client, session_factory, monkeypatch):
    monkeypatch.setattr(stripe_service, "list_line_items", lambda session_id: [])

    response = await post_event(client, checkout_event(credits=None))
    assert response.json()["outcome"] == "ignored"

    async with session_factory() as db:
        assert (await db.execute(select(func.count()).select_from(LedgerEntry))).scalar() == 0
        assert (await db.execute(select(func.count()).select_from(BookingPass))).scalar() == 0
        assert await member_crud.get_by_email(db, "alex@example.com") is None

    replay = await post_event(client, checkout_event(credits=None))
    assert replay.json()["outcome"] == "already_processed"


async def test_credits_come_from_price_metadata_then_price_table(client, session_factory, monkeypatch):
    line_items = [
        {"quantity": 2, "price": {"id": "price_meta", "metadata": {"credits": "3"}}},
        {"quantity": 1, "price": {"id": "price_table"}},
    ]
    monkeypatch.setattr(stripe_service, "list_line_items", lambda session_id: line_items)
    monkeypatch.setattr(stripe_service, "retrieve_price", lambda price_id: {"id": price_id, "metadata": {}})
    monkeypatch.setattr(settings, "stripe_price_credits", {"price_table": 4})

    response = await post_event(client, checkout_event(credits=None))
    assert response.json()["data"]["credits"] == 10


async def test_provider_failure_returns_502_and_leaves_event_retryable(client, session_factory, monkeypatch):
    def broken(session_id):
        raise ExternalProviderFailure("stripe", "list line items timed out")

    monkeypatch.setattr(stripe_service, "list_line_items", broken)

    response = await post_event(client, checkout_event(credits=None))
    assert response.status_code == 502

    async with session_factory() as db:
        assert (await db.execute(select(func.count()).select_from(ProcessedEvent))).scalar() == 0

    monkeypatch.setattr(stripe_service, "list_line_items", lambda session_id: [
        {"quantity": 1, "price": {"id": "price_x", "metadata": {"credits": "1"}}},
    ])
    retry = await post_event(client, checkout_event(credits=None))
    assert retry.json()["outcome"] == "processed"


async def test_invoice_paid_and_payment_succeeded_credit_once(client, session_factory, email_client, monkeypatch):
    invoice = {
        "id": "in_test_1",
        "customer_email": "Sub@Example.com",
        "lines": {"data": [{"quantity": 1, "price": {"id": "price_monthly"}}]},
    }
    monkeypatch.setattr(stripe_service, "retrieve_invoice", lambda invoice_id: invoice)
    monkeypatch.setattr(settings, "stripe_price_credits", {"price_monthly": 4})

    paid = await post_event(client, invoice_event("evt_inv_1", "invoice.paid"))
    succeeded = await post_event(client, invoice_event("evt_inv_2", "invoice.payment_succeeded"))

    assert paid.json()["outcome"] == "processed"
    assert paid.json()["data"]["booking_pass_minted"] is False
    assert succeeded.json()["outcome"] == "already_processed"

    async with session_factory() as db:
        member = await member_crud.get_by_email(db, "sub@example.com")
        assert await ledger_service.balance(db, member.id) == 4
    assert email_client.sent == []


async def test_invoice_line_price_shapes(monkeypatch):
    monkeypatch.setattr(settings, "stripe_price_credits", {"price_a": 1, "price_b": 2, "plan_c": 3})
    invoice = {
        "id": "in_shapes",
        "customer": {"email": "shapes@example.com"},
        "lines": {"data": [
            {"price": "price_a"},
            {"pricing": {"price_details": {"price": "price_b"}}, "quantity": 2},
            {"plan": {"id": "plan_c"}},
            {"description": "no price at all"},
        ]},
    }
    monkeypatch.setattr(stripe_service, "retrieve_invoice", lambda invoice_id: invoice)

    grant = stripe_service.invoice_grant({"id": "in_shapes"})
    assert grant.credits == 1 + 4 + 3
    assert grant.email == "shapes@example.com"
    assert grant.mint_pass is False


def test_subscription_and_unpaid_checkouts_grant_nothing():
    subscription = checkout_event()["data"]["object"] | {"mode": "subscription"}
    unpaid = checkout_event()["data"]["object"] | {"payment_status": "unpaid"}

    assert stripe_service.checkout_grant(subscription) is None
    assert stripe_service.checkout_grant(unpaid) is None


async def test_unrelated_event_types_are_ignored(client):
    response = await post_event(client, {"id": "evt_other", "type": "customer.created", "data": {"object": {}}})
    assert response.status_code == 200
    assert response.json()["outcome"] == "ignored"


@pytest.mark.parametrize("credits", ["0", "-2", "abc"])
async def test_invalid_metadata_credits_fall_back_to_line_items(client, monkeypatch, credits):
    monkeypatch.setattr(stripe_service, "list_line_items", lambda session_id: [
        {"quantity": 1, "price": {"id": "price_one", "metadata": {"credits": "1"}}},
    ])

    response = await post_event(client, checkout_event(credits=credits))
    assert response.json()["data"]["credits"] == 1


def test_stripe_calls_use_provider_timeout():
    client = stripe.default_http_client
    assert isinstance(client, stripe.RequestsClient)
    assert client._timeout == settings.provider_timeout_seconds
    assert stripe.max_network_retries == 1
