"""Parallel requests against a file-backed SQLite database, one session per task.

The shared in-memory connection used elsewhere serializes everything, so these
tests open a real database file where concurrent writers contend for locks.
"""
import asyncio

import pytest_asyncio
from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine

from backoffice.core.exceptions import BookingPassAlreadyUsed, InsufficientCredits
from backoffice.crud import booking_pass_crud, member_crud
from backoffice.models import Base, Booking, BookingIssue
from backoffice.schemas.webhooks import WebhookOutcome
from backoffice.services.booking_pass_service import booking_pass_service
from backoffice.services.calendly_service import parse_invitee_event
from backoffice.services.event_intake import event_intake_service
from backoffice.services.ledger_service import ledger_service
from backoffice.services.redemption_service import redemption_service


@pytest_asyncio.fixture
async def sessions(tmp_path):
    engine = create_async_engine(
        f"sqlite+aiosqlite:///{tmp_path / 'backoffice.db'}",
        connect_args={"timeout": 30},
    )
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    yield async_sessionmaker(engine, class_=AsyncSession, expire_on_commit=False)
    await engine.dispose()


async def member_with_credits(sessions, email, credits):
    async with sessions() as db:
        member = await member_crud.get_or_create_by_email(db, email)
        if credits:
            await ledger_service.grant(db, member.id, credits, "Test grant")
        return member.id


def created(invitee_id, email, token=None):
    return parse_invitee_event({
        "event": "invitee.created",
        "payload": {
            "email": email,
            "name": email.split("@")[0].title(),
            "uri": f"https://api.calendly.com/scheduled_events/EV1/invitees/{invitee_id}",
            "scheduled_event": {
                "uri": "https://api.calendly.com/scheduled_events/EV1",
                "start_time": "2026-11-01T15:00:00.000000Z",
            },
            "tracking": {"utm_content": token} if token else {},
        },
    })


async def book(sessions, invitee):
    async with sessions() as db:
        result = await redemption_service.handle_invitee_created(db, invitee)
        return result["outcome"]


async def test_parallel_redeems_never_overdraw(sessions):
    member_id = await member_with_credits(sessions, "alex@example.com", 1)

    async def attempt():
        async with sessions() as db:
            try:
                await ledger_service.redeem(db, member_id, 1, "Parallel redeem")
                return "ok"
            except InsufficientCredits:
                return "insufficient"

    results = await asyncio.gather(*(attempt() for _ in range(5)))

    assert sorted(results) == ["insufficient"] * 4 + ["ok"]
    async with sessions() as db:
        assert await ledger_service.balance(db, member_id) == 0


async def test_parallel_claims_admit_one_delivery(sessions):
    async def attempt():
        async with sessions() as db:
            return await event_intake_service.claim(db, "stripe", "evt_parallel", "checkout.session.completed")

    results = await asyncio.gather(*(attempt() for _ in range(5)))

    assert sorted(results) == [False] * 4 + [True]


async def test_parallel_link_clicks_consume_once(sessions):
    async with sessions() as db:
        raw = await booking_pass_service.mint(db, "alex@example.com")

    async def click():
        async with sessions() as db:
            try:
                await booking_pass_service.redeem(db, raw)
                return "ok"
            except BookingPassAlreadyUsed:
                return "used"

    results = await asyncio.gather(*(click() for _ in range(5)))

    assert sorted(results) == ["ok"] + ["used"] * 4


async def test_simultaneous_bookings_on_one_credit(sessions):
    member_id = await member_with_credits(sessions, "alex@example.com", 1)

    outcomes = await asyncio.gather(
        book(sessions, created("INV_A", "alex@example.com")),
        book(sessions, created("INV_B", "alex@example.com")),
    )

    assert sorted(outcomes) == sorted([WebhookOutcome.REDEEMED, WebhookOutcome.INSUFFICIENT_CREDITS])
    async with sessions() as db:
        assert await ledger_service.balance(db, member_id) == 0
        assert (await db.execute(select(func.count()).select_from(Booking))).scalar() == 1
        assert (await db.execute(select(func.count()).select_from(BookingIssue))).scalar() == 1


async def test_one_pass_pays_for_one_of_two_simultaneous_guest_bookings(sessions):
    member_id = await member_with_credits(sessions, "alex@example.com", 2)
    async with sessions() as db:
        raw = await booking_pass_service.mint(db, "alex@example.com", member_id=member_id)

    outcomes = await asyncio.gather(
        book(sessions, created("INV_A", "guest.one@example.com", token=raw)),
        book(sessions, created("INV_B", "guest.two@example.com", token=raw)),
    )

    assert sorted(outcomes) == sorted([WebhookOutcome.REDEEMED, WebhookOutcome.INSUFFICIENT_CREDITS])
    async with sessions() as db:
        assert await ledger_service.balance(db, member_id) == 1

        paid = (await db.execute(select(Booking).where(Booking.booking_pass_id.is_not(None)))).scalars().all()
        assert len(paid) == 1
        assert paid[0].purchaser_email == "alex@example.com"

        booking_pass = await booking_pass_crud.get_by_hash(db, booking_pass_service.hash_token(raw))
        assert booking_pass.redeemed_invitee_uri == paid[0].invitee_uri

        issue = (await db.execute(select(BookingIssue))).scalars().one()
        assert issue.invitee_uri != paid[0].invitee_uri
