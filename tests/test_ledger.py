import uuid

import pytest
from sqlalchemy import select

from backoffice.core.exceptions import InsufficientCredits, InvalidInput
from backoffice.crud import ledger_crud
from backoffice.models import LedgerEntry, LedgerEntryType
from backoffice.services.ledger_service import ledger_service


async def test_balance_is_derived_from_entries(db, make_member):
    member = await make_member("alex@example.com")
    member_id = member.id

    await ledger_service.grant(db, member_id, 4, "Stripe checkout (cs_1)")
    await ledger_service.redeem(db, member_id, 1, "Calendly booking (inv_1)")
    await ledger_service.refund(db, member_id, 1, "Calendly cancellation (inv_1)")
    await ledger_service.redeem(db, member_id, 2, "Manual redeem")

    assert await ledger_service.balance(db, member_id) == 2
    history = await ledger_service.history(db, member_id)
    assert len(history) == 4
    assert {entry.entry_type for entry in history} == {
        LedgerEntryType.GRANT, LedgerEntryType.REDEEM, LedgerEntryType.REFUND
    }


async def test_balance_of_member_without_entries_is_zero(db, make_member):
    member = await make_member("new@example.com")
    assert await ledger_service.balance(db, member.id) == 0


async def test_redeem_beyond_balance_raises_and_writes_nothing(db, make_member):
    member = await make_member("sam@example.com", credits=1)
    member_id = member.id

    with pytest.raises(InsufficientCredits) as exc_info:
        await ledger_service.redeem(db, member_id, 2, "Manual redeem")
    await db.rollback()

    assert exc_info.value.balance == 1
    assert exc_info.value.requested == 2
    assert await ledger_service.balance(db, member_id) == 1
    rows = (await db.execute(
        select(LedgerEntry).where(LedgerEntry.entry_type == LedgerEntryType.REDEEM)
    )).scalars().all()
    assert rows == []


async def test_redeem_with_zero_balance_raises(db, make_member):
    member = await make_member("zero@example.com")
    with pytest.raises(InsufficientCredits):
        await ledger_service.redeem(db, member.id, 1, "Calendly booking (inv_x)")


async def test_sequential_redeems_never_go_negative(db, make_member):
    member = await make_member("pat@example.com", credits=2)
    member_id = member.id

    outcomes = []
    for n in range(4):
        try:
            await ledger_service.redeem(db, member_id, 1, f"Calendly booking (inv_{n})")
            outcomes.append("ok")
        except InsufficientCredits:
            await db.rollback()
            outcomes.append("insufficient")

    assert outcomes == ["ok", "ok", "insufficient", "insufficient"]
    assert await ledger_service.balance(db, member_id) == 0


@pytest.mark.parametrize("quantity", [0, -1, 1.5, True])
async def test_non_positive_or_non_integer_quantities_are_rejected(db, make_member, quantity):
    member = await make_member("q@example.com")
    with pytest.raises(InvalidInput):
        await ledger_service.grant(db, member.id, quantity, "bad")


async def test_unknown_member_is_rejected(db):
    with pytest.raises(InvalidInput):
        await ledger_service.grant(db, uuid.uuid4(), 1, "ghost")


async def test_redeem_without_commit_joins_caller_transaction(db, make_member):
    member = await make_member("tx@example.com", credits=1)
    member_id = member.id

    await ledger_service.redeem(db, member_id, 1, "Calendly booking (inv_tx)", commit=False)
    await db.rollback()

    assert await ledger_service.balance(db, member_id) == 1


async def test_overview_aggregates(db, make_member):
    alex = await make_member("alex@example.com")
    jo = await make_member("jo@example.com")
    await ledger_service.grant(db, alex.id, 4, "Stripe checkout (cs_1)")
    await ledger_service.grant(db, alex.id, 1, "Stripe invoice (in_1)")
    await ledger_service.grant(db, jo.id, 2, "Manual grant")
    await ledger_service.redeem(db, jo.id, 1, "Manual redeem")

    balances = await ledger_crud.balances(db)
    purchases = await ledger_crud.purchase_counts(db)

    assert balances[alex.id] == 5
    assert balances[jo.id] == 1
    assert purchases == {alex.id: 2}
