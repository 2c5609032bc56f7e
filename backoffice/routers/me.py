from fastapi import APIRouter, Depends
from sqlalchemy.ext.asyncio import AsyncSession

from backoffice.core.auth import get_current_member
from backoffice.core.database import get_db
from backoffice.crud import booking_pass_crud, waiver_crud
from backoffice.models.member import Member
from backoffice.schemas.member import MeResponse, MemberResponse, BookingPassResponse
from backoffice.services.ledger_service import ledger_service
from backoffice.services.waiver_service import current_waiver_year

router = APIRouter()


@router.get("", response_model=MeResponse)
async def get_me(
    db: AsyncSession = Depends(get_db),
    member: Member = Depends(get_current_member),
):
    """The signed-in member's balance, booking links and waiver status"""
    year = current_waiver_year()
    waiver = await waiver_crud.get_annual(db, member.email, year)
    passes = await booking_pass_crud.list_for_email(db, member.email, limit=10)
    return MeResponse(
        member=MemberResponse.model_validate(member),
        balance=await ledger_service.balance(db, member.id),
        waiver_status=waiver.status.value if waiver else "missing",
        waiver_year=year,
        booking_passes=[BookingPassResponse.model_validate(p) for p in passes],
    )
