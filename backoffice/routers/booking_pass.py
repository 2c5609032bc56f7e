from fastapi import APIRouter, Body, Depends, Query
from fastapi.responses import RedirectResponse
from sqlalchemy.ext.asyncio import AsyncSession
from typing import Any, Dict, Optional
import logging

from backoffice.core.database import get_db
from backoffice.core.exceptions import handle_domain_errors
from backoffice.services.booking_pass_service import booking_pass_service

logger = logging.getLogger(__name__)

router = APIRouter()


async def _redeem(db: AsyncSession, token: Optional[str]) -> str:
    raw_token = (token or "").strip()
    booking_pass = await booking_pass_service.redeem(db, raw_token)
    logger.info(f"Booking pass {booking_pass.id} redeemed for {booking_pass.email}")
    return booking_pass_service.scheduler_url(booking_pass, raw_token)


@router.get("/redeem")
@handle_domain_errors
async def redeem_booking_pass_link(
    token: Optional[str] = Query(None),
    db: AsyncSession = Depends(get_db),
):
    """Link click from the email: consume the pass and send the browser to the scheduler"""
    url = await _redeem(db, token)
    return RedirectResponse(url=url, status_code=302)


@router.post("/redeem")
@handle_domain_errors
async def redeem_booking_pass(
    body: Optional[Dict[str, Any]] = Body(None),
    db: AsyncSession = Depends(get_db),
):
    url = await _redeem(db, (body or {}).get("token"))
    return {"ok": True, "redirect_url": url}
