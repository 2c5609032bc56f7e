from fastapi import APIRouter, Depends, Query
from sqlalchemy.ext.asyncio import AsyncSession
from typing import Optional

from backoffice.core.auth import require_cron_key
from backoffice.core.database import get_db
from backoffice.core.exceptions import handle_domain_errors
from backoffice.schemas.waiver import WaiverSyncResponse
from backoffice.services.waiver_service import waiver_service
from backoffice.services.signnow_client import SignNowClient, get_signnow_client

router = APIRouter(dependencies=[Depends(require_cron_key)])


@router.post("/waiver-sync", response_model=WaiverSyncResponse)
@handle_domain_errors
async def run_waiver_sync(
    year: Optional[int] = Query(None, ge=2000, le=2100),
    db: AsyncSession = Depends(get_db),
    signnow: SignNowClient = Depends(get_signnow_client),
):
    """Scheduled reconciliation of sent waivers against SignNow"""
    return await waiver_service.reconcile(db, signnow, year=year)
