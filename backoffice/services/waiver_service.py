from sqlalchemy.ext.asyncio import AsyncSession
from typing import Any, Dict, List, Optional
from uuid import UUID
import logging

from backoffice.core.config import settings
from backoffice.core.exceptions import ExternalProviderFailure, InvalidInput
from backoffice.crud import member_crud, waiver_crud, waiver_sync_run_crud
from backoffice.models.waiver import Waiver, WaiverStatus, WaiverSyncStatus
from backoffice.services.signnow_client import SignNowClient
from backoffice.services.email_service import EmailClient, waiver_link_email
from backoffice.services.waiver_status import is_document_signed, extract_signed_at, summarize_document
from backoffice.utils.utils import normalize_email, utcnow, get_all_keys

logger = logging.getLogger(__name__)


def current_waiver_year() -> int:
    return settings.waiver_year or utcnow().year


class WaiverService:
    """
    Waiver lifecycle: missing -> sent -> signed.

    A provider document, once created for a waiver, is reused for every
    re-send, so the provider's completion always resolves to a single row.
    """

    async def send(
        self,
        db: AsyncSession,
        signnow: SignNowClient,
        email_client: EmailClient,
        *,
        recipient_email: str,
        member_id: Optional[UUID] = None,
        year: Optional[int] = None,
        recipient_name: Optional[str] = None,
        attendee_name: Optional[str] = None,
        invitee_uri: Optional[str] = None,
    ) -> Dict[str, Any]:
        recipient_email = normalize_email(recipient_email)
        if not recipient_email:
            raise InvalidInput("recipient_email is required")
        year = year or current_waiver_year()

        existing = await waiver_crud.find(
            db, recipient_email=recipient_email, waiver_year=year, invitee_uri=invitee_uri
        )
        if existing is not None and existing.status == WaiverStatus.SIGNED:
            return {"action": "already_signed", "waiver_id": str(existing.id)}

        if existing is not None and existing.external_document_id:
            # SignNow rejects duplicate invites on a document; resend the link by email
            await self._email_signing_link(signnow, email_client, existing)
            logger.info(f"Waiver {existing.id} re-sent to {recipient_email} (document {existing.external_document_id})")
            return {"action": "resent", "waiver_id": str(existing.id)}

        if not settings.signnow_waiver_template_id:
            raise ExternalProviderFailure("signnow", "SIGNNOW_WAIVER_TEMPLATE_ID is not configured")

        who = attendee_name or recipient_name or recipient_email
        document_id = await signnow.copy_template(
            settings.signnow_waiver_template_id,
            document_name=f"{settings.business_name} Waiver {year} - {who}",
        )
        await signnow.send_invite(
            document_id,
            to_email=recipient_email,
            subject=f"{settings.business_name} waiver ({year})",
            message=(
                f"Please sign the {year} waiver for {attendee_name} before the session."
                if attendee_name
                else f"Please sign your {year} waiver before your session."
            ),
        )

        waiver = await waiver_crud.upsert_sent(
            db,
            recipient_email=recipient_email,
            waiver_year=year,
            external_document_id=document_id,
            member_id=member_id,
            recipient_name=recipient_name,
            attendee_name=attendee_name,
            invitee_uri=invitee_uri,
        )
        if waiver is not None and waiver.external_document_id != document_id:
            logger.warning(
                f"Waiver {waiver.id} already had document {waiver.external_document_id}; "
                f"new document {document_id} left unused"
            )
        logger.info(f"Waiver invite sent to {recipient_email} for {year} (document {document_id})")
        return {"action": "sent", "waiver_id": str(waiver.id) if waiver else None, "document_id": document_id}

    async def send_for_member(
        self,
        db: AsyncSession,
        signnow: SignNowClient,
        email_client: EmailClient,
        member_id: UUID,
        *,
        year: Optional[int] = None,
    ) -> Dict[str, Any]:
        member = await member_crud.get(db, member_id)
        return await self.send(
            db,
            signnow,
            email_client,
            recipient_email=member.email,
            member_id=member.id,
            year=year,
            recipient_name=member.full_name,
        )

    async def mark_signed(
        self,
        db: AsyncSession,
        member_id: UUID,
        *,
        recipient_email: Optional[str] = None,
        recipient_name: Optional[str] = None,
        year: Optional[int] = None,
    ) -> Dict[str, Any]:
        """Operator override for a waiver signed outside the polling path"""
        member = await member_crud.get(db, member_id)
        recipient_email = normalize_email(recipient_email or member.email)
        year = year or current_waiver_year()
        now = utcnow()

        existing = await waiver_crud.get_annual(db, recipient_email, year)
        if existing is None:
            await waiver_crud.insert_signed(
                db, recipient_email=recipient_email, waiver_year=year, member_id=member.id, signed_at=now
            )
            existing = await waiver_crud.get_annual(db, recipient_email, year)
            if existing is not None and existing.status == WaiverStatus.SENT:
                # lost a race with a concurrent send
                await waiver_crud.mark_signed(db, existing.id, now)
            return {"ok": True, "waiver_id": str(existing.id) if existing else None}

        if existing.status == WaiverStatus.SENT:
            await waiver_crud.mark_signed(db, existing.id, now)
        if recipient_name and not existing.recipient_name:
            await waiver_crud.update(db, db_obj=existing, obj_in={"recipient_name": recipient_name})
        return {"ok": True, "waiver_id": str(existing.id)}

    async def _sync(
        self,
        db: AsyncSession,
        signnow: SignNowClient,
        waivers: List[Waiver],
    ) -> Dict[str, Any]:
        """Poll each waiver's document; one failure never stops the batch"""
        summary = {"scanned": len(waivers), "checked": 0, "updated": 0, "already_signed": 0, "errors": []}
        # a rollback expires loaded rows, so work from plain values
        pending = [(waiver.id, waiver.status, waiver.external_document_id) for waiver in waivers]
        for waiver_id, status, document_id in pending:
            if status == WaiverStatus.SIGNED:
                summary["already_signed"] += 1
                continue
            document_id = (document_id or "").strip()
            if not document_id:
                continue

            summary["checked"] += 1
            try:
                doc = await signnow.get_document(document_id)
                if not is_document_signed(doc):
                    continue
                if await waiver_crud.mark_signed(db, waiver_id, extract_signed_at(doc)):
                    summary["updated"] += 1
                    logger.info(f"Waiver {waiver_id} marked signed (document {document_id})")
                else:
                    summary["already_signed"] += 1
            except Exception as e:
                await db.rollback()
                logger.warning(f"Waiver sync failed for waiver {waiver_id} (document {document_id}): {e}")
                summary["errors"].append({
                    "waiver_id": str(waiver_id),
                    "external_document_id": document_id,
                    "message": str(e)[:1000],
                })
        return summary

    async def check(
        self,
        db: AsyncSession,
        signnow: SignNowClient,
        *,
        member_id: Optional[UUID] = None,
        year: Optional[int] = None,
    ) -> Dict[str, Any]:
        """On-demand sync for one member (or everyone), for the operator console"""
        waivers = await waiver_crud.list_pending(db, waiver_year=year or current_waiver_year(), member_id=member_id)
        summary = await self._sync(db, signnow, waivers)
        return {
            "member_id": str(member_id) if member_id else None,
            "total_candidates": summary["scanned"],
            "checked": summary["checked"],
            "marked_signed": summary["updated"],
            "errors": summary["errors"],
        }

    async def reconcile(
        self,
        db: AsyncSession,
        signnow: SignNowClient,
        *,
        year: Optional[int] = None,
        member_id: Optional[UUID] = None,
    ) -> Dict[str, Any]:
        """Periodic batch over every sent waiver of the year, recorded as a sync run"""
        year = year or current_waiver_year()
        run = await waiver_sync_run_crud.start(db, year)
        run_id = run.id
        try:
            waivers = await waiver_crud.list_pending(db, waiver_year=year, member_id=member_id)
            summary = await self._sync(db, signnow, waivers)
        except Exception as e:
            await db.rollback()
            logger.error(f"Waiver sync run {run_id} failed: {e}")
            await waiver_sync_run_crud.finish(
                db, run, status=WaiverSyncStatus.FAILED, scanned=0, updated=0, already_signed=0,
                errors=[{"message": str(e)[:1000]}],
            )
            raise

        status = WaiverSyncStatus.COMPLETED_WITH_ERRORS if summary["errors"] else WaiverSyncStatus.COMPLETED
        await waiver_sync_run_crud.finish(
            db,
            run,
            status=status,
            scanned=summary["scanned"],
            updated=summary["updated"],
            already_signed=summary["already_signed"],
            errors=summary["errors"],
        )
        return {
            "run_id": str(run_id),
            "status": status.value,
            "scanned": summary["scanned"],
            "updated": summary["updated"],
            "already_signed": summary["already_signed"],
            "errors": summary["errors"],
        }

    async def _email_signing_link(self, signnow: SignNowClient, email_client: EmailClient, waiver: Waiver) -> None:
        url = await signnow.create_signing_link(waiver.external_document_id)
        await email_client.send(
            waiver.recipient_email,
            f"Please sign your {settings.business_name} waiver ({waiver.waiver_year})",
            waiver_link_email(settings.business_name, url, waiver.attendee_name),
        )

    async def remind(
        self,
        db: AsyncSession,
        signnow: SignNowClient,
        email_client: EmailClient,
        member_id: UUID,
        *,
        year: Optional[int] = None,
    ) -> Dict[str, Any]:
        """One reminder email listing a signing link for every unsigned waiver of the member"""
        member = await member_crud.get(db, member_id)
        year = year or current_waiver_year()
        pending = [
            waiver for waiver in await waiver_crud.list_for_member(db, member.id)
            if waiver.waiver_year == year and waiver.status != WaiverStatus.SIGNED
        ]
        if not pending:
            return {"ok": False, "pending_count": 0}

        items = []
        for waiver in pending:
            name = (waiver.attendee_name or "").strip() or "Waiver"
            if not waiver.external_document_id:
                items.append(f"<li>{name} (missing document id)</li>")
                continue
            try:
                url = await signnow.create_signing_link(waiver.external_document_id)
                items.append(f'<li>{name}: <a href="{url}"><strong>Sign now</strong></a></li>')
            except ExternalProviderFailure as e:
                logger.warning(f"Signing link failed for waiver {waiver.id}: {e}")
                items.append(f"<li>{name} (could not generate link)</li>")

        greeting = f"Hello {member.full_name}," if member.full_name else "Hello,"
        html = (
            f"<p>{greeting}</p>"
            f"<p>This is a friendly reminder to sign your waiver(s) for {year}.</p>"
            f"<p><strong>Still unsigned:</strong></p><ul>{''.join(items)}</ul>"
            f"<p>{settings.business_name}</p>"
        )
        await email_client.send(
            member.email,
            f"Reminder: Please sign your {settings.business_name} waiver ({year})",
            html,
        )
        return {"ok": True, "pending_count": len(pending)}

    async def inspect_document(self, signnow: SignNowClient, document_id: str) -> Dict[str, Any]:
        document_id = (document_id or "").strip()
        if not document_id:
            raise InvalidInput("document_id is required")
        doc = await signnow.get_document(document_id)
        summary = summarize_document(document_id, doc)
        summary["keys"] = get_all_keys(doc)[:200]
        return summary


waiver_service = WaiverService()
