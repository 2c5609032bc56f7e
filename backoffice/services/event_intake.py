from sqlalchemy.ext.asyncio import AsyncSession
from typing import Optional

from backoffice.crud import processed_event_crud


class EventIntakeService:
    """At-most-once processing of provider webhook deliveries, keyed by event id"""

    async def claim(
        self,
        db: AsyncSession,
        provider: str,
        event_id: str,
        event_type: Optional[str] = None,
        *,
        commit: bool = True,
    ) -> bool:
        """
        True for the first delivery of an event id, False for every replay.
        With commit=False the claim joins the caller's transaction and is undone
        by a rollback, so a failed handler leaves the event retryable.
        """
        return await processed_event_crud.claim(
            db, provider=provider, event_id=event_id, event_type=event_type, commit=commit
        )

    async def is_processed(self, db: AsyncSession, event_id: str) -> bool:
        return await processed_event_crud.get_by_event_id(db, event_id) is not None


event_intake_service = EventIntakeService()
