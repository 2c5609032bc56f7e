from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy import select
from typing import Optional
import logging

from backoffice.crud.base import CRUDBase, dialect_insert
from backoffice.models.processed_event import ProcessedEvent
from backoffice.core.exceptions import InvalidInput
from backoffice.utils.utils import utcnow
from pydantic import BaseModel

logger = logging.getLogger(__name__)


class ProcessedEventCreate(BaseModel):
    event_id: str
    provider: str = "stripe"
    event_type: Optional[str] = None


class CRUDProcessedEvent(CRUDBase[ProcessedEvent, ProcessedEventCreate, BaseModel]):
    async def get_by_event_id(self, db: AsyncSession, event_id: str) -> Optional[ProcessedEvent]:
        result = await db.execute(select(self.model).where(self.model.event_id == event_id))
        return result.scalar_one_or_none()

    async def claim(
        self,
        db: AsyncSession,
        *,
        provider: str,
        event_id: str,
        event_type: Optional[str] = None,
        commit: bool = True,
    ) -> bool:
        """
        Atomically record the event id. True means this caller owns the event
        and must process it; False means it was already claimed.
        """
        if not event_id:
            raise InvalidInput("event_id is required")

        stmt = (
            dialect_insert(db, self.model)
            .values(provider=provider, event_id=event_id, event_type=event_type, processed_at=utcnow())
            .on_conflict_do_nothing(index_elements=["event_id"])
            .returning(self.model.id)
        )
        result = await db.execute(stmt)
        claimed = result.scalar_one_or_none() is not None
        if commit:
            await db.commit()

        if not claimed:
            logger.info(f"{provider} event {event_id} already processed")
        return claimed


processed_event_crud = CRUDProcessedEvent(ProcessedEvent)
