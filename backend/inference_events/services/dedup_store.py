from typing import Optional
from uuid import UUID

from sqlalchemy.ext.asyncio import AsyncSession

from ..core.exceptions import truncate_error
from ..models.outbox import utcnow
from ..models.processed_event import ProcessedEvent, ProcessedStatus


class DedupStore:
    """Consumer-side idempotency records. Rows are only ever inserted."""

    def __init__(self, db: AsyncSession):
        self.db = db

    async def find_processed(self, event_id: UUID) -> Optional[ProcessedEvent]:
        return await self.db.get(ProcessedEvent, event_id)

    async def record_processed(self, event_id: UUID) -> ProcessedEvent:
        return await self._insert(event_id, ProcessedStatus.PROCESSED, None)

    async def record_failed(self, event_id: UUID, error: str) -> ProcessedEvent:
        return await self._insert(event_id, ProcessedStatus.FAILED, truncate_error(error))

    async def _insert(self, event_id: UUID, status: ProcessedStatus, error: Optional[str]) -> ProcessedEvent:
        record = ProcessedEvent(
            event_id=event_id,
            processed_at=utcnow(),
            status=status.value,
            error=error,
        )
        self.db.add(record)
        # Flush now so a primary key conflict surfaces inside the caller's transaction
        await self.db.flush()
        return record
