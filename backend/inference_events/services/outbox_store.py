import json
import logging
import uuid
from typing import Any, List, Optional, Sequence

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from ..core.exceptions import OutboxSerializationError, truncate_error
from ..core.metrics import OUTBOX_EVENTS_APPENDED
from ..models.outbox import OutboxEvent, OutboxStatus, utcnow

logger = logging.getLogger(__name__)


def _reject_constant(name: str):
    raise ValueError(f"{name} is not valid JSON")


def serialize_payload(event_type: str, payload: Any) -> str:
    """Encodes a payload as strict JSON. Strings are assumed to already be JSON documents."""
    if isinstance(payload, str):
        try:
            json.loads(payload, parse_constant=_reject_constant)
        except ValueError as e:
            raise OutboxSerializationError(event_type, e) from e
        return payload
    try:
        return json.dumps(payload, allow_nan=False, separators=(",", ":"))
    except (TypeError, ValueError) as e:
        raise OutboxSerializationError(event_type, e) from e


class OutboxStore:
    """
    Data access for the outbox table.

    The store never commits: every call runs on the caller's session so the
    caller's transaction decides what becomes durable.
    """

    def __init__(self, db: AsyncSession, lock_rows: bool = False):
        self.db = db
        self.lock_rows = lock_rows

    async def append(self, event_type: str, aggregate_id: str, payload: Any) -> OutboxEvent:
        """
        Adds a NEW event to the current transaction.

        Must be called inside the same transaction as the business mutation
        that produced it. Serialization errors are raised before anything is
        added to the session, so the business transaction aborts with them.
        """
        payload_json = serialize_payload(event_type, payload)
        event = OutboxEvent(
            id=uuid.uuid4(),
            event_type=event_type,
            aggregate_id=str(aggregate_id),
            payload=json.loads(payload_json),
            status=OutboxStatus.NEW.value,
            attempt_count=0,
            created_at=utcnow(),
        )
        self.db.add(event)
        OUTBOX_EVENTS_APPENDED.labels(event_type=event_type).inc()
        logger.debug(f"Appended outbox event {event.id} type={event_type} aggregate={aggregate_id}")
        return event

    async def get(self, event_id: uuid.UUID) -> Optional[OutboxEvent]:
        return await self.db.get(OutboxEvent, event_id)

    async def claim_batch(self, limit: int) -> List[OutboxEvent]:
        """Oldest NEW events first, at most `limit` of them."""
        if limit <= 0:
            return []
        query = (
            select(OutboxEvent)
            .where(OutboxEvent.status == OutboxStatus.NEW.value)
            .order_by(OutboxEvent.created_at.asc())
            .limit(limit)
        )
        if self.lock_rows:
            # Rows held by another publisher are skipped instead of waited on
            query = query.with_for_update(skip_locked=True)
        result = await self.db.execute(query)
        return list(result.scalars().all())

    def update_status(self, event: OutboxEvent, status: OutboxStatus) -> None:
        event.status = status.value

    def mark_processing(self, event: OutboxEvent) -> None:
        self.update_status(event, OutboxStatus.PROCESSING)

    def mark_sent(self, event: OutboxEvent) -> None:
        self.update_status(event, OutboxStatus.SENT)
        event.sent_at = utcnow()
        event.last_error = None

    def mark_failed(self, event: OutboxEvent, error: str) -> None:
        event.attempt_count = (event.attempt_count or 0) + 1
        event.last_error = truncate_error(error)
        self.update_status(event, OutboxStatus.FAILED)

    async def list_failed(self, limit: int = 100) -> List[OutboxEvent]:
        result = await self.db.execute(
            select(OutboxEvent)
            .where(OutboxEvent.status == OutboxStatus.FAILED.value)
            .order_by(OutboxEvent.created_at.asc())
            .limit(limit)
        )
        return list(result.scalars().all())

    async def requeue_failed(
        self,
        event_ids: Optional[Sequence[uuid.UUID]] = None,
        limit: int = 100,
        max_attempts: Optional[int] = None,
    ) -> List[OutboxEvent]:
        """
        Moves FAILED events back to NEW so the publisher picks them up again.

        This is the only way out of FAILED and is meant for operators; the
        publisher itself never requeues. Events whose attempt_count reached
        max_attempts are left untouched. attempt_count and last_error are kept
        as history.
        """
        query = select(OutboxEvent).where(OutboxEvent.status == OutboxStatus.FAILED.value)
        if event_ids:
            query = query.where(OutboxEvent.id.in_(list(event_ids)))
        if max_attempts is not None:
            query = query.where(OutboxEvent.attempt_count < max_attempts)
        query = query.order_by(OutboxEvent.created_at.asc()).limit(limit)

        result = await self.db.execute(query)
        events = list(result.scalars().all())
        for event in events:
            self.update_status(event, OutboxStatus.NEW)
        if events:
            logger.info(f"Requeued {len(events)} failed outbox events")
        return events
