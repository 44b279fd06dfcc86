import asyncio
import json
import logging
from typing import List, Optional, Tuple

from apscheduler.schedulers.asyncio import AsyncIOScheduler
from apscheduler.triggers.interval import IntervalTrigger
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from ..core.config import settings
from ..core.exceptions import safe_error_message
from ..core.metrics import (
    OUTBOX_BATCH_SIZE,
    OUTBOX_PUBLISH_RESULTS,
    OUTBOX_TICK_DURATION,
    OUTBOX_TICK_ERRORS,
    OUTBOX_TICKS_SKIPPED,
)
from ..core.tracing import get_tracer
from ..kafka.broker_client import KafkaBrokerClient
from ..models.outbox import OutboxEvent
from .outbox_store import OutboxStore

logger = logging.getLogger(__name__)

PUBLISHER_JOB_ID = "outbox_publisher_job"


def message_value(event: OutboxEvent) -> str:
    return json.dumps(event.payload, separators=(",", ":"))


def message_headers(event: OutboxEvent) -> List[Tuple[str, bytes]]:
    return [
        ("event_type", event.event_type.encode("utf-8")),
        ("aggregate_id", event.aggregate_id.encode("utf-8")),
    ]


class OutboxPublisher:
    """
    Relays NEW outbox events to Kafka.

    Each tick claims a batch inside one transaction, sends every event
    synchronously and commits all status updates together. Sends are not part
    of the transaction: if the commit fails after a successful send the event
    stays NEW and is sent again on the next tick (at-least-once).

    Ticks are single-flight. A tick that fires while the previous one is still
    running is skipped, not queued.
    """

    def __init__(
        self,
        session_factory: async_sessionmaker[AsyncSession],
        broker: KafkaBrokerClient,
        topic: Optional[str] = None,
        batch_size: Optional[int] = None,
        lock_rows: Optional[bool] = None,
    ):
        self.session_factory = session_factory
        self.broker = broker
        self.topic = topic or settings.KAFKA_TOPIC_INFERENCE_EVENTS
        self.batch_size = settings.OUTBOX_BATCH_SIZE if batch_size is None else batch_size
        if self.batch_size <= 0:
            raise ValueError(f"batch_size must be positive, got {self.batch_size}")
        self.lock_rows = settings.OUTBOX_CLAIM_WITH_LOCK if lock_rows is None else lock_rows
        self._tick_lock = asyncio.Lock()

    @property
    def is_running(self) -> bool:
        return self._tick_lock.locked()

    async def wait_idle(self) -> None:
        """Returns once no tick is in flight."""
        async with self._tick_lock:
            pass

    async def publish_new_events(self) -> int:
        """
        Runs one publisher tick and returns the number of events sent.

        Database errors roll back the whole tick; the claimed events stay NEW
        and are retried on the next tick.
        """
        if self._tick_lock.locked():
            OUTBOX_TICKS_SKIPPED.inc()
            logger.debug("Previous outbox tick still running, skipping this one")
            return 0

        async with self._tick_lock:
            with get_tracer().start_as_current_span("outbox.publish_tick"), OUTBOX_TICK_DURATION.time():
                try:
                    return await self._publish_batch()
                except Exception as e:
                    OUTBOX_TICK_ERRORS.inc()
                    logger.exception(f"Outbox publisher tick rolled back: {e}")
                    return 0

    async def _publish_batch(self) -> int:
        sent = 0
        async with self.session_factory() as session:
            async with session.begin():
                store = OutboxStore(session, lock_rows=self.lock_rows)
                batch = await store.claim_batch(self.batch_size)
                OUTBOX_BATCH_SIZE.observe(len(batch))
                if not batch:
                    return 0

                logger.info(f"Publishing {len(batch)} outbox events to {self.topic}")
                for event in batch:
                    store.mark_processing(event)
                    error = await self._send(event)
                    if error is None:
                        store.mark_sent(event)
                        sent += 1
                    else:
                        store.mark_failed(event, error)

        failed = len(batch) - sent
        if failed:
            logger.warning(f"Outbox tick finished: {sent} sent, {failed} failed")
        return sent

    async def _send(self, event: OutboxEvent) -> Optional[str]:
        """Sends one event. Returns None on success, otherwise the error to record."""
        try:
            # The producer call blocks until the broker acknowledges
            await asyncio.to_thread(
                self.broker.send_sync,
                self.topic,
                str(event.id),
                message_value(event),
                message_headers(event),
            )
        except Exception as e:
            error = safe_error_message(e)
            OUTBOX_PUBLISH_RESULTS.labels(topic=self.topic, status="failed").inc()
            logger.warning(
                f"Failed to publish outbox event {event.id} type={event.event_type} "
                f"attempt={(event.attempt_count or 0) + 1}: {error}"
            )
            return error

        OUTBOX_PUBLISH_RESULTS.labels(topic=self.topic, status="sent").inc()
        return None


def schedule_outbox_publisher(scheduler: AsyncIOScheduler, publisher: OutboxPublisher) -> None:
    """Registers the recurring publisher tick on the scheduler."""
    scheduler.add_job(
        publisher.publish_new_events,
        trigger=IntervalTrigger(seconds=settings.OUTBOX_PUBLISH_DELAY_MS / 1000.0),
        id=PUBLISHER_JOB_ID,
        name="Outbox Publisher",
        max_instances=1,
        coalesce=True,
        replace_existing=True,
    )
    logger.info(
        f"Scheduled outbox publisher every {settings.OUTBOX_PUBLISH_DELAY_MS} ms "
        f"(batch size {publisher.batch_size}, locking claim {publisher.lock_rows})"
    )
