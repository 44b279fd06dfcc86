# inference_events/kafka/consumers.py

import asyncio
import enum
import logging
from typing import Optional
from uuid import UUID

from confluent_kafka import Consumer, KafkaError, KafkaException, TopicPartition
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from ..core.config import settings
from ..core.exceptions import EventDeserializationError, EventHandlingError, safe_error_message
from ..core.metrics import CONSUMER_EVENTS, CONSUMER_PROCESSING_DURATION, KAFKA_ERRORS, KAFKA_MESSAGES
from ..core.tracing import get_tracer
from ..models.processed_event import ProcessedEvent, ProcessedStatus
from ..schemas.events import EventEnvelope, deserialize_envelope
from ..services.dedup_store import DedupStore
from ..services.event_handlers import EventHandler

logger = logging.getLogger(__name__)


class ConsumeOutcome(str, enum.Enum):
    PROCESSED = "processed"
    FAILED = "failed"  # handler returned a typed failure
    DUPLICATE = "duplicate"
    DUPLICATE_FAILED = "duplicate_failed"  # an earlier delivery was recorded as FAILED
    POISON = "poison"  # could not be deserialized, recorded as FAILED
    POISON_UNKEYED = "poison_unkeyed"  # could not be deserialized nor identified


class InferenceEventsConsumer:
    """
    Idempotent consumer for the inference events topic.

    Messages are processed one at a time. For each message the handler's side
    effects and the dedup record commit in one transaction, and the offset is
    committed only after that transaction. Unexpected errors roll back, leave
    the offset uncommitted and rewind the partition so the message comes back.
    """

    def __init__(
        self,
        consumer: Consumer,
        session_factory: async_sessionmaker[AsyncSession],
        handler: EventHandler,
        topic: Optional[str] = None,
        poll_timeout: Optional[float] = None,
        error_backoff: Optional[float] = None,
    ):
        self.consumer = consumer
        self.session_factory = session_factory
        self.handler = handler
        self.topic = topic or settings.KAFKA_TOPIC_INFERENCE_EVENTS
        self.poll_timeout = poll_timeout if poll_timeout is not None else settings.KAFKA_CONSUMER_POLL_TIMEOUT_S
        self.error_backoff = error_backoff if error_backoff is not None else settings.KAFKA_CONSUMER_ERROR_BACKOFF_S
        self._stopping = asyncio.Event()

    def stop(self) -> None:
        """Asks the loop to exit once the in-flight message is committed or rolled back."""
        self._stopping.set()

    async def run(self) -> None:
        self.consumer.subscribe([self.topic])
        logger.info(f"Subscribed to Kafka topic: {self.topic}")
        poll = None
        try:
            while not self._stopping.is_set():
                poll = asyncio.ensure_future(asyncio.to_thread(self.consumer.poll, self.poll_timeout))
                # Shielded so a cancelled run still knows when the worker thread leaves poll()
                msg = await asyncio.shield(poll)
                if msg is None:
                    continue

                if msg.error():
                    await self._handle_kafka_error(msg.error())
                    continue

                await self.handle_message(msg)

        except asyncio.CancelledError:
            logger.info("Inference events consumer task cancelled.")
            raise
        finally:
            if poll is not None and not poll.done():
                # close() must not run while poll() is still executing in the worker thread
                await asyncio.wait([poll])
            logger.info("Closing inference events Kafka consumer.")
            # Leaves the consumer group; offsets were committed per message
            self.consumer.close()

    async def handle_message(self, msg) -> Optional[ConsumeOutcome]:
        """Processes one message and commits its offset. Returns None when the message will be redelivered."""
        KAFKA_MESSAGES.labels(operation="consume", topic=msg.topic()).inc()
        try:
            outcome = await self.process_message(msg)
        except Exception as e:
            CONSUMER_EVENTS.labels(outcome="error").inc()
            logger.exception(
                f"Error processing message partition={msg.partition()} offset={msg.offset()}, "
                f"it will be redelivered: {e}"
            )
            self._rewind(msg)
            await self._backoff()
            return None

        CONSUMER_EVENTS.labels(outcome=outcome.value).inc()
        await self._commit(msg)
        return outcome

    async def process_message(self, msg) -> ConsumeOutcome:
        with get_tracer().start_as_current_span("inference_events.consume") as span, \
                CONSUMER_PROCESSING_DURATION.time():
            span.set_attribute("messaging.kafka.partition", msg.partition())
            span.set_attribute("messaging.kafka.offset", msg.offset())
            try:
                envelope = deserialize_envelope(msg)
            except EventDeserializationError as e:
                return await self._record_poison(msg, e)
            span.set_attribute("inference_events.event_id", str(envelope.event_id))
            return await self._process_envelope(envelope)

    async def _process_envelope(self, envelope: EventEnvelope) -> ConsumeOutcome:
        try:
            async with self.session_factory() as session:
                async with session.begin():
                    dedup = DedupStore(session)
                    existing = await dedup.find_processed(envelope.event_id)
                    if existing is not None:
                        return self._duplicate(envelope.event_id, existing)

                    await self.handler(envelope, session)
                    await dedup.record_processed(envelope.event_id)
        except EventHandlingError as e:
            # The handler's writes were rolled back with the transaction
            logger.warning(f"Handler failed for event {envelope.event_id} type={envelope.event_type}: {e}")
            return await self._record_failure(envelope.event_id, safe_error_message(e), ConsumeOutcome.FAILED)
        except IntegrityError:
            if await self._already_recorded(envelope.event_id):
                logger.info(f"Event {envelope.event_id} was recorded concurrently, treating as duplicate")
                return ConsumeOutcome.DUPLICATE
            raise

        logger.info(f"Processed event {envelope.event_id} type={envelope.event_type}")
        return ConsumeOutcome.PROCESSED

    async def _record_poison(self, msg, error: EventDeserializationError) -> ConsumeOutcome:
        if error.event_id is None:
            logger.error(
                f"Dropping undeserializable message without event id from {msg.topic()} "
                f"partition={msg.partition()} offset={msg.offset()}: {error}"
            )
            return ConsumeOutcome.POISON_UNKEYED

        logger.error(f"Failed to deserialize event {error.event_id}: {error}")
        return await self._record_failure(error.event_id, safe_error_message(error), ConsumeOutcome.POISON)

    async def _record_failure(self, event_id: UUID, error: str, outcome: ConsumeOutcome) -> ConsumeOutcome:
        try:
            async with self.session_factory() as session:
                async with session.begin():
                    dedup = DedupStore(session)
                    existing = await dedup.find_processed(event_id)
                    if existing is not None:
                        return self._duplicate(event_id, existing)
                    await dedup.record_failed(event_id, error)
        except IntegrityError:
            if await self._already_recorded(event_id):
                return ConsumeOutcome.DUPLICATE
            raise
        return outcome

    async def _already_recorded(self, event_id: UUID) -> bool:
        async with self.session_factory() as session:
            return await DedupStore(session).find_processed(event_id) is not None

    def _duplicate(self, event_id: UUID, existing: ProcessedEvent) -> ConsumeOutcome:
        if existing.status == ProcessedStatus.FAILED.value:
            # A FAILED record is permanent too; the event is not retried
            logger.warning(f"Skipping event {event_id}: earlier delivery failed with {existing.error!r}")
            return ConsumeOutcome.DUPLICATE_FAILED
        logger.info(f"Skipping already processed event {event_id}")
        return ConsumeOutcome.DUPLICATE

    async def _commit(self, msg) -> None:
        try:
            await asyncio.to_thread(self.consumer.commit, message=msg, asynchronous=False)
        except KafkaException as e:
            # The dedup record makes the eventual redelivery a no-op
            KAFKA_ERRORS.labels(operation="commit", topic=msg.topic()).inc()
            logger.error(f"Failed to commit offset {msg.offset()} on partition {msg.partition()}: {e}")

    def _rewind(self, msg) -> None:
        try:
            self.consumer.seek(TopicPartition(msg.topic(), msg.partition(), msg.offset()))
        except KafkaException as e:
            KAFKA_ERRORS.labels(operation="seek", topic=msg.topic()).inc()
            logger.error(f"Failed to rewind partition {msg.partition()} to offset {msg.offset()}: {e}")

    async def _handle_kafka_error(self, error: KafkaError) -> None:
        if error.code() == KafkaError._PARTITION_EOF:
            return
        KAFKA_ERRORS.labels(operation="consume", topic=self.topic).inc()
        if error.fatal():
            raise KafkaException(error)
        logger.error(f"Kafka consumer error: {error}")
        await self._backoff()

    async def _backoff(self) -> None:
        try:
            await asyncio.wait_for(self._stopping.wait(), timeout=self.error_backoff)
        except asyncio.TimeoutError:
            pass
