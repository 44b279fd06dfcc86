# inference_events/kafka/startup_producer.py
import asyncio
import json
import logging
import uuid
from typing import Optional

from ..core.config import settings
from ..core.exceptions import BrokerSendError
from ..models.outbox import utcnow
from .broker_client import KafkaBrokerClient

logger = logging.getLogger(__name__)

STARTUP_EVENT_TYPE = "SERVICE_STARTED"


async def send_startup_message(broker: KafkaBrokerClient, topic: Optional[str] = None) -> bool:
    """
    Sends one message to check that the broker is reachable.

    Never raises: a failed check is logged and the service keeps starting, the
    outbox publisher retries its own sends anyway.
    """
    topic = topic or settings.KAFKA_STARTUP_PRODUCER_TOPIC or settings.KAFKA_TOPIC_INFERENCE_EVENTS
    event_id = str(uuid.uuid4())
    payload = json.dumps({
        "event_id": event_id,
        "event_type": STARTUP_EVENT_TYPE,
        "service": settings.OTEL_SERVICE_NAME,
        "timestamp": utcnow().isoformat(),
    })
    try:
        await asyncio.to_thread(
            broker.send_sync, topic, event_id, payload, [("event_type", STARTUP_EVENT_TYPE.encode("utf-8"))]
        )
    except BrokerSendError as e:
        logger.warning(f"Startup message to {topic} failed ({e.reason}): {e}")
        return False
    logger.info(f"Startup message {event_id} delivered to {topic}")
    return True
