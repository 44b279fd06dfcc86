# inference_events/kafka/kafka_setup.py
import logging
from typing import Optional

from confluent_kafka import Consumer, Producer

from ..core.config import settings

logger = logging.getLogger(__name__)

_kafka_producer = None

# --- Producer Factory ---
def get_kafka_producer() -> Producer:
    """Creates (once) and returns the shared Kafka producer."""
    global _kafka_producer
    if _kafka_producer is None:
        producer_config = {
            'bootstrap.servers': settings.KAFKA_BOOTSTRAP_SERVERS,
            'client.id': 'inference-outbox-publisher',
            # Broker-side acknowledgment from all in-sync replicas before a send counts
            'acks': 'all',
            'enable.idempotence': True,
            'message.timeout.ms': settings.KAFKA_SEND_TIMEOUT_MS,
        }
        _kafka_producer = Producer(producer_config)
        logger.info("Initialized Kafka producer.")
    return _kafka_producer

def close_kafka_producer(timeout: float = 5.0) -> None:
    global _kafka_producer
    if _kafka_producer is not None:
        remaining = _kafka_producer.flush(timeout)
        if remaining:
            logger.warning(f"{remaining} Kafka messages still queued at producer shutdown")
        _kafka_producer = None

# --- Consumer Factory ---
def get_kafka_consumer(group_id: Optional[str] = None) -> Consumer:
    """Creates a consumer with manual offset commits."""
    consumer_config = {
        'bootstrap.servers': settings.KAFKA_BOOTSTRAP_SERVERS,
        'group.id': group_id or settings.KAFKA_CONSUMER_GROUP_ID_INFERENCE,
        'auto.offset.reset': 'earliest',
        'enable.auto.commit': False,
        'enable.partition.eof': False,
    }
    return Consumer(consumer_config)
