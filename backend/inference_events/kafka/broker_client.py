# inference_events/kafka/broker_client.py

import logging
from typing import List, Optional, Tuple

from confluent_kafka import KafkaError, KafkaException, Producer

from ..core.config import settings
from ..core.exceptions import (
    BrokerSendError,
    BrokerTimeoutError,
    BrokerUnavailableError,
    PayloadRejectedError,
)
from ..core.metrics import KAFKA_ERRORS, KAFKA_MESSAGES

logger = logging.getLogger(__name__)

Headers = List[Tuple[str, bytes]]

_TIMEOUT_CODES = {
    KafkaError._MSG_TIMED_OUT,
    KafkaError._TIMED_OUT,
    KafkaError.REQUEST_TIMED_OUT,
}
_UNAVAILABLE_CODES = {
    KafkaError._TRANSPORT,
    KafkaError._ALL_BROKERS_DOWN,
    KafkaError.LEADER_NOT_AVAILABLE,
    KafkaError.UNKNOWN_TOPIC_OR_PART,
}
_REJECTED_CODES = {
    KafkaError.MSG_SIZE_TOO_LARGE,
    KafkaError.INVALID_MSG,
    KafkaError.TOPIC_AUTHORIZATION_FAILED,
}


def error_from_kafka(err: KafkaError) -> BrokerSendError:
    """Maps a librdkafka error to the broker failure reasons."""
    code = err.code()
    message = f"{err.name()}: {err.str()}"
    if code in _TIMEOUT_CODES:
        return BrokerTimeoutError(message)
    if code in _REJECTED_CODES:
        return PayloadRejectedError(message)
    if code in _UNAVAILABLE_CODES or err.retriable():
        return BrokerUnavailableError(message)
    return BrokerSendError(message)


class KafkaBrokerClient:
    """
    Synchronous send on top of the confluent-kafka producer.

    `send_sync` blocks until the delivery report for the message arrives or the
    timeout elapses. It never retries; retry policy belongs to the caller.
    """

    def __init__(self, producer: Producer, timeout_ms: Optional[int] = None):
        self.producer = producer
        self.timeout_s = (timeout_ms or settings.KAFKA_SEND_TIMEOUT_MS) / 1000.0

    def send_sync(self, topic: str, key: str, payload, headers: Optional[Headers] = None) -> None:
        value = payload.encode("utf-8") if isinstance(payload, str) else payload
        delivery = {}

        def on_delivery(err, msg):
            delivery["error"] = err
            delivery["message"] = msg

        try:
            self.producer.produce(
                topic,
                key=key,
                value=value,
                headers=headers,
                on_delivery=on_delivery,
            )
        except BufferError as e:
            KAFKA_ERRORS.labels(operation="produce", topic=topic).inc()
            raise BrokerUnavailableError(f"Local producer queue is full: {e}") from e
        except KafkaException as e:
            KAFKA_ERRORS.labels(operation="produce", topic=topic).inc()
            raise error_from_kafka(e.args[0]) from e
        except (TypeError, ValueError) as e:
            KAFKA_ERRORS.labels(operation="produce", topic=topic).inc()
            raise PayloadRejectedError(f"Producer rejected message: {e}") from e

        self.producer.flush(self.timeout_s)

        if "error" not in delivery:
            KAFKA_ERRORS.labels(operation="produce", topic=topic).inc()
            raise BrokerTimeoutError(
                f"No acknowledgment for key={key} within {self.timeout_s:.1f}s"
            )
        if delivery["error"] is not None:
            KAFKA_ERRORS.labels(operation="produce", topic=topic).inc()
            raise error_from_kafka(delivery["error"])

        KAFKA_MESSAGES.labels(operation="produce", topic=topic).inc()
        msg = delivery["message"]
        logger.debug(
            f"Delivered key={key} to {topic} partition={msg.partition()} offset={msg.offset()}"
        )
