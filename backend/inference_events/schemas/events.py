import json
from typing import Any, Dict, List, Optional, Sequence, Tuple
from uuid import UUID

from pydantic import BaseModel, ConfigDict, ValidationError

from ..core.exceptions import EventDeserializationError


# Envelope built by the consumer from one Kafka message
class EventEnvelope(BaseModel):
    event_id: UUID
    event_type: Optional[str] = None
    aggregate_id: Optional[str] = None
    payload: Dict[str, Any]
    topic: Optional[str] = None
    partition: Optional[int] = None
    offset: Optional[int] = None


# Event emitted after the inference service answers a recommendations request
class InferenceServedEvent(BaseModel):
    model_config = ConfigDict(extra="ignore")

    event_id: str
    event_type: str
    user_id: str
    latency_ms: Optional[int] = None
    recommendations: List[int] = []


# Payload of PRODUCT_* events written by the product service
class ProductEventPayload(BaseModel):
    model_config = ConfigDict(extra="allow")

    productId: UUID


def _decode(raw) -> Optional[str]:
    if raw is None:
        return None
    if isinstance(raw, bytes):
        return raw.decode("utf-8")
    return str(raw)


def parse_event_id(raw_key) -> Optional[UUID]:
    """Returns the message key as a UUID, or None when it is missing or malformed."""
    try:
        key = _decode(raw_key)
        return UUID(key) if key else None
    except (UnicodeDecodeError, ValueError):
        return None


def _header(headers: Optional[Sequence[Tuple[str, bytes]]], name: str) -> Optional[str]:
    for key, value in headers or ():
        if key == name and value is not None:
            return _decode(value)
    return None


def deserialize_envelope(msg) -> EventEnvelope:
    """
    Builds an EventEnvelope from a confluent-kafka message.

    The event id comes from the message key (the outbox id), falling back to an
    `event_id` field in the body. Raises EventDeserializationError carrying
    whatever event id could be recovered.
    """
    event_id = parse_event_id(msg.key())
    try:
        body = json.loads(_decode(msg.value()) or "")
    except (UnicodeDecodeError, ValueError) as e:
        raise EventDeserializationError(f"Message value is not valid JSON: {e}", event_id) from e

    if not isinstance(body, dict):
        raise EventDeserializationError(
            f"Message value must be a JSON object, got {type(body).__name__}", event_id
        )

    if event_id is None:
        event_id = parse_event_id(body.get("event_id"))
    if event_id is None:
        raise EventDeserializationError("Message carries no valid event id")

    headers = msg.headers()
    try:
        return EventEnvelope(
            event_id=event_id,
            event_type=_header(headers, "event_type") or body.get("event_type"),
            aggregate_id=_header(headers, "aggregate_id") or body.get("aggregate_id"),
            payload=body,
            topic=msg.topic(),
            partition=msg.partition(),
            offset=msg.offset(),
        )
    except (ValidationError, UnicodeDecodeError) as e:
        raise EventDeserializationError(f"Invalid event envelope: {e}", event_id) from e
