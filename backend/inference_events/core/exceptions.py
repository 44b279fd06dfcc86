from typing import Optional
from uuid import UUID

# Longest diagnostic string persisted in last_error / error columns
MAX_ERROR_LENGTH = 800


def truncate_error(message: Optional[str], limit: int = MAX_ERROR_LENGTH) -> Optional[str]:
    if message is None:
        return None
    return message[:limit]


def safe_error_message(exc: BaseException) -> str:
    """Returns the exception message, or its class name when it has none, truncated for storage."""
    msg = str(exc)
    if not msg or not msg.strip():
        msg = type(exc).__name__
    return truncate_error(msg)


class InferenceEventsError(Exception):
    """Base class for errors raised by the outbox pipeline."""


class OutboxSerializationError(InferenceEventsError):
    """The outbox payload could not be encoded; the business transaction must abort."""

    def __init__(self, event_type: str, cause: Exception):
        super().__init__(f"Failed to serialize outbox payload for event_type={event_type}: {cause}")
        self.event_type = event_type


class BrokerSendError(InferenceEventsError):
    """A message was not acknowledged by the broker."""

    reason = "error"


class BrokerTimeoutError(BrokerSendError):
    reason = "timeout"


class BrokerUnavailableError(BrokerSendError):
    reason = "unavailable"


class PayloadRejectedError(BrokerSendError):
    reason = "rejected"


class EventDeserializationError(InferenceEventsError):
    """An inbound message could not be turned into an event envelope."""

    def __init__(self, message: str, event_id: Optional[UUID] = None):
        super().__init__(message)
        self.event_id = event_id


class EventHandlingError(InferenceEventsError):
    """Typed failure returned by a business handler; recorded as a FAILED processed event."""


class ProductNotFoundError(InferenceEventsError):
    def __init__(self, product_id: UUID):
        super().__init__(f"product with id [{product_id}] not found")
        self.product_id = product_id
