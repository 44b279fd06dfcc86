import logging
from typing import Awaitable, Callable, Dict, Optional

from pydantic import ValidationError
from sqlalchemy.ext.asyncio import AsyncSession

from ..core.exceptions import EventHandlingError
from ..schemas.events import EventEnvelope, InferenceServedEvent, ProductEventPayload

logger = logging.getLogger(__name__)

# Business handling invoked by the consumer. Writes go through the given session,
# which the consumer commits together with the dedup record. Handlers raise
# EventHandlingError for a failure that should be recorded instead of retried,
# and never acknowledge messages or touch the dedup table themselves.
EventHandler = Callable[[EventEnvelope, AsyncSession], Awaitable[None]]

INFERENCE_SERVED = "INFERENCE_SERVED"
PRODUCT_EVENT_TYPES = (
    "PRODUCT_CREATED",
    "PRODUCT_CREATED_WITH_IMAGE",
    "PRODUCT_UPDATED",
    "PRODUCT_DELETED",
)


class EventHandlerRegistry:
    """Dispatches envelopes to the handler registered for their event type."""

    def __init__(self, default_handler: Optional[EventHandler] = None):
        self._handlers: Dict[str, EventHandler] = {}
        self._default_handler = default_handler

    def register(self, event_type: str, handler: EventHandler) -> None:
        self._handlers[event_type] = handler
        logger.info(f"Registered handler for event type: {event_type}")

    def handler_for(self, event_type: Optional[str]) -> Optional[EventHandler]:
        if event_type is None:
            return self._default_handler
        return self._handlers.get(event_type, self._default_handler)

    async def __call__(self, envelope: EventEnvelope, session: AsyncSession) -> None:
        handler = self.handler_for(envelope.event_type)
        if handler is None:
            logger.info(
                f"No handler for event type {envelope.event_type!r}, event {envelope.event_id} "
                f"is recorded as processed"
            )
            return
        await handler(envelope, session)


async def handle_inference_served(envelope: EventEnvelope, session: AsyncSession) -> None:
    try:
        evt = InferenceServedEvent.model_validate(envelope.payload)
    except ValidationError as e:
        raise EventHandlingError(f"Invalid inference event payload: {e}") from e

    logger.info(
        f"Inference event received: event_id={evt.event_id} type={evt.event_type} "
        f"user_id={evt.user_id} latency_ms={evt.latency_ms} recs={evt.recommendations} "
        f"topic={envelope.topic} partition={envelope.partition} offset={envelope.offset}"
    )


async def handle_product_event(envelope: EventEnvelope, session: AsyncSession) -> None:
    try:
        product = ProductEventPayload.model_validate(envelope.payload)
    except ValidationError as e:
        raise EventHandlingError(f"Invalid product event payload: {e}") from e

    logger.info(
        f"Product event received: event_id={envelope.event_id} type={envelope.event_type} "
        f"product_id={product.productId} partition={envelope.partition} offset={envelope.offset}"
    )


def build_default_registry() -> EventHandlerRegistry:
    registry = EventHandlerRegistry()
    registry.register(INFERENCE_SERVED, handle_inference_served)
    for event_type in PRODUCT_EVENT_TYPES:
        registry.register(event_type, handle_product_event)
    return registry
