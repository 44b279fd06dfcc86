"""
Standalone inference events consumer process.

    python -m inference_events.run_consumer
"""
import asyncio
import logging
import signal

from .core.config import settings
from .core.database import SessionLocal, engine
from .core.metrics import start_metrics_server
from .core.tracing import setup_tracing, shutdown_tracing
from .kafka.consumers import InferenceEventsConsumer
from .kafka.kafka_setup import get_kafka_consumer
from .services.event_handlers import build_default_registry

logging.basicConfig(
    level=settings.LOG_LEVEL,
    format='%(asctime)s - %(name)s - %(levelname)s - %(message)s',
)
logger = logging.getLogger(__name__)


async def main():
    logger.info("Starting inference events consumer...")
    setup_tracing()
    start_metrics_server(settings.METRICS_PORT)

    consumer = InferenceEventsConsumer(
        consumer=get_kafka_consumer(),
        session_factory=SessionLocal,
        handler=build_default_registry(),
    )

    loop = asyncio.get_running_loop()
    for sig in (signal.SIGINT, signal.SIGTERM):
        loop.add_signal_handler(sig, consumer.stop)

    try:
        await consumer.run()
    finally:
        logger.info("Shutting down inference events consumer...")
        await engine.dispose()
        shutdown_tracing()


if __name__ == "__main__":
    asyncio.run(main())
