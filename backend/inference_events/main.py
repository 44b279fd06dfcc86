import logging
from contextlib import asynccontextmanager

from apscheduler.schedulers.asyncio import AsyncIOScheduler
from fastapi import FastAPI, status
from fastapi.exceptions import HTTPException
from opentelemetry.instrumentation.fastapi import FastAPIInstrumentor
from prometheus_fastapi_instrumentator import Instrumentator
from sqlalchemy import select

from .api.api_v1.api import api_router
from .core.cache import connect_redis, disconnect_redis, get_redis_client
from .core.config import settings
from .core.database import SessionLocal
from .core.tracing import setup_tracing, shutdown_tracing
from .kafka.broker_client import KafkaBrokerClient
from .kafka.kafka_setup import close_kafka_producer, get_kafka_producer
from .kafka.startup_producer import send_startup_message
from .services.outbox_publisher import OutboxPublisher, schedule_outbox_publisher

logging.basicConfig(
    level=settings.LOG_LEVEL,
    format='%(asctime)s - %(name)s - %(levelname)s - %(message)s',
)
logger = logging.getLogger(__name__)

scheduler = AsyncIOScheduler()

# --- Lifespan Management ---
@asynccontextmanager
async def lifespan(app: FastAPI):
    # --- Startup ---
    logger.info("Application startup...")
    setup_tracing()
    await connect_redis()

    broker = KafkaBrokerClient(get_kafka_producer())
    if settings.KAFKA_STARTUP_PRODUCER_ENABLED:
        await send_startup_message(broker)

    publisher = OutboxPublisher(SessionLocal, broker)
    app.state.outbox_publisher = publisher
    if settings.OUTBOX_PUBLISHER_ENABLED:
        schedule_outbox_publisher(scheduler, publisher)
        scheduler.start()
        logger.info("Started outbox publisher scheduler.")
    else:
        logger.info("Outbox publisher disabled for this instance.")

    yield # Application runs here

    # --- Shutdown ---
    logger.info("Application shutdown...")
    if scheduler.running:
        scheduler.shutdown()
        logger.info("Scheduler shut down.")
    await publisher.wait_idle()
    close_kafka_producer()
    await disconnect_redis()
    shutdown_tracing()

# --- FastAPI App Initialization ---
app = FastAPI(
    title=settings.PROJECT_NAME,
    description="Product API with a transactional outbox for inference events",
    version="1.0.0",
    openapi_url=f"{settings.API_V1_STR}/openapi.json",
    lifespan=lifespan
)

app.include_router(api_router, prefix=settings.API_V1_STR)

# Instrument FastAPI for Prometheus and OpenTelemetry
Instrumentator().instrument(app).expose(app) # Prometheus /metrics endpoint
FastAPIInstrumentor.instrument_app(app) # OpenTelemetry tracing

# --- Health Check Endpoints ---
@app.get("/livez", tags=["Health"], status_code=status.HTTP_200_OK)
async def liveness_check():
    """Basic liveness check."""
    return {"status": "ok"}

@app.get("/readyz", tags=["Health"], status_code=status.HTTP_200_OK)
async def readiness_check():
    """Checks the database. Redis is optional and only reported."""
    details = {}

    try:
        async with SessionLocal() as db:
            await db.execute(select(1))
        details["database"] = "ready"
    except Exception as e:
        logger.error(f"Readiness check failed: Database connection error: {e}")
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail={"database": "unhealthy"},
        )

    details["redis"] = "ready" if get_redis_client() is not None else "disabled"
    publisher = getattr(app.state, "outbox_publisher", None)
    details["outbox_publisher"] = "running" if scheduler.running else "disabled"
    if publisher is not None:
        details["outbox_tick_in_progress"] = publisher.is_running
    return {"status": "ready", "details": details}
