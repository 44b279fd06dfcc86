from typing import Any, Optional

from pydantic import Field, field_validator
from pydantic_settings import BaseSettings


class Settings(BaseSettings):
    API_V1_STR: str = "/api/v1"
    PROJECT_NAME: str = "Inference Events"
    LOG_LEVEL: str = "INFO"

    POSTGRES_SERVER: str = "localhost"
    POSTGRES_PORT: int = 5432
    POSTGRES_USER: str = "postgres"
    POSTGRES_PASSWORD: str = "password"
    POSTGRES_DB: str = "inference_events"
    SQLALCHEMY_DATABASE_URI: Optional[str] = Field(default=None, validate_default=True)

    @field_validator("SQLALCHEMY_DATABASE_URI", mode="before")
    def assemble_db_connection(cls, v: Optional[str], info) -> Any:
        if isinstance(v, str):
            return v
        values = info.data
        return (
            f"postgresql+asyncpg://{values.get('POSTGRES_USER')}:{values.get('POSTGRES_PASSWORD')}"
            f"@{values.get('POSTGRES_SERVER')}:{values.get('POSTGRES_PORT')}/{values.get('POSTGRES_DB') or ''}"
        )

    # Kafka settings
    KAFKA_BOOTSTRAP_SERVERS: str = "kafka:9092"
    KAFKA_TOPIC_INFERENCE_EVENTS: str = "inference.events.v1"
    KAFKA_CONSUMER_GROUP_ID_INFERENCE: str = "inference-consumer-v1"
    KAFKA_SEND_TIMEOUT_MS: int = 10000
    KAFKA_CONSUMER_POLL_TIMEOUT_S: float = 1.0
    KAFKA_CONSUMER_ERROR_BACKOFF_S: float = 5.0

    # One-shot message sent on startup to check broker connectivity
    KAFKA_STARTUP_PRODUCER_ENABLED: bool = False
    KAFKA_STARTUP_PRODUCER_TOPIC: Optional[str] = None

    # Outbox publisher settings
    OUTBOX_PUBLISHER_ENABLED: bool = True
    OUTBOX_BATCH_SIZE: int = 20  # max events per tick
    OUTBOX_PUBLISH_DELAY_MS: int = 2000  # tick interval
    # Lock claimed rows (FOR UPDATE SKIP LOCKED) when more than one publisher runs
    OUTBOX_CLAIM_WITH_LOCK: bool = False

    @field_validator("OUTBOX_BATCH_SIZE", "OUTBOX_PUBLISH_DELAY_MS")
    def must_be_positive(cls, v: int) -> int:
        if v <= 0:
            raise ValueError("must be a positive integer")
        return v

    # Redis settings
    REDIS_URL: str = "redis://redis:6379/0"
    PRODUCT_CACHE_TTL_SECONDS: int = 60

    # Observability
    METRICS_PORT: int = 8001
    TRACING_ENABLED: bool = False
    OTEL_SERVICE_NAME: str = "inference-events"
    OTLP_ENDPOINT: str = "http://localhost:4317"
    OTLP_INSECURE: bool = True

    model_config = {
        "case_sensitive": True,
        "env_file": ".env",
        "extra": "ignore",
    }


settings = Settings()
