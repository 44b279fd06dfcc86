import enum

from sqlalchemy import Column, DateTime, String, Uuid

from ..core.database import Base
from .outbox import utcnow


class ProcessedStatus(str, enum.Enum):
    PROCESSED = "PROCESSED"
    FAILED = "FAILED"


class ProcessedEvent(Base):
    """Idempotency marker written by the consumer. One row per event id, never overwritten."""
    __tablename__ = "processed_events"

    event_id = Column(Uuid(as_uuid=True), primary_key=True)
    processed_at = Column(DateTime(timezone=True), default=utcnow, nullable=False)
    status = Column(String(16), nullable=False)
    error = Column(String(800), nullable=True)  # set only when status is FAILED
