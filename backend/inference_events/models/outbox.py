import enum
import uuid
from datetime import datetime, timezone

from sqlalchemy import JSON, Column, DateTime, Integer, String, Uuid
from sqlalchemy.dialects.postgresql import JSONB

from ..core.database import Base


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


class OutboxStatus(str, enum.Enum):
    NEW = "NEW"
    PROCESSING = "PROCESSING"
    SENT = "SENT"
    FAILED = "FAILED"


class OutboxEvent(Base):
    """
    Outbox pattern model for reliable message delivery.
    Rows are written in the same transaction as the business change and
    relayed to Kafka by the OutboxPublisher.
    """
    __tablename__ = "outbox_events"

    id = Column(Uuid(as_uuid=True), primary_key=True, default=uuid.uuid4)
    event_type = Column(String(128), nullable=False)
    aggregate_id = Column(String(128), nullable=False, index=True)
    payload = Column(JSON().with_variant(JSONB(), "postgresql"), nullable=False)
    status = Column(String(16), default=OutboxStatus.NEW.value, nullable=False, index=True)
    attempt_count = Column(Integer, default=0, nullable=False)
    last_error = Column(String(800), nullable=True)
    created_at = Column(DateTime(timezone=True), default=utcnow, nullable=False, index=True)
    sent_at = Column(DateTime(timezone=True), nullable=True)

    def __repr__(self) -> str:
        return f"<OutboxEvent id={self.id} type={self.event_type} status={self.status}>"
