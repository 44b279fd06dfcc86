import uuid

from sqlalchemy import Boolean, Column, DateTime, Integer, Numeric, String, Text, Uuid

from ..core.database import Base
from .outbox import utcnow


class Product(Base):
    __tablename__ = "products"

    id = Column(Uuid(as_uuid=True), primary_key=True, default=uuid.uuid4)
    name = Column(String(255), nullable=False)
    description = Column(Text, nullable=False)
    price = Column(Numeric(12, 2), nullable=False)
    image_url = Column(String, nullable=True)
    stock_level = Column(Integer, default=0, nullable=False)
    published = Column(Boolean, default=False, nullable=False)
    created_at = Column(DateTime(timezone=True), default=utcnow)
    updated_at = Column(DateTime(timezone=True), default=utcnow, onupdate=utcnow)
