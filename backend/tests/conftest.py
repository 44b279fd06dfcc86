from datetime import datetime, timezone
from typing import Optional
from unittest.mock import MagicMock

import pytest
import pytest_asyncio
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine

from inference_events.core.database import Base
from inference_events.models import outbox, processed_event, product  # noqa: F401 (registers tables)


@pytest_asyncio.fixture
async def test_engine(tmp_path):
    """
    File backed SQLite engine, one database per test.
    A file is used instead of :memory: so every session sees the same tables.
    """
    engine = create_async_engine(f"sqlite+aiosqlite:///{tmp_path / 'test.db'}", echo=False)
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    yield engine
    await engine.dispose()


@pytest.fixture
def session_factory(test_engine):
    return async_sessionmaker(test_engine, class_=AsyncSession, expire_on_commit=False, autoflush=False)


@pytest.fixture
def base_time():
    return datetime(2024, 1, 1, 12, 0, 0, tzinfo=timezone.utc)


@pytest.fixture
def make_message():
    """Builds a stand-in for a confluent_kafka Message."""

    def _make(
        value,
        key: Optional[str] = None,
        headers=None,
        topic: str = "inference.events.v1",
        partition: int = 0,
        offset: int = 0,
    ):
        msg = MagicMock()
        msg.key.return_value = key.encode("utf-8") if isinstance(key, str) else key
        msg.value.return_value = value.encode("utf-8") if isinstance(value, str) else value
        msg.headers.return_value = headers
        msg.topic.return_value = topic
        msg.partition.return_value = partition
        msg.offset.return_value = offset
        msg.error.return_value = None
        return msg

    return _make
