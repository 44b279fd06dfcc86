import uuid

import pytest
from sqlalchemy.exc import IntegrityError

from inference_events.core.exceptions import MAX_ERROR_LENGTH
from inference_events.models.processed_event import ProcessedStatus
from inference_events.services.dedup_store import DedupStore


@pytest.mark.asyncio
async def test_find_processed_returns_none_for_unknown_event(session_factory):
    async with session_factory() as session:
        assert await DedupStore(session).find_processed(uuid.uuid4()) is None


@pytest.mark.asyncio
async def test_record_processed_is_visible_after_commit(session_factory):
    event_id = uuid.uuid4()
    async with session_factory() as session:
        async with session.begin():
            await DedupStore(session).record_processed(event_id)

    async with session_factory() as session:
        record = await DedupStore(session).find_processed(event_id)
    assert record.status == ProcessedStatus.PROCESSED.value
    assert record.error is None
    assert record.processed_at is not None


@pytest.mark.asyncio
async def test_record_failed_truncates_error(session_factory):
    event_id = uuid.uuid4()
    async with session_factory() as session:
        async with session.begin():
            await DedupStore(session).record_failed(event_id, "e" * 2000)

    async with session_factory() as session:
        record = await DedupStore(session).find_processed(event_id)
    assert record.status == ProcessedStatus.FAILED.value
    assert len(record.error) == MAX_ERROR_LENGTH


@pytest.mark.asyncio
async def test_second_record_for_same_event_conflicts(session_factory):
    # Arrange
    event_id = uuid.uuid4()
    async with session_factory() as session:
        async with session.begin():
            await DedupStore(session).record_processed(event_id)

    # Act / Assert
    with pytest.raises(IntegrityError):
        async with session_factory() as session:
            async with session.begin():
                await DedupStore(session).record_failed(event_id, "late failure")
