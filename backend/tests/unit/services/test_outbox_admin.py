import argparse
import uuid

import pytest

from inference_events.models.outbox import OutboxStatus
from inference_events.outbox_admin import build_parser, run
from inference_events.services.outbox_store import OutboxStore


async def _seed_failed(session_factory, count):
    async with session_factory() as session:
        async with session.begin():
            store = OutboxStore(session)
            ids = []
            for i in range(count):
                event = await store.append("PRODUCT_CREATED", f"p-{i}", {"productId": f"p-{i}"})
                store.mark_failed(event, "broker unavailable")
                ids.append(event.id)
    return ids


def test_parser_reads_requeue_options():
    event_id = uuid.uuid4()
    args = build_parser().parse_args(["requeue", "--ids", str(event_id), "--max-attempts", "3"])
    assert args.ids == [event_id]
    assert args.max_attempts == 3
    assert args.limit == 100


def test_parser_requires_a_command():
    with pytest.raises(SystemExit):
        build_parser().parse_args([])


@pytest.mark.asyncio
async def test_list_failed_prints_events(session_factory, capsys):
    ids = await _seed_failed(session_factory, 2)

    count = await run(argparse.Namespace(command="list-failed", limit=10), session_factory)

    out = capsys.readouterr().out
    assert count == 2
    assert str(ids[0]) in out
    assert "broker unavailable" in out


@pytest.mark.asyncio
async def test_requeue_moves_selected_events_to_new(session_factory, capsys):
    # Arrange
    ids = await _seed_failed(session_factory, 2)
    args = build_parser().parse_args(["requeue", "--ids", str(ids[1])])

    # Act
    count = await run(args, session_factory)

    # Assert
    assert count == 1
    async with session_factory() as session:
        store = OutboxStore(session)
        assert (await store.get(ids[0])).status == OutboxStatus.FAILED.value
        assert (await store.get(ids[1])).status == OutboxStatus.NEW.value
    assert f"requeued {ids[1]}" in capsys.readouterr().out
