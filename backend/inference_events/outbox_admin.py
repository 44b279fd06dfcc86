"""
Operator commands for the outbox.

    python -m inference_events.outbox_admin list-failed [--limit N]
    python -m inference_events.outbox_admin requeue [--ids ID ...] [--limit N] [--max-attempts N]

FAILED events are never retried automatically; `requeue` moves them back to NEW
so the running publisher sends them again.
"""
import argparse
import asyncio
import logging
import uuid
from typing import List, Optional, Sequence

from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from .core.config import settings
from .core.database import SessionLocal, engine
from .models.outbox import OutboxEvent
from .services.outbox_store import OutboxStore

logger = logging.getLogger(__name__)


def format_event(event: OutboxEvent) -> str:
    return (
        f"{event.id}  {event.event_type:<24} aggregate={event.aggregate_id} "
        f"attempts={event.attempt_count} created={event.created_at:%Y-%m-%dT%H:%M:%S} "
        f"error={event.last_error or '-'}"
    )


async def list_failed(session_factory: async_sessionmaker[AsyncSession], limit: int) -> List[OutboxEvent]:
    async with session_factory() as session:
        return await OutboxStore(session).list_failed(limit=limit)


async def requeue(
    session_factory: async_sessionmaker[AsyncSession],
    event_ids: Optional[Sequence[uuid.UUID]],
    limit: int,
    max_attempts: Optional[int],
) -> List[OutboxEvent]:
    async with session_factory() as session:
        async with session.begin():
            return await OutboxStore(session).requeue_failed(
                event_ids=event_ids, limit=limit, max_attempts=max_attempts
            )


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(prog="outbox_admin", description="Inspect and requeue failed outbox events")
    commands = parser.add_subparsers(dest="command", required=True)

    list_cmd = commands.add_parser("list-failed", help="show FAILED events, oldest first")
    list_cmd.add_argument("--limit", type=int, default=100)

    requeue_cmd = commands.add_parser("requeue", help="move FAILED events back to NEW")
    requeue_cmd.add_argument("--ids", type=uuid.UUID, nargs="+", help="only these event ids")
    requeue_cmd.add_argument("--limit", type=int, default=100)
    requeue_cmd.add_argument(
        "--max-attempts", type=int, default=None,
        help="skip events that already failed this many times",
    )
    return parser


async def run(args: argparse.Namespace, session_factory: async_sessionmaker[AsyncSession] = SessionLocal) -> int:
    if args.command == "list-failed":
        events = await list_failed(session_factory, args.limit)
        for event in events:
            print(format_event(event))
        print(f"{len(events)} failed event(s)")
    else:
        events = await requeue(session_factory, args.ids, args.limit, args.max_attempts)
        for event in events:
            print(f"requeued {event.id}")
        print(f"{len(events)} event(s) requeued")
    return len(events)


async def main(argv: Optional[Sequence[str]] = None) -> None:
    args = build_parser().parse_args(argv)
    try:
        await run(args)
    finally:
        await engine.dispose()


if __name__ == "__main__":
    logging.basicConfig(
        level=settings.LOG_LEVEL,
        format='%(asctime)s - %(name)s - %(levelname)s - %(message)s',
    )
    asyncio.run(main())
