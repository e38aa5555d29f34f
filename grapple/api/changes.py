"""
Server-sent change notifications.

A client opens ``GET /changes/stream`` and receives every committed change
relevant to it as an SSE frame::

    event: votes
    data: {"table": "votes", "op": "INSERT", "record": {...}}

Relevance is fixed when the stream opens: proposals and votes of the user's
groups, the user's own room admissions, and messages of rooms the user was
in at that moment. Clients reconnect to pick up new groups or rooms.
"""

import asyncio
import json
import logging
from collections.abc import AsyncIterator, Iterable
from uuid import UUID

from fastapi import APIRouter
from fastapi.responses import StreamingResponse
from sqlalchemy import select

from ..core import (
    BearerCredentials,
    ChangeEvent,
    ChangeFeed,
    ChangeFeedDep,
    ChangeFilter,
    ChangeOp,
    SessionFactoryDep,
    authenticate,
    unit_of_work,
)
from ..models import EventRoomParticipant
from ..services import MembershipDirectory

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/changes", tags=["changes"])

KEEP_ALIVE_SECONDS = 15.0


def user_change_filters(
    user_id: UUID,
    group_ids: Iterable[UUID],
    event_room_ids: Iterable[UUID] = (),
) -> list[ChangeFilter]:
    group_ids = list(group_ids)
    event_room_ids = list(event_room_ids)
    filters = [
        ChangeFilter.build("proposals", column="group_id", values=group_ids),
        ChangeFilter.build("votes", column="group_id", values=group_ids),
        ChangeFilter.build("event_rooms", column="group_id", values=group_ids),
        ChangeFilter.build(
            "event_room_participants",
            ops=[ChangeOp.INSERT],
            column="user_id",
            values=[user_id],
        ),
    ]
    if event_room_ids:
        filters.append(
            ChangeFilter.build(
                "event_messages",
                ops=[ChangeOp.INSERT],
                column="event_room_id",
                values=event_room_ids,
            )
        )
    return filters


def format_sse(event: ChangeEvent) -> str:
    return f"event: {event.table}\ndata: {json.dumps(event.to_dict())}\n\n"


async def stream_changes(
    feed: ChangeFeed,
    filters: Iterable[ChangeFilter],
    keep_alive: float = KEEP_ALIVE_SECONDS,
) -> AsyncIterator[str]:
    """Yield SSE frames for matching changes until the consumer stops."""
    queue: asyncio.Queue[ChangeEvent] = asyncio.Queue()
    unsubscribes = [feed.on_change(f, queue.put_nowait) for f in filters]
    try:
        while True:
            try:
                event = await asyncio.wait_for(queue.get(), timeout=keep_alive)
            except asyncio.TimeoutError:
                yield ": keep-alive\n\n"
                continue
            yield format_sse(event)
    finally:
        for unsubscribe in unsubscribes:
            unsubscribe()
        logger.debug("Change stream closed")


@router.get("/stream", summary="Stream committed changes (SSE)")
async def stream(
    credentials: BearerCredentials,
    session_factory: SessionFactoryDep,
    feed: ChangeFeedDep,
) -> StreamingResponse:
    """
    Open a change stream for the caller.

    The caller and the stream's scope are resolved in a short unit of work
    that ends before the response starts, so an open stream holds no
    database connection.
    """
    async with unit_of_work(session_factory, feed) as session:
        current_user = await authenticate(session, credentials)
        group_ids = await MembershipDirectory(session).group_ids_for_user(current_user.id)
        result = await session.execute(
            select(EventRoomParticipant.event_room_id).where(
                EventRoomParticipant.user_id == current_user.id
            )
        )
        event_room_ids = result.scalars().all()

    filters = user_change_filters(current_user.id, group_ids, event_room_ids)
    return StreamingResponse(
        stream_changes(feed, filters),
        media_type="text/event-stream",
        headers={"Cache-Control": "no-cache", "X-Accel-Buffering": "no"},
    )
