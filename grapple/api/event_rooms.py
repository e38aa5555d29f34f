"""API routes for event rooms and their messages."""

from typing import Annotated
from uuid import UUID

from fastapi import APIRouter, Depends, Query, status

from ..core import CurrentUserDep, SessionDep
from ..schemas import (
    DirectEventCreate,
    EventMessageCreate,
    EventMessageResponse,
    EventRoomDetails,
    EventRoomMessages,
    EventRoomResponse,
    JoinResult,
    ParticipantResponse,
    PublicEventDetails,
    TimeRemainingResponse,
)
from ..services import EventRoomService

router = APIRouter(prefix="/event-rooms", tags=["event-rooms"])


def get_event_room_service(session: SessionDep) -> EventRoomService:
    return EventRoomService(session)


EventRoomServiceDep = Annotated[EventRoomService, Depends(get_event_room_service)]


# =============================================================================
# ROOMS
# =============================================================================


@router.post(
    "",
    response_model=EventRoomResponse,
    status_code=status.HTTP_201_CREATED,
    summary="Create an event directly",
    description="Creates an event room without a vote. You are its first participant.",
)
async def create_direct_event(
    data: DirectEventCreate,
    current_user: CurrentUserDep,
    service: EventRoomServiceDep,
):
    return await service.create_direct_event(current_user.id, data)


@router.get("", response_model=list[EventRoomDetails])
async def list_my_event_rooms(
    current_user: CurrentUserDep,
    service: EventRoomServiceDep,
    include_expired: bool = Query(True),
):
    """Rooms you participate in, newest first."""
    return await service.list_user_event_rooms(current_user.id, include_expired=include_expired)


@router.get("/{event_room_id}", response_model=EventRoomResponse)
async def get_event_room(
    event_room_id: UUID,
    current_user: CurrentUserDep,
    service: EventRoomServiceDep,
):
    return await service.get_event_room(event_room_id, current_user.id)


@router.get("/{event_room_id}/details", response_model=EventRoomDetails)
async def get_event_room_details(
    event_room_id: UUID,
    current_user: CurrentUserDep,
    service: EventRoomServiceDep,
):
    return await service.get_event_room_details(event_room_id, current_user.id)


@router.get("/{event_room_id}/time-remaining", response_model=TimeRemainingResponse)
async def get_time_remaining(
    event_room_id: UUID,
    current_user: CurrentUserDep,
    service: EventRoomServiceDep,
):
    """Hours and minutes until the room becomes read-only."""
    remaining = await service.get_time_remaining(event_room_id, user_id=current_user.id)
    return TimeRemainingResponse(
        expired=remaining.expired,
        hours=remaining.hours,
        minutes=remaining.minutes,
    )


@router.get("/{event_room_id}/public", response_model=PublicEventDetails)
async def get_public_event_details(
    event_room_id: UUID,
    current_user: CurrentUserDep,
    service: EventRoomServiceDep,
):
    """RSVP view, visible to anyone holding the link."""
    return await service.get_public_event_details(event_room_id, current_user.id)


@router.post("/{event_room_id}/join", response_model=JoinResult)
async def join_event_room(
    event_room_id: UUID,
    current_user: CurrentUserDep,
    service: EventRoomServiceDep,
):
    return await service.join_event_room(event_room_id, current_user.id)


# =============================================================================
# PARTICIPANTS & MESSAGES
# =============================================================================


@router.get("/{event_room_id}/participants", response_model=list[ParticipantResponse])
async def get_participants(
    event_room_id: UUID,
    current_user: CurrentUserDep,
    service: EventRoomServiceDep,
):
    """Participants of a room you can read. Invitees use the public view."""
    return await service.get_participants(event_room_id, current_user.id)


@router.get("/{event_room_id}/messages", response_model=EventRoomMessages)
async def get_messages(
    event_room_id: UUID,
    current_user: CurrentUserDep,
    service: EventRoomServiceDep,
    limit: int | None = Query(None, ge=1, le=500),
    offset: int = Query(0, ge=0),
):
    """Messages oldest first, plus whether the room has expired."""
    return await service.get_messages(event_room_id, current_user.id, limit=limit, offset=offset)


@router.post(
    "/{event_room_id}/messages",
    response_model=EventMessageResponse,
    status_code=status.HTTP_201_CREATED,
    summary="Send a message",
    description="Rejected with room_expired once the room is past its expiry.",
)
async def send_message(
    event_room_id: UUID,
    data: EventMessageCreate,
    current_user: CurrentUserDep,
    service: EventRoomServiceDep,
):
    return await service.send_message(event_room_id, current_user.id, data.content)
