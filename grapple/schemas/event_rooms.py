"""Pydantic schemas for event rooms and their messages."""

from datetime import datetime
from uuid import UUID

from pydantic import Field

from .base import GrappleBaseModel, ProfileRef


class DirectEventCreate(GrappleBaseModel):
    """Create an event room without a vote."""

    title: str = Field(..., min_length=1, max_length=200)
    description: str | None = None
    starts_at: datetime | None = None
    ends_at: datetime | None = None
    group_id: UUID | None = None


class EventRoomResponse(GrappleBaseModel):
    id: UUID
    proposal_id: UUID | None = None
    group_id: UUID | None = None
    created_by: UUID | None = None
    title: str
    description: str | None = None
    starts_at: datetime | None = None
    ends_at: datetime | None = None
    created_at: datetime


class EventRoomDetails(GrappleBaseModel):
    """Room plus the derived state a room list needs."""

    event_room: EventRoomResponse
    group_name: str | None = None
    participant_count: int
    is_expired: bool
    expires_at: datetime


class ParticipantResponse(ProfileRef):
    joined_at: datetime


class EventMessageCreate(GrappleBaseModel):
    # Length rules live in the service so rejections keep the InvalidMessage kind
    content: str


class EventMessageResponse(GrappleBaseModel):
    id: UUID
    event_room_id: UUID
    content: str
    created_at: datetime
    user: ProfileRef


class EventRoomMessages(GrappleBaseModel):
    """A page of messages; ``is_expired`` is always current."""

    messages: list[EventMessageResponse]
    is_expired: bool


class TimeRemainingResponse(GrappleBaseModel):
    expired: bool
    hours: int
    minutes: int


class JoinResult(GrappleBaseModel):
    event_room_id: UUID
    title: str
    joined: bool  # False when the user was already a participant


class PublicEventDetails(GrappleBaseModel):
    """RSVP view of a room, readable by non-participants."""

    event_room: EventRoomResponse
    group_name: str | None = None
    participant_count: int
    participants: list[ProfileRef]
    creator_name: str | None = None
    is_participant: bool
    is_expired: bool
