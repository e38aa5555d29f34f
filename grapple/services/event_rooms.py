"""
Event Rooms: the ephemeral chats that proposals materialize into.

Rooms are created either by the materialization engine (one per triggered
proposal) or directly by a user. Writes are gated by the expiry policy,
re-evaluated at the moment of the write.
"""

import logging
from datetime import datetime
from uuid import UUID, uuid4

from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncSession

from ..core.changes import ChangeOp, stage_change
from ..core.config import get_settings
from ..core.database import dialect_insert
from ..errors import (
    EventRoomNotFound,
    InvalidMessage,
    InvalidSchedule,
    NotParticipant,
    RoomExpired,
)
from ..models import (
    EventMessage,
    EventRoom,
    EventRoomParticipant,
    User,
    ensure_utc,
    utcnow,
)
from ..schemas import (
    DirectEventCreate,
    EventMessageResponse,
    EventRoomDetails,
    EventRoomMessages,
    EventRoomResponse,
    JoinResult,
    ParticipantResponse,
    ProfileRef,
    PublicEventDetails,
)
from .expiry_policy import ExpiryConfig, TimeRemaining, expires_at, is_expired, time_remaining
from .membership import MembershipDirectory

logger = logging.getLogger(__name__)


async def admit_participant(
    session: AsyncSession,
    event_room_id: UUID,
    user_id: UUID,
    joined_at: datetime,
) -> bool:
    """Add a participant if absent. Returns True when a row was inserted."""
    stmt = (
        dialect_insert(session, EventRoomParticipant)
        .values(
            id=uuid4(),
            event_room_id=event_room_id,
            user_id=user_id,
            joined_at=joined_at,
        )
        .on_conflict_do_nothing(index_elements=["event_room_id", "user_id"])
    )
    result = await session.execute(stmt)
    admitted = result.rowcount == 1
    if admitted:
        stage_change(
            session,
            "event_room_participants",
            ChangeOp.INSERT,
            {"event_room_id": event_room_id, "user_id": user_id},
        )
    return admitted


class EventRoomService:
    """Reads and writes for event rooms, participants and messages."""

    def __init__(
        self,
        session: AsyncSession,
        expiry: ExpiryConfig | None = None,
    ):
        self._session = session
        self._settings = get_settings()
        self._expiry = expiry or ExpiryConfig.from_settings(self._settings)
        self._members = MembershipDirectory(session)

    # =========================================================================
    # ROOMS
    # =========================================================================

    async def get_event_room(
        self,
        event_room_id: UUID,
        user_id: UUID | None = None,
    ) -> EventRoomResponse:
        """The room itself. With ``user_id``, only readers of the room may see it."""
        room = await self._get_room_or_raise(event_room_id)
        if user_id is not None:
            await self._require_reader(room, user_id)
        return EventRoomResponse.model_validate(room)

    async def get_event_room_details(
        self,
        event_room_id: UUID,
        user_id: UUID,
        now: datetime | None = None,
    ) -> EventRoomDetails:
        room = await self._get_room_or_raise(event_room_id)
        await self._require_reader(room, user_id)
        return await self._details(room, now or utcnow())

    async def list_user_event_rooms(
        self,
        user_id: UUID,
        include_expired: bool = True,
        now: datetime | None = None,
    ) -> list[EventRoomDetails]:
        """Rooms the user participates in, newest first."""
        now = now or utcnow()
        result = await self._session.execute(
            select(EventRoom)
            .join(EventRoomParticipant, EventRoomParticipant.event_room_id == EventRoom.id)
            .where(EventRoomParticipant.user_id == user_id)
            .order_by(EventRoom.created_at.desc(), EventRoom.id)
        )
        rooms = result.scalars().all()

        details = []
        for room in rooms:
            if not include_expired and is_expired(room, now, self._expiry):
                continue
            details.append(await self._details(room, now))
        return details

    async def get_time_remaining(
        self,
        event_room_id: UUID,
        now: datetime | None = None,
        user_id: UUID | None = None,
    ) -> TimeRemaining:
        room = await self._get_room_or_raise(event_room_id)
        if user_id is not None:
            await self._require_reader(room, user_id)
        return time_remaining(room, now, self._expiry)

    async def create_direct_event(
        self,
        user_id: UUID,
        data: DirectEventCreate,
        now: datetime | None = None,
    ) -> EventRoomResponse:
        """Create a room without a vote; the creator is its only participant."""
        now = now or utcnow()

        if data.starts_at and data.ends_at and ensure_utc(data.ends_at) < ensure_utc(data.starts_at):
            raise InvalidSchedule("ends_at must not be before starts_at")
        if data.group_id is not None:
            await self._members.require_member(data.group_id, user_id)

        room = EventRoom(
            proposal_id=None,
            group_id=data.group_id,
            created_by=user_id,
            title=data.title,
            description=data.description,
            starts_at=data.starts_at,
            ends_at=data.ends_at,
            created_at=now,
        )
        self._session.add(room)
        await self._session.flush()

        stage_change(
            self._session,
            "event_rooms",
            ChangeOp.INSERT,
            {"id": room.id, "proposal_id": None, "group_id": room.group_id},
        )
        await admit_participant(self._session, room.id, user_id, now)

        logger.info(f"Direct event room {room.id} created by {user_id}")
        return EventRoomResponse.model_validate(room)

    async def join_event_room(
        self,
        event_room_id: UUID,
        user_id: UUID,
        now: datetime | None = None,
    ) -> JoinResult:
        """Explicit join (e.g. via invite link). Idempotent."""
        now = now or utcnow()
        room = await self._get_room_or_raise(event_room_id)

        if is_expired(room, now, self._expiry):
            raise RoomExpired(f"Event room {event_room_id} has expired")

        joined = await admit_participant(self._session, room.id, user_id, now)
        return JoinResult(event_room_id=room.id, title=room.title, joined=joined)

    async def get_public_event_details(
        self,
        event_room_id: UUID,
        user_id: UUID | None = None,
        now: datetime | None = None,
    ) -> PublicEventDetails:
        """RSVP view; readable without being a participant."""
        now = now or utcnow()
        room = await self._get_room_or_raise(event_room_id)
        participants = await self.get_participants(event_room_id)

        creator_name = None
        if room.created_by is not None:
            result = await self._session.execute(
                select(User.display_name).where(User.id == room.created_by)
            )
            creator_name = result.scalar_one_or_none()

        return PublicEventDetails(
            event_room=EventRoomResponse.model_validate(room),
            group_name=await self._members.group_name(room.group_id),
            participant_count=len(participants),
            participants=[
                ProfileRef(id=p.id, display_name=p.display_name, avatar_url=p.avatar_url)
                for p in participants
            ],
            creator_name=creator_name,
            is_participant=any(p.id == user_id for p in participants),
            is_expired=is_expired(room, now, self._expiry),
        )

    # =========================================================================
    # PARTICIPANTS
    # =========================================================================

    async def get_participants(
        self,
        event_room_id: UUID,
        user_id: UUID | None = None,
    ) -> list[ParticipantResponse]:
        """
        Participants in join order.

        With ``user_id``, only readers of the room may list them. Outsiders
        holding an invite link use ``get_public_event_details`` instead.
        """
        if user_id is not None:
            room = await self._get_room_or_raise(event_room_id)
            await self._require_reader(room, user_id)
        result = await self._session.execute(
            select(User, EventRoomParticipant.joined_at)
            .join(EventRoomParticipant, EventRoomParticipant.user_id == User.id)
            .where(EventRoomParticipant.event_room_id == event_room_id)
            .order_by(EventRoomParticipant.joined_at, User.id)
        )
        return [
            ParticipantResponse(
                id=user.id,
                display_name=user.display_name,
                avatar_url=user.avatar_url,
                joined_at=joined_at,
            )
            for user, joined_at in result.all()
        ]

    async def is_participant(self, event_room_id: UUID, user_id: UUID) -> bool:
        result = await self._session.execute(
            select(EventRoomParticipant.id).where(
                EventRoomParticipant.event_room_id == event_room_id,
                EventRoomParticipant.user_id == user_id,
            )
        )
        return result.first() is not None

    # =========================================================================
    # MESSAGES
    # =========================================================================

    async def get_messages(
        self,
        event_room_id: UUID,
        user_id: UUID,
        limit: int | None = None,
        offset: int = 0,
        now: datetime | None = None,
    ) -> EventRoomMessages:
        """A page of messages (oldest first) with the room's current expiry flag."""
        room = await self._get_room_or_raise(event_room_id)
        await self._require_reader(room, user_id)

        result = await self._session.execute(
            select(EventMessage, User)
            .join(User, EventMessage.user_id == User.id)
            .where(EventMessage.event_room_id == event_room_id)
            .order_by(EventMessage.created_at, EventMessage.id)
            .limit(limit or self._settings.message_page_size)
            .offset(offset)
        )

        return EventRoomMessages(
            messages=[_message_response(message, user) for message, user in result.all()],
            is_expired=is_expired(room, now, self._expiry),
        )

    async def send_message(
        self,
        event_room_id: UUID,
        user_id: UUID,
        content: str,
        now: datetime | None = None,
    ) -> EventMessageResponse:
        """
        Append a message.

        Expiry is evaluated here, at write time, against ``now``; a flag the
        caller read earlier is never trusted. Group members of the room's
        group are admitted on their first message.
        """
        now = now or utcnow()
        text = content.strip()
        if not text:
            raise InvalidMessage("Message content is empty")
        if len(text) > self._settings.max_message_length:
            raise InvalidMessage(
                f"Message exceeds {self._settings.max_message_length} characters"
            )

        room = await self._get_room_or_raise(event_room_id)

        if is_expired(room, now, self._expiry):
            logger.info(f"Rejected message to expired room {event_room_id}")
            raise RoomExpired(f"Event room {event_room_id} has expired")

        if not await self.is_participant(room.id, user_id):
            if room.group_id is None or not await self._members.is_group_member(
                room.group_id, user_id
            ):
                raise NotParticipant(
                    f"User {user_id} is not a participant of event room {event_room_id}"
                )
            await admit_participant(self._session, room.id, user_id, now)

        message = EventMessage(
            event_room_id=room.id,
            user_id=user_id,
            content=text,
            created_at=now,
        )
        self._session.add(message)
        await self._session.flush()

        stage_change(
            self._session,
            "event_messages",
            ChangeOp.INSERT,
            {"id": message.id, "event_room_id": room.id, "user_id": user_id},
        )

        result = await self._session.execute(select(User).where(User.id == user_id))
        return _message_response(message, result.scalar_one())

    # =========================================================================
    # INTERNAL HELPERS
    # =========================================================================

    async def _get_room_or_raise(self, event_room_id: UUID) -> EventRoom:
        result = await self._session.execute(
            select(EventRoom).where(EventRoom.id == event_room_id)
        )
        room = result.scalar_one_or_none()
        if not room:
            raise EventRoomNotFound(f"Event room {event_room_id} not found")
        return room

    async def _require_reader(self, room: EventRoom, user_id: UUID) -> None:
        """Participants and members of the room's group may read."""
        if await self.is_participant(room.id, user_id):
            return
        if room.group_id is not None and await self._members.is_group_member(
            room.group_id, user_id
        ):
            return
        raise NotParticipant(
            f"User {user_id} cannot read event room {room.id}"
        )

    async def _details(self, room: EventRoom, now: datetime) -> EventRoomDetails:
        result = await self._session.execute(
            select(func.count())
            .select_from(EventRoomParticipant)
            .where(EventRoomParticipant.event_room_id == room.id)
        )
        return EventRoomDetails(
            event_room=EventRoomResponse.model_validate(room),
            group_name=await self._members.group_name(room.group_id),
            participant_count=result.scalar_one(),
            is_expired=is_expired(room, now, self._expiry),
            expires_at=expires_at(room, self._expiry),
        )


def _message_response(message: EventMessage, user: User) -> EventMessageResponse:
    return EventMessageResponse(
        id=message.id,
        event_room_id=message.event_room_id,
        content=message.content,
        created_at=message.created_at,
        user=ProfileRef(
            id=user.id,
            display_name=user.display_name,
            avatar_url=user.avatar_url,
        ),
    )
