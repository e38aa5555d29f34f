"""SQLAlchemy ORM models for Grapple.

Groups and users are owned by the identity collaborator; only the columns the
coordination core reads are mapped here.
"""

from datetime import datetime
from decimal import Decimal
from enum import Enum as PyEnum
from uuid import UUID

from sqlalchemy import (
    CheckConstraint,
    Enum,
    ForeignKey,
    Index,
    Integer,
    Numeric,
    String,
    Text,
    UniqueConstraint,
)
from sqlalchemy.orm import Mapped, mapped_column, relationship

from .base import Base, TimestampMixin, UUIDMixin, utcnow


# =============================================================================
# ENUMS
# =============================================================================


class ProposalStatus(str, PyEnum):
    OPEN = "open"
    TRIGGERED = "triggered"  # Threshold met, event room materialized
    CLOSED = "closed"  # Vote window passed without reaching threshold


class VoteValue(str, PyEnum):
    YES = "YES"
    MAYBE = "MAYBE"
    NO = "NO"


def _enum_values(enum_cls: type[PyEnum]) -> list[str]:
    return [e.value for e in enum_cls]


# =============================================================================
# IDENTITY (users, groups, memberships)
# =============================================================================


class User(Base, UUIDMixin):
    """Application user profile."""

    __tablename__ = "users"

    email: Mapped[str] = mapped_column(String(255), unique=True, nullable=False)
    display_name: Mapped[str] = mapped_column(String(255), nullable=False)
    avatar_url: Mapped[str | None] = mapped_column(String(500))
    created_at: Mapped[datetime] = mapped_column(default=utcnow, nullable=False)

    memberships: Mapped[list["GroupMember"]] = relationship(back_populates="user")


class Group(Base, UUIDMixin):
    """A group of users who propose and vote on activities together."""

    __tablename__ = "groups"

    name: Mapped[str] = mapped_column(String(255), nullable=False)
    created_by: Mapped[UUID | None] = mapped_column(ForeignKey("users.id"))
    created_at: Mapped[datetime] = mapped_column(default=utcnow, nullable=False)

    members: Mapped[list["GroupMember"]] = relationship(back_populates="group")
    proposals: Mapped[list["Proposal"]] = relationship(back_populates="group")


class GroupMember(Base, UUIDMixin):
    """Membership linking users to groups."""

    __tablename__ = "group_members"

    group_id: Mapped[UUID] = mapped_column(ForeignKey("groups.id"), nullable=False)
    user_id: Mapped[UUID] = mapped_column(ForeignKey("users.id"), nullable=False)
    role: Mapped[str] = mapped_column(String(50), default="member")
    joined_at: Mapped[datetime] = mapped_column(default=utcnow, nullable=False)

    group: Mapped["Group"] = relationship(back_populates="members")
    user: Mapped["User"] = relationship(back_populates="memberships")

    __table_args__ = (
        UniqueConstraint("group_id", "user_id"),
        Index("idx_group_members_user", "user_id"),
    )


# =============================================================================
# PROPOSALS & VOTES
# =============================================================================


class Proposal(Base, UUIDMixin, TimestampMixin):
    """A group-scoped activity suggestion put to a vote."""

    __tablename__ = "proposals"

    group_id: Mapped[UUID] = mapped_column(ForeignKey("groups.id"), nullable=False)
    created_by: Mapped[UUID] = mapped_column(ForeignKey("users.id"), nullable=False)
    title: Mapped[str] = mapped_column(String(200), nullable=False)
    description: Mapped[str | None] = mapped_column(Text)
    starts_at: Mapped[datetime | None] = mapped_column()
    ends_at: Mapped[datetime | None] = mapped_column()
    vote_window_ends_at: Mapped[datetime] = mapped_column(nullable=False)
    threshold: Mapped[int] = mapped_column(Integer, nullable=False, default=3)
    status: Mapped[ProposalStatus] = mapped_column(
        Enum(ProposalStatus, name="proposal_status", values_callable=_enum_values),
        default=ProposalStatus.OPEN,
        nullable=False,
    )
    is_anonymous: Mapped[bool] = mapped_column(default=False, nullable=False)
    estimated_cost: Mapped[Decimal | None] = mapped_column(Numeric(10, 2))

    group: Mapped["Group"] = relationship(back_populates="proposals")
    creator: Mapped["User"] = relationship(foreign_keys=[created_by])
    votes: Mapped[list["Vote"]] = relationship(
        back_populates="proposal", passive_deletes=True
    )
    event_room: Mapped["EventRoom | None"] = relationship(
        back_populates="proposal", uselist=False
    )

    __table_args__ = (
        CheckConstraint("threshold >= 1", name="threshold_positive"),
        Index("idx_proposals_group_status", "group_id", "status"),
    )


class Vote(Base):
    """Latest vote of one user on one proposal (upserted, never appended)."""

    __tablename__ = "votes"

    proposal_id: Mapped[UUID] = mapped_column(
        ForeignKey("proposals.id", ondelete="CASCADE"), primary_key=True
    )
    user_id: Mapped[UUID] = mapped_column(ForeignKey("users.id"), primary_key=True)
    value: Mapped[VoteValue] = mapped_column(
        Enum(VoteValue, name="vote_value", values_callable=_enum_values),
        nullable=False,
    )
    created_at: Mapped[datetime] = mapped_column(default=utcnow, nullable=False)
    updated_at: Mapped[datetime] = mapped_column(
        default=utcnow, onupdate=utcnow, nullable=False
    )

    proposal: Mapped["Proposal"] = relationship(back_populates="votes")

    __table_args__ = (
        Index("idx_votes_user", "user_id"),
    )


# =============================================================================
# EVENT ROOMS
# =============================================================================


class EventRoom(Base, UUIDMixin):
    """Time-boxed chat created by a triggered proposal or directly."""

    __tablename__ = "event_rooms"

    # Unique: a proposal materializes at most one room. NULL for direct rooms.
    proposal_id: Mapped[UUID | None] = mapped_column(
        ForeignKey("proposals.id"), unique=True
    )
    group_id: Mapped[UUID | None] = mapped_column(ForeignKey("groups.id"))
    created_by: Mapped[UUID | None] = mapped_column(ForeignKey("users.id"))
    title: Mapped[str] = mapped_column(String(200), nullable=False)
    description: Mapped[str | None] = mapped_column(Text)
    starts_at: Mapped[datetime | None] = mapped_column()
    ends_at: Mapped[datetime | None] = mapped_column()
    created_at: Mapped[datetime] = mapped_column(default=utcnow, nullable=False)

    proposal: Mapped["Proposal | None"] = relationship(back_populates="event_room")
    participants: Mapped[list["EventRoomParticipant"]] = relationship(
        back_populates="event_room"
    )
    messages: Mapped[list["EventMessage"]] = relationship(back_populates="event_room")


class EventRoomParticipant(Base, UUIDMixin):
    """A user admitted to an event room."""

    __tablename__ = "event_room_participants"

    event_room_id: Mapped[UUID] = mapped_column(
        ForeignKey("event_rooms.id"), nullable=False
    )
    user_id: Mapped[UUID] = mapped_column(ForeignKey("users.id"), nullable=False)
    joined_at: Mapped[datetime] = mapped_column(default=utcnow, nullable=False)

    event_room: Mapped["EventRoom"] = relationship(back_populates="participants")
    user: Mapped["User"] = relationship()

    __table_args__ = (
        UniqueConstraint("event_room_id", "user_id"),
        Index("idx_event_room_participants_user", "user_id"),
    )


class EventMessage(Base, UUIDMixin):
    """Append-only chat message inside an event room."""

    __tablename__ = "event_messages"

    event_room_id: Mapped[UUID] = mapped_column(
        ForeignKey("event_rooms.id"), nullable=False
    )
    user_id: Mapped[UUID] = mapped_column(ForeignKey("users.id"), nullable=False)
    content: Mapped[str] = mapped_column(Text, nullable=False)
    created_at: Mapped[datetime] = mapped_column(default=utcnow, nullable=False)

    event_room: Mapped["EventRoom"] = relationship(back_populates="messages")
    user: Mapped["User"] = relationship()

    __table_args__ = (
        Index("idx_event_messages_room_created", "event_room_id", "created_at"),
    )
