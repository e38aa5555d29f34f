"""
Expiry Policy: when an event room stops accepting messages.

Expiry is derived from timestamps on every call. There is no stored flag and
no background sweep, so writers must call this at write time rather than
trusting a value computed for display.

- Room with ``ends_at``: expires ``ends_at + 12h``
- Room without ``ends_at``: expires ``created_at + 72h``
"""

from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Protocol

from ..core.config import Settings
from ..models import ensure_utc, utcnow


@dataclass(frozen=True)
class ExpiryConfig:
    """Configuration for room expiry."""

    # Grace period after a scheduled event ends
    grace_after_end: timedelta = timedelta(hours=12)

    # Lifetime of rooms with no scheduled end
    lifetime_without_end: timedelta = timedelta(hours=72)

    @classmethod
    def from_settings(cls, settings: Settings) -> "ExpiryConfig":
        return cls(
            grace_after_end=timedelta(hours=settings.room_grace_hours_after_end),
            lifetime_without_end=timedelta(hours=settings.room_lifetime_hours),
        )


DEFAULT_CONFIG = ExpiryConfig()


class HasRoomTimes(Protocol):
    ends_at: datetime | None
    created_at: datetime


@dataclass(frozen=True)
class TimeRemaining:
    expired: bool
    hours: int
    minutes: int


def expires_at(room: HasRoomTimes, config: ExpiryConfig = DEFAULT_CONFIG) -> datetime:
    """The instant the room becomes read-only."""
    if room.ends_at is not None:
        return ensure_utc(room.ends_at) + config.grace_after_end
    return ensure_utc(room.created_at) + config.lifetime_without_end


def is_expired(
    room: HasRoomTimes,
    now: datetime | None = None,
    config: ExpiryConfig = DEFAULT_CONFIG,
) -> bool:
    now = ensure_utc(now) if now else utcnow()
    return now >= expires_at(room, config)


def time_remaining(
    room: HasRoomTimes,
    now: datetime | None = None,
    config: ExpiryConfig = DEFAULT_CONFIG,
) -> TimeRemaining:
    """Whole hours and leftover minutes until expiry (zeros once expired)."""
    now = ensure_utc(now) if now else utcnow()
    remaining = expires_at(room, config) - now

    if remaining <= timedelta(0):
        return TimeRemaining(expired=True, hours=0, minutes=0)

    total_minutes = int(remaining.total_seconds()) // 60
    return TimeRemaining(
        expired=False,
        hours=total_minutes // 60,
        minutes=total_minutes % 60,
    )
