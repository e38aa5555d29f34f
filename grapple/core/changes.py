"""Change notifications: a transport-agnostic push feed.

Services *stage* row changes on the session while they work. The unit of
work publishes staged changes to the feed only after a successful commit and
drops them on rollback, so subscribers never observe uncommitted state.

Subscribers register with ``on_change(filter, handler)``; handlers may be
plain callables or coroutine functions. Anything that can invoke a callback
(in-process queue, websocket, SSE) can sit on the other side.
"""

import inspect
import logging
from collections.abc import Awaitable, Callable, Iterable
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from itertools import count
from typing import Any
from uuid import UUID

from sqlalchemy.ext.asyncio import AsyncSession

logger = logging.getLogger(__name__)

_STAGED_KEY = "grapple.staged_changes"


class ChangeOp(str, Enum):
    INSERT = "INSERT"
    UPDATE = "UPDATE"
    DELETE = "DELETE"


@dataclass(frozen=True)
class ChangeEvent:
    """One committed row change."""

    table: str
    op: ChangeOp
    record: dict[str, Any]

    def to_dict(self) -> dict[str, Any]:
        return {
            "table": self.table,
            "op": self.op.value,
            "record": {k: _jsonable(v) for k, v in self.record.items()},
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "ChangeEvent":
        return cls(
            table=data["table"],
            op=ChangeOp(data["op"]),
            record=dict(data.get("record") or {}),
        )


def _jsonable(value: Any) -> Any:
    if isinstance(value, UUID):
        return str(value)
    if isinstance(value, datetime):
        return value.isoformat()
    if isinstance(value, Enum):
        return value.value
    return value


@dataclass(frozen=True)
class ChangeFilter:
    """Which events a subscriber wants: table, operations, and column equality.

    ``values`` restricts ``record[column]`` to a set, e.g. all of a user's
    group ids. Values are compared as strings so UUIDs and their serialized
    form match.
    """

    table: str
    ops: frozenset[ChangeOp] | None = None
    column: str | None = None
    values: frozenset[str] | None = None

    @classmethod
    def build(
        cls,
        table: str,
        ops: Iterable[ChangeOp] | None = None,
        column: str | None = None,
        values: Iterable[Any] | None = None,
    ) -> "ChangeFilter":
        return cls(
            table=table,
            ops=frozenset(ops) if ops is not None else None,
            column=column,
            values=frozenset(str(v) for v in values) if values is not None else None,
        )

    def matches(self, event: ChangeEvent) -> bool:
        if event.table != self.table:
            return False
        if self.ops is not None and event.op not in self.ops:
            return False
        if self.column is not None and self.values is not None:
            value = event.record.get(self.column)
            if value is None or str(value) not in self.values:
                return False
        return True


Handler = Callable[[ChangeEvent], Awaitable[None] | None]


@dataclass
class _Subscription:
    filter: ChangeFilter
    handler: Handler


@dataclass
class ChangeFeed:
    """In-process fan-out of committed changes to registered handlers."""

    _subscriptions: dict[int, _Subscription] = field(default_factory=dict)
    _ids: Any = field(default_factory=count)

    def on_change(self, change_filter: ChangeFilter, handler: Handler) -> Callable[[], None]:
        """Register a handler; returns a callable that unsubscribes it."""
        sub_id = next(self._ids)
        self._subscriptions[sub_id] = _Subscription(change_filter, handler)

        def unsubscribe() -> None:
            self._subscriptions.pop(sub_id, None)

        return unsubscribe

    @property
    def subscriber_count(self) -> int:
        return len(self._subscriptions)

    async def publish(self, events: Iterable[ChangeEvent]) -> None:
        """Deliver events to every matching handler.

        A failing handler is logged and does not stop delivery to the others;
        the change it reacts to is already committed.
        """
        for event in events:
            for sub in list(self._subscriptions.values()):
                if not sub.filter.matches(event):
                    continue
                try:
                    result = sub.handler(event)
                    if inspect.isawaitable(result):
                        await result
                except Exception:
                    logger.exception(
                        f"Change handler failed for {event.table} {event.op.value}"
                    )


def stage_change(
    session: AsyncSession,
    table: str,
    op: ChangeOp,
    record: dict[str, Any],
) -> None:
    """Queue a change on the session; published after commit."""
    session.info.setdefault(_STAGED_KEY, []).append(ChangeEvent(table, op, record))


def pop_staged_changes(session: AsyncSession) -> list[ChangeEvent]:
    """Remove and return the changes staged on the session."""
    return session.info.pop(_STAGED_KEY, [])


# Process-wide feed used by the API's unit of work
change_feed = ChangeFeed()
