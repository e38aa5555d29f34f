"""Tests for the change feed, the unit of work that publishes to it, and SSE framing."""

import asyncio
import json
from uuid import uuid4

import pytest
from fastapi.security import HTTPAuthorizationCredentials

from grapple.api.changes import format_sse, stream, stream_changes, user_change_filters
from grapple.client import parse_sse_lines
from grapple.core.changes import ChangeEvent, ChangeFilter, ChangeOp, stage_change
from grapple.core.database import unit_of_work
from grapple.core.security import create_access_token
from grapple.errors import NotAuthenticated
from grapple.models import Group


def _event(table="proposals", op=ChangeOp.INSERT, **record) -> ChangeEvent:
    return ChangeEvent(table=table, op=op, record=record)


# =============================================================================
# TEST: FILTERS
# =============================================================================


class TestChangeFilter:
    def test_table_and_op(self):
        f = ChangeFilter.build("votes", ops=[ChangeOp.INSERT, ChangeOp.UPDATE])

        assert f.matches(_event("votes", ChangeOp.UPDATE))
        assert not f.matches(_event("votes", ChangeOp.DELETE))
        assert not f.matches(_event("proposals", ChangeOp.INSERT))

    def test_column_values_compare_as_strings(self):
        group_id = uuid4()
        f = ChangeFilter.build("proposals", column="group_id", values=[group_id])

        assert f.matches(_event(group_id=group_id))
        assert f.matches(_event(group_id=str(group_id)))
        assert not f.matches(_event(group_id=uuid4()))
        assert not f.matches(_event())


# =============================================================================
# TEST: FEED
# =============================================================================


class TestChangeFeed:
    async def test_sync_and_async_handlers(self, feed):
        seen_sync, seen_async = [], []

        async def handler(event):
            seen_async.append(event)

        feed.on_change(ChangeFilter.build("proposals"), seen_sync.append)
        feed.on_change(ChangeFilter.build("proposals"), handler)

        await feed.publish([_event(), _event("votes")])

        assert len(seen_sync) == 1
        assert len(seen_async) == 1

    async def test_failing_handler_does_not_block_others(self, feed):
        seen = []

        def broken(event):
            raise RuntimeError("boom")

        feed.on_change(ChangeFilter.build("proposals"), broken)
        feed.on_change(ChangeFilter.build("proposals"), seen.append)

        await feed.publish([_event()])

        assert len(seen) == 1

    async def test_unsubscribe(self, feed):
        seen = []
        unsubscribe = feed.on_change(ChangeFilter.build("proposals"), seen.append)
        assert feed.subscriber_count == 1

        unsubscribe()
        await feed.publish([_event()])

        assert seen == []
        assert feed.subscriber_count == 0


# =============================================================================
# TEST: UNIT OF WORK
# =============================================================================


class TestUnitOfWork:
    async def test_publishes_after_commit(self, session_factory, feed):
        seen = []
        feed.on_change(ChangeFilter.build("groups"), seen.append)

        async with unit_of_work(session_factory, feed) as s:
            group = Group(name="Book Club")
            s.add(group)
            await s.flush()
            stage_change(s, "groups", ChangeOp.INSERT, {"id": group.id})
            assert seen == []

        assert [e.record["id"] for e in seen] == [group.id]

    async def test_rollback_discards_staged_changes(self, session_factory, feed):
        seen = []
        feed.on_change(ChangeFilter.build("groups"), seen.append)

        with pytest.raises(ValueError):
            async with unit_of_work(session_factory, feed) as s:
                s.add(Group(name="Never"))
                stage_change(s, "groups", ChangeOp.INSERT, {"name": "Never"})
                raise ValueError("abort")

        assert seen == []


# =============================================================================
# TEST: SSE
# =============================================================================


class TestServerSentEvents:
    async def test_stream_yields_matching_changes(self, feed):
        group_id = uuid4()
        filters = user_change_filters(uuid4(), [group_id])
        changes = stream_changes(feed, filters, keep_alive=0.05)

        first = await changes.__anext__()
        assert first == ": keep-alive\n\n"
        assert feed.subscriber_count == len(filters)

        await feed.publish([_event(group_id=uuid4()), _event(group_id=group_id)])
        frame = await changes.__anext__()

        assert frame.startswith("event: proposals\n")
        payload = json.loads(frame.split("data: ", 1)[1])
        assert payload["record"]["group_id"] == str(group_id)

        await changes.aclose()
        assert feed.subscriber_count == 0

    async def test_endpoint_releases_its_session_before_streaming(
        self, session_factory, feed, crew
    ):
        opened = []

        def tracking_factory():
            session = session_factory()
            opened.append(session)
            return session

        credentials = HTTPAuthorizationCredentials(
            scheme="Bearer", credentials=create_access_token(crew.alice.id)
        )
        response = await stream(credentials, tracking_factory, feed)

        assert len(opened) == 1
        assert not opened[0].in_transaction()

        body = response.body_iterator
        next_frame = asyncio.ensure_future(body.__anext__())
        await asyncio.sleep(0)
        await feed.publish([_event(group_id=crew.group_id), _event(group_id=crew.other_group_id)])
        frame = await next_frame

        payload = json.loads(frame.split("data: ", 1)[1])
        assert payload["record"]["group_id"] == str(crew.group_id)
        assert len(opened) == 1

        await body.aclose()
        assert feed.subscriber_count == 0

    async def test_endpoint_requires_a_token(self, session_factory, feed):
        with pytest.raises(NotAuthenticated):
            await stream(None, session_factory, feed)

        assert feed.subscriber_count == 0

    async def test_parse_frames(self):
        event = _event("votes", ChangeOp.UPDATE, proposal_id=uuid4(), value="YES")

        async def lines():
            for line in (": keep-alive", "") + tuple(format_sse(event).split("\n")):
                yield line

        parsed = [e async for e in parse_sse_lines(lines())]

        assert len(parsed) == 1
        assert parsed[0].table == "votes"
        assert parsed[0].op == ChangeOp.UPDATE
        assert parsed[0].record["value"] == "YES"
