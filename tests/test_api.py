"""
HTTP-level tests: the FastAPI app driven through GrappleClient.

Requests go through httpx's ASGI transport, so no server is started; each
request runs in its own unit of work against the per-test database.
"""

from datetime import timedelta
from uuid import uuid4

import httpx
import pytest

from grapple.client import GrappleClient
from grapple.core import create_access_token, get_session, get_session_factory, unit_of_work
from grapple.errors import (
    InvalidSchedule,
    NotAuthenticated,
    NotGroupMember,
    NotParticipant,
    RoomExpired,
    TransientIOFailure,
    VotingClosed,
)
from grapple.main import app
from grapple.models import VoteValue, utcnow
from grapple.schemas import DirectEventCreate, ProposalCreate

BASE_URL = "http://testserver"


@pytest.fixture
async def http(session_factory, feed):
    async def override_session():
        async with unit_of_work(session_factory, feed) as session:
            yield session

    app.dependency_overrides[get_session] = override_session
    app.dependency_overrides[get_session_factory] = lambda: session_factory
    async with httpx.AsyncClient(
        transport=httpx.ASGITransport(app=app), base_url=BASE_URL
    ) as client:
        yield client
    app.dependency_overrides.clear()


@pytest.fixture
def client_for(http):
    def _client(user) -> GrappleClient:
        return GrappleClient(BASE_URL, token=create_access_token(user.id), http=http)

    return _client


def _proposal(threshold=2, **fields) -> ProposalCreate:
    return ProposalCreate(
        title="Rooftop dinner",
        vote_window_ends_at=utcnow() + timedelta(hours=24),
        threshold=threshold,
        **fields,
    )


# =============================================================================
# TEST: VOTE PIPELINE
# =============================================================================


class TestVotePipeline:
    async def test_two_yes_votes_open_a_room(self, crew, client_for):
        alice, bob, carol = client_for(crew.alice), client_for(crew.bob), client_for(crew.carol)

        proposal = await alice.create_proposal(crew.group_id, _proposal(threshold=2))
        assert [d.proposal.id for d in await bob.get_pending_decisions()] == [proposal.id]

        first = await alice.cast_vote(proposal.id, VoteValue.YES)
        second = await bob.cast_vote(proposal.id, "YES")

        assert first.threshold_met is False
        assert second.threshold_met is True
        assert second.event_room_id is not None
        assert await bob.get_pending_decisions() == []
        assert await carol.get_pending_decisions() == []

        room = await bob.get_event_room(second.event_room_id)
        assert room.proposal_id == proposal.id
        participants = await alice.get_event_room_participants(room.id)
        assert {p.id for p in participants} == {crew.alice.id, crew.bob.id}

        with pytest.raises(VotingClosed):
            await carol.cast_vote(proposal.id, VoteValue.YES)

    async def test_proposal_view(self, crew, client_for):
        alice, bob = client_for(crew.alice), client_for(crew.bob)
        proposal = await alice.create_proposal(crew.group_id, _proposal(threshold=3))
        await bob.cast_vote(proposal.id, VoteValue.MAYBE)

        view = await bob.get_proposal(proposal.id)
        listed = await alice.list_group_proposals(crew.group_id)

        assert view.my_vote == VoteValue.MAYBE
        assert view.vote_counts.maybe_count == 1
        assert [v.proposal.id for v in listed] == [proposal.id]
        assert listed[0].my_vote is None

    async def test_remove_vote(self, crew, client_for):
        alice, bob = client_for(crew.alice), client_for(crew.bob)
        proposal = await alice.create_proposal(crew.group_id, _proposal(threshold=3))
        await bob.cast_vote(proposal.id, VoteValue.NO)

        await bob.remove_vote(proposal.id)

        assert [d.proposal.id for d in await bob.get_pending_decisions()] == [proposal.id]

    async def test_outsider_gets_not_group_member(self, crew, client_for):
        proposal = await client_for(crew.alice).create_proposal(crew.group_id, _proposal())

        with pytest.raises(NotGroupMember):
            await client_for(crew.dave).cast_vote(proposal.id, VoteValue.YES)


# =============================================================================
# TEST: EVENT ROOMS
# =============================================================================


class TestEventRooms:
    async def test_direct_event_chat(self, crew, client_for):
        alice, bob = client_for(crew.alice), client_for(crew.bob)

        room = await alice.create_direct_event(
            DirectEventCreate(title="Coffee", group_id=crew.group_id)
        )
        await alice.send_event_message(room.id, "7:30 at the usual place")
        await bob.send_event_message(room.id, "in")

        page = await alice.get_event_room_messages(room.id)
        assert [m.content for m in page.messages] == ["7:30 at the usual place", "in"]
        assert page.is_expired is False

        remaining = await bob.get_event_room_time_remaining(room.id)
        assert remaining.expired is False
        assert remaining.hours == 71

        rooms = await bob.list_event_rooms()
        assert [d.event_room.id for d in rooms] == [room.id]
        assert rooms[0].participant_count == 2

    async def test_expired_room_rejects_messages(self, crew, client_for):
        alice = client_for(crew.alice)
        room = await alice.create_direct_event(
            DirectEventCreate(title="Yesterday", ends_at=utcnow() - timedelta(hours=13))
        )

        with pytest.raises(RoomExpired):
            await alice.send_event_message(room.id, "anyone?")

        remaining = await alice.get_event_room_time_remaining(room.id)
        assert remaining.expired is True

    async def test_direct_event_ending_before_start(self, crew, client_for):
        now = utcnow()

        with pytest.raises(InvalidSchedule):
            await client_for(crew.alice).create_direct_event(
                DirectEventCreate(
                    title="Backwards",
                    starts_at=now + timedelta(hours=2),
                    ends_at=now + timedelta(hours=1),
                )
            )

    async def test_invite_link_flow(self, crew, client_for):
        alice, dave = client_for(crew.alice), client_for(crew.dave)
        room = await alice.create_direct_event(
            DirectEventCreate(title="Picnic", group_id=crew.group_id)
        )

        with pytest.raises(NotParticipant):
            await dave.send_event_message(room.id, "hello")
        with pytest.raises(NotParticipant):
            await dave.get_event_room_participants(room.id)
        with pytest.raises(NotParticipant):
            await dave.get_event_room(room.id)
        with pytest.raises(NotParticipant):
            await dave.get_event_room_time_remaining(room.id)

        details = await dave.get_public_event_details(room.id)
        assert details.is_participant is False
        assert details.creator_name == "Alice"

        joined = await dave.join_event_room(room.id)
        assert joined.joined is True
        message = await dave.send_event_message(room.id, "hello")
        assert message.user.id == crew.dave.id
        participants = await dave.get_event_room_participants(room.id)
        assert {p.id for p in participants} == {crew.alice.id, crew.dave.id}


# =============================================================================
# TEST: ERRORS
# =============================================================================


class TestErrors:
    async def test_missing_token(self, http):
        response = await http.get("/api/v1/me/pending-decisions")

        assert response.status_code == 401
        assert response.json()["error"] == "not_authenticated"
        assert response.headers["www-authenticate"] == "Bearer"

    async def test_bad_token_maps_to_not_authenticated(self, crew, http):
        client = GrappleClient(BASE_URL, token="not-a-jwt", http=http)

        with pytest.raises(NotAuthenticated):
            await client.get_pending_decisions()

    async def test_error_body_shape(self, crew, client_for, http):
        token = create_access_token(crew.alice.id)
        response = await http.get(
            f"/api/v1/proposals/{uuid4()}",
            headers={"Authorization": f"Bearer {token}"},
        )

        assert response.status_code == 404
        assert response.json() == {
            "error": "proposal_not_found",
            "message": response.json()["message"],
            "details": [],
        }

    async def test_network_failure_is_transient(self):
        def refuse(request):
            raise httpx.ConnectError("connection refused", request=request)

        http = httpx.AsyncClient(transport=httpx.MockTransport(refuse), base_url=BASE_URL)
        client = GrappleClient(BASE_URL, token="t", http=http)

        with pytest.raises(TransientIOFailure):
            await client.get_pending_decisions()
        await http.aclose()

    async def test_server_error_is_transient(self):
        http = httpx.AsyncClient(
            transport=httpx.MockTransport(lambda request: httpx.Response(502, text="bad gateway")),
            base_url=BASE_URL,
        )
        client = GrappleClient(BASE_URL, token="t", http=http)

        with pytest.raises(TransientIOFailure):
            await client.get_event_room(uuid4())
        await http.aclose()


class TestHealth:
    async def test_health(self, http):
        response = await http.get("/health")

        assert response.status_code == 200
        assert response.json()["status"] == "healthy"
