#!/usr/bin/env python3
"""
Seed Data Script for Grapple

Creates a "Friday crew" scenario with:
- 4 Users (Maya, Theo, Jun, Priya)
- 1 Group (Friday Crew) with everyone in it
- Proposals demonstrating the vote pipeline:
  - Proposal A: Rooftop dinner, threshold 2, already TRIGGERED (event room live)
  - Proposal B: Climbing gym, threshold 3, open with 1 YES
  - Proposal C: Board game night, anonymous, open with no votes
- 1 Direct event room (no vote) created by Theo
- A few chat messages in the triggered room

Run with: python seed_data.py
"""

import asyncio
from datetime import timedelta
from decimal import Decimal
from uuid import uuid4

from sqlalchemy import text
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine

from grapple.core.config import get_settings
from grapple.core.security import create_access_token
from grapple.models import Base, Group, GroupMember, User, VoteValue, utcnow
from grapple.schemas import DirectEventCreate, ProposalCreate
from grapple.services import EventRoomService, ProposalService, VoteLedger

settings = get_settings()


async def seed_database():
    """Main seeding function."""

    # Create engine and session
    engine = create_async_engine(settings.database_url_async, echo=False)
    async_session = async_sessionmaker(engine, class_=AsyncSession, expire_on_commit=False)

    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

    async with async_session() as session:
        print("🌱 Starting database seed...")

        # Check if data already exists
        result = await session.execute(text("SELECT COUNT(*) FROM groups"))
        count = result.scalar()
        if count and count > 0:
            print("⚠️  Database already has data. Clearing existing data...")
            await clear_database(session)

        now = utcnow()

        # =================================================================
        # CREATE USERS
        # =================================================================
        print("\n👥 Creating users...")

        maya = User(
            id=uuid4(),
            email="maya@example.com",
            display_name="Maya Okafor",
            avatar_url="https://api.dicebear.com/7.x/avataaars/svg?seed=maya",
        )
        theo = User(
            id=uuid4(),
            email="theo@example.com",
            display_name="Theo Brandt",
            avatar_url="https://api.dicebear.com/7.x/avataaars/svg?seed=theo",
        )
        jun = User(
            id=uuid4(),
            email="jun@example.com",
            display_name="Jun Park",
        )
        priya = User(
            id=uuid4(),
            email="priya@example.com",
            display_name="Priya Nair",
        )
        users = [maya, theo, jun, priya]
        session.add_all(users)
        await session.flush()

        for user in users:
            print(f"   ✓ {user.display_name}")

        # =================================================================
        # CREATE GROUP
        # =================================================================
        print("\n📦 Creating group...")

        crew = Group(id=uuid4(), name="Friday Crew", created_by=maya.id)
        session.add(crew)
        await session.flush()

        session.add_all(
            [
                GroupMember(
                    group_id=crew.id,
                    user_id=user.id,
                    role="admin" if user is maya else "member",
                )
                for user in users
            ]
        )
        await session.flush()
        print(f"   ✓ Created: {crew.name} with {len(users)} members")

        # =================================================================
        # PROPOSALS & VOTES
        # =================================================================
        print("\n🗳️  Creating proposals...")

        proposals = ProposalService(session)
        ledger = VoteLedger(session)

        dinner = await proposals.create_proposal(
            crew.id,
            maya.id,
            ProposalCreate(
                title="Rooftop dinner at Solstice",
                description="Sunset tables are first come first served.",
                starts_at=now + timedelta(days=1, hours=2),
                ends_at=now + timedelta(days=1, hours=5),
                vote_window_ends_at=now + timedelta(hours=20),
                threshold=2,
                estimated_cost=Decimal("45.00"),
            ),
            now=now,
        )
        await ledger.cast_vote(dinner.id, maya.id, VoteValue.YES, now=now)
        await ledger.cast_vote(dinner.id, jun.id, VoteValue.MAYBE, now=now)
        dinner_vote = await ledger.cast_vote(dinner.id, theo.id, VoteValue.YES, now=now)
        print(f"   ✓ {dinner.title} [TRIGGERED → room {dinner_vote.event_room_id}]")

        climbing = await proposals.create_proposal(
            crew.id,
            theo.id,
            ProposalCreate(
                title="Bouldering at Crux",
                starts_at=now + timedelta(days=3),
                vote_window_ends_at=now + timedelta(days=2),
                threshold=3,
                estimated_cost=Decimal("22.50"),
            ),
            now=now,
        )
        await ledger.cast_vote(climbing.id, theo.id, VoteValue.YES, now=now)
        print(f"   ✓ {climbing.title} [OPEN, 1/3 YES]")

        games = await proposals.create_proposal(
            crew.id,
            jun.id,
            ProposalCreate(
                title="Board game night",
                vote_window_ends_at=now + timedelta(days=4),
                is_anonymous=True,
            ),
            now=now,
        )
        print(f"   ✓ {games.title} [OPEN, anonymous, threshold {games.threshold}]")

        # =================================================================
        # EVENT ROOMS
        # =================================================================
        print("\n💬 Creating event rooms...")

        rooms = EventRoomService(session)
        await rooms.send_message(dinner_vote.event_room_id, maya.id, "Booked for 7pm!", now=now)
        await rooms.send_message(
            dinner_vote.event_room_id, theo.id, "I'll bring the birthday card", now=now
        )
        print("   ✓ 2 messages in the dinner room")

        coffee = await rooms.create_direct_event(
            theo.id,
            DirectEventCreate(
                title="Coffee before work",
                starts_at=now + timedelta(hours=14),
                ends_at=now + timedelta(hours=15),
                group_id=crew.id,
            ),
            now=now,
        )
        print(f"   ✓ Direct event: {coffee.title}")

        await session.commit()

        print("\n" + "=" * 60)
        print("✅ DATABASE SEEDED SUCCESSFULLY!")
        print("=" * 60)
        print(f"""
📊 Summary:
   • 1 Group: {crew.name}
   • 4 Users: Maya, Theo, Jun, Priya
   • 3 Proposals: 1 triggered, 2 open
   • 2 Event rooms: 1 from a vote, 1 direct

🧪 What you can test:
   1. Pending decisions: Priya has 2 pending, Theo has 1 (Board game night)
   2. Voting: a second and third YES on "{climbing.title}" creates its room
   3. Expiry: the dinner room goes read-only 12 hours after the dinner ends

🔑 Bearer tokens:""")
        for user in users:
            print(f"   {user.display_name}: {create_access_token(user.id)}")

    await engine.dispose()


async def clear_database(session: AsyncSession):
    """Clear all data from the database (in correct order for FK constraints)."""
    tables = [
        "event_messages",
        "event_room_participants",
        "event_rooms",
        "votes",
        "proposals",
        "group_members",
        "groups",
        "users",
    ]

    for table in tables:
        await session.execute(text(f"DELETE FROM {table}"))

    await session.commit()
    print("   ✓ Cleared existing data")


if __name__ == "__main__":
    asyncio.run(seed_database())
