"""
Pytest configuration and shared fixtures.
"""

import os

# Must be set before config.settings is imported anywhere
os.environ["ENVIRONMENT"] = "test"
os.environ["REDIS_URL"] = ""
os.environ["DATABASE_URL"] = ""

from datetime import datetime, date, timedelta
from typing import Optional

import pytest

from kaneboard.database import Database, set_database, UserDB, TicketDB, TimeLogDB
from kaneboard.database.repositories import ProjectRepository

OWNER_ID = 1
MEMBER_ID = 2
OUTSIDER_ID = 3


@pytest.fixture
def now() -> datetime:
    """Fixed clock for deterministic tests."""
    return datetime(2026, 3, 10, 12, 0, 0)


@pytest.fixture
def today(now) -> date:
    return now.date()


@pytest.fixture
async def db(tmp_path):
    """Fresh SQLite database per test, installed as the global database."""
    database = Database(f"sqlite+aiosqlite:///{tmp_path}/kaneboard.db")
    assert await database.initialize()
    set_database(database)
    yield database
    set_database(None)
    await database.close()


@pytest.fixture
async def project(db, today):
    """
    Project owned by user 1 with user 2 as member.

    User 3 exists but has no access.
    """
    async with db.session() as session:
        session.add_all([
            UserDB(id=OWNER_ID, name="Ada Owner", email="ada@example.com"),
            UserDB(id=MEMBER_ID, name="Ben Member", email="ben@example.com"),
            UserDB(id=OUTSIDER_ID, name="Cy Outsider", email="cy@example.com"),
        ])
        await session.flush()

        projects = ProjectRepository(session)
        created = await projects.create(
            owner_id=OWNER_ID,
            name="Launch",
            start_date=today - timedelta(days=10),
            end_date=today + timedelta(days=10),
        )
        await projects.add_member(created.id, MEMBER_ID)
        return created


@pytest.fixture
def make_ticket(db, project, now):
    """Insert a ticket row directly, bypassing the service rules."""

    async def _make(
        title: str = "Ticket",
        status: str = "backlog",
        position: int = 1,
        created_by: int = OWNER_ID,
        project_id: Optional[int] = None,
        **fields,
    ) -> TicketDB:
        fields.setdefault("created_at", now)
        fields.setdefault("updated_at", now)
        async with db.session() as session:
            ticket = TicketDB(
                project_id=project_id or project.id,
                title=title,
                status=status,
                position=position,
                created_by=created_by,
                **fields,
            )
            session.add(ticket)
            await session.flush()
            return ticket

    return _make


@pytest.fixture
def make_log(db):
    """Insert a time log row directly."""

    async def _make(
        ticket_id: int,
        user_id: int,
        started_at: datetime,
        ended_at: Optional[datetime] = None,
        duration_seconds: Optional[int] = None,
    ) -> TimeLogDB:
        async with db.session() as session:
            log = TimeLogDB(
                ticket_id=ticket_id,
                user_id=user_id,
                started_at=started_at,
                ended_at=ended_at,
                duration_seconds=duration_seconds,
            )
            session.add(log)
            await session.flush()
            return log

    return _make
