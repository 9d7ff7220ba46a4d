"""
Tests for kaneboard/services/timer.py

The one-running-timer-per-user rule, idempotent start, handoff between
tickets, soft failures on pause, and manual time-log corrections.
"""

import asyncio

import pytest
from datetime import timedelta
from unittest.mock import patch

from sqlalchemy import select

from kaneboard.database import TimeLogDB
from kaneboard.database.exceptions import DatabaseOperationError
from kaneboard.database.repositories import TicketRepository, TimeLogRepository
from kaneboard.models.ticket import TicketUpdate
from kaneboard.services.exceptions import Forbidden, NotTrackable, TicketNotFound, TimeLogNotFound
from kaneboard.services.tickets import TicketService
from kaneboard.services.timer import TimerResult, TimerService

OWNER, MEMBER, OUTSIDER = 1, 2, 3


@pytest.fixture
def timers(db):
    return TimerService(db=db)


async def all_logs(db, user_id=None):
    async with db.session() as session:
        query = select(TimeLogDB).order_by(TimeLogDB.id)
        if user_id is not None:
            query = query.where(TimeLogDB.user_id == user_id)
        result = await session.execute(query)
        return list(result.scalars().all())


async def running_count(db, user_id):
    async with db.session() as session:
        return len(await TimeLogRepository(session).running_for_user(user_id))


@pytest.mark.asyncio
class TestStart:

    async def test_start_creates_running_log(self, timers, db, make_ticket, now):
        ticket = await make_ticket(status="in_progress")

        result = await timers.start(MEMBER, ticket.id, now=now)

        assert result.success is True
        assert result.message == "Timer started"
        logs = await all_logs(db, MEMBER)
        assert len(logs) == 1
        assert logs[0].ended_at is None
        assert logs[0].started_at == now

    async def test_start_twice_is_idempotent(self, timers, db, make_ticket, now):
        ticket = await make_ticket(status="in_progress")

        first = await timers.start(MEMBER, ticket.id, now=now)
        second = await timers.start(MEMBER, ticket.id, now=now + timedelta(minutes=5))

        assert second.success is True
        assert second.log_id == first.log_id
        assert second.started_at == first.started_at
        assert len(await all_logs(db, MEMBER)) == 1

    async def test_start_on_other_ticket_hands_off(self, timers, db, make_ticket, now):
        first = await make_ticket(title="one", status="in_progress")
        second = await make_ticket(title="two", status="in_progress", position=2)

        await timers.start(MEMBER, first.id, now=now)
        before = len(await all_logs(db, MEMBER))
        result = await timers.start(MEMBER, second.id, now=now + timedelta(minutes=45))

        logs = await all_logs(db, MEMBER)
        assert len(logs) == before + 1
        assert await running_count(db, MEMBER) == 1

        old = next(log for log in logs if log.ticket_id == first.id)
        assert old.ended_at == now + timedelta(minutes=45)
        assert old.duration_seconds == 45 * 60
        assert result.stopped_log_id == old.id

        new = next(log for log in logs if log.ticket_id == second.id)
        assert new.ended_at is None

    async def test_users_do_not_interfere(self, timers, db, make_ticket, now):
        ticket = await make_ticket(status="in_progress")

        await timers.start(OWNER, ticket.id, now=now)
        await timers.start(MEMBER, ticket.id, now=now)

        assert await running_count(db, OWNER) == 1
        assert await running_count(db, MEMBER) == 1

    async def test_only_in_progress_is_trackable(self, timers, db, make_ticket, now):
        for status in ("backlog", "todo", "done", "tested", "completed"):
            ticket = await make_ticket(title=status, status=status)
            with pytest.raises(NotTrackable):
                await timers.start(MEMBER, ticket.id, now=now)

        assert await all_logs(db) == []

    async def test_outsider_cannot_track(self, timers, make_ticket, now):
        ticket = await make_ticket(status="in_progress")
        with pytest.raises(Forbidden):
            await timers.start(OUTSIDER, ticket.id, now=now)

    async def test_missing_ticket(self, timers, project, now):
        with pytest.raises(TicketNotFound):
            await timers.start(MEMBER, 404, now=now)

    async def test_resume_is_start(self, timers, db, make_ticket, now):
        ticket = await make_ticket(status="in_progress")
        await timers.start(MEMBER, ticket.id, now=now)
        await timers.pause(MEMBER, ticket.id, now=now + timedelta(minutes=10))

        result = await timers.resume(MEMBER, ticket.id, now=now + timedelta(minutes=20))

        assert result.success is True
        assert len(await all_logs(db, MEMBER)) == 2
        assert await running_count(db, MEMBER) == 1


@pytest.mark.asyncio
class TestStop:

    async def test_pause_stops_running_log(self, timers, db, make_ticket, now):
        ticket = await make_ticket(status="in_progress")
        await timers.start(MEMBER, ticket.id, now=now)

        result = await timers.pause(MEMBER, ticket.id, now=now + timedelta(minutes=30))

        assert result.success is True
        assert result.duration_seconds == 1800
        assert result.message == "Timer stopped (30m)"
        assert await running_count(db, MEMBER) == 0

    async def test_pause_without_running_timer_is_soft(self, timers, db, make_ticket, make_log, now):
        ticket = await make_ticket(status="in_progress")
        ended = await make_log(ticket.id, MEMBER, now - timedelta(hours=1), now, 3600)

        result = await timers.pause(MEMBER, ticket.id, now=now)

        assert result.success is False
        assert result.error == "no_running_timer"
        logs = await all_logs(db, MEMBER)
        assert [(log.id, log.ended_at, log.duration_seconds) for log in logs] == [
            (ended.id, now, 3600)
        ]

    async def test_stop_only_touches_this_ticket(self, timers, db, make_ticket, now):
        mine = await make_ticket(title="mine", status="in_progress")
        other = await make_ticket(title="other", status="in_progress", position=2)
        await timers.start(MEMBER, other.id, now=now)

        result = await timers.stop(MEMBER, mine.id, now=now)

        assert result.success is False
        assert await running_count(db, MEMBER) == 1

    async def test_clock_skew_never_goes_negative(self, timers, db, make_ticket, now):
        ticket = await make_ticket(status="in_progress")
        await timers.start(MEMBER, ticket.id, now=now)

        result = await timers.stop(MEMBER, ticket.id, now=now - timedelta(seconds=5))

        assert result.duration_seconds == 0

    async def test_stop_requires_in_progress(self, timers, make_ticket, now):
        ticket = await make_ticket(status="todo")
        with pytest.raises(NotTrackable):
            await timers.stop(MEMBER, ticket.id, now=now)


@pytest.mark.asyncio
class TestStatus:

    async def test_status_reports_live_log_only(self, timers, db, make_ticket, make_log, now):
        ticket = await make_ticket(status="in_progress")
        await make_log(ticket.id, MEMBER, now - timedelta(hours=3), now - timedelta(hours=2), 3600)
        await timers.start(MEMBER, ticket.id, now=now - timedelta(minutes=5))

        state = await timers.status(MEMBER, ticket.id, now=now)

        assert state["running"] is True
        assert state["elapsed_seconds"] == 300
        assert len(await all_logs(db, MEMBER)) == 2

    async def test_status_idle_is_zero_despite_past_sessions(self, timers, make_ticket, make_log, now):
        ticket = await make_ticket(status="in_progress")
        await make_log(ticket.id, MEMBER, now - timedelta(hours=3), now - timedelta(hours=2), 3600)

        state = await timers.status(MEMBER, ticket.id, now=now)

        assert state["running"] is False
        assert state["log_id"] is None
        assert state["elapsed_seconds"] == 0

    async def test_status_works_on_any_status(self, timers, make_ticket, now):
        ticket = await make_ticket(status="done")
        state = await timers.status(MEMBER, ticket.id, now=now)
        assert state["running"] is False
        assert state["elapsed_seconds"] == 0

    async def test_running_for_user(self, timers, make_ticket, make_log, now):
        ticket = await make_ticket(title="Deploy", status="in_progress")
        await make_log(ticket.id, MEMBER, now - timedelta(hours=2), now - timedelta(hours=1), 600)
        await timers.start(MEMBER, ticket.id, now=now - timedelta(minutes=1))

        running = await timers.running_for_user(MEMBER, now=now)

        assert running["ticket_id"] == ticket.id
        assert running["ticket_title"] == "Deploy"
        assert running["ticket_status"] == "in_progress"
        assert running["elapsed_seconds"] == 600 + 60

    async def test_running_for_user_none(self, timers, project, now):
        assert await timers.running_for_user(MEMBER, now=now) is None


@pytest.mark.asyncio
class TestManualCorrections:

    async def test_override_moves_ended_at(self, timers, db, make_ticket, make_log, now):
        ticket = await make_ticket(status="in_progress")
        log = await make_log(ticket.id, MEMBER, now - timedelta(hours=3), now, 3 * 3600)

        updated = await timers.update_time_log(MEMBER, log.id, 1200, now=now)

        assert updated["duration_seconds"] == 1200
        stored = (await all_logs(db, MEMBER))[0]
        assert stored.ended_at == stored.started_at + timedelta(seconds=1200)

    async def test_project_owner_may_correct(self, timers, make_ticket, make_log, now):
        ticket = await make_ticket(status="in_progress")
        log = await make_log(ticket.id, MEMBER, now - timedelta(hours=1), now, 3600)

        updated = await timers.update_time_log(OWNER, log.id, 60, now=now)

        assert updated["duration_seconds"] == 60

    async def test_other_member_may_not_correct(self, timers, make_ticket, make_log, now):
        ticket = await make_ticket(status="in_progress")
        log = await make_log(ticket.id, OWNER, now - timedelta(hours=1), now, 3600)

        with pytest.raises(Forbidden):
            await timers.update_time_log(MEMBER, log.id, 60, now=now)

    async def test_delete_time_log(self, timers, db, make_ticket, make_log, now):
        ticket = await make_ticket(status="in_progress")
        log = await make_log(ticket.id, MEMBER, now - timedelta(hours=1), now, 3600)

        await timers.delete_time_log(MEMBER, log.id)

        assert await all_logs(db) == []
        with pytest.raises(TimeLogNotFound):
            await timers.delete_time_log(MEMBER, log.id)


@pytest.mark.asyncio
class TestConcurrency:

    async def test_start_locks_ticket_before_user(self, timers, make_ticket, now):
        """A completion waiting on the ticket row cannot slip in before the insert."""
        ticket = await make_ticket(status="in_progress")
        calls = []
        original_get = TicketRepository.get
        original_lock_user = TimeLogRepository.lock_user

        async def recording_get(self, ticket_id, lock=False):
            calls.append(("ticket", ticket_id, lock))
            return await original_get(self, ticket_id, lock=lock)

        async def recording_lock_user(self, user_id):
            calls.append(("user", user_id))
            return await original_lock_user(self, user_id)

        with patch.object(TicketRepository, "get", recording_get), \
                patch.object(TimeLogRepository, "lock_user", recording_lock_user):
            await timers.start(MEMBER, ticket.id, now=now)

        assert calls[:2] == [("ticket", ticket.id, True), ("user", MEMBER)]

    async def test_completion_after_start_leaves_nothing_running(self, timers, db, make_ticket, now):
        ticket = await make_ticket(status="in_progress", created_by=MEMBER)
        await timers.start(MEMBER, ticket.id, now=now - timedelta(minutes=2))

        await TicketService(db=db).update_ticket(
            MEMBER, ticket.id, TicketUpdate(title=ticket.title, status="done"), now=now
        )

        assert await running_count(db, MEMBER) == 0
        with pytest.raises(NotTrackable):
            await timers.pause(MEMBER, ticket.id, now=now)

    async def test_concurrent_starts_keep_one_running_log(self, timers, db, make_ticket, now):
        first = await make_ticket(title="a", status="in_progress")
        second = await make_ticket(title="b", status="in_progress")

        outcomes = await asyncio.gather(
            timers.start(MEMBER, first.id, now=now),
            TimerService(db=db).start(MEMBER, second.id, now=now),
            return_exceptions=True,
        )

        successes = [o for o in outcomes if isinstance(o, TimerResult)]
        failures = [o for o in outcomes if isinstance(o, Exception)]
        assert successes
        assert all(isinstance(f, DatabaseOperationError) for f in failures)
        assert await running_count(db, MEMBER) == 1
