"""
Tests for kaneboard/services/tickets.py

Create/update/delete through the service against a real SQLite database,
with the notifier replaced by a recording double.
"""

import pytest
from datetime import timedelta
from unittest.mock import AsyncMock

from kaneboard.database.repositories import TimeLogRepository
from kaneboard.models.ticket import TicketCreate, TicketUpdate
from kaneboard.services.exceptions import (
    AssigneeNotAllowed,
    Forbidden,
    InvalidPayload,
    InvalidPriority,
    InvalidStatus,
    TicketNotFound,
)
from kaneboard.services.notifications import NotificationDispatcher
from kaneboard.services.tickets import TicketService

OWNER, MEMBER, OUTSIDER = 1, 2, 3


@pytest.fixture
def notifier():
    double = AsyncMock()
    double.deliver = AsyncMock()
    return double


@pytest.fixture
def service(db, notifier):
    return TicketService(db=db, dispatcher=NotificationDispatcher(notifier))


def delivered(notifier):
    return [call.args[0] for call in notifier.deliver.await_args_list]


def create_payload(**overrides):
    data = {"title": "Write docs", "status": "backlog", "type": "feature"}
    data.update(overrides)
    return TicketCreate(**data)


def update_payload(**overrides):
    data = {"title": "Write docs", "status": "backlog"}
    data.update(overrides)
    return TicketUpdate(**data)


@pytest.mark.asyncio
class TestCreateTicket:

    async def test_positions_follow_creation_order(self, service, project, now):
        positions = []
        for title in ("first", "second", "third"):
            created = await service.create_ticket(OWNER, project.id, create_payload(title=title), now=now)
            positions.append(created["position"])

        assert positions == [1, 2, 3]

    async def test_defaults_and_derived_fields(self, service, project, now):
        created = await service.create_ticket(OWNER, project.id, create_payload(type="bug"), now=now)

        assert created["priority"] == "low"
        assert created["type_label"] == "Bug"
        assert created["tracked_seconds"] == 0
        assert created["tracked_hours"] == 0.0
        assert created["is_overdue"] is False
        assert created["created_by"] == OWNER

    async def test_created_in_progress_is_started(self, service, project, now):
        created = await service.create_ticket(
            OWNER, project.id, create_payload(status="in_progress"), now=now
        )
        assert created["started_at"] is not None
        assert created["completed_at"] is None

    async def test_member_can_be_assignee(self, service, project, now):
        created = await service.create_ticket(OWNER, project.id, create_payload(assigned_to=MEMBER), now=now)
        assert created["assigned_to"] == MEMBER

    async def test_outsider_cannot_be_assignee(self, service, project, now):
        with pytest.raises(AssigneeNotAllowed) as exc:
            await service.create_ticket(OWNER, project.id, create_payload(assigned_to=OUTSIDER), now=now)
        assert exc.value.field == "assigned_to"

    async def test_outsider_cannot_create(self, service, project, now):
        with pytest.raises(Forbidden):
            await service.create_ticket(OUTSIDER, project.id, create_payload(), now=now)

    async def test_past_deadline_rejected(self, service, project, now):
        with pytest.raises(InvalidPayload) as exc:
            await service.create_ticket(
                OWNER, project.id, create_payload(deadline=now.date() - timedelta(days=1)), now=now
            )
        assert exc.value.field == "deadline"

    async def test_invalid_status_rejected(self, service, project, now):
        with pytest.raises(InvalidStatus):
            await service.create_ticket(OWNER, project.id, create_payload(status="wip"), now=now)

    async def test_created_event_goes_to_everyone_but_actor(self, service, project, notifier, now):
        await service.create_ticket(OWNER, project.id, create_payload(title="Ship it"), now=now)

        events = delivered(notifier)
        assert len(events) == 1
        assert events[0].action == "created"
        assert events[0].message == "New ticket created: Ship it"
        assert events[0].recipients == [MEMBER]
        assert events[0].actor == OWNER


@pytest.mark.asyncio
class TestUpdateTicket:

    async def test_only_creator_may_update(self, service, make_ticket, now):
        ticket = await make_ticket(created_by=OWNER)
        with pytest.raises(Forbidden):
            await service.update_ticket(MEMBER, ticket.id, update_payload(), now=now)

    async def test_missing_ticket(self, service, project, now):
        with pytest.raises(TicketNotFound):
            await service.update_ticket(OWNER, 999, update_payload(), now=now)

    async def test_invalid_priority_leaves_ticket_untouched(self, service, make_ticket, now):
        ticket = await make_ticket(status="todo")
        with pytest.raises(InvalidPriority):
            await service.update_ticket(
                OWNER, ticket.id, update_payload(status="done", priority="urgent"), now=now
            )

        detail = await service.get_ticket(OWNER, ticket.id, now=now)
        assert detail["status"] == "todo"
        assert detail["completed_at"] is None

    async def test_completion_stops_all_timers(self, service, db, make_ticket, make_log, now):
        ticket = await make_ticket(status="in_progress", started_at=now - timedelta(hours=2))
        await make_log(ticket.id, OWNER, now - timedelta(minutes=10))
        await make_log(ticket.id, MEMBER, now - timedelta(minutes=20))

        updated = await service.update_ticket(OWNER, ticket.id, update_payload(status="done"), now=now)

        assert updated["completed_at"] is not None
        assert updated["tracked_seconds"] == 1800
        async with db.session() as session:
            assert await TimeLogRepository(session).running_for_ticket(ticket.id) == []

    async def test_reopen_clears_completion_and_keeps_started(self, service, make_ticket, now):
        ticket = await make_ticket(status="todo")

        started = await service.update_ticket(OWNER, ticket.id, update_payload(status="in_progress"), now=now)
        done = await service.update_ticket(
            OWNER, ticket.id, update_payload(status="done"), now=now + timedelta(hours=1)
        )
        reopened = await service.update_ticket(
            OWNER, ticket.id, update_payload(status="todo"), now=now + timedelta(hours=2)
        )
        restarted = await service.update_ticket(
            OWNER, ticket.id, update_payload(status="in_progress"), now=now + timedelta(hours=3)
        )

        assert done["completed_at"] is not None
        assert reopened["completed_at"] is None
        assert restarted["started_at"] == started["started_at"]

    async def test_omitted_fields_keep_current_values(self, service, make_ticket, now):
        deadline = now.date() + timedelta(days=5)
        ticket = await make_ticket(priority="high", type="bug", deadline=deadline, estimate=3)

        updated = await service.update_ticket(OWNER, ticket.id, update_payload(title="Renamed"), now=now)

        assert updated["title"] == "Renamed"
        assert updated["priority"] == "high"
        assert updated["type"] == "bug"
        assert updated["deadline"] == deadline.isoformat()
        assert updated["estimate"] == 3

    async def test_assignment_change_wins_over_move(self, service, make_ticket, notifier, now):
        ticket = await make_ticket(title="Docs", status="backlog")

        await service.update_ticket(
            OWNER, ticket.id, update_payload(title="Docs", status="todo", assigned_to=MEMBER), now=now
        )

        events = delivered(notifier)
        assert [e.action for e in events] == ["assigned"]
        assert events[0].message == "Ticket assignment changed: Docs"

    async def test_status_change_is_a_move(self, service, make_ticket, notifier, now):
        ticket = await make_ticket(title="Docs", status="backlog")
        await service.update_ticket(OWNER, ticket.id, update_payload(title="Docs", status="todo"), now=now)
        assert [e.action for e in delivered(notifier)] == ["moved"]

    async def test_no_change_no_event(self, service, make_ticket, notifier, now):
        ticket = await make_ticket(title="Write docs", status="backlog", priority="low", type="feature")
        await service.update_ticket(OWNER, ticket.id, update_payload(), now=now)
        notifier.deliver.assert_not_awaited()

    async def test_notifier_failure_does_not_undo_update(self, service, make_ticket, notifier, now):
        notifier.deliver.side_effect = RuntimeError("mail server down")
        ticket = await make_ticket(title="Docs", status="backlog")

        await service.update_ticket(OWNER, ticket.id, update_payload(title="Docs v2"), now=now)

        detail = await service.get_ticket(OWNER, ticket.id, now=now)
        assert detail["title"] == "Docs v2"


@pytest.mark.asyncio
class TestDeleteTicket:

    async def test_delete_cascades_to_time_logs(self, service, db, make_ticket, make_log, notifier, now):
        ticket = await make_ticket(title="Gone", status="in_progress")
        await make_log(ticket.id, MEMBER, now - timedelta(hours=1), now, 3600)

        await service.delete_ticket(OWNER, ticket.id)

        async with db.session() as session:
            assert await TimeLogRepository(session).list_for_ticket(ticket.id) == []
        with pytest.raises(TicketNotFound):
            await service.get_ticket(OWNER, ticket.id, now=now)
        assert delivered(notifier)[0].message == "Ticket deleted: Gone"

    async def test_only_creator_may_delete(self, service, make_ticket):
        ticket = await make_ticket(created_by=MEMBER)
        with pytest.raises(Forbidden):
            await service.delete_ticket(OWNER, ticket.id)


@pytest.mark.asyncio
class TestGetTicket:

    async def test_detail_includes_callers_timer(self, service, make_ticket, make_log, now):
        ticket = await make_ticket(status="in_progress")
        await make_log(ticket.id, MEMBER, now - timedelta(hours=2), now - timedelta(hours=1), 3600)
        await make_log(ticket.id, MEMBER, now - timedelta(minutes=15))
        await make_log(ticket.id, OWNER, now - timedelta(hours=5), now - timedelta(hours=4), 3600)

        detail = await service.get_ticket(MEMBER, ticket.id, now=now)

        assert detail["tracked_seconds"] == 3600 + 900 + 3600
        assert detail["tracked_hours"] == 2.25
        assert detail["timer"]["running"] is True
        assert detail["timer"]["elapsed_seconds"] == 3600 + 900
        assert len(detail["time_logs"]) == 3

    async def test_outsider_cannot_view(self, service, make_ticket, now):
        ticket = await make_ticket()
        with pytest.raises(Forbidden):
            await service.get_ticket(OUTSIDER, ticket.id, now=now)
