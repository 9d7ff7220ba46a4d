"""
Ticket service: create, update, delete and read tickets.

Each write runs in one transaction (`Database.session()`): authorization,
validation, the status transition and the field changes either all commit
or none do. Activity events are built inside the transaction and delivered
only after it commits.
"""

import logging
from datetime import datetime
from typing import Optional, Dict, Any

from ..database import get_database, Database
from ..database.models import ProjectDB, TicketDB
from ..database.repositories import ProjectRepository, TicketRepository, TimeLogRepository, log_seconds
from ..models.ticket import TicketCreate, TicketUpdate, DEFAULT_PRIORITY
from ..utils.datetime_utils import get_local_now, isoformat_utc
from .authorization import AccessPolicy
from .exceptions import (
    AssigneeNotAllowed,
    InvalidPayload,
    ProjectNotFound,
    TicketNotFound,
)
from .notifications import (
    NotificationDispatcher,
    TicketAction,
    TicketEvent,
    action_for_changes,
    build_event,
)
from .ticket_lifecycle import (
    apply_status_transition,
    plan_transition,
    ticket_to_dict,
    validate_priority,
    validate_status,
    validate_type,
)
from .timer import timer_state

logger = logging.getLogger(__name__)

# Plain fields compared on update to derive the event action
_UPDATABLE_FIELDS = ("title", "description", "assigned_to", "deadline", "priority", "type", "estimate")


async def load_ticket_and_project(
    tickets: TicketRepository,
    projects: ProjectRepository,
    ticket_id: int,
    lock: bool = False,
) -> tuple:
    ticket = await tickets.get(ticket_id, lock=lock)
    if ticket is None:
        raise TicketNotFound(ticket_id)
    project = await projects.get_by_id(ticket.project_id)
    if project is None:
        raise ProjectNotFound(ticket.project_id)
    return ticket, project


async def ticket_event(
    projects: ProjectRepository,
    action: str,
    ticket: TicketDB,
    project: ProjectDB,
    actor_id: int,
) -> Optional[TicketEvent]:
    member_ids = await projects.member_ids(project.id)
    return build_event(
        action=action,
        title=ticket.title,
        actor_id=actor_id,
        project_id=project.id,
        ticket_id=ticket.id,
        owner_id=project.owner_id,
        member_ids=member_ids,
    )


class TicketService:
    """Ticket writes and reads on behalf of an acting user."""

    def __init__(
        self,
        db: Optional[Database] = None,
        dispatcher: Optional[NotificationDispatcher] = None,
    ):
        self.db = db or get_database()
        self.dispatcher = dispatcher or NotificationDispatcher()

    async def _check_assignee(
        self,
        projects: ProjectRepository,
        project: ProjectDB,
        assigned_to: Optional[int],
    ) -> None:
        if assigned_to is not None and not await projects.is_member(project, assigned_to):
            raise AssigneeNotAllowed(assigned_to)

    async def create_ticket(
        self,
        actor_id: int,
        project_id: int,
        payload: TicketCreate,
        now: Optional[datetime] = None,
    ) -> Dict[str, Any]:
        """Create a ticket at the end of its status column."""
        now = now or get_local_now()

        validate_status(payload.status)
        validate_priority(payload.priority)
        validate_type(payload.type)
        if payload.deadline is not None and payload.deadline < now.date():
            raise InvalidPayload("The deadline must be today or later.", field="deadline")

        async with self.db.session() as session:
            projects = ProjectRepository(session)
            tickets = TicketRepository(session)

            project = await projects.get_by_id(project_id)
            if project is None:
                raise ProjectNotFound(project_id)

            await AccessPolicy(projects).authorize_view_project(actor_id, project)
            await self._check_assignee(projects, project, payload.assigned_to)

            plan = plan_transition(None, payload.status, None, None)
            position = await tickets.next_position(project_id, payload.status)

            ticket = await tickets.create({
                "project_id": project_id,
                "title": payload.title,
                "description": payload.description,
                "status": payload.status,
                "position": position,
                "priority": payload.priority or DEFAULT_PRIORITY,
                "type": payload.type,
                "estimate": payload.estimate,
                "created_by": actor_id,
                "assigned_to": payload.assigned_to,
                "deadline": payload.deadline,
                "started_at": now if plan.set_started_at else None,
                "completed_at": now if plan.set_completed_at else None,
                "created_at": now,
                "updated_at": now,
            })

            event = await ticket_event(projects, TicketAction.CREATED, ticket, project, actor_id)
            result = ticket_to_dict(ticket, 0, now.date())

        await self.dispatcher.dispatch([event])
        return result

    async def update_ticket(
        self,
        actor_id: int,
        ticket_id: int,
        payload: TicketUpdate,
        now: Optional[datetime] = None,
    ) -> Dict[str, Any]:
        """
        Update a ticket's fields and status.

        Omitted deadline, priority, type and estimate keep their current
        values. The status transition runs before the other fields are
        written.
        """
        now = now or get_local_now()

        async with self.db.session() as session:
            projects = ProjectRepository(session)
            tickets = TicketRepository(session)
            time_logs = TimeLogRepository(session)

            ticket, project = await load_ticket_and_project(tickets, projects, ticket_id, lock=True)
            AccessPolicy(projects).authorize_update_ticket(actor_id, ticket)

            validate_status(payload.status)
            validate_priority(payload.priority)
            validate_type(payload.type)
            await self._check_assignee(projects, project, payload.assigned_to)

            new_values = {
                "title": payload.title,
                "description": payload.description,
                "assigned_to": payload.assigned_to,
                "deadline": payload.deadline if payload.deadline is not None else ticket.deadline,
                "priority": payload.priority if payload.priority is not None else ticket.priority,
                "type": payload.type if payload.type is not None else ticket.type,
                "estimate": payload.estimate if payload.estimate is not None else ticket.estimate,
            }
            changed = [name for name in _UPDATABLE_FIELDS if getattr(ticket, name) != new_values[name]]

            old_position = ticket.position
            transition = await apply_status_transition(ticket, payload.status, tickets, time_logs, now)
            if transition.changed:
                changed.append("status")
            if ticket.position != old_position:
                changed.append("position")

            for name, value in new_values.items():
                setattr(ticket, name, value)
            await tickets.save(ticket, now=now)

            action = action_for_changes(changed)
            event = None
            if action is not None:
                event = await ticket_event(projects, action, ticket, project, actor_id)
                logger.info(f"Ticket {ticket.id} {action} by user {actor_id}: {', '.join(changed)}")

            tracked = await time_logs.tracked_seconds(ticket.id, now)
            result = ticket_to_dict(ticket, tracked, now.date())

        await self.dispatcher.dispatch([event])
        return result

    async def delete_ticket(self, actor_id: int, ticket_id: int) -> None:
        """Delete a ticket and, with it, all of its time logs."""
        async with self.db.session() as session:
            projects = ProjectRepository(session)
            tickets = TicketRepository(session)

            ticket, project = await load_ticket_and_project(tickets, projects, ticket_id)
            AccessPolicy(projects).authorize_delete_ticket(actor_id, ticket)

            event = await ticket_event(projects, TicketAction.DELETED, ticket, project, actor_id)
            await tickets.delete(ticket)
            logger.info(f"Ticket {ticket_id} deleted by user {actor_id}")

        await self.dispatcher.dispatch([event])

    async def get_ticket(
        self,
        actor_id: int,
        ticket_id: int,
        now: Optional[datetime] = None,
    ) -> Dict[str, Any]:
        """Ticket detail with its time logs and the actor's timer state."""
        now = now or get_local_now()

        async with self.db.session() as session:
            projects = ProjectRepository(session)
            tickets = TicketRepository(session)
            time_logs = TimeLogRepository(session)

            ticket, project = await load_ticket_and_project(tickets, projects, ticket_id)
            await AccessPolicy(projects).authorize_view_project(actor_id, project)

            logs = await time_logs.list_for_ticket(ticket.id)
            tracked = sum(log_seconds(l.started_at, l.ended_at, l.duration_seconds, now) for l in logs)

            result = ticket_to_dict(ticket, tracked, now.date())
            result["timer"] = await timer_state(time_logs, ticket.id, actor_id, now)
            result["time_logs"] = [
                {
                    "id": log.id,
                    "user_id": log.user_id,
                    "started_at": isoformat_utc(log.started_at),
                    "ended_at": isoformat_utc(log.ended_at),
                    "duration_seconds": log_seconds(log.started_at, log.ended_at, log.duration_seconds, now),
                    "running": log.is_running,
                    "note": log.note,
                }
                for log in logs
            ]
            return result
