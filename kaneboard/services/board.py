"""
Kanban board: status columns of a project, and drag/drop reordering.
"""

import logging
from datetime import datetime
from typing import Optional, Dict, Any, List

from ..database import get_database, Database
from ..database.repositories import ProjectRepository, TicketRepository, TimeLogRepository
from ..models.ticket import STATUSES, TicketType, BoardReorder
from ..utils.datetime_utils import get_local_now
from .authorization import AccessPolicy
from .exceptions import ProjectNotFound
from .notifications import NotificationDispatcher, TicketAction, build_event
from .ticket_lifecycle import apply_status_transition, ticket_to_dict

logger = logging.getLogger(__name__)


class BoardService:
    """Board reads and bulk reordering for one project."""

    def __init__(
        self,
        db: Optional[Database] = None,
        dispatcher: Optional[NotificationDispatcher] = None,
    ):
        self.db = db or get_database()
        self.dispatcher = dispatcher or NotificationDispatcher()

    async def get_board(
        self,
        actor_id: int,
        project_id: int,
        now: Optional[datetime] = None,
    ) -> Dict[str, Any]:
        """Six status columns in status order, each sorted by position."""
        now = now or get_local_now()

        async with self.db.session() as session:
            projects = ProjectRepository(session)
            project = await projects.get_by_id(project_id)
            if project is None:
                raise ProjectNotFound(project_id)
            await AccessPolicy(projects).authorize_view_project(actor_id, project)

            tickets = await TicketRepository(session).get_by_project(project_id)
            tracked = await TimeLogRepository(session).tracked_seconds_by_ticket(
                [t.id for t in tickets], now
            )

            columns: Dict[str, List[Dict[str, Any]]] = {status: [] for status in STATUSES}
            for ticket in tickets:
                if ticket.status in columns:
                    columns[ticket.status].append(ticket_to_dict(ticket, tracked[ticket.id], now.date()))

            member_ids = set(await projects.member_ids(project_id)) | {project.owner_id}
            names = await projects.user_names(sorted(member_ids))

            return {
                "project_id": project.id,
                "project_name": project.name,
                "statuses": list(STATUSES),
                "columns": columns,
                "members": [
                    {"id": user_id, "name": name}
                    for user_id, name in sorted(names.items(), key=lambda item: item[1])
                ],
                "ticket_types": [{"value": t.value, "label": t.label()} for t in TicketType],
            }

    async def reorder(
        self,
        actor_id: int,
        project_id: int,
        payload: BoardReorder,
        now: Optional[datetime] = None,
    ) -> int:
        """
        Apply a drag/drop result: each listed ticket takes the column's status
        and its index in the list as position.

        Unknown statuses and tickets outside the project are ignored. Status
        changes carry the usual transition side effects. Returns the number
        of tickets changed.
        """
        now = now or get_local_now()
        events = []

        async with self.db.session() as session:
            projects = ProjectRepository(session)
            tickets = TicketRepository(session)
            time_logs = TimeLogRepository(session)

            project = await projects.get_by_id(project_id)
            if project is None:
                raise ProjectNotFound(project_id)
            await AccessPolicy(projects).authorize_view_project(actor_id, project)

            member_ids = await projects.member_ids(project_id)
            changed = 0

            for status, ticket_ids in payload.columns.items():
                if status not in STATUSES:
                    continue

                found = await tickets.get_many_in_project(project_id, ticket_ids)
                for index, ticket_id in enumerate(ticket_ids):
                    ticket = found.get(ticket_id)
                    if ticket is None:
                        continue
                    if ticket.status == status and ticket.position == index:
                        continue

                    await apply_status_transition(ticket, status, tickets, time_logs, now, position=index)
                    await tickets.save(ticket, now=now)
                    changed += 1

                    events.append(build_event(
                        action=TicketAction.MOVED,
                        title=ticket.title,
                        actor_id=actor_id,
                        project_id=project_id,
                        ticket_id=ticket.id,
                        owner_id=project.owner_id,
                        member_ids=member_ids,
                    ))

            logger.info(f"User {actor_id} reordered board of project {project_id}: {changed} ticket(s) moved")

        await self.dispatcher.dispatch(events)
        return changed
