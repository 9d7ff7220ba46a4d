"""
Access rules for projects, tickets and time logs.

- A project is visible to its owner and members.
- Project settings and membership are managed by the owner only.
- A ticket may be updated or deleted only by its creator.
- A time log may be corrected or deleted by the person who tracked it
  or by the owner of the ticket's project.
"""

import logging

from ..database.models import ProjectDB, TicketDB, TimeLogDB
from ..database.repositories import ProjectRepository
from .exceptions import Forbidden

logger = logging.getLogger(__name__)


class AccessPolicy:
    """Answers "may this actor do that?" and raises Forbidden when not."""

    def __init__(self, projects: ProjectRepository):
        self.projects = projects

    async def can_view_project(self, actor_id: int, project: ProjectDB) -> bool:
        return await self.projects.is_member(project, actor_id)

    def can_manage_members(self, actor_id: int, project: ProjectDB) -> bool:
        return project.owner_id == actor_id

    def can_update_ticket(self, actor_id: int, ticket: TicketDB) -> bool:
        return ticket.created_by == actor_id

    def can_delete_ticket(self, actor_id: int, ticket: TicketDB) -> bool:
        return ticket.created_by == actor_id

    def can_edit_time_log(self, actor_id: int, log: TimeLogDB, project: ProjectDB) -> bool:
        return log.user_id == actor_id or project.owner_id == actor_id

    # ==================== ENFORCEMENT ====================

    async def authorize_view_project(self, actor_id: int, project: ProjectDB) -> None:
        if not await self.can_view_project(actor_id, project):
            logger.warning(f"User {actor_id} denied view on project {project.id}")
            raise Forbidden()

    def authorize_update_ticket(self, actor_id: int, ticket: TicketDB) -> None:
        if not self.can_update_ticket(actor_id, ticket):
            logger.warning(f"User {actor_id} denied update on ticket {ticket.id}")
            raise Forbidden()

    def authorize_delete_ticket(self, actor_id: int, ticket: TicketDB) -> None:
        if not self.can_delete_ticket(actor_id, ticket):
            logger.warning(f"User {actor_id} denied delete on ticket {ticket.id}")
            raise Forbidden()

    def authorize_edit_time_log(self, actor_id: int, log: TimeLogDB, project: ProjectDB) -> None:
        if not self.can_edit_time_log(actor_id, log, project):
            logger.warning(f"User {actor_id} denied edit on time log {log.id}")
            raise Forbidden()
