"""
Project repository.

Projects group tickets and carry the schedule used for health reporting.
Also answers membership questions (owner or member) and produces the
ticket aggregates the health calculator consumes.
"""

import logging
from datetime import date, datetime, timedelta
from typing import Optional, List, Dict

from sqlalchemy import select, func, case, or_
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from ..models import ProjectDB, ProjectMemberDB, TicketDB, UserDB
from ..exceptions import DatabaseConstraintError, DatabaseOperationError
from ...models.ticket import DONE_STATUSES

logger = logging.getLogger(__name__)

_DONE = list(DONE_STATUSES)


class ProjectRepository:
    """Repository for project operations."""

    def __init__(self, session: AsyncSession):
        self.session = session

    # ==================== PROJECT CRUD ====================

    async def create(
        self,
        owner_id: int,
        name: str,
        description: Optional[str] = None,
        start_date: Optional[date] = None,
        end_date: Optional[date] = None,
        baseline_start_date: Optional[date] = None,
        baseline_end_date: Optional[date] = None,
        workspace_id: Optional[int] = None,
    ) -> ProjectDB:
        """Create a project; the owner is also recorded as a member."""
        try:
            project = ProjectDB(
                owner_id=owner_id,
                name=name,
                description=description,
                start_date=start_date,
                end_date=end_date,
                baseline_start_date=baseline_start_date,
                baseline_end_date=baseline_end_date,
                workspace_id=workspace_id,
            )
            self.session.add(project)
            await self.session.flush()

            self.session.add(ProjectMemberDB(project_id=project.id, user_id=owner_id, role="owner"))
            await self.session.flush()

            logger.info(f"Created project: {name}")
            return project

        except IntegrityError as e:
            logger.error(f"Constraint violation creating project {name}: {e}")
            raise DatabaseConstraintError(f"Cannot create project {name}: duplicate or constraint violation")

        except Exception as e:
            logger.error(f"CRITICAL: Project creation failed for {name}: {e}", exc_info=True)
            raise DatabaseOperationError(f"Failed to create project {name}: {e}")

    async def get_by_id(self, project_id: int) -> Optional[ProjectDB]:
        result = await self.session.execute(
            select(ProjectDB).where(ProjectDB.id == project_id)
        )
        return result.scalar_one_or_none()

    async def get_many(self, project_ids: List[int]) -> List[ProjectDB]:
        if not project_ids:
            return []
        result = await self.session.execute(
            select(ProjectDB)
            .where(ProjectDB.id.in_(project_ids))
            .order_by(ProjectDB.name)
        )
        return list(result.scalars().all())

    # ==================== MEMBERSHIP ====================

    async def add_member(self, project_id: int, user_id: int, role: str = "member") -> ProjectMemberDB:
        try:
            member = ProjectMemberDB(project_id=project_id, user_id=user_id, role=role)
            self.session.add(member)
            await self.session.flush()
            return member
        except IntegrityError as e:
            logger.error(f"Constraint violation adding member {user_id} to project {project_id}: {e}")
            raise DatabaseConstraintError(f"User {user_id} is already a member of project {project_id}")

    async def is_member(self, project: ProjectDB, user_id: int) -> bool:
        """True when the user owns the project or is one of its members."""
        if project.owner_id == user_id:
            return True
        result = await self.session.execute(
            select(ProjectMemberDB.id).where(
                ProjectMemberDB.project_id == project.id,
                ProjectMemberDB.user_id == user_id,
            )
        )
        return result.first() is not None

    async def member_ids(self, project_id: int) -> List[int]:
        result = await self.session.execute(
            select(ProjectMemberDB.user_id).where(ProjectMemberDB.project_id == project_id)
        )
        return [row[0] for row in result.all()]

    async def accessible_project_ids(self, user_id: int) -> List[int]:
        """Projects the user owns or belongs to."""
        result = await self.session.execute(
            select(ProjectDB.id)
            .outerjoin(ProjectMemberDB, ProjectMemberDB.project_id == ProjectDB.id)
            .where(or_(ProjectDB.owner_id == user_id, ProjectMemberDB.user_id == user_id))
            .distinct()
        )
        return sorted(row[0] for row in result.all())

    async def user_names(self, user_ids: List[int]) -> Dict[int, str]:
        if not user_ids:
            return {}
        result = await self.session.execute(
            select(UserDB.id, UserDB.name).where(UserDB.id.in_(user_ids))
        )
        return {row[0]: row[1] for row in result.all()}

    # ==================== HEALTH AGGREGATES ====================

    async def ticket_stats(self, project_id: int, today: date, due_soon_days: int) -> Dict[str, int]:
        """
        Ticket counts and estimate sums for the health calculator.

        Overdue = open with deadline strictly before today.
        Due soon = open with deadline within [today, today + due_soon_days].
        """
        is_done = TicketDB.status.in_(_DONE)
        is_open = TicketDB.status.notin_(_DONE)
        due_soon_until = today + timedelta(days=due_soon_days)

        result = await self.session.execute(
            select(
                func.count(TicketDB.id),
                func.sum(case((is_done, 1), else_=0)),
                func.sum(case((is_open, 1), else_=0)),
                func.sum(case(
                    (is_open & TicketDB.deadline.is_not(None) & (TicketDB.deadline < today), 1),
                    else_=0,
                )),
                func.sum(case(
                    (
                        is_open
                        & TicketDB.deadline.is_not(None)
                        & (TicketDB.deadline >= today)
                        & (TicketDB.deadline <= due_soon_until),
                        1,
                    ),
                    else_=0,
                )),
                func.sum(func.coalesce(TicketDB.estimate, 0)),
                func.sum(case((is_done, func.coalesce(TicketDB.estimate, 0)), else_=0)),
            ).where(TicketDB.project_id == project_id)
        )
        row = result.one()

        return {
            "total": int(row[0] or 0),
            "done": int(row[1] or 0),
            "open": int(row[2] or 0),
            "overdue": int(row[3] or 0),
            "due_soon": int(row[4] or 0),
            "total_points": int(row[5] or 0),
            "done_points": int(row[6] or 0),
        }

    async def completion_times(self, project_id: int, since: datetime) -> List[datetime]:
        """completed_at of done-like tickets completed at or after `since`."""
        result = await self.session.execute(
            select(TicketDB.completed_at).where(
                TicketDB.project_id == project_id,
                TicketDB.status.in_(_DONE),
                TicketDB.completed_at.is_not(None),
                TicketDB.completed_at >= since,
            )
        )
        return [row[0] for row in result.all()]

    async def count_created_since(self, project_id: int, since: datetime) -> int:
        result = await self.session.execute(
            select(func.count(TicketDB.id)).where(
                TicketDB.project_id == project_id,
                TicketDB.created_at >= since,
            )
        )
        return int(result.scalar() or 0)
