"""
Tracked-time reports for a project.
"""

import logging
from datetime import datetime
from typing import Optional, Dict, Any

from ..database import get_database, Database
from ..database.repositories import ProjectRepository, TimeLogRepository, format_duration
from ..utils.datetime_utils import get_local_now
from .authorization import AccessPolicy
from .exceptions import ProjectNotFound

logger = logging.getLogger(__name__)


class TimeReportService:
    def __init__(self, db: Optional[Database] = None):
        self.db = db or get_database()

    async def project_time(
        self,
        actor_id: int,
        project_id: int,
        now: Optional[datetime] = None,
    ) -> Dict[str, Any]:
        """
        Project total and per-user breakdown, largest contributor first.

        Running logs count up to `now`; the total always equals the sum of
        the breakdown.
        """
        now = now or get_local_now()

        async with self.db.session() as session:
            projects = ProjectRepository(session)
            time_logs = TimeLogRepository(session)

            project = await projects.get_by_id(project_id)
            if project is None:
                raise ProjectNotFound(project_id)
            await AccessPolicy(projects).authorize_view_project(actor_id, project)

            by_user = await time_logs.tracked_seconds_by_user(project_id, now)
            names = await projects.user_names([user_id for user_id, _ in by_user])
            total = await time_logs.tracked_seconds_for_project(project_id, now)

            return {
                "project_id": project_id,
                "total_seconds": total,
                "total_formatted": format_duration(total),
                "by_user": [
                    {
                        "user_id": user_id,
                        "name": names.get(user_id),
                        "seconds": seconds,
                        "formatted": format_duration(seconds),
                    }
                    for user_id, seconds in by_user
                ],
            }
