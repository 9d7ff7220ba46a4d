"""
Dashboard: projects that need attention.

The per-user list is cached in Redis for a couple of minutes; health
results tolerate that much staleness.
"""

import logging
from datetime import date
from typing import Optional, Dict, Any, List

from config import settings

from ..cache import cached
from ..database import get_database, Database
from ..database.repositories import ProjectRepository
from ..utils.datetime_utils import get_local_today
from .project_health import HealthStatus, project_health

logger = logging.getLogger(__name__)

# Severity order of the statuses worth surfacing
RISK_RANK = {
    HealthStatus.LATE: 1,
    HealthStatus.AT_RISK: 2,
    HealthStatus.INVALID_SCHEDULE: 3,
    HealthStatus.NO_SCHEDULE: 4,
}

# Sorts unknown confidence after every real score
_UNKNOWN_CONFIDENCE = 999


def rank_risky_projects(rows: List[Dict[str, Any]], limit: int) -> List[Dict[str, Any]]:
    """Keep risky rows, most severe first, then lowest confidence first."""
    risky = [row for row in rows if row["status"] in RISK_RANK]
    risky.sort(key=lambda row: (
        RISK_RANK[row["status"]],
        row["confidence"] if row["confidence"] is not None else _UNKNOWN_CONFIDENCE,
    ))
    return risky[:limit]


class DashboardService:
    def __init__(self, db: Optional[Database] = None):
        self.db = db or get_database()

    async def compute_risky_projects(self, actor_id: int, today: date) -> List[Dict[str, Any]]:
        async with self.db.session() as session:
            projects = ProjectRepository(session)
            project_ids = await projects.accessible_project_ids(actor_id)

            rows = []
            for project in await projects.get_many(project_ids):
                health = await project_health(projects, project, today)
                rows.append({
                    "id": project.id,
                    "name": project.name,
                    "status": health["status"],
                    "expected_progress": health.get("expected_progress"),
                    "actual_progress": health.get("actual_progress"),
                    "end_date": health.get("end_date") or (
                        project.end_date.isoformat() if project.end_date else None
                    ),
                    "forecast_end": health.get("forecast_end"),
                    "confidence": health.get("confidence"),
                    "risk_signals": health.get("risk_signals", []),
                })

        risky = rank_risky_projects(rows, settings.risky_projects_limit)
        logger.info(f"User {actor_id}: {len(risky)} risky project(s) out of {len(rows)}")
        return risky

    @cached(ttl=settings.health_cache_ttl_seconds, key_prefix="dashboard:risky-projects:user")
    async def risky_projects(self, actor_id: int) -> List[Dict[str, Any]]:
        return await self.compute_risky_projects(actor_id, get_local_today())
