"""
Kaneboard services.

Each service opens its own transaction per call and works on behalf of an
explicit acting user id.
"""

from .board import BoardService
from .dashboard import DashboardService
from .project_health import ProjectHealthService, calculate_health
from .ticket_lifecycle import apply_status_transition, plan_transition
from .tickets import TicketService
from .time_reports import TimeReportService
from .timer import TimerService, TimerResult

__all__ = [
    "BoardService",
    "DashboardService",
    "ProjectHealthService",
    "calculate_health",
    "apply_status_transition",
    "plan_transition",
    "TicketService",
    "TimeReportService",
    "TimerService",
    "TimerResult",
]
