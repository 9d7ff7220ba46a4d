"""
Repository classes for database operations.

Repositories are session-scoped: a service opens one transaction and hands
the same session to every repository it needs, so a multi-row change
commits or rolls back as a unit.
"""

from .tickets import TicketRepository
from .time_logs import TimeLogRepository, log_seconds, format_duration
from .projects import ProjectRepository

__all__ = [
    "TicketRepository",
    "TimeLogRepository",
    "log_seconds",
    "format_duration",
    "ProjectRepository",
]
