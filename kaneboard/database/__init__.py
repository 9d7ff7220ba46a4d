"""
Relational persistence for Kaneboard.

Handles:
- Projects, members and tickets
- Ticket time logs with the one-running-timer-per-user guarantee
- Transactional sessions shared across repositories
"""

from .connection import (
    get_database,
    set_database,
    Database,
    init_database,
    close_database,
)
from .models import (
    Base,
    UserDB,
    ProjectDB,
    ProjectMemberDB,
    TicketDB,
    TimeLogDB,
)

__all__ = [
    "get_database",
    "set_database",
    "Database",
    "init_database",
    "close_database",
    "Base",
    "UserDB",
    "ProjectDB",
    "ProjectMemberDB",
    "TicketDB",
    "TimeLogDB",
]
