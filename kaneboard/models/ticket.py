"""Ticket and time-log data models for the board."""

from datetime import date
from enum import Enum
from typing import Optional, Dict, List
from pydantic import BaseModel, Field


class TicketStatus(str, Enum):
    """Board columns, in display order."""
    BACKLOG = "backlog"
    TODO = "todo"
    IN_PROGRESS = "in_progress"
    DONE = "done"
    TESTED = "tested"
    COMPLETED = "completed"


class TicketPriority(str, Enum):
    """Ticket priority levels."""
    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"


class TicketType(str, Enum):
    """Kind of work a ticket represents."""
    BUG = "bug"
    FEATURE = "feature"
    IMPROVEMENT = "improvement"

    def label(self) -> str:
        return self.value.capitalize()


STATUSES: List[str] = [s.value for s in TicketStatus]
PRIORITIES: List[str] = [p.value for p in TicketPriority]
TICKET_TYPES: List[str] = [t.value for t in TicketType]

# Statuses that stamp started_at on entry
STARTED_STATUSES = frozenset({TicketStatus.IN_PROGRESS.value})

# Statuses that count as finished work
DONE_STATUSES = frozenset({
    TicketStatus.DONE.value,
    TicketStatus.TESTED.value,
    TicketStatus.COMPLETED.value,
})

# The only status a timer may run in
TRACKABLE_STATUS = TicketStatus.IN_PROGRESS.value

DEFAULT_PRIORITY = TicketPriority.LOW.value


def is_done_like(status: Optional[str]) -> bool:
    return status in DONE_STATUSES


def is_started(status: Optional[str]) -> bool:
    return status in STARTED_STATUSES


# ==================== REQUEST PAYLOADS ====================

class TicketCreate(BaseModel):
    """Payload for creating a ticket in a project."""
    title: str = Field(..., min_length=1, max_length=120)
    description: Optional[str] = Field(default=None, max_length=2000)
    status: str
    type: str
    assigned_to: Optional[int] = None
    deadline: Optional[date] = None
    priority: Optional[str] = None
    estimate: Optional[int] = Field(default=None, ge=0)


class TicketUpdate(BaseModel):
    """
    Payload for updating a ticket.

    Omitted deadline/priority/type/estimate keep their current values.
    assigned_to is always replaced (None unassigns).
    """
    title: str = Field(..., min_length=1, max_length=120)
    description: Optional[str] = Field(default=None, max_length=2000)
    status: str
    type: Optional[str] = None
    assigned_to: Optional[int] = None
    deadline: Optional[date] = None
    priority: Optional[str] = None
    estimate: Optional[int] = Field(default=None, ge=0)


class BoardReorder(BaseModel):
    """Drag/drop result: status column -> ordered ticket ids."""
    columns: Dict[str, List[int]]


class TimeLogUpdate(BaseModel):
    """Manual correction of a time log."""
    duration_seconds: int = Field(..., ge=0)
