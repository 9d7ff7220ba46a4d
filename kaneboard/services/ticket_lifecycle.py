"""
Ticket status transitions and their side effects.

A status change is planned by the pure `plan_transition` and carried out by
`apply_status_transition`, which every write path (create, update, board
reorder) calls inside its own transaction:

- entering in_progress stamps started_at once
- entering a done-like status stamps completed_at (sticky) and stops every
  running time log on the ticket, for every user
- leaving done-like for an open status clears completed_at
- changing column appends the ticket to the end of the target column
"""

import logging
from dataclasses import dataclass, field
from datetime import date, datetime
from typing import Optional, List, Dict, Any

from ..database.models import TicketDB, TimeLogDB
from ..database.repositories import TicketRepository, TimeLogRepository
from ..models.ticket import (
    STATUSES,
    PRIORITIES,
    TICKET_TYPES,
    TicketType,
    is_done_like,
    is_started,
)
from ..utils.datetime_utils import isoformat_utc
from .exceptions import InvalidStatus, InvalidPriority, InvalidType

logger = logging.getLogger(__name__)


# ==================== VALIDATION ====================

def validate_status(status: str) -> str:
    if status not in STATUSES:
        raise InvalidStatus(status)
    return status


def validate_priority(priority: Optional[str]) -> Optional[str]:
    if priority is not None and priority not in PRIORITIES:
        raise InvalidPriority(priority)
    return priority


def validate_type(ticket_type: Optional[str]) -> Optional[str]:
    if ticket_type is not None and ticket_type not in TICKET_TYPES:
        raise InvalidType(ticket_type)
    return ticket_type


# ==================== TRANSITIONS ====================

@dataclass(frozen=True)
class TransitionPlan:
    """What a status change will do to a ticket."""
    old_status: Optional[str]
    new_status: str
    changed: bool
    set_started_at: bool = False
    set_completed_at: bool = False
    clear_completed_at: bool = False
    stop_timers: bool = False


@dataclass
class TransitionResult:
    plan: TransitionPlan
    stopped_logs: List[TimeLogDB] = field(default_factory=list)

    @property
    def changed(self) -> bool:
        return self.plan.changed


def plan_transition(
    old_status: Optional[str],
    new_status: str,
    started_at: Optional[datetime],
    completed_at: Optional[datetime],
) -> TransitionPlan:
    """
    Decide the side effects of moving from old_status to new_status.

    old_status is None for a ticket being created.
    """
    validate_status(new_status)

    if old_status == new_status:
        return TransitionPlan(old_status=old_status, new_status=new_status, changed=False)

    entering_done = is_done_like(new_status)
    leaving_done = is_done_like(old_status) and not entering_done

    return TransitionPlan(
        old_status=old_status,
        new_status=new_status,
        changed=True,
        set_started_at=is_started(new_status) and started_at is None,
        set_completed_at=entering_done and completed_at is None,
        clear_completed_at=leaving_done,
        stop_timers=entering_done,
    )


async def apply_status_transition(
    ticket: TicketDB,
    new_status: str,
    tickets: TicketRepository,
    time_logs: TimeLogRepository,
    now: datetime,
    position: Optional[int] = None,
) -> TransitionResult:
    """
    Apply a status change and its side effects to a loaded ticket.

    Runs inside the caller's transaction. When `position` is None a column
    change appends the ticket to the end of the target column; the board
    reorder passes an explicit position instead.
    """
    plan = plan_transition(ticket.status, new_status, ticket.started_at, ticket.completed_at)
    result = TransitionResult(plan=plan)

    if not plan.changed:
        if position is not None:
            ticket.position = position
        return result

    if position is None:
        position = await tickets.next_position(ticket.project_id, new_status)

    ticket.status = new_status
    ticket.position = position

    if plan.set_started_at:
        ticket.started_at = now

    if plan.set_completed_at:
        ticket.completed_at = now

    if plan.stop_timers and ticket.id is not None:
        result.stopped_logs = await time_logs.stop_all_for_ticket(ticket.id, now)
        if result.stopped_logs:
            logger.info(
                f"Ticket {ticket.id} entered {new_status}: stopped "
                f"{len(result.stopped_logs)} running timer(s)"
            )

    if plan.clear_completed_at:
        ticket.completed_at = None

    logger.info(f"Ticket {ticket.id} status changed: {plan.old_status} -> {new_status}")
    return result


# ==================== DERIVED FIELDS ====================

def is_overdue(deadline: Optional[date], status: str, today: date) -> bool:
    """Deadline set, already past, and the ticket is not finished."""
    if deadline is None or is_done_like(status):
        return False
    return deadline < today


def ticket_to_dict(ticket: TicketDB, tracked_seconds: int, today: date) -> Dict[str, Any]:
    """Serialize a ticket with its derived fields."""
    return {
        "id": ticket.id,
        "project_id": ticket.project_id,
        "title": ticket.title,
        "description": ticket.description,
        "status": ticket.status,
        "position": ticket.position,
        "priority": ticket.priority,
        "type": ticket.type,
        "type_label": TicketType(ticket.type).label() if ticket.type in TICKET_TYPES else ticket.type,
        "estimate": ticket.estimate,
        "created_by": ticket.created_by,
        "assigned_to": ticket.assigned_to,
        "deadline": ticket.deadline.isoformat() if ticket.deadline else None,
        "started_at": isoformat_utc(ticket.started_at),
        "completed_at": isoformat_utc(ticket.completed_at),
        "is_overdue": is_overdue(ticket.deadline, ticket.status, today),
        "tracked_seconds": tracked_seconds,
        "tracked_hours": round(tracked_seconds / 3600, 2),
    }
