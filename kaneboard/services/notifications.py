"""
Ticket activity events.

Every ticket create/update/delete produces a TicketEvent addressed to the
project's owner and members (minus the actor). Delivery happens after the
ticket transaction commits and is fire-and-forget: a failing notifier is
logged and never undoes the ticket change.
"""

import logging
from dataclasses import dataclass, field, asdict
from typing import List, Optional, Iterable, Set, Protocol

logger = logging.getLogger(__name__)


class TicketAction:
    CREATED = "created"
    UPDATED = "updated"
    MOVED = "moved"
    ASSIGNED = "assigned"
    DELETED = "deleted"


_MESSAGES = {
    TicketAction.CREATED: "New ticket created: {title}",
    TicketAction.UPDATED: "Ticket updated: {title}",
    TicketAction.MOVED: "Ticket moved: {title}",
    TicketAction.ASSIGNED: "Ticket assignment changed: {title}",
    TicketAction.DELETED: "Ticket deleted: {title}",
}

# Changes that never count as an update on their own
_IGNORED_FIELDS = {"updated_at"}


@dataclass
class TicketEvent:
    """Domain event describing one ticket mutation."""
    action: str
    message: str
    actor: int
    project_ref: int
    ticket_ref: int
    recipients: List[int] = field(default_factory=list)

    def to_dict(self) -> dict:
        return asdict(self)


class Notifier(Protocol):
    async def deliver(self, event: TicketEvent) -> None:
        ...


class LoggingNotifier:
    """Default notifier: records events in the application log."""

    async def deliver(self, event: TicketEvent) -> None:
        logger.info(
            f"Notify {event.recipients}: [{event.action}] {event.message} "
            f"(project {event.project_ref}, ticket {event.ticket_ref}, actor {event.actor})"
        )


def action_for_changes(changed_fields: Iterable[str]) -> Optional[str]:
    """
    Pick the event action for an update.

    moved when status or position changed, assigned when the assignee
    changed (wins over moved), otherwise updated. None when nothing changed.
    """
    changed: Set[str] = set(changed_fields) - _IGNORED_FIELDS
    if not changed:
        return None

    action = TicketAction.UPDATED
    if "status" in changed or "position" in changed:
        action = TicketAction.MOVED
    if "assigned_to" in changed:
        action = TicketAction.ASSIGNED
    return action


def build_event(
    action: str,
    title: str,
    actor_id: int,
    project_id: int,
    ticket_id: int,
    owner_id: int,
    member_ids: Iterable[int],
) -> Optional[TicketEvent]:
    """Build the event for a mutation, or None if nobody is left to notify."""
    recipients: List[int] = []
    for user_id in [owner_id, *member_ids]:
        if user_id != actor_id and user_id not in recipients:
            recipients.append(user_id)

    if not recipients:
        return None

    return TicketEvent(
        action=action,
        message=_MESSAGES[action].format(title=title),
        actor=actor_id,
        project_ref=project_id,
        ticket_ref=ticket_id,
        recipients=recipients,
    )


class NotificationDispatcher:
    """Delivers events after commit, swallowing delivery failures."""

    def __init__(self, notifier: Optional[Notifier] = None):
        self.notifier = notifier or LoggingNotifier()

    async def dispatch(self, events: Iterable[Optional[TicketEvent]]) -> int:
        delivered = 0
        for event in events:
            if event is None:
                continue
            try:
                await self.notifier.deliver(event)
                delivered += 1
            except Exception as e:
                logger.warning(f"Notification delivery failed for ticket {event.ticket_ref}: {e}")
        return delivered
