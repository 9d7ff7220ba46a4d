"""
Domain errors raised by the ticket, timer and health services.

Every failure a write operation can produce maps to one of these kinds:

- validation: malformed input, rejected before any mutation
- authorization: the actor may not perform the action
- business_rule: input is well-formed but the rule forbids it
- soft: nothing to do; state is unchanged and safe
- not_found: the referenced entity does not exist
"""

from typing import Optional


class KaneboardError(Exception):
    """Base class for domain errors."""

    kind = "validation"
    code = "error"

    def __init__(self, message: str, field: Optional[str] = None):
        super().__init__(message)
        self.message = message
        self.field = field

    def to_dict(self) -> dict:
        return {
            "error": self.code,
            "kind": self.kind,
            "message": self.message,
            "field": self.field,
        }


# ==================== VALIDATION ====================

class InvalidStatus(KaneboardError):
    code = "invalid_status"

    def __init__(self, status: str):
        super().__init__(f"Unknown status: {status!r}", field="status")


class InvalidPriority(KaneboardError):
    code = "invalid_priority"

    def __init__(self, priority: str):
        super().__init__(f"Unknown priority: {priority!r}", field="priority")


class InvalidType(KaneboardError):
    code = "invalid_type"

    def __init__(self, ticket_type: str):
        super().__init__(f"Unknown ticket type: {ticket_type!r}", field="type")


class InvalidPayload(KaneboardError):
    code = "invalid_payload"


# ==================== AUTHORIZATION ====================

class Forbidden(KaneboardError):
    kind = "authorization"
    code = "forbidden"

    def __init__(self, message: str = "This action is unauthorized."):
        super().__init__(message)


# ==================== BUSINESS RULES ====================

class AssigneeNotAllowed(KaneboardError):
    kind = "business_rule"
    code = "assignee_not_allowed"

    def __init__(self, user_id: int):
        super().__init__(
            f"User {user_id} is not the owner or a member of this project",
            field="assigned_to",
        )


class NotTrackable(KaneboardError):
    kind = "business_rule"
    code = "not_trackable"

    def __init__(self, status: str):
        super().__init__(
            f"Timer is only allowed when ticket is In progress (current status: {status})",
            field="status",
        )


# ==================== SOFT ====================

class NoRunningTimer(KaneboardError):
    kind = "soft"
    code = "no_running_timer"

    def __init__(self, message: str = "No running timer found to pause."):
        super().__init__(message)


# ==================== NOT FOUND ====================

class TicketNotFound(KaneboardError):
    kind = "not_found"
    code = "ticket_not_found"

    def __init__(self, ticket_id: int):
        super().__init__(f"Ticket {ticket_id} not found")


class ProjectNotFound(KaneboardError):
    kind = "not_found"
    code = "project_not_found"

    def __init__(self, project_id: int):
        super().__init__(f"Project {project_id} not found")


class TimeLogNotFound(KaneboardError):
    kind = "not_found"
    code = "time_log_not_found"

    def __init__(self, log_id: int):
        super().__init__(f"Time log {log_id} not found")
