"""Data models for Kaneboard."""

from .ticket import (
    TicketStatus,
    TicketPriority,
    TicketType,
    STATUSES,
    PRIORITIES,
    TICKET_TYPES,
    STARTED_STATUSES,
    DONE_STATUSES,
    TRACKABLE_STATUS,
    DEFAULT_PRIORITY,
    is_done_like,
    is_started,
    TicketCreate,
    TicketUpdate,
    BoardReorder,
    TimeLogUpdate,
)

__all__ = [
    "TicketStatus",
    "TicketPriority",
    "TicketType",
    "STATUSES",
    "PRIORITIES",
    "TICKET_TYPES",
    "STARTED_STATUSES",
    "DONE_STATUSES",
    "TRACKABLE_STATUS",
    "DEFAULT_PRIORITY",
    "is_done_like",
    "is_started",
    "TicketCreate",
    "TicketUpdate",
    "BoardReorder",
    "TimeLogUpdate",
]
