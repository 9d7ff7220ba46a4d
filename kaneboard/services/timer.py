"""
Timer service.

Keeps the rule that a user has at most one running time log across all
tickets. Starting a timer runs in one transaction that first locks the
user's row, then stops whatever else the user has running, then inserts
the new log. Concurrent starts by the same user queue on the row lock;
the partial unique index on running logs rejects anything that slips past.

Timers only run on tickets that are in progress.
"""

import logging
from dataclasses import dataclass, asdict
from datetime import datetime
from typing import Optional, Dict, Any

from ..database import get_database, Database
from ..database.repositories import (
    ProjectRepository,
    TicketRepository,
    TimeLogRepository,
    format_duration,
    log_seconds,
)
from ..models.ticket import TRACKABLE_STATUS
from ..utils.datetime_utils import get_local_now, elapsed_seconds, isoformat_utc
from .authorization import AccessPolicy
from .exceptions import NoRunningTimer, NotTrackable, ProjectNotFound, TicketNotFound, TimeLogNotFound

logger = logging.getLogger(__name__)


@dataclass
class TimerResult:
    """Outcome of a timer action."""
    success: bool
    message: str
    ticket_id: Optional[int] = None
    log_id: Optional[int] = None
    started_at: Optional[str] = None
    ended_at: Optional[str] = None
    duration_seconds: Optional[int] = None
    stopped_log_id: Optional[int] = None
    error: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


async def timer_state(
    time_logs: TimeLogRepository,
    ticket_id: int,
    user_id: int,
    now: datetime,
) -> Dict[str, Any]:
    """
    A user's timer on one ticket, read-only.

    elapsed_seconds covers the user's finished sessions on the ticket plus
    the live one.
    """
    running = await time_logs.running_for_ticket_user(ticket_id, user_id)
    elapsed = await time_logs.ended_seconds(ticket_id, user_id)
    if running is not None:
        elapsed += elapsed_seconds(running.started_at, now)

    return {
        "ticket_id": ticket_id,
        "running": running is not None,
        "log_id": running.id if running else None,
        "started_at": isoformat_utc(running.started_at) if running else None,
        "elapsed_seconds": elapsed,
    }


class TimerService:
    """Start, stop and inspect a user's ticket timers."""

    def __init__(self, db: Optional[Database] = None):
        self.db = db or get_database()

    async def _load_trackable(self, session, actor_id: int, ticket_id: int, lock: bool = False):
        projects = ProjectRepository(session)
        ticket = await TicketRepository(session).get(ticket_id, lock=lock)
        if ticket is None:
            raise TicketNotFound(ticket_id)
        project = await projects.get_by_id(ticket.project_id)
        if project is None:
            raise ProjectNotFound(ticket.project_id)

        await AccessPolicy(projects).authorize_view_project(actor_id, project)

        if ticket.status != TRACKABLE_STATUS:
            raise NotTrackable(ticket.status)
        return ticket

    async def start(
        self,
        actor_id: int,
        ticket_id: int,
        now: Optional[datetime] = None,
    ) -> TimerResult:
        """
        Start (or resume) the actor's timer on a ticket.

        - already running on this ticket: no-op
        - running on another ticket: that log is stopped first

        Lock order is ticket, then user, then the user's logs. Holding the
        ticket row keeps a concurrent completion from committing between
        the trackable check and the insert.
        """
        now = now or get_local_now()

        async with self.db.session() as session:
            time_logs = TimeLogRepository(session)
            await self._load_trackable(session, actor_id, ticket_id, lock=True)

            await time_logs.lock_user(actor_id)
            running = await time_logs.running_for_user(actor_id, lock=True)

            current = next((log for log in running if log.ticket_id == ticket_id), None)
            stopped_log_id = None
            for log in running:
                if log is current:
                    continue
                await time_logs.stop(log, now)
                stopped_log_id = log.id
                logger.info(
                    f"User {actor_id} switched timer: stopped log {log.id} on ticket {log.ticket_id} "
                    f"after {format_duration(log.duration_seconds)}"
                )

            if current is not None:
                return TimerResult(
                    success=True,
                    message="Timer already running",
                    ticket_id=ticket_id,
                    log_id=current.id,
                    started_at=isoformat_utc(current.started_at),
                    stopped_log_id=stopped_log_id,
                )

            log = await time_logs.start(ticket_id, actor_id, now)
            logger.info(f"User {actor_id} started timer on ticket {ticket_id} (log {log.id})")

            return TimerResult(
                success=True,
                message="Timer started",
                ticket_id=ticket_id,
                log_id=log.id,
                started_at=isoformat_utc(log.started_at),
                stopped_log_id=stopped_log_id,
            )

    async def resume(
        self,
        actor_id: int,
        ticket_id: int,
        now: Optional[datetime] = None,
    ) -> TimerResult:
        return await self.start(actor_id, ticket_id, now=now)

    async def stop(
        self,
        actor_id: int,
        ticket_id: int,
        now: Optional[datetime] = None,
    ) -> TimerResult:
        """
        Stop the actor's running timer on a ticket.

        Nothing running is a soft failure: success=False with the
        no_running_timer code and no rows touched.
        """
        now = now or get_local_now()

        async with self.db.session() as session:
            time_logs = TimeLogRepository(session)
            await self._load_trackable(session, actor_id, ticket_id)

            log = await time_logs.running_for_ticket_user(ticket_id, actor_id)
            if log is None:
                soft = NoRunningTimer()
                logger.warning(f"User {actor_id} has no running timer on ticket {ticket_id}")
                return TimerResult(
                    success=False,
                    message=soft.message,
                    ticket_id=ticket_id,
                    error=soft.code,
                )

            await time_logs.stop(log, now)
            logger.info(
                f"User {actor_id} stopped timer on ticket {ticket_id} "
                f"(log {log.id}, {format_duration(log.duration_seconds)})"
            )

            return TimerResult(
                success=True,
                message=f"Timer stopped ({format_duration(log.duration_seconds)})",
                ticket_id=ticket_id,
                log_id=log.id,
                started_at=isoformat_utc(log.started_at),
                ended_at=isoformat_utc(log.ended_at),
                duration_seconds=log.duration_seconds,
            )

    async def pause(
        self,
        actor_id: int,
        ticket_id: int,
        now: Optional[datetime] = None,
    ) -> TimerResult:
        return await self.stop(actor_id, ticket_id, now=now)

    async def status(
        self,
        actor_id: int,
        ticket_id: int,
        now: Optional[datetime] = None,
    ) -> Dict[str, Any]:
        """
        Whether the actor's timer runs on a ticket.

        elapsed_seconds is the live log's age only (0 when nothing runs);
        finished sessions are not included.
        """
        now = now or get_local_now()

        async with self.db.session() as session:
            projects = ProjectRepository(session)
            ticket = await TicketRepository(session).get(ticket_id)
            if ticket is None:
                raise TicketNotFound(ticket_id)
            project = await projects.get_by_id(ticket.project_id)
            if project is None:
                raise ProjectNotFound(ticket.project_id)
            await AccessPolicy(projects).authorize_view_project(actor_id, project)

            running = await TimeLogRepository(session).running_for_ticket_user(ticket_id, actor_id)
            return {
                "ticket_id": ticket_id,
                "running": running is not None,
                "log_id": running.id if running else None,
                "started_at": isoformat_utc(running.started_at) if running else None,
                "elapsed_seconds": elapsed_seconds(running.started_at, now) if running else 0,
            }

    async def running_for_user(
        self,
        actor_id: int,
        now: Optional[datetime] = None,
    ) -> Optional[Dict[str, Any]]:
        """The actor's running timer across all tickets, or None."""
        now = now or get_local_now()

        async with self.db.session() as session:
            time_logs = TimeLogRepository(session)
            running = await time_logs.running_for_user(actor_id)
            if not running:
                return None

            log = running[0]
            ticket = await TicketRepository(session).get(log.ticket_id)
            elapsed = await time_logs.ended_seconds(log.ticket_id, actor_id)
            elapsed += elapsed_seconds(log.started_at, now)

            return {
                "log_id": log.id,
                "ticket_id": log.ticket_id,
                "ticket_title": ticket.title if ticket else None,
                "ticket_status": ticket.status if ticket else None,
                "project_id": ticket.project_id if ticket else None,
                "started_at": isoformat_utc(log.started_at),
                "elapsed_seconds": elapsed,
            }

    # ==================== MANUAL CORRECTIONS ====================

    async def _load_log_for_edit(self, session, actor_id: int, log_id: int):
        time_logs = TimeLogRepository(session)
        projects = ProjectRepository(session)

        log = await time_logs.get_by_id(log_id)
        if log is None:
            raise TimeLogNotFound(log_id)
        ticket = await TicketRepository(session).get(log.ticket_id)
        if ticket is None:
            raise TicketNotFound(log.ticket_id)
        project = await projects.get_by_id(ticket.project_id)
        if project is None:
            raise ProjectNotFound(ticket.project_id)

        AccessPolicy(projects).authorize_edit_time_log(actor_id, log, project)
        return log

    async def update_time_log(
        self,
        actor_id: int,
        log_id: int,
        duration_seconds: int,
        now: Optional[datetime] = None,
    ) -> Dict[str, Any]:
        """Override a log's duration; ended_at is moved to started_at + duration."""
        now = now or get_local_now()

        async with self.db.session() as session:
            time_logs = TimeLogRepository(session)
            log = await self._load_log_for_edit(session, actor_id, log_id)

            await time_logs.override_duration(log, duration_seconds)
            log.updated_at = now
            logger.info(
                f"User {actor_id} set time log {log_id} to {format_duration(log.duration_seconds)}"
            )

            return {
                "id": log.id,
                "ticket_id": log.ticket_id,
                "user_id": log.user_id,
                "started_at": isoformat_utc(log.started_at),
                "ended_at": isoformat_utc(log.ended_at),
                "duration_seconds": log_seconds(log.started_at, log.ended_at, log.duration_seconds, now),
            }

    async def delete_time_log(self, actor_id: int, log_id: int) -> None:
        async with self.db.session() as session:
            log = await self._load_log_for_edit(session, actor_id, log_id)
            await TimeLogRepository(session).delete(log)
            logger.info(f"User {actor_id} deleted time log {log_id}")
