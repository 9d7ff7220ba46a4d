"""
Repository for ticket time logs.

Handles running-timer lookups (with row locks), starting and stopping
sessions, manual corrections, and tracked-time aggregation.

Every tracked-time total in the service goes through `log_seconds`, so a
ticket total, a project total and a per-user breakdown taken at the same
instant always agree.
"""

import logging
from collections import defaultdict
from datetime import datetime, timedelta
from typing import Optional, List, Dict, Iterable, Tuple

from sqlalchemy import select, delete
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from ..models import TimeLogDB, TicketDB, UserDB
from ..exceptions import DatabaseOperationError
from ...utils.datetime_utils import elapsed_seconds

logger = logging.getLogger(__name__)


def log_seconds(
    started_at: datetime,
    ended_at: Optional[datetime],
    duration_seconds: Optional[int],
    now: datetime,
) -> int:
    """
    Seconds a single log contributes at instant `now`.

    - ended with a stored duration: the stored duration
    - ended without one: ended_at - started_at
    - running: now - started_at
    """
    if ended_at is not None:
        if duration_seconds is not None:
            return max(0, int(duration_seconds))
        return elapsed_seconds(started_at, ended_at)
    return elapsed_seconds(started_at, now)


def format_duration(seconds: int) -> str:
    """Format seconds to a readable string like '2h 30m'."""
    if seconds <= 0:
        return "0m"

    minutes = seconds // 60
    hours = minutes // 60
    mins = minutes % 60

    if hours == 0:
        return f"{mins}m" if mins else f"{seconds}s"
    elif mins == 0:
        return f"{hours}h"
    else:
        return f"{hours}h {mins}m"


class TimeLogRepository:
    """Repository for time log operations inside a caller-owned transaction."""

    def __init__(self, session: AsyncSession):
        self.session = session

    # ==================== LOOKUPS ====================

    async def get_by_id(self, log_id: int) -> Optional[TimeLogDB]:
        result = await self.session.execute(
            select(TimeLogDB).where(TimeLogDB.id == log_id)
        )
        return result.scalar_one_or_none()

    async def lock_user(self, user_id: int) -> None:
        """
        Take the per-user row lock that serializes timer starts.

        Locking the running logs alone is not enough: when the user has no
        running log there is no row to lock, and two concurrent starts would
        both see "nothing running". The user row always exists.
        """
        await self.session.execute(
            select(UserDB.id).where(UserDB.id == user_id).with_for_update()
        )

    async def running_for_user(self, user_id: int, lock: bool = False) -> List[TimeLogDB]:
        """All running logs of a user across every ticket, newest first."""
        query = (
            select(TimeLogDB)
            .where(TimeLogDB.user_id == user_id, TimeLogDB.ended_at.is_(None))
            .order_by(TimeLogDB.started_at.desc(), TimeLogDB.id.desc())
        )
        if lock:
            query = query.with_for_update()

        result = await self.session.execute(query)
        return list(result.scalars().all())

    async def running_for_ticket_user(self, ticket_id: int, user_id: int) -> Optional[TimeLogDB]:
        """Latest running log of a user on one ticket."""
        result = await self.session.execute(
            select(TimeLogDB)
            .where(
                TimeLogDB.ticket_id == ticket_id,
                TimeLogDB.user_id == user_id,
                TimeLogDB.ended_at.is_(None),
            )
            .order_by(TimeLogDB.started_at.desc(), TimeLogDB.id.desc())
            .limit(1)
        )
        return result.scalar_one_or_none()

    async def running_for_ticket(self, ticket_id: int, lock: bool = False) -> List[TimeLogDB]:
        """Running logs on a ticket, whoever owns them."""
        query = select(TimeLogDB).where(
            TimeLogDB.ticket_id == ticket_id,
            TimeLogDB.ended_at.is_(None),
        )
        if lock:
            query = query.with_for_update()

        result = await self.session.execute(query)
        return list(result.scalars().all())

    async def list_for_ticket(self, ticket_id: int) -> List[TimeLogDB]:
        result = await self.session.execute(
            select(TimeLogDB)
            .where(TimeLogDB.ticket_id == ticket_id)
            .order_by(TimeLogDB.started_at.desc())
        )
        return list(result.scalars().all())

    # ==================== MUTATIONS ====================

    async def start(
        self,
        ticket_id: int,
        user_id: int,
        now: datetime,
        note: Optional[str] = None,
    ) -> TimeLogDB:
        """Insert a running log."""
        log = TimeLogDB(
            ticket_id=ticket_id,
            user_id=user_id,
            started_at=now,
            ended_at=None,
            duration_seconds=None,
            note=note,
        )
        self.session.add(log)
        try:
            await self.session.flush()
        except IntegrityError as e:
            # A concurrent start won the one-running-log-per-user index
            logger.error(f"Concurrent timer start for user {user_id}: {e}")
            raise DatabaseOperationError(f"Timer start for user {user_id} conflicted; retry the request") from e
        return log

    async def stop(self, log: TimeLogDB, now: datetime) -> TimeLogDB:
        """End a running log; duration is clamped to zero under clock skew."""
        log.ended_at = now
        log.duration_seconds = elapsed_seconds(log.started_at, now)
        await self.session.flush()
        return log

    async def override_duration(self, log: TimeLogDB, seconds: int) -> TimeLogDB:
        """Manual correction: duration wins and ended_at follows it."""
        seconds = max(0, int(seconds))
        log.duration_seconds = seconds
        log.ended_at = log.started_at + timedelta(seconds=seconds)
        await self.session.flush()
        return log

    async def delete(self, log: TimeLogDB) -> None:
        await self.session.execute(delete(TimeLogDB).where(TimeLogDB.id == log.id))

    async def stop_all_for_ticket(self, ticket_id: int, now: datetime) -> List[TimeLogDB]:
        """Stop every running log on a ticket, each from its own started_at."""
        running = await self.running_for_ticket(ticket_id, lock=True)
        for log in running:
            log.ended_at = now
            log.duration_seconds = elapsed_seconds(log.started_at, now)
        if running:
            await self.session.flush()
        return running

    # ==================== AGGREGATION ====================

    async def _log_rows(
        self,
        ticket_ids: Optional[Iterable[int]] = None,
        project_id: Optional[int] = None,
        user_id: Optional[int] = None,
    ) -> List[Tuple[int, int, datetime, Optional[datetime], Optional[int]]]:
        query = select(
            TimeLogDB.ticket_id,
            TimeLogDB.user_id,
            TimeLogDB.started_at,
            TimeLogDB.ended_at,
            TimeLogDB.duration_seconds,
        )
        if ticket_ids is not None:
            ids = list(ticket_ids)
            if not ids:
                return []
            query = query.where(TimeLogDB.ticket_id.in_(ids))
        if project_id is not None:
            query = query.join(TicketDB, TicketDB.id == TimeLogDB.ticket_id).where(
                TicketDB.project_id == project_id
            )
        if user_id is not None:
            query = query.where(TimeLogDB.user_id == user_id)

        result = await self.session.execute(query)
        return [tuple(row) for row in result.all()]

    async def tracked_seconds_by_ticket(
        self,
        ticket_ids: Iterable[int],
        now: datetime,
    ) -> Dict[int, int]:
        """Tracked seconds per ticket id (tickets without logs map to 0)."""
        ids = list(ticket_ids)
        totals: Dict[int, int] = {ticket_id: 0 for ticket_id in ids}
        for ticket_id, _user_id, started_at, ended_at, duration in await self._log_rows(ticket_ids=ids):
            totals[ticket_id] += log_seconds(started_at, ended_at, duration, now)
        return totals

    async def tracked_seconds(self, ticket_id: int, now: datetime) -> int:
        totals = await self.tracked_seconds_by_ticket([ticket_id], now)
        return totals[ticket_id]

    async def ended_seconds(self, ticket_id: int, user_id: int) -> int:
        """Seconds from a user's finished sessions on a ticket."""
        total = 0
        for _t, _u, started_at, ended_at, duration in await self._log_rows(
            ticket_ids=[ticket_id], user_id=user_id
        ):
            if ended_at is not None:
                total += log_seconds(started_at, ended_at, duration, ended_at)
        return total

    async def tracked_seconds_for_project(self, project_id: int, now: datetime) -> int:
        total = 0
        for _t, _u, started_at, ended_at, duration in await self._log_rows(project_id=project_id):
            total += log_seconds(started_at, ended_at, duration, now)
        return total

    async def tracked_seconds_by_user(self, project_id: int, now: datetime) -> List[Tuple[int, int]]:
        """(user_id, seconds) for a project, largest contributor first."""
        totals: Dict[int, int] = defaultdict(int)
        for _t, user_id, started_at, ended_at, duration in await self._log_rows(project_id=project_id):
            totals[user_id] += log_seconds(started_at, ended_at, duration, now)
        return sorted(totals.items(), key=lambda item: (-item[1], item[0]))
