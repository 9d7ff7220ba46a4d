"""
Ticket repository.

Handles:
- Ticket CRUD inside a caller-owned transaction
- Column tail position lookup (max position + 1)
- Board listing ordered by status column and position
"""

import logging
from datetime import datetime
from typing import Optional, List, Dict, Any, Iterable

from sqlalchemy import select, delete, func
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from ..models import TicketDB, TimeLogDB
from ..exceptions import DatabaseConstraintError, DatabaseOperationError

logger = logging.getLogger(__name__)


class TicketRepository:
    """Repository for ticket operations."""

    def __init__(self, session: AsyncSession):
        self.session = session

    async def get(self, ticket_id: int, lock: bool = False) -> Optional[TicketDB]:
        """Get a ticket by id, optionally locking its row."""
        query = select(TicketDB).where(TicketDB.id == ticket_id)
        if lock:
            query = query.with_for_update()
        result = await self.session.execute(query)
        return result.scalar_one_or_none()

    async def next_position(self, project_id: int, status: str) -> int:
        """Position that appends a ticket to the end of a status column."""
        result = await self.session.execute(
            select(func.max(TicketDB.position)).where(
                TicketDB.project_id == project_id,
                TicketDB.status == status,
            )
        )
        current_max = result.scalar()
        return int(current_max or 0) + 1

    async def create(self, ticket_data: Dict[str, Any]) -> TicketDB:
        """Insert a ticket. Position must already be resolved by the caller."""
        try:
            ticket = TicketDB(**ticket_data)
            self.session.add(ticket)
            await self.session.flush()

            logger.info(
                f"Created ticket {ticket.id} in project {ticket.project_id} "
                f"({ticket.status} #{ticket.position})"
            )
            return ticket

        except IntegrityError as e:
            logger.error(f"Constraint violation creating ticket: {e}")
            raise DatabaseConstraintError(
                f"Cannot create ticket {ticket_data.get('title')!r}: constraint violation"
            )

        except Exception as e:
            logger.error(f"CRITICAL: Ticket creation failed: {e}", exc_info=True)
            raise DatabaseOperationError(f"Failed to create ticket: {e}")

    async def save(self, ticket: TicketDB, now: Optional[datetime] = None) -> TicketDB:
        """Flush pending attribute changes on a loaded ticket."""
        try:
            if now is not None:
                ticket.updated_at = now
            await self.session.flush()
            return ticket

        except IntegrityError as e:
            logger.error(f"Constraint violation updating ticket {ticket.id}: {e}")
            raise DatabaseConstraintError(f"Cannot update ticket {ticket.id}: constraint violation")

    async def delete(self, ticket: TicketDB) -> None:
        """Delete a ticket and its time logs."""
        try:
            await self.session.execute(
                delete(TimeLogDB).where(TimeLogDB.ticket_id == ticket.id)
            )
            await self.session.execute(
                delete(TicketDB).where(TicketDB.id == ticket.id)
            )
        except Exception as e:
            logger.error(f"CRITICAL: Ticket deletion failed for {ticket.id}: {e}", exc_info=True)
            raise DatabaseOperationError(f"Failed to delete ticket {ticket.id}: {e}")

    async def get_by_project(self, project_id: int) -> List[TicketDB]:
        """Tickets of a project in board order (status, then position)."""
        result = await self.session.execute(
            select(TicketDB)
            .where(TicketDB.project_id == project_id)
            .order_by(TicketDB.status, TicketDB.position, TicketDB.updated_at, TicketDB.id)
        )
        return list(result.scalars().all())

    async def get_many_in_project(self, project_id: int, ticket_ids: Iterable[int]) -> Dict[int, TicketDB]:
        """Tickets by id, restricted to one project. Foreign ids are dropped."""
        ids = list(ticket_ids)
        if not ids:
            return {}
        result = await self.session.execute(
            select(TicketDB).where(
                TicketDB.project_id == project_id,
                TicketDB.id.in_(ids),
            )
        )
        return {ticket.id: ticket for ticket in result.scalars().all()}
