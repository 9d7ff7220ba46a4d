"""
SQLAlchemy models for the relational store.

Schema includes:
- Users (collaborator entity, identity only)
- Projects with schedule and baseline dates
- Project members
- Tickets on the kanban board
- Ticket time logs (timer sessions)
"""

from datetime import datetime, date
from typing import Optional, List
from sqlalchemy import (
    String,
    Text,
    Integer,
    DateTime,
    Date,
    ForeignKey,
    Index,
    UniqueConstraint,
    text,
)
from sqlalchemy.orm import DeclarativeBase, relationship, Mapped, mapped_column
from sqlalchemy.sql import func


class Base(DeclarativeBase):
    """Base class for all models."""
    pass


# ==================== USERS ====================

class UserDB(Base):
    """User identity. Authentication lives outside this service."""
    __tablename__ = "users"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    name: Mapped[str] = mapped_column(String(255), nullable=False)
    email: Mapped[Optional[str]] = mapped_column(String(255), nullable=True, unique=True)

    created_at: Mapped[datetime] = mapped_column(DateTime, server_default=func.now())


# ==================== PROJECTS ====================

class ProjectDB(Base):
    """Projects own tickets and carry the schedule used by the health calculator."""
    __tablename__ = "projects"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    workspace_id: Mapped[Optional[int]] = mapped_column(Integer, nullable=True)
    owner_id: Mapped[int] = mapped_column(Integer, ForeignKey("users.id", ondelete="CASCADE"), nullable=False)

    name: Mapped[str] = mapped_column(String(255), nullable=False)
    description: Mapped[Optional[str]] = mapped_column(Text, nullable=True)

    # Schedule
    start_date: Mapped[Optional[date]] = mapped_column(Date, nullable=True)
    end_date: Mapped[Optional[date]] = mapped_column(Date, nullable=True)
    baseline_start_date: Mapped[Optional[date]] = mapped_column(Date, nullable=True)
    baseline_end_date: Mapped[Optional[date]] = mapped_column(Date, nullable=True)

    created_at: Mapped[datetime] = mapped_column(DateTime, server_default=func.now())
    updated_at: Mapped[datetime] = mapped_column(DateTime, server_default=func.now(), onupdate=func.now())

    # Relationships
    tickets: Mapped[List["TicketDB"]] = relationship(
        "TicketDB", back_populates="project", passive_deletes=True
    )
    members: Mapped[List["ProjectMemberDB"]] = relationship(
        "ProjectMemberDB", back_populates="project", passive_deletes=True
    )

    __table_args__ = (
        Index("idx_projects_owner", "owner_id"),
        Index("idx_projects_workspace", "workspace_id"),
    )


class ProjectMemberDB(Base):
    """Membership pivot between projects and users."""
    __tablename__ = "project_members"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    project_id: Mapped[int] = mapped_column(Integer, ForeignKey("projects.id", ondelete="CASCADE"), nullable=False)
    user_id: Mapped[int] = mapped_column(Integer, ForeignKey("users.id", ondelete="CASCADE"), nullable=False)
    role: Mapped[str] = mapped_column(String(50), default="member")  # owner, member

    created_at: Mapped[datetime] = mapped_column(DateTime, server_default=func.now())

    project: Mapped["ProjectDB"] = relationship("ProjectDB", back_populates="members")

    __table_args__ = (
        UniqueConstraint("project_id", "user_id", name="uq_project_member"),
        Index("idx_members_user", "user_id"),
    )


# ==================== TICKETS ====================

class TicketDB(Base):
    """A card on the project board."""
    __tablename__ = "tickets"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    project_id: Mapped[int] = mapped_column(Integer, ForeignKey("projects.id", ondelete="CASCADE"), nullable=False)

    # Core fields
    title: Mapped[str] = mapped_column(String(120), nullable=False)
    description: Mapped[Optional[str]] = mapped_column(Text, nullable=True)

    # Board placement
    status: Mapped[str] = mapped_column(String(30), default="backlog")
    position: Mapped[int] = mapped_column(Integer, default=0)

    # Classification
    priority: Mapped[str] = mapped_column(String(20), default="low")
    type: Mapped[str] = mapped_column(String(20), default="feature")
    estimate: Mapped[Optional[int]] = mapped_column(Integer, nullable=True)  # points

    # People
    created_by: Mapped[int] = mapped_column(Integer, ForeignKey("users.id", ondelete="CASCADE"), nullable=False)
    assigned_to: Mapped[Optional[int]] = mapped_column(Integer, ForeignKey("users.id", ondelete="SET NULL"), nullable=True)

    # Timing
    deadline: Mapped[Optional[date]] = mapped_column(Date, nullable=True)
    started_at: Mapped[Optional[datetime]] = mapped_column(DateTime, nullable=True)
    completed_at: Mapped[Optional[datetime]] = mapped_column(DateTime, nullable=True)
    created_at: Mapped[datetime] = mapped_column(DateTime, server_default=func.now())
    updated_at: Mapped[datetime] = mapped_column(DateTime, server_default=func.now(), onupdate=func.now())

    # Relationships
    project: Mapped["ProjectDB"] = relationship("ProjectDB", back_populates="tickets")
    time_logs: Mapped[List["TimeLogDB"]] = relationship(
        "TimeLogDB",
        back_populates="ticket",
        cascade="all, delete-orphan",
        passive_deletes=True,
    )

    __table_args__ = (
        Index("idx_tickets_board", "project_id", "status", "position"),
        Index("idx_tickets_assignee", "assigned_to"),
        Index("idx_tickets_deadline", "deadline"),
        Index("idx_tickets_completed", "completed_at"),
    )


# ==================== TIME TRACKING ====================

class TimeLogDB(Base):
    """
    One tracking session of a user on a ticket.

    ended_at NULL means the session is running. duration_seconds is
    authoritative once set; when NULL on an ended log the duration is
    ended_at - started_at.
    """
    __tablename__ = "ticket_time_logs"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    ticket_id: Mapped[int] = mapped_column(Integer, ForeignKey("tickets.id", ondelete="CASCADE"), nullable=False)
    user_id: Mapped[int] = mapped_column(Integer, ForeignKey("users.id", ondelete="CASCADE"), nullable=False)

    started_at: Mapped[datetime] = mapped_column(DateTime, nullable=False)
    ended_at: Mapped[Optional[datetime]] = mapped_column(DateTime, nullable=True)
    duration_seconds: Mapped[Optional[int]] = mapped_column(Integer, nullable=True)

    note: Mapped[Optional[str]] = mapped_column(String(255), nullable=True)

    created_at: Mapped[datetime] = mapped_column(DateTime, server_default=func.now())
    updated_at: Mapped[datetime] = mapped_column(DateTime, server_default=func.now(), onupdate=func.now())

    ticket: Mapped["TicketDB"] = relationship("TicketDB", back_populates="time_logs")

    __table_args__ = (
        Index("idx_time_logs_ticket_user", "ticket_id", "user_id"),
        Index("idx_time_logs_user_running", "user_id", "ended_at"),
        # At most one running log per user
        Index(
            "uq_time_logs_one_running_per_user",
            "user_id",
            unique=True,
            postgresql_where=text("ended_at IS NULL"),
            sqlite_where=text("ended_at IS NULL"),
        ),
    )

    @property
    def is_running(self) -> bool:
        return self.ended_at is None
