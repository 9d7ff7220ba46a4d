"""
HTTP routes for tickets, the board, timers, time logs and reports.

Authentication happens upstream: the acting user's id arrives in the
X-User-Id header. Domain errors are turned into responses by the
handlers registered in main.py.
"""

import logging

from fastapi import APIRouter, Depends, Header
from fastapi.responses import JSONResponse

from ..models.ticket import TicketCreate, TicketUpdate, BoardReorder, TimeLogUpdate
from ..services.board import BoardService
from ..services.dashboard import DashboardService
from ..services.project_health import ProjectHealthService
from ..services.tickets import TicketService
from ..services.time_reports import TimeReportService
from ..services.timer import TimerService, TimerResult

logger = logging.getLogger(__name__)

router = APIRouter()


async def get_actor_id(x_user_id: int = Header(...)) -> int:
    """Acting user, as forwarded by the authenticating proxy."""
    return x_user_id


def _timer_response(result: TimerResult):
    # Nothing to stop is reported, not treated as a fault
    if not result.success:
        return JSONResponse(status_code=409, content=result.to_dict())
    return result.to_dict()


# ============================================================================
# Tickets
# ============================================================================

@router.post("/projects/{project_id}/tickets", status_code=201)
async def create_ticket(project_id: int, payload: TicketCreate, actor_id: int = Depends(get_actor_id)):
    return await TicketService().create_ticket(actor_id, project_id, payload)


@router.get("/tickets/{ticket_id}")
async def get_ticket(ticket_id: int, actor_id: int = Depends(get_actor_id)):
    return await TicketService().get_ticket(actor_id, ticket_id)


@router.patch("/tickets/{ticket_id}")
async def update_ticket(ticket_id: int, payload: TicketUpdate, actor_id: int = Depends(get_actor_id)):
    return await TicketService().update_ticket(actor_id, ticket_id, payload)


@router.delete("/tickets/{ticket_id}")
async def delete_ticket(ticket_id: int, actor_id: int = Depends(get_actor_id)):
    await TicketService().delete_ticket(actor_id, ticket_id)
    return {"success": True, "ticket_id": ticket_id}


# ============================================================================
# Board
# ============================================================================

@router.get("/projects/{project_id}/board")
async def get_board(project_id: int, actor_id: int = Depends(get_actor_id)):
    return await BoardService().get_board(actor_id, project_id)


@router.post("/projects/{project_id}/board/reorder")
async def reorder_board(project_id: int, payload: BoardReorder, actor_id: int = Depends(get_actor_id)):
    moved = await BoardService().reorder(actor_id, project_id, payload)
    return {"success": True, "moved": moved}


# ============================================================================
# Timers
# ============================================================================

@router.post("/tickets/{ticket_id}/timer/start")
async def start_timer(ticket_id: int, actor_id: int = Depends(get_actor_id)):
    return _timer_response(await TimerService().start(actor_id, ticket_id))


@router.post("/tickets/{ticket_id}/timer/resume")
async def resume_timer(ticket_id: int, actor_id: int = Depends(get_actor_id)):
    return _timer_response(await TimerService().resume(actor_id, ticket_id))


@router.post("/tickets/{ticket_id}/timer/pause")
async def pause_timer(ticket_id: int, actor_id: int = Depends(get_actor_id)):
    return _timer_response(await TimerService().pause(actor_id, ticket_id))


@router.post("/tickets/{ticket_id}/timer/stop")
async def stop_timer(ticket_id: int, actor_id: int = Depends(get_actor_id)):
    return _timer_response(await TimerService().stop(actor_id, ticket_id))


@router.get("/tickets/{ticket_id}/timer")
async def timer_status(ticket_id: int, actor_id: int = Depends(get_actor_id)):
    return await TimerService().status(actor_id, ticket_id)


@router.get("/timer/running")
async def running_timer(actor_id: int = Depends(get_actor_id)):
    return {"running": await TimerService().running_for_user(actor_id)}


# ============================================================================
# Time logs
# ============================================================================

@router.patch("/time-logs/{log_id}")
async def update_time_log(log_id: int, payload: TimeLogUpdate, actor_id: int = Depends(get_actor_id)):
    return await TimerService().update_time_log(actor_id, log_id, payload.duration_seconds)


@router.delete("/time-logs/{log_id}")
async def delete_time_log(log_id: int, actor_id: int = Depends(get_actor_id)):
    await TimerService().delete_time_log(actor_id, log_id)
    return {"success": True, "log_id": log_id}


# ============================================================================
# Reports
# ============================================================================

@router.get("/projects/{project_id}/health")
async def project_health(project_id: int, actor_id: int = Depends(get_actor_id)):
    return await ProjectHealthService().get_health(actor_id, project_id)


@router.get("/projects/{project_id}/time")
async def project_time(project_id: int, actor_id: int = Depends(get_actor_id)):
    return await TimeReportService().project_time(actor_id, project_id)


@router.get("/dashboard/risky-projects")
async def risky_projects(actor_id: int = Depends(get_actor_id)):
    return {"projects": await DashboardService().risky_projects(actor_id)}
