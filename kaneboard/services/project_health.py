"""
Project health and completion forecast.

The calculator is pure: `calculate_health` takes the project schedule, the
ticket aggregates and the recent completion timestamps, and returns the
verdict. `ProjectHealthService` only loads those inputs and checks access.

Status precedence:
1. NOT_STARTED  - today is before the start date
2. COMPLETED    - every ticket is done-like
3. LATE         - forecast end falls after the planned end
4. by progress gap (expected - actual): ON_TRACK <= 0.05 < AT_RISK <= 0.15 < LATE
"""

import logging
import math
import statistics
from dataclasses import dataclass
from datetime import date, datetime, time, timedelta
from typing import Optional, List, Dict, Any, Iterable

from config import settings

from ..database import get_database, Database
from ..database.models import ProjectDB
from ..database.repositories import ProjectRepository
from ..utils.datetime_utils import get_local_now
from .authorization import AccessPolicy
from .exceptions import ProjectNotFound

logger = logging.getLogger(__name__)


class HealthStatus:
    NO_SCHEDULE = "NO_SCHEDULE"
    INVALID_SCHEDULE = "INVALID_SCHEDULE"
    NOT_STARTED = "NOT_STARTED"
    COMPLETED = "COMPLETED"
    ON_TRACK = "ON_TRACK"
    AT_RISK = "AT_RISK"
    LATE = "LATE"


ON_TRACK_GAP = 0.05
AT_RISK_GAP = 0.15
MIN_THROUGHPUT = 0.0001
MANY_DUE_SOON = 5
SCOPE_CREEP_SIGNAL_PCT = 20


@dataclass(frozen=True)
class TicketStats:
    total: int = 0
    done: int = 0
    open: int = 0
    overdue: int = 0
    due_soon: int = 0
    total_points: int = 0
    done_points: int = 0

    @classmethod
    def from_dict(cls, data: Dict[str, int]) -> "TicketStats":
        return cls(**{name: int(data.get(name, 0) or 0) for name in cls.__dataclass_fields__})


@dataclass(frozen=True)
class Forecast:
    forecast_end: Optional[date]
    confidence: Optional[int]
    throughput_per_day: float


def clamp(value: float, low: float, high: float) -> float:
    return max(low, min(high, value))


def round_half_up(value: float) -> int:
    """Nearest integer, .5 rounding away from zero (inputs are non-negative)."""
    return int(math.floor(value + 0.5))


def expected_progress(start: date, end: date, today: date) -> float:
    """Share of the schedule that has elapsed, 0..1."""
    total_days = max(1, (end - start).days)
    elapsed_days = 0 if start > today else min(total_days, (today - start).days)
    return clamp(elapsed_days / total_days, 0, 1)


def actual_progress(stats: TicketStats) -> float:
    """Done share by estimate points when any exist, else by ticket count."""
    if stats.total_points > 0:
        return stats.done_points / stats.total_points
    if stats.total > 0:
        return stats.done / stats.total
    return 0.0


def window_start(today: date, window_days: int) -> datetime:
    """First instant counted by the throughput window."""
    return datetime.combine(today - timedelta(days=window_days - 1), time.min)


def daily_completions(
    completion_times: Iterable[datetime],
    today: date,
    window_days: int,
) -> List[int]:
    """Completions per day over the window ending today, zero-filled, oldest first."""
    first_day = today - timedelta(days=window_days - 1)
    counts = [0] * window_days
    for completed_at in completion_times:
        index = (completed_at.date() - first_day).days
        if 0 <= index < window_days:
            counts[index] += 1
    return counts


def forecast_completion(daily_counts: List[int], remaining: int, today: date) -> Forecast:
    """
    Forecast the finish date from recent throughput.

    Confidence drops by 8 points per unit of daily-count standard deviation,
    bounded to 30..90. No date or confidence when nothing was completed
    recently or nothing is left.
    """
    window_days = len(daily_counts)
    throughput = sum(daily_counts) / window_days if window_days else 0.0

    if throughput <= MIN_THROUGHPUT or remaining <= 0:
        return Forecast(forecast_end=None, confidence=None, throughput_per_day=round(throughput, 4))

    forecast_end = today + timedelta(days=math.ceil(remaining / throughput))
    stddev = statistics.pstdev(daily_counts)
    confidence = round_half_up(clamp(90 - stddev * 8, 30, 90))

    return Forecast(
        forecast_end=forecast_end,
        confidence=confidence,
        throughput_per_day=round(throughput, 4),
    )


def scope_creep_pct(total: int, created_since_baseline: Optional[int]) -> int:
    """Percent of current tickets created on or after the baseline start."""
    if created_since_baseline is None or total <= 0:
        return 0
    return int(clamp(round_half_up(created_since_baseline / total * 100), 0, 100))


def health_status(
    today: date,
    start: date,
    end: date,
    stats: TicketStats,
    expected: float,
    actual: float,
    forecast_end: Optional[date],
) -> str:
    if today < start:
        return HealthStatus.NOT_STARTED

    if stats.total > 0 and stats.done == stats.total:
        return HealthStatus.COMPLETED

    if forecast_end is not None and forecast_end > end:
        return HealthStatus.LATE

    gap = expected - actual
    if gap <= ON_TRACK_GAP:
        return HealthStatus.ON_TRACK
    if gap <= AT_RISK_GAP:
        return HealthStatus.AT_RISK
    return HealthStatus.LATE


def risk_signals(
    expected: float,
    actual: float,
    stats: TicketStats,
    creep_pct: int,
    forecast_end: Optional[date],
    end: date,
) -> List[str]:
    """Human-readable reasons a project may need attention."""
    signals = []

    gap = expected - actual
    if gap > AT_RISK_GAP:
        signals.append("Progress significantly behind plan")
    elif gap > ON_TRACK_GAP:
        signals.append("Progress slightly behind plan")

    if stats.overdue > 0:
        signals.append(f"Overdue tickets: {stats.overdue}")
    if stats.due_soon > MANY_DUE_SOON:
        signals.append(f"Many tickets due soon: {stats.due_soon}")
    if creep_pct >= SCOPE_CREEP_SIGNAL_PCT:
        signals.append(f"Scope creep detected (~{creep_pct}%)")

    if forecast_end is not None and forecast_end > end:
        signals.append(
            f"Forecast end ({forecast_end.isoformat()}) exceeds planned end ({end.isoformat()})"
        )

    return signals


def calculate_health(
    start_date: Optional[date],
    end_date: Optional[date],
    stats: TicketStats,
    completion_times: Iterable[datetime],
    created_since_baseline: Optional[int],
    today: date,
    window_days: int = 14,
) -> Dict[str, Any]:
    """
    Schedule health of one project.

    Args:
        start_date / end_date: planned schedule
        stats: ticket counts and estimate sums
        completion_times: completed_at of done-like tickets in the window
        created_since_baseline: tickets created on/after the baseline start,
            None when the project has no baseline
        today: reference date
        window_days: throughput window length

    Returns:
        Health dict; schedule problems return only status and message.
    """
    if start_date is None or end_date is None:
        return {
            "status": HealthStatus.NO_SCHEDULE,
            "message": "Project start_date/end_date not set",
        }

    if end_date <= start_date:
        return {
            "status": HealthStatus.INVALID_SCHEDULE,
            "message": "end_date must be after start_date",
        }

    expected = expected_progress(start_date, end_date, today)
    actual = actual_progress(stats)

    counts = daily_completions(completion_times, today, window_days)
    forecast = forecast_completion(counts, stats.open, today)
    creep = scope_creep_pct(stats.total, created_since_baseline)

    status = health_status(today, start_date, end_date, stats, expected, actual, forecast.forecast_end)

    return {
        "status": status,
        "expected_progress": round(expected, 4),
        "actual_progress": round(actual, 4),
        "start_date": start_date.isoformat(),
        "end_date": end_date.isoformat(),
        "forecast_end": forecast.forecast_end.isoformat() if forecast.forecast_end else None,
        "confidence": forecast.confidence,
        "throughput_per_day": forecast.throughput_per_day,
        "tickets": {
            "total": stats.total,
            "done": stats.done,
            "open": stats.open,
            "overdue": stats.overdue,
            "due_soon": stats.due_soon,
        },
        "scope_creep_pct": creep,
        "risk_signals": risk_signals(expected, actual, stats, creep, forecast.forecast_end, end_date),
    }


async def project_health(projects: ProjectRepository, project: ProjectDB, today: date) -> Dict[str, Any]:
    """Load a project's health inputs through the repository and calculate."""
    window_days = settings.forecast_window_days

    stats = TicketStats.from_dict(
        await projects.ticket_stats(project.id, today, settings.due_soon_days)
    )
    completion_times = await projects.completion_times(project.id, window_start(today, window_days))

    baseline = project.baseline_start_date or project.start_date
    created_since_baseline = None
    if baseline is not None:
        created_since_baseline = await projects.count_created_since(
            project.id, datetime.combine(baseline, time.min)
        )

    return calculate_health(
        start_date=project.start_date,
        end_date=project.end_date,
        stats=stats,
        completion_times=completion_times,
        created_since_baseline=created_since_baseline,
        today=today,
        window_days=window_days,
    )


class ProjectHealthService:
    """Health report for a single project, on request."""

    def __init__(self, db: Optional[Database] = None):
        self.db = db or get_database()

    async def get_health(
        self,
        actor_id: int,
        project_id: int,
        now: Optional[datetime] = None,
    ) -> Dict[str, Any]:
        today = (now or get_local_now()).date()

        async with self.db.session() as session:
            projects = ProjectRepository(session)
            project = await projects.get_by_id(project_id)
            if project is None:
                raise ProjectNotFound(project_id)
            await AccessPolicy(projects).authorize_view_project(actor_id, project)

            health = await project_health(projects, project, today)
            logger.debug(f"Project {project_id} health: {health['status']}")
            return health
