"""Report aggregation over task rows.

The ``*_report`` functions are pure: they take rows that were already
filtered by project and date range and return plain dicts. Logged time is
stored in seconds and reported in hours. ``ReportService`` does the loading.
"""

from collections.abc import Iterable, Mapping
from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone
from uuid import UUID

import structlog
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from taskflow.models.organization import UserInfo
from taskflow.models.project import ProjectDepartment, Task, TaskStatus
from taskflow.utils.timezone import DISPLAY_TZ, ensure_aware, to_utc

logger = structlog.get_logger()

UNASSIGNED = "Unassigned"

COMPLETED = TaskStatus.COMPLETED.value
IN_PROGRESS = TaskStatus.IN_PROGRESS.value
TODO = TaskStatus.TODO.value
BLOCKED = TaskStatus.BLOCKED.value


@dataclass
class ReportTaskRow:
    """The slice of a task the aggregators need."""

    id: int
    status: str
    logged_time: int = 0
    project_id: int | None = None
    parent_task_id: int | None = None
    creator_id: UUID | None = None
    assignee_ids: list[UUID] = field(default_factory=list)
    created_at: datetime | None = None
    updated_at: datetime | None = None
    deadline: datetime | None = None

    @classmethod
    def from_task(cls, task: Task) -> "ReportTaskRow":
        return cls(
            id=task.id,
            status=task.status,
            logged_time=task.logged_time or 0,
            project_id=task.project_id,
            parent_task_id=task.parent_task_id,
            creator_id=task.creator_id,
            assignee_ids=task.assignee_ids,
            created_at=task.created_at,
            updated_at=task.updated_at,
            deadline=task.deadline,
        )


def _hours(seconds: float) -> float:
    return seconds / 3600


def _aware(value: datetime | None) -> datetime | None:
    return ensure_aware(value) if value is not None else None


def _completion_delta(row: ReportTaskRow) -> timedelta | None:
    """``updated_at - deadline`` for a completed row, None if not comparable."""
    if row.status != COMPLETED or row.deadline is None or row.updated_at is None:
        return None
    return _aware(row.updated_at) - _aware(row.deadline)


def _is_overdue(row: ReportTaskRow, now: datetime) -> bool:
    return row.status != COMPLETED and row.deadline is not None and _aware(row.deadline) < now


# =========================================================================
# Logged time
# =========================================================================


def logged_time_report(rows: Iterable[ReportTaskRow], now: datetime | None = None) -> dict:
    """Logged-time totals, punctuality and a per-task rollup.

    ``time_by_task`` maps task id to seconds: the task's own time plus the
    time of its direct subtasks. Subtasks keep their own time only.
    """
    rows = list(rows)
    now = now or datetime.now(timezone.utc)

    completed = [r for r in rows if r.status == COMPLETED]
    incomplete = [r for r in rows if r.status != COMPLETED]
    overdue = [r for r in rows if _is_overdue(r, now)]

    total_seconds = sum(r.logged_time for r in rows)
    avg_seconds = (
        sum(r.logged_time for r in completed) / len(completed) if completed else 0
    )

    on_time = 0
    comparable = 0
    delay = timedelta(0)
    for row in completed:
        delta = _completion_delta(row)
        if delta is None:
            continue
        comparable += 1
        if delta <= timedelta(0):
            on_time += 1
        else:
            delay += delta

    time_by_task: dict[int, int] = {}
    for row in rows:
        time_by_task[row.id] = time_by_task.get(row.id, 0) + row.logged_time
        if row.parent_task_id is not None:
            time_by_task[row.parent_task_id] = (
                time_by_task.get(row.parent_task_id, 0) + row.logged_time
            )

    return {
        "kind": "logged_time",
        "total_time": _hours(total_seconds),
        "avg_time": _hours(avg_seconds),
        "completed_tasks": len(completed),
        "overdue_tasks": len(overdue),
        "blocked_tasks": sum(1 for r in rows if r.status == BLOCKED),
        "incomplete_time": _hours(sum(r.logged_time for r in incomplete)),
        "on_time_completion_rate": on_time / comparable if comparable else 0,
        "total_delay_hours": delay.total_seconds() / 3600,
        "overdue_time": _hours(sum(r.logged_time for r in overdue)),
        "time_by_task": time_by_task,
    }


# =========================================================================
# Team summary
# =========================================================================


def _status_counts() -> dict[str, int]:
    return {"todo": 0, "in_progress": 0, "completed": 0, "blocked": 0, "total": 0}


_STATUS_KEYS = {
    TODO: "todo",
    IN_PROGRESS: "in_progress",
    COMPLETED: "completed",
    BLOCKED: "blocked",
}


def _count_status(counts: dict[str, int], status: str, amount: int = 1) -> None:
    key = _STATUS_KEYS.get(status)
    if key is not None:
        counts[key] += amount
    counts["total"] += amount


def iso_week(value: datetime) -> tuple[str, datetime]:
    """ISO week label (``2024-W02``) and the Monday it starts on, in display time."""
    local = ensure_aware(value).astimezone(DISPLAY_TZ)
    year, week, weekday = local.isocalendar()
    start = (local - timedelta(days=weekday - 1)).replace(
        hour=0, minute=0, second=0, microsecond=0
    )
    return f"{year}-W{week:02d}", start


def team_summary_report(
    rows: Iterable[ReportTaskRow],
    names: Mapping[UUID, str] | None = None,
) -> dict:
    """Status counts per assignee per ISO week of task creation.

    A task counts once for each of its assignees; a task with no assignees
    counts under ``Unassigned``. Rows without ``created_at`` are skipped.
    """
    names = names or {}
    buckets: dict[tuple[str, str], dict] = {}

    for row in rows:
        if row.created_at is None:
            continue
        week, week_start = iso_week(row.created_at)
        user_keys = [str(uid) for uid in row.assignee_ids] or [UNASSIGNED]
        for user_id in user_keys:
            entry = buckets.get((week, user_id))
            if entry is None:
                user_name = (
                    UNASSIGNED if user_id == UNASSIGNED else names.get(UUID(user_id), UNASSIGNED)
                )
                entry = {
                    "week": week,
                    "week_start": week_start.isoformat(),
                    "user_id": user_id,
                    "user_name": user_name,
                    **_status_counts(),
                }
                buckets[(week, user_id)] = entry
            _count_status(entry, row.status)

    weekly = sorted(buckets.values(), key=lambda e: (e["week"], e["user_name"], e["user_id"]))

    user_totals: dict[str, dict] = {}
    week_totals: dict[str, dict] = {}
    for entry in weekly:
        user_total = user_totals.setdefault(
            entry["user_id"], {"user_name": entry["user_name"], **_status_counts()}
        )
        week_total = week_totals.setdefault(
            entry["week"], {"week_start": entry["week_start"], **_status_counts()}
        )
        for key in ("todo", "in_progress", "completed", "blocked", "total"):
            user_total[key] += entry[key]
            week_total[key] += entry[key]

    return {
        "kind": "team_summary",
        "total_tasks": sum(e["total"] for e in weekly),
        "total_users": len(user_totals),
        "weekly_breakdown": weekly,
        "user_totals": user_totals,
        "week_totals": week_totals,
    }


# =========================================================================
# Task completions
# =========================================================================


def task_completion_report(
    rows: Iterable[ReportTaskRow],
    names: Mapping[UUID, str] | None = None,
) -> dict:
    """Completion statistics overall and per task creator.

    Completion time is ``updated_at - created_at`` for completed tasks. A
    completion is on time when ``updated_at <= deadline``. ``user_stats`` is
    sorted by total tasks, largest first.
    """
    rows = list(rows)
    names = names or {}

    by_user: dict[str, list[ReportTaskRow]] = {}
    for row in rows:
        key = str(row.creator_id) if row.creator_id is not None else UNASSIGNED
        by_user.setdefault(key, []).append(row)

    user_stats = []
    for user_id, user_rows in by_user.items():
        completed = [r for r in user_rows if r.status == COMPLETED]
        durations = [
            _aware(r.updated_at) - _aware(r.created_at)
            for r in completed
            if r.created_at is not None and r.updated_at is not None
        ]
        deltas = [d for d in (_completion_delta(r) for r in completed) if d is not None]
        on_time = sum(1 for d in deltas if d <= timedelta(0))
        late = len(deltas) - on_time
        logged_hours = _hours(sum(r.logged_time for r in user_rows))

        if user_id == UNASSIGNED:
            user_name = UNASSIGNED
        else:
            user_name = names.get(UUID(user_id), UNASSIGNED)

        user_stats.append(
            {
                "user_id": user_id,
                "user_name": user_name,
                "total_tasks": len(user_rows),
                "completed_tasks": len(completed),
                "in_progress_tasks": sum(1 for r in user_rows if r.status == IN_PROGRESS),
                "todo_tasks": sum(1 for r in user_rows if r.status == TODO),
                "blocked_tasks": sum(1 for r in user_rows if r.status == BLOCKED),
                "completion_rate": len(completed) / len(user_rows),
                "avg_completion_time": (
                    sum(d.total_seconds() for d in durations) / len(durations) / 3600
                    if durations
                    else 0
                ),
                "on_time_completions": on_time,
                "late_completions": late,
                "on_time_rate": on_time / len(deltas) if deltas else 0,
                "total_logged_time": logged_hours,
                "avg_logged_time_per_task": logged_hours / len(user_rows),
            }
        )
    user_stats.sort(key=lambda s: s["total_tasks"], reverse=True)

    completed_by_project: dict[int, int] = {}
    for row in rows:
        if row.status == COMPLETED and row.project_id is not None:
            completed_by_project[row.project_id] = completed_by_project.get(row.project_id, 0) + 1

    total = len(rows)
    total_completed = sum(1 for r in rows if r.status == COMPLETED)
    return {
        "kind": "task_completions",
        "total_tasks": total,
        "total_completed": total_completed,
        "total_in_progress": sum(1 for r in rows if r.status == IN_PROGRESS),
        "total_todo": sum(1 for r in rows if r.status == TODO),
        "total_blocked": sum(1 for r in rows if r.status == BLOCKED),
        "overall_completion_rate": total_completed / total if total else 0,
        "user_stats": user_stats,
        "completed_by_project": completed_by_project,
    }


# =========================================================================
# Loading
# =========================================================================


class ReportService:
    """Load task rows for reports and run the aggregators."""

    def __init__(self, db: AsyncSession):
        self.db = db

    async def get_rows(
        self,
        project_ids: list[int] | None = None,
        department_ids: list[int] | None = None,
        start_date: datetime | None = None,
        end_date: datetime | None = None,
    ) -> list[ReportTaskRow]:
        """Non-archived tasks created within the range.

        Department ids are mapped to their linked projects and intersected
        with ``project_ids`` when both are given.
        """
        wanted_projects = set(project_ids) if project_ids else None
        if department_ids:
            result = await self.db.execute(
                select(ProjectDepartment.project_id)
                .where(ProjectDepartment.department_id.in_(department_ids))
                .distinct()
            )
            linked = set(result.scalars().all())
            wanted_projects = linked if wanted_projects is None else wanted_projects & linked
            if not wanted_projects:
                logger.debug("report_departments_have_no_projects", department_ids=department_ids)
                return []

        query = select(Task).where(Task.is_archived.is_(False))
        if wanted_projects is not None:
            query = query.where(Task.project_id.in_(sorted(wanted_projects)))
        if start_date is not None:
            query = query.where(Task.created_at >= to_utc(start_date))
        if end_date is not None:
            query = query.where(Task.created_at <= to_utc(end_date))

        result = await self.db.execute(query.order_by(Task.id))
        return [ReportTaskRow.from_task(t) for t in result.scalars().all()]

    async def get_user_names(self, user_ids: Iterable[UUID]) -> dict[UUID, str]:
        ids = sorted({uid for uid in user_ids if uid is not None}, key=str)
        if not ids:
            return {}
        result = await self.db.execute(
            select(UserInfo.id, UserInfo.first_name, UserInfo.last_name).where(
                UserInfo.id.in_(ids)
            )
        )
        return {r.id: f"{r.first_name} {r.last_name}" for r in result.all()}

    async def logged_time(self, **filters) -> dict:
        rows = await self.get_rows(**filters)
        return logged_time_report(rows)

    async def team_summary(self, **filters) -> dict:
        rows = await self.get_rows(**filters)
        names = await self.get_user_names(uid for r in rows for uid in r.assignee_ids)
        return team_summary_report(rows, names)

    async def task_completions(self, **filters) -> dict:
        rows = await self.get_rows(**filters)
        names = await self.get_user_names(r.creator_id for r in rows)
        return task_completion_report(rows, names)
