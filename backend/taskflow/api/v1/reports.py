"""Report endpoints."""

from typing import Literal

from fastapi import APIRouter, Query

from taskflow.api.v1.auth import CurrentUser
from taskflow.api.v1.schedule import parse_id_list
from taskflow.db.session import DBSession
from taskflow.exceptions import PermissionDeniedError
from taskflow.services.access_control import DepartmentResolver
from taskflow.services.report import ReportService
from taskflow.utils.timezone import DISPLAY_TZ, parse_datetime

router = APIRouter()

REPORT_ACTIONS = ("time", "team", "task")


@router.get("")
async def get_report(
    current_user: CurrentUser,
    db: DBSession,
    action: Literal["departments", "projects", "time", "team", "task"] = "time",
    department_ids: str | None = Query(None, alias="departmentIds"),
    project_ids: str | None = Query(None, alias="projectIds"),
    start_date: str | None = Query(None, alias="startDate"),
    end_date: str | None = Query(None, alias="endDate"),
) -> dict | list[dict]:
    """Filter options (``departments``, ``projects``) or a report.

    Report actions are admin-only. Filter options follow the caller's
    department visibility.
    """
    resolver = DepartmentResolver(db)
    if action in REPORT_ACTIONS and not await resolver.is_admin(current_user.id):
        raise PermissionDeniedError("Forbidden: Admin access required")

    departments = parse_id_list(department_ids)
    projects = parse_id_list(project_ids)

    if action == "departments":
        return await resolver.filter_departments(current_user.id, projects or None)
    if action == "projects":
        return await resolver.filter_projects(current_user.id, departments or None)

    filters = {
        "project_ids": projects or None,
        "department_ids": departments or None,
        "start_date": parse_datetime(start_date, naive_tz=DISPLAY_TZ),
        "end_date": parse_datetime(end_date, naive_tz=DISPLAY_TZ),
    }
    reports = ReportService(db)
    if action == "time":
        return await reports.logged_time(**filters)
    if action == "team":
        return await reports.team_summary(**filters)
    return await reports.task_completions(**filters)
