"""Schedule (timeline) endpoints."""

from uuid import UUID

from fastapi import APIRouter, Query
from pydantic import BaseModel

from taskflow.api.v1.auth import CurrentUser, TaskServiceDep
from taskflow.exceptions import ValidationError
from taskflow.utils.timezone import DISPLAY_TZ, parse_datetime

router = APIRouter()


class DeadlineChange(BaseModel):
    task_id: int
    deadline: str


def parse_id_list(raw: str | None) -> list[int]:
    """Comma-separated integers; non-numeric entries are dropped."""
    if not raw:
        return []
    ids = []
    for part in raw.split(","):
        part = part.strip()
        if part.lstrip("-").isdigit():
            ids.append(int(part))
    return ids


def parse_uuid_list(raw: str | None) -> list[UUID]:
    if not raw:
        return []
    ids = []
    for part in raw.split(","):
        try:
            ids.append(UUID(part.strip()))
        except ValueError:
            continue
    return ids


@router.get("")
async def get_schedule(
    current_user: CurrentUser,
    service: TaskServiceDep,
    start_date: str | None = Query(None, alias="startDate"),
    end_date: str | None = Query(None, alias="endDate"),
    project_ids: str | None = Query(None, alias="projectIds"),
    staff_ids: str | None = Query(None, alias="staffIds"),
) -> list[dict]:
    """Tasks whose creation-to-deadline span overlaps the range."""
    return await service.get_schedule_tasks(
        start=parse_datetime(start_date, naive_tz=DISPLAY_TZ),
        end=parse_datetime(end_date, naive_tz=DISPLAY_TZ),
        project_ids=parse_id_list(project_ids),
        staff_ids=parse_uuid_list(staff_ids),
    )


@router.patch("")
async def move_deadline(
    change: DeadlineChange,
    current_user: CurrentUser,
    service: TaskServiceDep,
) -> dict:
    """Drag-and-drop deadline change."""
    if not change.deadline:
        raise ValidationError("Deadline is required")
    await service.update_deadline(change.task_id, change.deadline, current_user.id)
    return {"ok": True}


@router.get("/staff")
async def get_schedule_staff(
    current_user: CurrentUser,
    service: TaskServiceDep,
    project_ids: str | None = Query(None, alias="projectIds"),
) -> list[dict]:
    return await service.get_schedule_staff(parse_id_list(project_ids))
