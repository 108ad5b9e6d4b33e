"""Tasks API endpoints."""

from datetime import datetime
from typing import Any
from uuid import UUID

import structlog
from fastapi import APIRouter, File, Form, HTTPException, Response, UploadFile, status
from pydantic import BaseModel, Field
from pydantic import ValidationError as SchemaValidationError

from taskflow.api.v1.auth import CurrentUser, TaskServiceDep
from taskflow.exceptions import ValidationError
from taskflow.services.task import AttachmentFile, NewTask, TaskCreationResult
from taskflow.utils.ical import generate_ical
from taskflow.utils.timezone import DISPLAY_TZ

router = APIRouter()
logger = structlog.get_logger()


# --- Schemas ---


class TaskCreate(BaseModel):
    """Task payload sent as the ``taskData`` form field."""

    title: str
    project_id: int
    description: str | None = None
    priority: int = 5
    status: str = "To Do"
    deadline: datetime | None = None
    notes: str | None = None
    assignee_ids: list[UUID] = Field(default_factory=list)
    tags: list[str] = Field(default_factory=list)
    recurrence_interval: int = 0
    recurrence_date: datetime | None = None

    def to_new_task(self) -> NewTask:
        return NewTask(
            title=self.title,
            project_id=self.project_id,
            description=self.description,
            priority=self.priority,
            status=self.status,
            deadline=_display_time(self.deadline),
            notes=self.notes,
            assignee_ids=self.assignee_ids,
            tags=self.tags,
            recurrence_interval=self.recurrence_interval,
            recurrence_date=_display_time(self.recurrence_date),
        )


class TaskUpdate(BaseModel):
    """Partial update. Dates are strings so bad input gets a domain error."""

    title: str | None = None
    description: str | None = None
    status: str | None = None
    priority: int | None = None
    deadline: str | None = None
    notes: str | None = None
    project_id: int | None = None
    recurrence_interval: int | None = None
    recurrence_date: str | None = None


class ArchiveRequest(BaseModel):
    is_archived: bool


class TagRequest(BaseModel):
    tag_name: str


class AssigneeRequest(BaseModel):
    assignee_id: UUID


class CommentRequest(BaseModel):
    content: str


class TaskCreatedResponse(BaseModel):
    success: bool = True
    task_id: int
    outcomes: list[dict[str, Any]] = Field(default_factory=list)


# --- Helpers ---


def _display_time(value: datetime | None) -> datetime | None:
    """Offset-less input is display-zone wall time."""
    if value is not None and value.tzinfo is None:
        return value.replace(tzinfo=DISPLAY_TZ)
    return value


def _parse_task_data(raw: str) -> TaskCreate:
    try:
        return TaskCreate.model_validate_json(raw)
    except SchemaValidationError as e:
        first = e.errors()[0]
        field = ".".join(str(part) for part in first["loc"]) or "taskData"
        raise ValidationError(f"Invalid task data: {field}: {first['msg']}") from e


async def _read_files(files: list[UploadFile] | None) -> list[AttachmentFile]:
    attachments = []
    for upload in files or []:
        if not upload.filename:
            continue
        attachments.append(
            AttachmentFile(
                filename=upload.filename,
                content_type=upload.content_type or "application/octet-stream",
                content=await upload.read(),
            )
        )
    return attachments


def _created(result: TaskCreationResult) -> TaskCreatedResponse:
    return TaskCreatedResponse(
        task_id=result.task_id,
        outcomes=[o.to_dict() for o in result.outcomes],
    )


# --- Tasks ---


@router.get("")
async def list_my_tasks(current_user: CurrentUser, service: TaskServiceDep) -> list[dict]:
    """Tasks the caller created or is assigned to."""
    return await service.get_user_tasks(current_user.id)


@router.post("", response_model=TaskCreatedResponse, status_code=status.HTTP_201_CREATED)
async def create_task(
    current_user: CurrentUser,
    service: TaskServiceDep,
    task_data: str = Form(..., alias="taskData"),
    files: list[UploadFile] | None = File(None),
) -> TaskCreatedResponse:
    """Create a task from a multipart form: ``taskData`` JSON plus optional files."""
    payload = _parse_task_data(task_data)
    result = await service.create_task(
        payload.to_new_task(), current_user.id, await _read_files(files)
    )
    return _created(result)


@router.get("/export.ics")
async def export_calendar(current_user: CurrentUser, service: TaskServiceDep) -> Response:
    """The caller's tasks as an iCalendar file."""
    tasks = await service.get_user_tasks(current_user.id)
    return Response(
        content=generate_ical(tasks),
        media_type="text/calendar; charset=utf-8",
        headers={"Content-Disposition": 'attachment; filename="taskflow-tasks.ics"'},
    )


@router.get("/{task_id}")
async def get_task(task_id: int, current_user: CurrentUser, service: TaskServiceDep) -> dict:
    task = await service.get_task_by_id(task_id)
    if task is None:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Task not found")
    return task


@router.patch("/{task_id}")
async def update_task(
    task_id: int,
    update_data: TaskUpdate,
    current_user: CurrentUser,
    service: TaskServiceDep,
) -> dict:
    """Update any subset of task fields. Each field is validated on its own."""
    fields = update_data.model_dump(exclude_unset=True)
    results: dict = {}

    simple = {
        k: v
        for k, v in fields.items()
        if k in ("title", "description", "status", "priority", "deadline", "notes")
    }
    if simple:
        results.update(await service.update_task_multiple(task_id, simple, current_user.id))
    if "project_id" in fields:
        results["project"] = await service.update_project(
            task_id, fields["project_id"], current_user.id
        )
    if "recurrence_interval" in fields or "recurrence_date" in fields:
        results["recurrence"] = await service.update_recurrence(
            task_id,
            fields.get("recurrence_interval"),
            fields.get("recurrence_date"),
            current_user.id,
        )
    if not results:
        raise ValidationError("No fields to update")
    return results


@router.post(
    "/{task_id}/subtasks",
    response_model=TaskCreatedResponse,
    status_code=status.HTTP_201_CREATED,
)
async def create_subtask(
    task_id: int,
    current_user: CurrentUser,
    service: TaskServiceDep,
    task_data: str = Form(..., alias="taskData"),
    files: list[UploadFile] | None = File(None),
) -> TaskCreatedResponse:
    payload = _parse_task_data(task_data)
    result = await service.create_subtask(
        task_id, payload.to_new_task(), current_user.id, await _read_files(files)
    )
    return _created(result)


@router.patch("/{task_id}/archive")
async def archive_task(
    task_id: int,
    request: ArchiveRequest,
    current_user: CurrentUser,
    service: TaskServiceDep,
) -> dict:
    """Archive or restore a task and its subtasks. Managers only."""
    affected = await service.archive_task(task_id, request.is_archived, current_user.id)
    subtask_count = affected - 1
    action = "archived" if request.is_archived else "restored"
    return {
        "success": True,
        "affected": affected,
        "message": f"Task and {subtask_count} subtask(s) {action} successfully",
    }


# --- Tags ---


@router.post("/{task_id}/tags", status_code=status.HTTP_201_CREATED)
async def add_tag(
    task_id: int,
    request: TagRequest,
    current_user: CurrentUser,
    service: TaskServiceDep,
) -> dict:
    tag = await service.add_tag(task_id, request.tag_name, current_user.id)
    return {"tag": tag}


@router.delete("/{task_id}/tags/{tag_name}")
async def remove_tag(
    task_id: int,
    tag_name: str,
    current_user: CurrentUser,
    service: TaskServiceDep,
) -> dict:
    tag = await service.remove_tag(task_id, tag_name, current_user.id)
    return {"tag": tag}


# --- Assignees ---


@router.post("/{task_id}/assignees", status_code=status.HTTP_201_CREATED)
async def add_assignee(
    task_id: int,
    request: AssigneeRequest,
    current_user: CurrentUser,
    service: TaskServiceDep,
) -> dict:
    return await service.add_assignee(task_id, request.assignee_id, current_user.id)


@router.delete("/{task_id}/assignees/{assignee_id}")
async def remove_assignee(
    task_id: int,
    assignee_id: UUID,
    current_user: CurrentUser,
    service: TaskServiceDep,
) -> dict:
    removed = await service.remove_assignee(task_id, assignee_id, current_user.id)
    return {"assignee_id": removed}


# --- Attachments ---


@router.post("/{task_id}/attachments", status_code=status.HTTP_201_CREATED)
async def add_attachments(
    task_id: int,
    current_user: CurrentUser,
    service: TaskServiceDep,
    files: list[UploadFile] | None = File(None),
) -> dict:
    return await service.add_attachments(task_id, await _read_files(files), current_user.id)


@router.delete("/{task_id}/attachments/{attachment_id}")
async def remove_attachment(
    task_id: int,
    attachment_id: int,
    current_user: CurrentUser,
    service: TaskServiceDep,
) -> dict:
    return await service.remove_attachment(task_id, attachment_id, current_user.id)


# --- Comments ---


@router.post("/{task_id}/comments", status_code=status.HTTP_201_CREATED)
async def add_comment(
    task_id: int,
    request: CommentRequest,
    current_user: CurrentUser,
    service: TaskServiceDep,
) -> dict:
    return await service.add_comment(task_id, request.content, current_user.id)


@router.patch("/comments/{comment_id}")
async def update_comment(
    comment_id: int,
    request: CommentRequest,
    current_user: CurrentUser,
    service: TaskServiceDep,
) -> dict:
    return await service.update_comment(comment_id, request.content, current_user.id)


@router.delete("/comments/{comment_id}", status_code=status.HTTP_204_NO_CONTENT)
async def delete_comment(
    comment_id: int,
    current_user: CurrentUser,
    service: TaskServiceDep,
) -> None:
    await service.delete_comment(comment_id, current_user.id)
