"""Shape persisted task rows into API payloads.

All functions are pure: they read ORM rows and plain dicts and build new
dicts. Missing display names fall back to "Unknown User" instead of failing.
"""

from collections.abc import Iterable, Mapping
from datetime import datetime, timezone
from typing import Any
from uuid import UUID

from taskflow.models.project import Task, TaskComment, TaskStatus
from taskflow.utils.timezone import ensure_aware

UNKNOWN_USER = {"first_name": "Unknown", "last_name": "User"}


def is_overdue(deadline: datetime | None, status: str, now: datetime | None = None) -> bool:
    if deadline is None:
        return False
    now = now or datetime.now(timezone.utc)
    return ensure_aware(deadline) < now and status != TaskStatus.COMPLETED.value


def _maybe_aware(value: datetime | None) -> datetime | None:
    return ensure_aware(value) if value is not None else None


def _user_info(users: Mapping[UUID, Mapping[str, Any]], user_id: UUID | None) -> dict:
    user = users.get(user_id) if user_id is not None else None
    if user is None:
        return dict(UNKNOWN_USER)
    return {"first_name": user.get("first_name", ""), "last_name": user.get("last_name", "")}


def _user_map(users: Iterable[Mapping[str, Any]]) -> dict[UUID, Mapping[str, Any]]:
    return {u["id"]: u for u in users}


def map_task_attributes(task: Task, now: datetime | None = None) -> dict:
    """Flat task payload without subtasks, assignees, attachments or creator.

    ``priority_bucket`` becomes ``priority`` and tag links become a list of
    tag names in link order.
    """
    project = task.project
    return {
        "id": task.id,
        "title": task.title,
        "description": task.description,
        "priority": task.priority_bucket,
        "status": task.status,
        "deadline": _maybe_aware(task.deadline),
        "notes": task.notes,
        "recurrence_interval": task.recurrence_interval,
        "recurrence_date": _maybe_aware(task.recurrence_date),
        "project": {"id": project.id, "name": project.name} if project is not None else None,
        "parent_task_id": task.parent_task_id,
        "logged_time": task.logged_time,
        "tags": task.tag_names,
        "is_overdue": is_overdue(task.deadline, task.status, now),
    }


def _subtask_summary(subtask: Task) -> dict:
    return {
        "id": subtask.id,
        "title": subtask.title,
        "status": subtask.status,
        "deadline": _maybe_aware(subtask.deadline),
    }


def format_tasks(
    tasks: Iterable[Task],
    subtasks: Iterable[Task],
    attachments: Iterable[Mapping[str, Any]],
    users: Iterable[Mapping[str, Any]],
    now: datetime | None = None,
) -> list[dict]:
    """Combine tasks with their subtasks, attachment paths and people.

    Args:
        tasks: Top-level task rows, already ordered
        subtasks: Rows whose ``parent_task_id`` points at one of ``tasks``
        attachments: ``{task_id, storage_path}`` rows
        users: ``{id, first_name, last_name}`` rows for assignees and creators
    """
    subtasks_by_parent: dict[int, list[dict]] = {}
    for subtask in subtasks:
        subtasks_by_parent.setdefault(subtask.parent_task_id, []).append(
            _subtask_summary(subtask)
        )

    attachments_by_task: dict[int, list[str]] = {}
    for attachment in attachments:
        attachments_by_task.setdefault(attachment["task_id"], []).append(
            attachment["storage_path"]
        )

    user_map = _user_map(users)

    formatted = []
    for task in tasks:
        item = map_task_attributes(task, now)
        item["creator"] = {
            "creator_id": task.creator_id,
            "user_info": _user_info(user_map, task.creator_id),
        }
        item["assignees"] = [
            {"assignee_id": a.assignee_id, "user_info": _user_info(user_map, a.assignee_id)}
            for a in task.assignments
        ]
        item["subtasks"] = list(subtasks_by_parent.get(task.id, []))
        item["attachments"] = list(attachments_by_task.get(task.id, []))
        formatted.append(item)
    return formatted


def format_task_details(
    task: Task | None,
    subtasks: Iterable[Task],
    attachments: Iterable[Mapping[str, Any]],
    comments: Iterable[TaskComment],
    users: Iterable[Mapping[str, Any]],
    now: datetime | None = None,
) -> dict | None:
    """Detail payload for one task, or None when the task is absent.

    Attachments are passed through as ``{id, storage_path, public_url}``.
    Comments carry their author's display name.
    """
    if task is None:
        return None

    user_map = _user_map(users)

    item = map_task_attributes(task, now)
    item["creator"] = {
        "creator_id": task.creator_id,
        "user_info": _user_info(user_map, task.creator_id),
    }
    item["assignees"] = [
        {"assignee_id": a.assignee_id, "user_info": _user_info(user_map, a.assignee_id)}
        for a in task.assignments
    ]
    item["subtasks"] = [_subtask_summary(s) for s in subtasks]
    item["attachments"] = [dict(a) for a in attachments]
    item["comments"] = [
        {
            "id": c.id,
            "content": c.content,
            "created_at": _maybe_aware(c.created_at),
            "updated_at": _maybe_aware(c.updated_at),
            "user_id": c.user_id,
            "user_info": _user_info(user_map, c.user_id),
        }
        for c in comments
    ]
    return item
