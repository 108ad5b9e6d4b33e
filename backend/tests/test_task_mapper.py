"""
Tests for shaping task rows into API payloads.
"""
import uuid
from datetime import datetime, timezone

from taskflow.models import Project, Tag, Task, TaskAssignment, TaskComment, TaskTag
from taskflow.services.task_mapper import (
    UNKNOWN_USER,
    format_task_details,
    format_tasks,
    is_overdue,
    map_task_attributes,
)

NOW = datetime(2025, 6, 1, tzinfo=timezone.utc)
CREATOR = uuid.uuid4()
ASSIGNEE = uuid.uuid4()


def _task(task_id=1, parent_task_id=None, **overrides):
    fields = dict(
        id=task_id,
        title=f"Task {task_id}",
        description="Details",
        status="In Progress",
        priority_bucket=7,
        deadline=datetime(2025, 5, 1),
        notes=None,
        recurrence_interval=0,
        recurrence_date=None,
        logged_time=120,
        creator_id=CREATOR,
        parent_task_id=parent_task_id,
        project_id=1,
    )
    fields.update(overrides)
    task = Task(**fields)
    task.project = Project(id=1, name="Alpha")
    task.assignments = [TaskAssignment(assignee_id=ASSIGNEE)]
    task.task_tags = [TaskTag(tag=Tag(name="urgent")), TaskTag(tag=Tag(name="qa"))]
    return task


USERS = [
    {"id": CREATOR, "first_name": "Maya", "last_name": "Lim"},
    {"id": ASSIGNEE, "first_name": "Sam", "last_name": "Tan"},
]


def test_is_overdue():
    past = datetime(2025, 5, 1, tzinfo=timezone.utc)
    assert is_overdue(past, "In Progress", NOW) is True
    assert is_overdue(past, "Completed", NOW) is False
    assert is_overdue(None, "To Do", NOW) is False
    # Naive values are UTC
    assert is_overdue(datetime(2025, 7, 1), "To Do", NOW) is False


def test_map_task_attributes():
    item = map_task_attributes(_task(), NOW)

    assert item["priority"] == 7
    assert "priority_bucket" not in item
    assert item["tags"] == ["urgent", "qa"]
    assert item["project"] == {"id": 1, "name": "Alpha"}
    assert item["deadline"] == datetime(2025, 5, 1, tzinfo=timezone.utc)
    assert item["is_overdue"] is True


def test_format_tasks_groups_children():
    parent = _task(1)
    subtask = _task(2, parent_task_id=1, status="To Do")
    attachments = [
        {"task_id": 1, "storage_path": "tasks/1/a.pdf"},
        {"task_id": 1, "storage_path": "tasks/1/b.png"},
        {"task_id": 9, "storage_path": "tasks/9/c.txt"},
    ]

    [item] = format_tasks([parent], [subtask], attachments, USERS, NOW)

    assert item["creator"] == {
        "creator_id": CREATOR,
        "user_info": {"first_name": "Maya", "last_name": "Lim"},
    }
    assert item["assignees"] == [
        {"assignee_id": ASSIGNEE, "user_info": {"first_name": "Sam", "last_name": "Tan"}}
    ]
    assert [s["id"] for s in item["subtasks"]] == [2]
    assert item["subtasks"][0]["status"] == "To Do"
    assert item["attachments"] == ["tasks/1/a.pdf", "tasks/1/b.png"]


def test_format_tasks_missing_user_falls_back():
    [item] = format_tasks([_task()], [], [], [], NOW)
    assert item["creator"]["user_info"] == UNKNOWN_USER
    assert item["assignees"][0]["user_info"] == UNKNOWN_USER
    assert item["subtasks"] == []
    assert item["attachments"] == []


def test_format_task_details_absent_task():
    assert format_task_details(None, [], [], [], USERS) is None


def test_format_task_details_includes_comments():
    comment = TaskComment(id=5, task_id=1, user_id=ASSIGNEE, content="Looks good")
    attachments = [{"id": 3, "storage_path": "tasks/1/a.pdf", "public_url": "http://x/a.pdf"}]

    item = format_task_details(_task(), [], attachments, [comment], USERS, NOW)

    assert item["attachments"] == attachments
    assert item["comments"][0]["content"] == "Looks good"
    assert item["comments"][0]["user_info"] == {"first_name": "Sam", "last_name": "Tan"}
    assert item["comments"][0]["created_at"] is None


def test_tags_follow_link_order():
    task = _task()
    assert task.tag_names == ["urgent", "qa"]
    assert map_task_attributes(task, NOW)["tags"] == task.tag_names


def test_task_without_creator():
    # Creator rows may be deleted; the foreign key is then set to NULL
    assert Task.__table__.c.creator_id.nullable is True

    [item] = format_tasks([_task(creator_id=None)], [], [], USERS, NOW)
    assert item["creator"] == {"creator_id": None, "user_info": UNKNOWN_USER}
