"""SQLAlchemy models package."""

from taskflow.models.organization import Department, UserInfo, UserRole
from taskflow.models.project import (
    Project,
    ProjectDepartment,
    Tag,
    Task,
    TaskAssignment,
    TaskAttachment,
    TaskComment,
    TaskStatus,
    TaskTag,
)
from taskflow.models.activity import Notification

__all__ = [
    # Organisation
    "Department",
    "UserInfo",
    "UserRole",
    # Projects & Tasks
    "Project",
    "ProjectDepartment",
    "Tag",
    "Task",
    "TaskAssignment",
    "TaskAttachment",
    "TaskComment",
    "TaskStatus",
    "TaskTag",
    # Notifications
    "Notification",
]
