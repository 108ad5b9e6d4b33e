"""Project and Task models."""

import enum
from datetime import datetime
from typing import TYPE_CHECKING
from uuid import UUID

from sqlalchemy import (
    Boolean,
    CheckConstraint,
    DateTime,
    ForeignKey,
    Integer,
    String,
    Text,
    UniqueConstraint,
    Uuid,
)
from sqlalchemy.orm import Mapped, mapped_column, relationship

from taskflow.db.base import Base, BaseModel

if TYPE_CHECKING:
    from taskflow.models.organization import Department, UserInfo


class TaskStatus(str, enum.Enum):
    """Task workflow status. Any status may move to any other."""

    TODO = "To Do"
    IN_PROGRESS = "In Progress"
    COMPLETED = "Completed"
    BLOCKED = "Blocked"


# Recurrence intervals in days: none, daily, weekly, monthly (calendar month)
RECURRENCE_INTERVALS = (0, 1, 7, 30)


class Project(BaseModel):
    """Project grouping tasks, linked to departments."""

    __tablename__ = "projects"

    name: Mapped[str] = mapped_column(String(255), nullable=False)
    is_archived: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)

    # Relationships
    departments: Mapped[list["Department"]] = relationship(
        "Department",
        secondary="project_departments",
        back_populates="projects",
    )
    tasks: Mapped[list["Task"]] = relationship("Task", back_populates="project")

    def __repr__(self) -> str:
        try:
            return f"<Project {self.name}>"
        except Exception:
            return f"<Project id={self.id}>"


class ProjectDepartment(Base):
    """Links projects to departments (many-to-many)."""

    __tablename__ = "project_departments"

    project_id: Mapped[int] = mapped_column(
        Integer,
        ForeignKey("projects.id", ondelete="CASCADE"),
        primary_key=True,
    )
    department_id: Mapped[int] = mapped_column(
        Integer,
        ForeignKey("departments.id", ondelete="CASCADE"),
        primary_key=True,
    )

    def __repr__(self) -> str:
        return f"<ProjectDepartment project={self.project_id} department={self.department_id}>"


class Task(BaseModel):
    """Task within a project."""

    __tablename__ = "tasks"
    __table_args__ = (
        CheckConstraint(
            "recurrence_interval = 0 OR recurrence_date IS NOT NULL",
            name="ck_tasks_recurrence_anchor",
        ),
    )

    # Basic info
    title: Mapped[str] = mapped_column(String(200), nullable=False)
    description: Mapped[str | None] = mapped_column(Text, nullable=True)
    notes: Mapped[str | None] = mapped_column(Text, nullable=True)

    # Status and priority
    status: Mapped[str] = mapped_column(
        String(20), nullable=False, default=TaskStatus.TODO.value
    )
    priority_bucket: Mapped[int] = mapped_column(Integer, nullable=False, default=5)  # 1-10

    # Timeline
    deadline: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)

    # Recurrence
    recurrence_interval: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    recurrence_date: Mapped[datetime | None] = mapped_column(
        DateTime(timezone=True), nullable=True
    )

    # Time tracking, in seconds
    logged_time: Mapped[int] = mapped_column(Integer, nullable=False, default=0)

    # Ownership
    project_id: Mapped[int] = mapped_column(
        Integer,
        ForeignKey("projects.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    creator_id: Mapped[UUID | None] = mapped_column(
        Uuid,
        ForeignKey("user_info.id", ondelete="SET NULL"),
        nullable=True,
        index=True,
    )

    # One level of subtask nesting
    parent_task_id: Mapped[int | None] = mapped_column(
        Integer,
        ForeignKey("tasks.id", ondelete="CASCADE"),
        nullable=True,
        index=True,
    )

    is_archived: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)

    # Relationships
    project: Mapped["Project"] = relationship("Project", back_populates="tasks", lazy="selectin")
    assignments: Mapped[list["TaskAssignment"]] = relationship(
        "TaskAssignment",
        back_populates="task",
        lazy="selectin",
        cascade="all, delete-orphan",
    )
    task_tags: Mapped[list["TaskTag"]] = relationship(
        "TaskTag",
        back_populates="task",
        lazy="selectin",
        cascade="all, delete-orphan",
        order_by="TaskTag.id",
    )

    @property
    def assignee_ids(self) -> list[UUID]:
        return [a.assignee_id for a in self.assignments]

    @property
    def tag_names(self) -> list[str]:
        return [tt.tag.name for tt in self.task_tags]

    def __repr__(self) -> str:
        try:
            return f"<Task {self.title}>"
        except Exception:
            return f"<Task id={self.id}>"


class TaskAssignment(BaseModel):
    """Assignment of a user to a task."""

    __tablename__ = "task_assignments"
    __table_args__ = (
        UniqueConstraint("task_id", "assignee_id", name="uq_task_assignee"),
    )

    task_id: Mapped[int] = mapped_column(
        Integer,
        ForeignKey("tasks.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    assignee_id: Mapped[UUID] = mapped_column(
        Uuid,
        ForeignKey("user_info.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    assignor_id: Mapped[UUID | None] = mapped_column(
        Uuid,
        ForeignKey("user_info.id", ondelete="SET NULL"),
        nullable=True,
    )

    task: Mapped["Task"] = relationship("Task", back_populates="assignments")
    assignee: Mapped["UserInfo"] = relationship("UserInfo", foreign_keys=[assignee_id])

    def __repr__(self) -> str:
        return f"<TaskAssignment task={self.task_id} assignee={self.assignee_id}>"


class Tag(BaseModel):
    """Tag catalog entry."""

    __tablename__ = "tags"

    name: Mapped[str] = mapped_column(String(50), nullable=False, unique=True)

    def __repr__(self) -> str:
        return f"<Tag {self.name}>"


class TaskTag(BaseModel):
    """Link between a task and a tag."""

    __tablename__ = "task_tags"
    __table_args__ = (
        UniqueConstraint("task_id", "tag_id", name="uq_task_tag"),
    )

    task_id: Mapped[int] = mapped_column(
        Integer,
        ForeignKey("tasks.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    tag_id: Mapped[int] = mapped_column(
        Integer,
        ForeignKey("tags.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )

    task: Mapped["Task"] = relationship("Task", back_populates="task_tags")
    tag: Mapped["Tag"] = relationship("Tag", lazy="selectin")


class TaskAttachment(BaseModel):
    """File attached to a task. Bytes live in object storage."""

    __tablename__ = "task_attachments"

    task_id: Mapped[int] = mapped_column(
        Integer,
        ForeignKey("tasks.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    storage_path: Mapped[str] = mapped_column(String(1024), nullable=False)
    uploaded_by: Mapped[UUID | None] = mapped_column(
        Uuid,
        ForeignKey("user_info.id", ondelete="SET NULL"),
        nullable=True,
    )
    file_size: Mapped[int] = mapped_column(Integer, nullable=False, default=0)

    def __repr__(self) -> str:
        return f"<TaskAttachment task={self.task_id} path={self.storage_path}>"


class TaskComment(BaseModel):
    """Comment on a task."""

    __tablename__ = "task_comments"

    task_id: Mapped[int] = mapped_column(
        Integer,
        ForeignKey("tasks.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    user_id: Mapped[UUID] = mapped_column(
        Uuid,
        ForeignKey("user_info.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    content: Mapped[str] = mapped_column(Text, nullable=False)

    def __repr__(self) -> str:
        return f"<TaskComment task={self.task_id} user={self.user_id}>"
