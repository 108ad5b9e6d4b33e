"""Task write orchestration and task reads.

Validation and permission checks always run before any write. The core task
row and its assignments are created atomically; tag linking, attachment
upload, notifications and recurring follow-ups run afterwards as best-effort
steps whose failures are logged and reported as ``StepOutcome`` values.
"""

from dataclasses import dataclass, field
from datetime import datetime, timezone
from uuid import UUID

import structlog
from sqlalchemy import delete, func, or_, select, update
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from taskflow.config import Settings, get_settings
from taskflow.db.procedures import create_task_with_assignments, get_task_assignees_info
from taskflow.exceptions import (
    NotFoundError,
    PermissionDeniedError,
    UpstreamError,
    ValidationError,
)
from taskflow.models.organization import UserInfo
from taskflow.models.project import (
    RECURRENCE_INTERVALS,
    Project,
    Tag,
    Task,
    TaskAssignment,
    TaskAttachment,
    TaskComment,
    TaskStatus,
    TaskTag,
)
from taskflow.services.access_control import DepartmentResolver
from taskflow.services.notification import NotificationDispatcher
from taskflow.services.outcome import StepOutcome
from taskflow.services.recurrence import next_deadline
from taskflow.services.service_role import ServiceRole
from taskflow.services.storage import StorageClient
from taskflow.services.task_mapper import format_task_details, format_tasks
from taskflow.utils.timezone import DISPLAY_TZ, ensure_aware, parse_datetime, to_sgt_string, to_utc

logger = structlog.get_logger()

VALID_STATUSES = [s.value for s in TaskStatus]

ALLOWED_ATTACHMENT_TYPES = frozenset(
    [
        "application/pdf",
        "image/png",
        "image/jpeg",
        "image/jpg",
        "application/msword",
        "application/vnd.openxmlformats-officedocument.wordprocessingml.document",
        "application/vnd.ms-excel",
        "application/vnd.openxmlformats-officedocument.spreadsheetml.sheet",
        "text/plain",
    ]
)


@dataclass
class AttachmentFile:
    """File received from a client, held in memory until uploaded."""

    filename: str
    content_type: str
    content: bytes

    @property
    def size(self) -> int:
        return len(self.content)


@dataclass
class NewTask:
    """Fields accepted when creating a task."""

    title: str
    project_id: int
    description: str | None = None
    priority: int = 5
    status: str = TaskStatus.TODO.value
    deadline: datetime | None = None
    notes: str | None = None
    assignee_ids: list[UUID] = field(default_factory=list)
    tags: list[str] = field(default_factory=list)
    recurrence_interval: int = 0
    recurrence_date: datetime | None = None


@dataclass
class TaskCreationResult:
    task_id: int
    outcomes: list[StepOutcome] = field(default_factory=list)

    @property
    def soft_failures(self) -> list[StepOutcome]:
        return [o for o in self.outcomes if not o.succeeded]


def _timestamp_ms() -> int:
    return int(datetime.now(timezone.utc).timestamp() * 1000)


def _mb(size: int) -> str:
    return f"{size / 1024 / 1024:.1f}"


class TaskService:
    """Create, update and read tasks."""

    def __init__(
        self,
        db: AsyncSession,
        service_role: ServiceRole,
        storage: StorageClient | None = None,
        dispatcher: NotificationDispatcher | None = None,
        settings: Settings | None = None,
    ):
        self.db = db
        self.service_role = service_role
        self.storage = storage or StorageClient(service_role)
        self.dispatcher = dispatcher or NotificationDispatcher(db, service_role)
        self.resolver = DepartmentResolver(db)
        self.settings = settings or get_settings()

    # =========================================================================
    # Lookups and permission checks
    # =========================================================================

    async def _get_task(self, task_id: int) -> Task | None:
        result = await self.db.execute(
            select(Task)
            .where(Task.id == task_id)
            .execution_options(populate_existing=True)
        )
        return result.scalar_one_or_none()

    async def _check_task_permission(self, task_id: int, user_id: UUID) -> bool:
        """Creator or any assignee may modify a task."""
        task = await self._get_task(task_id)
        if task is None:
            return False
        return task.creator_id == user_id or user_id in task.assignee_ids

    async def _require_permission(
        self,
        task_id: int,
        user_id: UUID,
        message: str = "You do not have permission to update this task",
    ) -> Task:
        task = await self._get_task(task_id)
        if task is None or not (task.creator_id == user_id or user_id in task.assignee_ids):
            raise PermissionDeniedError(message)
        return task

    # =========================================================================
    # Validation
    # =========================================================================

    def _validate_title(self, title: str | None) -> str:
        if title is None or not title.strip():
            raise ValidationError("Title cannot be empty")
        if len(title) > self.settings.max_title_length:
            raise ValidationError(
                f"Title cannot exceed {self.settings.max_title_length} characters"
            )
        return title

    def _validate_description(self, description: str | None) -> str:
        if description is None:
            description = ""
        if not isinstance(description, str):
            raise ValidationError("Description must be a string")
        if len(description) > self.settings.max_description_length:
            raise ValidationError(
                f"Description cannot exceed {self.settings.max_description_length} characters"
            )
        return description

    def _validate_status(self, status: str) -> str:
        if status not in VALID_STATUSES:
            raise ValidationError(f"Invalid status. Must be one of: {', '.join(VALID_STATUSES)}")
        return status

    def _validate_priority(self, priority: int) -> int:
        if (
            isinstance(priority, bool)
            or not isinstance(priority, int)
            or priority < 1
            or priority > 10
        ):
            raise ValidationError("Priority must be a number between 1 and 10")
        return priority

    def _validate_notes(self, notes: str | None) -> str:
        if notes is None:
            notes = ""
        if not isinstance(notes, str):
            raise ValidationError("Notes must be a string")
        if len(notes) > self.settings.max_notes_length:
            raise ValidationError(
                f"Notes cannot exceed {self.settings.max_notes_length} characters"
            )
        return notes

    def _validate_recurrence(
        self,
        interval: int,
        recurrence_date: datetime | str | None,
        now: datetime | None = None,
    ) -> datetime | None:
        if interval not in RECURRENCE_INTERVALS:
            raise ValidationError("Invalid recurrence interval. Must be 0, 1, 7, or 30 days")
        if interval == 0:
            return None

        if recurrence_date is None or recurrence_date == "":
            raise ValidationError("Recurrence date is required when setting up recurrence")
        parsed = parse_datetime(recurrence_date, naive_tz=DISPLAY_TZ)
        if parsed is None:
            raise ValidationError("Invalid recurrence date")
        if parsed < (now or datetime.now(timezone.utc)):
            raise ValidationError("Recurrence date cannot be in the past")
        return to_utc(parsed)

    def _clean_tag(self, tag_name: str | None) -> str:
        if tag_name is None or not isinstance(tag_name, str):
            raise ValidationError("Tag name must be a non-empty string")
        cleaned = tag_name.strip()
        if not cleaned:
            raise ValidationError("Tag name cannot be empty")
        if len(cleaned) > self.settings.max_tag_length:
            raise ValidationError(
                f"Tag name cannot exceed {self.settings.max_tag_length} characters"
            )
        return cleaned

    def _validate_comment(self, content: str | None) -> str:
        if content is None or not isinstance(content, str) or not content.strip():
            raise ValidationError("Comment content cannot be empty")
        content = content.strip()
        if len(content) > self.settings.max_comment_length:
            raise ValidationError(
                f"Comment cannot exceed {self.settings.max_comment_length} characters"
            )
        return content

    # =========================================================================
    # Creation
    # =========================================================================

    async def create_task(
        self,
        payload: NewTask,
        creator_id: UUID,
        files: list[AttachmentFile] | None = None,
    ) -> TaskCreationResult:
        """Create a task with its assignments, then link tags and upload files.

        Raises:
            ValidationError: bad payload, nothing written
            UpstreamError: the core task insert failed
        """
        assignee_ids = list(dict.fromkeys(payload.assignee_ids))
        if len(assignee_ids) > self.settings.max_assignees_per_task:
            raise ValidationError(
                f"Cannot assign more than {self.settings.max_assignees_per_task} users to a task"
            )

        self._validate_title(payload.title)
        self._validate_description(payload.description)
        self._validate_status(payload.status)
        self._validate_priority(payload.priority)
        self._validate_notes(payload.notes)
        if payload.recurrence_interval not in RECURRENCE_INTERVALS:
            raise ValidationError("Invalid recurrence interval. Must be 0, 1, 7, or 30 days")
        if payload.recurrence_interval > 0 and payload.recurrence_date is None:
            raise ValidationError("Recurrence date is required when setting up recurrence")

        try:
            task_id = await create_task_with_assignments(
                self.db,
                p_title=payload.title,
                p_description=payload.description,
                p_priority_bucket=payload.priority,
                p_status=payload.status,
                p_deadline=to_utc(payload.deadline) if payload.deadline else None,
                p_notes=payload.notes,
                p_project_id=payload.project_id,
                p_creator_id=creator_id,
                p_recurrence_interval=payload.recurrence_interval,
                p_recurrence_date=(
                    to_utc(payload.recurrence_date)
                    if payload.recurrence_interval > 0 and payload.recurrence_date
                    else None
                ),
                p_assignee_ids=assignee_ids,
            )
            await self.db.commit()
        except SQLAlchemyError as e:
            await self.db.rollback()
            logger.error("task_creation_failed", creator_id=str(creator_id), error=str(e))
            raise UpstreamError(f"Failed to create task: {e}") from e

        logger.info(
            "task_created",
            task_id=task_id,
            creator_id=str(creator_id),
            assignee_count=len(assignee_ids),
        )

        outcomes: list[StepOutcome] = []
        if payload.tags:
            outcomes.extend(await self._link_tags(task_id, payload.tags))
        if files:
            for file in files:
                path = f"tasks/{task_id}/{_timestamp_ms()}-{file.filename}"
                outcome, _ = await self._store_attachment(task_id, file, path, creator_id)
                outcomes.append(outcome)
        for assignee_id in assignee_ids:
            outcomes.append(
                await self.dispatcher.notify_task_assignment(
                    assignee_id, creator_id, task_id, payload.title
                )
            )

        await self.db.commit()
        return TaskCreationResult(task_id=task_id, outcomes=outcomes)

    async def create_subtask(
        self,
        parent_task_id: int,
        payload: NewTask,
        creator_id: UUID,
        files: list[AttachmentFile] | None = None,
    ) -> TaskCreationResult:
        """Create a task and attach it under ``parent_task_id``."""
        if parent_task_id <= 0:
            raise ValidationError("Invalid parent task ID")
        parent = await self._get_task(parent_task_id)
        if parent is None:
            raise NotFoundError("Parent task not found")
        if parent.parent_task_id is not None:
            raise ValidationError("Subtasks cannot have their own subtasks")

        result = await self.create_task(payload, creator_id, files)
        await self.link_subtask_to_parent(result.task_id, parent_task_id)
        return result

    async def link_subtask_to_parent(self, subtask_id: int, parent_task_id: int) -> None:
        if subtask_id <= 0:
            raise ValidationError("Invalid subtask ID")
        if parent_task_id <= 0:
            raise ValidationError("Invalid parent task ID")
        if subtask_id == parent_task_id:
            raise ValidationError("A task cannot be its own parent")

        subtask = await self._get_task(subtask_id)
        if subtask is None:
            raise NotFoundError("Subtask not found")
        parent = await self._get_task(parent_task_id)
        if parent is None:
            raise NotFoundError("Parent task not found")
        if parent.parent_task_id is not None:
            raise ValidationError("Subtasks cannot have their own subtasks")

        subtask.parent_task_id = parent_task_id
        try:
            await self.db.commit()
        except SQLAlchemyError as e:
            await self.db.rollback()
            raise UpstreamError(f"Failed to link subtask to parent: {e}") from e

        logger.info("subtask_linked", subtask_id=subtask_id, parent_task_id=parent_task_id)

    # =========================================================================
    # Single-field updates
    # =========================================================================

    async def _save(self, task: Task, **fields) -> None:
        for name, value in fields.items():
            setattr(task, name, value)
        try:
            await self.db.commit()
        except SQLAlchemyError as e:
            await self.db.rollback()
            logger.error("task_update_failed", task_id=task.id, fields=list(fields), error=str(e))
            raise UpstreamError(f"Failed to update task: {e}") from e
        logger.info("task_updated", task_id=task.id, fields=list(fields))

    async def update_title(self, task_id: int, title: str, user_id: UUID) -> dict:
        self._validate_title(title)
        task = await self._require_permission(task_id, user_id)
        await self._save(task, title=title)
        return {"id": task.id, "title": task.title}

    async def update_description(self, task_id: int, description: str, user_id: UUID) -> dict:
        description = self._validate_description(description)
        task = await self._require_permission(task_id, user_id)
        await self._save(task, description=description)
        return {"id": task.id, "description": task.description}

    async def update_status(self, task_id: int, status: str, user_id: UUID) -> dict:
        """Change status. Completing a recurring task spawns its next occurrence.

        The follow-up is best-effort: if it fails the status change stands and
        the failure is reported in ``outcomes``.
        """
        self._validate_status(status)
        task = await self._require_permission(task_id, user_id)
        previous = task.status
        await self._save(task, status=status)

        result = {"id": task.id, "status": task.status, "next_task_id": None, "outcomes": []}
        if (
            status == TaskStatus.COMPLETED.value
            and previous != TaskStatus.COMPLETED.value
            and task.recurrence_interval > 0
        ):
            outcome, next_task_id = await self._spawn_next_occurrence(task)
            result["next_task_id"] = next_task_id
            result["outcomes"].append(outcome.to_dict())
        return result

    async def _spawn_next_occurrence(self, task: Task) -> tuple[StepOutcome, int | None]:
        step = "spawn_recurring_task"
        deadline = (
            next_deadline(ensure_aware(task.deadline), task.recurrence_interval)
            if task.deadline is not None
            else None
        )
        tag_ids = [tt.tag_id for tt in task.task_tags]
        try:
            next_task_id = await create_task_with_assignments(
                self.db,
                p_title=task.title,
                p_description=task.description,
                p_priority_bucket=task.priority_bucket,
                p_status=TaskStatus.TODO.value,
                p_deadline=deadline,
                p_notes=task.notes,
                p_project_id=task.project_id,
                p_creator_id=task.creator_id,
                p_recurrence_interval=task.recurrence_interval,
                p_recurrence_date=task.recurrence_date,
                p_assignee_ids=task.assignee_ids,
            )
            async with self.db.begin_nested():
                for tag_id in tag_ids:
                    self.db.add(TaskTag(task_id=next_task_id, tag_id=tag_id))
            await self.db.commit()
        except SQLAlchemyError as e:
            await self.db.rollback()
            logger.warning("recurring_task_spawn_failed", task_id=task.id, error=str(e))
            return StepOutcome.soft_failure(step, str(e)), None

        logger.info(
            "recurring_task_spawned",
            task_id=task.id,
            next_task_id=next_task_id,
            deadline=deadline.isoformat() if deadline else None,
        )
        return StepOutcome.ok(step), next_task_id

    async def update_priority(self, task_id: int, priority: int, user_id: UUID) -> dict:
        self._validate_priority(priority)
        task = await self._require_permission(task_id, user_id)
        await self._save(task, priority_bucket=priority)
        return {"id": task.id, "priority_bucket": task.priority_bucket}

    async def update_deadline(
        self, task_id: int, deadline: datetime | str | None, user_id: UUID
    ) -> dict:
        """Set or clear the deadline. Past deadlines are allowed with a warning."""
        parsed = None
        if deadline is not None and deadline != "":
            parsed = parse_datetime(deadline, naive_tz=DISPLAY_TZ)
            if parsed is None:
                raise ValidationError("Invalid date format")
            if parsed < datetime.now(timezone.utc):
                logger.warning("deadline_in_past", task_id=task_id, deadline=parsed.isoformat())

        task = await self._require_permission(task_id, user_id)
        await self._save(task, deadline=to_utc(parsed) if parsed else None)
        return {"id": task.id, "deadline": to_sgt_string(parsed) if parsed else None}

    async def update_notes(self, task_id: int, notes: str, user_id: UUID) -> dict:
        notes = self._validate_notes(notes)
        task = await self._require_permission(task_id, user_id)
        await self._save(task, notes=notes)
        return {"id": task.id, "notes": task.notes}

    async def update_project(self, task_id: int, project_id: int, user_id: UUID) -> dict:
        if isinstance(project_id, bool) or not isinstance(project_id, int) or project_id <= 0:
            raise ValidationError("Invalid project ID")
        task = await self._require_permission(task_id, user_id)

        project = await self.db.get(Project, project_id)
        if project is None:
            raise NotFoundError("Project not found")

        await self._save(task, project_id=project_id)
        return {"id": task.id, "project_id": task.project_id}

    async def update_recurrence(
        self,
        task_id: int,
        recurrence_interval: int | None,
        recurrence_date: datetime | str | None,
        user_id: UUID,
    ) -> dict:
        """Set recurrence. Interval 0 clears the recurrence date.

        A missing interval keeps the task's current one, so only the
        recurrence date moves.
        """
        task = await self._require_permission(task_id, user_id)
        if recurrence_interval is None:
            if not task.recurrence_interval:
                raise ValidationError(
                    "Recurrence interval is required when setting a recurrence date"
                )
            recurrence_interval = task.recurrence_interval
        parsed = self._validate_recurrence(recurrence_interval, recurrence_date)

        await self._save(task, recurrence_interval=recurrence_interval, recurrence_date=parsed)
        return {
            "id": task.id,
            "recurrence_interval": task.recurrence_interval,
            "recurrence_date": to_sgt_string(parsed) if parsed else None,
        }

    async def update_task_multiple(self, task_id: int, updates: dict, user_id: UUID) -> dict:
        """Apply several single-field updates in order; each is validated on its own."""
        if not await self._check_task_permission(task_id, user_id):
            raise PermissionDeniedError("You do not have permission to update this task")

        results: dict = {}
        if "title" in updates:
            results["title"] = await self.update_title(task_id, updates["title"], user_id)
        if "description" in updates:
            results["description"] = await self.update_description(
                task_id, updates["description"], user_id
            )
        if "status" in updates:
            results["status"] = await self.update_status(task_id, updates["status"], user_id)
        if "priority" in updates:
            results["priority"] = await self.update_priority(
                task_id, updates["priority"], user_id
            )
        if "deadline" in updates:
            results["deadline"] = await self.update_deadline(
                task_id, updates["deadline"], user_id
            )
        if "notes" in updates:
            results["notes"] = await self.update_notes(task_id, updates["notes"], user_id)
        return results

    # =========================================================================
    # Tags
    # =========================================================================

    async def _ensure_tag(self, name: str) -> Tag:
        """Insert the tag into the catalog if absent and return it."""
        result = await self.db.execute(select(Tag).where(Tag.name == name))
        tag = result.scalar_one_or_none()
        if tag is not None:
            return tag

        try:
            async with self.db.begin_nested():
                tag = Tag(name=name)
                self.db.add(tag)
        except IntegrityError:
            # Created concurrently
            logger.debug("tag_already_exists", tag=name)
            result = await self.db.execute(select(Tag).where(Tag.name == name))
            tag = result.scalar_one()
        return tag

    async def _link_tags(self, task_id: int, tag_names: list[str]) -> list[StepOutcome]:
        outcomes = []
        for name in dict.fromkeys(n.strip() for n in tag_names if n and n.strip()):
            step = f"link_tag:{name}"
            try:
                tag = await self._ensure_tag(name)
                async with self.db.begin_nested():
                    self.db.add(TaskTag(task_id=task_id, tag_id=tag.id))
            except SQLAlchemyError as e:
                logger.warning("tag_link_failed", task_id=task_id, tag=name, error=str(e))
                outcomes.append(StepOutcome.soft_failure(step, str(e)))
                continue
            outcomes.append(StepOutcome.ok(step))
        return outcomes

    async def add_tag(self, task_id: int, tag_name: str, user_id: UUID) -> str:
        cleaned = self._clean_tag(tag_name)
        await self._require_permission(task_id, user_id)

        tag = await self._ensure_tag(cleaned)
        existing = await self.db.execute(
            select(TaskTag.id).where(TaskTag.task_id == task_id, TaskTag.tag_id == tag.id)
        )
        if existing.scalar_one_or_none() is not None:
            raise ValidationError("Tag already linked to this task")

        self.db.add(TaskTag(task_id=task_id, tag_id=tag.id))
        await self.db.commit()
        logger.info("tag_added", task_id=task_id, tag=cleaned)
        return cleaned

    async def remove_tag(self, task_id: int, tag_name: str, user_id: UUID) -> str:
        if not tag_name or not isinstance(tag_name, str):
            raise ValidationError("Tag name must be a non-empty string")
        await self._require_permission(task_id, user_id)

        result = await self.db.execute(select(Tag).where(Tag.name == tag_name))
        tag = result.scalar_one_or_none()
        if tag is None:
            raise NotFoundError("Tag not found")

        await self.db.execute(
            delete(TaskTag).where(TaskTag.task_id == task_id, TaskTag.tag_id == tag.id)
        )
        await self.db.commit()
        logger.info("tag_removed", task_id=task_id, tag=tag_name)
        return tag_name

    # =========================================================================
    # Assignees
    # =========================================================================

    async def _assignee_count(self, task_id: int) -> int:
        result = await self.db.execute(
            select(func.count(TaskAssignment.id)).where(TaskAssignment.task_id == task_id)
        )
        return result.scalar_one()

    async def add_assignee(self, task_id: int, assignee_id: UUID, user_id: UUID) -> dict:
        """Add one assignee. The new assignee is notified best-effort."""
        task = await self._require_permission(
            task_id, user_id, "You do not have permission to update assignees for this task"
        )

        if await self._assignee_count(task_id) >= self.settings.max_assignees_per_task:
            raise ValidationError(
                f"Cannot exceed {self.settings.max_assignees_per_task} total assignees"
            )
        if assignee_id in task.assignee_ids:
            raise ValidationError("User already assigned to this task")

        self.db.add(TaskAssignment(task_id=task_id, assignee_id=assignee_id, assignor_id=user_id))
        try:
            await self.db.commit()
        except SQLAlchemyError as e:
            await self.db.rollback()
            raise UpstreamError(f"Failed to add assignee: {e}") from e

        logger.info("assignee_added", task_id=task_id, assignee_id=str(assignee_id))
        outcome = await self.dispatcher.notify_task_assignment(
            assignee_id, user_id, task_id, task.title
        )
        await self.db.commit()
        return {"assignee_id": assignee_id, "outcomes": [outcome.to_dict()]}

    async def remove_assignee(self, task_id: int, assignee_id: UUID, user_id: UUID) -> UUID:
        """Remove one assignee. Managers only; a task keeps at least one assignee."""
        if not await self.resolver.is_manager(user_id):
            raise PermissionDeniedError("Only managers can remove assignees from tasks")

        if await self._assignee_count(task_id) <= 1:
            raise ValidationError("Cannot remove assignee. A task must have at least 1 assignee.")

        result = await self.db.execute(
            delete(TaskAssignment).where(
                TaskAssignment.task_id == task_id,
                TaskAssignment.assignee_id == assignee_id,
            )
        )
        if result.rowcount == 0:
            raise NotFoundError("Assignee not found on this task")
        await self.db.commit()

        logger.info("assignee_removed", task_id=task_id, assignee_id=str(assignee_id))
        return assignee_id

    # =========================================================================
    # Attachments
    # =========================================================================

    async def _store_attachment(
        self,
        task_id: int,
        file: AttachmentFile,
        path: str,
        user_id: UUID,
    ) -> tuple[StepOutcome, TaskAttachment | None]:
        """Upload one file and record it; undo the upload if the record fails."""
        step = f"attachment:{file.filename}"
        try:
            await self.storage.upload(path, file.content, file.content_type)
        except UpstreamError as e:
            logger.warning("attachment_upload_failed", task_id=task_id, path=path, error=e.message)
            return StepOutcome.soft_failure(step, e.message), None

        try:
            async with self.db.begin_nested():
                attachment = TaskAttachment(
                    task_id=task_id,
                    storage_path=path,
                    uploaded_by=user_id,
                    file_size=file.size,
                )
                self.db.add(attachment)
        except SQLAlchemyError as e:
            logger.error("attachment_record_failed", task_id=task_id, path=path, error=str(e))
            try:
                await self.storage.remove([path])
            except UpstreamError as cleanup_error:
                logger.error(
                    "attachment_cleanup_failed",
                    path=path,
                    error=cleanup_error.message,
                )
            return StepOutcome.soft_failure(step, f"Record insert failed: {e}"), None

        logger.info("attachment_stored", task_id=task_id, attachment_id=attachment.id)
        return StepOutcome.ok(step), attachment

    async def _attachments_total_size(self, task_id: int) -> int:
        result = await self.db.execute(
            select(func.coalesce(func.sum(TaskAttachment.file_size), 0)).where(
                TaskAttachment.task_id == task_id
            )
        )
        return int(result.scalar_one())

    async def add_attachments(
        self, task_id: int, files: list[AttachmentFile], user_id: UUID
    ) -> dict:
        """Upload files to a task. Fails only if every file fails."""
        await self._require_permission(task_id, user_id)
        if not files:
            raise ValidationError("No valid files provided")

        for file in files:
            if file.content_type not in ALLOWED_ATTACHMENT_TYPES:
                raise ValidationError(
                    f"File type not allowed: {file.content_type}. "
                    "Allowed: PDF, images, Word, Excel, TXT"
                )

        limit = self.settings.max_attachment_total_bytes
        existing_size = await self._attachments_total_size(task_id)
        new_size = sum(f.size for f in files)
        if existing_size + new_size > limit:
            raise ValidationError(
                f"Total attachment size would exceed {limit // (1024 * 1024)}MB limit. "
                f"You have {_mb(limit - existing_size)}MB remaining. "
                f"Trying to add {_mb(new_size)}MB."
            )

        created = []
        outcomes = []
        timestamp = _timestamp_ms()
        for i, file in enumerate(files):
            path = f"tasks/{task_id}/{timestamp}-{i}-{file.filename}"
            outcome, attachment = await self._store_attachment(task_id, file, path, user_id)
            outcomes.append(outcome)
            if attachment is not None:
                created.append({"id": attachment.id, "storage_path": attachment.storage_path})

        if not created:
            await self.db.rollback()
            errors = "; ".join(f"{o.step}: {o.reason}" for o in outcomes)
            raise UpstreamError(f"Failed to upload any files. Errors: {errors}", service="storage")

        await self.db.commit()
        logger.info(
            "attachments_added",
            task_id=task_id,
            succeeded=len(created),
            failed=len(files) - len(created),
        )
        return {"attachments": created, "outcomes": [o.to_dict() for o in outcomes]}

    async def remove_attachment(self, task_id: int, attachment_id: int, user_id: UUID) -> dict:
        """Delete the stored object best-effort, then the record."""
        await self._require_permission(
            task_id, user_id, "You do not have permission to delete attachments from this task"
        )

        result = await self.db.execute(
            select(TaskAttachment).where(
                TaskAttachment.id == attachment_id,
                TaskAttachment.task_id == task_id,
            )
        )
        attachment = result.scalar_one_or_none()
        if attachment is None:
            raise NotFoundError("Attachment not found")

        path = attachment.storage_path
        outcome = StepOutcome.ok("remove_stored_object")
        try:
            await self.storage.remove([path])
        except UpstreamError as e:
            logger.error("attachment_object_delete_failed", path=path, error=e.message)
            outcome = StepOutcome.soft_failure("remove_stored_object", e.message)

        await self.db.delete(attachment)
        await self.db.commit()
        logger.info("attachment_removed", task_id=task_id, attachment_id=attachment_id, path=path)
        return {
            "id": attachment_id,
            "removed": True,
            "storage_path": path,
            "outcomes": [outcome.to_dict()],
        }

    def get_attachment_url(self, storage_path: str) -> str:
        return self.storage.get_public_url(storage_path)

    # =========================================================================
    # Comments
    # =========================================================================

    async def add_comment(self, task_id: int, content: str, user_id: UUID) -> dict:
        """Add a comment and notify the task's other assignees best-effort."""
        content = self._validate_comment(content)
        task = await self._get_task(task_id)
        if task is None:
            raise NotFoundError("Task not found")

        comment = TaskComment(task_id=task_id, user_id=user_id, content=content)
        self.db.add(comment)
        await self.db.commit()
        logger.info("comment_added", task_id=task_id, comment_id=comment.id)

        outcome = await self.dispatcher.notify_new_comment(user_id, task_id, task.title)
        await self.db.commit()
        return {
            "id": comment.id,
            "content": comment.content,
            "created_at": ensure_aware(comment.created_at),
            "user_id": comment.user_id,
            "outcomes": [outcome.to_dict()],
        }

    async def update_comment(self, comment_id: int, content: str, user_id: UUID) -> dict:
        content = self._validate_comment(content)
        comment = await self.db.get(TaskComment, comment_id)
        if comment is None:
            raise NotFoundError("Comment not found")
        if comment.user_id != user_id:
            raise PermissionDeniedError("You can only edit your own comments")

        comment.content = content
        await self.db.commit()
        return {
            "id": comment.id,
            "content": comment.content,
            "updated_at": ensure_aware(comment.updated_at),
        }

    async def delete_comment(self, comment_id: int, user_id: UUID) -> None:
        if not await self.resolver.is_admin(user_id):
            raise PermissionDeniedError("Only admins can delete comments")

        comment = await self.db.get(TaskComment, comment_id)
        if comment is None:
            raise NotFoundError("Comment not found")
        await self.db.delete(comment)
        await self.db.commit()
        logger.info("comment_deleted", comment_id=comment_id, user_id=str(user_id))

    # =========================================================================
    # Archive
    # =========================================================================

    async def archive_task(self, task_id: int, is_archived: bool, user_id: UUID) -> int:
        """Archive or restore a task together with its subtasks.

        Returns the number of affected tasks (the task plus its subtasks).
        """
        if not await self.resolver.is_manager(user_id):
            raise PermissionDeniedError("Only managers can archive tasks")

        task = await self.db.get(Task, task_id)
        if task is None:
            raise NotFoundError(f"Task with ID {task_id} not found")

        result = await self.db.execute(select(Task.id).where(Task.parent_task_id == task_id))
        all_ids = [task_id, *result.scalars().all()]

        await self.db.execute(
            update(Task)
            .where(Task.id.in_(all_ids))
            .values(is_archived=is_archived)
            .execution_options(synchronize_session="fetch")
        )
        await self.db.commit()
        logger.info(
            "task_archived" if is_archived else "task_restored",
            task_id=task_id,
            affected=len(all_ids),
        )
        return len(all_ids)

    # =========================================================================
    # Reads
    # =========================================================================

    async def _user_rows(self, task_ids: list[int], extra_ids: set[UUID]) -> list[dict]:
        """Display names for the tasks' assignees plus any extra users."""
        users = await get_task_assignees_info(self.db, task_ids)
        known = {u["id"] for u in users}
        missing = [uid for uid in extra_ids if uid is not None and uid not in known]
        if missing:
            result = await self.db.execute(
                select(UserInfo.id, UserInfo.first_name, UserInfo.last_name).where(
                    UserInfo.id.in_(missing)
                )
            )
            users.extend(
                {"id": r.id, "first_name": r.first_name, "last_name": r.last_name}
                for r in result.all()
            )
        return users

    async def get_user_tasks(self, user_id: UUID) -> list[dict]:
        """Non-archived tasks the user created or is assigned to, by deadline."""
        assigned = select(TaskAssignment.task_id).where(TaskAssignment.assignee_id == user_id)
        result = await self.db.execute(
            select(Task)
            .where(
                Task.is_archived.is_(False),
                or_(Task.creator_id == user_id, Task.id.in_(assigned)),
            )
            .order_by(Task.deadline.is_(None), Task.deadline.asc(), Task.id.asc())
        )
        tasks = list(result.scalars().all())
        if not tasks:
            return []
        task_ids = [t.id for t in tasks]

        sub_result = await self.db.execute(
            select(Task)
            .where(Task.parent_task_id.in_(task_ids), Task.is_archived.is_(False))
            .order_by(Task.id)
        )
        subtasks = list(sub_result.scalars().all())

        att_result = await self.db.execute(
            select(TaskAttachment.task_id, TaskAttachment.storage_path)
            .where(TaskAttachment.task_id.in_(task_ids))
            .order_by(TaskAttachment.id)
        )
        attachments = [{"task_id": r.task_id, "storage_path": r.storage_path} for r in att_result]

        users = await self._user_rows(task_ids, {t.creator_id for t in tasks})
        return format_tasks(tasks, subtasks, attachments, users)

    async def get_task_by_id(self, task_id: int) -> dict | None:
        """Full task detail, or None if the task is missing or archived."""
        task = await self._get_task(task_id)
        if task is None or task.is_archived:
            return None

        sub_result = await self.db.execute(
            select(Task)
            .where(Task.parent_task_id == task_id, Task.is_archived.is_(False))
            .order_by(Task.id)
        )
        subtasks = list(sub_result.scalars().all())

        att_result = await self.db.execute(
            select(TaskAttachment.id, TaskAttachment.storage_path)
            .where(TaskAttachment.task_id == task_id)
            .order_by(TaskAttachment.id)
        )
        attachments = [
            {
                "id": r.id,
                "storage_path": r.storage_path,
                "public_url": self.get_attachment_url(r.storage_path),
            }
            for r in att_result
        ]

        comment_result = await self.db.execute(
            select(TaskComment)
            .where(TaskComment.task_id == task_id)
            .order_by(TaskComment.created_at, TaskComment.id)
        )
        comments = list(comment_result.scalars().all())

        extra = {task.creator_id, *(c.user_id for c in comments)}
        users = await self._user_rows([task_id], extra)
        return format_task_details(task, subtasks, attachments, comments, users)

    async def get_all_users(self) -> list[dict]:
        result = await self.db.execute(
            select(UserInfo.id, UserInfo.first_name, UserInfo.last_name).order_by(
                UserInfo.first_name
            )
        )
        return [
            {"id": r.id, "first_name": r.first_name, "last_name": r.last_name}
            for r in result.all()
        ]

    async def get_all_projects(self) -> list[dict]:
        result = await self.db.execute(
            select(Project.id, Project.name)
            .where(Project.is_archived.is_(False))
            .order_by(Project.name)
        )
        return [{"id": r.id, "name": r.name} for r in result.all()]

    async def get_schedule_tasks(
        self,
        start: datetime | None = None,
        end: datetime | None = None,
        project_ids: list[int] | None = None,
        staff_ids: list[UUID] | None = None,
    ) -> list[dict]:
        """Tasks with a deadline whose [created_at, deadline] span overlaps the range."""
        query = select(Task).where(Task.is_archived.is_(False), Task.deadline.is_not(None))
        if end is not None:
            query = query.where(Task.created_at <= to_utc(end))
        if start is not None:
            query = query.where(Task.deadline >= to_utc(start))
        if project_ids:
            query = query.where(Task.project_id.in_(project_ids))

        result = await self.db.execute(query.order_by(Task.deadline.asc(), Task.id.asc()))
        tasks = list(result.scalars().all())
        if staff_ids:
            wanted = set(staff_ids)
            tasks = [t for t in tasks if wanted.intersection(t.assignee_ids)]
        if not tasks:
            return []

        users = await get_task_assignees_info(self.db, [t.id for t in tasks])
        user_map = {u["id"]: u for u in users}
        return [
            {
                "id": t.id,
                "title": t.title,
                "created_at": ensure_aware(t.created_at),
                "deadline": ensure_aware(t.deadline),
                "status": t.status,
                "updated_at": ensure_aware(t.updated_at),
                "project_name": t.project.name if t.project is not None else None,
                "assignees": [user_map[a] for a in t.assignee_ids if a in user_map],
            }
            for t in tasks
        ]

    async def get_schedule_staff(self, project_ids: list[int]) -> list[dict]:
        """People assigned to non-archived tasks in the given projects."""
        if not project_ids:
            return []
        result = await self.db.execute(
            select(UserInfo.id, UserInfo.first_name, UserInfo.last_name)
            .join(TaskAssignment, TaskAssignment.assignee_id == UserInfo.id)
            .join(Task, Task.id == TaskAssignment.task_id)
            .where(Task.project_id.in_(project_ids), Task.is_archived.is_(False))
            .distinct()
            .order_by(UserInfo.first_name)
        )
        return [
            {"id": r.id, "first_name": r.first_name, "last_name": r.last_name}
            for r in result.all()
        ]
