"""Stored-procedure style helpers shared by the services.

Each helper keeps the name and contract of the database function it stands
for, so callers read the same whether the logic runs in SQL functions or here.
"""

from datetime import datetime
from uuid import UUID

import structlog
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm import aliased

from taskflow.models.organization import Department, UserInfo
from taskflow.models.project import Task, TaskAssignment

logger = structlog.get_logger()


async def get_department_hierarchy(db: AsyncSession, dept_id: int) -> list[int]:
    """Return the department id plus every descendant department id.

    Uses a recursive CTE. UNION (not UNION ALL) stops on accidental cycles.
    """
    hierarchy = (
        select(Department.id)
        .where(Department.id == dept_id)
        .cte("department_hierarchy", recursive=True)
    )
    child = aliased(Department)
    hierarchy = hierarchy.union(
        select(child.id).join(hierarchy, child.parent_department_id == hierarchy.c.id)
    )

    result = await db.execute(select(hierarchy.c.id).order_by(hierarchy.c.id))
    return [row[0] for row in result.all()]


async def get_department_colleagues(
    db: AsyncSession, user_uuid: UUID
) -> list[tuple[UUID, int]]:
    """Return (user_id, department_id) for users in the caller's department subtree."""
    dept_result = await db.execute(
        select(UserInfo.department_id).where(UserInfo.id == user_uuid)
    )
    dept_id = dept_result.scalar_one_or_none()
    if dept_id is None:
        return []

    dept_ids = await get_department_hierarchy(db, dept_id)
    result = await db.execute(
        select(UserInfo.id, UserInfo.department_id)
        .where(UserInfo.department_id.in_(dept_ids))
        .order_by(UserInfo.id)
    )
    return [(row.id, row.department_id) for row in result.all()]


async def get_task_assignees_info(
    db: AsyncSession, task_ids: list[int]
) -> list[dict]:
    """Return distinct {id, first_name, last_name} rows for assignees of the tasks."""
    if not task_ids:
        return []

    result = await db.execute(
        select(UserInfo.id, UserInfo.first_name, UserInfo.last_name)
        .join(TaskAssignment, TaskAssignment.assignee_id == UserInfo.id)
        .where(TaskAssignment.task_id.in_(task_ids))
        .distinct()
    )
    return [
        {"id": row.id, "first_name": row.first_name, "last_name": row.last_name}
        for row in result.all()
    ]


async def create_task_with_assignments(
    db: AsyncSession,
    *,
    p_title: str,
    p_description: str | None,
    p_priority_bucket: int,
    p_status: str,
    p_deadline: datetime | None,
    p_notes: str | None,
    p_project_id: int,
    p_creator_id: UUID,
    p_recurrence_interval: int,
    p_recurrence_date: datetime | None,
    p_assignee_ids: list[UUID],
) -> int:
    """Insert a task and its assignments atomically and return the new task id.

    Runs inside a savepoint so a failure leaves neither the task nor any
    assignment behind, while the caller's outer transaction stays usable.
    """
    async with db.begin_nested():
        task = Task(
            title=p_title,
            description=p_description,
            priority_bucket=p_priority_bucket,
            status=p_status,
            deadline=p_deadline,
            notes=p_notes,
            project_id=p_project_id,
            creator_id=p_creator_id,
            recurrence_interval=p_recurrence_interval,
            recurrence_date=p_recurrence_date,
        )
        db.add(task)
        await db.flush()

        for assignee_id in p_assignee_ids:
            db.add(
                TaskAssignment(
                    task_id=task.id,
                    assignee_id=assignee_id,
                    assignor_id=p_creator_id,
                )
            )
        await db.flush()

    logger.debug(
        "task_with_assignments_created",
        task_id=task.id,
        assignee_count=len(p_assignee_ids),
    )
    return task.id
