"""Role and department visibility resolution.

Visibility follows the department hierarchy by role:
- manager: own department plus every descendant department
- anyone else: exactly their own department
- no department: nothing visible

A project is visible when it is linked to any visible department. Lookup
errors propagate; callers that want to degrade catch them.
"""

from uuid import UUID

import structlog
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from taskflow.db.procedures import get_department_hierarchy
from taskflow.models.organization import (
    ROLE_ADMIN,
    ROLE_MANAGER,
    Department,
    UserInfo,
    UserRole,
)
from taskflow.models.project import Project, ProjectDepartment

logger = structlog.get_logger()


class DepartmentResolver:
    """Resolve which departments and projects a user may see."""

    def __init__(self, db: AsyncSession):
        self.db = db

    # =========================================================================
    # Roles
    # =========================================================================

    async def get_user_roles(self, user_id: UUID) -> list[str]:
        result = await self.db.execute(
            select(UserRole.role).where(UserRole.user_id == user_id).order_by(UserRole.role)
        )
        return list(result.scalars().all())

    async def has_role(self, user_id: UUID, role: str) -> bool:
        result = await self.db.execute(
            select(UserRole.id).where(
                UserRole.user_id == user_id,
                UserRole.role == role,
            ).limit(1)
        )
        return result.scalar_one_or_none() is not None

    async def is_manager(self, user_id: UUID) -> bool:
        return await self.has_role(user_id, ROLE_MANAGER)

    async def is_admin(self, user_id: UUID) -> bool:
        return await self.has_role(user_id, ROLE_ADMIN)

    # =========================================================================
    # Departments
    # =========================================================================

    async def get_user_department_id(self, user_id: UUID) -> int | None:
        result = await self.db.execute(
            select(UserInfo.department_id).where(UserInfo.id == user_id)
        )
        return result.scalar_one_or_none()

    async def get_visible_department_ids(self, user_id: UUID) -> list[int]:
        """Ids of departments visible to the user, ascending."""
        is_manager = await self.is_manager(user_id)

        dept_id = await self.get_user_department_id(user_id)
        if dept_id is None:
            logger.debug("user_has_no_department", user_id=str(user_id))
            return []

        if is_manager:
            dept_ids = await get_department_hierarchy(self.db, dept_id)
        else:
            dept_ids = [dept_id]

        return sorted(set(dept_ids))

    async def get_visible_departments(self, user_id: UUID) -> list[dict]:
        """Department rows ({id, name}) visible to the user, ordered by id."""
        dept_ids = await self.get_visible_department_ids(user_id)
        return await self._get_departments(dept_ids)

    async def get_departments_for_projects(self, project_ids: list[int]) -> list[dict]:
        """Departments linked to any of the given projects, deduplicated."""
        if not project_ids:
            return []

        result = await self.db.execute(
            select(ProjectDepartment.department_id)
            .where(ProjectDepartment.project_id.in_(project_ids))
            .distinct()
        )
        dept_ids = sorted(set(result.scalars().all()))
        return await self._get_departments(dept_ids)

    async def _get_departments(self, dept_ids: list[int]) -> list[dict]:
        if not dept_ids:
            return []

        result = await self.db.execute(
            select(Department.id, Department.name)
            .where(Department.id.in_(dept_ids))
            .order_by(Department.id)
        )
        return [{"id": row.id, "name": row.name} for row in result.all()]

    # =========================================================================
    # Projects
    # =========================================================================

    async def get_visible_projects(self, user_id: UUID) -> list[dict]:
        """Non-archived projects linked to a visible department, ordered by id."""
        dept_ids = await self.get_visible_department_ids(user_id)
        if not dept_ids:
            return []

        result = await self.db.execute(
            select(Project.id, Project.name)
            .join(ProjectDepartment, ProjectDepartment.project_id == Project.id)
            .where(
                ProjectDepartment.department_id.in_(dept_ids),
                Project.is_archived.is_(False),
            )
            .distinct()
            .order_by(Project.id)
        )
        return [{"id": row.id, "name": row.name} for row in result.all()]

    async def filter_projects(
        self, user_id: UUID, department_ids: list[int] | None = None
    ) -> list[dict]:
        """Visible projects, narrowed to those linked to the selected departments."""
        projects = await self.get_visible_projects(user_id)
        if not department_ids or not projects:
            return projects

        result = await self.db.execute(
            select(ProjectDepartment.project_id).where(
                ProjectDepartment.project_id.in_([p["id"] for p in projects]),
                ProjectDepartment.department_id.in_(department_ids),
            )
        )
        matching = set(result.scalars().all())
        return [p for p in projects if p["id"] in matching]

    async def filter_departments(
        self, user_id: UUID, project_ids: list[int] | None = None
    ) -> list[dict]:
        """Visible departments, narrowed to those linked to the selected projects."""
        departments = await self.get_visible_departments(user_id)
        if not project_ids or not departments:
            return departments

        linked = await self.get_departments_for_projects(project_ids)
        linked_ids = {d["id"] for d in linked}
        return [d for d in departments if d["id"] in linked_ids]
