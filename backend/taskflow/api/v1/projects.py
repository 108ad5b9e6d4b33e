"""Project endpoints."""

from fastapi import APIRouter

from taskflow.api.v1.auth import CurrentUser, TaskServiceDep
from taskflow.db.session import DBSession
from taskflow.services.access_control import DepartmentResolver

router = APIRouter()


@router.get("")
async def list_projects(current_user: CurrentUser, service: TaskServiceDep) -> list[dict]:
    """All non-archived projects, by name."""
    return await service.get_all_projects()


@router.get("/visible")
async def list_visible_projects(current_user: CurrentUser, db: DBSession) -> list[dict]:
    """Projects linked to a department the caller can see."""
    return await DepartmentResolver(db).get_visible_projects(current_user.id)
