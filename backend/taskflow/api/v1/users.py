"""User endpoints."""

import structlog
from fastapi import APIRouter
from sqlalchemy.exc import SQLAlchemyError

from taskflow.api.v1.auth import CurrentUser, TaskServiceDep
from taskflow.db.session import DBSession
from taskflow.models.organization import ROLE_STAFF
from taskflow.services.access_control import DepartmentResolver

router = APIRouter()
logger = structlog.get_logger()


@router.get("")
async def list_users(current_user: CurrentUser, service: TaskServiceDep) -> list[dict]:
    return await service.get_all_users()


@router.get("/me/roles")
async def get_my_roles(current_user: CurrentUser, db: DBSession) -> dict:
    """Caller's roles. Falls back to staff when the lookup fails or is empty."""
    try:
        roles = await DepartmentResolver(db).get_user_roles(current_user.id)
    except SQLAlchemyError as e:
        logger.warning("role_lookup_failed", user_id=str(current_user.id), error=str(e))
        roles = []
    return {"roles": roles or [ROLE_STAFF]}


@router.get("/me/departments")
async def get_my_departments(current_user: CurrentUser, db: DBSession) -> list[dict]:
    return await DepartmentResolver(db).get_visible_departments(current_user.id)
