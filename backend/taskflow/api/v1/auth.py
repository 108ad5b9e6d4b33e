"""Bearer-token verification and shared request dependencies.

Tokens are issued by the hosted auth provider. This service only verifies
them; the ``sub`` claim is the user id.
"""

from dataclasses import dataclass
from functools import lru_cache
from typing import Annotated
from uuid import UUID

import structlog
from fastapi import Depends, HTTPException, status
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer
from jose import JWTError, jwt

from taskflow.config import get_settings
from taskflow.db.session import DBSession
from taskflow.services.service_role import ServiceRole
from taskflow.services.storage import StorageClient
from taskflow.services.task import TaskService

logger = structlog.get_logger()
settings = get_settings()
security = HTTPBearer(auto_error=False)


@dataclass(frozen=True)
class AuthenticatedUser:
    id: UUID
    email: str | None = None


def _unauthorized(detail: str) -> HTTPException:
    return HTTPException(
        status_code=status.HTTP_401_UNAUTHORIZED,
        detail=detail,
        headers={"WWW-Authenticate": "Bearer"},
    )


async def get_current_user(
    credentials: Annotated[HTTPAuthorizationCredentials | None, Depends(security)],
) -> AuthenticatedUser:
    """Verify the bearer token and return the caller."""
    if not credentials:
        raise _unauthorized("Not authenticated")

    try:
        payload = jwt.decode(
            credentials.credentials,
            settings.jwt_secret_key.get_secret_value(),
            algorithms=[settings.jwt_algorithm],
            audience=settings.jwt_audience,
        )
    except JWTError as e:
        logger.warning("token_rejected", error=str(e))
        raise _unauthorized("Invalid token") from e

    subject = payload.get("sub")
    try:
        user_id = UUID(subject)
    except (TypeError, ValueError) as e:
        raise _unauthorized("Invalid token") from e

    return AuthenticatedUser(id=user_id, email=payload.get("email"))


CurrentUser = Annotated[AuthenticatedUser, Depends(get_current_user)]


@lru_cache
def get_service_role() -> ServiceRole:
    """Process-wide service-role capability."""
    return ServiceRole.from_settings(get_settings())


ServiceRoleDep = Annotated[ServiceRole, Depends(get_service_role)]


def get_storage(service_role: ServiceRoleDep) -> StorageClient:
    return StorageClient(service_role)


def get_task_service(
    db: DBSession,
    service_role: ServiceRoleDep,
    storage: Annotated[StorageClient, Depends(get_storage)],
) -> TaskService:
    return TaskService(db, service_role, storage=storage)


TaskServiceDep = Annotated[TaskService, Depends(get_task_service)]
