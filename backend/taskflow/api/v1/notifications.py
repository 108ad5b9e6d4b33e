"""Notification inbox endpoints."""

from datetime import datetime
from uuid import UUID

from fastapi import APIRouter
from pydantic import BaseModel, ConfigDict

from taskflow.api.v1.auth import CurrentUser
from taskflow.db.session import DBSession
from taskflow.services.notification import NotificationService

router = APIRouter()


class NotificationResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    user_id: UUID
    title: str
    message: str
    type: str
    read: bool
    is_archived: bool
    created_at: datetime


@router.get("", response_model=list[NotificationResponse])
async def list_notifications(
    current_user: CurrentUser,
    db: DBSession,
    include_archived: bool = False,
) -> list:
    return await NotificationService(db).list_for_user(current_user.id, include_archived)


@router.get("/unread-count")
async def get_unread_count(current_user: CurrentUser, db: DBSession) -> dict[str, int]:
    return {"count": await NotificationService(db).get_unread_count(current_user.id)}


@router.post("/read-all")
async def mark_all_read(current_user: CurrentUser, db: DBSession) -> dict[str, int]:
    updated = await NotificationService(db).mark_all_as_read(current_user.id)
    return {"updated": updated}


@router.post("/{notification_id}/read", response_model=NotificationResponse)
async def mark_read(notification_id: int, current_user: CurrentUser, db: DBSession):
    return await NotificationService(db).mark_as_read(notification_id, current_user.id)


@router.post("/{notification_id}/archive", response_model=NotificationResponse)
async def archive_notification(notification_id: int, current_user: CurrentUser, db: DBSession):
    return await NotificationService(db).archive(notification_id, current_user.id)
