"""Notification service for creating in-app notifications."""

from uuid import UUID

import structlog
from sqlalchemy import func, select, update
from sqlalchemy.ext.asyncio import AsyncSession

from taskflow.exceptions import NotFoundError, PermissionDeniedError
from taskflow.models.activity import Notification
from taskflow.models.organization import UserInfo
from taskflow.models.project import TaskAssignment
from taskflow.services.outcome import StepOutcome
from taskflow.services.service_role import ServiceRole

logger = structlog.get_logger()

TASK_ASSIGNED = "task_assigned"
COMMENT_ADDED = "comment_added"

FALLBACK_ACTOR_NAME = "Someone"


class NotificationService:
    """Create notifications and manage a user's inbox."""

    def __init__(self, db: AsyncSession, service_role: ServiceRole | None = None):
        self.db = db
        self.service_role = service_role

    async def create(
        self,
        user_id: UUID,
        notification_type: str,
        title: str,
        message: str,
    ) -> Notification:
        """Insert a notification row.

        Notifications are system-generated on behalf of another user, so this
        requires the service-role capability.
        """
        if self.service_role is None:
            raise PermissionDeniedError("Creating notifications requires the service role")

        notification = Notification(
            user_id=user_id,
            type=notification_type,
            title=title,
            message=message,
            read=False,
            is_archived=False,
        )
        self.db.add(notification)
        await self.db.flush()

        logger.info(
            "notification_created",
            notification_id=notification.id,
            user_id=str(user_id),
            notification_type=notification_type,
        )
        return notification

    # =========================================================================
    # Inbox
    # =========================================================================

    async def list_for_user(
        self, user_id: UUID, include_archived: bool = False
    ) -> list[Notification]:
        query = select(Notification).where(Notification.user_id == user_id)
        if not include_archived:
            query = query.where(Notification.is_archived.is_(False))
        result = await self.db.execute(
            query.order_by(Notification.created_at.desc(), Notification.id.desc())
        )
        return list(result.scalars().all())

    async def get_unread_count(self, user_id: UUID) -> int:
        result = await self.db.execute(
            select(func.count(Notification.id)).where(
                Notification.user_id == user_id,
                Notification.read.is_(False),
            )
        )
        return result.scalar_one()

    async def mark_as_read(self, notification_id: int, user_id: UUID) -> Notification:
        notification = await self._get_owned(notification_id, user_id)
        notification.read = True
        await self.db.flush()
        return notification

    async def mark_all_as_read(self, user_id: UUID) -> int:
        result = await self.db.execute(
            update(Notification)
            .where(Notification.user_id == user_id, Notification.read.is_(False))
            .values(read=True)
            .execution_options(synchronize_session=False)
        )
        logger.info("notifications_marked_read", user_id=str(user_id), count=result.rowcount)
        return result.rowcount

    async def archive(self, notification_id: int, user_id: UUID) -> Notification:
        notification = await self._get_owned(notification_id, user_id)
        notification.is_archived = True
        await self.db.flush()
        return notification

    async def _get_owned(self, notification_id: int, user_id: UUID) -> Notification:
        result = await self.db.execute(
            select(Notification).where(
                Notification.id == notification_id,
                Notification.user_id == user_id,
            )
        )
        notification = result.scalar_one_or_none()
        if notification is None:
            raise NotFoundError("Notification not found")
        return notification


class NotificationDispatcher:
    """Fire best-effort notifications for task events.

    Dispatch never raises. Each call reports a ``StepOutcome`` so callers can
    tell a skipped or failed notification from a delivered one.
    """

    def __init__(self, db: AsyncSession, service_role: ServiceRole):
        self.db = db
        self.notifications = NotificationService(db, service_role)

    async def _display_name(self, user_id: UUID | None) -> str:
        if user_id is None:
            return FALLBACK_ACTOR_NAME
        try:
            result = await self.db.execute(
                select(UserInfo.first_name, UserInfo.last_name).where(UserInfo.id == user_id)
            )
            row = result.one_or_none()
        except Exception as e:
            logger.warning("actor_name_lookup_failed", user_id=str(user_id), error=str(e))
            return FALLBACK_ACTOR_NAME
        if row is None:
            return FALLBACK_ACTOR_NAME
        return f"{row.first_name} {row.last_name}"

    async def notify_task_assignment(
        self,
        assignee_id: UUID,
        assignor_id: UUID | None,
        task_id: int,
        task_title: str,
    ) -> StepOutcome:
        step = "notify_task_assignment"

        # Don't notify users about their own actions
        if assignor_id is not None and assignee_id == assignor_id:
            logger.debug(
                "skipping_self_notification",
                user_id=str(assignee_id),
                notification_type=TASK_ASSIGNED,
            )
            return StepOutcome.ok(step)

        assignor_name = await self._display_name(assignor_id)
        try:
            async with self.db.begin_nested():
                await self.notifications.create(
                    user_id=assignee_id,
                    notification_type=TASK_ASSIGNED,
                    title="New Task Assignment",
                    message=f'{assignor_name} assigned you to task: "{task_title}"',
                )
        except Exception as e:
            logger.warning(
                "assignment_notification_failed",
                task_id=task_id,
                assignee_id=str(assignee_id),
                error=str(e),
            )
            return StepOutcome.soft_failure(step, str(e))
        return StepOutcome.ok(step)

    async def notify_new_comment(
        self,
        commenter_id: UUID,
        task_id: int,
        task_title: str,
    ) -> StepOutcome:
        """Notify every assignee of the task except the commenter."""
        step = "notify_new_comment"
        commenter_name = await self._display_name(commenter_id)

        try:
            result = await self.db.execute(
                select(TaskAssignment.assignee_id)
                .where(TaskAssignment.task_id == task_id)
                .order_by(TaskAssignment.id)
            )
            assignee_ids = list(result.scalars().all())

            recipients = [uid for uid in assignee_ids if uid != commenter_id]
            if not recipients:
                logger.debug("no_comment_recipients", task_id=task_id)
                return StepOutcome.ok(step)

            async with self.db.begin_nested():
                for user_id in recipients:
                    await self.notifications.create(
                        user_id=user_id,
                        notification_type=COMMENT_ADDED,
                        title="New Comment",
                        message=f'{commenter_name} commented on task: "{task_title}"',
                    )
        except Exception as e:
            logger.warning("comment_notification_failed", task_id=task_id, error=str(e))
            return StepOutcome.soft_failure(step, str(e))
        return StepOutcome.ok(step)
