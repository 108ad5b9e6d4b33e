"""Notification model for in-app alerts."""

from uuid import UUID

from sqlalchemy import Boolean, ForeignKey, String, Text, Uuid
from sqlalchemy.orm import Mapped, mapped_column

from taskflow.db.base import BaseModel


class Notification(BaseModel):
    """In-app notification for a single recipient.

    Rows are written through the privileged service-role path since they are
    system-generated on behalf of another user's action.
    """

    __tablename__ = "notifications"

    user_id: Mapped[UUID] = mapped_column(
        Uuid,
        ForeignKey("user_info.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    title: Mapped[str] = mapped_column(String(255), nullable=False)
    message: Mapped[str] = mapped_column(Text, nullable=False)
    type: Mapped[str] = mapped_column(String(50), nullable=False, index=True)

    read: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    is_archived: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)

    def __repr__(self) -> str:
        return f"<Notification {self.type} user={self.user_id}>"
