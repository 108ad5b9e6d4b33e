"""Department hierarchy, user profile and role models."""

from typing import TYPE_CHECKING
from uuid import UUID

from sqlalchemy import ForeignKey, Integer, String, UniqueConstraint, Uuid
from sqlalchemy.orm import Mapped, mapped_column, relationship

from taskflow.db.base import Base, BaseModel, TimestampMixin

if TYPE_CHECKING:
    from taskflow.models.project import Project

# Roles recognised by the access rules
ROLE_STAFF = "staff"
ROLE_MANAGER = "manager"
ROLE_ADMIN = "admin"


class Department(BaseModel):
    """Department node in the organisation tree."""

    __tablename__ = "departments"

    name: Mapped[str] = mapped_column(String(255), nullable=False)
    parent_department_id: Mapped[int | None] = mapped_column(
        Integer,
        ForeignKey("departments.id", ondelete="SET NULL"),
        nullable=True,
        index=True,
    )

    # Relationships
    parent: Mapped["Department | None"] = relationship(
        "Department", remote_side="Department.id", back_populates="children"
    )
    children: Mapped[list["Department"]] = relationship(
        "Department", back_populates="parent"
    )
    projects: Mapped[list["Project"]] = relationship(
        "Project",
        secondary="project_departments",
        back_populates="departments",
    )

    def __repr__(self) -> str:
        try:
            return f"<Department {self.name}>"
        except Exception:
            return f"<Department id={self.id}>"


class UserInfo(Base, TimestampMixin):
    """Profile row for a user managed by the hosted auth provider."""

    __tablename__ = "user_info"

    # Same id as the auth provider's user
    id: Mapped[UUID] = mapped_column(Uuid, primary_key=True)
    first_name: Mapped[str] = mapped_column(String(100), nullable=False, default="")
    last_name: Mapped[str] = mapped_column(String(100), nullable=False, default="")
    email: Mapped[str | None] = mapped_column(String(255), nullable=True)
    department_id: Mapped[int | None] = mapped_column(
        Integer,
        ForeignKey("departments.id", ondelete="SET NULL"),
        nullable=True,
        index=True,
    )

    department: Mapped["Department | None"] = relationship("Department")
    roles: Mapped[list["UserRole"]] = relationship(
        "UserRole", back_populates="user", lazy="selectin", cascade="all, delete-orphan"
    )

    @property
    def display_name(self) -> str:
        return f"{self.first_name} {self.last_name}".strip()

    def __repr__(self) -> str:
        return f"<UserInfo id={self.id}>"


class UserRole(BaseModel):
    """Role held by a user. A user may hold several roles."""

    __tablename__ = "user_roles"
    __table_args__ = (
        UniqueConstraint("user_id", "role", name="uq_user_role"),
    )

    user_id: Mapped[UUID] = mapped_column(
        Uuid,
        ForeignKey("user_info.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    role: Mapped[str] = mapped_column(String(20), nullable=False)  # staff, manager, admin

    user: Mapped["UserInfo"] = relationship("UserInfo", back_populates="roles")

    def __repr__(self) -> str:
        return f"<UserRole user={self.user_id} role={self.role}>"
