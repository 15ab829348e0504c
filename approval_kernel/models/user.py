"""
Module: approval_kernel.models.user
Responsibility: ORM persistence for users, their notification preferences,
    push token and project assignments (meaningful for role USER).

Architecture position: Kernel > Models.  May import from db/ only.

Invariants enforced:
    - role is one of USER, APPROVER, PRODUCTION_HEAD, ADMIN.
    - (role, is_active) is indexed so role lookups never scan all users.
"""

from __future__ import annotations

from collections.abc import Iterable
from typing import TYPE_CHECKING

from sqlalchemy import Boolean, CheckConstraint, ForeignKey, Index, String, UniqueConstraint
from sqlalchemy.orm import Mapped, mapped_column

from approval_kernel.db.base import Base, TrackedBase

if TYPE_CHECKING:
    from approval_kernel.domain.dtos import UserSnapshot


class UserModel(TrackedBase):
    """Persistent user.  ``id`` is the uid."""

    __tablename__ = "users"

    __table_args__ = (
        CheckConstraint(
            "role IN ('USER', 'APPROVER', 'PRODUCTION_HEAD', 'ADMIN')",
            name="ck_users_valid_role",
        ),
        Index("ix_users_role_active", "role", "is_active"),
    )

    name: Mapped[str] = mapped_column(String(200), nullable=False)
    phone: Mapped[str] = mapped_column(String(32), nullable=False, default="")
    role: Mapped[str] = mapped_column(String(30), nullable=False)
    is_active: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)
    device_token: Mapped[str | None] = mapped_column(String(512), nullable=True)

    pref_push_notifications: Mapped[bool] = mapped_column(Boolean, default=True)
    pref_expense_submitted: Mapped[bool] = mapped_column(Boolean, default=True)
    pref_expense_approved: Mapped[bool] = mapped_column(Boolean, default=True)
    pref_expense_rejected: Mapped[bool] = mapped_column(Boolean, default=True)
    pref_project_assignment: Mapped[bool] = mapped_column(Boolean, default=True)
    pref_pending_approvals: Mapped[bool] = mapped_column(Boolean, default=True)

    def __repr__(self) -> str:
        return f"<User {self.id} {self.role}>"

    def to_dto(self, assigned_projects: Iterable[str] = ()) -> UserSnapshot:
        from approval_kernel.domain.dtos import NotificationPreferences, UserSnapshot
        from approval_kernel.domain.types import UserRole

        return UserSnapshot(
            uid=self.id,
            name=self.name,
            phone=self.phone or "",
            role=UserRole(self.role),
            is_active=bool(self.is_active),
            assigned_projects=frozenset(assigned_projects),
            preferences=NotificationPreferences(
                push_notifications=self.pref_push_notifications is not False,
                expense_submitted=self.pref_expense_submitted is not False,
                expense_approved=self.pref_expense_approved is not False,
                expense_rejected=self.pref_expense_rejected is not False,
                project_assignment=self.pref_project_assignment is not False,
                pending_approvals=self.pref_pending_approvals is not False,
            ),
            device_token=self.device_token or None,
        )


class UserProjectAssignmentModel(Base):
    __tablename__ = "user_project_assignments"

    __table_args__ = (
        UniqueConstraint("user_id", "project_id", name="uq_user_project_assignment"),
    )

    user_id: Mapped[str] = mapped_column(
        String(64), ForeignKey("users.id"), nullable=False,
    )
    project_id: Mapped[str] = mapped_column(String(64), nullable=False)
