"""
Module: approval_kernel.models.project
Responsibility: ORM persistence for projects, their per-department budget
    allocations and their role memberships.

Architecture position: Kernel > Models.  May import from db/ only.

Invariants enforced:
    - allocated >= 0 for every department (check constraint).
    - One row per (project, user, membership).  ``team`` membership is the
      visibility set and must contain every active temporary approver.
"""

from __future__ import annotations

from collections.abc import Iterable, Mapping
from decimal import Decimal
from typing import TYPE_CHECKING

from sqlalchemy import CheckConstraint, ForeignKey, Index, Integer, String, UniqueConstraint
from sqlalchemy.orm import Mapped, mapped_column

from approval_kernel.db.base import Base, TrackedBase

if TYPE_CHECKING:
    from approval_kernel.domain.dtos import ProjectSnapshot


class ProjectModel(TrackedBase):
    """Persistent project.

    ``version`` is bumped by every membership or delegation-marker change
    so concurrent edits can be detected.
    """

    __tablename__ = "projects"

    name: Mapped[str] = mapped_column(String(200), nullable=False)
    code: Mapped[str | None] = mapped_column(String(50), nullable=True)
    manager_id: Mapped[str | None] = mapped_column(String(64), nullable=True)
    temporary_approver_phone: Mapped[str | None] = mapped_column(
        String(32), nullable=True,
    )
    version: Mapped[int] = mapped_column(Integer, nullable=False, default=1)

    def __repr__(self) -> str:
        return f"<Project {self.id} {self.name}>"

    def to_dto(
        self,
        budgets: Mapping[str, Decimal],
        members: Iterable[tuple[str, str]],
    ) -> ProjectSnapshot:
        """Convert to a frozen snapshot.

        ``members`` are (user_id, membership) pairs read alongside the row.
        """
        from approval_kernel.domain.dtos import ProjectSnapshot
        from approval_kernel.domain.types import Membership

        by_kind: dict[str, set[str]] = {m.value: set() for m in Membership}
        for user_id, membership in members:
            by_kind.setdefault(membership, set()).add(user_id)
        return ProjectSnapshot(
            id=self.id,
            name=self.name,
            department_budgets=dict(budgets),
            approver_ids=frozenset(by_kind[Membership.APPROVER.value]),
            production_head_ids=frozenset(by_kind[Membership.PRODUCTION_HEAD.value]),
            manager_id=self.manager_id or None,
            team_members=frozenset(by_kind[Membership.TEAM.value]),
            temporary_approver_phone=self.temporary_approver_phone or None,
        )


class ProjectDepartmentBudgetModel(Base):
    """Allocated amount for one department of a project."""

    __tablename__ = "project_department_budgets"

    __table_args__ = (
        CheckConstraint("allocated >= 0", name="ck_department_budget_non_negative"),
        UniqueConstraint("project_id", "department", name="uq_department_budget"),
    )

    project_id: Mapped[str] = mapped_column(
        String(64), ForeignKey("projects.id"), nullable=False,
    )
    department: Mapped[str] = mapped_column(String(100), nullable=False)
    allocated: Mapped[Decimal] = mapped_column(nullable=False)


class ProjectMemberModel(Base):
    """A user's membership of a project (approver, production_head or team)."""

    __tablename__ = "project_members"

    __table_args__ = (
        CheckConstraint(
            "membership IN ('approver', 'production_head', 'team')",
            name="ck_project_members_valid_membership",
        ),
        UniqueConstraint(
            "project_id", "user_id", "membership", name="uq_project_member",
        ),
        Index("ix_project_members_user", "user_id", "membership"),
    )

    project_id: Mapped[str] = mapped_column(
        String(64), ForeignKey("projects.id"), nullable=False,
    )
    user_id: Mapped[str] = mapped_column(String(64), nullable=False)
    membership: Mapped[str] = mapped_column(String(30), nullable=False)
