"""
Module: approval_kernel.models.temporary_approver
Responsibility: ORM persistence for temporary-approver delegations.

Architecture position: Kernel > Models.  May import from db/ only.

Invariants enforced:
    - At most one is_active row per project.  DelegationLifecycle is the
      enforcement point; the partial unique index is a backstop.
    - is_active and status move together: (true, ACTIVE) or (false, EXPIRED).
    - Rows are never deleted; EXPIRED rows are frozen (db/immutability.py).
    - ``version`` increments on every conditional write.

Failure modes:
    - IntegrityError on a second active row for the same project.
"""

from __future__ import annotations

from datetime import datetime
from typing import TYPE_CHECKING

from sqlalchemy import Boolean, CheckConstraint, ForeignKey, Index, Integer, String, text
from sqlalchemy.orm import Mapped, mapped_column

from approval_kernel.db.base import TrackedBase

if TYPE_CHECKING:
    from approval_kernel.domain.dtos import TemporaryApproverRecord


class TemporaryApproverModel(TrackedBase):
    __tablename__ = "temporary_approvers"

    __table_args__ = (
        CheckConstraint(
            "(is_active AND status = 'ACTIVE') OR (NOT is_active AND status = 'EXPIRED')",
            name="ck_temporary_approvers_state",
        ),
        Index(
            "ix_temporary_approvers_one_active",
            "project_id",
            unique=True,
            sqlite_where=text("is_active"),
            postgresql_where=text("is_active"),
        ),
        Index("ix_temporary_approvers_due", "is_active", "expiring_date"),
    )

    project_id: Mapped[str] = mapped_column(
        String(64), ForeignKey("projects.id"), nullable=False,
    )
    approver_id: Mapped[str] = mapped_column(String(64), nullable=False)
    approver_name: Mapped[str] = mapped_column(String(200), nullable=False, default="")
    approver_phone: Mapped[str] = mapped_column(String(32), nullable=False, default="")
    assigned_by: Mapped[str] = mapped_column(String(64), nullable=False, default="")
    assigned_by_name: Mapped[str] = mapped_column(String(200), nullable=False, default="")
    start_date: Mapped[datetime] = mapped_column(nullable=False)
    expiring_date: Mapped[datetime | None] = mapped_column(nullable=True)
    is_active: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)
    status: Mapped[str] = mapped_column(String(20), nullable=False, default="ACTIVE")
    changed_by: Mapped[str | None] = mapped_column(String(200), nullable=True)
    version: Mapped[int] = mapped_column(Integer, nullable=False, default=1)

    def __repr__(self) -> str:
        return (
            f"<TemporaryApprover {self.id} project={self.project_id} "
            f"approver={self.approver_id} status={self.status}>"
        )

    def to_dto(self) -> TemporaryApproverRecord:
        from approval_kernel.domain.dtos import TemporaryApproverRecord
        from approval_kernel.domain.types import DelegationStatus

        return TemporaryApproverRecord(
            id=self.id,
            project_id=self.project_id,
            approver_id=self.approver_id,
            approver_name=self.approver_name,
            approver_phone=self.approver_phone,
            start_date=self.start_date,
            expiring_date=self.expiring_date,
            is_active=bool(self.is_active),
            status=DelegationStatus(self.status),
            assigned_by=self.assigned_by,
            assigned_by_name=self.assigned_by_name,
            changed_by=self.changed_by,
            version=self.version,
            updated_at=self.updated_at,
        )

