"""
Module: approval_kernel.models.expense
Responsibility: ORM persistence for submitted expenses.

Architecture position: Kernel > Models.  May import from db/ only.

Invariants enforced:
    - amount > 0 (check constraint).
    - status in PENDING / APPROVED / REJECTED; APPROVED and REJECTED are
      terminal (ORM listener in db/immutability.py).
    - (project_id, department, status) is indexed for the approved-spend sum.
"""

from __future__ import annotations

from datetime import date, datetime
from decimal import Decimal
from typing import TYPE_CHECKING

from sqlalchemy import CheckConstraint, Date, ForeignKey, Index, String
from sqlalchemy.orm import Mapped, mapped_column

from approval_kernel.db.base import TrackedBase

if TYPE_CHECKING:
    from approval_kernel.domain.dtos import ExpenseRecord


class ExpenseModel(TrackedBase):
    __tablename__ = "expenses"

    __table_args__ = (
        CheckConstraint("amount > 0", name="ck_expenses_positive_amount"),
        CheckConstraint(
            "status IN ('PENDING', 'APPROVED', 'REJECTED')",
            name="ck_expenses_valid_status",
        ),
        Index("ix_expenses_budget", "project_id", "department", "status"),
    )

    project_id: Mapped[str] = mapped_column(
        String(64), ForeignKey("projects.id"), nullable=False,
    )
    department: Mapped[str] = mapped_column(String(100), nullable=False)
    category: Mapped[str] = mapped_column(String(100), nullable=False, default="")
    amount: Mapped[Decimal] = mapped_column(nullable=False)
    status: Mapped[str] = mapped_column(String(20), nullable=False, default="PENDING")
    submitted_by_user_id: Mapped[str] = mapped_column(String(64), nullable=False)
    submitted_by_name: Mapped[str] = mapped_column(String(200), nullable=False, default="")
    description: Mapped[str] = mapped_column(String(4000), nullable=False, default="")
    mode_of_payment: Mapped[str | None] = mapped_column(String(50), nullable=True)
    expense_date: Mapped[date | None] = mapped_column(Date, nullable=True)
    submitted_at: Mapped[datetime | None] = mapped_column(nullable=True)
    reviewed_at: Mapped[datetime | None] = mapped_column(nullable=True)
    reviewed_by: Mapped[str | None] = mapped_column(String(200), nullable=True)
    review_comments: Mapped[str | None] = mapped_column(String(4000), nullable=True)

    def __repr__(self) -> str:
        return f"<Expense {self.id} {self.amount} {self.status}>"

    def to_dto(self) -> ExpenseRecord:
        from approval_kernel.domain.dtos import ExpenseRecord
        from approval_kernel.domain.types import ExpenseStatus

        return ExpenseRecord(
            id=self.id,
            project_id=self.project_id,
            department=self.department,
            category=self.category,
            amount=self.amount,
            status=ExpenseStatus(self.status),
            submitted_by_user_id=self.submitted_by_user_id,
            submitted_by_name=self.submitted_by_name,
            description=self.description,
            expense_date=self.expense_date,
            submitted_at=self.submitted_at,
            reviewed_at=self.reviewed_at,
            reviewed_by=self.reviewed_by,
            review_comments=self.review_comments,
        )
