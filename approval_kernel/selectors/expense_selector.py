"""
Expense reads for budget evaluation and reporting.

Approved spend is summed in SQL; PENDING and REJECTED rows never count.
"""

from collections import defaultdict
from decimal import Decimal

from sqlalchemy import func, select

from approval_kernel.db.types import ZERO
from approval_kernel.domain.dtos import ExpenseRecord, ExpenseSummary
from approval_kernel.domain.types import ExpenseStatus
from approval_kernel.models.expense import ExpenseModel
from approval_kernel.selectors.base import BaseSelector


class ExpenseSelector(BaseSelector[ExpenseModel]):

    def get(self, expense_id: str) -> ExpenseRecord | None:
        if not expense_id:
            return None
        model = self.session.get(ExpenseModel, expense_id, populate_existing=True)
        return model.to_dto() if model is not None else None

    def for_project(self, project_id: str) -> list[ExpenseRecord]:
        stmt = (
            select(ExpenseModel)
            .where(ExpenseModel.project_id == project_id)
            .order_by(ExpenseModel.created_at, ExpenseModel.id)
        )
        return [m.to_dto() for m in self.session.scalars(stmt)]

    def approved_spend(self, project_id: str, department: str) -> Decimal:
        stmt = select(func.coalesce(func.sum(ExpenseModel.amount), 0)).where(
            ExpenseModel.project_id == project_id,
            ExpenseModel.department == department,
            ExpenseModel.status == ExpenseStatus.APPROVED.value,
        )
        return Decimal(str(self.session.scalar(stmt) or 0))

    def approved_spend_by_department(self, project_id: str) -> dict[str, Decimal]:
        stmt = (
            select(ExpenseModel.department, func.sum(ExpenseModel.amount))
            .where(
                ExpenseModel.project_id == project_id,
                ExpenseModel.status == ExpenseStatus.APPROVED.value,
            )
            .group_by(ExpenseModel.department)
        )
        return {
            department: Decimal(str(total))
            for department, total in self.session.execute(stmt)
        }

    def pending_count(self, project_id: str) -> int:
        stmt = select(func.count(ExpenseModel.id)).where(
            ExpenseModel.project_id == project_id,
            ExpenseModel.status == ExpenseStatus.PENDING.value,
        )
        return int(self.session.scalar(stmt) or 0)

    def summary(self, project_id: str) -> ExpenseSummary:
        total_approved = ZERO
        total_pending = ZERO
        approved_count = 0
        pending_count = 0
        by_category: dict[str, Decimal] = defaultdict(lambda: ZERO)
        by_department: dict[str, Decimal] = defaultdict(lambda: ZERO)
        for expense in self.for_project(project_id):
            if expense.status == ExpenseStatus.APPROVED:
                total_approved += expense.amount
                approved_count += 1
                by_category[expense.category] += expense.amount
                by_department[expense.department] += expense.amount
            elif expense.status == ExpenseStatus.PENDING:
                total_pending += expense.amount
                pending_count += 1
        return ExpenseSummary(
            project_id=project_id,
            total_approved=total_approved,
            total_pending=total_pending,
            approved_count=approved_count,
            pending_count=pending_count,
            by_category=dict(by_category),
            by_department=dict(by_department),
        )
