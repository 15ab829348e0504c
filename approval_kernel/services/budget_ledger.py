"""
BudgetLedger -- department budget evaluation.

Responsibility:
    Answers "would this expense exceed the department's remaining budget?"
    and produces per-department summaries, from approved expenses only.

Architecture position:
    Kernel > Services.  Reads through ProjectSelector / ExpenseSelector and
    delegates arithmetic to ``domain.budget``.  Never writes.

Invariants enforced:
    - spent = sum of APPROVED amounts for (project, department).  PENDING
      amounts do not reserve budget, so concurrent submissions may jointly
      over-commit once approved.
    - Always returns a structured result.  Store failures fail closed
      (allowed=False) with the error as reason.

Failure modes:
    - None raised from ``evaluate``.  ``summary`` raises
      ProjectNotFoundError / StoreUnavailableError.
"""

from __future__ import annotations

from decimal import Decimal

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from approval_kernel.db.types import ZERO, to_money
from approval_kernel.domain import budget
from approval_kernel.domain.clock import Clock
from approval_kernel.domain.dtos import BudgetValidationResult, DepartmentBudgetSummary
from approval_kernel.exceptions import ProjectNotFoundError, StoreUnavailableError
from approval_kernel.logging_config import get_logger
from approval_kernel.models.expense import ExpenseModel
from approval_kernel.selectors.expense_selector import ExpenseSelector
from approval_kernel.selectors.project_selector import ProjectSelector
from approval_kernel.services.base import BaseService

logger = get_logger("services.budget_ledger")


class BudgetLedger(BaseService[ExpenseModel]):
    """Budget checks and summaries for a project's departments."""

    def __init__(
        self,
        session: Session,
        clock: Clock | None = None,
        currency_symbol: str = "₹",
    ):
        super().__init__(session, clock)
        self._currency_symbol = currency_symbol
        self._projects = ProjectSelector(session)
        self._expenses = ExpenseSelector(session)

    def evaluate(
        self,
        project_id: str,
        department: str,
        amount: Decimal | int | str,
    ) -> BudgetValidationResult:
        """Decide whether ``amount`` fits in the department's remaining budget."""
        candidate = to_money(amount)
        try:
            project = self._projects.get(project_id)
            if project is None:
                result = budget.project_missing(project_id, department, candidate)
            else:
                allocated = project.department_budgets.get(department)
                spent = (
                    self._expenses.approved_spend(project_id, department)
                    if allocated is not None else ZERO
                )
                result = budget.evaluate_allocation(
                    project_id=project_id,
                    department=department,
                    allocated=allocated,
                    spent=spent,
                    amount=candidate,
                    currency_symbol=self._currency_symbol,
                )
        except SQLAlchemyError as exc:
            logger.error(
                "budget_evaluation_failed",
                extra={"project_id": project_id, "department": department},
                exc_info=True,
            )
            return BudgetValidationResult(
                allowed=False,
                allocated=ZERO,
                spent=ZERO,
                remaining=ZERO,
                reason=f"Error validating budget: {exc}",
                project_id=project_id,
                department=department,
                amount=candidate,
            )

        logger.info(
            "budget_evaluated",
            extra={
                "project_id": project_id,
                "department": department,
                "amount": candidate,
                "allocated": result.allocated,
                "spent": result.spent,
                "remaining": result.remaining,
                "allowed": result.allowed,
            },
        )
        return result

    def summary(self, project_id: str) -> dict[str, DepartmentBudgetSummary]:
        """Per-department allocated / spent / remaining / percentage."""
        try:
            project = self._projects.get(project_id)
            if project is None:
                raise ProjectNotFoundError(project_id)
            spent = self._expenses.approved_spend_by_department(project_id)
        except SQLAlchemyError as exc:
            raise StoreUnavailableError("budget_summary", str(exc)) from exc
        return budget.summarize(project.department_budgets, spent)

    def has_budget(self, project_id: str) -> bool:
        """True if any department has an allocation.  False on lookup failure."""
        try:
            project = self._projects.get(project_id)
        except SQLAlchemyError:
            logger.warning(
                "budget_presence_check_failed",
                extra={"project_id": project_id},
                exc_info=True,
            )
            return False
        return project is not None and project.has_budget
