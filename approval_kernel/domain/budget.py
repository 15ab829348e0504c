"""
Budget arithmetic (``approval_kernel.domain.budget``).

Responsibility
--------------
Pure functions behind BudgetLedger: approved spend, remaining budget,
allow/deny decision for a candidate amount, and per-department summaries.

Architecture position
---------------------
**Kernel domain layer**.  ZERO I/O.  The ledger service feeds these
functions with values read through selectors.

Invariants enforced
-------------------
* Only APPROVED expenses count as spend; PENDING amounts do not reserve
  budget and REJECTED amounts never count.
* ``allowed`` iff ``amount <= allocated - spent`` and ``allocated > 0``.
"""

from __future__ import annotations

from collections.abc import Iterable, Mapping
from decimal import Decimal

from approval_kernel.db.types import ZERO, format_money, round_money
from approval_kernel.domain.dtos import (
    BudgetValidationResult,
    DepartmentBudgetSummary,
)

PROJECT_NOT_FOUND_REASON = "Project not found"

_HUNDRED = Decimal("100")


def no_budget_reason(department: str) -> str:
    return f"No budget allocated for department: {department}"


def exceeds_budget_reason(
    department: str,
    amount: Decimal,
    allocated: Decimal,
    remaining: Decimal,
    currency_symbol: str,
) -> str:
    return (
        f"Expense amount ({format_money(amount, currency_symbol)}) would exceed "
        f"remaining budget for {department} department. "
        f"Allocated: {format_money(allocated, currency_symbol)}. "
        f"Remaining budget: {format_money(remaining, currency_symbol)}"
    )


def approved_spend(amounts: Iterable[Decimal]) -> Decimal:
    """Sum of approved amounts (empty sum is zero)."""
    return sum(amounts, ZERO)


def evaluate_allocation(
    *,
    project_id: str,
    department: str,
    allocated: Decimal | None,
    spent: Decimal,
    amount: Decimal,
    currency_symbol: str = "₹",
) -> BudgetValidationResult:
    """Decide whether ``amount`` fits in the department's remaining budget.

    ``allocated`` is None when the department has no entry on the project.
    """
    if allocated is None or allocated <= ZERO:
        return BudgetValidationResult(
            allowed=False,
            allocated=allocated if allocated is not None else ZERO,
            spent=spent,
            remaining=ZERO,
            reason=no_budget_reason(department),
            project_id=project_id,
            department=department,
            amount=amount,
        )

    remaining = allocated - spent
    allowed = amount <= remaining
    return BudgetValidationResult(
        allowed=allowed,
        allocated=allocated,
        spent=spent,
        remaining=remaining,
        reason=None if allowed else exceeds_budget_reason(
            department, amount, allocated, remaining, currency_symbol
        ),
        project_id=project_id,
        department=department,
        amount=amount,
    )


def project_missing(project_id: str, department: str, amount: Decimal) -> BudgetValidationResult:
    return BudgetValidationResult(
        allowed=False,
        allocated=ZERO,
        spent=ZERO,
        remaining=ZERO,
        reason=PROJECT_NOT_FOUND_REASON,
        project_id=project_id,
        department=department,
        amount=amount,
    )


def spent_percentage(allocated: Decimal, spent: Decimal) -> Decimal:
    """spent / allocated * 100, two places; 0 when nothing is allocated."""
    if allocated <= ZERO:
        return round_money(ZERO, 2)
    return round_money(spent / allocated * _HUNDRED, 2)


def summarize(
    allocations: Mapping[str, Decimal],
    spent_by_department: Mapping[str, Decimal],
) -> dict[str, DepartmentBudgetSummary]:
    """Per-department summary for every allocated department."""
    summary: dict[str, DepartmentBudgetSummary] = {}
    for department in sorted(allocations):
        allocated = allocations[department]
        spent = spent_by_department.get(department, ZERO)
        summary[department] = DepartmentBudgetSummary(
            department=department,
            allocated=allocated,
            spent=spent,
            remaining=allocated - spent,
            percentage=spent_percentage(allocated, spent),
        )
    return summary
