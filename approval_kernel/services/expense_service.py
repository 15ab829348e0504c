"""
ExpenseService -- submission and decision pipeline.

Responsibility:
    Submits expenses (amount validation, budget check, persist, notify the
    current authority) and records approve/reject decisions (PENDING-only,
    optional reviewer authority check, notify the submitter).

Architecture position:
    Kernel > Services.  Composes BudgetLedger, AuthorityResolver and
    NotificationRouter.

Invariants enforced:
    - amount > 0.
    - A submission is persisted only if the budget check allows it.
    - Only PENDING expenses transition; the decision is a conditional write
      on status = PENDING, so a concurrent second decision loses.
    - Notification failures never fail the submission or the decision.

Failure modes:
    Expected outcomes (validation, budget, state) are returned as
    structured results with ``error_code``.  Store failures during the
    decision read fail closed with STORE_UNAVAILABLE.  A failed insert
    rolls back only its own SAVEPOINT and returns FAILED with
    STORE_UNAVAILABLE; the caller's session stays usable.
"""

from __future__ import annotations

from datetime import date
from decimal import Decimal

from sqlalchemy import update
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from approval_kernel.db.types import ZERO, to_money
from approval_kernel.domain.budget import PROJECT_NOT_FOUND_REASON
from approval_kernel.domain.clock import Clock
from approval_kernel.domain.dtos import (
    DecisionResult,
    ExpenseSummary,
    NotificationDispatch,
    SubmissionResult,
)
from approval_kernel.domain.types import ExpenseStatus, OperationStatus
from approval_kernel.exceptions import (
    ApprovalKernelError,
    ExpenseAlreadyDecidedError,
    ExpenseNotFoundError,
    NoBudgetAllocatedError,
    NonPositiveAmountError,
    ProjectNotFoundError,
    StoreUnavailableError,
    UnauthorizedReviewerError,
)
from approval_kernel.logging_config import LogContext, get_logger
from approval_kernel.models.expense import ExpenseModel
from approval_kernel.selectors.expense_selector import ExpenseSelector
from approval_kernel.services.authority_resolver import AuthorityResolver
from approval_kernel.services.base import BaseService
from approval_kernel.services.budget_ledger import BudgetLedger
from approval_kernel.services.notification_router import NotificationRouter

logger = get_logger("services.expense_service")

BUDGET_EXCEEDED = "BUDGET_EXCEEDED"
STORE_ERROR_PREFIX = "Error validating budget"


class ExpenseService(BaseService[ExpenseModel]):

    def __init__(
        self,
        session: Session,
        clock: Clock | None = None,
        ledger: BudgetLedger | None = None,
        authority: AuthorityResolver | None = None,
        router: NotificationRouter | None = None,
    ):
        super().__init__(session, clock)
        self._ledger = ledger or BudgetLedger(session, self._clock)
        self._authority = authority or AuthorityResolver(session, self._clock)
        self._router = router or NotificationRouter(
            session, self._clock, authority=self._authority,
        )
        self._expenses = ExpenseSelector(session)

    def submit(
        self,
        project_id: str,
        department: str,
        category: str,
        amount: Decimal | int | str,
        submitted_by_user_id: str,
        submitted_by_name: str = "",
        description: str = "",
        expense_date: date | None = None,
        mode_of_payment: str | None = None,
    ) -> SubmissionResult:
        candidate = to_money(amount)
        if candidate <= ZERO:
            return _rejected(NonPositiveAmountError(str(candidate)))

        budget = self._ledger.evaluate(project_id, department, candidate)
        if not budget.allowed:
            if budget.reason == PROJECT_NOT_FOUND_REASON:
                code = ProjectNotFoundError.code
            elif (budget.reason or "").startswith(STORE_ERROR_PREFIX):
                code = StoreUnavailableError.code
            elif budget.allocated <= ZERO:
                code = NoBudgetAllocatedError.code
            else:
                code = BUDGET_EXCEEDED
            logger.info(
                "expense_submission_rejected",
                extra={"project_id": project_id, "department": department,
                       "amount": candidate, "error_code": code},
            )
            return SubmissionResult(
                status=OperationStatus.REJECTED,
                budget=budget,
                error_code=code,
                message=budget.reason or "",
            )

        now = self._clock.now()
        model = ExpenseModel(
            project_id=project_id,
            department=department,
            category=category,
            amount=candidate,
            status=ExpenseStatus.PENDING.value,
            submitted_by_user_id=submitted_by_user_id,
            submitted_by_name=submitted_by_name,
            description=description,
            mode_of_payment=mode_of_payment,
            expense_date=expense_date or now.date(),
            submitted_at=now,
            created_at=now,
            updated_at=now,
        )
        savepoint = self.session.begin_nested()
        try:
            self.session.add(model)
            self.session.flush()
            savepoint.commit()
        except SQLAlchemyError as exc:
            savepoint.rollback()
            logger.error(
                "expense_persist_failed",
                extra={"project_id": project_id},
                exc_info=True,
            )
            return _failed(StoreUnavailableError("create_expense", str(exc)))

        expense = model.to_dto()
        with LogContext.bind(project_id=project_id, actor_id=submitted_by_user_id):
            logger.info(
                "expense_submitted",
                extra={"expense_id": expense.id, "department": department,
                       "amount": candidate},
            )
            dispatch = None
            try:
                dispatch = self._router.notify_submission(
                    project_id, expense.id, submitted_by_name, candidate, category,
                )
            except Exception:
                logger.warning(
                    "submission_notification_failed",
                    extra={"expense_id": expense.id},
                    exc_info=True,
                )
        return SubmissionResult(
            status=OperationStatus.SUCCESS,
            expense=expense,
            budget=budget,
            dispatch=dispatch,
        )

    def decide(
        self,
        expense_id: str,
        approved: bool,
        reviewer_name: str,
        comments: str | None = None,
        reviewer_id: str | None = None,
    ) -> DecisionResult:
        """Approve or reject a PENDING expense."""
        try:
            expense = self._expenses.get(expense_id)
            if expense is None:
                return _decision_rejected(ExpenseNotFoundError(expense_id))
            if expense.status != ExpenseStatus.PENDING:
                return _decision_rejected(
                    ExpenseAlreadyDecidedError(expense_id, expense.status.value)
                )
            if reviewer_id is not None and not self._authority.holds_authority(
                reviewer_id, expense.project_id,
            ):
                return _decision_rejected(
                    UnauthorizedReviewerError(reviewer_id, expense.project_id)
                )

            now = self._clock.now()
            target = ExpenseStatus.APPROVED if approved else ExpenseStatus.REJECTED
            result = self.session.execute(
                update(ExpenseModel)
                .where(
                    ExpenseModel.id == expense_id,
                    ExpenseModel.status == ExpenseStatus.PENDING.value,
                )
                .values(
                    status=target.value,
                    reviewed_at=now,
                    reviewed_by=reviewer_name,
                    review_comments=comments,
                    updated_at=now,
                )
                .execution_options(synchronize_session=False)
            )
            if result.rowcount == 0:
                latest = self._expenses.get(expense_id)
                return _decision_rejected(
                    ExpenseAlreadyDecidedError(expense_id, latest.status.value)
                )
            decided = self._expenses.get(expense_id)
        except SQLAlchemyError as exc:
            logger.error(
                "expense_decision_failed",
                extra={"expense_id": expense_id},
                exc_info=True,
            )
            return DecisionResult(
                status=OperationStatus.FAILED,
                error_code=StoreUnavailableError.code,
                message=str(exc),
            )

        logger.info(
            "expense_decided",
            extra={
                "expense_id": expense_id,
                "project_id": decided.project_id,
                "status": decided.status.value,
                "reviewer": reviewer_name,
            },
        )
        notified = False
        try:
            dispatch = self._router.notify_decision(
                expense_id,
                decided.project_id,
                decided.submitted_by_user_id,
                approved,
                decided.amount,
                reviewer_name,
                comments,
            )
            notified = dispatch.persisted > 0
        except Exception:
            logger.warning(
                "decision_notification_failed",
                extra={"expense_id": expense_id},
                exc_info=True,
            )
        return DecisionResult(
            status=OperationStatus.SUCCESS, expense=decided, notified=notified,
        )

    def remind_pending(self, project_id: str) -> NotificationDispatch | None:
        """Send PENDING_APPROVAL to production heads if anything is pending."""
        count = self._expenses.pending_count(project_id)
        if count == 0:
            return None
        return self._router.notify_pending_approvals(project_id, count)

    def summary(self, project_id: str) -> ExpenseSummary:
        return self._expenses.summary(project_id)


def _rejected(exc: ApprovalKernelError) -> SubmissionResult:
    return SubmissionResult(
        status=OperationStatus.REJECTED, error_code=exc.code, message=str(exc),
    )


def _failed(exc: ApprovalKernelError) -> SubmissionResult:
    return SubmissionResult(
        status=OperationStatus.FAILED, error_code=exc.code, message=str(exc),
    )


def _decision_rejected(exc: ApprovalKernelError) -> DecisionResult:
    return DecisionResult(
        status=OperationStatus.REJECTED, error_code=exc.code, message=str(exc),
    )
