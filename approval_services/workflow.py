"""
approval_services.workflow -- the engine's public operations.

Responsibility:
    Creates every kernel service once over a caller-owned session and
    exposes budget, authority, delegation, sweep, expense and notification
    operations.  Expected failures (NotFound, InvalidState,
    ValidationFailure) come back as structured results carrying
    ``error_code`` and a human-readable ``message``.

Architecture position:
    Services.  The only place kernel services are constructed and wired
    with configuration values.

Invariants enforced:
    - Every service shares the same Session and Clock.
    - Authority checks, expense submissions and decisions, and delegation
      queries run only after the project's due delegations are swept, so
      staleness is bounded by the next such call.
    - Reads used for decisions fail closed (denied budget, empty
      authority) when the store is unavailable.

Non-goals:
    - Does NOT own the Session lifecycle (no commit/rollback); the caller
      commits.  Scheduled sweeps use their own sessions via
      ``session_factory``.

Usage:
    with session_scope() as session:
        workflow = ApprovalWorkflow(session, config=get_active_config())
        result = workflow.submit_expense(project_id, "Marketing", "Ads", "4000", uid)
"""

from __future__ import annotations

from collections.abc import Callable
from datetime import date, datetime
from decimal import Decimal

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from approval_batch.tasks.delegation_tasks import (
    ExpirySweepJob,
    is_expiry_sweep_scheduled,
    register_expiry_sweep,
    run_expiry_sweep_now,
)
from approval_config import EngineConfig, get_active_config
from approval_kernel.db.types import ZERO, to_money
from approval_kernel.domain.clock import Clock, SystemClock
from approval_kernel.domain.dtos import (
    Authority,
    BudgetValidationResult,
    DecisionResult,
    DelegationResult,
    DepartmentBudgetSummary,
    ExpenseSummary,
    NotificationDispatch,
    NotificationRecord,
    NotificationResult,
    SubmissionResult,
    SweepResult,
    TemporaryApproverRecord,
)
from approval_kernel.domain.ports import PushTransport, TaskScheduler
from approval_kernel.domain.types import AuthoritySource, OperationStatus
from approval_kernel.exceptions import (
    ApprovalKernelError,
    ProjectNotFoundError,
    StoreUnavailableError,
)
from approval_kernel.logging_config import get_logger
from approval_kernel.selectors.expense_selector import ExpenseSelector
from approval_kernel.services.authority_resolver import AuthorityResolver
from approval_kernel.services.budget_ledger import BudgetLedger
from approval_kernel.services.delegation_lifecycle import DelegationLifecycle
from approval_kernel.services.expense_service import ExpenseService
from approval_kernel.services.expiry_sweeper import ExpirySweeper
from approval_kernel.services.notification_router import NotificationRouter

logger = get_logger("services.workflow")

NON_POSITIVE_AMOUNT_REASON = "Expense amount must be positive"


class ApprovalWorkflow:
    """Facade over the approval kernel.

    Contract:
        Receives a Session and optional Clock, EngineConfig, PushTransport,
        TaskScheduler and session factory.  Constructs each kernel service
        exactly once, in dependency order.

    Non-goals:
        - Does NOT commit; the caller owns the transaction.
    """

    def __init__(
        self,
        session: Session,
        clock: Clock | None = None,
        config: EngineConfig | None = None,
        push_transport: PushTransport | None = None,
        scheduler: TaskScheduler | None = None,
        session_factory: Callable[[], Session] | None = None,
    ) -> None:
        self._session = session
        self._clock = clock or SystemClock()
        self.config = config or get_active_config()
        self._scheduler = scheduler
        self._session_factory = session_factory
        self._push_transport = push_transport

        self.authority = AuthorityResolver(
            session, self._clock,
            fallback_enabled=self.config.notifications.role_fallback_enabled,
        )
        self.budget = BudgetLedger(
            session, self._clock, currency_symbol=self.config.budget.currency_symbol,
        )
        self.router = self._build_router(session, self.authority)
        self.delegations = DelegationLifecycle(
            session, self._clock, router=self.router,
            system_actor=self.config.system_actor,
        )
        self.sweeper = ExpirySweeper(session, self._clock, lifecycle=self.delegations)
        self.expenses = ExpenseService(
            session, self._clock,
            ledger=self.budget, authority=self.authority, router=self.router,
        )
        self._expense_reads = ExpenseSelector(session)
        self._sweep_job = (
            ExpirySweepJob(session_factory, self._clock, self._build_sweeper)
            if session_factory is not None else None
        )

    # ------------------------------------------------------------------
    # Budget
    # ------------------------------------------------------------------

    def evaluate_budget(
        self,
        project_id: str,
        department: str,
        amount: Decimal | int | str,
    ) -> BudgetValidationResult:
        candidate = to_money(amount)
        if candidate <= ZERO:
            return BudgetValidationResult(
                allowed=False,
                allocated=ZERO,
                spent=ZERO,
                remaining=ZERO,
                reason=NON_POSITIVE_AMOUNT_REASON,
                project_id=project_id,
                department=department,
                amount=candidate,
            )
        return self.budget.evaluate(project_id, department, candidate)

    def get_budget_summary(self, project_id: str) -> dict[str, DepartmentBudgetSummary]:
        """Per-department summary.  Empty for an unknown project."""
        try:
            return self.budget.summary(project_id)
        except ProjectNotFoundError:
            return {}

    # ------------------------------------------------------------------
    # Authority
    # ------------------------------------------------------------------

    def get_current_authority(self, project_id: str) -> Authority:
        """Sweep the project's due delegations, then resolve authority.

        Fails closed: an unknown project or a store failure yields an
        empty authority.
        """
        self._sweep_due(project_id)
        try:
            return self.authority.authority_for(project_id)
        except ProjectNotFoundError:
            return Authority(
                project_id=project_id,
                approver_ids=frozenset(),
                production_head_ids=frozenset(),
                source=AuthoritySource.EXPLICIT,
            )

    def is_user_assigned_to_project(self, user_id: str, project_id: str) -> bool:
        return self.authority.is_user_assigned_to_project(user_id, project_id)

    # ------------------------------------------------------------------
    # Delegations
    # ------------------------------------------------------------------

    def create_delegation(
        self,
        project_id: str,
        approver_id: str,
        approver_name: str | None = None,
        approver_phone: str | None = None,
        start_date: datetime | None = None,
        expiring_date: datetime | None = None,
        assigned_by: str = "",
        assigned_by_name: str = "",
    ) -> DelegationResult:
        return _delegation_result(lambda: self.delegations.create(
            project_id,
            approver_id,
            approver_name=approver_name,
            approver_phone=approver_phone,
            start_date=start_date,
            expiring_date=expiring_date,
            assigned_by=assigned_by,
            assigned_by_name=assigned_by_name,
        ))

    def update_delegation(
        self,
        project_id: str,
        updated: TemporaryApproverRecord,
        original: TemporaryApproverRecord,
        changed_by: str,
    ) -> DelegationResult:
        return _delegation_result(
            lambda: self.delegations.update(project_id, updated, original, changed_by)
        )

    def extend_delegation(
        self,
        project_id: str,
        delegation_id: str,
        new_expiring_date: datetime | None,
        changed_by: str,
    ) -> DelegationResult:
        return _delegation_result(lambda: self.delegations.extend(
            project_id, delegation_id, new_expiring_date, changed_by,
        ))

    def remove_delegation(
        self,
        project_id: str,
        delegation_id: str,
        removed_by: str,
    ) -> DelegationResult:
        try:
            return self.delegations.remove(project_id, delegation_id, removed_by)
        except ApprovalKernelError as exc:
            return _failure(exc)

    def list_delegations(self, project_id: str) -> list[TemporaryApproverRecord]:
        """Delegation history, newest first, after sweeping due ones."""
        self._sweep_due(project_id)
        return self.delegations.history(project_id)

    def active_delegation(self, project_id: str) -> TemporaryApproverRecord | None:
        self._sweep_due(project_id)
        return self.delegations.active(project_id)

    def is_temporary_approver(self, project_id: str, user_id: str) -> bool:
        return self.delegations.is_temporary_approver(project_id, user_id)

    def remaining_days(self, record: TemporaryApproverRecord) -> int | None:
        return self.delegations.remaining_days(record)

    # ------------------------------------------------------------------
    # Expiry sweep
    # ------------------------------------------------------------------

    def run_expiry_sweep_now(self) -> SweepResult | None:
        """Trigger a sweep.

        With a scheduler and session factory the run is queued for the
        next tick and None is returned.  Otherwise it runs inline on this
        session and the result is returned.
        """
        if self._scheduler is not None and self._sweep_job is not None:
            run_expiry_sweep_now(
                self._scheduler, self._sweep_job, self.config.sweep.job_name,
            )
            return None
        return self.sweeper.sweep()

    def schedule_expiry_sweep(self) -> None:
        """Register the periodic sweep with the scheduler (kept if present)."""
        if self._scheduler is None or self._sweep_job is None:
            raise ValueError("A scheduler and a session factory are required")
        sweep = self.config.sweep
        register_expiry_sweep(
            self._scheduler,
            self._sweep_job,
            interval=sweep.interval,
            jitter=sweep.flex,
            name=sweep.job_name,
            run_on_startup=sweep.run_on_startup,
        )

    def is_expiry_sweep_scheduled(self) -> bool:
        if self._scheduler is None:
            return False
        return is_expiry_sweep_scheduled(self._scheduler, self.config.sweep.job_name)

    # ------------------------------------------------------------------
    # Expenses
    # ------------------------------------------------------------------

    def submit_expense(
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
        self._sweep_due(project_id)
        return self.expenses.submit(
            project_id,
            department,
            category,
            amount,
            submitted_by_user_id,
            submitted_by_name=submitted_by_name,
            description=description,
            expense_date=expense_date,
            mode_of_payment=mode_of_payment,
        )

    def decide_expense(
        self,
        expense_id: str,
        approved: bool,
        reviewer_name: str,
        comments: str | None = None,
        reviewer_id: str | None = None,
    ) -> DecisionResult:
        try:
            expense = self._expense_reads.get(expense_id)
        except SQLAlchemyError:
            expense = None
        if expense is not None:
            self._sweep_due(expense.project_id)
        return self.expenses.decide(
            expense_id, approved, reviewer_name, comments, reviewer_id=reviewer_id,
        )

    def remind_pending_approvals(self, project_id: str) -> NotificationDispatch | None:
        try:
            return self.expenses.remind_pending(project_id)
        except ProjectNotFoundError:
            return None

    def expense_summary(self, project_id: str) -> ExpenseSummary:
        return self.expenses.summary(project_id)

    # ------------------------------------------------------------------
    # Notifications
    # ------------------------------------------------------------------

    def notify_assignment(
        self,
        project_id: str,
        user_id: str,
        assigned_role_label: str,
    ) -> NotificationResult:
        """PROJECT_ASSIGNMENT to one user.

        An empty or unknown recipient, or an unknown project, is REJECTED
        with its error code; a store failure is FAILED.
        """
        try:
            dispatch = self.router.notify_assignment(
                project_id, user_id, assigned_role_label,
            )
        except ApprovalKernelError as exc:
            logger.warning(
                "assignment_notification_refused",
                extra={"project_id": project_id, "user_id": user_id,
                       "error_code": exc.code},
            )
            return NotificationResult(
                status=_failure_status(exc), error_code=exc.code, message=str(exc),
            )
        return NotificationResult(status=OperationStatus.SUCCESS, dispatch=dispatch)

    def refresh_device_token(self, user_id: str) -> str | None:
        return self.router.refresh_device_token(user_id)

    def notifications_for(
        self,
        user_id: str,
        related_id: str | None = None,
    ) -> list[NotificationRecord]:
        return self.router.inbox(user_id, related_id)

    # ------------------------------------------------------------------
    # Wiring
    # ------------------------------------------------------------------

    def _sweep_due(self, project_id: str) -> None:
        """Expire the project's due delegations.  Failures are logged only."""
        try:
            self.sweeper.sweep_project(project_id)
        except (ApprovalKernelError, SQLAlchemyError):
            logger.warning(
                "presweep_failed",
                extra={"project_id": project_id},
                exc_info=True,
            )

    def _build_router(
        self,
        session: Session,
        authority: AuthorityResolver,
    ) -> NotificationRouter:
        return NotificationRouter(
            session,
            self._clock,
            authority=authority,
            push_transport=self._push_transport,
            currency_symbol=self.config.budget.currency_symbol,
            push_enabled=self.config.notifications.push_enabled,
        )

    def _build_sweeper(self, session: Session) -> ExpirySweeper:
        """Sweeper over a scheduled job's own session."""
        authority = AuthorityResolver(
            session, self._clock,
            fallback_enabled=self.config.notifications.role_fallback_enabled,
        )
        lifecycle = DelegationLifecycle(
            session,
            self._clock,
            router=self._build_router(session, authority),
            system_actor=self.config.system_actor,
        )
        return ExpirySweeper(session, self._clock, lifecycle=lifecycle)


def _delegation_result(operation: Callable[[], TemporaryApproverRecord]) -> DelegationResult:
    try:
        record = operation()
    except ApprovalKernelError as exc:
        return _failure(exc)
    return DelegationResult(status=OperationStatus.SUCCESS, delegation=record)


def _failure(exc: ApprovalKernelError) -> DelegationResult:
    return DelegationResult(
        status=_failure_status(exc), error_code=exc.code, message=str(exc),
    )


def _failure_status(exc: ApprovalKernelError) -> OperationStatus:
    if isinstance(exc, StoreUnavailableError):
        return OperationStatus.FAILED
    return OperationStatus.REJECTED
