"""
Approval domain value objects (``approval_kernel.domain.dtos``).

Responsibility
--------------
Frozen records exchanged between selectors, services and callers: read-only
snapshots of stored entities and the structured results returned by every
caller-facing operation.

Architecture position
---------------------
**Kernel domain layer** -- pure value objects.  ZERO I/O.  No imports from
``db/``, ``services/``, ``selectors/`` or outer layers.

Invariants enforced
-------------------
* Money fields are ``Decimal``.
* Snapshots are immutable: a service that changes state returns a new
  snapshot rather than mutating the old one.
"""

from __future__ import annotations

from collections.abc import Mapping
from dataclasses import dataclass, field
from datetime import date, datetime
from decimal import Decimal

from approval_kernel.domain.types import (
    AuthoritySource,
    DelegationStatus,
    ExpenseStatus,
    NotificationType,
    OperationStatus,
    UserRole,
)


# =========================================================================
# Entity snapshots
# =========================================================================


@dataclass(frozen=True)
class NotificationPreferences:
    """Per-user opt-in flags.  ``push_notifications`` gates every push."""

    push_notifications: bool = True
    expense_submitted: bool = True
    expense_approved: bool = True
    expense_rejected: bool = True
    project_assignment: bool = True
    pending_approvals: bool = True


@dataclass(frozen=True)
class UserSnapshot:
    uid: str
    name: str
    phone: str
    role: UserRole
    is_active: bool = True
    assigned_projects: frozenset[str] = frozenset()
    preferences: NotificationPreferences = field(
        default_factory=NotificationPreferences
    )
    device_token: str | None = None


@dataclass(frozen=True)
class ProjectSnapshot:
    """Project as seen by the authority and budget logic.

    ``team_members`` is the authoritative visibility set and contains every
    active temporary approver.
    """

    id: str
    name: str
    department_budgets: Mapping[str, Decimal] = field(default_factory=dict)
    approver_ids: frozenset[str] = frozenset()
    production_head_ids: frozenset[str] = frozenset()
    manager_id: str | None = None
    team_members: frozenset[str] = frozenset()
    temporary_approver_phone: str | None = None

    @property
    def has_budget(self) -> bool:
        return bool(self.department_budgets)


@dataclass(frozen=True)
class ExpenseRecord:
    id: str
    project_id: str
    department: str
    category: str
    amount: Decimal
    status: ExpenseStatus
    submitted_by_user_id: str
    submitted_by_name: str = ""
    description: str = ""
    expense_date: date | None = None
    submitted_at: datetime | None = None
    reviewed_at: datetime | None = None
    reviewed_by: str | None = None
    review_comments: str | None = None


@dataclass(frozen=True)
class TemporaryApproverRecord:
    """One delegation row.  Historical rows are retained with is_active=False."""

    id: str
    project_id: str
    approver_id: str
    approver_name: str
    approver_phone: str
    start_date: datetime
    expiring_date: datetime | None
    is_active: bool
    status: DelegationStatus
    assigned_by: str = ""
    assigned_by_name: str = ""
    changed_by: str | None = None
    version: int = 1
    updated_at: datetime | None = None


@dataclass(frozen=True)
class NotificationRecord:
    recipient_id: str
    recipient_role: str
    title: str
    message: str
    type: NotificationType
    project_id: str = ""
    project_name: str = ""
    related_id: str = ""
    action_required: bool = False
    navigation_target: str = ""
    id: str | None = None
    created_at: datetime | None = None


# =========================================================================
# Results
# =========================================================================


@dataclass(frozen=True)
class BudgetValidationResult:
    """Outcome of a budget check.  Always returned, never raised."""

    allowed: bool
    allocated: Decimal
    spent: Decimal
    remaining: Decimal
    reason: str | None = None
    project_id: str = ""
    department: str = ""
    amount: Decimal = Decimal("0")


@dataclass(frozen=True)
class DepartmentBudgetSummary:
    department: str
    allocated: Decimal
    spent: Decimal
    remaining: Decimal
    percentage: Decimal


@dataclass(frozen=True)
class ExpenseSummary:
    """Approved spend breakdown.  PENDING never counts as spend."""

    project_id: str
    total_approved: Decimal
    total_pending: Decimal
    approved_count: int
    pending_count: int
    by_category: Mapping[str, Decimal] = field(default_factory=dict)
    by_department: Mapping[str, Decimal] = field(default_factory=dict)


@dataclass(frozen=True)
class Authority:
    """Who may approve on a project right now."""

    project_id: str
    approver_ids: frozenset[str]
    production_head_ids: frozenset[str]
    source: AuthoritySource
    delegated_approver_id: str | None = None

    @property
    def all_ids(self) -> frozenset[str]:
        return self.approver_ids | self.production_head_ids

    @property
    def is_empty(self) -> bool:
        return not self.approver_ids and not self.production_head_ids


@dataclass(frozen=True)
class DelegationResult:
    """Structured outcome of create/update/remove/expire.

    ``NOOP`` is a success: the delegation was already in the requested
    terminal state (typically a lost compare-and-set race).
    """

    status: OperationStatus
    delegation: TemporaryApproverRecord | None = None
    error_code: str | None = None
    message: str = ""

    @property
    def success(self) -> bool:
        return self.status in (OperationStatus.SUCCESS, OperationStatus.NOOP)


@dataclass(frozen=True)
class SweepFailure:
    project_id: str
    delegation_id: str | None
    error_code: str
    message: str


@dataclass(frozen=True)
class SweepResult:
    """Aggregate counts from one sweep run.  Observability only."""

    sweep_id: str
    projects_checked: int
    total_deactivated: int
    failures: tuple[SweepFailure, ...] = ()
    fatal: bool = False
    error: str | None = None

    @property
    def success(self) -> bool:
        return not self.fatal


@dataclass(frozen=True)
class NotificationDispatch:
    """Persisted fan-out of one workflow event."""

    notification_type: NotificationType
    recipients: tuple[str, ...] = ()
    failed: tuple[str, ...] = ()
    skipped_empty: int = 0
    fallback_used: bool = False

    @property
    def persisted(self) -> int:
        return len(self.recipients)


@dataclass(frozen=True)
class PushFanoutResult:
    """Outcome of a filtered push fan-out to one role."""

    role: UserRole
    project_id: str
    candidates: int
    delivered: tuple[str, ...] = ()
    not_assigned: tuple[str, ...] = ()
    opted_out: tuple[str, ...] = ()
    no_token: tuple[str, ...] = ()
    disabled: tuple[str, ...] = ()
    failed: tuple[str, ...] = ()


@dataclass(frozen=True)
class SubmissionResult:
    status: OperationStatus
    expense: ExpenseRecord | None = None
    budget: BudgetValidationResult | None = None
    dispatch: NotificationDispatch | None = None
    error_code: str | None = None
    message: str = ""

    @property
    def success(self) -> bool:
        return self.status == OperationStatus.SUCCESS


@dataclass(frozen=True)
class DecisionResult:
    status: OperationStatus
    expense: ExpenseRecord | None = None
    notified: bool = False
    error_code: str | None = None
    message: str = ""

    @property
    def success(self) -> bool:
        return self.status == OperationStatus.SUCCESS


@dataclass(frozen=True)
class NotificationResult:
    """Structured outcome of a single direct notification."""

    status: OperationStatus
    dispatch: NotificationDispatch | None = None
    error_code: str | None = None
    message: str = ""

    @property
    def success(self) -> bool:
        return self.status == OperationStatus.SUCCESS
