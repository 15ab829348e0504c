"""
Approval domain enumerations.

Stored values are the upper-case labels used by the durable store
(``"APPROVER"``, ``"PENDING"`` ...), so ORM rows round-trip through
``UserRole(row.role)`` without translation tables.
"""

from enum import Enum


class UserRole(str, Enum):
    """System-wide role of a user."""

    USER = "USER"
    APPROVER = "APPROVER"
    PRODUCTION_HEAD = "PRODUCTION_HEAD"
    ADMIN = "ADMIN"


class ExpenseStatus(str, Enum):
    """Expense lifecycle.  APPROVED and REJECTED are terminal."""

    PENDING = "PENDING"
    APPROVED = "APPROVED"
    REJECTED = "REJECTED"


TERMINAL_EXPENSE_STATUSES: frozenset[ExpenseStatus] = frozenset({
    ExpenseStatus.APPROVED,
    ExpenseStatus.REJECTED,
})


class DelegationStatus(str, Enum):
    """Persisted status of a temporary-approver row."""

    ACTIVE = "ACTIVE"
    EXPIRED = "EXPIRED"


class Membership(str, Enum):
    """Kind of project membership a user holds."""

    APPROVER = "approver"
    PRODUCTION_HEAD = "production_head"
    TEAM = "team"


class AuthoritySource(str, Enum):
    """Where the resolved authority set came from."""

    EXPLICIT = "explicit"
    FALLBACK = "fallback"


class NotificationType(str, Enum):
    EXPENSE_SUBMITTED = "EXPENSE_SUBMITTED"
    EXPENSE_APPROVED = "EXPENSE_APPROVED"
    EXPENSE_REJECTED = "EXPENSE_REJECTED"
    PROJECT_ASSIGNMENT = "PROJECT_ASSIGNMENT"
    PENDING_APPROVAL = "PENDING_APPROVAL"
    DELEGATION_EXPIRED = "DELEGATION_EXPIRED"
    TEMPORARY_APPROVER_ASSIGNMENT = "TEMPORARY_APPROVER_ASSIGNMENT"
    ROLE_ASSIGNMENT = "ROLE_ASSIGNMENT"
    INFO = "INFO"


class DelegationAction(str, Enum):
    """Audit actions recorded for a delegation."""

    CREATED = "CREATED"
    UPDATED = "UPDATED"
    EXPIRED = "EXPIRED"
    REMOVED = "REMOVED"


class OperationStatus(str, Enum):
    """Outcome of a caller-facing mutating operation."""

    SUCCESS = "success"
    NOOP = "noop"
    REJECTED = "rejected"
    FAILED = "failed"
