"""
Typed exception hierarchy for the approval kernel.

Every error has a typed class, a machine-readable ``code`` class attribute,
and carries its context as structured attributes (never only a message).

    ApprovalKernelError (base)
    |
    +-- NotFoundError
    |   +-- ProjectNotFoundError
    |   +-- UserNotFoundError
    |   +-- DelegationNotFoundError
    |   +-- ExpenseNotFoundError
    |
    +-- InvalidStateError
    |   +-- DelegationAlreadyActiveError
    |   +-- DelegationNotActiveError
    |   +-- ExpenseAlreadyDecidedError
    |   +-- UnauthorizedReviewerError
    |   +-- ConcurrentModificationError
    |
    +-- ValidationFailureError
    |   +-- EmptyRecipientError
    |   +-- NonPositiveAmountError
    |   +-- NoBudgetAllocatedError
    |   +-- InvalidDelegateError
    |   +-- InvalidDelegationWindowError
    |
    +-- TransientStoreError
    |   +-- StoreUnavailableError
    |   +-- PushTransportError
    |
    +-- ImmutabilityError
        +-- ImmutabilityViolationError

NotFound, InvalidState and ValidationFailure are expected, user-actionable
outcomes: the caller-facing workflow converts them into structured results.
TransientStoreError wraps I/O failures from the durable store or the push
transport.
"""


class ApprovalKernelError(Exception):
    """
    Base exception for all approval kernel errors.

    All subclasses must have a ``code`` class attribute.
    """

    code: str = "APPROVAL_KERNEL_ERROR"


# Not found


class NotFoundError(ApprovalKernelError):
    """Base exception for missing entities."""

    code: str = "NOT_FOUND"


class ProjectNotFoundError(NotFoundError):
    """Project with given ID was not found."""

    code: str = "PROJECT_NOT_FOUND"

    def __init__(self, project_id: str):
        self.project_id = project_id
        super().__init__(f"Project not found: {project_id}")


class UserNotFoundError(NotFoundError):
    """User with given ID was not found."""

    code: str = "USER_NOT_FOUND"

    def __init__(self, user_id: str):
        self.user_id = user_id
        super().__init__(f"User not found: {user_id}")


class DelegationNotFoundError(NotFoundError):
    """Temporary approver record was not found for the project."""

    code: str = "DELEGATION_NOT_FOUND"

    def __init__(self, project_id: str, delegation_id: str):
        self.project_id = project_id
        self.delegation_id = delegation_id
        super().__init__(
            f"Delegation {delegation_id} not found for project {project_id}"
        )


class ExpenseNotFoundError(NotFoundError):
    """Expense with given ID was not found."""

    code: str = "EXPENSE_NOT_FOUND"

    def __init__(self, expense_id: str):
        self.expense_id = expense_id
        super().__init__(f"Expense not found: {expense_id}")


# Invalid state


class InvalidStateError(ApprovalKernelError):
    """Base exception for transitions not allowed from the current state."""

    code: str = "INVALID_STATE"


class DelegationAlreadyActiveError(InvalidStateError):
    """A project may hold at most one active delegation."""

    code: str = "DELEGATION_ALREADY_ACTIVE"

    def __init__(self, project_id: str, existing_delegation_id: str):
        self.project_id = project_id
        self.existing_delegation_id = existing_delegation_id
        super().__init__(
            f"Project {project_id} already has an active temporary approver "
            f"({existing_delegation_id})"
        )


class DelegationNotActiveError(InvalidStateError):
    """Edit attempted on a delegation that is no longer active."""

    code: str = "DELEGATION_NOT_ACTIVE"

    def __init__(self, delegation_id: str, status: str):
        self.delegation_id = delegation_id
        self.status = status
        super().__init__(
            f"Delegation {delegation_id} is not active (status: {status})"
        )


class ExpenseAlreadyDecidedError(InvalidStateError):
    """Only PENDING expenses may be approved or rejected."""

    code: str = "EXPENSE_ALREADY_DECIDED"

    def __init__(self, expense_id: str, status: str):
        self.expense_id = expense_id
        self.status = status
        super().__init__(
            f"Expense {expense_id} has already been decided (status: {status})"
        )


class UnauthorizedReviewerError(InvalidStateError):
    """Reviewer does not currently hold approval authority on the project."""

    code: str = "UNAUTHORIZED_REVIEWER"

    def __init__(self, reviewer_id: str, project_id: str):
        self.reviewer_id = reviewer_id
        self.project_id = project_id
        super().__init__(
            f"User {reviewer_id} holds no approval authority on project {project_id}"
        )


class ConcurrentModificationError(InvalidStateError):
    """Conditional write lost against a concurrent writer."""

    code: str = "CONCURRENT_MODIFICATION"

    def __init__(self, entity_type: str, entity_id: str):
        self.entity_type = entity_type
        self.entity_id = entity_id
        super().__init__(
            f"Concurrent modification of {entity_type} {entity_id}: "
            "record changed since it was read"
        )


# Validation


class ValidationFailureError(ApprovalKernelError):
    """Base exception for rejected input."""

    code: str = "VALIDATION_FAILURE"


class EmptyRecipientError(ValidationFailureError):
    """Notification recipient id is empty."""

    code: str = "EMPTY_RECIPIENT"

    def __init__(self, notification_type: str):
        self.notification_type = notification_type
        super().__init__(
            f"Recipient id is required for {notification_type} notification"
        )


class NonPositiveAmountError(ValidationFailureError):
    """Expense amount must be strictly positive."""

    code: str = "NON_POSITIVE_AMOUNT"

    def __init__(self, amount: str):
        self.amount = amount
        super().__init__(f"Expense amount must be positive, got {amount}")


class NoBudgetAllocatedError(ValidationFailureError):
    """Department has no positive allocation on the project."""

    code: str = "NO_BUDGET_ALLOCATED"

    def __init__(self, project_id: str, department: str):
        self.project_id = project_id
        self.department = department
        super().__init__(f"No budget allocated for department: {department}")


class InvalidDelegateError(ValidationFailureError):
    """Temporary approver must be an existing, active APPROVER user."""

    code: str = "INVALID_DELEGATE"

    def __init__(self, user_id: str, role: str | None):
        self.user_id = user_id
        self.role = role
        super().__init__(
            f"User {user_id} cannot act as temporary approver (role: {role})"
        )


class InvalidDelegationWindowError(ValidationFailureError):
    """Expiring date precedes the start date."""

    code: str = "INVALID_DELEGATION_WINDOW"

    def __init__(self, start_date: str, expiring_date: str):
        self.start_date = start_date
        self.expiring_date = expiring_date
        super().__init__(
            f"Delegation expiring date {expiring_date} is before start date {start_date}"
        )


# Transient I/O


class TransientStoreError(ApprovalKernelError):
    """Base exception for retryable I/O failures."""

    code: str = "TRANSIENT_STORE_FAILURE"


class StoreUnavailableError(TransientStoreError):
    """Durable store call failed."""

    code: str = "STORE_UNAVAILABLE"

    def __init__(self, operation: str, detail: str):
        self.operation = operation
        self.detail = detail
        super().__init__(f"Store operation {operation} failed: {detail}")


class PushTransportError(TransientStoreError):
    """Push transport refused or failed a delivery."""

    code: str = "PUSH_TRANSPORT_FAILURE"

    def __init__(self, recipient_id: str, detail: str):
        self.recipient_id = recipient_id
        self.detail = detail
        super().__init__(f"Push to {recipient_id} failed: {detail}")


# Immutability


class ImmutabilityError(ApprovalKernelError):
    """Base exception for immutability-related errors."""

    code: str = "IMMUTABILITY_ERROR"


class ImmutabilityViolationError(ImmutabilityError):
    """
    Attempted to modify or delete an immutable record.

    Notifications and delegation audit events are append-only; decided
    expenses and expired delegations are frozen.
    """

    code: str = "IMMUTABILITY_VIOLATION"

    def __init__(self, entity_type: str, entity_id: str, reason: str):
        self.entity_type = entity_type
        self.entity_id = entity_id
        self.reason = reason
        super().__init__(
            f"Immutability violation on {entity_type} {entity_id}: {reason}"
        )
